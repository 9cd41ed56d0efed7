"""CLI helper to call a single Sharpspring REST API method for debugging."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Sequence

BASE_DIR = Path(__file__).resolve().parents[1]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from sharpspring_sync.config import load_configuration, load_environment  # noqa: E402  (import after path fix)
from sharpspring_sync.connection import ResponseExpectations  # noqa: E402
from sharpspring_sync.exceptions import SharpSpringError  # noqa: E402
from sharpspring_sync.factory import build_connection  # noqa: E402

LOGGER = logging.getLogger(__name__)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Call one Sharpspring REST API method and print the result.")
    parser.add_argument("method", help="REST API method name, e.g. getLeads")
    parser.add_argument("--params", default="{}", help="Method parameters as a JSON object")
    parser.add_argument(
        "--result-key",
        help="Unwrap the result from this single key (e.g. 'lead' for getLeads)",
    )
    parser.add_argument("--config", type=Path, help="Sync configuration file (YAML or JSON)")
    parser.add_argument("--env-file", help="Path to a .env file with Sharpspring credentials")
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print the response envelope without interpreting it",
    )
    parser.add_argument(
        "--output-json",
        type=Path,
        help="Optional path to save the JSON result",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        help="Console log level",
    )
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level))


def run_call(args: argparse.Namespace) -> Any:
    configure_logging(args.log_level)
    load_environment(args.env_file)
    config = load_configuration(args.config) if args.config else {}

    params = json.loads(args.params)
    if not isinstance(params, dict):
        raise ValueError("--params must be a JSON object")

    connection = build_connection(config)
    if args.raw:
        result = connection.client.call(args.method, params)
    else:
        result = connection.call(args.method, params, ResponseExpectations(single_result_key=args.result_key))

    print(json.dumps(result, indent=2, default=str))
    if args.output_json:
        args.output_json.write_text(json.dumps(result, indent=2, default=str))
        LOGGER.info("Wrote result JSON to %s", args.output_json)
    return result


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv or sys.argv[1:])
    try:
        run_call(args)
    except SharpSpringError as exc:  # pragma: no cover - CLI convenience
        LOGGER.error("Call failed: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
