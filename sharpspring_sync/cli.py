"""Command line interface for running the Sharpspring sync job."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .cache import REFRESH_SKIP
from .config import load_configuration, load_environment
from .factory import build_sync_job
from .ingestion import export_action_list, load_source_records
from .sync import display_items, refresh_since_from


def build_parser(prog: str | None = None) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=prog, description="Synchronize source contacts into Sharpspring leads")
    parser.add_argument("input", help="Path to the source contacts spreadsheet (CSV, TSV or XLSX)")
    parser.add_argument(
        "--config",
        required=True,
        help="Path to the sync configuration file (YAML or JSON)",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file with Sharpspring credentials (default: .env if present)",
    )
    parser.add_argument(
        "--full-dataset",
        action="store_true",
        help="The input holds all source contacts; deactivate Sharpspring leads whose source contact is gone",
    )
    refresh = parser.add_mutually_exclusive_group()
    refresh.add_argument(
        "--refresh-since",
        default=None,
        metavar="TIMESTAMP",
        help="Refresh the local lead cache with leads changed since this time ('Y-m-d H:M:S')",
    )
    refresh.add_argument(
        "--full-refresh",
        action="store_true",
        help="Empty the local lead cache and fetch all leads",
    )
    refresh.add_argument(
        "--skip-refresh",
        action="store_true",
        help="Use the local lead cache as it is",
    )
    parser.add_argument(
        "--display",
        default=None,
        metavar="OUTPUT",
        help="Write the list of actions to this CSV/XLSX file instead of sending anything",
    )
    parser.add_argument(
        "--include-equal",
        action="store_true",
        help="Include leads that are already up to date in the --display output",
    )
    parser.add_argument(
        "--include-clashes",
        action="store_true",
        help="Include inactive duplicates of other contacts in the --display output",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING)",
    )
    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO))

    load_environment(args.env_file)
    config = load_configuration(args.config)
    input_config = config.get("input") or {}
    records = load_source_records(args.input, column_mapping=input_config.get("column_mapping"))
    logging.info("Loaded %s source contacts from %s", len(records), args.input)

    job = build_sync_job(config)
    override = REFRESH_SKIP if args.skip_refresh else args.refresh_since
    refresh_since = refresh_since_from(job.state.state, override, args.full_refresh)

    if args.display:
        job.open_cache(refresh_since)
        items = job.preprocess(records, full_dataset=args.full_dataset)
        rows = display_items(
            items,
            mapping=job.mapping,
            include_equal=args.include_equal,
            include_clashes=args.include_clashes,
        )
        output = export_action_list(rows, args.display)
        logging.info("Action list with %s rows written to %s", len(rows), Path(output).resolve())
        return 0

    report = job.run(records, full_dataset=args.full_dataset, refresh_since=refresh_since)
    print(report.message)
    return 1 if report.accounting.error else 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
