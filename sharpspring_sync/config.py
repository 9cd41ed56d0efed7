"""Configuration helpers for the Sharpspring sync job."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .models import SOURCE_ID_PROPERTY

LOGGER = logging.getLogger(__name__)

ACCOUNT_ID_ENV = "SHARPSPRING_ACCOUNT_ID"
SECRET_KEY_ENV = "SHARPSPRING_SECRET_KEY"


class ConfigurationError(RuntimeError):
    """Raised when configuration files are missing or malformed."""


_SUPPORTED_EXTENSIONS = {".json", ".yaml", ".yml"}


def load_configuration(path: str | Path) -> Dict[str, Any]:
    """Load configuration data from a JSON or YAML file."""

    file_path = Path(path)
    if not file_path.exists():
        raise ConfigurationError(f"Configuration file '{file_path}' was not found")

    if file_path.suffix.lower() not in _SUPPORTED_EXTENSIONS:
        raise ConfigurationError(
            f"Unsupported configuration format '{file_path.suffix}'. Supported extensions: {sorted(_SUPPORTED_EXTENSIONS)}"
        )

    text = file_path.read_text(encoding="utf-8")
    if file_path.suffix.lower() == ".json":
        data = json.loads(text)
    else:
        try:
            import yaml  # type: ignore
        except ImportError as exc:  # pragma: no cover - dependency optional
            raise ConfigurationError(
                "YAML configuration requires the 'pyyaml' package to be installed"
            ) from exc
        data = yaml.safe_load(text)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file '{file_path}' must contain a mapping at the top level")
    return data


def load_environment(dotenv_path: Optional[str | Path] = None) -> None:
    """Load a ``.env`` file into the environment; existing variables win."""

    if load_dotenv(dotenv_path):
        LOGGER.debug("Loaded environment from %s", dotenv_path or ".env")


@dataclass
class SyncSettings:
    """Settings of the sync job, read from the ``sync`` section.

    ``foreign_key`` is the system name of the Sharpspring custom field
    holding source ids. ``store`` is ``memory``, ``sqlite:<path>`` or the
    dotted path of a key-value store class.
    """

    foreign_key: str = SOURCE_ID_PROPERTY
    custom_properties: Dict[str, str] = field(default_factory=dict)
    doublecheck_remotely: bool = False
    update_wait: float = 0.0
    calls_per_minute: Optional[float] = None
    state_file: Optional[str] = None
    store: str = "memory"
    store_options: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "SyncSettings":
        section = config.get("sync") or {}
        if not isinstance(section, Mapping):
            raise ConfigurationError("The 'sync' configuration section must be a mapping")

        custom_properties = section.get("custom_properties") or {}
        if not isinstance(custom_properties, Mapping):
            raise ConfigurationError("'sync.custom_properties' must map property names to field system names")

        calls_per_minute = section.get("calls_per_minute")
        try:
            return cls(
                foreign_key=str(section.get("foreign_key") or SOURCE_ID_PROPERTY),
                custom_properties={str(key): str(value) for key, value in custom_properties.items()},
                doublecheck_remotely=bool(section.get("doublecheck_remotely", False)),
                update_wait=float(section.get("update_wait", 0) or 0),
                calls_per_minute=float(calls_per_minute) if calls_per_minute else None,
                state_file=section.get("state_file"),
                store=str(section.get("store") or "memory"),
                store_options=dict(section.get("store_options") or {}),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid 'sync' configuration: {exc}") from exc

    @property
    def lead_custom_properties(self) -> Dict[str, str]:
        """Custom property mapping including the source id property."""

        properties = {SOURCE_ID_PROPERTY: self.foreign_key}
        properties.update(self.custom_properties)
        return properties


def sharpspring_credentials(config: Mapping[str, Any]) -> Tuple[str, str]:
    """Return ``(account_id, secret_key)``; environment variables take precedence."""

    section = config.get("sharpspring") or {}
    account_id = os.environ.get(ACCOUNT_ID_ENV) or section.get("account_id")
    secret_key = os.environ.get(SECRET_KEY_ENV) or section.get("secret_key")
    if not account_id or not secret_key:
        raise ConfigurationError(
            f"Sharpspring credentials missing: set {ACCOUNT_ID_ENV} / {SECRET_KEY_ENV} or "
            "'sharpspring.account_id' / 'sharpspring.secret_key'"
        )
    return str(account_id), str(secret_key)


__all__ = [
    "ACCOUNT_ID_ENV",
    "ConfigurationError",
    "SECRET_KEY_ENV",
    "SyncSettings",
    "load_configuration",
    "load_environment",
    "sharpspring_credentials",
]
