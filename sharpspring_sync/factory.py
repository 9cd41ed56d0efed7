"""Factory helpers for constructing the client, store and sync job from configuration."""
from __future__ import annotations

import importlib
from typing import Any, Dict, Optional

from .config import ConfigurationError, SyncSettings, sharpspring_credentials
from .connection import Connection
from .mapping import FieldMapping
from .rate_limit import DelayPolicy, RateLimiter
from .storage import KeyValueStore, MemoryStore, SqliteStore
from .sync.job import SyncJob
from .sync.state import StateFile
from .transport import SHARPSPRING_BASE_URL, SharpSpringClient


def _load_class(path: str):
    module_name, _, attr = path.rpartition(".")
    if not module_name:
        raise ConfigurationError(f"Invalid store class path '{path}'")
    module = importlib.import_module(module_name)
    try:
        return getattr(module, attr)
    except AttributeError as exc:
        raise ConfigurationError(f"Module '{module_name}' does not define '{attr}'") from exc


def build_client(config: Dict[str, Any], settings: Optional[SyncSettings] = None) -> SharpSpringClient:
    """Create the HTTP client from the ``sharpspring`` section and credentials."""

    settings = settings or SyncSettings.from_config(config)
    section = config.get("sharpspring") or {}
    account_id, secret_key = sharpspring_credentials(config)
    return SharpSpringClient(
        account_id,
        secret_key,
        headers=section.get("headers"),
        timeout=float(section.get("timeout", 30) or 30),
        base_url=section.get("base_url") or SHARPSPRING_BASE_URL,
        rate_limiter=RateLimiter(settings.calls_per_minute),
    )


def build_connection(config: Dict[str, Any], settings: Optional[SyncSettings] = None, *, client=None) -> Connection:
    settings = settings or SyncSettings.from_config(config)
    client = client or build_client(config, settings)
    return Connection(client, mapping=FieldMapping(settings.lead_custom_properties))


def build_store(settings: SyncSettings) -> KeyValueStore:
    """Instantiate the key-value store named by ``settings.store``."""

    target = settings.store.strip()
    if target == "memory":
        return MemoryStore()
    if target.startswith("sqlite:"):
        path = target[len("sqlite:") :]
        if not path:
            raise ConfigurationError("SQLite store requires a path, e.g. 'sqlite:leads.db'")
        return SqliteStore(path, **settings.store_options)
    store_cls = _load_class(target)
    return store_cls(**settings.store_options)


def build_sync_job(config: Dict[str, Any], *, client=None, store: Optional[KeyValueStore] = None) -> SyncJob:
    """Wire up a :class:`SyncJob` from a loaded configuration mapping."""

    settings = SyncSettings.from_config(config)
    connection = build_connection(config, settings, client=client)
    return SyncJob(
        connection,
        store if store is not None else build_store(settings),
        settings,
        state=StateFile(settings.state_file),
        delay_policy=DelayPolicy(delay_seconds=settings.update_wait),
    )


__all__ = ["build_client", "build_connection", "build_store", "build_sync_job"]
