"""Persisted state between sync runs: when the local lead cache was last refreshed."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ..cache import REFRESH_FULL, REFRESH_SKIP, REFRESH_SKIP_ALL
from ..connection import DATE_FORMAT

LOGGER = logging.getLogger(__name__)

# Seconds subtracted from the last update time when refreshing incrementally.
CACHE_UPDATE_OVERLAP = 0


@dataclass
class SyncState:
    last_cache_update: Optional[datetime] = None


class StateFile:
    """JSON file holding :class:`SyncState`; ``path=None`` keeps state in memory only."""

    def __init__(self, path: Optional[Union[str, Path]] = None) -> None:
        self.path = Path(path) if path else None
        self.state = self.load()

    def load(self) -> SyncState:
        if self.path is None or not self.path.exists():
            return SyncState()
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        value = data.get("last_cache_update")
        return SyncState(last_cache_update=datetime.fromisoformat(value) if value else None)

    def save(self) -> None:
        if self.path is None:
            return
        last = self.state.last_cache_update
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump({"last_cache_update": last.isoformat() if last else None}, handle)
        LOGGER.debug("Saved sync state to %s", self.path)

    def set_last_cache_update(self, timestamp: datetime) -> None:
        self.state.last_cache_update = timestamp
        self.save()


def parse_timestamp(value: str) -> datetime:
    """Parse a 'Y-m-d H:i:s' or ISO 8601 timestamp; raise ValueError otherwise."""

    value = value.strip()
    try:
        return datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Invalid refresh timestamp '{value}'; not a parseable date expression.") from exc


def refresh_since_from(state: SyncState, override: Optional[str] = None, full: bool = False) -> str:
    """Derive the ``refresh_since`` value for :class:`~sharpspring_sync.cache.LocalLeadCache`.

    ``full`` forces a full refresh (``""``). An ``override`` of ``"-"`` skips
    refreshing; any other override must be a timestamp. Without either, the
    last cache update time from ``state`` is used, or a full refresh if there
    is none.
    """

    if full:
        return REFRESH_FULL
    if override:
        if override == REFRESH_SKIP:
            return REFRESH_SKIP
        if override == REFRESH_SKIP_ALL:
            raise ValueError(f"Refresh timestamp must not be '{REFRESH_SKIP_ALL}'.")
        return parse_timestamp(override).strftime(DATE_FORMAT)
    if state.last_cache_update is None:
        return REFRESH_FULL
    since = state.last_cache_update.timestamp() - CACHE_UPDATE_OVERLAP
    return datetime.fromtimestamp(since).strftime(DATE_FORMAT)


__all__ = ["CACHE_UPDATE_OVERLAP", "StateFile", "SyncState", "parse_timestamp", "refresh_since_from"]
