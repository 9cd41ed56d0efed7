"""Lead synchronization job and its clash resolution."""

from .job import LEADS_UPDATE_LIMIT, SyncJob, display_items
from .resolver import ClashResolver
from .state import StateFile, SyncState, refresh_since_from

__all__ = [
    "ClashResolver",
    "LEADS_UPDATE_LIMIT",
    "StateFile",
    "SyncJob",
    "SyncState",
    "display_items",
    "refresh_since_from",
]
