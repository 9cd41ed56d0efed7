"""Sharpspring REST API client with a local lead cache and a lead sync job."""

from . import models  # noqa: F401
from .cache import LocalLeadCache
from .connection import Connection
from .exceptions import ProtocolFormatError, SharpSpringError, SharpSpringRestApiError, TransportError
from .mapping import FieldMapping
from .models import ActionCode, LEAD_SCHEMA, LeadSchema, SourceLead
from .results import ApiLevelFailure, ObjectLevelFailure, Ok
from .storage import MemoryStore, SqliteStore
from .sync import ClashResolver, SyncJob
from .transport import SharpSpringClient

__all__ = [
    "ActionCode",
    "ApiLevelFailure",
    "ClashResolver",
    "Connection",
    "FieldMapping",
    "LEAD_SCHEMA",
    "LeadSchema",
    "LocalLeadCache",
    "MemoryStore",
    "ObjectLevelFailure",
    "Ok",
    "ProtocolFormatError",
    "SharpSpringClient",
    "SharpSpringError",
    "SharpSpringRestApiError",
    "SqliteStore",
    "SourceLead",
    "SyncJob",
    "TransportError",
    "ingestion",
    "sync",
]
