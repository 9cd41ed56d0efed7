"""Data models for Sharpspring leads, sync actions and sync accounting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Tuple

Record = Dict[str, Any]


# --- Lead schema ---

@dataclass(frozen=True)
class LeadSchema:
    """Field categories of a Sharpspring lead, held as data.

    Fields not listed as ``nullable`` are returned as null by the API on fresh
    records but rejected as explicit null on update, so null and the empty
    string must be treated as the same value for them.
    """

    version: str
    fields: Tuple[str, ...]
    required_on_create: Tuple[str, ...] = ()
    nullable: Tuple[str, ...] = ()
    volatile: Tuple[str, ...] = ()
    id_field: str = "id"
    email_field: str = "emailAddress"

    def is_nullable(self, name: str) -> bool:
        return name in self.nullable

    def is_known(self, name: str) -> bool:
        return name in self.fields


LEAD_SCHEMA = LeadSchema(
    version="1.117",
    fields=(
        "id",
        "emailAddress",
        "ownerID",
        "accountID",
        "active",
        "isUnsubscribed",
        "leadStatus",
        "leadScore",
        "firstName",
        "lastName",
        "title",
        "companyName",
        "industry",
        "website",
        "street",
        "city",
        "country",
        "state",
        "zipcode",
        "phoneNumber",
        "phoneNumberExtension",
        "officePhoneNumber",
        "mobilePhoneNumber",
        "faxNumber",
        "description",
        "updateTimestamp",
    ),
    required_on_create=("emailAddress",),
    nullable=("accountID", "ownerID", "isUnsubscribed", "active"),
    volatile=("updateTimestamp",),
)


class LeadStatus:
    """Known values of the ``leadStatus`` field."""

    UNQUALIFIED = "unqualified"
    OPEN = "open"
    QUALIFIED = "qualified"
    CONTACT = "contact"
    # Set by Sharpspring once an opportunity is attached; cannot be changed
    # back to CONTACT through the API.
    CONTACT_WITH_OPP = "contactWithOpp"


# --- Sync actions ---

class ActionCode(IntEnum):
    """What the sync job will do with a candidate lead.

    The integer order is significant: when two candidates target the same
    Sharpspring lead, the one with the higher code wins.
    """

    CLASH_INACTIVE = 1
    CLASH = 2
    INVALID = 3
    DEACTIVATE_NOT_PRESENT = 4
    DEACTIVATE = 5
    NEW = 6
    UPDATE_ID = 7
    UPDATE_EMAIL = 8
    UPDATE = 9
    EQUAL = 10

    @property
    def label(self) -> str:
        return self.name.lower()


SOURCE_ID_PROPERTY = "sourceId"


@dataclass(slots=True)
class SourceLead:
    """A candidate lead built from a source system record.

    ``values`` is keyed by lead property names; custom properties (like
    ``sourceId``) are converted to field system names by a
    :class:`~sharpspring_sync.mapping.FieldMapping` before being sent.
    """

    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def source_id(self) -> Any:
        return self.values.get(SOURCE_ID_PROPERTY)

    @property
    def id(self) -> Any:
        return self.values.get("id")

    @id.setter
    def id(self, value: Any) -> None:
        self.values["id"] = value

    @property
    def email(self) -> Optional[str]:
        return self.values.get("emailAddress")

    @property
    def active(self) -> Any:
        return self.values.get("active")

    def get(self, name: str, default: Any = None) -> Any:
        return self.values.get(name, default)

    def describe(self) -> str:
        """Return "First Last / Company (email)" for log messages."""

        name = " ".join(filter(None, [self.values.get("firstName"), self.values.get("lastName")])) or "?"
        if self.values.get("companyName"):
            name += f" / {self.values['companyName']}"
        if self.email:
            name += f" ({self.email})"
        return name


@dataclass
class PreprocessedItem:
    """A candidate lead together with the action decided for it."""

    lead: SourceLead
    sharpspring_id: Any
    action: ActionCode
    diff: Record = field(default_factory=dict)


# --- Accounting ---

@dataclass
class SyncAccounting:
    """Per-run counters; every candidate ends up in exactly one list.

    ``remove`` is the exception: it is a subset of ``sent``/``error`` holding
    source ids of leads deactivated because they vanished from the source.
    """

    sent: Dict[Any, Any] = field(default_factory=dict)
    sent_without_id: List[Any] = field(default_factory=list)
    error: List[Any] = field(default_factory=list)
    skipped: List[Any] = field(default_factory=list)
    equal: List[Any] = field(default_factory=list)
    inactive: List[Any] = field(default_factory=list)
    dupes_ignored: List[Any] = field(default_factory=list)
    remove: List[Any] = field(default_factory=list)
    updated_values: Dict[Any, Dict[str, Any]] = field(default_factory=dict)

    @property
    def sent_count(self) -> int:
        return len(self.sent) + len(self.sent_without_id)

    def record_sent(self, sharpspring_id: Any, source_id: Any, lead: Optional[SourceLead] = None) -> None:
        """Record a lead as sent; pass ``lead`` for updates to remember values."""

        if not sharpspring_id:
            self.sent_without_id.append(source_id)
            return
        self.sent[sharpspring_id] = source_id
        if lead is not None:
            values = self.updated_values.setdefault(sharpspring_id, {})
            values["emailAddress"] = lead.email
            if lead.active is not None:
                values["active"] = lead.active

    def all_sent_source_ids(self) -> List[Any]:
        return list(self.sent.values()) + list(self.sent_without_id)


@dataclass
class SyncReport:
    """Outcome of one synchronization run."""

    message: str
    accounting: SyncAccounting
    items: List[PreprocessedItem] = field(default_factory=list)
    logs: List[str] = field(default_factory=list)


__all__ = [
    "ActionCode",
    "LEAD_SCHEMA",
    "LeadSchema",
    "LeadStatus",
    "PreprocessedItem",
    "Record",
    "SOURCE_ID_PROPERTY",
    "SourceLead",
    "SyncAccounting",
    "SyncReport",
]
