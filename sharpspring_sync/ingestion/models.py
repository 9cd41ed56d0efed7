"""Data models used by source record ingestion."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..models import SOURCE_ID_PROPERTY, SourceLead

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SourceRecord:
    """Normalized representation of a contact imported from a source spreadsheet.

    ``properties`` holds further lead properties (``phoneNumber``, ``city``,
    custom properties, ...) keyed by lead property name. ``active`` is
    ``None`` when the source has no such column, which counts as active.
    """

    source_id: Optional[str] = None
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company: Optional[str] = None
    active: Optional[bool] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_lead(self) -> Optional[SourceLead]:
        """Convert to a candidate lead; ``None`` if there is no source id to link on."""

        if not self.source_id:
            LOGGER.warning("Skipping source record without id: %s", self.email or self.metadata)
            return None
        values: Dict[str, Any] = {
            SOURCE_ID_PROPERTY: self.source_id,
            "emailAddress": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "companyName": self.company,
        }
        values.update(self.properties)
        if self.active is not None:
            values["active"] = 1 if self.active else 0
        return SourceLead(values={name: value for name, value in values.items() if value is not None})


__all__ = ["SourceRecord"]
