"""Conversion between lead property names and Sharpspring field system names."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Union

from .models import LEAD_SCHEMA, LeadSchema, Record, SourceLead

LeadLike = Union[SourceLead, Mapping[str, Any]]


class FieldMapping:
    """Per-connection mapping of custom lead properties to field system names.

    Custom fields in Sharpspring have generated system names like
    ``source_id_5a7f3c2d1e``; callers refer to them by a readable property
    name (``sourceId``) and pass one of these objects around explicitly.
    """

    def __init__(
        self,
        custom_properties: Optional[Mapping[str, str]] = None,
        *,
        schema: LeadSchema = LEAD_SCHEMA,
    ) -> None:
        self._to_system: Dict[str, str] = dict(custom_properties or {})
        self._to_property: Dict[str, str] = {system: prop for prop, system in self._to_system.items()}
        self.schema = schema

    @property
    def custom_properties(self) -> Dict[str, str]:
        return dict(self._to_system)

    def system_name(self, property_name: str) -> str:
        return self._to_system.get(property_name, property_name)

    def property_name(self, system_name: str) -> str:
        return self._to_property.get(system_name, system_name)

    def to_api(self, lead: LeadLike) -> Record:
        """Return a record that the REST API accepts as create/update input.

        For a :class:`SourceLead`, ``None`` on a non-nullable field means "not
        set" and is left out. Mappings are taken as-is, except that an empty
        string on a nullable field is removed because the API would reject it
        (while returning it itself). Converting twice gives the same result.
        """

        if isinstance(lead, SourceLead):
            values = {
                name: value
                for name, value in lead.values.items()
                if value is not None or self.schema.is_nullable(self.system_name(name))
            }
        elif isinstance(lead, Mapping):
            values = dict(lead)
        else:
            raise TypeError(f"Invalid input lead of type {type(lead).__name__}")

        record: Record = {}
        for name, value in values.items():
            system_name = self.system_name(name)
            if value == "" and self.schema.is_nullable(system_name):
                continue
            record[system_name] = value
        return record

    def convert_system_names(self, api_record: Mapping[str, Any]) -> Record:
        """Return ``api_record`` with custom field system names replaced by property names."""

        return {self.property_name(name): value for name, value in api_record.items()}

    def to_source_lead(self, api_record: Mapping[str, Any]) -> SourceLead:
        return SourceLead(values=self.convert_system_names(api_record))


__all__ = ["FieldMapping", "LeadLike"]
