"""Shared fakes: a scripted client and an in-memory Sharpspring lead server."""
from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import pytest

from sharpspring_sync.connection import DATE_FORMAT, Connection
from sharpspring_sync.mapping import FieldMapping

OLD_TIMESTAMP = "2020-01-01 00:00:00"
SOURCE_FIELD = "source_id_5a7f"


def envelope(result: Any = None, error: Any = None, **extra: Any) -> Dict[str, Any]:
    response = {"id": "test", "result": result, "error": error}
    response.update(extra)
    return response


class FakeClient:
    """Returns queued envelopes per method, or delegates to a handler."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self._queues: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {}

    def queue(self, method: str, response: Dict[str, Any]) -> None:
        self._queues[method].append(response)

    def handle(self, method: str, handler: Callable[[Dict[str, Any]], Dict[str, Any]]) -> None:
        self._handlers[method] = handler

    def methods_called(self) -> List[str]:
        return [method for method, _ in self.calls]

    def call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append((method, params))
        if self._queues[method]:
            return self._queues[method].pop(0)
        if method in self._handlers:
            return self._handlers[method](params)
        raise AssertionError(f"Unexpected call to {method} with {params}")


class FakeSharpSpring(FakeClient):
    """Minimal lead store behaving like the REST API for the lead methods.

    Changing a lead's e-mail to an address another lead already has is
    reported as success without changing anything, like the real API does.
    """

    def __init__(self, leads: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__()
        self.leads: Dict[str, Dict[str, Any]] = {}
        self.next_id = 1000
        for lead in leads or []:
            record = {"active": 1, "leadStatus": "contact", "updateTimestamp": OLD_TIMESTAMP}
            record.update(lead)
            self.leads[str(record["id"])] = record
        for method in ("getLead", "getLeads", "getLeadsDateRange", "createLeads", "updateLeads", "deleteLeads"):
            self.handle(method, getattr(self, f"_{method}"))

    def _owner_of(self, email: str) -> Optional[Dict[str, Any]]:
        for lead in self.leads.values():
            if str(lead.get("emailAddress", "")).lower() == email.lower():
                return lead
        return None

    @staticmethod
    def _page(leads: List[Dict[str, Any]], params: Dict[str, Any]) -> List[Dict[str, Any]]:
        offset = params.get("offset") or 0
        limit = params.get("limit")
        leads = leads[offset:]
        return leads[:limit] if limit is not None else leads

    def _getLead(self, params):
        lead = self.leads.get(str(params["id"]))
        return envelope({"lead": [dict(lead)] if lead else []})

    def _getLeads(self, params):
        where = params.get("where") or {}
        if where:
            leads = [
                lead
                for lead in self.leads.values()
                if all(str(lead.get(key, "")).lower() == str(value).lower() for key, value in where.items())
            ]
        else:
            leads = [lead for lead in self.leads.values() if lead.get("active")]
        return envelope({"lead": [dict(lead) for lead in self._page(leads, params)]})

    def _getLeadsDateRange(self, params):
        leads = [
            lead
            for lead in self.leads.values()
            if lead.get("active") and lead.get("updateTimestamp", OLD_TIMESTAMP) >= params["startDate"]
        ]
        return envelope({"lead": [dict(lead) for lead in self._page(leads, params)]})

    def _batch(self, key, entries, errors):
        return envelope({key: entries}, errors or None)

    def _createLeads(self, params):
        entries, errors = [], []
        for lead in params["objects"]:
            if self._owner_of(lead["emailAddress"]):
                error = {"code": 301, "message": "Entry already exists", "data": {"emailAddress": lead["emailAddress"]}}
                entries.append({"success": False, "error": error})
                errors.append(error)
                continue
            self.next_id += 1
            record = {"active": 1, "leadStatus": "contact"}
            record.update(lead)
            record["id"] = self.next_id
            record["updateTimestamp"] = datetime.now().strftime(DATE_FORMAT)
            self.leads[str(self.next_id)] = record
            entries.append({"success": True, "error": None, "id": self.next_id})
        return self._batch("creates", entries, errors)

    def _updateLeads(self, params):
        entries, errors = [], []
        for lead in params["objects"]:
            record = self.leads.get(str(lead.get("id")))
            if record is None:
                error = {"code": 302, "message": "Object does not exist", "data": {"id": lead.get("id")}}
                entries.append({"success": False, "error": error})
                errors.append(error)
                continue
            entries.append({"success": True, "error": None})
            owner = self._owner_of(lead["emailAddress"]) if lead.get("emailAddress") else None
            if owner is not None and owner is not record:
                continue
            record.update(lead)
            record["updateTimestamp"] = datetime.now().strftime(DATE_FORMAT)
        return self._batch("updates", entries, errors)

    def _deleteLeads(self, params):
        entries = []
        for lead in params["objects"]:
            self.leads.pop(str(lead["id"]), None)
            entries.append({"success": True, "error": None})
        return self._batch("deletes", entries, [])


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture()
def mapping() -> FieldMapping:
    return FieldMapping({"sourceId": SOURCE_FIELD})


@pytest.fixture()
def make_connection(mapping):
    def factory(client):
        return Connection(client, mapping=mapping)

    return factory


@pytest.fixture()
def make_server():
    return FakeSharpSpring
