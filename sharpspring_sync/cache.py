"""Local copy of Sharpspring leads with reverse lookups by e-mail and foreign key.

Sharpspring has no way of querying leads by a custom field, and querying by
e-mail one lead at a time is slow and quota hungry. :class:`LocalLeadCache`
keeps all (active) leads in a key-value store, keyed by Sharpspring id, and
builds in-memory indexes from it. It also proxies the lead methods of
:class:`~sharpspring_sync.connection.Connection` so that every lead fetched
or written through it updates the store and indexes before returning.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from .compare import compare_against
from .connection import Connection
from .exceptions import SharpSpringRestApiError
from .mapping import FieldMapping
from .models import Record
from .results import CallResult, capture
from .storage import KeyValueStore, iter_all

LOGGER = logging.getLogger(__name__)

# Refresh mode values for ``refresh_since``.
REFRESH_FULL = ""
REFRESH_SKIP = "-"
REFRESH_SKIP_ALL = "--"


class LocalLeadCache:
    """Cache of Sharpspring leads backed by a :class:`KeyValueStore`.

    ``refresh_since`` decides what happens on construction:

    * ``""`` / ``None``: empty the store and fetch all leads (full refresh);
    * a ``'Y-m-d H:i:s'`` timestamp: index the store, then fetch leads
      updated since then;
    * ``"-"``: only index the store;
    * ``"--"``: do nothing; lookups by e-mail / foreign key will not work
      until :meth:`rebuild_indexes` is called.
    """

    LEADS_GET_LIMIT = 500
    STORE_BATCH_SIZE = 1024

    def __init__(
        self,
        connection: Connection,
        store: KeyValueStore,
        refresh_since: Optional[str] = REFRESH_FULL,
        *,
        foreign_key: Optional[str] = None,
        cached_properties: Sequence[str] = (),
        mapping: Optional[FieldMapping] = None,
    ) -> None:
        self.connection = connection
        self.mapping = mapping or connection.mapping
        self.store = store
        self.foreign_key = foreign_key
        self.cached_properties = list(cached_properties)
        self._ids_by_email: Dict[str, List[str]] = {}
        self._ids_by_foreign_key: Dict[str, List[str]] = {}
        self._index_keys: Dict[str, Tuple[Optional[str], Optional[str]]] = {}
        self._property_cache: Dict[str, List[Any]] = {}

        refresh_since = refresh_since or REFRESH_FULL
        # A full refresh empties the store anyway.
        if refresh_since not in (REFRESH_FULL, REFRESH_SKIP_ALL):
            self.rebuild_indexes()
        if refresh_since not in (REFRESH_SKIP, REFRESH_SKIP_ALL):
            self.populate(refresh_since)

    # -- population ---------------------------------------------------------

    def _reset_indexes(self) -> None:
        self._ids_by_email = {}
        self._ids_by_foreign_key = {}
        self._index_keys = {}
        self._property_cache = {}

    def rebuild_indexes(self) -> None:
        """Rebuild the in-memory indexes from the full contents of the store."""

        self._reset_indexes()
        for key, lead in iter_all(self.store, self.STORE_BATCH_SIZE):
            if not isinstance(lead, Mapping):
                raise ValueError(f"Lead value {key} in key-value store is not a mapping: {lead!r}")
            self._update_indexes(lead)

    def populate(self, since: Optional[str] = REFRESH_FULL) -> None:
        """Fetch leads from Sharpspring into the cache.

        Without ``since`` the store is emptied and all leads are fetched;
        otherwise leads updated since that time are merged in. Pages of
        :attr:`LEADS_GET_LIMIT` are fetched until a short page comes back.
        """

        if not since:
            self.store.delete_all()
            self._reset_indexes()

        offset = 0
        while True:
            if since:
                leads = self.get_leads_date_range(since, "", "update", self.LEADS_GET_LIMIT, offset)
            else:
                leads = self.get_leads(None, self.LEADS_GET_LIMIT, offset)
            if len(leads) != self.LEADS_GET_LIMIT:
                break
            offset += self.LEADS_GET_LIMIT

    cache_all_leads = populate

    def iter_leads(self) -> Iterator[Record]:
        """Yield every lead in the store."""

        for _, lead in iter_all(self.store, self.STORE_BATCH_SIZE):
            yield lead

    # -- comparison ---------------------------------------------------------

    def compare_lead(self, candidate: Any, check_remotely: bool = True) -> Record:
        """Compare a candidate lead with its Sharpspring counterpart(s).

        The counterpart is found by id if the candidate has one, else by
        foreign key, else by e-mail address. Returns ``{}`` if nothing was
        found, otherwise the result of
        :func:`~sharpspring_sync.compare.compare_against`: the Sharpspring id
        plus the old values of all differing fields.
        """

        record = self.mapping.to_api(candidate)
        leads: List[Record] = []
        if record.get("id"):
            lead = self.get_lead(record["id"], check_remotely)
            if lead:
                leads = [lead]
        else:
            fk_value = record.get(self.foreign_key) if self.foreign_key else None
            if fk_value:
                leads = self.get_leads_by_foreign_key(fk_value)
            if not leads and record.get("emailAddress"):
                leads = self.get_leads_by_email(record["emailAddress"], check_remotely)
            elif not fk_value:
                raise ValueError("The provided lead has no ID / e-mail values.")

        return compare_against(record, leads, self.mapping.schema)

    # -- lookups ------------------------------------------------------------

    def get_property_value(self, name: str, lead_id: Any, check_remotely: bool = True) -> Any:
        cached = self._property_cache.get(str(lead_id))
        if cached is not None and name in self.cached_properties:
            return cached[self.cached_properties.index(name)]
        return self.get_lead(lead_id, check_remotely).get(name)

    def get_leads_by_email(self, email: str, check_remotely: bool = True) -> List[Record]:
        email = email.lower()
        ids = self._ids_by_email.get(email)
        leads: List[Record] = []
        if ids:
            for lead_id in list(ids):
                lead = self.get_lead(lead_id)
                if lead:
                    leads.append(lead)
                else:
                    LOGGER.error(
                        "LocalLeadCache internal error: Sharpspring object %s not found, while its id was cached by e-mail %s.",
                        lead_id,
                        email,
                    )
        elif check_remotely:
            leads = self.get_leads({"emailAddress": email})
            for lead in leads:
                if lead.get("active"):
                    LOGGER.info(
                        "Sharpspring object with e-mail %s (%s) was just retrieved remotely and is active. Apparently the local cache is out of date.",
                        email,
                        lead.get("id"),
                    )
        return leads

    def get_leads_by_foreign_key(self, fk_value: Any) -> List[Record]:
        """Return leads by foreign key. Never calls Sharpspring."""

        leads: List[Record] = []
        for lead_id in list(self._ids_by_foreign_key.get(str(fk_value), [])):
            lead = self.get_lead(lead_id)
            if lead:
                leads.append(lead)
            else:
                LOGGER.error(
                    "LocalLeadCache internal error: Sharpspring object %s not found, while its id was cached by foreign key %s.",
                    lead_id,
                    fk_value,
                )
        return leads

    def get_lead(self, lead_id: Any, check_remotely: bool = True) -> Record:
        lead = self.store.get(lead_id, {})
        if not isinstance(lead, Mapping):
            raise ValueError(f"Lead value {lead_id} in key-value store is not a mapping: {lead!r}")
        if not lead and check_remotely:
            lead = self.get_lead_remote(lead_id)
            if lead.get("active"):
                LOGGER.info(
                    "Sharpspring object %s was just retrieved remotely and is active. Apparently the local cache is out of date.",
                    lead_id,
                )
        return dict(lead)

    # -- remote calls that update the cache ---------------------------------

    def get_lead_remote(self, lead_id: Any) -> Record:
        lead = self.connection.get_lead(lead_id)
        if lead:
            self.cache_lead(lead)
        else:
            self.uncache_lead({"id": lead_id})
        return lead

    def get_leads(
        self,
        where: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Record]:
        leads = self.connection.get_leads(where, limit, offset)
        if leads:
            for lead in leads:
                self.cache_lead(lead)
        elif where:
            self.uncache_lead(where)
        return leads

    def get_leads_date_range(
        self,
        start_date: str,
        end_date: str = "",
        time_type: str = "update",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Record]:
        leads = self.connection.get_leads_date_range(start_date, end_date, time_type, limit, offset)
        for lead in leads:
            self.cache_lead(lead)
        return leads

    def create_lead(self, lead: Any) -> Dict[str, Any]:
        result = self.connection.create_lead(lead)
        record = self.mapping.to_api(lead)
        record["id"] = result["id"]
        self.cache_lead(record)
        return result

    def create_leads(self, leads: Sequence[Any]) -> List[Any]:
        leads = list(leads)
        try:
            result = self.connection.create_leads(leads)
        except SharpSpringRestApiError as exc:
            if exc.is_batch_wrapper:
                for lead, outcome in zip(leads, exc.data):
                    if isinstance(outcome, Mapping) and outcome.get("success"):
                        record = self.mapping.to_api(lead)
                        record["id"] = outcome.get("id")
                        self.cache_lead(record)
            raise
        for lead, outcome in zip(leads, result):
            record = self.mapping.to_api(lead)
            record["id"] = outcome.get("id")
            self.cache_lead(record)
        return result

    def update_lead(self, lead: Any) -> Dict[str, Any]:
        result = self.connection.update_lead(lead)
        self._cache_updated(lead)
        return result

    def update_leads(self, leads: Sequence[Any]) -> List[Any]:
        leads = list(leads)
        try:
            result = self.connection.update_leads(leads)
        except SharpSpringRestApiError as exc:
            if exc.is_batch_wrapper:
                for lead, outcome in zip(leads, exc.data):
                    if isinstance(outcome, Mapping) and outcome.get("success"):
                        self._cache_updated(lead)
            raise
        for lead in leads:
            self._cache_updated(lead)
        return result

    def submit_leads(self, leads: Sequence[Any], method: str) -> CallResult:
        """Create or update leads, returning a tagged result."""

        func = self.create_leads if method == "createLeads" else self.update_leads
        return capture(func, leads)

    def delete_lead(self, lead_id: Any) -> Dict[str, Any]:
        result = self.connection.delete_lead(lead_id)
        self.uncache_lead({"id": lead_id})
        return result

    def delete_leads(self, lead_ids: Sequence[Any]) -> List[Any]:
        lead_ids = list(lead_ids)
        try:
            result = self.connection.delete_leads(lead_ids)
        except SharpSpringRestApiError as exc:
            if exc.is_batch_wrapper:
                for lead_id, outcome in zip(lead_ids, exc.data):
                    if isinstance(outcome, Mapping) and outcome.get("success"):
                        self.uncache_lead({"id": lead_id})
            raise
        for lead_id in lead_ids:
            self.uncache_lead({"id": lead_id})
        return result

    # -- cache maintenance --------------------------------------------------

    def _cache_updated(self, lead: Any) -> None:
        record = self.mapping.to_api(lead)
        if record.get("id"):
            original = self.get_lead(record["id"], False)
        else:
            matches = self.get_leads_by_email(record.get("emailAddress") or "", False)
            original = matches[0] if matches else {}
        self.cache_lead({**original, **record})

    def cache_lead(self, lead: Mapping[str, Any]) -> None:
        if not lead.get("id"):
            LOGGER.critical(
                "LocalLeadCache internal coding error: Sharpspring object %s has no 'id' value in cache_lead().",
                lead.get("emailAddress") or dict(lead),
            )
            return
        self._update_indexes(lead)
        self.store.set(lead["id"], dict(lead))

    def uncache_lead(self, where: Mapping[str, Any]) -> None:
        """Remove leads matching an e-mail address or id from store and indexes."""

        by_email = "emailAddress" in where
        if by_email:
            ids = self._ids_by_email.pop(str(where["emailAddress"]).lower(), [])
        elif "id" in where:
            ids = [str(where["id"])]
        else:
            return

        for lead_id in ids:
            email_key, fk_key = self._index_keys.pop(lead_id, (None, None))
            if email_key and not by_email:
                self._remove_from_index(self._ids_by_email, email_key, lead_id)
            if fk_key:
                self._remove_from_index(self._ids_by_foreign_key, fk_key, lead_id)
            self._property_cache.pop(lead_id, None)
        self.store.delete_multiple(ids)

    def _update_indexes(self, lead: Mapping[str, Any]) -> None:
        lead_id = str(lead["id"])
        previous_email, previous_fk = self._index_keys.get(lead_id, (None, None))

        fk_key = None
        if self.foreign_key and lead.get(self.foreign_key):
            fk_key = str(lead[self.foreign_key])
            self._add_to_index(self._ids_by_foreign_key, fk_key, lead_id, logging.WARNING, "foreign key")
        if previous_fk and previous_fk != fk_key:
            self._remove_from_index(self._ids_by_foreign_key, previous_fk, lead_id)

        email_key = str(lead["emailAddress"]).lower() if lead.get("emailAddress") else None
        if email_key:
            self._add_to_index(self._ids_by_email, email_key, lead_id, logging.ERROR, "e-mail")
        if previous_email and previous_email != email_key:
            self._remove_from_index(self._ids_by_email, previous_email, lead_id)

        self._index_keys[lead_id] = (email_key, fk_key)

        values: List[Any] = []
        for name in self.cached_properties:
            if name not in lead:
                LOGGER.warning("Sharpspring object %s contains no %s property; is this possible?", lead_id, name)
            values.append(lead.get(name))
        self._property_cache[lead_id] = values

    @staticmethod
    def _add_to_index(index: Dict[str, List[str]], key: str, lead_id: str, level: int, kind: str) -> None:
        ids = index.setdefault(key, [])
        if lead_id in ids:
            return
        if ids:
            LOGGER.log(level, "Duplicate leads found for %s %s. First is %s, now adding %s.", kind, key, ids[0], lead_id)
        ids.append(lead_id)

    @staticmethod
    def _remove_from_index(index: Dict[str, List[str]], key: str, lead_id: str) -> None:
        ids = [value for value in index.get(key, []) if value != lead_id]
        if ids:
            index[key] = ids
        else:
            index.pop(key, None)


__all__ = ["LocalLeadCache", "REFRESH_FULL", "REFRESH_SKIP", "REFRESH_SKIP_ALL"]
