"""One-way synchronization of source system contacts into Sharpspring leads.

A run goes through four phases:

1. :meth:`SyncJob.open_cache` refreshes the local lead cache;
2. :meth:`SyncJob.preprocess` decides an action per candidate (see
   :mod:`sharpspring_sync.sync.resolver`) and, for a full data set, adds
   deactivations for leads whose source record disappeared;
3. :meth:`SyncJob.build_batches` / :meth:`SyncJob.process_batch` send
   updates and creates in small batches;
4. :meth:`SyncJob.finish` fetches the leads updated since the start of the
   run to catch updates which the API reported as successful but silently
   ignored, and composes the summary message.

Updates are not transactional: other processes changing Sharpspring leads
between preprocessing and sending are not detected.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

from ..cache import REFRESH_SKIP, REFRESH_SKIP_ALL, LocalLeadCache
from ..compare import is_equal
from ..config import SyncSettings
from ..connection import DATE_FORMAT, Connection
from ..exceptions import SharpSpringError, SharpSpringRestApiError
from ..mapping import FieldMapping
from ..models import (
    SOURCE_ID_PROPERTY,
    ActionCode,
    LeadStatus,
    PreprocessedItem,
    Record,
    SourceLead,
    SyncAccounting,
    SyncReport,
)
from ..rate_limit import DelayPolicy
from ..results import ApiLevelFailure, ObjectLevelFailure, Ok
from ..storage import KeyValueStore
from .resolver import ClashResolver, is_truthy, lead_is_active, log_and_store
from .state import StateFile

LOGGER = logging.getLogger(__name__)

LEADS_UPDATE_LIMIT = 6
FINISH_FETCH_LIMIT = 5000
# Fields kept on leads deactivated because they vanished from the source.
_DEACTIVATE_FIELDS = ("id", "emailAddress", "firstName", "lastName", "companyName")


class SourceItem(Protocol):
    """A record from the source system that can be converted to a candidate lead."""

    source_id: Any

    def to_lead(self) -> Optional[SourceLead]:  # pragma: no cover - runtime protocol
        """Return the candidate lead, or ``None`` if the record cannot be converted."""


SourceInput = Union[SourceItem, SourceLead]


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural.format(count=count)


class SyncJob:
    """Synchronizes candidate leads into Sharpspring through a :class:`LocalLeadCache`."""

    def __init__(
        self,
        connection: Connection,
        store: KeyValueStore,
        settings: Optional[SyncSettings] = None,
        *,
        state: Optional[StateFile] = None,
        delay_policy: Optional[DelayPolicy] = None,
    ) -> None:
        self.connection = connection
        self.store = store
        self.settings = settings or SyncSettings()
        self.state = state or StateFile(self.settings.state_file)
        self.delay_policy = delay_policy or DelayPolicy(self.settings.update_wait)
        self.mapping: FieldMapping = connection.mapping
        self.foreign_key = self.mapping.system_name(SOURCE_ID_PROPERTY)
        self.cache: Optional[LocalLeadCache] = None
        self.started_at: Optional[datetime] = None
        self.accounting = SyncAccounting()
        self.items: List[PreprocessedItem] = []
        self.logs: List[str] = []

    # -- phase 1 ------------------------------------------------------------

    def open_cache(self, refresh_since: Optional[str] = "") -> LocalLeadCache:
        """Construct the lead cache, refreshing it as ``refresh_since`` says.

        The start time of the run is taken before the refresh; it is stored as
        the last cache update time and used by :meth:`finish`.
        """

        if refresh_since == REFRESH_SKIP_ALL:
            raise ValueError(f"Refresh timestamp must not be '{REFRESH_SKIP_ALL}'.")
        started_at = datetime.now()
        self.cache = LocalLeadCache(
            self.connection,
            self.store,
            refresh_since,
            foreign_key=self.foreign_key,
            mapping=self.mapping,
        )
        if refresh_since != REFRESH_SKIP:
            self.state.set_last_cache_update(started_at)
        self.started_at = started_at
        return self.cache

    def _require_cache(self) -> LocalLeadCache:
        if self.cache is None:
            raise RuntimeError("The lead cache is not open; call open_cache() first.")
        return self.cache

    # -- phase 2 ------------------------------------------------------------

    def preprocess(self, records: Iterable[SourceInput], *, full_dataset: bool = False) -> List[PreprocessedItem]:
        """Classify all candidates; return the items in source order."""

        cache = self._require_cache()
        resolver = ClashResolver(
            cache,
            foreign_key=self.foreign_key,
            check_remotely=self.settings.doublecheck_remotely,
            report=self.logs,
        )
        seen_source_ids = set()
        for record in records:
            lead = record if isinstance(record, SourceLead) else record.to_lead()
            source_id = lead.source_id if lead is not None else record.source_id
            if full_dataset and source_id is not None:
                seen_source_ids.add(str(source_id))
            if lead is None:
                # Conversion failures are logged by the converter.
                self.accounting.skipped.append(source_id)
                continue

            lead.values["leadStatus"] = LeadStatus.CONTACT
            if resolver.classify(lead) is None:
                self.accounting.inactive.append(source_id)

        items = resolver.items
        if full_dataset:
            items.extend(self._deactivate_not_present(cache, resolver.seen_ss_ids, seen_source_ids))
        self.items = items
        return items

    def _deactivate_not_present(
        self,
        cache: LocalLeadCache,
        seen_ss_ids: Mapping[str, int],
        seen_source_ids: Iterable[str],
    ) -> List[PreprocessedItem]:
        seen_source_ids = set(seen_source_ids)
        items: List[PreprocessedItem] = []
        for record in cache.iter_leads():
            fk_value = record.get(self.foreign_key)
            if (
                str(record.get("id")) in seen_ss_ids
                or not fk_value
                or str(fk_value) in seen_source_ids
                or not is_truthy(record.get("active"))
                or record.get("leadStatus") not in (LeadStatus.CONTACT, LeadStatus.CONTACT_WITH_OPP)
            ):
                continue
            self.accounting.remove.append(fk_value)
            values: Record = {name: record[name] for name in _DEACTIVATE_FIELDS if name in record}
            values[self.foreign_key] = fk_value
            values["active"] = 0
            items.append(
                PreprocessedItem(
                    lead=self.mapping.to_source_lead(values),
                    sharpspring_id=record["id"],
                    action=ActionCode.DEACTIVATE_NOT_PRESENT,
                )
            )
        return items

    # -- phase 3 ------------------------------------------------------------

    def build_batches(self, items: Sequence[PreprocessedItem]) -> List[List[SourceLead]]:
        """Account for items that won't be sent; chunk the rest, updates first."""

        updates: List[SourceLead] = []
        creates: List[SourceLead] = []
        for item in items:
            source_id = item.lead.source_id
            if item.action == ActionCode.CLASH_INACTIVE:
                self.accounting.dupes_ignored.append(source_id)
            elif item.action in (ActionCode.CLASH, ActionCode.INVALID):
                self.accounting.skipped.append(source_id)
            elif item.action == ActionCode.EQUAL:
                self.accounting.equal.append(source_id)
            elif item.action == ActionCode.NEW:
                if item.sharpspring_id:
                    raise RuntimeError(
                        "Internal error (code should be changed): Item is marked as create but is still marked "
                        f"internally as having a Sharpspring ID {item.sharpspring_id}: {item.lead.values}"
                    )
                creates.append(item.lead)
            else:
                if not item.sharpspring_id:
                    raise RuntimeError(
                        "Internal error (code should be changed): Item is marked as update but still has no "
                        f"Sharpspring ID: {item.lead.values}"
                    )
                item.lead.id = item.sharpspring_id
                updates.append(item.lead)

        return _chunk(updates, LEADS_UPDATE_LIMIT) + _chunk(creates, LEADS_UPDATE_LIMIT)

    def process_batch(self, batch: Sequence[SourceLead]) -> None:
        """Send one batch of creates or updates and account for every lead in it."""

        if not batch:
            return
        create_new = not batch[0].id
        if any(bool(lead.id) == create_new for lead in batch):
            raise RuntimeError(
                "Invalid format for batch to process; it has 'create' and 'update' leads mixed up: "
                f"{[lead.values for lead in batch]}"
            )
        method = "createLeads" if create_new else "updateLeads"
        cache = self._require_cache()

        try:
            outcome = cache.submit_leads(batch, method)
        except SharpSpringError as exc:
            # Transport or protocol failure: nothing in the batch is known to be processed.
            self.accounting.error.extend(lead.source_id for lead in batch)
            LOGGER.error("Sharpspring REST API call %s threw: %s", method, exc)
            return

        if isinstance(outcome, Ok):
            results = list(outcome.value)
            for index, lead in enumerate(batch):
                result = results[index] if index < len(results) else {}
                self._record_sent(lead, result, create_new)
        elif isinstance(outcome, ObjectLevelFailure):
            for index, entry in enumerate(outcome.outcomes):
                self._process_object_result(batch[index], entry, method, create_new)
        elif isinstance(outcome, ApiLevelFailure):
            self.accounting.error.extend(lead.source_id for lead in batch)
            LOGGER.error(
                "Sharpspring REST API call %s threw: error with code %s / message '%s'",
                method,
                outcome.code,
                outcome.message,
            )

    def _ids(self, lead: SourceLead, result: Any) -> tuple:
        result_id = result.get("id") if isinstance(result, Mapping) else None
        ss_id = lead.id or result_id or ""
        src_id = lead.source_id or ss_id
        return (str(ss_id) if ss_id else ""), src_id

    def _record_sent(self, lead: SourceLead, result: Any, create_new: bool) -> None:
        ss_id, src_id = self._ids(lead, result)
        self.accounting.record_sent(ss_id, src_id, None if create_new else lead)

    def _process_object_result(self, lead: SourceLead, entry: Any, method: str, create_new: bool) -> None:
        ss_id, src_id = self._ids(lead, entry)
        try:
            self.connection.validate_object_result(entry)
        except SharpSpringRestApiError as exc:
            compare: Optional[Record] = None
            if exc.code in (301, 302):
                compare = self.recheck_equal_lead(lead)
            if compare and is_equal(compare):
                LOGGER.warning(
                    "Sharpspring REST API call %s on source id %s encountered error %s: %s. On further checking, "
                    "the lead in Sharpspring is already equal. This indicates that our local leads cache is "
                    "probably outdated.",
                    method,
                    src_id,
                    exc.code,
                    exc.message,
                )
            elif compare == {} and not lead_is_active(lead):
                LOGGER.warning(
                    "Sharpspring REST API call %s on source id %s encountered error %s: %s. On further checking, "
                    "the lead does not exist anymore in Sharpspring. This indicates that our local leads cache is "
                    "probably outdated.",
                    method,
                    src_id,
                    exc.code,
                    exc.message,
                )
            else:
                LOGGER.error("Sharpspring REST API call %s on source id %s encountered: %s", method, src_id, exc)
            self.accounting.error.append(src_id)
        except SharpSpringError as exc:
            LOGGER.error("Sharpspring REST API call %s on source id %s encountered: %s", method, src_id, exc)
            self.accounting.error.append(src_id)
        else:
            self.accounting.record_sent(ss_id, src_id, None if create_new else lead)

    def recheck_equal_lead(self, lead: SourceLead) -> Optional[Record]:
        """Check a lead remotely after a 'no-op' error.

        Returns ``None`` if the check could not be done, ``{}`` if the lead
        does not exist in Sharpspring, else the comparison result (refreshing
        the cache on the way).
        """

        cache = self._require_cache()
        try:
            if lead.id:
                found: Any = cache.get_lead_remote(lead.id)
            else:
                found = cache.get_leads({"emailAddress": lead.email})
            if not found:
                return {}
            return cache.compare_lead(lead, False)
        except SharpSpringError as exc:
            LOGGER.warning("Could not recheck lead %s in Sharpspring: %s", lead.describe(), exc)
            return None

    # -- phase 4 ------------------------------------------------------------

    def finish(self) -> str:
        """Doublecheck the sent leads, then return the summary message."""

        if self.accounting.sent:
            if self.started_at is None:
                LOGGER.error("Start timestamp was lost! Now we cannot doublecheck whether all updates actually succeeded.")
            else:
                self._doublecheck_sent()
        return self.summary()

    def _doublecheck_sent(self) -> None:
        cache = self._require_cache()
        since = self.started_at.strftime(DATE_FORMAT)
        new_timestamp = datetime.now()
        leads = cache.get_leads_date_range(since, "", "update", FINISH_FETCH_LIMIT)
        self.state.set_last_cache_update(new_timestamp)

        pending: Dict[Any, Any] = dict(self.accounting.sent)
        updated_values = self.accounting.updated_values
        for lead in leads:
            lead_id = str(lead.get("id"))
            source_email = updated_values.get(lead_id, {}).get("emailAddress")
            if source_email and source_email.lower() != str(lead.get("emailAddress") or "").lower():
                log_and_store(
                    self.logs,
                    logging.ERROR,
                    "Lead %s/%s has e-mail address %s in the source system, but could not be updated in "
                    "Sharpspring, probably because another lead with the same e-mail exists. This might get fixed "
                    "on the next process run; if it does not, it will need manual action.",
                    lead_id,
                    self.mapping.to_source_lead(lead).describe(),
                    source_email,
                )
                cache.get_leads_by_email(source_email)
            pending.pop(lead_id, None)

        # Deactivated leads are not returned by the date range query.
        for ss_id in list(pending):
            values = updated_values.get(ss_id, {})
            if "active" in values and not is_truthy(values["active"]):
                del pending[ss_id]

        if pending:
            log_and_store(
                self.logs,
                logging.ERROR,
                "%s out of %s updates that were apparently sent to Sharpspring, are still not found / updated in "
                "Sharpspring; this should be investigated! List of source / Sharpspring IDs: %s",
                len(pending),
                len(self.accounting.sent),
                ",".join(f"{src_id}/{ss_id}" for ss_id, src_id in pending.items()),
            )

    def summary(self) -> str:
        accounting = self.accounting
        sent = accounting.sent_count
        message = _plural(sent, "1 contact sent to Sharpspring", "{count} contacts sent to Sharpspring")
        if sent:
            LOGGER.debug("Synced to Sharpspring: %s (%s)", sent, ", ".join(map(str, accounting.all_sent_source_ids())))
        if accounting.remove:
            message += f", {len(accounting.remove)} of which were deactivated because apparently removed from the source system"
            LOGGER.debug(
                "Deactivated because apparently removed from the source system: %s (%s).",
                len(accounting.remove),
                ", ".join(map(str, accounting.remove)),
            )
        if accounting.skipped:
            message += f"; {len(accounting.skipped)} not sent because errors / update clashes seen beforehand"
            LOGGER.error(
                "Not sent to Sharpspring because errors / update clashes seen beforehand: %s (%s).",
                len(accounting.skipped),
                ", ".join(map(str, accounting.skipped)),
            )
        if accounting.error:
            message += "; " + _plural(
                len(accounting.error),
                "1 error encountered during sending",
                "{count} errors encountered during sending",
            )
            log_and_store(
                self.logs,
                logging.ERROR,
                "Summary of earlier detailed logs: errors encountered during sending: %s (%s).",
                len(accounting.error),
                ", ".join(map(str, accounting.error)),
            )
        if accounting.equal:
            message += f"; {len(accounting.equal)} not sent because seemingly equal"
        if accounting.inactive:
            message += f"; {len(accounting.inactive)} not sent because inactive"
        if accounting.dupes_ignored:
            message += f"; {len(accounting.dupes_ignored)} duplicate (inactive) contacts ignored"
        return message + "."

    # -- all phases ---------------------------------------------------------

    def run(
        self,
        records: Iterable[SourceInput],
        *,
        full_dataset: bool = False,
        refresh_since: Optional[str] = "",
    ) -> SyncReport:
        """Run a complete synchronization and return its report."""

        # Source data is read before the cache is refreshed: an older data set
        # with a current cache is fine, the reverse is not.
        records = list(records)
        self.open_cache(refresh_since)
        items = self.preprocess(records, full_dataset=full_dataset)
        batches = self.build_batches(items)
        for index, batch in enumerate(batches):
            if index:
                self.delay_policy.pause()
            self.process_batch(batch)
        message = self.finish()
        LOGGER.info(message)
        return SyncReport(message=message, accounting=self.accounting, items=items, logs=list(self.logs))


def _chunk(leads: List[SourceLead], size: int) -> List[List[SourceLead]]:
    return [leads[start : start + size] for start in range(0, len(leads), size)]


def display_items(
    items: Iterable[PreprocessedItem],
    *,
    mapping: Optional[FieldMapping] = None,
    include_equal: bool = True,
    include_clashes: bool = False,
    show_changed_values: bool = True,
) -> List[Dict[str, Any]]:
    """Return preprocessed items as rows for display instead of sending them.

    Changed values are rendered as ``<old> -> <new>`` (``-`` for an empty old
    value). Rows carry ``*ssid`` and ``*action code`` columns.
    """

    mapping = mapping or FieldMapping()
    rows: List[Dict[str, Any]] = []
    for item in items:
        if item.action == ActionCode.EQUAL and not include_equal:
            continue
        if item.action == ActionCode.CLASH_INACTIVE and not include_clashes:
            continue
        row: Dict[str, Any] = dict(item.lead.values)
        if show_changed_values and item.action != ActionCode.NEW and len(item.diff) > 1:
            for field_name, old_value in item.diff.items():
                if field_name == "id":
                    continue
                name = mapping.property_name(field_name)
                if old_value is None or old_value == "":
                    old_value = "-"
                row[name] = f"{old_value} -> {row.get(name, '')}"
        row["*ssid"] = item.sharpspring_id
        row["*action code"] = f"{int(item.action)}: {item.action.label}"
        rows.append(row)
    return rows


__all__ = ["FINISH_FETCH_LIMIT", "LEADS_UPDATE_LIMIT", "SourceItem", "SyncJob", "display_items"]
