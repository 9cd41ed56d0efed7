"""Decide what to do with each candidate lead, detecting clashes between candidates.

Source records are linked to Sharpspring leads by foreign key (the source
id stored in a custom field) or by e-mail address. Two candidates may end up
linked to the same Sharpspring lead, or may target the same e-mail address
(which Sharpspring keeps unique). Each candidate gets an
:class:`~sharpspring_sync.models.ActionCode`; when two candidates clash, the
one with the higher code is kept and the other is downgraded to ``CLASH``
(or ``CLASH_INACTIVE`` for deactivations, which are dropped silently).

Known limitation: detection of a source e-mail address being vacated by a
rename (the third check in :meth:`ClashResolver.classify`) depends on the
order of the candidates.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from ..cache import LocalLeadCache
from ..compare import is_equal
from ..models import ActionCode, PreprocessedItem, SourceLead

LOGGER = logging.getLogger(__name__)


def is_truthy(value: Any) -> bool:
    """Interpret API / spreadsheet flag values such as ``1``, ``"0"`` or ``"false"``."""

    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no")
    return bool(value)


def lead_is_active(lead: SourceLead) -> bool:
    """A candidate without an ``active`` value counts as active."""

    return lead.active is None or is_truthy(lead.active)


def log_and_store(report: List[str], level: int, message: str, *args: Any) -> None:
    """Log a message and keep it for the operator-facing run report."""

    LOGGER.log(level, message, *args)
    report.append(message % args if args else message)


class ClashResolver:
    """Classify candidate leads one by one, in source order.

    ``items`` holds the classified candidates; earlier items can still be
    downgraded by later ones. ``seen_ss_ids`` and ``seen_emails`` map a
    Sharpspring id / lowercased e-mail address to the position in ``items``
    of the candidate currently owning it.
    """

    def __init__(
        self,
        cache: LocalLeadCache,
        *,
        foreign_key: Optional[str] = None,
        check_remotely: bool = False,
        report: Optional[List[str]] = None,
    ) -> None:
        self.cache = cache
        self.foreign_key = foreign_key
        self.check_remotely = check_remotely
        self.report: List[str] = report if report is not None else []
        self.items: List[PreprocessedItem] = []
        self.seen_ss_ids: Dict[str, int] = {}
        self.seen_emails: Dict[str, int] = {}

    def classify(self, lead: SourceLead) -> Optional[PreprocessedItem]:
        """Classify ``lead`` and record it; return ``None`` if it needs no action because it is inactive."""

        code = 0
        active = lead_is_active(lead)
        if not lead.email:
            # Inactive contacts without e-mail are too common to be worth logging.
            if active:
                log_and_store(self.report, logging.ERROR, "Missing e-mail address for contact, skipping: %s", lead.describe())
            code = ActionCode.INVALID

        compare = self._compare(lead)

        if not compare:
            if not active:
                return None
            code = code or ActionCode.NEW
        else:
            if not active:
                if not is_truthy(compare.get("active")):
                    return None
                code = ActionCode.DEACTIVATE
                if "emailAddress" in compare and self.cache.get_leads_by_email(lead.email or "", False):
                    # Changing to an e-mail address that exists would fail silently.
                    lead.values.pop("emailAddress", None)
                    LOGGER.info(
                        "Source record %s is being deactivated and changing e-mail address, and starts at address %s. "
                        "The new e-mail address already exists in Sharpspring (on a lead with a different source id). "
                        "We will process the deactivation without changing e-mail.",
                        lead.describe(),
                        compare["emailAddress"],
                    )
            if not code:
                code = self._update_code(lead, compare)
            code = self._check_same_target(lead, compare, code)

        code = self._check_same_email(lead, code)
        self._check_vacated_email(lead, compare)

        if not code:
            raise RuntimeError(
                f"Internal error (code should be changed): could not determine what to do with contact {lead.describe()}."
            )

        key = len(self.items)
        item = PreprocessedItem(
            lead=lead,
            sharpspring_id=0 if code == ActionCode.NEW else compare.get("id", 0),
            action=ActionCode(code),
            diff=compare,
        )
        self.items.append(item)
        if compare:
            ss_id = str(compare["id"])
            if code > ActionCode.INVALID or ss_id not in self.seen_ss_ids:
                self.seen_ss_ids[ss_id] = key
        if lead.email:
            email = lead.email.lower()
            if code > ActionCode.INVALID or email not in self.seen_emails:
                self.seen_emails[email] = key
        return item

    def _compare(self, lead: SourceLead) -> Dict[str, Any]:
        if not lead.email and not lead.id and not lead.source_id:
            # Nothing to link on.
            return {}
        return self.cache.compare_lead(lead, self.check_remotely)

    def _update_code(self, lead: SourceLead, compare: Dict[str, Any]) -> ActionCode:
        if is_equal(compare):
            return ActionCode.EQUAL
        if "emailAddress" in compare:
            if self.cache.get_leads_by_email(lead.email or "", False):
                log_and_store(
                    self.report,
                    logging.WARNING,
                    "Source record %s is changing e-mail address and starts at address %s. The new e-mail address "
                    "already exists in Sharpspring (on a lead with a different source id). This update is skipped "
                    "and the leads should be reconciled manually",
                    lead.describe(),
                    compare["emailAddress"],
                )
            return ActionCode.UPDATE_EMAIL
        # A foreign key absent from the candidate counts as equal, so a diff
        # here means it is present and changed.
        if self.foreign_key and self.foreign_key in compare:
            return ActionCode.UPDATE_ID
        return ActionCode.UPDATE

    def _check_same_target(self, lead: SourceLead, compare: Dict[str, Any], code: int) -> int:
        """Resolve two candidates linked to the same Sharpspring lead."""

        if code <= ActionCode.CLASH:
            return code
        other_key = self.seen_ss_ids.get(str(compare["id"]))
        if other_key is None:
            return code
        other = self.items[other_key]

        if code == ActionCode.UPDATE_ID and other.action == ActionCode.UPDATE_EMAIL:
            # The other candidate renames the lead; this one gets a new lead.
            return ActionCode.NEW
        if code == ActionCode.UPDATE_EMAIL and other.action == ActionCode.UPDATE_ID:
            other.action = ActionCode.NEW
            other.sharpspring_id = 0
            return code
        if other.action > ActionCode.CLASH:
            if code <= other.action:
                if code == ActionCode.DEACTIVATE:
                    return ActionCode.CLASH_INACTIVE
                self._log_canceled_update(other.lead, lead, "linked to the same Sharpspring contact")
                return ActionCode.CLASH
            if other.action == ActionCode.DEACTIVATE:
                other.action = ActionCode.CLASH_INACTIVE
            else:
                self._log_canceled_update(lead, other.lead, "linked to the same Sharpspring contact")
                other.action = ActionCode.CLASH
        return code

    def _check_same_email(self, lead: SourceLead, code: int) -> int:
        """Resolve two candidates with the same target e-mail address."""

        if code <= ActionCode.CLASH or not lead.email:
            return code
        other_key = self.seen_emails.get(lead.email.lower())
        if other_key is None:
            return code
        other = self.items[other_key]
        if other.action > ActionCode.CLASH:
            if code <= other.action:
                self._log_canceled_update(other.lead, lead, "with the same e-mail address")
                return ActionCode.CLASH
            self._log_canceled_update(lead, other.lead, "with the same e-mail address")
            other.action = ActionCode.CLASH
        return code

    def _check_vacated_email(self, lead: SourceLead, compare: Dict[str, Any]) -> None:
        """Cancel an earlier rename to the address this candidate is moving away from."""

        old_email = compare.get("emailAddress")
        if not old_email or old_email.lower() == (lead.email or "").lower():
            return
        other_key = self.seen_emails.get(old_email.lower())
        if other_key is None:
            return
        other = self.items[other_key]
        if other.action > ActionCode.INVALID:
            log_and_store(
                self.report,
                logging.WARNING,
                "Source record %s is changing e-mail address and starts at address %s. This clashes with another "
                "record, whose update we are skipping and which should be checked/processed manually: %s",
                lead.describe(),
                old_email,
                other.lead.describe(),
            )
            other.action = ActionCode.CLASH

    def _log_canceled_update(self, kept: SourceLead, skipped: SourceLead, description: str) -> None:
        log_and_store(
            self.report,
            logging.WARNING,
            "Source system contains duplicate records %s: %s and %s. One of them should have Sharpspring "
            "synchronization disabled. We are skipping the latter.",
            description,
            kept.describe(),
            skipped.describe(),
        )


__all__ = ["ClashResolver", "is_truthy", "lead_is_active", "log_and_store"]
