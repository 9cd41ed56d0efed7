"""Sharpspring REST API connection: response interpretation and API methods.

Sharpspring responses come in an envelope ``{"id", "result", "error"}`` whose
shape is not consistently documented. :func:`classify_response` turns an
envelope into either a plain result value or one of three error kinds:

* :class:`~sharpspring_sync.exceptions.ProtocolFormatError` when the envelope
  has an unexpected structure;
* an API-level :class:`~sharpspring_sync.exceptions.SharpSpringRestApiError`
  when the call as a whole was rejected;
* an object-level error (code 0) wrapping the positional per-object results
  when at least one object in a batch call failed.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .exceptions import (
    CANDIDATE_INVALID_EMAIL,
    CANDIDATE_MISSING_EMAIL,
    CANDIDATE_NOT_A_LEAD,
    ProtocolFormatError,
    SharpSpringRestApiError,
    object_error,
)
from .mapping import FieldMapping
from .models import Record, SourceLead
from .results import CallResult, capture

LOGGER = logging.getLogger(__name__)

_KNOWN_RESPONSE_KEYS = {"id", "result", "error", "hasMore"}
_METHODS_WITHOUT_REQUIRED_WHERE = ("getEmailListing", "getEmailJobs")
_EMAIL_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~\-]+@[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9\-]*[A-Za-z0-9])?)+$")

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class ResponseExpectations:
    """What the caller knows about the shape of a method's response.

    ``single_result_key``: the result is a one-entry mapping holding the
    actual value under this key.
    ``validate_as_batch``: the call acted on ``params["objects"]``; validate
    the per-object results even if no error was reported.
    ``throw_per_object``: raise the first object's own error instead of a
    wrapper. Only set this for calls with a single object.
    """

    single_result_key: Optional[str] = None
    validate_as_batch: bool = False
    throw_per_object: bool = False


def _dump(value: Any) -> str:
    return json.dumps(value, default=str)


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value))


def validate_object_result(entry: Any) -> Any:
    """Validate one per-object result and return its ``success`` value.

    Raises an object-level :class:`SharpSpringRestApiError` carrying the
    object's own code / message / data if the entry reports an error.
    """

    if not isinstance(entry, Mapping) or entry.get("success") is None or "error" not in entry:
        raise ProtocolFormatError(
            "Sharpspring REST API failure: result that should reflect status of a single object does not "
            f"contain both error and success keys: {_dump(entry)}",
            111,
        )
    error = entry["error"]
    if error:
        if not isinstance(error, Mapping):
            raise ProtocolFormatError(f"Sharpspring REST API failure: object error is not a mapping: {_dump(entry)}", 111)
        raise SharpSpringRestApiError(
            error.get("message", ""),
            error.get("code", 0),
            error.get("data"),
            object_level=True,
        )
    return entry["success"]


def validate_result_for_objects(
    result: Any,
    objects: Sequence[Any],
    method: str = "",
    *,
    validate_individual_objects: bool = True,
    error_encountered: bool = False,
) -> List[Any]:
    """Check that ``result`` is a positional list with one entry per submitted object."""

    extra = " while evaluating object-level error(s)" if error_encountered else ""
    if isinstance(result, Mapping):
        entries = []
        for index, (key, value) in enumerate(result.items()):
            if str(key) != str(index):
                raise ProtocolFormatError(
                    f"Sharpspring REST API interpreter failure{extra}: result object was expected to have index "
                    f"{index}; {key} was found.\nResponse result for {method} call: {_dump(result)}",
                    103,
                )
            entries.append(value)
    elif isinstance(result, list):
        entries = list(result)
    else:
        raise ProtocolFormatError(
            f"Sharpspring REST API interpreter failure{extra}: the 'result' part of the response is not a list.\n"
            f"Response result for {method} call: {_dump(result)}",
            101,
        )

    if len(objects) != len(entries):
        raise ProtocolFormatError(
            f"Sharpspring REST API interpreter failure{extra}: the number of objects provided to the call "
            f"({len(objects)}) is different from the number of objects returned in the 'result' part of the "
            f"response ({len(entries)}).\nResponse result for {method} call: {_dump(result)}",
            102,
        )
    if validate_individual_objects:
        for entry in entries:
            validate_object_result(entry)
    return entries


def _strip_has_more(response: Dict[str, Any], method: str) -> Dict[str, Any]:
    result = response.get("result")
    if not isinstance(result, Mapping) or "hasMore" not in result:
        return response
    # Some methods return 'hasMore' both on the first level and inside the
    # result; only the first level one is kept.
    inner = result["hasMore"]
    if "hasMore" not in response:
        LOGGER.error(
            "'hasMore' indicator set in API response result from method %s, but not present on the first level of the response: %s",
            method,
            _dump(inner),
        )
    elif response["hasMore"] != inner:
        LOGGER.error(
            "'hasMore' value on the first level of the API response from method %s (%s) is different from 'hasMore' value in the response result (%s).",
            method,
            _dump(response["hasMore"]),
            _dump(inner),
        )
    stripped = dict(response)
    stripped["result"] = {key: value for key, value in result.items() if key != "hasMore"}
    return stripped


def classify_response(
    response: Mapping[str, Any],
    params: Mapping[str, Any],
    expectations: Optional[ResponseExpectations] = None,
    *,
    method: str = "",
) -> Any:
    """Interpret a decoded response envelope; return the result or raise."""

    expectations = expectations or ResponseExpectations()
    unknown = {key: value for key, value in response.items() if key not in _KNOWN_RESPONSE_KEYS}
    if unknown:
        LOGGER.info("Extra properties found in %s API response: %s", method, _dump(unknown))
    response = _strip_has_more(dict(response), method)

    error = response.get("error")
    if not error and response.get("result") is None:
        raise ProtocolFormatError(
            f"Sharpspring REST API systemic error: response contains neither error nor result.\nResponse: {_dump(response)}",
            3,
        )

    if isinstance(error, Mapping) and "message" in error and "code" in error:
        raise SharpSpringRestApiError(error["message"], error["code"], error.get("data"))

    result = response.get("result")
    key = expectations.single_result_key
    if key:
        if not isinstance(result, Mapping) or len(result) != 1:
            raise ProtocolFormatError(
                f"Sharpspring REST API failure: response result is not a one-element mapping.\nResponse: {_dump(response)}",
                4,
            )
        if key not in result:
            raise ProtocolFormatError(
                f"Sharpspring REST API failure: response result does not contain key {key}.\nResponse: {_dump(response)}",
                5,
            )
        result = result[key]

    if error:
        objects = params.get("objects")
        if not isinstance(objects, list):
            raise ProtocolFormatError(
                "Sharpspring REST API interpreter failure while evaluating error: no 'objects' (list) input "
                f"parameter present for the {method} method.\nResponse: {_dump(response)}",
                6,
            )
        entries = validate_result_for_objects(
            result,
            objects,
            method,
            validate_individual_objects=expectations.throw_per_object,
            error_encountered=True,
        )

        failed = [entry for entry in entries if isinstance(entry, Mapping) and entry.get("error")]
        if not isinstance(error, list) or len(error) != len(failed):
            reported = len(error) if isinstance(error, (list, Mapping)) else 1
            raise ProtocolFormatError(
                f"Sharpspring REST API interpreter failure: number of errors reported ({reported}) is different from "
                f"the number of objects reported to have an error ({len(failed)}).\nResponse: {_dump(response)}",
                9,
            )
        error_index = 0
        for position, entry in enumerate(entries):
            if not (isinstance(entry, Mapping) and entry.get("error")):
                continue
            if error_index >= len(error):  # pragma: no cover - guarded by the count check above
                raise ProtocolFormatError(
                    f"Sharpspring REST API interpreter failure: error in result #{position} was expected to correspond "
                    f"to error #{error_index} but that error index does not exist.\nResponse: {_dump(response)}",
                    11,
                )
            if error[error_index] != entry["error"]:
                raise ProtocolFormatError(
                    f"Sharpspring REST API interpreter failure: error in result #{position} was expected to be equal "
                    f"to error #{error_index}.\nResponse: {_dump(response)}",
                    12,
                )
            error_index += 1

        if expectations.throw_per_object:
            raise ProtocolFormatError(
                f"Sharpspring REST API interpreter failure: error was set but the result contains no object errors.\nResponse: {_dump(response)}",
                13,
            )
        raise SharpSpringRestApiError(
            f"{method} call returned at least one object-level error",
            0,
            entries,
            object_level=True,
        )

    if expectations.validate_as_batch:
        try:
            result = validate_result_for_objects(result, params.get("objects") or [], method)
        except (ProtocolFormatError, SharpSpringRestApiError) as exc:
            raise SharpSpringRestApiError(
                f"{method} call indicated no error, but its result structure is unexpected or does contain an "
                "individual object error. The wrapped result data / cause hold more info.",
                0,
                result,
            ) from exc

    return result


def _single(values: Any, key: str) -> Any:
    if isinstance(values, list) and len(values) > 1:
        raise ProtocolFormatError(
            f"Sharpspring REST API failure: response result '{key}' value contains more than one object.\nResponse: {_dump(values)}",
            16,
        )
    if values:
        return values[0] if isinstance(values, list) else values
    return {}


def _date_range_params(start_date: str, end_date: str, time_type: str) -> Dict[str, Any]:
    return {
        "startDate": start_date,
        "endDate": end_date or datetime.now().strftime(DATE_FORMAT),
        "timestamp": time_type,
    }


class Connection:
    """Calls REST API methods through a client and interprets the responses.

    ``client`` is anything with a ``call(method, params) -> dict`` method
    returning the decoded envelope, normally a
    :class:`~sharpspring_sync.transport.SharpSpringClient`.
    """

    def __init__(self, client, *, mapping: Optional[FieldMapping] = None) -> None:
        self.client = client
        self.mapping = mapping or FieldMapping()
        self.last_call_response: Optional[Dict[str, Any]] = None

    # -- generic calls ------------------------------------------------------

    def call(
        self,
        method: str,
        params: Mapping[str, Any],
        expectations: Optional[ResponseExpectations] = None,
    ) -> Any:
        response = self.client.call(method, dict(params))
        self.last_call_response = response
        return classify_response(response, params, expectations, method=method)

    def call_limited(
        self,
        method: str,
        single_result_key: str,
        where: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        extra_params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        params: Dict[str, Any] = dict(extra_params or {})
        where = dict(where or {})
        # Most methods require 'where' even if empty. Methods taking extra
        # parameters are assumed to have none.
        if where or (not extra_params and method not in _METHODS_WITHOUT_REQUIRED_WHERE):
            params["where"] = where
        if limit is not None:
            params["limit"] = limit
        if offset is not None:
            params["offset"] = offset
        return self.call(method, params, ResponseExpectations(single_result_key=single_result_key))

    @staticmethod
    def validate_object_result(entry: Any) -> Any:
        return validate_object_result(entry)

    # -- field mapping ------------------------------------------------------

    def to_api(self, lead: Any, mapping: Optional[FieldMapping] = None) -> Record:
        return (mapping or self.mapping).to_api(lead)

    def convert_system_names(self, api_record: Mapping[str, Any], mapping: Optional[FieldMapping] = None) -> Record:
        return (mapping or self.mapping).convert_system_names(api_record)

    # -- leads --------------------------------------------------------------

    def handle_leads(
        self,
        leads: Sequence[Any],
        method: str,
        throw_per_object: bool = False,
        *,
        mapping: Optional[FieldMapping] = None,
    ) -> List[Any]:
        """Validate leads locally, then send the valid ones to create/updateLeads.

        Locally invalid leads become synthesized object errors which are
        merged back in their original position. If there are any, an
        object-level wrapper error is raised holding the merged results.
        """

        invalid: Dict[int, Dict[str, Any]] = {}
        objects: List[Record] = []
        for index, lead in enumerate(leads):
            if not isinstance(lead, (Mapping, SourceLead)):
                invalid[index] = object_error(CANDIDATE_NOT_A_LEAD, "Invalid argument; not a lead.", lead)
                continue
            record = self.to_api(lead, mapping)
            email = record.get("emailAddress")
            if not email:
                if method == "createLeads":
                    invalid[index] = object_error(CANDIDATE_MISSING_EMAIL, "Missing e-mail address")
                    continue
                if not record.get("id"):
                    # The API would report success without updating anything.
                    invalid[index] = object_error(
                        CANDIDATE_MISSING_EMAIL, "Missing e-mail address, and no ID. Updating won't work."
                    )
                    continue
            elif not is_valid_email(email):
                invalid[index] = object_error(
                    CANDIDATE_INVALID_EMAIL, "Invalid e-mail address.", {"emailAddress": email}
                )
                continue
            objects.append(record)

        result: List[Any] = []
        if objects:
            expectations = ResponseExpectations(
                single_result_key="creates" if method == "createLeads" else "updates",
                validate_as_batch=True,
                throw_per_object=throw_per_object,
            )
            try:
                result = list(self.call(method, {"objects": objects}, expectations))
            except SharpSpringRestApiError as exc:
                if exc.code or not exc.object_level or not invalid:
                    raise
                result = list(exc.data)

        if invalid:
            if result:
                merged: List[Any] = []
                remaining = list(result)
                index = 0
                while invalid:
                    if index in invalid:
                        merged.append(invalid.pop(index))
                    else:
                        merged.append(remaining.pop(0))
                    index += 1
                result = merged + remaining
            else:
                result = [invalid[index] for index in sorted(invalid)]
            raise SharpSpringRestApiError(
                f"{method} call yielded at least one faux object-level error", 0, result, object_level=True
            )
        return result

    def submit_leads(self, leads: Sequence[Any], method: str, *, mapping: Optional[FieldMapping] = None) -> CallResult:
        """Like :meth:`handle_leads`, returning a tagged result instead of raising API errors."""

        return capture(self.handle_leads, leads, method, mapping=mapping)

    def create_lead(self, lead: Any) -> Dict[str, Any]:
        return self.handle_leads([lead], "createLeads", True)[0]

    def create_leads(self, leads: Sequence[Any]) -> List[Any]:
        return self.handle_leads(leads, "createLeads")

    def update_lead(self, lead: Any) -> Dict[str, Any]:
        """Update one lead.

        The API reports success without changing anything if the e-mail
        address is changed to one that another (possibly inactive) lead
        already has. Callers changing e-mail addresses must doublecheck.
        """

        return self.handle_leads([lead], "updateLeads", True)[0]

    def update_leads(self, leads: Sequence[Any]) -> List[Any]:
        return self.handle_leads(leads, "updateLeads")

    def delete_lead(self, lead_id: Any) -> Dict[str, Any]:
        result = self.call(
            "deleteLeads",
            {"objects": [{"id": lead_id}]},
            ResponseExpectations(single_result_key="deletes", validate_as_batch=True, throw_per_object=True),
        )
        return result[0]

    def delete_leads(self, lead_ids: Sequence[Any]) -> List[Any]:
        if not lead_ids:
            return []
        return self.call(
            "deleteLeads",
            {"objects": [{"id": lead_id} for lead_id in lead_ids]},
            ResponseExpectations(single_result_key="deletes", validate_as_batch=True),
        )

    def get_lead(self, lead_id: Any, *, fix_empty_leads: bool = False) -> Record:
        """Return one lead, or an empty mapping if it does not exist."""

        leads = self.call("getLead", {"id": lead_id}, ResponseExpectations(single_result_key="lead"))
        lead = _single(leads, "lead")
        if fix_empty_leads and lead and "id" not in lead:
            # Leads with certain custom field values come back as id-less stubs.
            lead = {}
        return lead

    def get_leads(
        self,
        where: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        *,
        fix_empty_leads: bool = False,
    ) -> List[Record]:
        leads = self.call_limited("getLeads", "lead", where, limit, offset)
        if fix_empty_leads:
            leads = [lead for lead in leads if "id" in lead]
        return leads

    def get_leads_date_range(
        self,
        start_date: str,
        end_date: str = "",
        time_type: str = "update",
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Record]:
        """Return leads created/updated (``time_type``) between two dates.

        Only active leads are returned. Dates are 'Y-m-d H:i:s' strings.
        """

        return self.call_limited(
            "getLeadsDateRange", "lead", None, limit, offset, _date_range_params(start_date, end_date, time_type)
        )

    # -- other objects ------------------------------------------------------

    def get_fields(self, limit: Optional[int] = None, offset: Optional[int] = None) -> List[Record]:
        return self.call_limited("getFields", "field", None, limit, offset)

    def get_account(self, account_id: Any) -> Record:
        return _single(self.call("getAccount", {"id": account_id}, ResponseExpectations("account")), "account")

    def get_accounts(self, where=None, limit=None, offset=None) -> List[Record]:
        return self.call_limited("getAccounts", "account", where, limit, offset)

    def get_accounts_date_range(self, start_date: str, end_date: str = "", time_type: str = "update") -> List[Record]:
        return self.call(
            "getAccountsDateRange", _date_range_params(start_date, end_date, time_type), ResponseExpectations("account")
        )

    def get_campaign(self, campaign_id: Any) -> Record:
        return _single(self.call("getCampaign", {"id": campaign_id}, ResponseExpectations("campaign")), "campaign")

    def get_campaigns(self, where=None, limit=None, offset=None) -> List[Record]:
        return self.call_limited("getCampaigns", "campaign", where, limit, offset)

    def get_campaigns_date_range(self, start_date: str, end_date: str = "", time_type: str = "update") -> List[Record]:
        return self.call(
            "getCampaignsDateRange", _date_range_params(start_date, end_date, time_type), ResponseExpectations("campaign")
        )

    def get_clients(self) -> List[Record]:
        return self.call("getClients", {}, ResponseExpectations("getAllcompanyProfileManagedBys"))

    def get_deal_stage(self, deal_stage_id: Any) -> Record:
        return _single(self.call("getDealStage", {"id": deal_stage_id}, ResponseExpectations("dealStage")), "dealStage")

    def get_deal_stages(self, where=None, limit=None, offset=None) -> List[Record]:
        # Documented as 'dealStages', returned as 'dealStage'.
        return self.call_limited("getDealStages", "dealStage", where, limit, offset)

    def get_deal_stages_date_range(self, start_date: str, end_date: str = "", time_type: str = "update") -> List[Record]:
        return self.call(
            "getDealStagesDateRange", _date_range_params(start_date, end_date, time_type), ResponseExpectations("dealStage")
        )

    def get_email_listing(self, email_id: Any = None, limit=None, offset=None) -> List[Record]:
        where = {"id": email_id} if email_id is not None else {}
        return self.call_limited("getEmailListing", "getAllemailListings", where, limit, offset)

    def get_email_jobs(self, limit=None, offset=None) -> List[Record]:
        return self.call_limited("getEmailJobs", "getAllgetEmailJobss", None, limit, offset)

    def get_active_lists(self, list_id: Any = None, limit=None, offset=None) -> List[Record]:
        where = {"id": list_id} if list_id is not None else {}
        return self.call_limited("getActiveLists", "activeList", where, limit, offset)

    def get_list_members(self, list_id: Any, limit=None, offset=None) -> List[Record]:
        return self.call_limited("getListMembers", "getWherelistMemberGets", {"id": list_id}, limit, offset)

    def get_removed_list_members(self, list_id: Any, flag: Optional[str] = None, limit=None, offset=None) -> List[Record]:
        """``flag`` is one of 'removed', 'unsubscribed', 'hardbounced'."""

        where: Dict[str, Any] = {"id": list_id}
        if flag is not None:
            where["flag"] = flag
        return self.call_limited("getRemovedListMembers", "getWherelistLeadMembers", where, limit, offset)

    def get_unsubscribe_categories(self) -> List[Record]:
        return self.call("getUnsubscribeCategories", {}, ResponseExpectations("getAllunsubscribeCategorys"))

    def get_lead_timeline(self, where=None) -> List[Record]:
        return self.call_limited("getLeadTimeline", "leadTimeline", where)

    def get_opportunity(self, opportunity_id: Any) -> Record:
        return _single(
            self.call("getOpportunity", {"id": opportunity_id}, ResponseExpectations("opportunity")), "opportunity"
        )

    def get_opportunities(self, where=None, limit=None, offset=None) -> List[Record]:
        return self.call_limited("getOpportunities", "opportunity", where, limit, offset)

    def get_opportunity_leads(self, where=None) -> List[Record]:
        return self.call_limited("getOpportunityLeads", "getWhereopportunityLeads", where)

    def get_opportunity_leads_date_range(
        self, start_date: str, end_date: str = "", time_type: str = "update", limit=None, offset=None
    ) -> List[Record]:
        return self.call_limited(
            "getOpportunityLeadsDateRange",
            "opportunityLead",
            None,
            limit,
            offset,
            _date_range_params(start_date, end_date, time_type),
        )


__all__ = [
    "Connection",
    "DATE_FORMAT",
    "ResponseExpectations",
    "classify_response",
    "is_valid_email",
    "validate_object_result",
    "validate_result_for_objects",
]
