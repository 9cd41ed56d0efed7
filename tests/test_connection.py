import logging

import pytest

from sharpspring_sync.connection import Connection, ResponseExpectations, classify_response, validate_object_result
from sharpspring_sync.exceptions import ProtocolFormatError, SharpSpringRestApiError
from sharpspring_sync.models import SourceLead
from sharpspring_sync.results import ApiLevelFailure, ObjectLevelFailure, Ok, from_error


def envelope(result=None, error=None, **extra):
    response = {"id": "test", "result": result, "error": error}
    response.update(extra)
    return response


def ok_entry(**extra):
    entry = {"success": True, "error": None}
    entry.update(extra)
    return entry


def failed_entry(code, message="failed"):
    return {"success": False, "error": {"code": code, "message": message, "data": {}}}


THREE_OBJECTS = {"objects": [{"id": 1}, {"id": 2}, {"id": 3}]}
BATCH = ResponseExpectations("updates", validate_as_batch=True)


def test_response_without_error_or_result_is_a_format_error() -> None:
    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response({"id": "test", "error": None}, {})

    assert excinfo.value.code == 3


def test_api_level_error_is_raised_as_such() -> None:
    response = envelope(None, {"code": 10, "message": "Invalid parameters", "data": {"where": "x"}})

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        classify_response(response, {})

    assert excinfo.value.code == 10
    assert not excinfo.value.is_object_level
    assert isinstance(from_error(excinfo.value), ApiLevelFailure)


def test_single_result_key_is_unwrapped() -> None:
    result = classify_response(envelope({"lead": [{"id": 1}]}), {"id": 1}, ResponseExpectations("lead"))

    assert result == [{"id": 1}]


def test_unwrapping_an_already_unwrapped_result_fails() -> None:
    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response(envelope([{"id": 1}]), {}, ResponseExpectations("lead"))

    assert excinfo.value.code == 4


def test_unexpected_single_result_key_fails() -> None:
    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response(envelope({"leads": []}), {}, ResponseExpectations("lead"))

    assert excinfo.value.code == 5


def test_has_more_inside_result_is_stripped(caplog) -> None:
    response = envelope({"lead": [{"id": 1}], "hasMore": True}, hasMore=True)

    assert classify_response(response, {}, ResponseExpectations("lead")) == [{"id": 1}]

    with caplog.at_level(logging.ERROR):
        classify_response(envelope({"lead": [], "hasMore": False}), {}, ResponseExpectations("lead"))
    assert "not present on the first level" in caplog.text


def test_partial_batch_failure_yields_positional_results() -> None:
    error = {"code": 301, "message": "Entry already exists", "data": {}}
    response = envelope({"updates": [ok_entry(), {"success": False, "error": error}, ok_entry()]}, [error])

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        classify_response(response, THREE_OBJECTS, BATCH, method="updateLeads")

    exc = excinfo.value
    assert exc.is_batch_wrapper
    assert len(exc.data) == 3
    assert exc.data[1]["error"]["code"] == 301
    outcome = from_error(exc)
    assert isinstance(outcome, ObjectLevelFailure)
    assert [entry["success"] for entry in outcome.outcomes] == [True, False, True]


def test_batch_result_count_mismatch_is_a_format_error() -> None:
    error = {"code": 301, "message": "Entry already exists", "data": {}}
    response = envelope({"updates": [ok_entry(), {"success": False, "error": error}]}, [error])

    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response(response, THREE_OBJECTS, BATCH)

    assert excinfo.value.code == 102


def test_batch_error_count_mismatch_is_a_format_error() -> None:
    error = {"code": 301, "message": "Entry already exists", "data": {}}
    response = envelope({"updates": [ok_entry(), {"success": False, "error": error}, ok_entry()]}, [error, error])

    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response(response, THREE_OBJECTS, BATCH)

    assert excinfo.value.code == 9


def test_batch_error_content_mismatch_is_a_format_error() -> None:
    error = {"code": 301, "message": "Entry already exists", "data": {}}
    other = {"code": 302, "message": "Something else", "data": {}}
    response = envelope({"updates": [ok_entry(), {"success": False, "error": error}, ok_entry()]}, [other])

    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response(response, THREE_OBJECTS, BATCH)

    assert excinfo.value.code == 12


def test_error_without_objects_parameter_is_a_format_error() -> None:
    error = {"code": 301, "message": "Entry already exists", "data": {}}

    with pytest.raises(ProtocolFormatError) as excinfo:
        classify_response(envelope({"updates": [failed_entry(301)]}, [error]), {}, BATCH)

    assert excinfo.value.code == 6


def test_result_mapping_with_index_keys_is_accepted_in_order_only() -> None:
    result = classify_response(envelope({"updates": {"0": ok_entry(), "1": ok_entry()}}), {"objects": [{}, {}]}, BATCH)
    assert len(result) == 2

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        classify_response(envelope({"updates": {"1": ok_entry(), "0": ok_entry()}}), {"objects": [{}, {}]}, BATCH)
    assert excinfo.value.code == 0
    assert not excinfo.value.is_object_level
    assert excinfo.value.__cause__.code == 103


def test_validate_object_result_checks_structure_and_errors() -> None:
    assert validate_object_result(ok_entry(id=5)) is True

    with pytest.raises(ProtocolFormatError) as excinfo:
        validate_object_result({"success": True})
    assert excinfo.value.code == 111

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        validate_object_result(failed_entry(302))
    assert excinfo.value.code == 302
    assert excinfo.value.is_object_level


def test_single_object_update_raises_the_object_error(fake_client, make_connection) -> None:
    error = {"code": 302, "message": "Object does not exist", "data": {}}
    fake_client.queue("updateLeads", envelope({"updates": [{"success": False, "error": error}]}, [error]))
    connection = make_connection(fake_client)

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        connection.update_lead({"id": 7, "emailAddress": "a@example.com"})

    assert excinfo.value.code == 302


def test_locally_invalid_leads_are_merged_back_in_position(fake_client, make_connection) -> None:
    fake_client.queue("createLeads", envelope({"creates": [ok_entry(id=5), ok_entry(id=6)]}))
    connection = make_connection(fake_client)
    leads = [
        SourceLead({"emailAddress": "a@example.com"}),
        SourceLead({"firstName": "No Mail"}),
        {"emailAddress": "b@example.com"},
        {"emailAddress": "not an address"},
        "not a lead",
    ]

    with pytest.raises(SharpSpringRestApiError) as excinfo:
        connection.create_leads(leads)

    data = excinfo.value.data
    assert excinfo.value.is_batch_wrapper
    assert [entry.get("id") for entry in data] == [5, None, 6, None, None]
    assert [entry["error"]["code"] for entry in data if entry["error"]] == [2, 3, 1]
    method, params = fake_client.calls[0]
    assert method == "createLeads"
    assert [obj["emailAddress"] for obj in params["objects"]] == ["a@example.com", "b@example.com"]


def test_update_without_email_and_id_is_rejected_locally(fake_client, make_connection) -> None:
    connection = make_connection(fake_client)

    outcome = connection.submit_leads([{"firstName": "X"}], "updateLeads")

    assert isinstance(outcome, ObjectLevelFailure)
    assert outcome.outcomes[0]["error"]["code"] == 2
    assert fake_client.calls == []


def test_submit_leads_returns_ok_with_results(fake_client, make_connection) -> None:
    fake_client.queue("updateLeads", envelope({"updates": [ok_entry()]}))
    connection = make_connection(fake_client)

    outcome = connection.submit_leads([{"id": 1, "emailAddress": "a@example.com"}], "updateLeads")

    assert outcome == Ok([ok_entry()])


def test_get_lead_returns_empty_mapping_when_not_found(fake_client, make_connection) -> None:
    fake_client.queue("getLead", envelope({"lead": []}))
    fake_client.queue("getLead", envelope({"lead": [{"id": 1}, {"id": 2}]}))
    connection = make_connection(fake_client)

    assert connection.get_lead(1) == {}
    with pytest.raises(ProtocolFormatError) as excinfo:
        connection.get_lead(1)
    assert excinfo.value.code == 16


def test_get_leads_can_drop_id_less_stubs(fake_client, make_connection) -> None:
    fake_client.queue("getLeads", envelope({"lead": [{"id": 1}, {"emailAddress": "x@example.com"}]}))
    connection = make_connection(fake_client)

    assert connection.get_leads({"emailAddress": "x@example.com"}, fix_empty_leads=True) == [{"id": 1}]
    assert fake_client.calls[0][1] == {"where": {"emailAddress": "x@example.com"}}


def test_get_leads_date_range_fills_in_end_date(fake_client, make_connection) -> None:
    fake_client.queue("getLeadsDateRange", envelope({"lead": []}))
    connection = make_connection(fake_client)

    connection.get_leads_date_range("2024-01-01 00:00:00", limit=10)

    params = fake_client.calls[0][1]
    assert params["startDate"] == "2024-01-01 00:00:00"
    assert params["endDate"]
    assert params["timestamp"] == "update"
    assert params["limit"] == 10
    assert "where" not in params


def test_to_api_maps_custom_properties_and_drops_unset_values(mapping) -> None:
    connection = Connection(None, mapping=mapping)
    lead = SourceLead({"sourceId": "S1", "emailAddress": "a@example.com", "firstName": None, "ownerID": None})

    record = connection.to_api(lead)

    assert record == {"source_id_5a7f": "S1", "emailAddress": "a@example.com", "ownerID": None}
    assert connection.to_api(record) == record
    assert connection.to_api({"ownerID": "", "title": ""}) == {"title": ""}
    assert connection.convert_system_names(record)["sourceId"] == "S1"
