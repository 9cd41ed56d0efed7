import pytest

from sharpspring_sync.compare import compare_against, compare_record, is_equal, values_differ
from sharpspring_sync.models import LeadStatus


CACHED = {
    "id": 12,
    "emailAddress": "Jane@Example.com",
    "firstName": "Jane",
    "lastName": None,
    "leadScore": "5",
    "leadStatus": LeadStatus.CONTACT,
    "updateTimestamp": "2024-01-01 00:00:00",
}


def test_record_compared_with_itself_is_equal() -> None:
    assert compare_record(CACHED, CACHED) == {"id": 12}
    assert is_equal(compare_record(CACHED, CACHED))


def test_empty_candidate_is_equal_to_anything() -> None:
    assert compare_record({}, CACHED) == {"id": 12}


@pytest.mark.parametrize(
    "candidate, cached",
    [
        (None, ""),
        ("", None),
        ("jane@example.com", "JANE@example.com"),
        (5, "5"),
    ],
)
def test_values_considered_equal(candidate, cached) -> None:
    name = "emailAddress" if isinstance(candidate, str) and "@" in candidate else "leadScore"
    assert not values_differ(name, candidate, cached)


def test_diff_holds_cached_values_of_differing_fields() -> None:
    candidate = {"emailAddress": "jane@example.com", "firstName": "Janet", "lastName": "Doe", "leadScore": 5}

    assert compare_record(candidate, CACHED) == {"id": 12, "firstName": "Jane", "lastName": None}


def test_volatile_fields_are_ignored() -> None:
    assert is_equal(compare_record({"updateTimestamp": "2030-01-01 00:00:00"}, CACHED))


def test_contact_with_opportunity_is_compatible_with_contact_only() -> None:
    cached = dict(CACHED, leadStatus=LeadStatus.CONTACT_WITH_OPP)

    assert is_equal(compare_record({"leadStatus": LeadStatus.CONTACT}, cached))
    assert not is_equal(compare_record({"leadStatus": LeadStatus.OPEN}, cached))
    assert not is_equal(compare_record({"leadStatus": LeadStatus.CONTACT_WITH_OPP}, CACHED))


def test_compare_against_prefers_an_equal_match() -> None:
    other = dict(CACHED, id=13, firstName="Someone")
    candidate = {"firstName": "Jane"}

    assert compare_against(candidate, [other, CACHED]) == {"id": 12}
    assert compare_against({"firstName": "Nobody"}, [other, CACHED]) == {"id": 13, "firstName": "Someone"}
    assert compare_against(candidate, []) == {}
