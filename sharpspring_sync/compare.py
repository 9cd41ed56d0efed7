"""Field-by-field comparison of candidate leads against cached Sharpspring leads."""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Tuple

from .models import LEAD_SCHEMA, LeadSchema, LeadStatus, Record

# (cached value, candidate value) pairs of leadStatus that count as equal:
# Sharpspring refuses to move a lead with an opportunity back to 'contact'.
COMPATIBLE_STATUSES: Tuple[Tuple[str, str], ...] = ((LeadStatus.CONTACT_WITH_OPP, LeadStatus.CONTACT),)


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


def values_differ(name: str, candidate_value: Any, cached_value: Any, schema: LeadSchema = LEAD_SCHEMA) -> bool:
    candidate_set = _is_set(candidate_value)
    if candidate_set != _is_set(cached_value):
        return True
    if not candidate_set:
        return False
    if name == schema.email_field:
        return str(cached_value).lower() != str(candidate_value).lower()
    if name == "leadStatus" and (cached_value, candidate_value) in COMPATIBLE_STATUSES:
        return False
    # The API is inconsistent about returning numbers as int or string.
    return str(cached_value) != str(candidate_value)


def compare_record(candidate: Mapping[str, Any], cached: Mapping[str, Any], schema: LeadSchema = LEAD_SCHEMA) -> Record:
    """Compare an API-form candidate record with one cached record.

    Returns the cached record's id plus the cached values of every field
    present in ``candidate`` that differs. A result holding only the id means
    the records are equal.
    """

    diff: Record = {schema.id_field: cached.get(schema.id_field)}
    for name, value in candidate.items():
        if name in schema.volatile:
            continue
        cached_value = cached.get(name)
        if values_differ(name, value, cached_value, schema):
            diff[name] = cached_value
    return diff


def compare_against(
    candidate: Mapping[str, Any],
    matches: Iterable[Mapping[str, Any]],
    schema: LeadSchema = LEAD_SCHEMA,
) -> Record:
    """Compare ``candidate`` against all matching cached records.

    Returns the first equal comparison, else the first differing one, else an
    empty dict (no match at all).
    """

    first: Record = {}
    for cached in matches:
        diff = compare_record(candidate, cached, schema)
        if is_equal(diff):
            return diff
        if not first:
            first = diff
    return first


def is_equal(diff: Mapping[str, Any]) -> bool:
    """True if ``diff`` is the 'checked and equal' result (only an id)."""

    return len(diff) == 1


__all__ = ["COMPATIBLE_STATUSES", "compare_against", "compare_record", "is_equal", "values_differ"]
