"""Utilities for loading source contacts from spreadsheets."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Union

import pandas as pd

from .models import SourceRecord

PathLike = Union[str, Path]

_FIELD_SYNONYMS: Mapping[str, Sequence[str]] = {
    "source_id": ("source_id", "sourceid", "id", "contact_id", "record_id"),
    "email": ("email", "emailaddress", "email_address", "e-mail"),
    "first_name": ("first_name", "firstname", "first"),
    "last_name": ("last_name", "lastname", "last"),
    "company": ("company", "companyname", "company_name", "organisation", "organization"),
    "active": ("active", "enabled", "sync"),
}

# Optional columns copied into the lead under a Sharpspring property name.
_PROPERTY_SYNONYMS: Mapping[str, Sequence[str]] = {
    "title": ("title", "job_title"),
    "phoneNumber": ("phone", "phonenumber", "phone_number"),
    "mobilePhoneNumber": ("mobile", "mobilephonenumber", "mobile_phone"),
    "website": ("website", "url"),
    "street": ("street", "address"),
    "city": ("city",),
    "state": ("state", "province"),
    "zipcode": ("zipcode", "zip", "postal_code"),
    "country": ("country",),
}

_FALSE_FLAGS = {"0", "false", "no", "n", "inactive", "off"}


class UnsupportedFileTypeError(ValueError):
    """Raised when an unsupported file format is passed to the loader."""


def load_source_records(
    path: PathLike,
    *,
    column_mapping: Optional[Mapping[str, str]] = None,
    sheet_name: Union[str, int, None] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> List[SourceRecord]:
    """Load source contacts from a spreadsheet.

    Parameters
    ----------
    path:
        Path to the CSV/TSV/XLSX file to be loaded.
    column_mapping:
        Optional mapping of :class:`SourceRecord` field names or lead property
        names to column names, overriding the synonym based detection.
    sheet_name:
        Sheet selector passed to :func:`pandas.read_excel`. Ignored for CSV.
    loader_kwargs:
        Extra keyword arguments forwarded to :func:`pandas.read_csv` or
        :func:`pandas.read_excel`.
    """

    dataframe = _read_dataframe(path, sheet_name=sheet_name, loader_kwargs=loader_kwargs)
    mapping = dict(column_mapping or {})
    columns = [str(column) for column in dataframe.columns]
    dataframe.columns = columns
    resolved = {name: _resolve_column(name, synonyms, columns, mapping) for name, synonyms in _FIELD_SYNONYMS.items()}
    properties = {
        name: _resolve_column(name, synonyms, columns, mapping) for name, synonyms in _PROPERTY_SYNONYMS.items()
    }

    records: List[SourceRecord] = []
    for _, row in dataframe.iterrows():
        if _row_is_empty(row):
            continue
        records.append(_row_to_record(row, resolved, properties))
    return records


def _read_dataframe(
    path: PathLike,
    *,
    sheet_name: Union[str, int, None] = 0,
    loader_kwargs: Optional[MutableMapping[str, Any]] = None,
) -> pd.DataFrame:
    loader_kwargs = dict(loader_kwargs or {})
    path_obj = Path(path)
    suffix = path_obj.suffix.lower()

    # Ids must not turn into floats.
    loader_kwargs.setdefault("dtype", str)
    if suffix in {".csv", ".tsv"}:
        if suffix == ".tsv":
            loader_kwargs.setdefault("sep", "\t")
        return pd.read_csv(path_obj, **loader_kwargs)

    if suffix in {".xls", ".xlsx", ".xlsm", ".xlsb"}:
        return pd.read_excel(path_obj, sheet_name=sheet_name, engine=loader_kwargs.pop("engine", None) or "openpyxl", **loader_kwargs)

    raise UnsupportedFileTypeError(f"Unsupported file extension: {path_obj.suffix}")


def _row_is_empty(row: pd.Series) -> bool:
    return all(pd.isna(value) or (isinstance(value, str) and not value.strip()) for value in row.values)


def _row_to_record(
    row: pd.Series,
    resolved: Mapping[str, Optional[str]],
    properties: Mapping[str, Optional[str]],
) -> SourceRecord:
    used = {column for column in list(resolved.values()) + list(properties.values()) if column}
    lead_properties: Dict[str, Any] = {}
    for name, column in properties.items():
        value = _extract(row, column)
        if value is not None:
            lead_properties[name] = value

    active_text = _extract(row, resolved["active"])
    return SourceRecord(
        source_id=_extract(row, resolved["source_id"]),
        email=_extract(row, resolved["email"]),
        first_name=_extract(row, resolved["first_name"]),
        last_name=_extract(row, resolved["last_name"]),
        company=_extract(row, resolved["company"]),
        active=None if active_text is None else active_text.lower() not in _FALSE_FLAGS,
        properties=lead_properties,
        metadata={
            column: _clean_text(value)
            for column, value in row.items()
            if column not in used and _clean_text(value) is not None
        },
    )


def _resolve_column(
    field: str,
    synonyms: Sequence[str],
    available_columns: Iterable[str],
    mapping: Mapping[str, str],
) -> Optional[str]:
    if field in mapping:
        return mapping[field]

    wanted = tuple(name.lower() for name in synonyms)
    for synonym in wanted:
        for column in available_columns:
            column_lc = column.strip().lower()
            if column_lc == synonym or column_lc.replace(" ", "_") == synonym:
                return column
    return None


def _extract(row: pd.Series, column: Optional[str]) -> Optional[str]:
    if not column or column not in row:
        return None
    return _clean_text(row[column])


def _clean_text(value: Any) -> Optional[str]:
    if pd.isna(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    text = str(value).strip()
    return text or None


__all__ = ["load_source_records", "UnsupportedFileTypeError"]
