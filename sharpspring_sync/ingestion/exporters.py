"""Export of preprocessed sync actions for review."""
from __future__ import annotations

from pathlib import Path
from typing import Any, List, Mapping, MutableMapping, Optional, Sequence, Union

import pandas as pd

PathLike = Union[str, Path]

# Leading columns of an action list; lead properties follow in order of appearance.
_LEADING_COLUMNS = ("*action code", "*ssid", "sourceId", "emailAddress")


def export_action_list(
    rows: Sequence[Mapping[str, Any]],
    path: PathLike,
    *,
    sheet_name: str = "Actions",
    exporter_kwargs: Optional[MutableMapping[str, object]] = None,
) -> Path:
    """Write display rows (see :func:`sharpspring_sync.sync.display_items`) to CSV or Excel."""

    dataframe = rows_to_dataframe(rows)
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    _write_dataframe(dataframe, output_path, sheet_name=sheet_name, exporter_kwargs=exporter_kwargs)
    return output_path


def rows_to_dataframe(rows: Sequence[Mapping[str, Any]]) -> pd.DataFrame:
    columns: List[str] = [column for column in _LEADING_COLUMNS if any(column in row for row in rows)]
    for row in rows:
        for column in row:
            if column not in columns:
                columns.append(column)
    if not rows:
        columns = list(_LEADING_COLUMNS)
    return pd.DataFrame([dict(row) for row in rows], columns=columns)


def _write_dataframe(
    dataframe: pd.DataFrame,
    path: Path,
    *,
    sheet_name: str,
    exporter_kwargs: Optional[MutableMapping[str, object]],
) -> None:
    exporter_kwargs = dict(exporter_kwargs or {})
    suffix = path.suffix.lower()

    if suffix in {".csv", ".tsv"}:
        if suffix == ".tsv":
            exporter_kwargs.setdefault("sep", "\t")
        dataframe.to_csv(path, index=False, **exporter_kwargs)
        return

    if suffix in {".xls", ".xlsx", ".xlsm", ".xlsb"}:
        engine = exporter_kwargs.pop("engine", None) or "openpyxl"
        dataframe.to_excel(path, index=False, sheet_name=sheet_name, engine=engine, **exporter_kwargs)
        return

    raise ValueError(f"Unsupported export file extension: {suffix}")


__all__ = ["export_action_list", "rows_to_dataframe"]
