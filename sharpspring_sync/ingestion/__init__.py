"""Loading source contacts and exporting sync action lists."""

from .exporters import export_action_list, rows_to_dataframe
from .loaders import UnsupportedFileTypeError, load_source_records
from .models import SourceRecord

__all__ = [
    "SourceRecord",
    "UnsupportedFileTypeError",
    "export_action_list",
    "load_source_records",
    "rows_to_dataframe",
]
