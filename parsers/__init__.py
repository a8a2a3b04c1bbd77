"""
CSV parsers module.
"""

from parsers.csv_parser import (
    CsvSource,
    StatusScan,
    read_headers,
    iter_rows,
    read_rows,
    scan_statuses,
    iter_paid_rows,
)

__all__ = [
    "CsvSource",
    "StatusScan",
    "read_headers",
    "iter_rows",
    "read_rows",
    "scan_statuses",
    "iter_paid_rows",
]
