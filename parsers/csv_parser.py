"""
CSV parser for platform sales exports.

Streams header-keyed rows out of uploaded CSV files with pandas. The
delimiter is sniffed (Hotmart exports use ";", others ","), a UTF-8 BOM
is stripped, and every cell comes back as a trimmed string.

Files are read chunk by chunk so huge exports never sit in memory as a
whole; callers that need every row (the label workstation) collect the
iterator themselves.
"""

import codecs
import csv
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path
from typing import Iterator, Optional, Union
import structlog

import pandas as pd

from exceptions import CsvParseError, EmptyImportFileError

logger = structlog.get_logger(__name__)

CsvSource = Union[str, Path, bytes]

DEFAULT_CHUNK_SIZE = 500
SNIFF_BYTES = 64 * 1024
MAX_SEEN_STATUSES = 10


@dataclass
class StatusScan:
    """Result of scanning a file's status column."""
    total_rows: int = 0
    paid_rows: int = 0
    seen_statuses: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_rows": self.total_rows,
            "paid_rows": self.paid_rows,
            "seen_statuses": self.seen_statuses,
        }


def _open(source: CsvSource):
    if isinstance(source, bytes):
        return BytesIO(source)
    return source


def _sample(source: CsvSource) -> bytes:
    if isinstance(source, bytes):
        return source[:SNIFF_BYTES]
    with open(source, "rb") as fh:
        return fh.read(SNIFF_BYTES)


def detect_encoding(source: CsvSource) -> str:
    """
    Pick utf-8-sig when the file decodes as UTF-8, latin-1 otherwise.

    Older platform exports (and files re-saved by spreadsheet tools) come
    in Windows-1252/latin-1.
    """
    decoder = codecs.getincrementaldecoder("utf-8")()
    try:
        decoder.decode(_sample(source), final=False)
        return "utf-8-sig"
    except UnicodeDecodeError:
        return "latin-1"


def _clean_row(row: dict) -> dict[str, str]:
    return {
        str(key).strip(): (value.strip() if isinstance(value, str) else "")
        for key, value in row.items()
    }


def _reader(source: CsvSource, chunksize: Optional[int] = None, nrows: Optional[int] = None):
    try:
        return pd.read_csv(
            _open(source),
            sep=None,
            engine="python",
            encoding=detect_encoding(source),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            chunksize=chunksize,
            nrows=nrows,
        )
    except pd.errors.EmptyDataError:
        raise EmptyImportFileError()
    except (pd.errors.ParserError, csv.Error, UnicodeDecodeError, ValueError) as e:
        logger.error("csv_read_failed", error=str(e))
        raise CsvParseError(
            message="Failed to read CSV file",
            details={"original_error": str(e)}
        )


def read_headers(source: CsvSource) -> list[str]:
    """
    Read the header row.

    Raises:
        EmptyImportFileError: File has no header
        CsvParseError: File is not parseable CSV
    """
    df = _reader(source, nrows=1)
    headers = [str(col).strip() for col in df.columns]
    logger.debug("csv_headers_read", count=len(headers))
    return headers


def iter_rows(source: CsvSource, chunksize: int = DEFAULT_CHUNK_SIZE) -> Iterator[dict[str, str]]:
    """
    Yield every data row as {header: value}.

    Each chunk is released before the next one is read.
    """
    reader = _reader(source, chunksize=chunksize)
    try:
        for chunk in reader:
            for row in chunk.to_dict("records"):
                yield _clean_row(row)
            del chunk
    except (pd.errors.ParserError, csv.Error) as e:
        logger.error("csv_stream_failed", error=str(e))
        raise CsvParseError(
            message="Failed to read CSV file",
            details={"original_error": str(e)}
        )
    finally:
        reader.close()


def read_rows(source: CsvSource) -> list[dict[str, str]]:
    """Read every row into memory (small files only)."""
    return list(iter_rows(source))


def scan_statuses(
    source: CsvSource,
    status_header: str,
    status_filter: str,
    chunksize: int = DEFAULT_CHUNK_SIZE
) -> StatusScan:
    """
    Count rows and rows whose status equals the paid value.

    Matching is exact string equality after trimming.
    """
    scan = StatusScan()
    seen: list[str] = []
    for row in iter_rows(source, chunksize=chunksize):
        scan.total_rows += 1
        status = row.get(status_header, "")
        if status == status_filter:
            scan.paid_rows += 1
        elif status and status not in seen and len(seen) < MAX_SEEN_STATUSES:
            seen.append(status)
    scan.seen_statuses = seen

    logger.info(
        "csv_statuses_scanned",
        total_rows=scan.total_rows,
        paid_rows=scan.paid_rows,
        status_filter=status_filter
    )
    return scan


def iter_paid_rows(
    source: CsvSource,
    status_header: str,
    status_filter: str,
    start_index: int = 0,
    chunksize: int = DEFAULT_CHUNK_SIZE
) -> Iterator[tuple[int, dict[str, str]]]:
    """
    Yield (index, row) for paid rows, index counted among paid rows only.

    Rows before start_index are skipped without being yielded so a resumed
    job lines up with the offset it persisted.
    """
    index = 0
    for row in iter_rows(source, chunksize=chunksize):
        if row.get(status_header, "") != status_filter:
            continue
        if index >= start_index:
            yield index, row
        index += 1
