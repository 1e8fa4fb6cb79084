import math
import re
import unicodedata
from typing import Dict, List, Optional, Sequence

import pandas as pd

from config import dprint

TIMESTAMP_KEY = "timestamp"

# Header substrings that mark the timestamp column (Korean and English exports).
TIMESTAMP_HEADER_KEYWORDS = ("일시", "date", "time", "timestamp", "시간")

EXPORT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_ZERO_WIDTH_CHARS = ("\ufeff", "\u200b", "\u200c", "\u200d")

_CUSTOM_TS_RE = re.compile(
    r"(\d{4})[.\-/]\s*(\d{1,2})[.\-/]\s*(\d{1,2})[.\-]?\s*(\d{1,2}):(\d{2})(?::(\d{2}))?"
)

_LEADING_FLOAT_RE = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")

_LINE_SPLIT_RE = re.compile(r"\r?\n")

Record = Dict[str, object]


def _strip_bom_and_zero_width(text: str) -> str:
    for ch in _ZERO_WIDTH_CHARS:
        text = text.replace(ch, "")
    return text


def _unquote(text: object) -> str:
    """Trim a raw cell and drop one pair of surrounding quotes."""

    if text is None:
        return ""
    t = str(text).strip()
    if len(t) >= 2 and t[0] == t[-1] and t[0] in ("'", '"'):
        t = t[1:-1].strip()
    elif t[:1] in ("'", '"'):
        t = t[1:].strip()
    elif t[-1:] in ("'", '"'):
        t = t[:-1].strip()
    return t


def _normalize_timestamp(ts: pd.Timestamp) -> pd.Timestamp:
    """Return a naive timestamp; aware values are expressed in UTC."""

    if ts.tzinfo is not None:
        return ts.tz_convert("UTC").tz_localize(None)
    return ts


def _parse_ts_general(text: str) -> Optional[pd.Timestamp]:
    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except Exception:
        return None
    if parsed is None or pd.isna(parsed) or not isinstance(parsed, pd.Timestamp):
        return None
    return _normalize_timestamp(parsed)


def _parse_ts_custom(text: str) -> Optional[pd.Timestamp]:
    """Match ``YYYY.MM.DD HH:MM[:SS]`` style stamps with ``.``, ``-`` or ``/``."""

    match = _CUSTOM_TS_RE.search(text)
    if not match:
        return None
    year, month, day, hour, minute, second = match.groups()
    try:
        return pd.Timestamp(
            year=int(year),
            month=int(month),
            day=int(day),
            hour=int(hour),
            minute=int(minute),
            second=int(second) if second else 0,
        )
    except (ValueError, OverflowError) as exc:
        dprint(f"[parse_timestamp] invalid calendar value in {text!r}: {exc}")
        return None


def parse_timestamp(raw: object) -> pd.Timestamp:
    """Return a best-effort timestamp for a raw cell; never raises.

    The general parser is tried first, then the dotted/dashed/slashed custom
    layout. When both fail the current wall-clock time is returned so a bad
    date never drops the whole row.
    """

    text = _unquote(_strip_bom_and_zero_width(str(raw or "")))
    if text:
        parsed = _parse_ts_general(text)
        if parsed is not None:
            return parsed
        parsed = _parse_ts_custom(text)
        if parsed is not None:
            return parsed
        dprint(f"[parse_timestamp] falling back to now for {text!r}")
    return pd.Timestamp.now()


def _parse_numeric_value(text: object) -> Optional[float]:
    """Return the leading float of a cell, or None when there is none.

    Mirrors parse-float semantics: ``"12.5C"`` reads as 12.5, ``"n/a"`` as None.
    """

    cleaned = _unquote(text)
    if not cleaned:
        return None

    match = _LEADING_FLOAT_RE.match(cleaned)
    if not match:
        return None

    try:
        value = float(match.group(0))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def _normalize_header(value: str) -> str:
    return unicodedata.normalize("NFKC", value or "").lower()


def _find_timestamp_index(headers: Sequence[str]) -> int:
    for idx, header in enumerate(headers):
        lowered = _normalize_header(header)
        if any(keyword in lowered for keyword in TIMESTAMP_HEADER_KEYWORDS):
            return idx
    return 0


def _data_key(header: str, idx: int) -> str:
    # a device column may not shadow the record's timestamp
    if header == TIMESTAMP_KEY:
        return f"{header}_{idx}"
    return header


def parse_csv_text(text: str) -> List[Record]:
    """Parse comma-separated telemetry text into ordered records.

    The first line is the header. The timestamp column is the first header
    naming a date or time; every other non-empty header becomes a device
    column. Rows keep their input order. Cells that are empty or not numeric
    become ``None``; rows without a timestamp cell are skipped.
    """

    lines = _LINE_SPLIT_RE.split(_strip_bom_and_zero_width(text or "").strip())
    if len(lines) < 2:
        return []

    headers = [_unquote(h) for h in lines[0].split(",")]
    ts_idx = _find_timestamp_index(headers)
    data_columns = [
        (idx, _data_key(header, idx))
        for idx, header in enumerate(headers)
        if idx != ts_idx and header
    ]
    dprint(
        f"[parse_csv_text] timestamp column {headers[ts_idx]!r} (index {ts_idx}), "
        f"{len(data_columns)} data columns"
    )

    records: List[Record] = []
    skipped = 0
    for line in lines[1:]:
        line = line.strip()
        if not line:
            continue
        parts = line.split(",")
        if len(parts) <= ts_idx:
            skipped += 1
            continue

        record: Record = {TIMESTAMP_KEY: parse_timestamp(parts[ts_idx])}
        for idx, header in data_columns:
            record[header] = _parse_numeric_value(parts[idx]) if idx < len(parts) else None
        records.append(record)

    if skipped:
        dprint(f"[parse_csv_text] skipped {skipped} short rows")
    return records


def records_to_frame(
    records: Sequence[Record], device_ids: Optional[Sequence[str]] = None
) -> pd.DataFrame:
    """Return records as a dataframe with a datetime ``timestamp`` column.

    Every id in ``device_ids`` gets a column, all-NaN when no record has it.
    """

    columns = list(records[0].keys()) if records else [TIMESTAMP_KEY]
    for device_id in device_ids or []:
        if device_id not in columns:
            columns.append(device_id)
    df = pd.DataFrame.from_records(list(records), columns=columns)
    df[TIMESTAMP_KEY] = pd.to_datetime(df[TIMESTAMP_KEY], errors="coerce")
    for col in columns:
        if col != TIMESTAMP_KEY:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


def _format_cell(value: object) -> object:
    if value is None:
        return ""
    if isinstance(value, pd.Timestamp):
        if value.microsecond or value.nanosecond:
            return value.isoformat(sep=" ")
        return value.strftime(EXPORT_TIMESTAMP_FORMAT)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return value


def records_to_csv(records: Sequence[Record]) -> str:
    """Serialise records back to CSV, header taken from the first record.

    Fields containing commas are quoted; idle (``None``) cells are left empty.
    """

    if not records:
        return ""

    columns = list(records[0].keys())
    rows = [[_format_cell(record.get(col)) for col in columns] for record in records]
    df = pd.DataFrame(rows, columns=columns, dtype=object)
    return df.to_csv(index=False, lineterminator="\n")


__all__ = [
    "TIMESTAMP_KEY",
    "Record",
    "parse_timestamp",
    "parse_csv_text",
    "records_to_frame",
    "records_to_csv",
]
