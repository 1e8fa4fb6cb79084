"""Inclusive year/month window filtering for telemetry records."""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import pandas as pd

from data_processing import TIMESTAMP_KEY, Record

ALL = "All"


def _to_optional_int(value: object) -> Optional[int]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text == ALL:
        return None
    try:
        return int(text)
    except ValueError:
        return None


def _month_index(year: int, month: int) -> int:
    return year * 12 + (month - 1)


@dataclass(frozen=True)
class TimeWindow:
    start_year: Optional[int] = None
    start_month: Optional[int] = None
    end_year: Optional[int] = None
    end_month: Optional[int] = None

    @classmethod
    def from_strings(
        cls,
        start_year: object = ALL,
        start_month: object = ALL,
        end_year: object = ALL,
        end_month: object = ALL,
    ) -> "TimeWindow":
        """Build a window from selector values where ``"All"`` means unset."""

        return cls(
            start_year=_to_optional_int(start_year),
            start_month=_to_optional_int(start_month),
            end_year=_to_optional_int(end_year),
            end_month=_to_optional_int(end_month),
        )

    def to_strings(self) -> Dict[str, str]:
        return {
            "start_year": ALL if self.start_year is None else str(self.start_year),
            "start_month": ALL if self.start_month is None else str(self.start_month),
            "end_year": ALL if self.end_year is None else str(self.end_year),
            "end_month": ALL if self.end_month is None else str(self.end_month),
        }

    def lower_bound(self) -> float:
        if self.start_year is None:
            return float("-inf")
        return _month_index(self.start_year, self.start_month or 1)

    def upper_bound(self) -> float:
        if self.end_year is None:
            return float("inf")
        return _month_index(self.end_year, self.end_month or 12)

    def contains(self, ts: pd.Timestamp) -> bool:
        value = _month_index(ts.year, ts.month)
        return self.lower_bound() <= value <= self.upper_bound()


def filter_records(records: Sequence[Record], window: TimeWindow) -> List[Record]:
    """Return the records whose month falls inside ``window`` (both ends inclusive)."""

    return [record for record in records if window.contains(record[TIMESTAMP_KEY])]


def available_years(records: Sequence[Record]) -> List[int]:
    """Distinct record years, newest first."""

    years = {record[TIMESTAMP_KEY].year for record in records}
    return sorted(years, reverse=True)


__all__ = ["ALL", "TimeWindow", "available_years", "filter_records"]
