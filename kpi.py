"""Summary figures over the two most recent readings."""

from dataclasses import dataclass
from typing import List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from data_processing import TIMESTAMP_KEY, Record

# Readings above this temperature (°C) count as alerts.
WARNING_THRESHOLD = 60.0

# Readings shown in a device's recent history.
RECENT_READINGS = 5


@dataclass(frozen=True)
class Kpis:
    avg_now: float
    avg_prev: float
    avg_delta: float
    max_temp: Optional[float]
    max_device_id: Optional[str]
    max_device_name: str
    active_count: int
    warning_count: int

    @property
    def status(self) -> str:
        return "normal" if self.warning_count == 0 else "warning"


@dataclass(frozen=True)
class DeviceStatus:
    current: Optional[float]
    previous: Optional[float]
    delta: float
    is_high: bool
    recent: List[Tuple[pd.Timestamp, Optional[float]]]


def _as_float(value: object) -> Optional[float]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def _row_values(record: Optional[Record], device_ids: Sequence[str]) -> np.ndarray:
    """Return the record's readings as floats with idle sensors as NaN."""

    if record is None:
        return np.full(len(device_ids), np.nan)
    return np.array(
        [
            np.nan if value is None else value
            for value in (_as_float(record.get(device_id)) for device_id in device_ids)
        ],
        dtype=float,
    )


def _mean_of_valid(values: np.ndarray) -> float:
    valid = values[~np.isnan(values)]
    return float(valid.mean()) if valid.size else 0.0


def aggregate(
    records: Sequence[Record],
    device_ids: Sequence[str],
    display_names: Optional[Mapping[str, str]] = None,
) -> Optional[Kpis]:
    """Compute dashboard KPIs from the last (and second to last) record.

    Returns None when there is no record or no known device.
    """

    if len(records) < 1 or not device_ids:
        return None

    ids = list(device_ids)
    last = records[-1]
    prev = records[-2] if len(records) > 1 else None

    now_values = _row_values(last, ids)
    valid_mask = ~np.isnan(now_values)
    avg_now = _mean_of_valid(now_values)
    avg_prev = _mean_of_valid(_row_values(prev, ids))

    max_temp: Optional[float] = None
    max_device_id: Optional[str] = None
    if valid_mask.any():
        # argmax keeps the first id on ties
        idx = int(np.nanargmax(now_values))
        max_temp = float(now_values[idx])
        max_device_id = ids[idx]

    max_device_name = "N/A"
    if max_device_id is not None:
        max_device_name = (display_names or {}).get(max_device_id) or max_device_id

    return Kpis(
        avg_now=avg_now,
        avg_prev=avg_prev,
        avg_delta=avg_now - avg_prev if prev is not None else 0.0,
        max_temp=max_temp,
        max_device_id=max_device_id,
        max_device_name=max_device_name,
        active_count=int(valid_mask.sum()),
        warning_count=int((now_values[valid_mask] > WARNING_THRESHOLD).sum()),
    )


def device_status(records: Sequence[Record], device_id: str) -> DeviceStatus:
    """Readout for one device: latest reading, change since the row before,
    the high-temperature flag and the last few readings.

    ``delta`` is 0 unless both of the last two readings are numeric.
    """

    current = _as_float(records[-1].get(device_id)) if records else None
    previous = _as_float(records[-2].get(device_id)) if len(records) > 1 else None
    delta = current - previous if current is not None and previous is not None else 0.0
    recent = [
        (record[TIMESTAMP_KEY], _as_float(record.get(device_id)))
        for record in records[-RECENT_READINGS:]
    ]
    return DeviceStatus(
        current=current,
        previous=previous,
        delta=delta,
        is_high=current is not None and current > WARNING_THRESHOLD,
        recent=recent,
    )


__all__ = [
    "DeviceStatus",
    "Kpis",
    "RECENT_READINGS",
    "WARNING_THRESHOLD",
    "aggregate",
    "device_status",
]
