import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from data_processing import TIMESTAMP_KEY, parse_csv_text
from kpi import RECENT_READINGS, WARNING_THRESHOLD, aggregate, device_status


def _row(hour, **values):
    record = {TIMESTAMP_KEY: pd.Timestamp(2024, 1, 1, hour)}
    record.update(values)
    return record


def test_aggregate_returns_none_without_records_or_devices():
    assert aggregate([], ["A"]) is None
    assert aggregate([_row(0, A=1.0)], []) is None


def test_hotspot_and_alert_counts_from_last_record():
    records = [_row(0, A=10.0, B=10.0, C=10.0), _row(1, A=70.0, B=50.0, C=None)]

    kpis = aggregate(records, ["A", "B", "C"])

    assert WARNING_THRESHOLD == 60.0
    assert kpis.warning_count == 1
    assert kpis.active_count == 2
    assert kpis.max_device_id == "A"
    assert kpis.max_temp == 70.0
    assert kpis.status == "warning"


def test_end_to_end_example_averages():
    records = parse_csv_text("ts,A,B\n2024-01-01 00:00,10,20\n2024-01-01 01:00,15,\n")

    kpis = aggregate(records, ["A", "B"])

    assert kpis.avg_now == pytest.approx(15.0)
    assert kpis.avg_prev == pytest.approx(15.0)
    assert kpis.avg_delta == pytest.approx(0.0)
    assert kpis.status == "normal"


def test_single_record_has_zero_delta():
    kpis = aggregate([_row(0, A=30.0, B=40.0)], ["A", "B"])

    assert kpis.avg_now == pytest.approx(35.0)
    assert kpis.avg_prev == 0.0
    assert kpis.avg_delta == 0.0


def test_idle_last_record_has_no_hotspot():
    kpis = aggregate([_row(0, A=30.0), _row(1, A=None)], ["A"], {"A": "Main"})

    assert kpis.avg_now == 0.0
    assert kpis.avg_delta == pytest.approx(-30.0)
    assert kpis.max_temp is None
    assert kpis.max_device_id is None
    assert kpis.max_device_name == "N/A"
    assert kpis.active_count == 0
    assert kpis.warning_count == 0


def test_ties_go_to_first_device_and_use_display_name():
    kpis = aggregate([_row(0, A=61.0, B=61.0)], ["B", "A"], {"B": "North yard"})

    assert kpis.max_device_id == "B"
    assert kpis.max_device_name == "North yard"
    assert kpis.warning_count == 2


def test_threshold_is_strict():
    kpis = aggregate([_row(0, A=60.0)], ["A"])
    assert kpis.warning_count == 0


def test_device_status_reports_reading_delta_and_high_flag():
    records = [_row(0, A=58.0), _row(1, A=61.5, B=None)]

    status = device_status(records, "A")

    assert status.current == 61.5
    assert status.previous == 58.0
    assert status.delta == pytest.approx(3.5)
    assert status.is_high is True
    assert device_status(records, "B").is_high is False


def test_device_status_delta_needs_two_numeric_readings():
    status = device_status([_row(0, A=None), _row(1, A=40.0)], "A")

    assert status.current == 40.0
    assert status.previous is None
    assert status.delta == 0.0
    assert device_status([_row(0, A=60.0)], "A").is_high is False


def test_device_status_keeps_last_readings_in_order():
    records = [_row(hour, A=float(hour)) for hour in range(8)]
    records[-1]["A"] = None

    recent = device_status(records, "A").recent

    assert len(recent) == RECENT_READINGS
    assert [value for _, value in recent] == [3.0, 4.0, 5.0, 6.0, None]
    assert recent[0][0] == pd.Timestamp(2024, 1, 1, 3)


def test_device_status_without_records():
    status = device_status([], "A")

    assert status.current is None
    assert status.delta == 0.0
    assert status.recent == []
