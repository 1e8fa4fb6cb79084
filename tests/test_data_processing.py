import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from data_processing import (
    TIMESTAMP_KEY,
    _parse_ts_custom,
    parse_csv_text,
    parse_timestamp,
    records_to_csv,
    records_to_frame,
)
from time_filter import TimeWindow, filter_records


def _is_close_to_now(ts: pd.Timestamp) -> bool:
    return abs((pd.Timestamp.now() - ts).total_seconds()) < 60


def test_parse_timestamp_handles_quotes_and_missing_seconds():
    assert parse_timestamp('"2024-03-05 07:30"') == pd.Timestamp(2024, 3, 5, 7, 30)
    assert parse_timestamp("  '2024-03-05 07:30:15'  ") == pd.Timestamp(2024, 3, 5, 7, 30, 15)


@pytest.mark.parametrize(
    "raw",
    ["2024.03.05 07:30", "2024/03/05 07:30:00", "2024-3-5 7:30"],
)
def test_parse_timestamp_accepts_dotted_dashed_and_slashed_dates(raw):
    ts = parse_timestamp(raw)
    assert (ts.year, ts.month, ts.day, ts.hour, ts.minute) == (2024, 3, 5, 7, 30)


def test_custom_layout_matches_separator_before_time():
    assert _parse_ts_custom("측정 2024.3.5. 07:30") == pd.Timestamp(2024, 3, 5, 7, 30)
    assert _parse_ts_custom("2024/03/05-07:30:09") == pd.Timestamp(2024, 3, 5, 7, 30, 9)
    assert _parse_ts_custom("2024.13.45 10:00") is None
    assert _parse_ts_custom("yesterday") is None


def test_parse_timestamp_converts_aware_values_to_naive_utc():
    ts = parse_timestamp("2024-03-05T09:30:00+09:00")
    assert ts.tzinfo is None
    assert ts == pd.Timestamp(2024, 3, 5, 0, 30)


@pytest.mark.parametrize("raw", ["", "not a date", '""', None])
def test_parse_timestamp_falls_back_to_now(raw):
    assert _is_close_to_now(parse_timestamp(raw))


def test_parse_csv_text_end_to_end_example():
    records = parse_csv_text("ts,A,B\n2024-01-01 00:00,10,20\n2024-01-01 01:00,15,\n")

    assert len(records) == 2
    assert records[0] == {TIMESTAMP_KEY: pd.Timestamp(2024, 1, 1, 0, 0), "A": 10.0, "B": 20.0}
    assert records[1] == {TIMESTAMP_KEY: pd.Timestamp(2024, 1, 1, 1, 0), "A": 15.0, "B": None}


def test_parse_csv_text_requires_header_and_one_row():
    assert parse_csv_text("") == []
    assert parse_csv_text("Time,TR1,TR2") == []
    assert parse_csv_text("Time,TR1,TR2\r\n") == []


def test_parse_csv_text_detects_timestamp_column_by_keyword():
    text = "\r\n".join(
        [
            '"TR1","측정 일시","TR2"',
            '41.5,"2024.05.01 12:00",38',
            "42,2024.05.01 13:00,39.5",
        ]
    )

    records = parse_csv_text(text)

    assert [list(r.keys()) for r in records] == [[TIMESTAMP_KEY, "TR1", "TR2"]] * 2
    assert records[0][TIMESTAMP_KEY] == pd.Timestamp(2024, 5, 1, 12, 0)
    assert records[1]["TR2"] == 39.5


def test_parse_csv_text_defaults_to_first_column_and_skips_blank_headers():
    text = "stamp,TR1,,TR3\n2024-01-01 00:00,1,2,3\n"

    records = parse_csv_text(text)

    assert records == [{TIMESTAMP_KEY: pd.Timestamp(2024, 1, 1), "TR1": 1.0, "TR3": 3.0}]


def test_parse_csv_text_degrades_bad_cells_to_none_and_keeps_rows():
    text = "\n".join(
        [
            "Date,TR1,TR2,TR3",
            "2024-01-01 00:00,abc,12.5C,nan",
            "2024-01-01 01:00,,-3,inf",
            "2024-01-01 02:00,7",
        ]
    )

    records = parse_csv_text(text)

    assert len(records) == 3
    assert records[0]["TR1"] is None
    assert records[0]["TR2"] == 12.5
    assert records[0]["TR3"] is None
    assert records[1]["TR1"] is None
    assert records[1]["TR2"] == -3.0
    assert records[1]["TR3"] is None
    # short row: missing cells are idle, not absent
    assert records[2] == {TIMESTAMP_KEY: pd.Timestamp(2024, 1, 1, 2), "TR1": 7.0, "TR2": None, "TR3": None}


def test_parse_csv_text_skips_rows_without_timestamp_cell():
    text = "\n".join(
        [
            "TR1,TR2,Time",
            "1,2,2024-01-01 00:00",
            "3,4",
            "5",
            "6,7,2024-01-01 02:00",
        ]
    )

    records = parse_csv_text(text)

    assert len(records) == 2
    assert [r["TR1"] for r in records] == [1.0, 6.0]


def test_parse_csv_text_keeps_order_and_duplicates_and_is_repeatable():
    text = "\n".join(
        [
            "Time,TR1",
            "2024-01-02 00:00,2",
            "2024-01-01 00:00,1",
            "2024-01-02 00:00,3",
        ]
    )

    first = parse_csv_text(text)
    second = parse_csv_text(text)

    assert first == second
    assert [r["TR1"] for r in first] == [2.0, 1.0, 3.0]


def test_records_to_csv_round_trips_numeric_values():
    source = "\n".join(
        [
            "Time,TR1,TR2",
            "2024-01-01 00:00,10.25,",
            "2024-01-01 01:00:30,-4,99",
            "2024-01-01 02:00:00.250,1.5,2",
        ]
    )
    records = parse_csv_text(source)

    exported = records_to_csv(records)
    reparsed = parse_csv_text(exported)

    assert exported.splitlines()[0] == "timestamp,TR1,TR2"
    assert exported.splitlines()[2].startswith("2024-01-01 01:00:30,")
    assert reparsed == records
    assert reparsed[2][TIMESTAMP_KEY] == pd.Timestamp("2024-01-01 02:00:00.250")


def test_records_to_csv_quotes_fields_with_commas():
    records = [{TIMESTAMP_KEY: pd.Timestamp(2024, 1, 1), "TR,1": 1.0}]

    exported = records_to_csv(records)

    assert exported.splitlines()[0] == 'timestamp,"TR,1"'
    assert records_to_csv([]) == ""


def test_records_to_frame_uses_nan_for_idle_sensors():
    records = parse_csv_text("Time,TR1\n2024-01-01 00:00,\n2024-01-01 01:00,5\n")

    df = records_to_frame(records)

    assert list(df.columns) == [TIMESTAMP_KEY, "TR1"]
    assert pd.api.types.is_datetime64_any_dtype(df[TIMESTAMP_KEY])
    assert df["TR1"].isna().tolist() == [True, False]


def test_records_to_frame_adds_columns_for_absent_devices():
    df = records_to_frame([], ["TR1", "TR2"])
    assert list(df.columns) == [TIMESTAMP_KEY, "TR1", "TR2"]
    assert df.empty

    df = records_to_frame(parse_csv_text("Time,TR1\n2024-01-01 00:00,5\n"), ["TR1", "TR9"])
    assert list(df.columns) == [TIMESTAMP_KEY, "TR1", "TR9"]
    assert df["TR9"].isna().all()


def test_parse_csv_text_keeps_timestamp_when_a_data_header_is_named_timestamp():
    records = parse_csv_text("Date,timestamp,TR1\n2024-01-01 00:00,5,40\n")

    assert records[0][TIMESTAMP_KEY] == pd.Timestamp(2024, 1, 1)
    assert records[0]["timestamp_1"] == 5.0
    assert records[0]["TR1"] == 40.0
    assert filter_records(records, TimeWindow(start_year=2024)) == records
