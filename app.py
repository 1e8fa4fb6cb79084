import asyncio
from pathlib import Path
import sys
from typing import List

import streamlit as st
import pandas as pd
import calendar
import altair as alt
from streamlit_autorefresh import st_autorefresh

# Ensure sibling modules import when Streamlit runs this file as a script and
# the repository directory is not already on ``sys.path``.
CURRENT_DIR = Path(__file__).resolve().parent
if str(CURRENT_DIR) not in sys.path:
    sys.path.insert(0, str(CURRENT_DIR))

from config import REFRESH_INTERVAL_SECONDS, STATE_FILE, setup_logging
from data_processing import TIMESTAMP_KEY, records_to_frame
from kpi import DeviceStatus, WARNING_THRESHOLD
from monitor import LoadOutcome, MonitorSession, SOURCE_LOCAL
from preferences import SIDEBAR_OPEN, PreferenceStore
from schema import DeviceDescriptor
from time_filter import ALL, TimeWindow


_sidebar_open = PreferenceStore(STATE_FILE).get_bool(SIDEBAR_OPEN, True)
st.set_page_config(
    page_title="TR Monitor",
    layout="wide",
    page_icon="⚡",
    initial_sidebar_state="expanded" if _sidebar_open else "collapsed",
)


def _get_session() -> MonitorSession:
    if "monitor" not in st.session_state:
        setup_logging()
        st.session_state["monitor"] = MonitorSession(store=PreferenceStore(STATE_FILE))
        st.session_state["initial_load_pending"] = True
    return st.session_state["monitor"]


def _run_refresh(session: MonitorSession, background: bool = False) -> LoadOutcome:
    if background:
        return asyncio.run(session.refresh(background=True))
    with st.spinner("Loading data..."):
        return asyncio.run(session.refresh(background=False))


def _downsample(df: pd.DataFrame, max_points: int = 5000) -> pd.DataFrame:
    if df is None or df.empty or TIMESTAMP_KEY not in df.columns:
        return df
    if len(df) <= max_points:
        return df

    df_sorted = df.sort_values(TIMESTAMP_KEY)
    span = df_sorted[TIMESTAMP_KEY].iloc[-1] - df_sorted[TIMESTAMP_KEY].iloc[0]
    span_minutes = max(1, int(span.total_seconds() // 60) or 1)
    divisor = max(1, max_points // 2)
    step = max(1, span_minutes // divisor)

    resampled = (
        df_sorted.set_index(TIMESTAMP_KEY)
        .resample(f"{step}min")
        .mean(numeric_only=True)
        .dropna(how="all")
        .reset_index()
    )
    if resampled.empty:
        return df_sorted

    data_cols = [col for col in df.columns if col != TIMESTAMP_KEY]
    for col in data_cols:
        if col not in resampled.columns:
            resampled[col] = pd.NA
    return resampled[[TIMESTAMP_KEY] + data_cols]


def _readout(status: DeviceStatus, where=st) -> None:
    value = f"{status.current:.1f}°C" if status.current is not None else "-"
    delta = f"{status.delta:+.1f}°C" if status.previous is not None and status.current is not None else None
    where.metric("Current", value, delta=delta, delta_color="inverse")
    if status.is_high:
        where.caption(f"⚠️ Above {WARNING_THRESHOLD:.0f}°C")


def _recent_chart(status: DeviceStatus, device: DeviceDescriptor) -> alt.Chart:
    recent = pd.DataFrame(
        [(ts.strftime("%m/%d %H:%M"), value) for ts, value in status.recent],
        columns=["Time", "Value"],
    ).dropna(subset=["Value"])
    return (
        alt.Chart(recent)
        .mark_bar()
        .encode(
            x=alt.X("Time:N", sort=None, title=None),
            y=alt.Y("Value:Q", title="°C"),
            color=alt.condition(
                alt.datum.Value > WARNING_THRESHOLD, alt.value("#d62728"), alt.value(device.color)
            ),
        )
        .properties(title="Recent readings", height=200)
    )


def _device_chart(df: pd.DataFrame, device: DeviceDescriptor, height: int) -> alt.Chart:
    sub = df[[TIMESTAMP_KEY, device.id]].rename(columns={device.id: "Value"}).dropna(subset=["Value"])
    base = alt.Chart(sub).encode(
        x=alt.X(f"{TIMESTAMP_KEY}:T", title="Time"),
        y=alt.Y("Value:Q", title="°C", scale=alt.Scale(zero=False)),
    )
    area = base.mark_area(color=device.fill_color)
    line = base.mark_line(color=device.color)
    threshold = (
        alt.Chart(pd.DataFrame({"y": [WARNING_THRESHOLD]}))
        .mark_rule(strokeDash=[4, 4], color="#d62728")
        .encode(y="y:Q")
    )
    return alt.layer(area, line, threshold).properties(title=device.display_name, height=height)


session = _get_session()

# --- Sidebar: source, upload, device selection and labels ---
st.sidebar.header("⚡ Data Source")
url_value = st.sidebar.text_input("CSV URL", value=session.source_url, key="source_url_input")
if url_value.strip() and url_value.strip() != session.source_url:
    session.change_url(url_value)
    _run_refresh(session)

uploaded = st.sidebar.file_uploader("Upload CSV file", type=["csv", "txt"], key="csv_uploader")
if uploaded is not None and st.session_state.get("last_upload") != uploaded.file_id:
    st.session_state["last_upload"] = uploaded.file_id
    session.load_text(uploaded.getvalue())

if st.session_state.pop("initial_load_pending", False):
    _run_refresh(session)

devices = session.display_devices
if devices:
    st.sidebar.markdown("### Transformers")
    selection_key = f"selection_{'|'.join(d.id for d in devices)}"
    if st.sidebar.button("Select all", key="select_all"):
        session.select_all()
        st.session_state[selection_key] = list(session.selection or [])
    st.session_state.setdefault(selection_key, list(session.selection or []))
    selected = st.sidebar.multiselect(
        "Displayed transformers",
        options=[d.id for d in devices],
        format_func=lambda device_id: next(
            (d.display_name for d in devices if d.id == device_id), device_id
        ),
        key=selection_key,
    )
    if set(selected) != set(session.selection or []):
        session.set_selection(selected)

    with st.sidebar.expander("Display names"):
        for device in session.descriptors:
            current = session.labels.get(device.id, "")
            value = st.text_input(device.id, value=current, key=f"label_{device.id}")
            if value != current:
                session.set_label(device.id, value)

keep_open = st.sidebar.checkbox("Keep sidebar open", value=session.sidebar_open, key="sidebar_open")
if keep_open != session.sidebar_open:
    session.set_sidebar_open(keep_open)

# --- Header: title, time window, refresh controls ---
focused = next((d for d in session.display_devices if d.id == session.focused_id), None)
st.title(f"{focused.display_name} detail" if focused else "Transformer (TR) temperature monitor")
mode_label = "Local Mode" if session.source_mode == SOURCE_LOCAL else "Cloud Mode"
st.caption(mode_label + (" · LIVE" if session.auto_refresh else ""))

years = [ALL] + [str(y) for y in session.available_years()]
months = [ALL] + [str(m) for m in range(1, 13)]
current_window = session.window.to_strings()


def _month_label(option: str) -> str:
    return option if option == ALL else calendar.month_abbr[int(option)]


def _index_of(options: List[str], value: str) -> int:
    return options.index(value) if value in options else 0


col_sy, col_sm, col_ey, col_em, col_auto, col_refresh = st.columns([2, 2, 2, 2, 1, 1])
start_year = col_sy.selectbox("From year", years, index=_index_of(years, current_window["start_year"]))
start_month = col_sm.selectbox(
    "From month", months, index=_index_of(months, current_window["start_month"]), format_func=_month_label
)
end_year = col_ey.selectbox("To year", years, index=_index_of(years, current_window["end_year"]))
end_month = col_em.selectbox(
    "To month", months, index=_index_of(months, current_window["end_month"]), format_func=_month_label
)
window = TimeWindow.from_strings(start_year, start_month, end_year, end_month)
if window != session.window:
    session.set_window(window)

if session.source_mode != SOURCE_LOCAL:
    auto = col_auto.toggle("Auto", value=session.auto_refresh, help="Auto refresh")
    if auto != session.auto_refresh:
        session.set_auto_refresh(auto)
    if col_refresh.button("↻", help="Refresh now", disabled=session.is_loading):
        _run_refresh(session)
    if session.auto_refresh:
        tick = st_autorefresh(interval=REFRESH_INTERVAL_SECONDS * 1000, key="data_autorefresh")
        if tick and tick != st.session_state.get("last_tick"):
            st.session_state["last_tick"] = tick
            _run_refresh(session, background=True)

if session.error:
    st.error(f"Data load failed: {session.error}")
    st.stop()

# --- KPIs ---
kpis = session.kpis()
if kpis is not None:
    k1, k2, k3, k4 = st.columns(4)
    k1.metric(
        "Average temperature",
        f"{kpis.avg_now:.1f}°C",
        delta=f"{kpis.avg_delta:+.1f}°C",
        delta_color="inverse",
    )
    k2.metric(
        "Hot spot",
        f"{kpis.max_temp:.1f}°C" if kpis.max_temp is not None else "-",
        help=kpis.max_device_name,
    )
    k2.caption(kpis.max_device_name)
    k3.metric("Reporting", f"{kpis.active_count} units")
    k4.metric("Status", "Normal" if kpis.status == "normal" else "Warning")
    k4.caption(f"{kpis.warning_count} alerts")

# --- Charts ---
filtered = session.filtered_records()
chart_df = _downsample(records_to_frame(filtered, [d.id for d in session.descriptors]))

if not session.display_devices:
    st.info("No data columns found to display.")
    st.stop()

to_show: List[DeviceDescriptor] = session.visible_devices()
if not to_show:
    st.info("No transformers selected.")
    st.stop()

if focused:
    if st.button("← Back to grid"):
        session.focus(None)
        st.rerun()
    focused_status = session.device_status(focused.id)
    chart_col, side_col = st.columns([3, 1])
    chart_col.altair_chart(_device_chart(chart_df, focused, height=400), use_container_width=True)
    _readout(focused_status, side_col)
    side_col.altair_chart(_recent_chart(focused_status, focused), use_container_width=True)
else:
    grid = st.columns(3)
    for idx, device in enumerate(to_show):
        with grid[idx % 3]:
            _readout(session.device_status(device.id))
            st.altair_chart(_device_chart(chart_df, device, height=200), use_container_width=True)
            if st.button("Details", key=f"focus_{device.id}"):
                session.focus(device.id)
                st.rerun()

export_text = session.export_csv()
st.download_button(
    "Download filtered data (CSV)",
    data=export_text.encode("utf-8"),
    file_name="tr_monitor_export.csv",
    mime="text/csv",
    disabled=not export_text,
)

