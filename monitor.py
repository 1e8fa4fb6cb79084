"""Stateful coordinator tying fetch, parsing, schema and filters together.

One ``MonitorSession`` owns the current dataset, derived schema and device
selection. Every mutation goes through it, so the dashboard never needs locks;
the only suspension point is the remote fetch in :meth:`MonitorSession.refresh`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional, Union

from config import DEFAULT_SOURCE_URL
from data_processing import Record, parse_csv_text, records_to_csv
from kpi import DeviceStatus, Kpis, aggregate, device_status
from preferences import (
    AUTO_REFRESH,
    CUSTOM_LABELS,
    SELECTED_DEVICES,
    SIDEBAR_OPEN,
    SOURCE_URL,
    WINDOW_KEYS,
    PreferenceStore,
)
from schema import (
    DeviceDescriptor,
    apply_display_names,
    derive_schema,
    reconcile_selection,
    visible_devices,
)
from time_filter import ALL, TimeWindow, available_years, filter_records
from transport import TransportError, TransportResolver

logger = logging.getLogger(__name__)

LOAD_FAILED_MESSAGE = "Could not load data."
EMPTY_DATA_MESSAGE = "Data is empty."

SOURCE_CLOUD = "cloud"
SOURCE_LOCAL = "local"


class LoadOutcome(Enum):
    LOADED = "loaded"
    EMPTY = "empty"
    FAILED = "failed"
    BUSY = "busy"
    STALE = "stale"


class MonitorSession:
    def __init__(
        self,
        store: Optional[PreferenceStore] = None,
        resolver: Optional[TransportResolver] = None,
        default_url: str = DEFAULT_SOURCE_URL,
    ):
        self.store = store if store is not None else PreferenceStore()
        self.resolver = resolver if resolver is not None else TransportResolver()

        self.source_url: str = self.store.get_str(SOURCE_URL, default_url)
        self.auto_refresh: bool = self.store.get_bool(AUTO_REFRESH, False)
        self.sidebar_open: bool = self.store.get_bool(SIDEBAR_OPEN, True)
        self.labels: Dict[str, str] = self.store.get_labels()
        self.selection: Optional[List[str]] = self.store.get_selection()
        self.window = TimeWindow.from_strings(*(self.store.get_str(k, ALL) for k in WINDOW_KEYS))

        self.records: List[Record] = []
        self.descriptors: List[DeviceDescriptor] = []
        self.source_mode = SOURCE_CLOUD
        self.error: Optional[str] = None
        self.focused_id: Optional[str] = None

        self._in_flight = False
        self._queued_background: Optional[bool] = None

    # -- loading -----------------------------------------------------------

    @property
    def is_loading(self) -> bool:
        return self._in_flight

    async def refresh(self, background: bool = False) -> LoadOutcome:
        """Fetch the source URL and replace the dataset.

        Manual and interval refreshes share this entry point. A call arriving
        while another is in flight is queued (coalesced into one rerun) and
        reports ``BUSY``.
        """

        if self._in_flight:
            if self._queued_background is None:
                self._queued_background = background
            else:
                self._queued_background = self._queued_background and background
            logger.debug("Refresh already in flight; queued another run")
            return LoadOutcome.BUSY

        self._in_flight = True
        try:
            outcome = await self._refresh_once(background)
            while self._queued_background is not None:
                queued, self._queued_background = self._queued_background, None
                outcome = await self._refresh_once(queued)
        finally:
            self._in_flight = False
        return outcome

    async def _refresh_once(self, background: bool) -> LoadOutcome:
        url = self.source_url
        self.source_mode = SOURCE_CLOUD
        if not background:
            self.error = None

        try:
            text = await self.resolver.fetch(url)
        except TransportError as exc:
            logger.warning("Refresh failed: %s", exc)
            if url != self.source_url:
                return LoadOutcome.STALE
            self._report(LOAD_FAILED_MESSAGE, background)
            return LoadOutcome.FAILED

        if url != self.source_url:
            logger.info("Discarding response for previous source %s", url)
            return LoadOutcome.STALE
        return self._ingest(parse_csv_text(text), background)

    def load_text(self, raw: Union[str, bytes]) -> LoadOutcome:
        """Load an uploaded CSV blob through the same parser as the remote source."""

        text = raw.decode("utf-8-sig", errors="replace") if isinstance(raw, bytes) else str(raw)
        self.source_mode = SOURCE_LOCAL
        self.set_auto_refresh(False)
        self.error = None
        return self._ingest(parse_csv_text(text), background=False)

    def _report(self, message: str, background: bool) -> None:
        # background failures stay quiet while there is data on screen
        if background and self.records:
            return
        self.error = message

    def _ingest(self, records: List[Record], background: bool) -> LoadOutcome:
        if not records:
            self._report(EMPTY_DATA_MESSAGE, background)
            return LoadOutcome.EMPTY

        previous_ids = [d.id for d in self.descriptors] if self.descriptors else None
        self.records = records
        self.descriptors = derive_schema(records)
        self.error = None

        new_ids = [d.id for d in self.descriptors]
        if new_ids:
            self.selection = reconcile_selection(self.selection, new_ids, previous_ids)
            self.store.set(SELECTED_DEVICES, self.selection)
        if self.focused_id not in new_ids:
            self.focused_id = None

        logger.info("Loaded %d records with %d devices", len(records), len(new_ids))
        return LoadOutcome.LOADED

    # -- preferences -------------------------------------------------------

    def change_url(self, url: str) -> None:
        self.source_url = url.strip()
        self.store.set(SOURCE_URL, self.source_url)

    def set_auto_refresh(self, enabled: bool) -> None:
        self.auto_refresh = bool(enabled)
        self.store.set(AUTO_REFRESH, self.auto_refresh)

    def set_sidebar_open(self, is_open: bool) -> None:
        self.sidebar_open = bool(is_open)
        self.store.set(SIDEBAR_OPEN, self.sidebar_open)

    def set_label(self, device_id: str, label: str) -> None:
        self.labels = {**self.labels, device_id: label}
        self.store.set(CUSTOM_LABELS, self.labels)

    def set_window(self, window: TimeWindow) -> None:
        self.window = window
        for key, value in window.to_strings().items():
            self.store.set(key, value)

    # -- selection ---------------------------------------------------------

    def set_selection(self, device_ids: Iterable[str]) -> None:
        known = {d.id for d in self.descriptors}
        chosen = set(device_ids)
        self.selection = [d.id for d in self.descriptors if d.id in chosen and d.id in known]
        if self.descriptors:
            self.store.set(SELECTED_DEVICES, self.selection)

    def toggle_device(self, device_id: str) -> None:
        current = set(self.selection or [])
        if device_id in current:
            current.discard(device_id)
        else:
            current.add(device_id)
        self.set_selection(current)

    def select_all(self) -> None:
        self.set_selection(d.id for d in self.descriptors)

    def focus(self, device_id: Optional[str]) -> None:
        self.focused_id = device_id if any(d.id == device_id for d in self.descriptors) else None

    # -- derived views -----------------------------------------------------

    @property
    def display_devices(self) -> List[DeviceDescriptor]:
        return apply_display_names(self.descriptors, self.labels)

    def visible_devices(self) -> List[DeviceDescriptor]:
        return visible_devices(self.display_devices, self.selection or [], self.focused_id)

    def filtered_records(self) -> List[Record]:
        return filter_records(self.records, self.window)

    def available_years(self) -> List[int]:
        return available_years(self.records)

    def kpis(self) -> Optional[Kpis]:
        devices = self.display_devices
        return aggregate(
            self.filtered_records(),
            [d.id for d in devices],
            {d.id: d.display_name for d in devices},
        )

    def device_status(self, device_id: str) -> DeviceStatus:
        return device_status(self.filtered_records(), device_id)

    def export_csv(self) -> str:
        return records_to_csv(self.filtered_records())


__all__ = [
    "EMPTY_DATA_MESSAGE",
    "LOAD_FAILED_MESSAGE",
    "LoadOutcome",
    "MonitorSession",
]
