"""Device schema derivation and selection bookkeeping."""

import re
from dataclasses import dataclass, replace
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from data_processing import TIMESTAMP_KEY, Record

# (line colour, area fill) pairs handed out by sorted position.
CHART_PALETTE: Tuple[Tuple[str, str], ...] = (
    ("#F4A261", "rgba(244, 162, 97, 0.2)"),  # orange
    ("#2A9D8F", "rgba(42, 157, 143, 0.2)"),  # teal
    ("#E9C46A", "rgba(233, 196, 106, 0.2)"),  # yellow
    ("#E76F51", "rgba(231, 111, 81, 0.2)"),  # burnt sienna
    ("#264653", "rgba(38, 70, 83, 0.2)"),  # dark blue
    ("#8AB17D", "rgba(138, 177, 125, 0.2)"),  # green
    ("#B5838D", "rgba(181, 131, 141, 0.2)"),  # pink
    ("#FFB4A2", "rgba(255, 180, 162, 0.2)"),  # peach
    ("#6D6875", "rgba(109, 104, 117, 0.2)"),  # purple
    ("#A5A58D", "rgba(165, 165, 141, 0.2)"),  # olive
    ("#F4D35E", "rgba(244, 211, 94, 0.2)"),  # bright yellow
    ("#EE964B", "rgba(238, 150, 75, 0.2)"),  # orange pop
    ("#F95738", "rgba(249, 87, 56, 0.2)"),  # red
    ("#4CC9F0", "rgba(76, 201, 240, 0.2)"),  # cyan
    ("#7209B7", "rgba(114, 9, 183, 0.2)"),  # violet
)

_NON_DIGIT_RE = re.compile(r"[^0-9]")


@dataclass(frozen=True)
class DeviceDescriptor:
    id: str
    display_name: str
    color_index: int

    @property
    def color(self) -> str:
        return CHART_PALETTE[self.color_index % len(CHART_PALETTE)][0]

    @property
    def fill_color(self) -> str:
        return CHART_PALETTE[self.color_index % len(CHART_PALETTE)][1]


def _device_sort_key(device_id: str) -> Tuple[int, int, str]:
    """Numbered ids first by their digits (``TR2`` before ``TR10``), the rest by name."""

    digits = _NON_DIGIT_RE.sub("", device_id)
    if digits:
        return (0, int(digits), device_id)
    return (1, 0, device_id)


def sort_device_ids(device_ids: Iterable[str]) -> List[str]:
    return sorted(device_ids, key=_device_sort_key)


def derive_schema(records: Sequence[Record]) -> List[DeviceDescriptor]:
    """Return descriptors for the device columns of the first record."""

    if not records:
        return []
    ids = sort_device_ids(key for key in records[0] if key != TIMESTAMP_KEY)
    return [
        DeviceDescriptor(id=device_id, display_name=device_id, color_index=index)
        for index, device_id in enumerate(ids)
    ]


def reconcile_selection(
    previous: Optional[Iterable[str]],
    new_ids: Sequence[str],
    previous_ids: Optional[Iterable[str]] = None,
) -> List[str]:
    """Carry a device selection over to a freshly derived schema.

    ``previous`` is ``None`` when nothing was ever chosen, which selects every
    new id. An explicitly emptied selection stays empty unless the schema it
    was made against (``previous_ids``) shares nothing with the new one.
    Otherwise surviving ids are kept in schema order, falling back to all new
    ids when none survive.
    """

    all_ids = list(new_ids)
    if previous is None:
        return all_ids

    chosen = set(previous)
    if not chosen:
        if previous_ids is not None and not set(previous_ids) & set(all_ids):
            return all_ids
        return []

    kept = [device_id for device_id in all_ids if device_id in chosen]
    return kept if kept else all_ids


def apply_display_names(
    descriptors: Sequence[DeviceDescriptor], labels: Optional[Mapping[str, str]]
) -> List[DeviceDescriptor]:
    """Overlay user labels (keyed by id) onto derived descriptors."""

    if not labels:
        return list(descriptors)
    result: List[DeviceDescriptor] = []
    for descriptor in descriptors:
        label = labels.get(descriptor.id)
        if isinstance(label, str) and label.strip():
            descriptor = replace(descriptor, display_name=label.strip())
        result.append(descriptor)
    return result


def visible_devices(
    descriptors: Sequence[DeviceDescriptor],
    selection: Iterable[str],
    focused_id: Optional[str] = None,
) -> List[DeviceDescriptor]:
    """Return the devices to draw: the focused one alone, else the selection."""

    if focused_id is not None:
        return [d for d in descriptors if d.id == focused_id]
    chosen = set(selection)
    return [d for d in descriptors if d.id in chosen]


__all__ = [
    "CHART_PALETTE",
    "DeviceDescriptor",
    "apply_display_names",
    "derive_schema",
    "reconcile_selection",
    "sort_device_ids",
    "visible_devices",
]
