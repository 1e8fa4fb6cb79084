"""Small JSON-backed key/value store for dashboard preferences."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

SOURCE_URL = "source_url"
AUTO_REFRESH = "auto_refresh"
SIDEBAR_OPEN = "sidebar_open"
START_YEAR = "start_year"
START_MONTH = "start_month"
END_YEAR = "end_year"
END_MONTH = "end_month"
CUSTOM_LABELS = "custom_labels"
SELECTED_DEVICES = "selected_devices"

WINDOW_KEYS = (START_YEAR, START_MONTH, END_YEAR, END_MONTH)


class PreferenceStore:
    """Persist JSON-serialisable values by key.

    With ``path`` set every write is flushed to that file; without it the store
    lives in memory only. A missing or unreadable file starts an empty store.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._values: Dict[str, str] = self._load()

    def _load(self) -> Dict[str, str]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable preference file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _flush(self) -> None:
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(self._values, ensure_ascii=False, indent=2), encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not save preferences to %s: %s", self.path, exc)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str, default=None):
        raw = self._values.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            return default

    def set(self, key: str, value) -> None:
        self._values[key] = json.dumps(value, ensure_ascii=False)
        self._flush()

    def remove(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()

    def get_str(self, key: str, default: str) -> str:
        value = self.get(key, default)
        return value if isinstance(value, str) else default

    def get_bool(self, key: str, default: bool) -> bool:
        value = self.get(key, default)
        return value if isinstance(value, bool) else default

    def get_labels(self) -> Dict[str, str]:
        value = self.get(CUSTOM_LABELS, {})
        if not isinstance(value, dict):
            return {}
        return {str(k): v for k, v in value.items() if isinstance(v, str)}

    def get_selection(self) -> Optional[List[str]]:
        """Stored device selection, or None when none was ever saved."""

        value = self.get(SELECTED_DEVICES)
        if not isinstance(value, list):
            return None
        return [str(item) for item in value]


__all__ = ["PreferenceStore"]
