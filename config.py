"""Runtime settings for the transformer monitor, read from the environment."""

import logging
import os
from pathlib import Path
from typing import List, Tuple

# Debug toggler: set TRM_DEBUG=1 to enable verbose parse logs
DEBUG = os.getenv("TRM_DEBUG", "0") == "1"

LOG_LEVEL = os.getenv("TRM_LOG_LEVEL", "INFO")

DEFAULT_SOURCE_URL = os.getenv(
    "TRM_SOURCE_URL",
    "https://docs.google.com/spreadsheets/d/1K8w405s3SthSLFbYdYT1PAnpnuzGMUOl0qxQDSiCKs8"
    "/export?format=csv&gid=69853061",
)

REFRESH_INTERVAL_SECONDS = int(os.getenv("TRM_REFRESH_SECONDS", "30"))
FETCH_TIMEOUT_SECONDS = float(os.getenv("TRM_FETCH_TIMEOUT", "15"))

STATE_FILE = Path(
    os.getenv("TRM_STATE_FILE", str(Path.home() / ".tr_monitor" / "state.json"))
)

_DEFAULT_PROXIES = (
    "CorsProxy.io=https://corsproxy.io/?{url};"
    "AllOrigins=https://api.allorigins.win/raw?url={url}"
)


def _parse_proxy_templates(raw: str) -> List[Tuple[str, str]]:
    """Return ``(name, template)`` pairs from ``name=template;...`` text."""

    pairs: List[Tuple[str, str]] = []
    for chunk in raw.split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        name, sep, template = chunk.partition("=")
        if not sep or "{url}" not in template:
            continue
        pairs.append((name.strip(), template.strip()))
    return pairs


PROXY_TEMPLATES = _parse_proxy_templates(os.getenv("TRM_PROXIES", _DEFAULT_PROXIES))


def dprint(*args, **kwargs):
    if DEBUG:
        print(*args, **kwargs)


def setup_logging(level: str = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
