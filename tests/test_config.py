import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[1]))

from config import _parse_proxy_templates


def test_parse_proxy_templates_keeps_query_strings_intact():
    pairs = _parse_proxy_templates(
        "CorsProxy.io=https://corsproxy.io/?{url}; AllOrigins=https://api.allorigins.win/raw?url={url}"
    )

    assert pairs == [
        ("CorsProxy.io", "https://corsproxy.io/?{url}"),
        ("AllOrigins", "https://api.allorigins.win/raw?url={url}"),
    ]


def test_parse_proxy_templates_drops_entries_without_placeholder():
    assert _parse_proxy_templates("broken;NoUrl=https://x.test/;;") == []
    assert _parse_proxy_templates("") == []
