"""Remote CSV retrieval with ordered fallback transports.

Each strategy is a URL template tried in turn against the same source; the
first one that returns something that looks like CSV wins. Strategies are
never raced against each other.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote

import aiohttp

from config import FETCH_TIMEOUT_SECONDS, PROXY_TEMPLATES

logger = logging.getLogger(__name__)

CACHE_BUST_PARAM = "_t"


class TransportError(RuntimeError):
    """Raised when every configured transport failed for one fetch."""

    def __init__(self, url: str, failures: Sequence[Tuple[str, str]]):
        self.url = url
        self.failures = list(failures)
        detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures)
        super().__init__(f"All transports failed for {url}" + (f" ({detail})" if detail else ""))


@dataclass(frozen=True)
class TransportStrategy:
    """One way of reaching the source.

    ``template`` is ``None`` for a direct request, otherwise a proxy URL
    containing ``{url}`` which receives the URL-encoded target.
    """

    name: str
    template: Optional[str] = None

    def build_url(self, target: str) -> str:
        if self.template is None:
            return target
        return self.template.replace("{url}", quote(target, safe=""))


def default_strategies() -> List[TransportStrategy]:
    strategies = [TransportStrategy("Direct")]
    strategies.extend(TransportStrategy(name, template) for name, template in PROXY_TEMPLATES)
    return strategies


def with_cache_buster(url: str, stamp_ms: Optional[int] = None) -> str:
    """Append ``_t=<epoch ms>`` so caches along the way never answer."""

    if stamp_ms is None:
        stamp_ms = int(time.time() * 1000)
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{CACHE_BUST_PARAM}={stamp_ms}"


def looks_like_error_page(body: str) -> bool:
    """Return True for HTML/error bodies that cannot plausibly be CSV."""

    suspicious = body.strip().startswith("<") or "Error" in body
    return suspicious and "," not in body


class TransportResolver:
    """Fetch raw CSV text, falling back through ``strategies`` in order."""

    def __init__(
        self,
        strategies: Optional[Sequence[TransportStrategy]] = None,
        timeout: float = FETCH_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.strategies = list(strategies) if strategies is not None else default_strategies()
        self.timeout = timeout
        self._session = session

    async def fetch(self, url: str) -> str:
        if self._session is not None:
            return await self._fetch_with(self._session, url)
        client_timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            return await self._fetch_with(session, url)

    async def _fetch_with(self, session, url: str) -> str:
        target = with_cache_buster(url)
        failures: List[Tuple[str, str]] = []

        for strategy in self.strategies:
            request_url = strategy.build_url(target)
            try:
                async with session.get(request_url) as response:
                    if response.status >= 400:
                        logger.warning(
                            "Strategy %r failed with status %s", strategy.name, response.status
                        )
                        failures.append((strategy.name, f"HTTP {response.status}"))
                        continue
                    body = await response.text()
            except (aiohttp.ClientError, asyncio.TimeoutError, UnicodeDecodeError) as exc:
                logger.warning("Strategy %r raised %s: %s", strategy.name, type(exc).__name__, exc)
                failures.append((strategy.name, type(exc).__name__))
                continue

            if looks_like_error_page(body):
                logger.warning("Strategy %r returned an error page instead of CSV", strategy.name)
                failures.append((strategy.name, "invalid content"))
                continue

            logger.info("Fetched %d bytes via %s", len(body), strategy.name)
            return body

        raise TransportError(url, failures)


__all__ = [
    "TransportError",
    "TransportResolver",
    "TransportStrategy",
    "default_strategies",
    "looks_like_error_page",
    "with_cache_buster",
]
