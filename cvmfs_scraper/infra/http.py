"""
http.py – Async HTTP client built on *aiohttp* with optional retries,
          429 / 5xx back-off and per-instance default headers.

Retrying is a transport policy. The scraper core performs a single fetch per
resource and reports whatever this client raises.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from email.utils import parsedate_to_datetime
from typing import Dict, Mapping, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "cvmfs-scraper/0.1"


class HttpClient:
    """
    Thin wrapper over *aiohttp.ClientSession* adding:

    * global & per-request headers (keeps user-agent in one place)
    * exponential back-off **with jitter** for 429 / 5xx / network errors
      when ``max_retries`` > 1
    * transparent parsing of *Retry-After* header
    * async context-manager support
    """

    def __init__(
        self,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 10.0,
        max_retries: int = 1,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        default_headers: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._external_session = session
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._own_session: Optional[aiohttp.ClientSession] = None
        self._default_headers: Dict[str, str] = {"User-Agent": DEFAULT_USER_AGENT}
        self._default_headers.update(default_headers or {})

    # ---------------------------------------------- #
    # Async context-manager
    async def __aenter__(self) -> "HttpClient":  # noqa: D401
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        await self.close()

    # ---------------------------------------------- #
    # Session management
    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._external_session:
            return self._external_session
        if self._own_session is None or self._own_session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout)
            self._own_session = aiohttp.ClientSession(timeout=timeout)
        return self._own_session

    async def close(self) -> None:
        if self._own_session and not self._own_session.closed:
            await self._own_session.close()
            self._own_session = None

    # ---------------------------------------------- #
    # Internal helpers
    @staticmethod
    def _parse_retry_after(header_val: str | None) -> Optional[float]:
        """Return seconds given a Retry-After header value."""
        if not header_val:
            return None
        header_val = header_val.strip()
        # seconds
        if header_val.isdigit():
            return float(header_val)
        # HTTP-date
        try:
            retry_at = parsedate_to_datetime(header_val).timestamp()
        except (TypeError, ValueError):
            return None
        return max(0.0, retry_at - time.time())

    def _backoff(self, attempt: int, retry_after: Optional[float]) -> float:
        if retry_after is not None:
            return min(retry_after, self._max_delay)
        exponential = min(self._base_delay * 2 ** (attempt - 1), self._max_delay)
        return exponential + random.uniform(0, self._base_delay)

    def _merge_headers(self, extra: Mapping[str, str] | None) -> Dict[str, str]:
        merged: Dict[str, str] = {**self._default_headers}
        if extra:
            merged.update(extra)
        return merged

    async def _get(
        self,
        url: str,
        *,
        retry_for_status: tuple[int, ...] = (429, 500, 502, 503, 504),
        **kwargs,
    ) -> bytes:
        """GET ``url`` and return the body, retrying up to ``max_retries`` attempts."""
        session = await self._ensure_session()
        kwargs["headers"] = self._merge_headers(kwargs.pop("headers", None))

        for attempt in range(1, self._max_retries + 1):
            try:
                async with session.get(url, allow_redirects=True, **kwargs) as resp:
                    if resp.status in retry_for_status and attempt < self._max_retries:
                        delay = self._backoff(attempt, self._parse_retry_after(resp.headers.get("Retry-After")))
                        logger.warning(
                            "GET %s returned %d (attempt %d/%d – will retry in %.1fs)",
                            url,
                            resp.status,
                            attempt,
                            self._max_retries,
                            delay,
                        )
                        await asyncio.sleep(delay)
                        continue
                    resp.raise_for_status()
                    return await resp.read()
            except aiohttp.ClientResponseError:
                raise
            except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
                if attempt == self._max_retries:
                    logger.debug("GET %s failed after %d attempt(s): %s", url, attempt, e)
                    raise
                delay = self._backoff(attempt, None)
                logger.warning(
                    "GET %s failed (attempt %d/%d – will retry in %.1fs): %s",
                    url,
                    attempt,
                    self._max_retries,
                    delay,
                    str(e).splitlines()[0] if str(e) else type(e).__name__,
                )
                await asyncio.sleep(delay)

        # Should never hit here
        raise RuntimeError("Unreachable retry loop")

    # ---------------------------------------------- #
    # Public helpers
    async def get_bytes(self, url: str, **kwargs) -> bytes:
        return await self._get(url, **kwargs)
