"""
CVMFS fetcher – retrieves server-relative resources over HTTP.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import aiohttp

from .errors import TransportError
from .infra.http import HttpClient
from .interfaces import Fetcher
from .models import RawItem

logger = logging.getLogger(__name__)

__all__ = ["CvmfsFetcher"]


class CvmfsFetcher(Fetcher):
    """Fetches ``<scheme>://<hostname>/<path>`` and wraps failures as TransportError."""

    name = "CvmfsFetcher"

    def __init__(
        self,
        hostname: str,
        *,
        scheme: str = "http",
        http: Optional[HttpClient] = None,
        **http_kwargs,
    ) -> None:
        self.hostname = hostname
        self.scheme = scheme
        self._owns_http = http is None
        self._http = http or HttpClient(**http_kwargs)

    def url(self, path: str) -> str:
        return f"{self.scheme}://{self.hostname}/{path.lstrip('/')}"

    async def fetch(self, path: str) -> RawItem:
        url = self.url(path)
        logger.debug("GET %s", url)
        try:
            payload = await self._http.get_bytes(url)
        except aiohttp.ClientResponseError as exc:
            raise TransportError(url, exc.message or "request failed", status=exc.status) from exc
        except asyncio.TimeoutError as exc:
            raise TransportError(url, "timed out") from exc
        except aiohttp.ClientError as exc:
            raise TransportError(url, str(exc) or type(exc).__name__) from exc
        return RawItem(source=url, payload=payload, fetched_at=datetime.now(timezone.utc))

    async def close(self) -> None:
        # an injected client belongs to the caller
        if self._owns_http:
            await self._http.close()
