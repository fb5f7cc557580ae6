"""
Core interfaces for the CVMFS scraper.

The validation core never talks to the network itself. It asks a
:class:`Fetcher` for the bytes behind a server-relative path and hands the
finished snapshots to :class:`Sink` implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

from .models import RawItem


REPOSITORIES_JSON = "cvmfs/info/v1/repositories.json"
META_JSON = "cvmfs/info/v1/meta.json"


def manifest_path(repository: str) -> str:
    return f"cvmfs/{repository}/.cvmfspublished"


def status_path(repository: str) -> str:
    return f"cvmfs/{repository}/.cvmfs_status.json"


class Fetcher(ABC):
    """Abstract base class for resource fetchers.

    A fetcher is bound to one server. Implementations raise
    :class:`~cvmfs_scraper.errors.TransportError` for every failure to
    retrieve a resource; they never retry on behalf of the core.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this fetcher."""
        pass

    @abstractmethod
    async def fetch(self, path: str) -> RawItem:
        """Fetch the resource at ``path`` relative to the server root."""
        pass

    async def close(self) -> None:
        """Release transport resources. Optional."""
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *_) -> None:
        await self.close()


class Sink(ABC):
    """Abstract base class for result sinks."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this sink."""
        pass

    @abstractmethod
    async def handle(self, item: Any) -> None:
        """Handle one scraped server."""
        pass

    async def handle_all(self, items: Iterable[Any]) -> None:
        for item in items:
            await self.handle(item)

    async def close(self) -> None:
        """Flush buffered output. Optional."""
        pass
