"""
Error taxonomy for the CVMFS scraper.

Only :class:`ServerMetadataError` aborts a whole server scrape. Everything else
is caught at the smallest scope (document / repository) and turned into a
structured verdict by the orchestrator.
"""

from __future__ import annotations

from typing import Optional


class ScraperError(Exception):
    """Base class for all scraper errors."""

    kind = "ScraperError"


class TransportError(ScraperError):
    """Fetching a resource failed (network, HTTP status, timeout)."""

    kind = "TransportError"

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        self.url = url
        self.status = status
        detail = f"HTTP {status}: {message}" if status is not None else message
        super().__init__(f"{url}: {detail}")


class MalformedManifest(ScraperError):
    """The .cvmfspublished document does not follow the manifest format."""

    kind = "MalformedManifest"


class MalformedStatus(ScraperError):
    """The .cvmfs_status.json document is not a valid status object."""

    kind = "MalformedStatus"


class SignatureUnverifiable(ScraperError):
    """A signature cannot be checked with the material at hand."""

    kind = "SignatureUnverifiable"


class ServerMetadataError(ScraperError):
    """Server-wide metadata could not be obtained or is inconsistent."""

    kind = "ServerMetadataError"


class MalformedMetadata(ServerMetadataError):
    """repositories.json or meta.json is not valid."""

    kind = "MalformedMetadata"


class ServerTypeMismatch(ServerMetadataError):
    """The declared server type contradicts repositories.json."""

    kind = "ServerTypeMismatch"


class EmptyRepositoryList(ServerMetadataError):
    """Nothing to scrape on a server without repositories.json."""

    kind = "EmptyRepositoryList"


class ConfigError(ScraperError):
    """The configuration file is missing or invalid."""

    kind = "ConfigError"
