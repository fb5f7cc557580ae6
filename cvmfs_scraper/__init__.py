"""
CVMFS scraper – fetches and validates the published state of CVMFS servers.

Typical use::

    from cvmfs_scraper import CvmfsFetcher, Server, ServerType, scrape_server

    server = Server(hostname="cvmfs-stratum-one.cern.ch", server_type=ServerType.STRATUM1)
    async with CvmfsFetcher(server.hostname) as fetcher:
        result = await scrape_server(server, ["atlas.cern.ch"], fetcher)
"""

from .errors import (
    MalformedManifest,
    MalformedStatus,
    ScraperError,
    ServerMetadataError,
    SignatureUnverifiable,
    TransportError,
)
from .fetcher import CvmfsFetcher
from .manifest import parse_manifest, serialize_manifest
from .models import (
    CheckResult,
    ConsistencyVerdict,
    FailedServer,
    Manifest,
    PopulatedServer,
    RepositoryResult,
    Server,
    ServerBackendType,
    ServerType,
    SignatureStatus,
    Status,
)
from .orchestrator import ScrapeOptions, scrape_repository, scrape_server, scrape_servers
from .status import parse_status, reconcile
from .trust import TrustAnchor
from .validator import validate_manifest

__all__ = [
    "CheckResult",
    "ConsistencyVerdict",
    "CvmfsFetcher",
    "FailedServer",
    "MalformedManifest",
    "MalformedStatus",
    "Manifest",
    "PopulatedServer",
    "RepositoryResult",
    "ScrapeOptions",
    "ScraperError",
    "Server",
    "ServerBackendType",
    "ServerMetadataError",
    "ServerType",
    "SignatureStatus",
    "SignatureUnverifiable",
    "Status",
    "TransportError",
    "TrustAnchor",
    "parse_manifest",
    "parse_status",
    "reconcile",
    "scrape_repository",
    "scrape_server",
    "scrape_servers",
    "serialize_manifest",
    "validate_manifest",
]
