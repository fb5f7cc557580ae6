"""
Orchestrator for the fetch → parse → validate → reconcile pass over servers.

Repositories of a server, and servers themselves, are scraped concurrently.
A repository failure is recorded on that repository's result only. A server
metadata failure turns the whole server into a :class:`FailedServer`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .errors import (
    EmptyRepositoryList,
    MalformedManifest,
    MalformedMetadata,
    MalformedStatus,
    ServerMetadataError,
    TransportError,
)
from .interfaces import META_JSON, REPOSITORIES_JSON, Fetcher, manifest_path, status_path
from .manifest import parse_manifest
from .metadata import (
    advertised_names,
    check_server_type,
    merge_metadata,
    parse_meta_json,
    parse_repositories_json,
)
from .models import (
    ErrorInfo,
    FailedServer,
    MetaJSON,
    PopulatedServer,
    RawItem,
    RepositoryResult,
    ScrapedServer,
    Server,
    ServerBackendType,
    ServerMetadata,
)
from .status import parse_status, reconcile
from .trust import TrustAnchor
from .validator import DEFAULT_MAX_FUTURE_SKEW, validate_manifest

logger = logging.getLogger(__name__)

__all__ = ["ScrapeOptions", "scrape_repository", "scrape_server", "scrape_servers"]


class ScrapeOptions(BaseModel):
    """Caller policy threaded through a scrape. Nothing here is global."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    trust: Optional[TrustAnchor] = None
    require_meta_json: bool = True
    include_advertised: bool = True
    max_future_skew: int = DEFAULT_MAX_FUTURE_SKEW
    # repository name -> last revision seen by the caller
    previous_revisions: Dict[str, int] = Field(default_factory=dict)
    # repository name -> signing certificate (PEM) when known out of band
    certificates: Dict[str, bytes] = Field(default_factory=dict)


async def _try_fetch(fetcher: Fetcher, path: str) -> Tuple[Optional[RawItem], Optional[TransportError]]:
    try:
        return await fetcher.fetch(path), None
    except TransportError as exc:
        return None, exc


# --------------------------------------------------------------------------- #
# Per repository
# --------------------------------------------------------------------------- #


async def scrape_repository(
    name: str,
    fetcher: Fetcher,
    options: Optional[ScrapeOptions] = None,
    advertised: Optional[Set[str]] = None,
) -> RepositoryResult:
    """Fetch, parse, validate and reconcile one repository. Never raises for I/O or format errors."""
    options = options or ScrapeOptions()
    is_advertised = None if advertised is None else name in advertised

    (manifest_raw, manifest_err), (status_raw, status_err) = await asyncio.gather(
        _try_fetch(fetcher, manifest_path(name)),
        _try_fetch(fetcher, status_path(name)),
    )

    status = None
    status_exc: Optional[Exception] = status_err
    if status_raw is not None:
        try:
            status = parse_status(status_raw.payload)
        except MalformedStatus as exc:
            logger.warning("%s: malformed status: %s", name, exc)
            status_exc = exc
    elif status_err is not None:
        logger.info("%s: status unavailable: %s", name, status_err)
    status_error = ErrorInfo.from_exception(status_exc) if status_exc else None

    if manifest_err is not None:
        logger.warning("%s: manifest fetch failed: %s", name, manifest_err)
        return RepositoryResult(
            name=name,
            status=status,
            advertised=is_advertised,
            error=ErrorInfo.from_exception(manifest_err),
            status_error=status_error,
        )

    try:
        manifest = parse_manifest(manifest_raw.payload)
    except MalformedManifest as exc:
        logger.warning("%s: malformed manifest: %s", name, exc)
        return RepositoryResult(
            name=name,
            status=status,
            advertised=is_advertised,
            error=ErrorInfo.from_exception(exc),
            status_error=status_error,
        )

    validation = validate_manifest(
        manifest,
        options.trust,
        certificate=options.certificates.get(name),
        previous_revision=options.previous_revisions.get(name),
        max_future_skew=options.max_future_skew,
        expected_name=name,
    )
    verdict = reconcile(manifest, status, status_exc)
    logger.debug("%s: revision %d, signature %s, %s", name, manifest.revision, validation.signature.status.value, verdict.value)

    return RepositoryResult(
        name=name,
        manifest=manifest,
        status=status,
        validation=validation,
        consistency=verdict,
        advertised=is_advertised,
        status_error=status_error,
    )


# --------------------------------------------------------------------------- #
# Per server
# --------------------------------------------------------------------------- #


async def _fetch_meta(server: Server, fetcher: Fetcher, options: ScrapeOptions) -> Optional[MetaJSON]:
    try:
        raw = await fetcher.fetch(META_JSON)
        return parse_meta_json(raw.payload)
    except TransportError as exc:
        if options.require_meta_json:
            raise ServerMetadataError(f"{server.hostname}: meta.json unavailable: {exc}") from exc
        logger.warning("%s: meta.json unavailable: %s", server.hostname, exc)
    except MalformedMetadata as exc:
        if options.require_meta_json:
            raise
        logger.warning("%s: ignoring malformed meta.json: %s", server.hostname, exc)
    return None


async def _server_phase(
    server: Server,
    repositories: Sequence[str],
    fetcher: Fetcher,
    options: ScrapeOptions,
) -> Tuple[ServerBackendType, Optional[ServerMetadata], Optional[Set[str]]]:
    """Return (detected backend, metadata, advertised names) or raise ServerMetadataError."""
    if server.backend_type is ServerBackendType.S3:
        if not repositories:
            raise EmptyRepositoryList(f"{server.hostname}: empty repository list with explicit S3 backend")
        return ServerBackendType.S3, None, None

    try:
        raw = await fetcher.fetch(REPOSITORIES_JSON)
    except TransportError as exc:
        if server.backend_type is ServerBackendType.AUTODETECT:
            # unlike explicit S3, an empty repository list is accepted here
            logger.debug("Detected S3 backend for %s (%s)", server.hostname, exc)
            return ServerBackendType.S3, None, None
        raise ServerMetadataError(f"{server.hostname}: repositories.json unavailable: {exc}") from exc

    repos = parse_repositories_json(raw.payload)
    check_server_type(server, repos)
    meta = await _fetch_meta(server, fetcher, options)
    logger.debug("Detected CVMFS backend for %s", server.hostname)
    return ServerBackendType.CVMFS, merge_metadata(repos, meta), set(advertised_names(repos))


async def scrape_server(
    server: Server,
    repositories: Iterable[str],
    fetcher: Fetcher,
    options: Optional[ScrapeOptions] = None,
) -> ScrapedServer:
    """Scrape one server: metadata first, then every repository concurrently."""
    options = options or ScrapeOptions()
    requested = list(dict.fromkeys(repositories))
    logger.info("Scraping server %s", server)

    try:
        backend, metadata, advertised = await _server_phase(server, requested, fetcher, options)
    except ServerMetadataError as exc:
        logger.error("Server %s failed: %s", server.hostname, exc)
        return FailedServer(
            hostname=server.hostname,
            server_type=server.server_type,
            backend_type=server.backend_type,
            error=ErrorInfo.from_exception(exc),
        )

    names = set(requested)
    if options.include_advertised and advertised:
        names |= advertised

    results = await asyncio.gather(
        *(scrape_repository(name, fetcher, options, advertised) for name in sorted(names))
    )
    failed = sum(1 for r in results if r.error is not None)
    logger.info(
        "Scraped %s: %d repositories, %d failed",
        server.hostname,
        len(results),
        failed,
    )

    return PopulatedServer(
        hostname=server.hostname,
        server_type=server.server_type,
        backend_type=server.backend_type,
        backend_detected=backend,
        metadata=metadata,
        repositories=list(results),
    )


async def scrape_servers(
    targets: Sequence[Tuple[Server, Sequence[str]]],
    fetcher_factory: Callable[[Server], Fetcher],
    options: Optional[ScrapeOptions] = None,
) -> List[ScrapedServer]:
    """Scrape several servers concurrently; results are sorted by hostname."""

    async def _one(server: Server, repositories: Sequence[str]) -> ScrapedServer:
        async with fetcher_factory(server) as fetcher:
            return await scrape_server(server, repositories, fetcher, options)

    results = await asyncio.gather(*(_one(server, repos) for server, repos in targets))
    return sorted(results, key=lambda s: s.hostname)
