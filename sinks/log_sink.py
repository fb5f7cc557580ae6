"""
Log sink – one summary line per server and per repository.
"""

import logging
from typing import Optional

from cvmfs_scraper.interfaces import Sink
from cvmfs_scraper.models import FailedServer, PopulatedServer, RepositoryResult, ScrapedServer


logger = logging.getLogger(__name__)


def describe_repository(repo: RepositoryResult) -> str:
    """One-line summary of a repository result."""
    if repo.error is not None:
        return f"{repo.name}: {repo.error.kind}: {repo.error.message}"

    parts = [f"{repo.name}: revision {repo.revision}"]
    if repo.validation is not None:
        failed = repo.validation.failed_checks
        parts.append("structure ok" if not failed else f"failed checks {','.join(failed)}")
        parts.append(f"signature {repo.validation.signature.status.value}")
    if repo.consistency is not None:
        parts.append(repo.consistency.value)
    if repo.advertised is False:
        parts.append("not advertised")
    return ", ".join(parts)


class LogSink(Sink):
    """Sink that writes scrape summaries to the log."""

    name = "LogSink"

    def __init__(self, logger_name: Optional[str] = None):
        self._log = logging.getLogger(logger_name) if logger_name else logger

    async def handle(self, item: ScrapedServer) -> None:
        if isinstance(item, FailedServer):
            self._log.error("%s: %s: %s", item.hostname, item.error.kind, item.error.message)
            return

        if not isinstance(item, PopulatedServer):
            logger.debug(f"Ignoring unsupported item: {type(item).__name__}")
            return

        self._log.info(
            "%s (%s, backend %s): %d repositories",
            item.hostname,
            item.server_type.value,
            item.backend_detected.value,
            len(item.repositories),
        )
        for repo in item.repositories:
            level = logging.INFO if repo.ok else logging.WARNING
            self._log.log(level, "  %s", describe_repository(repo))
