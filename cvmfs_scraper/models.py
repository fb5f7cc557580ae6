"""
Core data models for the CVMFS scraper.

Every model is frozen: scraping never mutates a value, it builds new ones.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from email.utils import parsedate_to_datetime
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_serializer, field_validator


_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?(:\d{1,5})?$")


def _check_hostname(value: str) -> str:
    value = value.strip()
    if not _HOSTNAME_RE.match(value):
        raise ValueError(f"invalid hostname: {value!r}")
    return value


# host or host:port, no scheme and no path
Hostname = Annotated[str, AfterValidator(_check_hostname)]


# --------------------------------------------------------------------------- #
# Servers
# --------------------------------------------------------------------------- #


class ServerType(str, Enum):
    """Role of a server in the CVMFS distribution tree.

    Stratum0:   the origin holding the master copy.
    Stratum1:   a replica of one or more Stratum0 repositories.
    SyncServer: a replica that is not a public Stratum1.
    """

    STRATUM0 = "Stratum0"
    STRATUM1 = "Stratum1"
    SYNC_SERVER = "SyncServer"


class ServerBackendType(str, Enum):
    """How the server publishes its content.

    AutoDetect fetches repositories.json: a transport failure means S3, a
    successful fetch means a regular CVMFS web server.
    """

    CVMFS = "CVMFS"
    S3 = "S3"
    AUTODETECT = "AutoDetect"


class Server(BaseModel):
    """A CVMFS server to scrape."""

    model_config = ConfigDict(frozen=True)

    hostname: Hostname
    server_type: ServerType
    backend_type: ServerBackendType = ServerBackendType.AUTODETECT

    def __str__(self) -> str:
        return f"{self.hostname} ({self.server_type.value}, {self.backend_type.value})"


class RawItem(BaseModel):
    """Raw bytes fetched from a server."""

    source: str
    payload: bytes
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# --------------------------------------------------------------------------- #
# Server metadata documents
# --------------------------------------------------------------------------- #


class RepositoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    url: Optional[str] = None


class RepositoriesJSON(BaseModel):
    """cvmfs/info/v1/repositories.json"""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    schema_version: int = Field(default=1, alias="schema")
    repositories: List[RepositoryEntry] = Field(default_factory=list)
    replicas: List[RepositoryEntry] = Field(default_factory=list)
    cvmfs_version: Optional[str] = None
    last_geodb_update: Optional[str] = None
    os_version_id: Optional[str] = None
    os_pretty_name: Optional[str] = None
    os_id: Optional[str] = None


class MetaJSON(BaseModel):
    """cvmfs/info/v1/meta.json"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    administrator: Optional[str] = None
    email: Optional[str] = None
    organisation: Optional[str] = None
    custom: Optional[Any] = None


class ServerMetadata(BaseModel):
    """Merged view of repositories.json and meta.json."""

    model_config = ConfigDict(frozen=True)

    schema_version: Optional[int] = None
    cvmfs_version: Optional[str] = None
    last_geodb_update: Optional[str] = None
    os_version_id: Optional[str] = None
    os_pretty_name: Optional[str] = None
    os_id: Optional[str] = None
    administrator: Optional[str] = None
    email: Optional[str] = None
    organisation: Optional[str] = None
    custom: Optional[Any] = None


# --------------------------------------------------------------------------- #
# Manifest
# --------------------------------------------------------------------------- #


class HashAlgorithm(str, Enum):
    SHA1 = "sha1"
    RMD160 = "rmd160"
    SHAKE128 = "shake128"
    MD5 = "md5"


# suffix appended to the hex digest in CVMFS textual hashes
HASH_SUFFIXES: Dict[str, HashAlgorithm] = {
    "rmd160": HashAlgorithm.RMD160,
    "shake128": HashAlgorithm.SHAKE128,
}

DIGEST_HEX_LENGTH: Dict[HashAlgorithm, int] = {
    HashAlgorithm.SHA1: 40,
    HashAlgorithm.RMD160: 40,
    HashAlgorithm.SHAKE128: 40,
    HashAlgorithm.MD5: 32,
}


class ContentHash(BaseModel):
    """A CVMFS content hash: hex digest plus algorithm."""

    model_config = ConfigDict(frozen=True)

    algorithm: HashAlgorithm = HashAlgorithm.SHA1
    digest: str

    @field_validator("digest")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.lower()

    def __str__(self) -> str:
        for suffix, algorithm in HASH_SUFFIXES.items():
            if algorithm is self.algorithm:
                return f"{self.digest}-{suffix}"
        return self.digest


class SignatureBlock(BaseModel):
    """Everything after the ``--`` terminator of a manifest."""

    model_config = ConfigDict(frozen=True)

    content_hash: str
    signature: bytes

    @field_serializer("signature", when_used="json")
    def _hex_signature(self, value: bytes) -> str:
        return value.hex()


class Manifest(BaseModel):
    """A parsed .cvmfspublished document.

    ``signed_content`` holds the exact bytes preceding the terminator line.
    Signature verification runs over these bytes, never over a re-serialized
    manifest.
    """

    model_config = ConfigDict(frozen=True)

    root_catalog_hash: ContentHash
    catalog_size: int
    root_path_hash: Optional[ContentHash] = None
    certificate_hash: Optional[ContentHash] = None
    history_hash: Optional[ContentHash] = None
    meta_info_hash: Optional[ContentHash] = None
    reflog_hash: Optional[ContentHash] = None
    micro_catalog_hash: Optional[ContentHash] = None
    repository_name: str
    revision: int
    timestamp: int
    ttl: int
    garbage_collectable: Optional[bool] = None
    alternative_name: Optional[bool] = None
    signed_content: bytes = b""
    signature: Optional[SignatureBlock] = None

    @field_serializer("signed_content", when_used="json")
    def _hex_content(self, value: bytes) -> str:
        return value.hex()

    @property
    def published_at(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp, tz=timezone.utc)

    @property
    def is_signed(self) -> bool:
        return self.signature is not None


# --------------------------------------------------------------------------- #
# Status
# --------------------------------------------------------------------------- #

# `date --utc` as written by cvmfs_server, e.g. "Tue Feb 13 10:00:01 UTC 2024"
_CVMFS_DATE_FORMATS = ("%a %b %d %H:%M:%S %Z %Y", "%a %b %d %H:%M:%S %Y")


def parse_cvmfs_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 2822 or ``date --utc`` timestamp; None if neither fits."""
    if not value:
        return None
    value = " ".join(value.split())
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        parsed = None
    if parsed is None:
        for fmt in _CVMFS_DATE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed



class Status(BaseModel):
    """A parsed .cvmfs_status.json document.

    Date fields keep the raw string the server wrote; use the ``*_at``
    properties for parsed values.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    last_snapshot: Optional[str] = None
    last_gc: Optional[str] = None
    last_check: Optional[str] = None
    check_status: Optional[str] = None
    snapshot_status: Optional[str] = None
    root_hash: Optional[str] = None
    revision: Optional[int] = Field(default=None, ge=0)

    @property
    def last_snapshot_at(self) -> Optional[datetime]:
        return parse_cvmfs_date(self.last_snapshot)

    @property
    def last_gc_at(self) -> Optional[datetime]:
        return parse_cvmfs_date(self.last_gc)


# --------------------------------------------------------------------------- #
# Verdicts
# --------------------------------------------------------------------------- #


class CheckResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SKIPPED = "skipped"


class SignatureStatus(str, Enum):
    VERIFIED = "verified"
    INVALID = "invalid"
    UNSIGNED = "unsigned"
    UNTRUSTED = "untrusted"
    CERTIFICATE_UNAVAILABLE = "certificate_unavailable"
    CHAIN_INVALID = "chain_invalid"


class SignatureCheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: SignatureStatus
    result: CheckResult
    detail: str = ""


class ManifestValidation(BaseModel):
    """Structural checks by name plus the signature check."""

    model_config = ConfigDict(frozen=True)

    checks: Dict[str, CheckResult]
    signature: SignatureCheck

    @property
    def failed_checks(self) -> List[str]:
        return [name for name, result in self.checks.items() if result is CheckResult.FAIL]

    @property
    def structurally_valid(self) -> bool:
        return not self.failed_checks

    @property
    def ok(self) -> bool:
        return self.structurally_valid and self.signature.result is not CheckResult.FAIL


class ConsistencyVerdict(str, Enum):
    CONSISTENT = "Consistent"
    ROOT_HASH_MISMATCH = "RootHashMismatch"
    REVISION_MISMATCH = "RevisionMismatch"
    STATUS_MISSING = "StatusMissing"
    STATUS_MALFORMED = "StatusMalformed"
    STATUS_INCOMPLETE = "StatusIncomplete"

    @property
    def is_failure(self) -> bool:
        """True when the status contradicts the manifest or cannot be read.

        A missing status file, or one without root hash and revision, is not
        a failure: most servers publish only snapshot and GC times.
        """
        return self in (
            ConsistencyVerdict.ROOT_HASH_MISMATCH,
            ConsistencyVerdict.REVISION_MISMATCH,
            ConsistencyVerdict.STATUS_MALFORMED,
        )


# --------------------------------------------------------------------------- #
# Scrape results
# --------------------------------------------------------------------------- #


class ErrorInfo(BaseModel):
    """An exception captured as data."""

    model_config = ConfigDict(frozen=True)

    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorInfo":
        return cls(kind=getattr(exc, "kind", type(exc).__name__), message=str(exc))


class RepositoryResult(BaseModel):
    """Outcome of scraping one repository on one server."""

    model_config = ConfigDict(frozen=True)

    name: str
    manifest: Optional[Manifest] = None
    status: Optional[Status] = None
    validation: Optional[ManifestValidation] = None
    consistency: Optional[ConsistencyVerdict] = None
    advertised: Optional[bool] = None
    error: Optional[ErrorInfo] = None
    status_error: Optional[ErrorInfo] = None

    @property
    def ok(self) -> bool:
        return (
            self.error is None
            and self.validation is not None
            and self.validation.ok
            and self.consistency is not None
            and not self.consistency.is_failure
        )

    @property
    def revision(self) -> Optional[int]:
        return self.manifest.revision if self.manifest else None


class PopulatedServer(BaseModel):
    """Snapshot of a successfully scraped server.

    Repositories and replicas are reported together: no server has both.
    """

    model_config = ConfigDict(frozen=True)

    hostname: str
    server_type: ServerType
    backend_type: ServerBackendType
    backend_detected: ServerBackendType
    metadata: Optional[ServerMetadata] = None
    repositories: List[RepositoryResult] = Field(default_factory=list)

    failed: bool = False

    def has_repository(self, name: str) -> bool:
        return any(r.name == name for r in self.repositories)

    def repository(self, name: str) -> RepositoryResult:
        for repo in self.repositories:
            if repo.name == name:
                return repo
        raise KeyError(f"{self.hostname} has no repository {name}")


class FailedServer(BaseModel):
    """A server whose metadata could not be scraped."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    server_type: ServerType
    backend_type: ServerBackendType
    error: ErrorInfo

    failed: bool = True


ScrapedServer = Union[PopulatedServer, FailedServer]
