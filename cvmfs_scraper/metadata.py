"""
Server-level metadata: repositories.json and meta.json.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .errors import MalformedMetadata, ServerTypeMismatch
from .models import MetaJSON, RepositoriesJSON, Server, ServerMetadata, ServerType

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


def _load_object(payload: Union[bytes, str], model: Type[_M], what: str) -> _M:
    try:
        doc: Any = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedMetadata(f"{what} is not valid JSON: {exc}") from None
    if not isinstance(doc, dict):
        raise MalformedMetadata(f"{what} must be a JSON object, got {type(doc).__name__}")
    try:
        return model.model_validate(doc)
    except ValidationError as exc:
        raise MalformedMetadata(f"{what}: {exc}") from None


def parse_repositories_json(payload: Union[bytes, str]) -> RepositoriesJSON:
    return _load_object(payload, RepositoriesJSON, "repositories.json")


def parse_meta_json(payload: Union[bytes, str]) -> MetaJSON:
    return _load_object(payload, MetaJSON, "meta.json")


def advertised_names(repos: RepositoriesJSON) -> List[str]:
    """Names of repositories and replicas; a server only ever has one kind."""
    return [entry.name for entry in [*repos.repositories, *repos.replicas]]


def check_server_type(server: Server, repos: RepositoriesJSON) -> None:
    """Stratum0 serves repositories, Stratum1 and sync servers serve replicas."""
    has_replicas = bool(repos.replicas)
    if server.server_type is ServerType.STRATUM0 and has_replicas:
        raise ServerTypeMismatch(
            f"{server.hostname} is a Stratum0 server, but replicas were found in the repositories.json"
        )
    if server.server_type is ServerType.STRATUM1 and not has_replicas:
        raise ServerTypeMismatch(
            f"{server.hostname} is a Stratum1 server, but no replicas were found in the repositories.json"
        )
    if server.server_type is ServerType.SYNC_SERVER and not has_replicas:
        raise ServerTypeMismatch(
            f"{server.hostname} is a SyncServer, but no replicas were found in the repositories.json"
        )


def merge_metadata(repos: RepositoriesJSON, meta: Optional[MetaJSON] = None) -> ServerMetadata:
    fields = {
        "schema_version": repos.schema_version,
        "cvmfs_version": repos.cvmfs_version,
        "last_geodb_update": repos.last_geodb_update,
        "os_version_id": repos.os_version_id,
        "os_pretty_name": repos.os_pretty_name,
        "os_id": repos.os_id,
    }
    if meta is not None:
        fields.update(meta.model_dump())
    return ServerMetadata(**fields)
