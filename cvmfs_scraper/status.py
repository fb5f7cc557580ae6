"""
Status document parsing and manifest/status reconciliation.

The manifest and .cvmfs_status.json are independent sources. Reconciliation
compares them and names the outcome; it never merges them.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Union

from pydantic import ValidationError

from .errors import MalformedStatus
from .models import ConsistencyVerdict, Manifest, Status

logger = logging.getLogger(__name__)

__all__ = ["parse_status", "reconcile"]


def parse_status(payload: Union[bytes, str]) -> Status:
    """Parse a status document; raises :class:`MalformedStatus`."""
    try:
        doc = json.loads(payload)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedStatus(f"status is not valid JSON: {exc}") from None
    if not isinstance(doc, dict):
        raise MalformedStatus(f"status must be a JSON object, got {type(doc).__name__}")
    try:
        return Status.model_validate(doc)
    except ValidationError as exc:
        raise MalformedStatus(str(exc)) from None


def _canonical_hash(value: str) -> str:
    return value.strip().lower()


def reconcile(
    manifest: Manifest,
    status: Optional[Status],
    status_error: Optional[Exception] = None,
) -> ConsistencyVerdict:
    """Compare a manifest with the status document of the same repository."""
    if status is None:
        if isinstance(status_error, MalformedStatus):
            return ConsistencyVerdict.STATUS_MALFORMED
        return ConsistencyVerdict.STATUS_MISSING

    if status.root_hash is not None:
        if _canonical_hash(status.root_hash) != str(manifest.root_catalog_hash):
            logger.info(
                "%s: root hash %s in status, %s in manifest",
                manifest.repository_name,
                status.root_hash,
                manifest.root_catalog_hash,
            )
            return ConsistencyVerdict.ROOT_HASH_MISMATCH

    if status.revision is not None and status.revision != manifest.revision:
        logger.info(
            "%s: revision %d in status, %d in manifest",
            manifest.repository_name,
            status.revision,
            manifest.revision,
        )
        return ConsistencyVerdict.REVISION_MISMATCH

    if status.root_hash is None or status.revision is None:
        return ConsistencyVerdict.STATUS_INCOMPLETE
    return ConsistencyVerdict.CONSISTENT
