"""
manifest.py – parser for the CVMFS ``.cvmfspublished`` format.

Layout of a manifest::

    C<root catalog hash>
    B<root catalog size>
    ...one tagged field per line...
    --
    <hex hash of everything above the "--" line>
    <raw signature bytes>

The bytes above the terminator line are kept verbatim on the parsed
:class:`~cvmfs_scraper.models.Manifest`. Signature checks run over that span.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional, Tuple, Union

from pydantic import ValidationError

from .errors import MalformedManifest
from .models import (
    DIGEST_HEX_LENGTH,
    HASH_SUFFIXES,
    ContentHash,
    HashAlgorithm,
    Manifest,
    SignatureBlock,
)

logger = logging.getLogger(__name__)

__all__ = ["parse_manifest", "parse_hash", "serialize_manifest", "TERMINATOR", "REQUIRED_TAGS"]


TERMINATOR = b"--"

_HEX_RE = re.compile(r"[0-9a-fA-F]+")
_UINT_RE = re.compile(r"[0-9]+")

# tag -> (Manifest field, value kind)
_FIELDS: Dict[str, Tuple[str, str]] = {
    "C": ("root_catalog_hash", "hash"),
    "B": ("catalog_size", "uint"),
    "A": ("alternative_name", "bool"),
    "R": ("root_path_hash", "md5"),
    "X": ("certificate_hash", "hash"),
    "G": ("garbage_collectable", "bool"),
    "H": ("history_hash", "hash"),
    "T": ("timestamp", "uint"),
    "D": ("ttl", "uint"),
    "S": ("revision", "uint"),
    "N": ("repository_name", "str"),
    "M": ("meta_info_hash", "hash"),
    "Y": ("reflog_hash", "hash"),
    "L": ("micro_catalog_hash", "hash"),
}

REQUIRED_TAGS = ("C", "B", "S", "N", "T", "D")


# --------------------------------------------------------------------------- #
# Field decoders
# --------------------------------------------------------------------------- #


def parse_hash(value: str, default: HashAlgorithm = HashAlgorithm.SHA1) -> ContentHash:
    """Parse ``<hex>[-<suffix>]`` strictly; raises :class:`MalformedManifest`."""
    digest, sep, suffix = value.strip().partition("-")
    if sep:
        if suffix not in HASH_SUFFIXES:
            raise MalformedManifest(f"unknown hash suffix {suffix!r} in {value!r}")
        algorithm = HASH_SUFFIXES[suffix]
    else:
        algorithm = default

    expected = DIGEST_HEX_LENGTH[algorithm]
    if not _HEX_RE.fullmatch(digest):
        raise MalformedManifest(f"hash {value!r} is not hexadecimal")
    if len(digest) != expected:
        raise MalformedManifest(
            f"hash {value!r} has {len(digest)} hex digits, {algorithm.value} needs {expected}"
        )
    return ContentHash(algorithm=algorithm, digest=digest)


def _decode(tag: str, kind: str, value: str) -> Any:
    if kind == "hash":
        return parse_hash(value)
    if kind == "md5":
        return parse_hash(value, default=HashAlgorithm.MD5)
    if kind == "uint":
        value = value.strip()
        if not _UINT_RE.fullmatch(value):
            raise MalformedManifest(f"field {tag} is not an unsigned integer: {value!r}")
        return int(value)
    if kind == "bool":
        value = value.strip()
        if value not in ("yes", "no"):
            raise MalformedManifest(f"field {tag} must be 'yes' or 'no', got {value!r}")
        return value == "yes"
    value = value.strip()
    if not value:
        raise MalformedManifest(f"field {tag} is empty")
    return value


# --------------------------------------------------------------------------- #
# Splitting
# --------------------------------------------------------------------------- #


def _split_signed(data: bytes) -> Tuple[bytes, Optional[bytes]]:
    """Return (signed content, signature tail); tail is None without terminator."""
    offset = 0
    while offset < len(data):
        newline = data.find(b"\n", offset)
        line_end = len(data) if newline == -1 else newline
        if data[offset:line_end] == TERMINATOR:
            tail = data[line_end + 1:] if newline != -1 else b""
            return data[:offset], tail
        offset = line_end + 1
    return data, None


def _parse_signature_block(tail: bytes) -> SignatureBlock:
    newline = tail.find(b"\n")
    if newline == -1:
        hash_line, signature = tail, b""
    else:
        hash_line, signature = tail[:newline], tail[newline + 1:]

    try:
        content_hash = hash_line.decode("ascii").strip()
    except UnicodeDecodeError:
        raise MalformedManifest("signature hash line is not ASCII") from None
    if not content_hash:
        raise MalformedManifest("terminator line is not followed by a content hash")
    digest, sep, suffix = content_hash.partition("-")
    if not _HEX_RE.fullmatch(digest) or (sep and suffix not in HASH_SUFFIXES):
        raise MalformedManifest(f"signature content hash {content_hash!r} is not a hash")
    # kept as written: the signature covers this exact string
    return SignatureBlock(content_hash=content_hash, signature=signature)


# --------------------------------------------------------------------------- #
# Public API
# --------------------------------------------------------------------------- #


def parse_manifest(raw: Union[bytes, str]) -> Manifest:
    """Parse a ``.cvmfspublished`` document.

    All-or-nothing: a missing or duplicated required field, or any field that
    does not decode, rejects the whole manifest. Unknown tags are skipped.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8")

    signed, tail = _split_signed(raw)
    signature = _parse_signature_block(tail) if tail is not None else None

    try:
        text = signed.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedManifest(f"manifest body is not UTF-8: {exc}") from None

    fields: Dict[str, Any] = {}
    seen = set()
    for lineno, line in enumerate(text.split("\n"), start=1):
        if not line.strip():
            continue
        tag, value = line[0], line[1:]
        if tag not in _FIELDS:
            logger.debug("Ignoring unknown manifest tag %r on line %d", tag, lineno)
            continue
        if tag in seen:
            raise MalformedManifest(f"duplicate field {tag} on line {lineno}")
        seen.add(tag)
        field, kind = _FIELDS[tag]
        fields[field] = _decode(tag, kind, value)

    missing = [tag for tag in REQUIRED_TAGS if tag not in seen]
    if missing:
        raise MalformedManifest(f"missing required field(s): {', '.join(missing)}")

    try:
        return Manifest(**fields, signed_content=signed, signature=signature)
    except ValidationError as exc:
        raise MalformedManifest(str(exc)) from None


def serialize_manifest(manifest: Manifest, include_signature: bool = True) -> bytes:
    """Render ``manifest`` in the line format.

    Only the fields are rendered; ``signed_content`` is ignored. When
    ``include_signature`` is set and the manifest carries a signature block it
    is appended after the terminator.
    """
    lines = []
    for tag, (field, kind) in _FIELDS.items():
        value = getattr(manifest, field)
        if value is None:
            continue
        if kind == "bool":
            value = "yes" if value else "no"
        lines.append(f"{tag}{value}")
    body = ("\n".join(lines) + "\n").encode("utf-8")

    if include_signature and manifest.signature is not None:
        block = manifest.signature
        return body + TERMINATOR + b"\n" + block.content_hash.encode("ascii") + b"\n" + block.signature
    return body
