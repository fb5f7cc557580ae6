"""
validator.py – structural and signature checks for parsed manifests.

Every check yields a :class:`~cvmfs_scraper.models.CheckResult`, never a bare
boolean, so "could not verify" stays distinguishable from "verified bad".
"""

from __future__ import annotations

import logging
import time
from typing import Dict, Optional, Tuple

from .errors import SignatureUnverifiable
from .models import (
    DIGEST_HEX_LENGTH,
    HASH_SUFFIXES,
    CheckResult,
    ContentHash,
    HashAlgorithm,
    Manifest,
    ManifestValidation,
    SignatureCheck,
    SignatureStatus,
)
from .trust import TrustAnchor, content_digest, load_certificate, signature_verifies

logger = logging.getLogger(__name__)

__all__ = ["validate_manifest", "structural_checks", "verify_signature", "CVMFS_EPOCH"]


CVMFS_EPOCH = 1199145600  # 2008-01-01T00:00:00Z
DEFAULT_MAX_FUTURE_SKEW = 3600


def _result(ok: bool) -> CheckResult:
    return CheckResult.PASS if ok else CheckResult.FAIL


def check_hash(value: Optional[ContentHash], required: bool = False) -> CheckResult:
    """Digest must decode to the byte length of its algorithm."""
    if value is None:
        return CheckResult.FAIL if required else CheckResult.SKIPPED
    try:
        raw = bytes.fromhex(value.digest)
    except ValueError:
        return CheckResult.FAIL
    return _result(len(raw) * 2 == DIGEST_HEX_LENGTH[value.algorithm])


def structural_checks(
    manifest: Manifest,
    *,
    now: Optional[float] = None,
    previous_revision: Optional[int] = None,
    max_future_skew: int = DEFAULT_MAX_FUTURE_SKEW,
    expected_name: Optional[str] = None,
) -> Dict[str, CheckResult]:
    now = time.time() if now is None else now

    checks: Dict[str, CheckResult] = {
        "root_hash": check_hash(manifest.root_catalog_hash, required=True),
        "certificate_hash": check_hash(manifest.certificate_hash, required=True),
        "history_hash": check_hash(manifest.history_hash),
        "meta_info_hash": check_hash(manifest.meta_info_hash),
        "reflog_hash": check_hash(manifest.reflog_hash),
        "micro_catalog_hash": check_hash(manifest.micro_catalog_hash),
        "root_path_hash": check_hash(manifest.root_path_hash),
        "catalog_size": _result(manifest.catalog_size >= 0),
        "revision": _result(manifest.revision >= 0),
        "timestamp": _result(CVMFS_EPOCH <= manifest.timestamp <= now + max_future_skew),
        "ttl": _result(manifest.ttl > 0),
    }
    if previous_revision is None:
        checks["revision_monotonic"] = CheckResult.SKIPPED
    else:
        checks["revision_monotonic"] = _result(manifest.revision >= previous_revision)
    if expected_name is None:
        checks["repository_name"] = CheckResult.SKIPPED
    else:
        checks["repository_name"] = _result(manifest.repository_name == expected_name)
    return checks


def _hash_line(content_hash: str) -> Tuple[str, Optional[HashAlgorithm]]:
    """Split a signature hash line into its digest and declared algorithm."""
    digest, sep, suffix = content_hash.partition("-")
    if not sep:
        return digest.lower(), HashAlgorithm.SHA1
    return digest.lower(), HASH_SUFFIXES.get(suffix)


def _invalid(detail: str) -> SignatureCheck:
    return SignatureCheck(status=SignatureStatus.INVALID, result=CheckResult.FAIL, detail=detail)


def _unavailable(detail: str) -> SignatureCheck:
    return SignatureCheck(status=SignatureStatus.CERTIFICATE_UNAVAILABLE, result=CheckResult.SKIPPED, detail=detail)


def verify_signature(
    manifest: Manifest,
    trust: Optional[TrustAnchor] = None,
    certificate: Optional[bytes] = None,
) -> SignatureCheck:
    """Check the detached signature over ``manifest.signed_content``.

    ``certificate`` is the signing certificate (PEM) when the caller already
    has it. Otherwise the signer is looked up in ``trust``: first by the
    manifest's certificate hash, then by trying each anchor certificate's
    key against the signature. Without any trust anchor a good signature is
    reported as untrusted, not verified.
    """
    has_trust = trust is not None and len(trust) > 0
    block = manifest.signature

    if block is None:
        return SignatureCheck(
            status=SignatureStatus.UNSIGNED,
            result=CheckResult.FAIL if has_trust else CheckResult.SKIPPED,
            detail="manifest has no signature block",
        )
    if not has_trust and certificate is None:
        return SignatureCheck(
            status=SignatureStatus.UNTRUSTED,
            result=CheckResult.SKIPPED,
            detail="no trust material supplied",
        )
    if manifest.certificate_hash is None:
        return _invalid("signature block present but no certificate is referenced")

    line_digest, algorithm = _hash_line(block.content_hash)
    if algorithm is None:
        return _invalid(f"unknown algorithm in signature hash {block.content_hash!r}")
    message = block.content_hash.encode("ascii")

    try:
        if content_digest(manifest.signed_content, algorithm) != line_digest:
            return _invalid("signed content does not match the hash in the signature block")

        if certificate is not None:
            pem = certificate
        else:
            pem = trust.find_certificate(manifest.certificate_hash)
            if pem is None:
                pem = trust.find_signer(block.signature, message)
            if pem is None:
                return _unavailable(
                    f"no anchor certificate matches {manifest.certificate_hash} or verifies the signature"
                )
        cert = load_certificate(pem)
    except SignatureUnverifiable as exc:
        logger.debug("Signature of %s unverifiable: %s", manifest.repository_name, exc)
        return _unavailable(str(exc))

    if not signature_verifies(cert, block.signature, message):
        return _invalid("signature does not verify against the certificate")

    if not has_trust:
        return SignatureCheck(
            status=SignatureStatus.UNTRUSTED,
            result=CheckResult.SKIPPED,
            detail="signature valid, certificate not anchored",
        )
    if not trust.is_trusted(cert):
        return SignatureCheck(
            status=SignatureStatus.CHAIN_INVALID,
            result=CheckResult.FAIL,
            detail="certificate does not chain to the trust anchor",
        )
    return SignatureCheck(status=SignatureStatus.VERIFIED, result=CheckResult.PASS)


def validate_manifest(
    manifest: Manifest,
    trust: Optional[TrustAnchor] = None,
    *,
    certificate: Optional[bytes] = None,
    previous_revision: Optional[int] = None,
    now: Optional[float] = None,
    max_future_skew: int = DEFAULT_MAX_FUTURE_SKEW,
    expected_name: Optional[str] = None,
) -> ManifestValidation:
    checks = structural_checks(
        manifest,
        now=now,
        previous_revision=previous_revision,
        max_future_skew=max_future_skew,
        expected_name=expected_name,
    )
    signature = verify_signature(manifest, trust, certificate)

    validation = ManifestValidation(checks=checks, signature=signature)
    if validation.failed_checks:
        logger.warning(
            "Manifest %s failed structural checks: %s",
            manifest.repository_name,
            ", ".join(validation.failed_checks),
        )
    if signature.result is CheckResult.FAIL:
        logger.warning("Manifest %s signature %s: %s", manifest.repository_name, signature.status.value, signature.detail)
    return validation
