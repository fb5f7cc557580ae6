"""
Trust material for manifest signature checks.

A :class:`TrustAnchor` is plain data handed to the validator: the PEM
certificates an operator trusts plus a list of accepted SHA-1 certificate
fingerprints. Nothing here is global.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import ConfigError, SignatureUnverifiable
from .models import ContentHash, HashAlgorithm

logger = logging.getLogger(__name__)


def content_digest(data: bytes, algorithm: HashAlgorithm) -> str:
    """Hex digest of ``data`` the way CVMFS computes content hashes."""
    if algorithm is HashAlgorithm.SHA1:
        return hashlib.sha1(data).hexdigest()
    if algorithm is HashAlgorithm.MD5:
        return hashlib.md5(data).hexdigest()
    if algorithm is HashAlgorithm.SHAKE128:
        return hashlib.shake_128(data).hexdigest(20)
    try:
        return hashlib.new("ripemd160", data).hexdigest()
    except ValueError:
        raise SignatureUnverifiable("ripemd160 is not available in this OpenSSL build") from None


def signature_verifies(certificate: x509.Certificate, signature: bytes, message: bytes) -> bool:
    """RSA PKCS#1 v1.5 / SHA-1 check of ``signature`` over ``message``."""
    public_key = certificate.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        return False
    try:
        public_key.verify(signature, message, padding.PKCS1v15(), hashes.SHA1())
    except InvalidSignature:
        return False
    return True


def normalize_fingerprint(fingerprint: str) -> str:
    """``AB:CD:...`` or ``abcd...`` -> ``abcd...``"""
    return fingerprint.replace(":", "").replace(" ", "").strip().lower()


def load_certificate(pem: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(pem)
    except ValueError as exc:
        raise SignatureUnverifiable(f"cannot load certificate: {exc}") from None


class TrustAnchor:
    """Certificates and fingerprints an operator accepts for manifest signing."""

    def __init__(
        self,
        certificates: Sequence[bytes] = (),
        fingerprints: Iterable[str] = (),
    ) -> None:
        self._pems: List[bytes] = list(certificates)
        self._certs: List[x509.Certificate] = [load_certificate(pem) for pem in self._pems]
        self._fingerprints = {normalize_fingerprint(f) for f in fingerprints if f.strip()}

    @classmethod
    def from_files(cls, paths: Iterable[str], fingerprints: Iterable[str] = ()) -> "TrustAnchor":
        pems = []
        for path in paths:
            p = Path(path)
            if not p.is_file():
                raise ConfigError(f"trust certificate not found: {p}")
            pems.append(p.read_bytes())
        try:
            anchor = cls(pems, fingerprints)
        except SignatureUnverifiable as exc:
            raise ConfigError(str(exc)) from None
        logger.info("Loaded trust anchor: %d certificate(s), %d fingerprint(s)", len(pems), len(anchor._fingerprints))
        return anchor

    # ---------------------------------------------- #
    @property
    def certificates(self) -> List[bytes]:
        return list(self._pems)

    @property
    def fingerprints(self) -> List[str]:
        return sorted(self._fingerprints)

    def __len__(self) -> int:
        return len(self._pems) + len(self._fingerprints)

    def find_certificate(self, certificate_hash: ContentHash) -> Optional[bytes]:
        """Return the anchor PEM whose content hash (of PEM or DER) equals ``certificate_hash``."""
        for pem, cert in zip(self._pems, self._certs):
            der = cert.public_bytes(serialization.Encoding.DER)
            try:
                digests = {content_digest(data, certificate_hash.algorithm) for data in (pem, der)}
            except SignatureUnverifiable:
                return None
            if certificate_hash.digest in digests:
                return pem
        return None

    def find_signer(self, signature: bytes, message: bytes) -> Optional[bytes]:
        """Return the anchor PEM whose public key verifies ``signature`` over ``message``.

        CVMFS stores certificates compressed, so the manifest's ``X`` hash
        rarely matches a locally held PEM. The key is what counts.
        """
        for pem, cert in zip(self._pems, self._certs):
            if signature_verifies(cert, signature, message):
                return pem
        return None

    def is_trusted(self, certificate: x509.Certificate) -> bool:
        """True if the certificate is an anchor, issued by one, or fingerprint-listed."""
        fingerprint = certificate.fingerprint(hashes.SHA1()).hex()
        if fingerprint in self._fingerprints:
            return True

        for anchor in self._certs:
            if anchor == certificate:
                return True
            try:
                certificate.verify_directly_issued_by(anchor)
            except (ValueError, TypeError, InvalidSignature):
                continue
            return True
        return False
