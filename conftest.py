"""Shared fixtures: test keys, certificates, manifests and a fake fetcher."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Union

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from cvmfs_scraper.errors import TransportError
from cvmfs_scraper.interfaces import Fetcher
from cvmfs_scraper.models import RawItem


ROOT_HASH = "1f2e3d4c5b6a79880716253443526170f1e2d3c4"
HISTORY_HASH = "aa" * 20
EMPTY_MD5 = "d41d8cd98f00b204e9800998ecf8427e"
TIMESTAMP = 1700000000


class KeyPair:
    def __init__(self, key: rsa.RSAPrivateKey, cert: x509.Certificate):
        self.key = key
        self.cert = cert
        self.pem = cert.public_bytes(serialization.Encoding.PEM)
        self.cert_hash = hashlib.sha1(self.pem).hexdigest()


def _make_cert(common_name: str, issuer: Optional[KeyPair] = None, ca: bool = False) -> KeyPair:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.now(timezone.utc)
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.cert.subject if issuer else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )
    signer = issuer.key if issuer else key
    return KeyPair(key, builder.sign(signer, hashes.SHA256()))


@pytest.fixture(scope="session")
def signer() -> KeyPair:
    return _make_cert("test.cern.ch")


@pytest.fixture(scope="session")
def stranger() -> KeyPair:
    return _make_cert("someone-else.example.org")


@pytest.fixture(scope="session")
def ca() -> KeyPair:
    return _make_cert("Test CVMFS CA", ca=True)


@pytest.fixture(scope="session")
def issued(ca) -> KeyPair:
    return _make_cert("issued.cern.ch", issuer=ca)


def manifest_body(
    name: str = "test.cern.ch",
    revision: int = 5,
    root_hash: str = ROOT_HASH,
    cert_hash: str = "ab" * 20,
    timestamp: int = TIMESTAMP,
    extra: str = "",
) -> bytes:
    lines = [
        f"C{root_hash}",
        "B4096",
        f"R{EMPTY_MD5}",
        "D240",
        f"S{revision}",
        "Gno",
        "Ano",
        f"N{name}",
        f"X{cert_hash}",
        f"H{HISTORY_HASH}",
        f"T{timestamp}",
    ]
    return ("\n".join(lines) + "\n" + extra).encode()


def sign(body: bytes, keypair: KeyPair) -> bytes:
    digest = hashlib.sha1(body).hexdigest()
    signature = keypair.key.sign(digest.encode("ascii"), padding.PKCS1v15(), hashes.SHA1())
    return body + b"--\n" + digest.encode("ascii") + b"\n" + signature


@pytest.fixture
def signed_manifest(signer):
    """Factory: raw .cvmfspublished bytes signed by the ``signer`` key."""

    def _build(**kwargs) -> bytes:
        kwargs.setdefault("cert_hash", signer.cert_hash)
        return sign(manifest_body(**kwargs), signer)

    return _build


def status_json(root_hash: Optional[str] = ROOT_HASH, revision: Optional[int] = 5, **extra) -> bytes:
    doc = {"last_snapshot": "Tue Nov 14 22:13:20 UTC 2023", "last_gc": "Sun Nov 12 03:00:00 UTC 2023"}
    if root_hash is not None:
        doc["root_hash"] = root_hash
    if revision is not None:
        doc["revision"] = revision
    doc.update(extra)
    return json.dumps(doc).encode()


def repositories_json(repositories: List[str] = (), replicas: List[str] = ()) -> bytes:
    return json.dumps(
        {
            "schema": 1,
            "repositories": [{"name": r, "url": f"/cvmfs/{r}"} for r in repositories],
            "replicas": [{"name": r, "url": f"/cvmfs/{r}"} for r in replicas],
            "cvmfs_version": "2.11.2-1",
            "os_id": "rhel",
            "os_version_id": "9",
            "os_pretty_name": "Red Hat Enterprise Linux 9",
        }
    ).encode()


META_JSON_BYTES = json.dumps(
    {
        "administrator": "CVMFS Admins",
        "email": "cvmfs-admins@example.org",
        "organisation": "Example Lab",
        "custom": {"site": "EX"},
    }
).encode()


class FakeFetcher(Fetcher):
    """Serves canned payloads; unknown paths fail like an HTTP 404."""

    name = "FakeFetcher"

    def __init__(self, resources: Dict[str, Union[bytes, Exception]]):
        self.resources = resources
        self.requested: List[str] = []
        self.closed = False

    async def fetch(self, path: str) -> RawItem:
        self.requested.append(path)
        value = self.resources.get(path)
        if value is None:
            raise TransportError(f"http://fake/{path}", "Not Found", status=404)
        if isinstance(value, Exception):
            raise value
        return RawItem(source=path, payload=value)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_fetcher():
    return FakeFetcher
