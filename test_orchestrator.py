"""End-to-end tests for the scrape orchestrator with a fake fetcher."""

import pytest
from cryptography.hazmat.primitives import hashes

from conftest import META_JSON_BYTES, ROOT_HASH, manifest_body, repositories_json, sign, status_json
from cvmfs_scraper.errors import TransportError
from cvmfs_scraper.interfaces import META_JSON, REPOSITORIES_JSON, manifest_path, status_path
from cvmfs_scraper.models import (
    CheckResult,
    ConsistencyVerdict,
    FailedServer,
    PopulatedServer,
    Server,
    ServerBackendType,
    ServerType,
    SignatureStatus,
)
from cvmfs_scraper.orchestrator import ScrapeOptions, scrape_repository, scrape_server, scrape_servers
from cvmfs_scraper.trust import TrustAnchor
from main import exit_code


STRATUM1 = Server(hostname="s1.example.org", server_type=ServerType.STRATUM1, backend_type=ServerBackendType.CVMFS)


def _resources(signed_manifest, *repos, meta=True):
    resources = {REPOSITORIES_JSON: repositories_json(replicas=list(repos))}
    if meta:
        resources[META_JSON] = META_JSON_BYTES
    for repo in repos:
        resources[manifest_path(repo)] = signed_manifest(name=repo)
        resources[status_path(repo)] = status_json()
    return resources


@pytest.mark.asyncio
async def test_full_scrape(signed_manifest, signer, fake_fetcher):
    fetcher = fake_fetcher(_resources(signed_manifest, "a.cern.ch", "b.cern.ch"))
    options = ScrapeOptions(trust=TrustAnchor([signer.pem]))

    result = await scrape_server(STRATUM1, [], fetcher, options)

    assert isinstance(result, PopulatedServer)
    assert result.backend_detected is ServerBackendType.CVMFS
    assert result.metadata.administrator == "CVMFS Admins"
    assert [r.name for r in result.repositories] == ["a.cern.ch", "b.cern.ch"]
    for repo in result.repositories:
        assert repo.ok
        assert repo.advertised is True
        assert repo.validation.signature.status is SignatureStatus.VERIFIED
        assert repo.consistency is ConsistencyVerdict.CONSISTENT


@pytest.mark.asyncio
async def test_sibling_transport_failure_is_isolated(signed_manifest, fake_fetcher):
    resources = _resources(signed_manifest, "good.cern.ch", "bad.cern.ch")
    resources[manifest_path("bad.cern.ch")] = TransportError("http://s1/bad", "connection reset")
    fetcher = fake_fetcher(resources)

    result = await scrape_server(STRATUM1, ["good.cern.ch", "bad.cern.ch"], fetcher)

    good = result.repository("good.cern.ch")
    bad = result.repository("bad.cern.ch")
    assert good.error is None
    assert good.manifest.repository_name == "good.cern.ch"
    assert good.consistency is ConsistencyVerdict.CONSISTENT
    assert bad.error.kind == "TransportError"
    assert bad.manifest is None
    assert bad.consistency is None
    assert bad.status is not None


@pytest.mark.asyncio
async def test_malformed_manifest_is_isolated(signed_manifest, fake_fetcher):
    resources = _resources(signed_manifest, "good.cern.ch", "broken.cern.ch")
    resources[manifest_path("broken.cern.ch")] = b"Cnot-a-hash\nS1\n"
    result = await scrape_server(STRATUM1, [], fake_fetcher(resources))

    assert result.repository("broken.cern.ch").error.kind == "MalformedManifest"
    assert result.repository("good.cern.ch").error is None


@pytest.mark.asyncio
async def test_repositories_json_unreachable_is_fatal(fake_fetcher):
    fetcher = fake_fetcher({})

    result = await scrape_server(STRATUM1, ["a.cern.ch"], fetcher)

    assert isinstance(result, FailedServer)
    assert result.error.kind == "ServerMetadataError"
    assert not any(path.endswith(".cvmfspublished") for path in fetcher.requested)


@pytest.mark.asyncio
async def test_server_type_mismatch_is_fatal(signed_manifest, fake_fetcher):
    resources = _resources(signed_manifest, "a.cern.ch")
    resources[REPOSITORIES_JSON] = repositories_json(repositories=["a.cern.ch"])

    result = await scrape_server(STRATUM1, [], fake_fetcher(resources))

    assert isinstance(result, FailedServer)
    assert result.error.kind == "ServerTypeMismatch"


@pytest.mark.asyncio
async def test_missing_meta_json(signed_manifest, fake_fetcher):
    resources = _resources(signed_manifest, "a.cern.ch", meta=False)

    strict = await scrape_server(STRATUM1, [], fake_fetcher(resources))
    lenient = await scrape_server(STRATUM1, [], fake_fetcher(resources), ScrapeOptions(require_meta_json=False))

    assert isinstance(strict, FailedServer)
    assert isinstance(lenient, PopulatedServer)
    assert lenient.metadata.administrator is None
    assert lenient.metadata.os_id == "rhel"


@pytest.mark.asyncio
async def test_autodetect_falls_back_to_s3(signed_manifest, fake_fetcher):
    server = Server(hostname="s3.example.org", server_type=ServerType.STRATUM1)
    resources = {
        manifest_path("a.cern.ch"): signed_manifest(name="a.cern.ch"),
        status_path("a.cern.ch"): status_json(),
    }

    result = await scrape_server(server, ["a.cern.ch"], fake_fetcher(resources))

    assert isinstance(result, PopulatedServer)
    assert result.backend_detected is ServerBackendType.S3
    assert result.metadata is None
    assert result.repository("a.cern.ch").advertised is None


@pytest.mark.asyncio
async def test_s3_without_repositories_is_fatal(fake_fetcher):
    server = Server(hostname="s3.example.org", server_type=ServerType.STRATUM1, backend_type=ServerBackendType.S3)
    result = await scrape_server(server, [], fake_fetcher({}))

    assert isinstance(result, FailedServer)
    assert result.error.kind == "EmptyRepositoryList"


@pytest.mark.asyncio
async def test_requested_repositories_merge_with_advertised(signed_manifest, fake_fetcher):
    resources = _resources(signed_manifest, "a.cern.ch")
    resources[manifest_path("extra.cern.ch")] = signed_manifest(name="extra.cern.ch")

    merged = await scrape_server(STRATUM1, ["extra.cern.ch"], fake_fetcher(resources))
    only = await scrape_server(
        STRATUM1, ["extra.cern.ch"], fake_fetcher(resources), ScrapeOptions(include_advertised=False)
    )

    assert [r.name for r in merged.repositories] == ["a.cern.ch", "extra.cern.ch"]
    assert merged.repository("extra.cern.ch").advertised is False
    assert merged.repository("extra.cern.ch").consistency is ConsistencyVerdict.STATUS_MISSING
    assert [r.name for r in only.repositories] == ["extra.cern.ch"]


@pytest.mark.asyncio
async def test_status_problems_do_not_invalidate_manifest(signed_manifest, fake_fetcher):
    resources = _resources(signed_manifest, "a.cern.ch", "b.cern.ch")
    resources[status_path("a.cern.ch")] = b"<html>oops</html>"
    resources[status_path("b.cern.ch")] = status_json(revision=4)

    result = await scrape_server(STRATUM1, [], fake_fetcher(resources))

    a = result.repository("a.cern.ch")
    b = result.repository("b.cern.ch")
    assert a.consistency is ConsistencyVerdict.STATUS_MALFORMED
    assert a.status_error.kind == "MalformedStatus"
    assert a.validation.structurally_valid
    assert b.consistency is ConsistencyVerdict.REVISION_MISMATCH


@pytest.mark.asyncio
async def test_previous_revision_and_name_checks(signed_manifest, fake_fetcher):
    resources = {
        manifest_path("a.cern.ch"): signed_manifest(name="other.cern.ch", revision=3),
        status_path("a.cern.ch"): status_json(revision=3),
    }
    options = ScrapeOptions(previous_revisions={"a.cern.ch": 4})

    repo = await scrape_repository("a.cern.ch", fake_fetcher(resources), options)

    assert repo.validation.checks["revision_monotonic"] is CheckResult.FAIL
    assert repo.validation.checks["repository_name"] is CheckResult.FAIL
    assert not repo.ok


@pytest.mark.asyncio
async def test_scrape_servers_sorted_and_closed(signed_manifest, fake_fetcher):
    fetchers = {}

    def factory(server):
        if server.hostname == "down.example.org":
            fetchers[server.hostname] = fake_fetcher({})
        else:
            fetchers[server.hostname] = fake_fetcher(_resources(signed_manifest, "a.cern.ch"))
        return fetchers[server.hostname]

    down = Server(hostname="down.example.org", server_type=ServerType.STRATUM1, backend_type=ServerBackendType.CVMFS)
    results = await scrape_servers([(STRATUM1, []), (down, [])], factory)

    assert [r.hostname for r in results] == ["down.example.org", "s1.example.org"]
    assert results[0].failed and not results[1].failed
    assert all(f.closed for f in fetchers.values())
    assert results[1].repository("a.cern.ch").manifest.root_catalog_hash.digest == ROOT_HASH


@pytest.mark.asyncio
async def test_fingerprint_only_anchor_with_repository_certificate(signed_manifest, signer, fake_fetcher):
    resources = _resources(signed_manifest, "a.cern.ch")
    anchor = TrustAnchor(fingerprints=[signer.cert.fingerprint(hashes.SHA1()).hex()])

    listed = await scrape_repository(
        "a.cern.ch", fake_fetcher(resources), ScrapeOptions(trust=anchor, certificates={"a.cern.ch": signer.pem})
    )
    unlisted = await scrape_repository("a.cern.ch", fake_fetcher(resources), ScrapeOptions(trust=anchor))

    assert listed.validation.signature.status is SignatureStatus.VERIFIED
    assert listed.ok
    assert unlisted.validation.signature.status is SignatureStatus.CERTIFICATE_UNAVAILABLE


@pytest.mark.asyncio
async def test_anchor_certificate_resolved_by_key(signer, fake_fetcher):
    resources = _resources(lambda name: sign(manifest_body(name=name, cert_hash="ab" * 20), signer), "a.cern.ch")
    options = ScrapeOptions(trust=TrustAnchor([signer.pem]))

    repo = await scrape_repository("a.cern.ch", fake_fetcher(resources), options)

    assert repo.validation.signature.status is SignatureStatus.VERIFIED


@pytest.mark.asyncio
async def test_status_without_hash_or_revision_is_healthy(signed_manifest, signer, fake_fetcher):
    resources = _resources(signed_manifest, "a.cern.ch", "b.cern.ch", "c.cern.ch")
    resources[status_path("a.cern.ch")] = status_json(root_hash=None, revision=None, snapshotting=False)
    del resources[status_path("b.cern.ch")]
    resources[status_path("c.cern.ch")] = status_json(revision=4)
    options = ScrapeOptions(trust=TrustAnchor([signer.pem]))

    result = await scrape_server(STRATUM1, [], fake_fetcher(resources), options)

    a, b, c = result.repositories
    assert a.consistency is ConsistencyVerdict.STATUS_INCOMPLETE
    assert a.status.last_snapshot_at is not None
    assert a.ok
    assert b.consistency is ConsistencyVerdict.STATUS_MISSING
    assert b.ok
    assert not c.ok
    assert exit_code([result.model_copy(update={"repositories": [a, b]})]) == 0
    assert exit_code([result]) == 1


@pytest.mark.asyncio
async def test_autodetect_accepts_empty_repository_list(fake_fetcher):
    server = Server(hostname="s3.example.org", server_type=ServerType.STRATUM1)

    result = await scrape_server(server, [], fake_fetcher({}))

    assert isinstance(result, PopulatedServer)
    assert result.backend_detected is ServerBackendType.S3
    assert result.repositories == []
