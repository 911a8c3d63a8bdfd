"""HTTP tests for the scans blueprint, using Flask's test client."""

from __future__ import annotations

import pytest

from cypherscan import create_app
from cypherscan.config import ScanSettings
from cypherscan.extensions import get_cache, get_orchestrator

from conftest import FakeAnalyzer, make_finding


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator([
        FakeAnalyzer("a", [make_finding(analyzer="a", confidence=80)], categories=["reentrancy"]),
        FakeAnalyzer("b", categories=["reentrancy"]),
    ])


@pytest.fixture
def app(orchestrator):
    app = create_app(ScanSettings(scheduler_enabled=False), orchestrator=orchestrator)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.get_json() == {"status": "up and running"}


def test_submit_then_poll(client, orchestrator):
    resp = client.post("/scans", json={"type": "github", "repository": "acme/vault"})

    assert resp.status_code == 202
    body = resp.get_json()
    assert body["status"] == "PENDING"
    scan_id = body["scanId"]

    orchestrator.wait(scan_id, timeout=10)
    resp = client.get(f"/scans/{scan_id}")

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["scanId"] == scan_id
    assert data["status"] == "COMPLETED"
    assert data["progress"] == 100
    assert data["repository"] == "acme/vault"
    assert data["consensusReached"] is True
    assert data["totalVotes"] == len(data["votes"])
    assert data["findingsCount"] == 1

    finding = data["findings"][0]
    assert finding["id"] == f"{scan_id}-F001"
    assert finding["severity"] == "HIGH"
    assert finding["location"] == {"file": "contracts/Vault.sol", "line": 10}
    assert set(finding) >= {"codeSnippet", "recommendation", "confidence", "analyzer"}
    assert data["votes"][0]["decision"] == "CONFIRMED"
    assert data["analyzers"]["a"]["success"] is True


def test_submit_accepts_legacy_field_names(client, orchestrator):
    resp = client.post("/scans", json={"githubRepo": "acme/vault", "githubPath": "contracts/Vault.sol"})

    assert resp.status_code == 202
    scan = orchestrator.wait(resp.get_json()["scanId"], timeout=10)
    assert scan.request.normalized_path == "contracts/Vault.sol"


@pytest.mark.parametrize("body, field", [
    ({"type": "github"}, "repository"),
    ({"type": "github", "repository": "no-slash"}, "repository"),
    ({"type": "svn", "repository": "acme/vault"}, "type"),
    ({"type": "onchain", "contractAddress": "0x" + "ab" * 20}, "chain"),
    ({"type": "onchain", "chain": "ethereum", "contractAddress": "0x123"}, "contractAddress"),
    ({"repository": "acme/vault", "options": {"analyzers": ["nope"]}}, "options.analyzers"),
    ({"repository": "acme/vault", "options": {"concurrencyLimit": 0}}, "options.concurrencyLimit"),
    ({"repository": "acme/vault", "options": "deep"}, "options"),
    ({"repository": 123}, "repository"),
    ({"githubRepo": ["acme/vault"]}, "githubRepo"),
    ({"repository": "acme/vault", "path": 7}, "path"),
    ({"repository": "acme/vault", "chain": 5}, "chain"),
    ({"type": "onchain", "chain": "ethereum", "contractAddress": 0}, "contractAddress"),
    ({"repository": "acme/vault", "accessToken": {"t": 1}}, "accessToken"),
    ({"type": 1, "repository": "acme/vault"}, "type"),
    ({"repository": "acme/vault", "options": {"deepScan": "maybe"}}, "options.deepScan"),
    ({"repository": "acme/vault", "options": {"includeDependencies": 1}}, "options.includeDependencies"),
    ({"repository": "acme/vault", "options": {"concurrencyLimit": True}}, "options.concurrencyLimit"),
    ({"repository": "acme/vault", "options": {"concurrencyLimit": "four"}}, "options.concurrencyLimit"),
])
def test_submit_rejects_invalid_requests(client, orchestrator, body, field):
    resp = client.post("/scans", json=body)

    assert resp.status_code == 400
    assert resp.get_json()["field"] == field
    assert orchestrator.list_scans() == []


def test_submit_requires_json_object(client):
    assert client.post("/scans", data="not json", content_type="text/plain").status_code == 400
    assert client.post("/scans", json=["acme/vault"]).status_code == 400


def test_unknown_scan_is_404(client):
    resp = client.get("/scans/scan_0_deadbeef")

    assert resp.status_code == 404
    assert resp.get_json() == {"error": "scan not found"}


def test_list_scans(client, orchestrator):
    ids = [client.post("/scans", json={"repository": "acme/vault"}).get_json()["scanId"] for _ in range(2)]
    for scan_id in ids:
        orchestrator.wait(scan_id, timeout=10)

    resp = client.get("/scans")

    assert resp.status_code == 200
    listed = resp.get_json()
    assert {s["scanId"] for s in listed} == set(ids)
    assert "findings" not in listed[0]


def test_wrong_method_returns_json(client):
    resp = client.delete("/scans")

    assert resp.status_code == 405
    assert resp.get_json()["error"] == "Method not allowed"


def test_services_registered_on_app(app, orchestrator):
    with app.app_context():
        assert get_orchestrator() is orchestrator
        assert get_cache() is orchestrator.fetcher.cache


@pytest.mark.parametrize("options, deep, deps, limit", [
    ({"deepScan": "false", "includeDependencies": "0"}, False, False, None),
    ({"deepScan": True, "include_dependencies": "true", "concurrencyLimit": "2"}, True, True, 2),
    ({"deep_scan": False, "concurrency_limit": 3}, False, False, 3),
])
def test_submit_parses_option_values(client, orchestrator, options, deep, deps, limit):
    resp = client.post("/scans", json={"repository": "acme/vault", "options": options})

    assert resp.status_code == 202
    scan = orchestrator.wait(resp.get_json()["scanId"], timeout=10)
    assert scan.request.options.deep_scan is deep
    assert scan.request.options.include_dependencies is deps
    assert scan.request.options.concurrency_limit == limit
