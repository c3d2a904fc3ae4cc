from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from ledgerlink.api.app import create_app
from ledgerlink.errors import EnrollmentError
from ledgerlink.runtime import LedgerLink
from ledgerlink.store import DeploymentStore, SqliteDB


@pytest.fixture
def link(link_cfg, net) -> LedgerLink:
    return LedgerLink(cfg=link_cfg, network=net, store=DeploymentStore(db=SqliteDB(path=link_cfg.db_path)))


@pytest.fixture
def client(link, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("LEDGERLINK_AUTOSTART", raising=False)
    with TestClient(create_app(boot_runtime=False, runtime=link)) as c:
        yield c


def test_lifespan_boots_runtime(client, link) -> None:
    r = client.get("/v1/health")
    assert r.status_code == 200
    j = r.json()
    assert j["ok"] is True
    assert j["ready"] is True
    assert link.started


def test_invoke_and_query(client) -> None:
    r = client.post("/v1/tx/invoke", json={"fcn": "put", "user": "alice", "args": ["acct", json.dumps({"n": 3})]})
    assert r.status_code == 200, r.text
    assert r.json()["ok"] is True
    assert r.json()["tx_id"]

    r = client.post("/v1/tx/query", json={"fcn": "get", "user": "alice", "args": ["acct"]})
    assert r.status_code == 200
    assert r.json()["result"] == {"n": 3}


def test_unknown_user_is_404(client) -> None:
    r = client.post("/v1/tx/query", json={"fcn": "get", "user": "mallory", "args": ["acct"]})
    assert r.status_code == 404
    j = r.json()
    assert j["ok"] is False
    assert j["error"]["code"] == "unknown_identity"


def test_unenrolled_user_is_403(link_cfg, net, monkeypatch: pytest.MonkeyPatch) -> None:
    net.add_member("erin", "erinpw")
    link = LedgerLink(cfg=link_cfg, network=net, store=DeploymentStore(db=SqliteDB(path=link_cfg.db_path)))
    with TestClient(create_app(boot_runtime=False, runtime=link)) as c:
        r = c.post("/v1/tx/query", json={"fcn": "balance", "user": "erin", "args": []})
    assert r.status_code == 403
    assert r.json()["error"]["code"] == "not_enrolled"


def test_chaincode_failure_is_502(client) -> None:
    r = client.post("/v1/tx/invoke", json={"fcn": "transfer", "user": "alice", "args": []})
    assert r.status_code == 502
    assert r.json()["ok"] is False


def test_body_validation(client) -> None:
    r = client.post("/v1/tx/invoke", json={"user": "alice"})
    assert r.status_code == 422


def test_status_and_forced_deploy(client, net) -> None:
    before = client.get("/v1/status").json()
    assert before["deploy"]["state"] == "deployed"

    r = client.post("/v1/deploy", json={"force": True})
    assert r.status_code == 200
    assert r.json()["chaincode_id"] != before["deploy"]["chaincode_id"]
    assert len(net.log.deploys) == 2

    r = client.post("/v1/deploy", json={})
    assert r.json()["chaincode_id"] == client.get("/v1/status").json()["deploy"]["chaincode_id"]
    assert len(net.log.deploys) == 2


def test_not_ready_without_autostart(link, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LEDGERLINK_AUTOSTART", "0")
    with TestClient(create_app(boot_runtime=False, runtime=link)) as c:
        r = c.post("/v1/tx/query", json={"fcn": "get", "user": "alice", "args": ["k"]})
        assert r.status_code == 503
        assert r.json()["error"]["code"] == "not_deployed"
        assert c.get("/v1/health").json()["ready"] is False


def test_no_runtime_attached(monkeypatch: pytest.MonkeyPatch) -> None:
    with TestClient(create_app(boot_runtime=False)) as c:
        assert c.get("/v1/health").json()["deploy_state"] is None
        r = c.get("/v1/status")
        assert r.status_code == 503


def test_metrics_gated_by_env(client, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("LEDGERLINK_METRICS_ENABLED", raising=False)
    assert client.get("/v1/metrics").status_code == 404

    monkeypatch.setenv("LEDGERLINK_METRICS_ENABLED", "1")
    r = client.get("/v1/metrics")
    assert r.status_code == 200
    assert "ledgerlink_deploy_requests_total" in r.text
    assert "# TYPE ledgerlink_deploy_requests_total counter" in r.text
    assert "ledgerlink_deployed 1" in r.text


def test_bootstrap_failure_aborts_startup(link, net) -> None:
    net.fail_next("enroll")
    with pytest.raises(EnrollmentError):
        with TestClient(create_app(boot_runtime=False, runtime=link)):
            pass


def test_boot_runtime_uses_build_runtime(link, monkeypatch: pytest.MonkeyPatch) -> None:
    from ledgerlink.api import app as api_app

    monkeypatch.setattr(api_app, "build_runtime", lambda: link)
    app = api_app.create_app(boot_runtime=True)
    assert app.state.runtime is link


def test_request_id_echoed(client) -> None:
    r = client.get("/v1/health", headers={"x-request-id": "abc123"})
    assert r.headers["x-request-id"] == "abc123"
