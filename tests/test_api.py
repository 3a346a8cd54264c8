"""HTTP wake endpoint."""

import pytest
from fastapi.testclient import TestClient

from powerctl.main import create_app
from powerctl.safety.gate import SafetyGate
from powerctl.safety.lock import WAKE_BATCH, FileLock
from powerctl.wake.dispatcher import WakeDispatcher

from conftest import FakeClock, FakeProber, FakeSender

SECRET = "s3cret"
HEADERS = {"X-Wake-Secret": SECRET}


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def build_client(make_settings, registry, sender):
    def _build(**overrides):
        overrides.setdefault("wake_api_secret", SECRET)
        settings = make_settings(**overrides)
        clock = FakeClock()
        dispatcher = WakeDispatcher(registry, sender=sender, prober=FakeProber({"10.0.0.10"}),
                                    clock=clock, sleep=clock.sleep)
        gate = SafetyGate.from_settings(settings, isatty=lambda: False)
        locks = FileLock(settings.lock_dir, hostname=settings.hostname)
        app = create_app(settings, dispatcher=dispatcher, gate=gate, locks=locks)
        return TestClient(app), locks

    return _build


class TestAuth:
    def test_missing_secret_header_rejected(self, build_client):
        client, _ = build_client()
        assert client.get("/health").status_code == 401

    def test_wrong_secret_rejected(self, build_client):
        client, _ = build_client()
        assert client.get("/health", headers={"X-Wake-Secret": "nope"}).status_code == 401

    def test_unconfigured_secret_refuses_everything(self, build_client):
        client, _ = build_client(wake_api_secret=None)
        assert client.get("/health", headers=HEADERS).status_code == 503


class TestWake:
    def test_wake_single_host(self, build_client, sender):
        client, _ = build_client()
        resp = client.post("/wake/worker-1", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert body["target"] == "worker-1"
        assert len(sender.sent) == 1

    def test_unknown_host_is_404(self, build_client):
        client, _ = build_client()
        assert client.post("/wake/nope", headers=HEADERS).status_code == 404

    def test_wake_all_orders_control_first(self, build_client):
        client, _ = build_client()
        resp = client.post("/wake/all", headers=HEADERS)
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        assert [r["target"] for r in body["results"]][:2] == ["masternode", "storage"]

    def test_wake_all_blocked_in_safe_mode(self, build_client, sender):
        client, _ = build_client(safe_mode=True)
        resp = client.post("/wake/all", headers=HEADERS)
        assert resp.status_code == 403
        assert resp.json()["detail"]["reason"] == "SafeModeBlocked"
        assert sender.sent == []

    def test_wake_all_dry_run_is_403(self, build_client):
        client, _ = build_client(dry_run=True)
        assert client.post("/wake/all", headers=HEADERS).json()["detail"]["reason"] == "DryRun"

    def test_wake_all_busy_lock_is_409(self, build_client, make_settings):
        client, locks = build_client()
        holder = FileLock(locks.lock_dir, hostname="node-a")
        assert holder.acquire(WAKE_BATCH, timeout=0)
        try:
            assert client.post("/wake/all", headers=HEADERS).status_code == 409
        finally:
            holder.release(WAKE_BATCH)


def test_status_lists_nodes(build_client):
    client, _ = build_client()
    nodes = client.get("/status", headers=HEADERS).json()["nodes"]
    by_host = {n["hostname"]: n["status"] for n in nodes}
    assert by_host["masternode"] == "awake"
    assert by_host["worker-1"] == "sleeping"


def test_health(build_client):
    client, _ = build_client()
    body = client.get("/health", headers=HEADERS).json()
    assert body == {"status": "ok", "hostname": "node-a", "nodes": 4}
