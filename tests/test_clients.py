"""Collaborator clients: kubectl wrapper, webhook notifier, remote wake API."""

import httpx
import pytest

from powerctl.clients import cluster_client
from powerctl.clients.cluster_client import KubectlClient
from powerctl.clients.notifier import WebhookNotifier
from powerctl.clients.wake_api_client import SECRET_HEADER, WakeApiClient
from powerctl.errors import ClusterUnavailable


class ScriptedRun:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, cmd, timeout):
        self.calls.append(list(cmd))
        return self.results.pop(0)


@pytest.fixture
def kubectl(monkeypatch):
    monkeypatch.setattr(cluster_client.shutil, "which", lambda name: "/usr/bin/kubectl")
    return KubectlClient("kubectl", timeout=5)


class TestKubectlClient:
    def test_drain_arguments(self, kubectl, monkeypatch):
        run = ScriptedRun((0, "drained", ""))
        monkeypatch.setattr(cluster_client, "run_command", run)
        assert kubectl.drain("node-a", 120) == (True, "drained")
        cmd = run.calls[0]
        assert cmd[:3] == ["kubectl", "drain", "node-a"]
        assert "--ignore-daemonsets" in cmd
        assert "--delete-emptydir-data" in cmd
        assert "--timeout=120s" in cmd
        assert "--grace-period=30" in cmd

    def test_drain_timeout(self, kubectl, monkeypatch):
        monkeypatch.setattr(cluster_client, "run_command", ScriptedRun((124, "", "timeout")))
        assert kubectl.drain("node-a", 1) == (False, "timeout")

    def test_running_workloads_skip_excluded_namespaces(self, kubectl, monkeypatch):
        out = "kube-system coredns\ndefault web-1\nmonitoring prom-0\napps api-2"
        monkeypatch.setattr(cluster_client, "run_command", ScriptedRun((0, out, "")))
        assert kubectl.count_running_workloads(["kube-system", "monitoring"]) == 2

    def test_query_failure_raises(self, kubectl, monkeypatch):
        monkeypatch.setattr(cluster_client, "run_command", ScriptedRun((1, "", "connection refused")))
        with pytest.raises(ClusterUnavailable):
            kubectl.list_workloads("a=b")

    def test_missing_binary(self, monkeypatch):
        monkeypatch.setattr(cluster_client.shutil, "which", lambda name: None)
        client = KubectlClient("kubectl")
        assert not client.node_exists("node-a")
        with pytest.raises(ClusterUnavailable):
            client.control_plane_count()


def test_run_command_reports_unexecutable_binary(tmp_path):
    script = tmp_path / "no-shebang"
    script.write_text("echo hi\n")
    script.chmod(0o755)
    rc, out, err = cluster_client.run_command([str(script)], timeout=5)
    assert rc == 126
    assert out == ""
    assert err


def test_run_command_missing_binary(tmp_path):
    assert cluster_client.run_command([str(tmp_path / "missing")], timeout=5)[0] == 127


class FakeResponse:
    def __init__(self, status=200):
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise RuntimeError(f"HTTP {self.status}")


class FakeSession:
    def __init__(self, status=200):
        self.status = status
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        return FakeResponse(self.status)


class TestWebhookNotifier:
    def test_payload(self):
        session = FakeSession()
        assert WebhookNotifier("http://hook", session=session).send("node_sleeping", "node-a")
        url, payload = session.posts[0]
        assert url == "http://hook"
        assert payload["event"] == "node_sleeping"
        assert payload["node"] == "node-a"
        assert "timestamp" in payload

    def test_failure_returns_false(self):
        assert not WebhookNotifier("http://hook", session=FakeSession(500)).send("node_awake", "node-a")

    def test_disabled_is_a_noop(self):
        session = FakeSession()
        assert WebhookNotifier(None, session=session).send("node_awake", "node-a")
        assert session.posts == []


class TestWakeApiClient:
    def test_sends_secret_and_parses_json(self):
        seen = {}

        def handler(request):
            seen["secret"] = request.headers.get(SECRET_HEADER)
            seen["path"] = request.url.path
            return httpx.Response(200, json={"ok": True, "target": "worker-1"})

        client = WakeApiClient("http://api/", "s3cret", transport=httpx.MockTransport(handler))
        assert client.wake("worker-1", verify=True) == {"ok": True, "target": "worker-1"}
        assert seen == {"secret": "s3cret", "path": "/wake/worker-1"}

    def test_error_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(404, json={"detail": "unknown"}))
        resp = WakeApiClient("http://api", "x", transport=transport).wake("ghost")
        assert resp == {"ok": False, "status_code": 404, "error": "unknown"}
