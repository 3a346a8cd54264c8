"""Signal collector: thresholds, disabled sources and error handling."""

from collections import namedtuple

import pytest

from powerctl import signals
from powerctl.errors import ClusterUnavailable
from powerctl.signals import SignalCollector

from conftest import FakeCluster

NetIO = namedtuple("NetIO", "bytes_sent bytes_recv")
User = namedtuple("User", "name terminal")


@pytest.fixture
def quiet(monkeypatch):
    """An idle machine: low cpu, flat counters, nobody logged in."""
    monkeypatch.setattr(signals.psutil, "cpu_percent", lambda interval=None: 1.0)
    monkeypatch.setattr(signals.psutil, "net_io_counters", lambda pernic=False: {"eth0": NetIO(100, 100)})
    monkeypatch.setattr(signals.psutil, "users", lambda: [User("root", "tty1")])


def _collector(settings, cluster=None):
    return SignalCollector(settings, cluster or FakeCluster(), sleep=lambda s: None)


def test_idle_machine_has_no_activity(settings, quiet):
    snap = _collector(settings).collect()
    assert not snap.active
    assert snap.errors == {}


def test_cpu_over_threshold(settings, quiet, monkeypatch):
    monkeypatch.setattr(signals.psutil, "cpu_percent", lambda interval=None: 55.0)
    assert _collector(settings).collect().sources() == ["cpu"]


def test_network_delta_over_threshold(settings, quiet, monkeypatch):
    readings = iter([{"eth0": NetIO(0, 0)}, {"eth0": NetIO(5000, 5000)}])
    monkeypatch.setattr(signals.psutil, "net_io_counters", lambda pernic=False: next(readings))
    assert _collector(settings).collect().network


def test_missing_interface_counts_as_activity(make_settings, quiet):
    snap = _collector(make_settings(network_interface="wlan9")).collect()
    assert snap.network
    assert "wlan9" in snap.errors["network"]


def test_pts_sessions(settings, quiet, monkeypatch):
    monkeypatch.setattr(signals.psutil, "users", lambda: [User("bob", "pts/0"), User("root", "tty1")])
    assert signals.count_remote_sessions() == 1
    assert _collector(settings).collect().sessions


def test_workloads_and_unreachable_api(settings, quiet):
    assert _collector(settings, FakeCluster(running=3)).collect().workloads
    snap = _collector(settings, FakeCluster(query_error=ClusterUnavailable("no api"))).collect()
    assert snap.workloads
    assert "workloads" in snap.errors


def test_disabled_source_gives_no_signal(make_settings, quiet, monkeypatch):
    monkeypatch.setattr(signals.psutil, "cpu_percent", lambda interval=None: 99.0)
    snap = _collector(make_settings(check_cpu=False)).collect()
    assert not snap.cpu
