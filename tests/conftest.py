"""
Shared pytest fixtures for powerctl tests.

Everything here runs without root, network or a real cluster: settings
point at tmp_path, the clock is fake and collaborators are in-memory stubs.
"""

from typing import Dict, List, Optional, Tuple

import pytest

from powerctl.config import Settings
from powerctl.registry import NodeRegistry, parse_registry

REGISTRY_TEXT = """\
# hostname|ip|mac|interface[|role]
worker-1|10.0.0.11|AA:BB:CC:DD:EE:01|eth0
masternode|10.0.0.10|AA:BB:CC:DD:EE:00|eth0
worker-2|10.0.0.12|AA:BB:CC:DD:EE:02|eth0|worker
storage|10.0.0.13|AA:BB:CC:DD:EE:03|eno1|control
"""


class FakeClock:
    """Monotonic-ish clock whose `sleep` just advances time."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSender:
    def __init__(self, clock: Optional[FakeClock] = None, ok: bool = True):
        self.clock = clock
        self.ok = ok
        self.sent: List[Tuple[str, float]] = []

    def __call__(self, mac: str) -> bool:
        self.sent.append((mac, self.clock() if self.clock else 0.0))
        return self.ok


class FakeProber:
    def __init__(self, reachable=()):
        self.reachable = set(reachable)
        self.calls: List[Tuple[str, float]] = []

    def __call__(self, address: str, timeout: float) -> bool:
        self.calls.append((address, timeout))
        return address in self.reachable


class FakeCluster:
    """Stand-in for KubectlClient."""

    def __init__(self, nodes=("node-a",), control_plane=(), workloads=None, running: int = 0,
                 drain_result=(True, ""), available: bool = True, query_error=None):
        self.nodes = set(nodes)
        self.control_plane = set(control_plane)
        self.workloads = list(workloads or [])
        self.running = running
        self.drain_result = drain_result
        self.available = available
        self.query_error = query_error
        self.calls: List[Tuple[str, str]] = []

    def _check(self):
        if self.query_error is not None:
            raise self.query_error

    def is_available(self) -> bool:
        return self.available

    def node_exists(self, node: str) -> bool:
        return node in self.nodes

    def cordon(self, node: str):
        self.calls.append(("cordon", node))
        return True, ""

    def drain(self, node: str, timeout: int):
        self.calls.append(("drain", node))
        return self.drain_result

    def uncordon(self, node: str):
        self.calls.append(("uncordon", node))
        return True, ""

    def list_workloads(self, selector: str) -> List[str]:
        self._check()
        return list(self.workloads)

    def count_running_workloads(self, excluded) -> int:
        self._check()
        return self.running

    def is_control_plane(self, node: str) -> bool:
        self._check()
        return node in self.control_plane

    def control_plane_count(self) -> int:
        self._check()
        return len(self.control_plane)


class FakeNotifier:
    def __init__(self, ok: bool = True):
        self.ok = ok
        self.events: List[Tuple[str, str]] = []

    def send(self, event: str, node: str, text: Optional[str] = None) -> bool:
        self.events.append((event, node))
        return self.ok


class StubRedis:
    """The handful of redis commands the lock uses."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.expiry: Dict[str, int] = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.data:
            return None
        self.data[key] = value
        if ex is not None:
            self.expiry[key] = ex
        return True

    def get(self, key):
        value = self.data.get(key)
        return value.encode() if value is not None else None

    def delete(self, key):
        existed = key in self.data
        self.data.pop(key, None)
        self.expiry.pop(key, None)
        return int(existed)


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings rooted in tmp_path; keyword arguments override."""

    def _make(**overrides) -> Settings:
        values = dict(
            hostname="node-a",
            state_dir=str(tmp_path / "state"),
            lock_dir=str(tmp_path / "locks"),
            hooks_dir=str(tmp_path / "hooks"),
            wol_registry=str(tmp_path / "wol-registry.conf"),
            wol_config_dir=str(tmp_path / "wol"),
            notification_enabled=False,
            interactive=False,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry():
    return NodeRegistry(parse_registry(REGISTRY_TEXT))


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def notifier():
    return FakeNotifier()
