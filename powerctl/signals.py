# powerctl/signals.py
import logging
import time
from typing import Callable, Optional

import psutil

from powerctl.models import ActivitySnapshot

log = logging.getLogger("powerctl.signals")


def count_remote_sessions() -> int:
    """Logged-in users on a pseudo terminal, i.e. ssh or similar."""
    return sum(1 for u in psutil.users() if (u.terminal or "").startswith("pts/"))


class SignalCollector:
    """
    Gathers the raw activity signals for one tick. A source that fails is
    reported as active: unknown is never read as idle.
    """

    def __init__(self, settings, cluster=None, sleep: Callable[[float], None] = time.sleep):
        self.settings = settings
        self.cluster = cluster
        self.sleep = sleep

    def collect(self) -> ActivitySnapshot:
        snap = ActivitySnapshot()
        checks = (
            ("workloads", self.settings.check_workloads, self.check_workloads),
            ("cpu", self.settings.check_cpu, self.check_cpu),
            ("network", self.settings.check_network, self.check_network),
            ("sessions", self.settings.check_sessions, self.check_sessions),
        )
        for name, enabled, check in checks:
            if not enabled:
                continue
            try:
                value = bool(check())
            except Exception as e:
                log.warning("%s check failed, assuming activity: %s", name, e)
                snap.errors[name] = str(e)
                value = True
            setattr(snap, name, value)
        return snap

    def check_workloads(self) -> bool:
        if self.cluster is None:
            raise RuntimeError("no cluster client configured")
        running = self.cluster.count_running_workloads(self.settings.excluded_namespace_list)
        if running > 0:
            log.info("Found %d running user workloads", running)
        return running > 0

    def check_cpu(self) -> bool:
        usage = psutil.cpu_percent(interval=self.settings.cpu_sample_seconds)
        if usage > self.settings.cpu_threshold_percent:
            log.info("CPU usage %.1f%% exceeds threshold %.1f%%", usage, self.settings.cpu_threshold_percent)
            return True
        return False

    def _iface_bytes(self, interface: str) -> int:
        counters = psutil.net_io_counters(pernic=True).get(interface)
        if counters is None:
            raise RuntimeError(f"network interface {interface} not found")
        return counters.bytes_recv + counters.bytes_sent

    def check_network(self) -> bool:
        interface = self.settings.network_interface
        before = self._iface_bytes(interface)
        self.sleep(self.settings.network_sample_seconds)
        after = self._iface_bytes(interface)
        rate = (after - before) / max(self.settings.network_sample_seconds, 1e-6)
        if rate > self.settings.network_threshold_bytes:
            log.info("Network activity %.0f bytes/sec on %s exceeds threshold", rate, interface)
            return True
        return False

    def check_sessions(self) -> bool:
        sessions = count_remote_sessions()
        if sessions > 0:
            log.info("Found %d active remote sessions", sessions)
        return sessions > 0


def describe(snapshot: Optional[ActivitySnapshot]) -> str:
    if snapshot is None:
        return "no snapshot"
    if not snapshot.active:
        return "idle"
    return "active (" + ", ".join(snapshot.sources()) + ")"
