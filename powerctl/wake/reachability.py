# powerctl/wake/reachability.py
import logging
import math

from powerctl.clients.cluster_client import run_command

log = logging.getLogger("powerctl.wake.reachability")


class PingProber:
    """Single ICMP echo via the system ping binary."""

    def __init__(self, ping: str = "ping"):
        self.ping = ping

    def __call__(self, address: str, timeout: float) -> bool:
        wait = max(1, int(math.ceil(timeout)))
        rc, _, err = run_command([self.ping, "-c", "1", "-W", str(wait), address], timeout=wait + 2)
        if rc == 127:
            log.warning("ping not available: %s", err)
        return rc == 0
