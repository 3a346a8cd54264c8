# powerctl/wake/dispatcher.py
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from powerctl.errors import UnknownTarget
from powerctl.models import NodeIdentity, Reason, Role, WakeAttemptResult, WakeOptions, WakeSummary
from powerctl.polling import poll_until
from powerctl.registry import NodeRegistry
from powerctl.wake.packet import UdpPacketSender
from powerctl.wake.reachability import PingProber

log = logging.getLogger("powerctl.wake")

# sender(mac) -> bool, prober(address, timeout) -> bool
Sender = Callable[[str], bool]
Prober = Callable[[str, float], bool]

STATUS_AWAKE = "awake"
STATUS_SLEEPING = "sleeping"
STATUS_UNKNOWN = "unknown"


def default_options(settings, verify: bool = False, retries: Optional[int] = None,
                    retry_delay: Optional[float] = None) -> WakeOptions:
    return WakeOptions(
        verify=verify,
        timeout=settings.ping_timeout,
        retries=retries if retries is not None else settings.retry_count,
        retry_delay=retry_delay if retry_delay is not None else settings.retry_delay,
    )


class WakeDispatcher:
    """
    Sends wake signals to registered nodes, optionally confirming that they
    came back. Unreachable targets are reported in the result, never raised.
    """

    def __init__(self, registry: NodeRegistry, sender: Optional[Sender] = None, prober: Optional[Prober] = None,
                 wake_interval: float = 5, verify_poll_interval: float = 5, status_probe_timeout: float = 2,
                 clock: Callable[[], float] = time.monotonic, sleep: Callable[[float], None] = time.sleep):
        self.registry = registry
        self.sender = sender or UdpPacketSender()
        self.prober = prober or PingProber()
        self.wake_interval = wake_interval
        self.verify_poll_interval = verify_poll_interval
        self.status_probe_timeout = status_probe_timeout
        self.clock = clock
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings, registry: Optional[NodeRegistry] = None, **kwargs) -> "WakeDispatcher":
        if registry is None:
            registry = NodeRegistry.load(settings.wol_registry, settings.wol_config_dir)
        kwargs.setdefault("sender", UdpPacketSender(settings.wol_broadcast_address, settings.wol_port,
                                                    settings.wol_secure_on))
        return cls(
            registry,
            wake_interval=settings.wake_interval,
            verify_poll_interval=settings.verify_poll_interval,
            status_probe_timeout=settings.status_probe_timeout,
            **kwargs,
        )

    def resolve(self, target: str) -> NodeIdentity:
        return self.registry.resolve(target)

    def select(self, all_nodes: bool = False, role: Optional[Role] = None) -> List[str]:
        if role is not None:
            return [n.hostname for n in self.registry.by_role(role)]
        if all_nodes:
            return self.registry.hostnames()
        return []

    def _send(self, node: NodeIdentity) -> bool:
        try:
            return bool(self.sender(node.wake_address))
        except Exception as e:
            log.warning("Sending wake signal to %s failed: %s", node.hostname, e)
            return False

    def _probe(self, address: str, timeout: float) -> bool:
        try:
            return bool(self.prober(address, timeout))
        except Exception as e:
            log.debug("Probe of %s failed: %s", address, e)
            return False

    def wake(self, target: str, opts: Optional[WakeOptions] = None) -> WakeAttemptResult:
        opts = opts or WakeOptions()
        try:
            node = self.resolve(target)
        except UnknownTarget as e:
            log.error("%s", e.message)
            return WakeAttemptResult(target=target, ok=False, reason=Reason.UNKNOWN_TARGET)
        return self._wake_node(node, opts)

    def _wake_node(self, node: NodeIdentity, opts: WakeOptions) -> WakeAttemptResult:
        result = WakeAttemptResult(target=node.hostname, role=node.role)
        start = self.clock()
        verify = opts.verify
        if verify and not node.address:
            log.warning("No IP address on record for %s, cannot verify wake; sending without verification",
                        node.hostname)
            verify = False

        retries = max(1, opts.retries)
        log.info("Waking %s (%s)", node.hostname, node.wake_address)
        for attempt in range(1, retries + 1):
            result.attempts = attempt
            sent = self._send(node)
            if sent:
                result.signals_sent += 1
                result.signal_sent = True
                if result.sent_at is None:
                    result.sent_at = self.clock()
            else:
                log.warning("Wake signal to %s not sent (attempt %d/%d)", node.hostname, attempt, retries)
                if attempt < retries:
                    self.sleep(opts.retry_delay)
                continue

            if not verify:
                result.ok = True
                break

            log.debug("Waiting up to %ss for %s to respond (attempt %d/%d)",
                      opts.retry_delay, node.hostname, attempt, retries)
            if poll_until(lambda: self._probe(node.address, opts.timeout), timeout=opts.retry_delay,
                          interval=self.verify_poll_interval, clock=self.clock, sleep=self.sleep):
                result.ok = True
                result.verified = True
                break

        result.elapsed = self.clock() - start
        if result.ok:
            log.info("%s: wake %s after %d attempt(s)", node.hostname,
                     "verified" if result.verified else "signal sent", result.attempts)
        elif not result.signal_sent:
            result.reason = Reason.SEND_FAILED
            log.error("%s: no wake signal could be sent", node.hostname)
        else:
            result.reason = Reason.NOT_VERIFIED_AWAKE
            result.verified = False
            log.error("%s: not responding after %d attempt(s)", node.hostname, result.attempts)
        return result

    def wake_batch(self, targets: Iterable[str], opts: Optional[WakeOptions] = None) -> WakeSummary:
        """
        Wake several nodes: control-role nodes first, then the rest, keeping
        the requested order inside each group and pausing `wake_interval`
        between consecutive sends. Unknown targets fail without stopping the batch.
        """
        opts = opts or WakeOptions()
        resolved: List[NodeIdentity] = []
        unknown: List[WakeAttemptResult] = []
        seen = set()
        for target in targets:
            if target in seen:
                continue
            seen.add(target)
            try:
                resolved.append(self.resolve(target))
            except UnknownTarget as e:
                log.error("%s", e.message)
                unknown.append(WakeAttemptResult(target=target, ok=False, reason=Reason.UNKNOWN_TARGET))

        ordered = [n for n in resolved if n.role == Role.CONTROL] + [n for n in resolved if n.role != Role.CONTROL]
        summary = WakeSummary()
        for i, node in enumerate(ordered):
            if i > 0 and self.wake_interval > 0:
                self.sleep(self.wake_interval)
            summary.results.append(self._wake_node(node, opts))
        summary.results.extend(unknown)
        log.info("Wake batch finished: %d succeeded, %d failed", summary.succeeded, summary.failed)
        return summary

    def check_status(self, target: str) -> str:
        node = self.registry.get(target)
        if node is None or not node.address:
            return STATUS_UNKNOWN
        if self._probe(node.address, self.status_probe_timeout):
            return STATUS_AWAKE
        return STATUS_SLEEPING

    def list_status(self) -> List[Dict[str, Optional[str]]]:
        rows = []
        for node in self.registry.nodes():
            rows.append({
                "hostname": node.hostname,
                "role": node.role.value,
                "address": node.address,
                "wake_address": node.wake_address,
                "status": self.check_status(node.hostname),
            })
        return rows
