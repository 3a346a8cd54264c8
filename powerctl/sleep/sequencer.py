# powerctl/sleep/sequencer.py
import logging
import time
from datetime import datetime
from typing import Callable, Optional

from powerctl.clients.cluster_client import KubectlClient
from powerctl.clients.notifier import WebhookNotifier
from powerctl.errors import ClusterUnavailable
from powerctl.models import PowerState, Reason, Severity, SleepOptions, SleepReport, StepResult
from powerctl.safety.gate import SafetyGate
from powerctl.safety.lock import POWER_TRANSITION, LockBackend, make_lock_backend
from powerctl.signals import count_remote_sessions
from powerctl.sleep.hooks import HookRunner
from powerctl.sleep.suspend import Suspender
from powerctl.state_store import POWER_KEY, PowerStateRepository, StateStore, make_state_store

log = logging.getLogger("powerctl.sleep")


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().isoformat(timespec="seconds")


class SleepSequencer:
    """
    Takes this node from running to suspended: safety check, evacuation,
    hooks, state publication, notification, suspend. When suspend returns
    the node has resumed and the wake-up steps run in the same call.
    """

    def __init__(self, settings, cluster: Optional[KubectlClient] = None, notifier: Optional[WebhookNotifier] = None,
                 gate: Optional[SafetyGate] = None, locks: Optional[LockBackend] = None,
                 store: Optional[StateStore] = None, hooks: Optional[HookRunner] = None,
                 suspender: Optional[Suspender] = None, sessions: Callable[[], int] = count_remote_sessions,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.hostname = settings.hostname
        self.cluster = cluster or KubectlClient(settings.kubectl_path, settings.kubectl_timeout,
                                                settings.drain_grace_period)
        self.notifier = notifier or WebhookNotifier(settings.notification_webhook_url, settings.notification_enabled,
                                                    settings.notification_timeout)
        self.gate = gate or SafetyGate.from_settings(settings)
        self.locks = locks or make_lock_backend(settings)
        self.store = store or make_state_store(settings)
        self.hooks = hooks or HookRunner(settings.hooks_dir, settings.hook_timeout)
        self.suspender = suspender or Suspender(settings.suspend_timeout)
        self.sessions = sessions
        self.clock = clock
        self.repository = PowerStateRepository(self.store, self.hostname, clock)

    def _cluster_joined(self) -> bool:
        return self.cluster.is_available() and self.cluster.node_exists(self.hostname)

    def check_safe(self) -> StepResult:
        """Reasons not to sleep right now; a failing cluster query counts as one."""
        log.info("Checking if safe to sleep...")
        problems = []

        try:
            sessions = self.sessions()
        except Exception as e:
            sessions = 0
            problems.append(f"cannot count remote sessions: {e}")
        if sessions > 0:
            problems.append(f"{sessions} active remote session(s)")

        if self.cluster.is_available():
            try:
                if self.cluster.node_exists(self.hostname) and self.cluster.is_control_plane(self.hostname):
                    log.warning("This is a control-plane node, sleeping may affect cluster availability")
                    if self.cluster.control_plane_count() <= 1:
                        problems.append("this is the only control-plane node")
                pods = self.cluster.list_workloads(self.settings.prevent_sleep_selector)
                if pods:
                    problems.append(f"{len(pods)} workload(s) labelled {self.settings.prevent_sleep_selector}")
            except ClusterUnavailable as e:
                problems.append(f"cluster query failed: {e.message}")

        if problems:
            message = "; ".join(problems)
            log.warning("Not safe to sleep: %s", message)
            return StepResult(step="safety", ok=False, severity=Severity.FATAL, reason=Reason.UNSAFE_TO_SLEEP,
                              message=message)
        log.info("Safe to sleep")
        return StepResult(step="safety", message="safe to sleep")

    def execute_sleep(self, options: Optional[SleepOptions] = None) -> SleepReport:
        options = options or SleepOptions()
        report = SleepReport()

        if options.force:
            log.warning("Force mode enabled, skipping safety checks")
            report.add(StepResult(step="safety", severity=Severity.WARNING, message="skipped (forced)"))
        else:
            safety = self.check_safe()
            if not safety.ok:
                report.add(safety)
                report.ok = False
                report.reason = safety.reason
                return report
            report.add(safety)

        if options.check_only:
            return report

        self.gate.preflight("forced sleep" if options.force else "sleep")
        if options.force:
            decision = self.gate.evaluate(f"force {self.hostname} to sleep", confirm_phrase="SLEEP")
        elif self.gate.dry_run:
            decision = self.gate.evaluate(f"put {self.hostname} to sleep", assume_yes=True)
        else:
            decision = None
        if decision is not None and not decision.allowed:
            if decision.reason == Reason.DRY_RUN:
                report.skipped = True
                report.reason = Reason.DRY_RUN
                report.add(StepResult(step="gate", message=decision.message))
                return report
            return report.fail(decision.reason, "gate", decision.message)

        if not self.locks.acquire(POWER_TRANSITION, self.settings.lock_timeout):
            return report.fail(Reason.LOCK_TIMEOUT, "lock", f"lock {POWER_TRANSITION} is busy")
        try:
            return self._run_sequence(options, report)
        finally:
            self.locks.release(POWER_TRANSITION)

    def _run_sequence(self, options: SleepOptions, report: SleepReport) -> SleepReport:
        log.info("Starting sleep sequence for %s", self.hostname)
        joined = self._cluster_joined()

        if options.skip_drain:
            report.add(StepResult(step="drain", message="skipped"))
        elif not joined:
            log.info("Node not part of a cluster, skipping drain")
            report.add(StepResult(step="drain", message="not cluster-joined"))
        else:
            self._evacuate(report)

        if options.skip_hooks:
            report.add(StepResult(step="hooks", message="skipped"))
        else:
            for step in self.hooks.run_all():
                report.add(step)

        self._publish_sleeping(report)

        if not self.notifier.send("node_sleeping", self.hostname, f"{self.hostname} is going to sleep"):
            report.add(StepResult(step="notify", ok=False, severity=Severity.WARNING,
                                  reason=Reason.NOTIFICATION_FAILED, message="node_sleeping notification failed"))

        result = self.suspender.suspend()
        report.add(result)
        if not result.ok:
            log.error("Sleep failed: %s", result.message)
            report.ok = False
            report.reason = result.reason
            # still running: put the node back into service
            self._resume(report, notify=False)
            return report

        # execution continues here after resume
        self._resume(report)
        return report

    def _evacuate(self, report: SleepReport) -> None:
        log.info("Cordoning node %s...", self.hostname)
        ok, msg = self.cluster.cordon(self.hostname)
        if not ok:
            log.warning("Failed to cordon node: %s", msg)
            report.add(StepResult(step="cordon", ok=False, severity=Severity.WARNING,
                                  reason=Reason.DRAIN_FAILED, message=msg))

        timeout = self.settings.drain_timeout
        log.info("Draining node %s (timeout: %ss)...", self.hostname, timeout)
        ok, msg = self.cluster.drain(self.hostname, timeout)
        if ok:
            report.add(StepResult(step="drain", message="drained"))
        elif msg == "timeout":
            log.warning("Drain timed out after %ss", timeout)
            report.add(StepResult(step="drain", ok=False, severity=Severity.WARNING,
                                  reason=Reason.DRAIN_TIMEOUT, message=f"drain timed out after {timeout}s"))
        else:
            log.warning("Drain completed with warnings: %s", msg)
            report.add(StepResult(step="drain", ok=False, severity=Severity.WARNING,
                                  reason=Reason.DRAIN_FAILED, message=msg))

    def _publish_sleeping(self, report: SleepReport) -> None:
        now = self.clock()
        try:
            self.store.store(POWER_KEY, {
                "STATE": "sleeping",
                "SLEEP_TIME": str(int(now)),
                "SLEEP_DATE": _iso(now),
                "HOSTNAME": self.hostname,
            })
            report.add(StepResult(step="publish", message="state=sleeping"))
        except Exception as e:
            log.warning("Failed to publish sleep state: %s", e)
            report.add(StepResult(step="publish", ok=False, severity=Severity.WARNING, message=str(e)))

    def on_wakeup(self) -> SleepReport:
        """Resume path, also run on its own by `powerctl sleep --wakeup`."""
        report = SleepReport()
        if not self.locks.acquire(POWER_TRANSITION, self.settings.lock_timeout):
            return report.fail(Reason.LOCK_TIMEOUT, "lock", f"lock {POWER_TRANSITION} is busy")
        try:
            self._resume(report)
        finally:
            self.locks.release(POWER_TRANSITION)
        return report

    def _resume(self, report: SleepReport, notify: bool = True) -> None:
        now = self.clock()
        log.info("System waking up...")
        try:
            self.store.store(POWER_KEY, {
                "STATE": "running",
                "WAKE_TIME": str(int(now)),
                "WAKE_DATE": _iso(now),
                "HOSTNAME": self.hostname,
            })
            record = self.repository.load()
            if record is not None and record.state != PowerState.ACTIVE:
                record = record.transition(PowerState.ACTIVE, now).model_copy(update={"last_activity": now})
                self.repository.save(record)
            report.add(StepResult(step="resume-state", message="state=running"))
        except Exception as e:
            log.warning("Failed to publish wake state: %s", e)
            report.add(StepResult(step="resume-state", ok=False, severity=Severity.WARNING, message=str(e)))

        if self._cluster_joined():
            log.info("Uncordoning node...")
            ok, msg = self.cluster.uncordon(self.hostname)
            if not ok:
                log.warning("Failed to uncordon: %s", msg)
                report.add(StepResult(step="uncordon", ok=False, severity=Severity.WARNING, message=msg))
            else:
                report.add(StepResult(step="uncordon", message="uncordoned"))

        if notify and not self.notifier.send("node_awake", self.hostname, f"{self.hostname} is awake"):
            report.add(StepResult(step="notify-awake", ok=False, severity=Severity.WARNING,
                                  reason=Reason.NOTIFICATION_FAILED, message="node_awake notification failed"))
        log.info("Wake-up complete")
