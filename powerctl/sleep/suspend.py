# powerctl/sleep/suspend.py
import logging
import os
import shutil

from powerctl.clients.cluster_client import run_command
from powerctl.models import Reason, Severity, StepResult

log = logging.getLogger("powerctl.sleep.suspend")

SYS_POWER_STATE = "/sys/power/state"


class Suspender:
    """
    Suspend-to-RAM. Prefers `systemctl suspend` and falls back to writing
    `mem` to /sys/power/state.
    """

    def __init__(self, timeout: float = 60, runner=run_command, sync=os.sync, which=shutil.which,
                 power_state_path: str = SYS_POWER_STATE):
        self.timeout = timeout
        self.runner = runner
        self.sync = sync
        self.which = which
        self.power_state_path = power_state_path

    def _sysfs_supported(self) -> bool:
        try:
            with open(self.power_state_path, encoding="utf-8") as fh:
                return "mem" in fh.read().split()
        except OSError:
            return False

    def available(self) -> bool:
        return bool(self.which("systemctl")) or self._sysfs_supported()

    def suspend(self) -> StepResult:
        has_systemctl = bool(self.which("systemctl"))
        has_sysfs = self._sysfs_supported()
        if not has_systemctl and not has_sysfs:
            log.error("No suspend mechanism available")
            return StepResult(step="suspend", ok=False, severity=Severity.FATAL,
                              reason=Reason.NO_SUSPEND_MECHANISM, message="no suspend mechanism available")

        log.info("Syncing filesystems...")
        self.sync()

        log.info("Suspending to RAM...")
        errors = []
        if has_systemctl:
            rc, out, err = self.runner(["systemctl", "suspend"], self.timeout)
            if rc == 0:
                return StepResult(step="suspend", message="systemctl suspend")
            errors.append(f"systemctl suspend exited {rc}: {err or out}")
            log.warning(errors[-1])
        if has_sysfs:
            try:
                with open(self.power_state_path, "w", encoding="utf-8") as fh:
                    fh.write("mem")
                return StepResult(step="suspend", message=f"mem > {self.power_state_path}")
            except OSError as e:
                errors.append(f"write to {self.power_state_path} failed: {e}")
                log.warning(errors[-1])
        return StepResult(step="suspend", ok=False, severity=Severity.FATAL,
                          reason=Reason.SUSPEND_FAILED, message="; ".join(errors))
