# powerctl/sleep/hooks.py
import logging
import os
from typing import List

from powerctl.clients.cluster_client import run_command
from powerctl.models import Reason, Severity, StepResult

log = logging.getLogger("powerctl.sleep.hooks")


def discover_hooks(hooks_dir: str) -> List[str]:
    """Executable regular files in `hooks_dir`, in lexical order."""
    if not hooks_dir or not os.path.isdir(hooks_dir):
        return []
    hooks = []
    for name in sorted(os.listdir(hooks_dir)):
        path = os.path.join(hooks_dir, name)
        if os.path.isfile(path) and os.access(path, os.X_OK):
            hooks.append(path)
    return hooks


class HookRunner:
    def __init__(self, hooks_dir: str, timeout: float = 60, runner=run_command):
        self.hooks_dir = hooks_dir
        self.timeout = timeout
        self.runner = runner

    def run_all(self) -> List[StepResult]:
        hooks = discover_hooks(self.hooks_dir)
        if not hooks:
            log.info("No pre-sleep hooks in %s", self.hooks_dir)
            return []
        results = []
        for path in hooks:
            name = os.path.basename(path)
            log.info("Running hook: %s", name)
            rc, out, err = self.runner([path], self.timeout)
            if rc == 0:
                results.append(StepResult(step=f"hook:{name}", message=out))
                continue
            if rc == 124:
                message = f"hook {name} timed out after {self.timeout}s"
            else:
                message = f"hook {name} exited {rc}: {err or out}"
            log.warning(message)
            results.append(StepResult(step=f"hook:{name}", ok=False, severity=Severity.WARNING,
                                      reason=Reason.HOOK_FAILURE, message=message))
        return results
