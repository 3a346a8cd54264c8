# powerctl/spindown.py
import logging
from typing import Any, Dict, Optional

from powerctl.clients.ssh_client import SSHRunner
from powerctl.models import Reason, Role
from powerctl.registry import NodeRegistry
from powerctl.safety.gate import SafetyGate
from powerctl.safety.lock import CLUSTER_SPINDOWN, LockBackend, describe_holder

log = logging.getLogger("powerctl.spindown")


class ClusterSpindown:
    """
    Puts every registered node to sleep over SSH. Workers go first; control
    nodes only when asked, and last.
    """

    def __init__(self, settings, registry: NodeRegistry, gate: SafetyGate, locks: LockBackend,
                 ssh: Optional[SSHRunner] = None):
        self.settings = settings
        self.registry = registry
        self.gate = gate
        self.locks = locks
        self.ssh = ssh or SSHRunner(settings.ssh_user, settings.ssh_key_file, settings.ssh_timeout,
                                    settings.ssh_command_timeout)

    def plan(self, include_control: bool = False):
        workers = [n for n in self.registry.nodes() if n.role != Role.CONTROL]
        control = [n for n in self.registry.nodes() if n.role == Role.CONTROL] if include_control else []
        nodes = []
        for node in workers + control:
            if node.hostname == self.settings.hostname:
                log.info("Skipping %s: this node, use `powerctl sleep` locally", node.hostname)
                continue
            nodes.append(node)
        return nodes

    def run(self, include_control: bool = False) -> Dict[str, Any]:
        self.gate.preflight("cluster spindown")
        nodes = self.plan(include_control)
        command = self.settings.remote_sleep_command

        if self.gate.dry_run:
            for node in nodes:
                log.info("[dry-run] would run %r on %s (%s)", command, node.hostname, node.role.value)
        decision = self.gate.evaluate(f"put {len(nodes)} node(s) to sleep", confirm_phrase="SPINDOWN")
        if not decision.allowed:
            return {"ok": decision.reason == Reason.DRY_RUN, "skipped": True, "reason": decision.reason.value,
                    "error": decision.message, "nodes": []}

        if not self.locks.acquire(CLUSTER_SPINDOWN, self.settings.lock_timeout):
            holder = describe_holder(self.locks.holder(CLUSTER_SPINDOWN))
            return {"ok": False, "skipped": True, "reason": Reason.LOCK_TIMEOUT.value,
                    "error": f"spindown already running ({holder})", "nodes": []}
        results = []
        try:
            for node in nodes:
                target = node.address or node.hostname
                log.info("Sleeping %s via %s@%s", node.hostname, self.settings.ssh_user, target)
                rc, out, err = self.ssh.run(target, command)
                entry = {"hostname": node.hostname, "role": node.role.value, "rc": rc, "ok": rc == 0}
                if rc != 0:
                    entry["error"] = err or out
                    log.warning("Spindown of %s failed (rc=%s): %s", node.hostname, rc, entry["error"])
                results.append(entry)
        finally:
            self.locks.release(CLUSTER_SPINDOWN)

        ok = all(r["ok"] for r in results)
        log.info("Cluster spindown complete: %d of %d nodes", sum(1 for r in results if r["ok"]), len(results))
        return {"ok": ok, "skipped": False, "nodes": results}
