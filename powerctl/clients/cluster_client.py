# powerctl/clients/cluster_client.py
import logging
import shutil
import subprocess
from typing import List, Sequence, Tuple

from powerctl.errors import ClusterUnavailable

log = logging.getLogger("powerctl.clients.cluster")

CONTROL_PLANE_LABEL = "node-role.kubernetes.io/control-plane"


def run_command(cmd: Sequence[str], timeout: float) -> Tuple[int, str, str]:
    """
    Run a local command. Returns (rc, stdout, stderr); rc 124 on timeout, 127
    when the binary is missing and 126 when it cannot be executed.
    """
    try:
        proc = subprocess.run(list(cmd), stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout, text=True)
        return proc.returncode, proc.stdout.strip(), proc.stderr.strip()
    except subprocess.TimeoutExpired as e:
        return 124, "", f"timeout: {e}"
    except FileNotFoundError as e:
        return 127, "", str(e)
    except OSError as e:
        return 126, "", str(e)


class KubectlClient:
    """
    Thin wrapper over kubectl. Mutating calls return (ok, reason) and never
    raise; queries raise ClusterUnavailable when the API cannot be reached.
    """

    def __init__(self, kubectl: str = "kubectl", timeout: float = 30, drain_grace_period: int = 30):
        self.kubectl = kubectl
        self.timeout = timeout
        self.drain_grace_period = drain_grace_period

    def _run(self, args: List[str], timeout: float = None) -> Tuple[int, str, str]:
        return run_command([self.kubectl] + args, timeout or self.timeout)

    def is_available(self) -> bool:
        return shutil.which(self.kubectl) is not None

    def _query(self, args: List[str]) -> str:
        if not self.is_available():
            raise ClusterUnavailable(f"{self.kubectl} not installed")
        rc, out, err = self._run(args)
        if rc != 0:
            raise ClusterUnavailable(f"kubectl {' '.join(args[:2])} failed: {err or out}", context={"rc": rc})
        return out

    def node_exists(self, node: str) -> bool:
        if not self.is_available():
            return False
        rc, _, _ = self._run(["get", "node", node, "-o", "name"])
        return rc == 0

    def cordon(self, node: str) -> Tuple[bool, str]:
        rc, out, err = self._run(["cordon", node])
        return rc == 0, err or out

    def drain(self, node: str, timeout: int) -> Tuple[bool, str]:
        args = [
            "drain", node,
            "--ignore-daemonsets",
            "--delete-emptydir-data",
            f"--timeout={int(timeout)}s",
            f"--grace-period={self.drain_grace_period}",
            "--force",
        ]
        # kubectl enforces its own timeout; give the process a little headroom
        rc, out, err = self._run(args, timeout=timeout + 30)
        if rc == 124 or "timed out" in (err or "").lower():
            return False, "timeout"
        return rc == 0, err or out

    def uncordon(self, node: str) -> Tuple[bool, str]:
        rc, out, err = self._run(["uncordon", node])
        return rc == 0, err or out

    def list_workloads(self, selector: str) -> List[str]:
        out = self._query(["get", "pods", "--all-namespaces", "-l", selector, "-o", "name"])
        return [line for line in out.splitlines() if line.strip()]

    def count_running_workloads(self, excluded_namespaces: Sequence[str]) -> int:
        out = self._query([
            "get", "pods", "--all-namespaces",
            "--field-selector=status.phase=Running",
            "-o", "custom-columns=NS:.metadata.namespace,NAME:.metadata.name",
            "--no-headers",
        ])
        excluded = set(excluded_namespaces)
        count = 0
        for line in out.splitlines():
            parts = line.split()
            if parts and parts[0] not in excluded:
                count += 1
        return count

    def is_control_plane(self, node: str) -> bool:
        # the label value is usually empty, so look for the key itself
        out = self._query(["get", "node", node, "--show-labels", "--no-headers"])
        return CONTROL_PLANE_LABEL in out

    def control_plane_count(self) -> int:
        out = self._query(["get", "nodes", "-l", CONTROL_PLANE_LABEL, "-o", "name"])
        return len([line for line in out.splitlines() if line.strip()])
