# powerctl/registry.py
import logging
import os
from typing import Dict, List, Optional

from powerctl.errors import UnknownTarget
from powerctl.models import NodeIdentity, Role

log = logging.getLogger("powerctl.registry")

CONTROL_MARKERS = ("master", "control")


def infer_role(hostname: str) -> Role:
    name = hostname.lower()
    if any(marker in name for marker in CONTROL_MARKERS):
        return Role.CONTROL
    return Role.WORKER


def _parse_role(value: Optional[str], hostname: str) -> Role:
    if not value:
        return infer_role(hostname)
    try:
        return Role(value.strip().lower())
    except ValueError:
        log.warning("Unknown role %r for %s in registry, inferring from hostname", value, hostname)
        return infer_role(hostname)


def parse_registry(text: str) -> List[NodeIdentity]:
    """
    Parse `hostname|ip|mac|interface[|role]` lines. Blank lines and lines
    starting with '#' are ignored; the first record for a hostname wins.
    """
    nodes: List[NodeIdentity] = []
    seen = set()
    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        parts = [p.strip() for p in line.split("|")]
        hostname = parts[0]
        if not hostname:
            log.warning("Skipping registry line %d without hostname", lineno)
            continue
        if hostname in seen:
            log.warning("Duplicate registry entry for %s on line %d ignored", hostname, lineno)
            continue
        seen.add(hostname)
        field = lambda i: parts[i] if len(parts) > i and parts[i] else None  # noqa: E731
        nodes.append(NodeIdentity(
            hostname=hostname,
            address=field(1),
            wake_address=field(2),
            interface=field(3),
            role=_parse_role(field(4), hostname),
        ))
    return nodes


def parse_node_config(text: str) -> Dict[str, str]:
    values = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        values[key.strip().upper()] = value.strip().strip('"').strip("'")
    return values


class NodeRegistry:
    """
    Ordered hostname -> NodeIdentity mapping. Per-node override files in
    `config_dir` (`<hostname>.conf`) take precedence over the shared registry.
    Read-only once loaded.
    """

    def __init__(self, nodes: List[NodeIdentity], overrides: Optional[Dict[str, NodeIdentity]] = None,
                 explicit_roles: Optional[set] = None):
        self._nodes: Dict[str, NodeIdentity] = {n.hostname: n for n in nodes}
        self._overrides: Dict[str, NodeIdentity] = dict(overrides or {})
        # override files that carry their own ROLE= line
        self._explicit_roles = set(explicit_roles or ())

    @classmethod
    def load(cls, registry_file: Optional[str], config_dir: Optional[str] = None) -> "NodeRegistry":
        nodes: List[NodeIdentity] = []
        if registry_file and os.path.isfile(registry_file):
            with open(registry_file, encoding="utf-8") as fh:
                nodes = parse_registry(fh.read())
            log.debug("Loaded %d nodes from %s", len(nodes), registry_file)
        else:
            log.debug("Registry file %s not found", registry_file)

        overrides: Dict[str, NodeIdentity] = {}
        explicit_roles = set()
        if config_dir and os.path.isdir(config_dir):
            for name in sorted(os.listdir(config_dir)):
                if not name.endswith(".conf"):
                    continue
                path = os.path.join(config_dir, name)
                try:
                    with open(path, encoding="utf-8") as fh:
                        values = parse_node_config(fh.read())
                except OSError as e:
                    log.warning("Cannot read node config %s: %s", path, e)
                    continue
                hostname = values.get("HOSTNAME") or name[: -len(".conf")]
                if values.get("ROLE"):
                    explicit_roles.add(hostname)
                overrides[hostname] = NodeIdentity(
                    hostname=hostname,
                    address=values.get("IP_ADDRESS") or None,
                    wake_address=values.get("MAC_ADDRESS") or None,
                    interface=values.get("INTERFACE") or None,
                    role=_parse_role(values.get("ROLE"), hostname),
                )
        return cls(nodes, overrides, explicit_roles)

    def get(self, hostname: str) -> Optional[NodeIdentity]:
        override = self._overrides.get(hostname)
        base = self._nodes.get(hostname)
        if override and base:
            # override wins field by field, gaps are filled from the shared registry
            return NodeIdentity(
                hostname=hostname,
                address=override.address or base.address,
                wake_address=override.wake_address or base.wake_address,
                interface=override.interface or base.interface,
                role=override.role if hostname in self._explicit_roles else base.role,
            )
        return override or base

    def resolve(self, hostname: str) -> NodeIdentity:
        node = self.get(hostname)
        if node is None or not node.wake_address:
            raise UnknownTarget(hostname)
        return node

    def hostnames(self) -> List[str]:
        names = list(self._nodes)
        names.extend(sorted(h for h in self._overrides if h not in self._nodes))
        return names

    def nodes(self) -> List[NodeIdentity]:
        return [self.get(h) for h in self.hostnames()]

    def by_role(self, role: Role) -> List[NodeIdentity]:
        return [n for n in self.nodes() if n.role == role]

    def __contains__(self, hostname: str) -> bool:
        return self.get(hostname) is not None

    def __len__(self) -> int:
        return len(self.hostnames())
