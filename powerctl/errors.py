"""
powerctl error hierarchy.

Only structural failures are exceptions. Best-effort step failures (drain,
hooks, notifications) are reported as StepResult entries instead, see
powerctl.models.
"""

from typing import Any, Dict, Optional

__all__ = [
    "PowerCtlError",
    "ConfigurationError",
    "UnknownTarget",
    "LockTimeout",
    "IllegalTransition",
    "ClusterUnavailable",
]


class PowerCtlError(Exception):
    """Base exception for powerctl.

    Attributes:
        code: machine-readable error code
        message: human-readable description
        context: extra fields for logs and API responses
    """
    code: str = "POWERCTL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"[{self.code}] {self.message} ({ctx})"
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "context": self.context}


class ConfigurationError(PowerCtlError):
    code = "CONFIGURATION_ERROR"


class UnknownTarget(PowerCtlError):
    """No registry entry (or no wake address) for the requested host."""
    code = "UnknownTarget"

    def __init__(self, hostname: str, message: Optional[str] = None):
        super().__init__(message or f"no wake address on record for {hostname}", context={"hostname": hostname})
        self.hostname = hostname


class LockTimeout(PowerCtlError):
    code = "LockTimeout"

    def __init__(self, name: str, holder: Optional[str] = None):
        super().__init__(f"timed out waiting for lock {name}", context={"holder": holder or "unknown"})
        self.name = name
        self.holder = holder


class IllegalTransition(PowerCtlError):
    code = "IllegalTransition"

    def __init__(self, current: str, target: str):
        super().__init__(f"illegal power state transition {current} -> {target}",
                         context={"from": current, "to": target})


class ClusterUnavailable(PowerCtlError):
    """The orchestration API could not be queried."""
    code = "ClusterUnavailable"
