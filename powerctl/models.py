# powerctl/models.py
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from powerctl.errors import IllegalTransition


class Role(str, Enum):
    CONTROL = "control"
    WORKER = "worker"
    UNKNOWN = "unknown"


class PowerState(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    SLEEPING = "sleeping"


LEGAL_TRANSITIONS = {
    (PowerState.ACTIVE, PowerState.PENDING),
    (PowerState.PENDING, PowerState.ACTIVE),
    (PowerState.PENDING, PowerState.SLEEPING),
    (PowerState.SLEEPING, PowerState.ACTIVE),
}


class Severity(str, Enum):
    FATAL = "fatal"
    WARNING = "warning"
    INFO = "info"


class Reason(str, Enum):
    UNSAFE_TO_SLEEP = "UnsafeToSleep"
    DRAIN_TIMEOUT = "DrainTimeout"
    DRAIN_FAILED = "DrainFailed"
    HOOK_FAILURE = "HookFailure"
    NOTIFICATION_FAILED = "NotificationFailed"
    NO_SUSPEND_MECHANISM = "NoSuspendMechanism"
    SUSPEND_FAILED = "SuspendFailed"
    UNKNOWN_TARGET = "UnknownTarget"
    NOT_VERIFIED_AWAKE = "NotVerifiedAwake"
    SEND_FAILED = "SendFailed"
    LOCK_TIMEOUT = "LockTimeout"
    SAFE_MODE_BLOCKED = "SafeModeBlocked"
    DRY_RUN = "DryRun"
    CONFIRMATION_DENIED = "ConfirmationDenied"
    NON_INTERACTIVE = "NonInteractive"


class NodeIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    hostname: str
    role: Role = Role.UNKNOWN
    address: Optional[str] = None       # ip address used for reachability probes
    wake_address: Optional[str] = None  # MAC of the wake-capable NIC
    interface: Optional[str] = None


class PowerStateRecord(BaseModel):
    """Persisted auto-sleep state of one node."""
    model_config = ConfigDict(frozen=True)

    hostname: str
    state: PowerState = PowerState.ACTIVE
    last_activity: float
    state_entered: float
    sleep_enabled: bool = True
    last_check: Optional[float] = None

    @classmethod
    def fresh(cls, hostname: str, now: float, sleep_enabled: bool = True) -> "PowerStateRecord":
        return cls(hostname=hostname, last_activity=now, state_entered=now, sleep_enabled=sleep_enabled, last_check=now)

    def transition(self, target: PowerState, now: float) -> "PowerStateRecord":
        if target == self.state:
            return self
        if (self.state, target) not in LEGAL_TRANSITIONS:
            raise IllegalTransition(self.state.value, target.value)
        return self.model_copy(update={"state": target, "state_entered": now})

    def to_document(self) -> Dict[str, str]:
        doc = {
            "STATE": self.state.value,
            "LAST_ACTIVITY": str(int(self.last_activity)),
            "STATE_ENTERED": str(int(self.state_entered)),
            "SLEEP_ENABLED": "true" if self.sleep_enabled else "false",
            "HOSTNAME": self.hostname,
        }
        if self.last_check is not None:
            doc["LAST_CHECK"] = str(int(self.last_check))
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, str], hostname: str, now: float) -> "PowerStateRecord":
        # missing or garbled fields fall back to "activity just happened"
        def _ts(key):
            try:
                return float(doc[key])
            except (KeyError, TypeError, ValueError):
                return now

        try:
            state = PowerState(doc.get("STATE", PowerState.ACTIVE.value).lower())
        except ValueError:
            state = PowerState.ACTIVE
        last_check = _ts("LAST_CHECK") if "LAST_CHECK" in doc else None
        return cls(
            hostname=doc.get("HOSTNAME") or hostname,
            state=state,
            last_activity=_ts("LAST_ACTIVITY"),
            state_entered=_ts("STATE_ENTERED"),
            sleep_enabled=str(doc.get("SLEEP_ENABLED", "true")).lower() in ("1", "true", "yes"),
            last_check=last_check,
        )


class ActivitySnapshot(BaseModel):
    workloads: bool = False
    cpu: bool = False
    network: bool = False
    sessions: bool = False
    errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def active(self) -> bool:
        return self.workloads or self.cpu or self.network or self.sessions

    def sources(self) -> List[str]:
        return [name for name in ("workloads", "cpu", "network", "sessions") if getattr(self, name)]


class WakeOptions(BaseModel):
    verify: bool = False
    timeout: float = 2          # single reachability probe
    retries: int = 3
    retry_delay: float = 10


class WakeAttemptResult(BaseModel):
    target: str
    ok: bool = False
    reason: Optional[Reason] = None
    attempts: int = 0
    signals_sent: int = 0
    signal_sent: bool = False
    verified: Optional[bool] = None
    elapsed: float = 0.0
    sent_at: Optional[float] = None
    role: Role = Role.UNKNOWN


class WakeSummary(BaseModel):
    results: List[WakeAttemptResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    def as_dict(self) -> dict:
        return {
            "ok": self.ok,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.model_dump(mode="json") for r in self.results],
        }


class StepResult(BaseModel):
    step: str
    ok: bool = True
    severity: Severity = Severity.INFO
    reason: Optional[Reason] = None
    message: str = ""


class SleepOptions(BaseModel):
    force: bool = False
    skip_drain: bool = False
    skip_hooks: bool = False
    check_only: bool = False


class SleepReport(BaseModel):
    ok: bool = True
    reason: Optional[Reason] = None
    steps: List[StepResult] = Field(default_factory=list)
    skipped: bool = False

    @property
    def warnings(self) -> List[StepResult]:
        return [s for s in self.steps if s.severity == Severity.WARNING]

    def add(self, step: StepResult) -> StepResult:
        self.steps.append(step)
        return step

    def fail(self, reason: Reason, step: str, message: str) -> "SleepReport":
        self.add(StepResult(step=step, ok=False, severity=Severity.FATAL, reason=reason, message=message))
        self.ok = False
        self.reason = reason
        return self
