# powerctl/safety/gate.py
import logging
import sys
from typing import Callable, NamedTuple, Optional

from powerctl.models import Reason

log = logging.getLogger("powerctl.safety")


class GateDecision(NamedTuple):
    allowed: bool
    reason: Optional[Reason] = None
    message: str = ""


class SafetyGate:
    """
    Decides whether a destructive or bulk operation may run. Checked in
    order: safe mode, dry run, auto confirm, interactive prompt.
    """

    def __init__(self, safe_mode: bool = False, dry_run: bool = False, auto_confirm: bool = False,
                 interactive: bool = True, input_fn: Callable[[str], str] = input,
                 isatty: Optional[Callable[[], bool]] = None):
        self.safe_mode = safe_mode
        self.dry_run = dry_run
        self.auto_confirm = auto_confirm
        self.interactive = interactive
        self.input_fn = input_fn
        self.isatty = isatty or sys.stdin.isatty

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "SafetyGate":
        return cls(
            safe_mode=settings.safe_mode,
            dry_run=settings.dry_run,
            auto_confirm=settings.auto_confirm,
            interactive=settings.interactive,
            **kwargs,
        )

    def preflight(self, operation: str) -> None:
        log.info("Preflight for %s: safe_mode=%s dry_run=%s auto_confirm=%s",
                 operation, self.safe_mode, self.dry_run, self.auto_confirm)

    def _can_prompt(self) -> bool:
        if not self.interactive:
            return False
        try:
            return bool(self.isatty())
        except (AttributeError, ValueError):
            return False

    def evaluate(self, operation: str, confirm_phrase: Optional[str] = None,
                 assume_yes: bool = False) -> GateDecision:
        if self.safe_mode:
            msg = f"{operation} blocked: safe mode is enabled (set POWERCTL_SAFE_MODE=0 to allow)"
            log.error(msg)
            return GateDecision(False, Reason.SAFE_MODE_BLOCKED, msg)

        if self.dry_run:
            msg = f"[dry-run] would perform: {operation}"
            log.info(msg)
            return GateDecision(False, Reason.DRY_RUN, msg)

        if self.auto_confirm or assume_yes:
            log.warning("%s confirmed automatically", operation)
            return GateDecision(True, None, "auto-confirmed")

        if not self._can_prompt():
            msg = f"{operation} requires confirmation; re-run with --yes in non-interactive mode"
            log.error(msg)
            return GateDecision(False, Reason.NON_INTERACTIVE, msg)

        if confirm_phrase:
            prompt = f"This will {operation}. Type '{confirm_phrase}' to continue: "
        else:
            prompt = f"Proceed with {operation}? [y/N] "
        try:
            answer = self.input_fn(prompt)
        except EOFError:
            msg = f"{operation}: no answer on stdin"
            log.error(msg)
            return GateDecision(False, Reason.NON_INTERACTIVE, msg)

        answer = (answer or "").strip()
        if confirm_phrase:
            accepted = answer == confirm_phrase
        else:
            accepted = answer.lower() in ("y", "yes")
        if not accepted:
            msg = f"{operation} cancelled"
            log.info(msg)
            return GateDecision(False, Reason.CONFIRMATION_DENIED, msg)
        return GateDecision(True, None, "confirmed")

    def guard(self, operation: str, confirm_phrase: Optional[str] = None, assume_yes: bool = False) -> bool:
        return self.evaluate(operation, confirm_phrase, assume_yes).allowed
