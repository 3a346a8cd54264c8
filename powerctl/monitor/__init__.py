from .service import MonitorService
from .state_machine import Effect, TickOutcome, tick

__all__ = ["MonitorService", "Effect", "TickOutcome", "tick"]
