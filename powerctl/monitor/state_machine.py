# powerctl/monitor/state_machine.py
"""
Idle timing state machine.

`tick` is pure: it takes the persisted record, the current activity snapshot
and the clock reading and returns the next record plus the side effects the
caller must perform. Nothing here touches disk, network or the clock.
"""
from enum import Enum
from typing import List, NamedTuple

from powerctl.models import ActivitySnapshot, PowerState, PowerStateRecord


class Effect(str, Enum):
    CANCEL_PENDING = "cancel_pending"
    NOTIFY_SLEEP_IMMINENT = "notify_sleep_imminent"
    INVOKE_SLEEP = "invoke_sleep"


class TickOutcome(NamedTuple):
    record: PowerStateRecord
    effects: List[Effect]


def tick(record: PowerStateRecord, snapshot: ActivitySnapshot, settings, now: float) -> TickOutcome:
    if not record.sleep_enabled:
        return TickOutcome(record, [])

    # sleeping is left only through the resume path
    if record.state == PowerState.SLEEPING:
        return TickOutcome(record, [])

    record = record.model_copy(update={"last_check": now})

    # a last_activity in the future means the clock moved backwards
    if snapshot.active or record.last_activity > now:
        effects = []
        if record.state == PowerState.PENDING:
            effects.append(Effect.CANCEL_PENDING)
        record = record.transition(PowerState.ACTIVE, now).model_copy(update={"last_activity": now})
        return TickOutcome(record, effects)

    if record.state == PowerState.ACTIVE:
        if now - record.last_activity >= settings.inactivity_timeout:
            return TickOutcome(record.transition(PowerState.PENDING, now), [Effect.NOTIFY_SLEEP_IMMINENT])
        return TickOutcome(record, [])

    # pending
    if now - record.state_entered >= settings.grace_period:
        return TickOutcome(record.transition(PowerState.SLEEPING, now), [Effect.INVOKE_SLEEP])
    return TickOutcome(record, [])
