# powerctl/monitor/service.py
import logging
import signal
import threading
import time
from typing import Callable, Optional

from powerctl.clients.notifier import WebhookNotifier
from powerctl.models import PowerState, PowerStateRecord, SleepOptions
from powerctl.monitor.state_machine import Effect, tick
from powerctl.signals import SignalCollector, describe
from powerctl.state_store import PowerStateRepository

log = logging.getLogger("powerctl.monitor")


class MonitorService:
    """
    Auto-sleep loop: every `check_interval` collect signals, advance the idle
    state machine, persist the record and carry out the resulting effects.
    """

    def __init__(self, settings, collector: SignalCollector, repository: PowerStateRepository,
                 sequencer, notifier: Optional[WebhookNotifier] = None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.collector = collector
        self.repository = repository
        self.sequencer = sequencer
        self.notifier = notifier or WebhookNotifier(None, enabled=False)
        self.clock = clock
        self.stop_event = threading.Event()

    def _handle_signal(self, signum, frame):
        log.info("Received signal %s, stopping after the current check", signum)
        self.stop_event.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self._handle_signal)
        signal.signal(signal.SIGINT, self._handle_signal)

    def run_once(self) -> PowerStateRecord:
        record = self.repository.load_or_create()
        if not record.sleep_enabled:
            log.debug("Auto-sleep disabled, skipping check")
            return record

        snapshot = self.collector.collect()
        now = self.clock()
        outcome = tick(record, snapshot, self.settings, now)
        if outcome.record != record:
            self.repository.save(outcome.record)
        record = outcome.record

        if record.state == PowerState.ACTIVE:
            log.debug("Node %s: %s", self.settings.hostname, describe(snapshot))
        elif record.state == PowerState.PENDING and not outcome.effects:
            remaining = self.settings.grace_period - (now - record.state_entered)
            log.info("Sleep pending, %d seconds left in grace period", max(0, remaining))

        for effect in outcome.effects:
            record = self._apply(effect, record)
        return record

    def _apply(self, effect: Effect, record: PowerStateRecord) -> PowerStateRecord:
        host = self.settings.hostname
        if effect == Effect.CANCEL_PENDING:
            log.info("Activity detected, sleep cancelled")
            self.notifier.send("sleep_cancelled", host, f"Sleep cancelled on {host}: activity detected")
        elif effect == Effect.NOTIFY_SLEEP_IMMINENT:
            idle_minutes = int(self.settings.inactivity_timeout / 60)
            grace_minutes = int(self.settings.grace_period / 60)
            log.warning("Node idle for %d minutes, sleeping in %d minutes", idle_minutes, grace_minutes)
            self.notifier.send("sleep_pending", host,
                               f"{host} idle for {idle_minutes} minutes, sleeping in {grace_minutes} minutes")
        elif effect == Effect.INVOKE_SLEEP:
            log.warning("Grace period expired, initiating sleep")
            try:
                report = self.sequencer.execute_sleep(SleepOptions())
                failure = None if report.ok else report.reason
            except Exception as e:
                log.exception("Sleep sequence raised")
                failure = e
            current = self.repository.load() or record
            if current.state == PowerState.SLEEPING:
                # suspend never happened, the resume path did not run
                if failure is not None:
                    log.error("Sleep sequence failed (%s), returning to active", failure)
                now = self.clock()
                current = current.transition(PowerState.ACTIVE, now).model_copy(update={"last_activity": now})
                self.repository.save(current)
            record = current
        return record

    def _warn_if_left_sleeping(self) -> None:
        try:
            record = self.repository.load()
        except Exception as e:
            log.warning("Cannot read state record: %s", e)
            return
        if record is not None and record.state == PowerState.SLEEPING:
            log.warning("State record says %s is sleeping but the resume path never ran; auto-sleep stays "
                        "inactive until `powerctl sleep --wakeup` or `powerctl autosleep-ctl reset`",
                        self.settings.hostname)

    def run(self) -> None:
        log.info("Auto-sleep monitor started: inactivity %s min, check every %s min, grace %s min",
                 self.settings.inactivity_timeout_minutes, self.settings.check_interval_minutes,
                 self.settings.grace_period_minutes)
        self._warn_if_left_sleeping()
        while not self.stop_event.is_set():
            try:
                self.run_once()
            except Exception:
                log.exception("Monitor check failed")
            self.stop_event.wait(self.settings.check_interval)
        log.info("Auto-sleep monitor stopped")

    def stop(self) -> None:
        self.stop_event.set()
