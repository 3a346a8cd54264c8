# powerctl/cli.py
import argparse
import json
import logging
import sys
import time
from datetime import datetime
from typing import List, Optional

from powerctl.clients.cluster_client import KubectlClient
from powerctl.clients.notifier import WebhookNotifier
from powerctl.clients.wake_api_client import WakeApiClient
from powerctl.config import Settings, load_settings
from powerctl.errors import PowerCtlError
from powerctl.models import PowerState, Reason, Role, SleepOptions, SleepReport
from powerctl.monitor.service import MonitorService
from powerctl.registry import NodeRegistry
from powerctl.safety.gate import SafetyGate
from powerctl.safety.lock import WAKE_BATCH, install_exit_handlers, make_lock_backend
from powerctl.signals import SignalCollector
from powerctl.sleep.sequencer import SleepSequencer
from powerctl.spindown import ClusterSpindown
from powerctl.state_store import PowerStateRepository, make_state_store
from powerctl.wake.dispatcher import WakeDispatcher, default_options

log = logging.getLogger("powerctl.cli")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(settings: Settings) -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    if settings.log_file:
        try:
            handler = logging.FileHandler(settings.log_file)
        except OSError as e:
            log.warning("Cannot open log file %s: %s", settings.log_file, e)
        else:
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logging.getLogger().addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="powerctl", description="Node power lifecycle controller")
    parser.add_argument("-c", "--config", help="key=value config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--yes", action="store_true", help="answer yes to confirmations")
    parser.add_argument("--dry-run", action="store_true", help="show what would happen without doing it")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sleep", help="put this node to sleep")
    p.add_argument("--force", action="store_true", help="skip safety checks")
    p.add_argument("--check", action="store_true", help="only check whether it is safe to sleep")
    p.add_argument("--no-drain", action="store_true", help="skip cluster drain")
    p.add_argument("--no-hooks", action="store_true", help="skip pre-sleep hooks")
    p.add_argument("--wakeup", action="store_true", help="run the wake-up sequence (called after resume)")

    p = sub.add_parser("wake", help="wake remote nodes")
    p.add_argument("targets", nargs="*", help="hostnames to wake")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--all", action="store_true", help="wake every registered node")
    group.add_argument("--role", choices=[Role.CONTROL.value, Role.WORKER.value])
    group.add_argument("--masters", action="store_const", dest="role", const=Role.CONTROL.value)
    group.add_argument("--workers", action="store_const", dest="role", const=Role.WORKER.value)
    group.add_argument("--list", action="store_true", help="list nodes and their status")
    group.add_argument("--status", metavar="HOST", help="check the status of one node")
    p.add_argument("--verify", action="store_true", help="wait until the node responds")
    p.add_argument("--retries", type=int, help="send attempts per node")
    p.add_argument("--delay", type=float, help="seconds between attempts")
    p.add_argument("--via", metavar="URL", help="use a remote powerctl wake API")

    p = sub.add_parser("autosleep-ctl", help="auto-sleep monitor control")
    p.add_argument("action", choices=["start", "check", "status", "enable", "disable", "reset"])

    p = sub.add_parser("spindown", help="put every registered node to sleep over ssh")
    p.add_argument("--include-control", action="store_true", help="also sleep control nodes, last")

    p = sub.add_parser("serve", help="run the HTTP wake endpoint")
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    return parser


def _print_report(report: SleepReport) -> None:
    for step in report.steps:
        flag = "ok" if step.ok else step.severity.value
        print(f"  {step.step:<14} {flag:<8} {step.message}")
    if report.skipped:
        print("Dry run, nothing done")
    elif not report.ok:
        print(f"Failed: {report.reason.value if report.reason else 'unknown'}")


def cmd_sleep(args, settings: Settings) -> int:
    locks = make_lock_backend(settings)
    install_exit_handlers(locks)
    sequencer = SleepSequencer(settings, locks=locks)
    if args.wakeup:
        report = sequencer.on_wakeup()
        _print_report(report)
        return 0 if report.ok else 1

    options = SleepOptions(force=args.force, check_only=args.check, skip_drain=args.no_drain,
                           skip_hooks=args.no_hooks)
    report = sequencer.execute_sleep(options)
    if args.check:
        print("Safe to sleep" if report.ok else f"Not safe to sleep: {report.steps[-1].message}")
    else:
        _print_report(report)
    return 0 if report.ok else 1


def _wake_via_api(args, settings: Settings) -> int:
    client = WakeApiClient(args.via, settings.wake_api_secret, settings.wake_api_timeout)
    if args.list or args.status:
        resp = client.status()
        if args.status:
            nodes = {n["hostname"]: n["status"] for n in resp.get("nodes", [])}
            print(f"{args.status}: {nodes.get(args.status, 'unknown')}")
        else:
            print(json.dumps(resp, indent=2))
        return 0 if resp.get("ok", True) else 1
    if args.all:
        resp = client.wake_all(verify=args.verify)
        print(json.dumps(resp, indent=2))
        return 0 if resp.get("ok") else 1
    if args.role:
        print("--role is not supported with --via; use --all or name the hosts", file=sys.stderr)
        return 1
    exit_code = 0
    for target in args.targets:
        resp = client.wake(target, verify=args.verify)
        print(json.dumps(resp, indent=2))
        if not resp.get("ok"):
            exit_code = 1
    return exit_code


def cmd_wake(args, settings: Settings) -> int:
    if not (args.targets or args.all or args.role or args.list or args.status):
        print("No nodes specified. Use --all, --masters, --workers, or specify node names.", file=sys.stderr)
        return 1
    if args.via:
        return _wake_via_api(args, settings)

    dispatcher = WakeDispatcher.from_settings(settings)
    if args.list:
        print(f"{'HOSTNAME':<24} {'ROLE':<8} {'IP':<16} {'MAC':<18} STATUS")
        for row in dispatcher.list_status():
            print(f"{row['hostname']:<24} {row['role']:<8} {row['address'] or '-':<16} "
                  f"{row['wake_address'] or '-':<18} {row['status']}")
        return 0
    if args.status:
        print(f"{args.status}: {dispatcher.check_status(args.status)}")
        return 0

    opts = default_options(settings, verify=args.verify, retries=args.retries, retry_delay=args.delay)
    gate = SafetyGate.from_settings(settings)
    named = not (args.all or args.role)
    if named and len(args.targets) == 1:
        if gate.dry_run:
            log.info("[dry-run] would wake %s", args.targets[0])
            print(f"Dry run, would wake {args.targets[0]}")
            return 0
        result = dispatcher.wake(args.targets[0], opts)
        return 0 if result.ok else 1

    if named:
        targets = list(args.targets)
    else:
        targets = dispatcher.select(all_nodes=args.all, role=Role(args.role) if args.role else None)
    if not targets:
        print("No matching nodes in the registry", file=sys.stderr)
        return 1
    gate.preflight("wake batch")
    # naming the hosts on the command line is the confirmation
    decision = gate.evaluate(f"wake {len(targets)} node(s): {', '.join(targets)}", assume_yes=named)
    if not decision.allowed:
        return 0 if decision.reason == Reason.DRY_RUN else 1

    locks = make_lock_backend(settings)
    install_exit_handlers(locks)
    with locks.hold(WAKE_BATCH, settings.lock_timeout):
        summary = dispatcher.wake_batch(targets, opts)
    for r in summary.results:
        print(f"  {r.target:<24} {'ok' if r.ok else r.reason.value}")
    return 0 if summary.ok else 1


def _fmt_ts(ts: Optional[float]) -> str:
    if not ts:
        return "unknown"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


def cmd_autosleep(args, settings: Settings) -> int:
    cluster = KubectlClient(settings.kubectl_path, settings.kubectl_timeout, settings.drain_grace_period)
    repository = PowerStateRepository(make_state_store(settings), settings.hostname)
    collector = SignalCollector(settings, cluster)

    if args.action == "check":
        snapshot = collector.collect()
        if snapshot.active:
            print(f"Activity detected: {', '.join(snapshot.sources())}")
            return 0
        print("No activity detected")
        return 1

    if args.action == "start":
        locks = make_lock_backend(settings)
        notifier = WebhookNotifier(settings.notification_webhook_url, settings.notification_enabled,
                                   settings.notification_timeout)
        sequencer = SleepSequencer(settings, cluster=cluster, notifier=notifier, locks=locks)
        install_exit_handlers(locks)
        service = MonitorService(settings, collector, repository, sequencer, notifier)
        service.install_signal_handlers()
        service.run()
        return 0

    record = repository.load_or_create()
    now = time.time()
    if args.action == "status":
        print(f"Sleep enabled: {str(record.sleep_enabled).lower()}")
        print(f"State: {record.state.value}")
        print(f"Sleep pending: {str(record.state == PowerState.PENDING).lower()}")
        print(f"Last activity: {_fmt_ts(record.last_activity)}")
        print(f"Last check: {_fmt_ts(record.last_check)}")
    elif args.action in ("enable", "disable"):
        enabled = args.action == "enable"
        repository.save(record.model_copy(update={"sleep_enabled": enabled}))
        print(f"Auto-sleep {'enabled' if enabled else 'disabled'}")
    elif args.action == "reset":
        if record.state != PowerState.ACTIVE:
            record = record.transition(PowerState.ACTIVE, now)
        repository.save(record.model_copy(update={"last_activity": now}))
        print("Activity timer reset")
    return 0


def cmd_spindown(args, settings: Settings) -> int:
    locks = make_lock_backend(settings)
    install_exit_handlers(locks)
    spindown = ClusterSpindown(settings, NodeRegistry.load(settings.wol_registry, settings.wol_config_dir),
                               SafetyGate.from_settings(settings), locks)
    result = spindown.run(include_control=args.include_control)
    for node in result["nodes"]:
        print(f"  {node['hostname']:<24} {'ok' if node['ok'] else node.get('error', 'failed')}")
    if result.get("error"):
        print(result["error"], file=sys.stderr)
    return 0 if result["ok"] else 1


def cmd_serve(args, settings: Settings) -> int:
    from powerctl.main import serve

    serve(settings, host=args.host, port=args.port)
    return 0


COMMANDS = {
    "sleep": cmd_sleep,
    "wake": cmd_wake,
    "autosleep-ctl": cmd_autosleep,
    "spindown": cmd_spindown,
    "serve": cmd_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(
            args.config,
            log_level="DEBUG" if args.verbose else None,
            auto_confirm=True if args.yes else None,
            dry_run=True if args.dry_run else None,
        )
    except PowerCtlError as e:
        print(f"powerctl: {e}", file=sys.stderr)
        return 1
    configure_logging(settings)
    try:
        return COMMANDS[args.command](args, settings)
    except PowerCtlError as e:
        log.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
