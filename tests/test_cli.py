"""Command line entry point."""

import pytest

from powerctl import cli
from powerctl.models import ActivitySnapshot, Reason, Severity, StepResult
from powerctl.sleep.sequencer import SleepSequencer
from powerctl.wake.packet import UdpPacketSender
from powerctl.wake.reachability import PingProber

from conftest import REGISTRY_TEXT


@pytest.fixture
def config_file(tmp_path):
    (tmp_path / "wol-registry.conf").write_text(REGISTRY_TEXT)
    path = tmp_path / "powerctl.conf"
    path.write_text(
        "# test config\n"
        "[powerctl]\n"
        "hostname=node-a\n"
        f"state_dir={tmp_path / 'state'}\n"
        f"lock_dir={tmp_path / 'locks'}\n"
        f"hooks_dir={tmp_path / 'hooks'}\n"
        f"wol_registry={tmp_path / 'wol-registry.conf'}\n"
        f"wol_config_dir={tmp_path / 'wol'}\n"
        "wake_interval=0\n"
        "interactive=false\n"
        "kubectl_path=/nonexistent/kubectl\n"
    )
    return str(path)


@pytest.fixture
def sent(monkeypatch):
    macs = []

    def fake_send(self, mac):
        macs.append(mac)
        return True

    monkeypatch.setattr(UdpPacketSender, "__call__", fake_send)
    monkeypatch.setattr(PingProber, "__call__", lambda self, address, timeout: address == "10.0.0.10")
    return macs


def run(config_file, *argv):
    return cli.main(["-c", config_file, *argv])


class TestAutosleepCtl:
    def test_disable_then_status(self, config_file, capsys):
        assert run(config_file, "autosleep-ctl", "disable") == 0
        assert run(config_file, "autosleep-ctl", "status") == 0
        out = capsys.readouterr().out
        assert "Auto-sleep disabled" in out
        assert "Sleep enabled: false" in out

    def test_reset(self, config_file, capsys):
        assert run(config_file, "autosleep-ctl", "reset") == 0
        assert "Activity timer reset" in capsys.readouterr().out

    @pytest.mark.parametrize("snapshot,code", [(ActivitySnapshot(cpu=True), 0), (ActivitySnapshot(), 1)])
    def test_check_exit_code(self, config_file, monkeypatch, snapshot, code):
        monkeypatch.setattr(cli.SignalCollector, "collect", lambda self: snapshot)
        assert run(config_file, "autosleep-ctl", "check") == code


class TestWake:
    def test_no_targets_is_an_error(self, config_file):
        assert run(config_file, "wake") == 1

    def test_list(self, config_file, sent, capsys):
        assert run(config_file, "wake", "--list") == 0
        out = capsys.readouterr().out
        assert "masternode" in out
        assert "awake" in out
        assert sent == []

    def test_status(self, config_file, sent, capsys):
        assert run(config_file, "wake", "--status", "worker-1") == 0
        assert "worker-1: sleeping" in capsys.readouterr().out

    def test_single_target(self, config_file, sent):
        assert run(config_file, "wake", "worker-2") == 0
        assert sent == ["AA:BB:CC:DD:EE:02"]

    def test_unknown_target_fails(self, config_file, sent):
        assert run(config_file, "wake", "ghost") == 1
        assert sent == []

    def test_named_targets_wake_as_a_batch(self, config_file, sent):
        assert run(config_file, "wake", "worker-2", "masternode") == 0
        assert sent == ["AA:BB:CC:DD:EE:00", "AA:BB:CC:DD:EE:02"]

    def test_named_targets_dry_run_sends_nothing(self, config_file, sent):
        assert run(config_file, "--dry-run", "wake", "worker-1", "worker-2") == 0
        assert sent == []

    def test_single_target_dry_run_sends_nothing(self, config_file, sent, capsys):
        assert run(config_file, "--dry-run", "wake", "worker-1") == 0
        assert sent == []
        assert "would wake worker-1" in capsys.readouterr().out

    def test_safe_mode_blocks_named_batch(self, config_file, sent, monkeypatch):
        monkeypatch.setenv("POWERCTL_SAFE_MODE", "1")
        assert run(config_file, "wake", "worker-1", "worker-2") == 1
        assert sent == []

    def test_all_requires_confirmation_when_non_interactive(self, config_file, sent):
        assert run(config_file, "wake", "--all") == 1
        assert sent == []

    def test_all_dry_run_sends_nothing(self, config_file, sent):
        assert run(config_file, "--dry-run", "wake", "--all") == 0
        assert sent == []

    def test_all_with_yes_wakes_control_first(self, config_file, sent):
        assert run(config_file, "--yes", "wake", "--all") == 0
        assert sent == ["AA:BB:CC:DD:EE:00", "AA:BB:CC:DD:EE:03", "AA:BB:CC:DD:EE:01", "AA:BB:CC:DD:EE:02"]

    def test_masters_alias(self, config_file, sent):
        assert run(config_file, "--yes", "wake", "--masters") == 0
        assert sent == ["AA:BB:CC:DD:EE:00", "AA:BB:CC:DD:EE:03"]


class TestSleep:
    def test_check_safe(self, config_file, monkeypatch, capsys):
        monkeypatch.setattr(SleepSequencer, "check_safe", lambda self: StepResult(step="safety"))
        assert run(config_file, "sleep", "--check") == 0
        assert "Safe to sleep" in capsys.readouterr().out

    def test_check_unsafe(self, config_file, monkeypatch, capsys):
        unsafe = StepResult(step="safety", ok=False, severity=Severity.FATAL, reason=Reason.UNSAFE_TO_SLEEP,
                            message="1 active remote session(s)")
        monkeypatch.setattr(SleepSequencer, "check_safe", lambda self: unsafe)
        assert run(config_file, "sleep", "--check") == 1
        assert "remote session" in capsys.readouterr().out


def test_bad_config_file_exits_1(tmp_path):
    bad = tmp_path / "bad.conf"
    bad.write_text("no equals sign here\n")
    assert cli.main(["-c", str(bad), "autosleep-ctl", "status"]) == 1
