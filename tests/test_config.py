"""Settings loading and precedence."""

import pytest
from pydantic import ValidationError

from powerctl.config import Settings, load_settings, read_config_file
from powerctl.errors import ConfigurationError


def test_defaults():
    s = Settings(hostname="n")
    assert s.inactivity_timeout == 120 * 60
    assert s.check_interval == 5 * 60
    assert s.grace_period == 10 * 60
    assert s.retry_count == 3
    assert s.wol_port == 9
    assert s.excluded_namespace_list == ["kube-system", "kube-public", "kube-node-lease", "monitoring"]


def test_settings_are_immutable():
    s = Settings(hostname="n")
    with pytest.raises(ValidationError):
        s.dry_run = True


def test_config_file_parsing(tmp_path):
    path = tmp_path / "powerctl.conf"
    path.write_text('# comment\n[section]\nINACTIVITY_TIMEOUT_MINUTES=30\nnetwork_interface = "enp3s0"\nbogus=1\n')
    assert read_config_file(str(path)) == {"inactivity_timeout_minutes": "30", "network_interface": "enp3s0"}


def test_missing_config_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        read_config_file(str(tmp_path / "missing.conf"))


def test_precedence_env_then_file_then_flags(tmp_path, monkeypatch):
    path = tmp_path / "powerctl.conf"
    path.write_text("retry_count=5\nwake_interval=2\n")
    monkeypatch.setenv("RETRY_COUNT", "7")
    monkeypatch.setenv("RETRY_DELAY", "4")

    s = load_settings(str(path), wake_interval=9, dry_run=None)
    assert s.retry_delay == 4      # environment
    assert s.retry_count == 5      # file beats environment
    assert s.wake_interval == 9    # flags beat file
    assert s.dry_run is False


def test_safe_mode_env_alias(monkeypatch):
    monkeypatch.setenv("POWERCTL_SAFE_MODE", "1")
    assert Settings(hostname="n").safe_mode is True
