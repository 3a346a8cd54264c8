# powerctl/config.py
import os
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from powerctl.errors import ConfigurationError

ENV_PATH = Path(os.getenv("POWERCTL_ENV_FILE", ".env"))
DEFAULT_CONFIG_FILE = "/etc/powerctl/powerctl.conf"


class Settings(BaseSettings):
    """
    Process-wide configuration. Built once by the entry point and handed to
    every component; nothing else reads the environment.
    """

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    hostname: str = Field(default_factory=socket.gethostname)

    # logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    # persisted state
    state_dir: str = "/var/lib/powerctl"
    state_backend: str = "file"  # file | sql
    state_db_url: str = "sqlite:////var/lib/powerctl/state.db"

    # idle detection
    inactivity_timeout_minutes: float = 120
    check_interval_minutes: float = 5
    grace_period_minutes: float = 10
    cpu_threshold_percent: float = 10
    cpu_sample_seconds: float = 1.0
    network_interface: str = "eth0"
    network_threshold_bytes: int = 1024
    network_sample_seconds: float = 1.0
    excluded_namespaces: str = "kube-system kube-public kube-node-lease monitoring"
    check_workloads: bool = True
    check_cpu: bool = True
    check_network: bool = True
    check_sessions: bool = True

    # notifications
    notification_enabled: bool = False
    notification_webhook_url: Optional[str] = None
    notification_timeout: float = 10

    # sleep sequence
    hooks_dir: str = "/opt/powerctl/pre-sleep.d"
    hook_timeout: float = 60
    drain_timeout: int = 120
    drain_grace_period: int = 30
    kubectl_path: str = "kubectl"
    kubectl_timeout: float = 30
    prevent_sleep_selector: str = "powerctl.io/prevent-sleep=true"
    suspend_timeout: float = 60

    # wake-on-lan
    wol_registry: str = "/etc/powerctl/wol-registry.conf"
    wol_config_dir: str = "/etc/powerctl/wol"
    wol_broadcast_address: str = "255.255.255.255"
    wol_port: int = 9
    wol_secure_on: Optional[str] = None
    retry_count: int = 3
    retry_delay: float = 10
    verify_poll_interval: float = 5
    ping_timeout: float = 2
    status_probe_timeout: float = 2
    wake_interval: float = 5

    # safety
    safe_mode: bool = Field(False, validation_alias=AliasChoices("safe_mode", "powerctl_safe_mode"))
    dry_run: bool = False
    auto_confirm: bool = Field(False, validation_alias=AliasChoices("auto_confirm", "auto_yes"))
    interactive: bool = True

    # locks
    lock_backend: str = "file"  # file | redis
    lock_dir: str = "/run/lock/powerctl"
    lock_timeout: float = 60
    lock_stale_seconds: float = 3600
    redis_url: str = "redis://127.0.0.1:6379/0"

    # http wake endpoint
    wake_api_secret: Optional[str] = None
    wake_api_host: str = "0.0.0.0"
    wake_api_port: int = 8081
    wake_api_timeout: float = 300

    # cluster spindown over ssh
    ssh_user: str = "root"
    ssh_key_file: Optional[str] = None
    ssh_timeout: float = 10
    ssh_command_timeout: float = 120
    remote_sleep_command: str = "powerctl sleep"

    @property
    def inactivity_timeout(self) -> float:
        return self.inactivity_timeout_minutes * 60

    @property
    def grace_period(self) -> float:
        return self.grace_period_minutes * 60

    @property
    def check_interval(self) -> float:
        return self.check_interval_minutes * 60

    @property
    def excluded_namespace_list(self) -> List[str]:
        return self.excluded_namespaces.replace(",", " ").split()


def read_config_file(path: str) -> Dict[str, str]:
    """
    Parse a flat key=value config file. Lines starting with '#' or '[' are
    skipped, keys are lower-cased and unknown keys dropped.
    """
    values = {}
    try:
        with open(path, encoding="utf-8") as fh:
            for lineno, raw in enumerate(fh, start=1):
                line = raw.strip()
                if not line or line.startswith("#") or line.startswith("["):
                    continue
                if "=" not in line:
                    raise ConfigurationError(f"{path}:{lineno}: expected key=value", context={"line": line})
                key, value = line.split("=", 1)
                key = key.strip().lower()
                if key in Settings.model_fields:
                    values[key] = value.strip().strip('"').strip("'")
    except OSError as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e
    return values


def load_settings(config_file: Optional[str] = None, **overrides: Any) -> Settings:
    """
    Build the immutable settings: defaults < .env < environment < config file < overrides.
    """
    path = config_file or os.getenv("POWERCTL_CONFIG")
    values: Dict[str, Any] = {}
    if path:
        values.update(read_config_file(path))
    elif os.path.exists(DEFAULT_CONFIG_FILE):
        values.update(read_config_file(DEFAULT_CONFIG_FILE))
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)
