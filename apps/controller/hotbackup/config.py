"""Controller configuration loaded from a YAML file."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError
from .status import RetryPolicy

DEFAULT_CONFIG_PATH = Path("/config/config.yaml")
CONFIG_ENV_VAR = "HOTBACKUP_CONFIG"


@dataclass(frozen=True)
class ControllerConfig:
    namespace: str = ""
    workers: int = 2
    log_level: str = "INFO"
    agent_port: int = 8080
    cluster_rest_port: int = 5701
    poll_interval: float = 5.0
    http_timeout: float = 10.0
    watch_timeout: int = 60
    scheduler_timezone: str = "UTC"
    status_retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ControllerConfig:
        default = cls()
        try:
            return cls(
                namespace=str(data.get("namespace") or ""),
                workers=max(1, int(data.get("workers", default.workers))),
                log_level=str(data.get("logLevel", default.log_level)).upper(),
                agent_port=int(data.get("agentPort", default.agent_port)),
                cluster_rest_port=int(data.get("clusterRestPort", default.cluster_rest_port)),
                poll_interval=float(data.get("pollInterval", default.poll_interval)),
                http_timeout=float(data.get("httpTimeout", default.http_timeout)),
                watch_timeout=int(data.get("watchTimeout", default.watch_timeout)),
                scheduler_timezone=str(data.get("schedulerTimezone", default.scheduler_timezone)),
                status_retry=RetryPolicy.from_dict(data.get("statusRetry")),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid config value: {exc}") from exc


def resolve_config_path(cli_path: str | None) -> tuple[Path, bool]:
    """Resolve the config file path from CLI, env, or default.

    Returns:
        Tuple of (path, explicit) where explicit means the caller asked for
        this file and it must exist
    """
    if cli_path:
        return Path(cli_path), True
    env_path = os.getenv(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def load_config(cli_path: str | None = None) -> ControllerConfig:
    """Load configuration, falling back to defaults when no file is mounted.

    Raises:
        ConfigError: Explicit file missing, unreadable, or not a mapping
    """
    path, explicit = resolve_config_path(cli_path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except FileNotFoundError:
        if explicit:
            raise ConfigError(f"Config file not found: {path}")
        return ControllerConfig()
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Failed to read config {path}: {exc}") from exc

    if data is None:
        return ControllerConfig()
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")
    return ControllerConfig.from_dict(data)
