from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml


class ConfigError(Exception):
    """Raised when run settings or the run configuration are invalid."""
    pass


_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off", ""}


def _lookup(settings: dict[str, Any], env: dict[str, str], key: str, default: Any) -> tuple[Any, str]:
    """Return ``(value, source name)`` from settings, then ``RALPH_<KEY>``, then default."""
    if key in settings and settings[key] is not None:
        return settings[key], key
    env_key = f"RALPH_{key.upper()}"
    if env_key in env:
        return env[env_key], env_key
    return default, key


def _as_number(value: Any, name: str, cast=int):
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be a number, got {value!r}")


def _as_flag(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    word = str(value).strip().lower()
    if word in _TRUE_WORDS:
        return True
    if word in _FALSE_WORDS:
        return False
    raise ConfigError(f"{name} must be true or false, got {value!r}")


@dataclass(frozen=True)
class RuntimeSettings:
    agent_command: str
    agent_args: tuple[str, ...]
    model: str | None
    work_dir: Path
    agent_timeout: float | None
    max_parallel: int
    verbose: bool

    @classmethod
    def from_sources(cls, settings: dict[str, Any], environ: dict[str, str] | None = None) -> "RuntimeSettings":
        env = os.environ if environ is None else environ

        agent_args, _ = _lookup(settings, env, "agent_args", "")
        if isinstance(agent_args, str):
            agent_args = shlex.split(agent_args)

        timeout = _as_number(*_lookup(settings, env, "agent_timeout", 0), cast=float)
        if timeout < 0:
            raise ConfigError(f"agent_timeout must not be negative, got {timeout}")

        max_parallel = _as_number(*_lookup(settings, env, "max_parallel", 4))
        if max_parallel < 1:
            raise ConfigError(f"max_parallel must be at least 1, got {max_parallel}")

        agent_command, _ = _lookup(settings, env, "agent_command", "claude")
        model, _ = _lookup(settings, env, "model", None)
        work_dir, _ = _lookup(settings, env, "work_dir", os.getcwd())

        return cls(
            agent_command=str(agent_command),
            agent_args=tuple(str(arg) for arg in agent_args),
            model=model or None,
            work_dir=Path(work_dir),
            agent_timeout=timeout or None,
            max_parallel=max_parallel,
            verbose=_as_flag(*_lookup(settings, env, "verbose", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_command": self.agent_command,
            "agent_args": list(self.agent_args),
            "model": self.model,
            "work_dir": str(self.work_dir),
            "agent_timeout": self.agent_timeout,
            "max_parallel": self.max_parallel,
            "verbose": self.verbose,
        }


@dataclass(frozen=True)
class RunConfiguration:
    """Immutable settings for one loop run."""

    prompt: str
    max_iterations: int = 5
    stop_condition: str | None = None
    model: str | None = None
    skip_secondary_pass: bool = False
    continue_on_error: bool = False
    delegate: bool = False

    def __post_init__(self) -> None:
        if (
            isinstance(self.max_iterations, bool)
            or not isinstance(self.max_iterations, int)
            or self.max_iterations < 1
        ):
            raise ConfigError(
                f"max_iterations must be a positive integer, got {self.max_iterations!r}"
            )


def load_settings_file(config_path: Path) -> dict[str, Any]:
    """Load the ``settings:`` block from a YAML config file."""
    if not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open("r", encoding="utf-8") as handle:
            config = yaml.safe_load(handle) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {config_path}: {exc}")

    if not isinstance(config, dict):
        raise ConfigError(f"Expected a mapping at the top of {config_path}")
    settings = config.get("settings", {}) or {}
    if not isinstance(settings, dict):
        raise ConfigError(f"'settings' in {config_path} must be a mapping")
    return settings
