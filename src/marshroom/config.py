"""Configuration loading -- TOML settings file plus environment overrides."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from marshroom.constants import (
	CONFIG_DIR_NAME,
	CONFIG_FILE_NAME,
	DEFAULT_POLL_INTERVAL_SECONDS,
	FALLBACK_WATCH_INTERVAL_SECONDS,
	MAX_POLL_INTERVAL_SECONDS,
	MIN_POLL_INTERVAL_SECONDS,
	SELF_WRITE_DEBOUNCE_SECONDS,
	STATE_ENV_VAR,
	STATE_FILE_NAME,
)

logger = logging.getLogger(__name__)


def config_dir() -> Path:
	"""Return ~/.config/marshroom (honoring XDG_CONFIG_HOME)."""
	base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
	return Path(base).expanduser() / CONFIG_DIR_NAME


def default_config_path() -> Path:
	return config_dir() / CONFIG_FILE_NAME


def default_state_path() -> Path:
	return Path.home() / ".config" / CONFIG_DIR_NAME / STATE_FILE_NAME


def clamp_poll_interval(seconds: int) -> int:
	return max(MIN_POLL_INTERVAL_SECONDS, min(MAX_POLL_INTERVAL_SECONDS, int(seconds)))


def clamp_reset_hour(hour: int) -> int:
	return max(0, min(23, int(hour)))


@dataclass
class PollingConfig:
	"""GitHub polling settings."""

	interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS

	def __post_init__(self) -> None:
		self.interval_seconds = clamp_poll_interval(self.interval_seconds)


@dataclass
class CompletionsConfig:
	"""Daily completion counter settings."""

	reset_hour: int = 0

	def __post_init__(self) -> None:
		self.reset_hour = clamp_reset_hour(self.reset_hour)


@dataclass
class StateConfig:
	"""Shared state file settings."""

	path: str = ""
	watch_debounce_seconds: float = SELF_WRITE_DEBOUNCE_SECONDS
	fallback_poll_seconds: float = FALLBACK_WATCH_INTERVAL_SECONDS


@dataclass
class ReposConfig:
	"""Repos to highlight before the state file lists any."""

	pinned: list[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
	level: str = "INFO"


@dataclass
class MarshroomConfig:
	"""Top-level settings."""

	polling: PollingConfig = field(default_factory=PollingConfig)
	completions: CompletionsConfig = field(default_factory=CompletionsConfig)
	state: StateConfig = field(default_factory=StateConfig)
	repos: ReposConfig = field(default_factory=ReposConfig)
	logging: LoggingConfig = field(default_factory=LoggingConfig)

	@property
	def state_path(self) -> Path:
		return resolve_state_path(self.state.path)

	@property
	def state_is_remote(self) -> bool:
		return is_remote_path(self.state_path)


def resolve_state_path(custom_path: str = "") -> Path:
	"""Resolve the state file location.

	Priority: MARSHROOM_STATE env var, then the configured custom path,
	then ~/.config/marshroom/state.json.
	"""
	env_path = os.environ.get(STATE_ENV_VAR, "")
	if env_path:
		return Path(env_path).expanduser()
	if custom_path:
		return Path(custom_path).expanduser()
	return default_state_path()


def is_remote_path(path: Path) -> bool:
	"""True when the path lives outside $HOME (e.g. an NFS mount).

	Native change notifications are unreliable there.
	"""
	home = Path.home().resolve()
	try:
		path.expanduser().resolve().relative_to(home)
	except ValueError:
		return True
	return False


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
	value = data.get(name, {})
	if not isinstance(value, dict):
		logger.warning("Ignoring config section [%s]: expected a table", name)
		return {}
	return value


def _build_config(data: dict[str, Any]) -> MarshroomConfig:
	polling = _section(data, "polling")
	completions = _section(data, "completions")
	state = _section(data, "state")
	repos = _section(data, "repos")
	log = _section(data, "logging")

	return MarshroomConfig(
		polling=PollingConfig(
			interval_seconds=polling.get("interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS),
		),
		completions=CompletionsConfig(reset_hour=completions.get("reset_hour", 0)),
		state=StateConfig(
			path=str(state.get("path", "")),
			watch_debounce_seconds=float(
				state.get("watch_debounce_seconds", SELF_WRITE_DEBOUNCE_SECONDS),
			),
			fallback_poll_seconds=float(
				state.get("fallback_poll_seconds", FALLBACK_WATCH_INTERVAL_SECONDS),
			),
		),
		repos=ReposConfig(pinned=[str(name) for name in repos.get("pinned", [])]),
		logging=LoggingConfig(level=str(log.get("level", "INFO")).upper()),
	)


def load_config(path: str | Path | None = None) -> MarshroomConfig:
	"""Load settings from a TOML file.

	An explicitly named file must exist. When no path is given the default
	location is used and a missing file yields defaults.
	"""
	if path is None:
		default = default_config_path()
		if not default.exists():
			return MarshroomConfig()
		path = default

	config_path = Path(path).expanduser()
	if not config_path.exists():
		raise FileNotFoundError(f"Config file not found: {config_path}")

	with open(config_path, "rb") as f:
		data = tomllib.load(f)
	return _build_config(data)
