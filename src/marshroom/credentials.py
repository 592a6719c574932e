"""Credential lookup for the GitHub token and the Anthropic API key.

Environment variables take precedence; otherwise secrets live in a
user-only JSON file next to the config.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from marshroom.config import config_dir
from marshroom.constants import CREDENTIALS_FILE_NAME

logger = logging.getLogger(__name__)

GITHUB = "github"
ANTHROPIC = "anthropic"

_ENV_VARS: dict[str, tuple[str, ...]] = {
	GITHUB: ("MARSHROOM_GITHUB_TOKEN", "GITHUB_TOKEN"),
	ANTHROPIC: ("MARSHROOM_ANTHROPIC_KEY", "ANTHROPIC_API_KEY"),
}


class CredentialError(Exception):
	"""Saving or deleting a credential failed."""


def credentials_path() -> Path:
	return config_dir() / CREDENTIALS_FILE_NAME


def _check_kind(kind: str) -> None:
	if kind not in _ENV_VARS:
		raise ValueError(f"Unknown credential kind: {kind!r}")


def _read_file(path: Path) -> dict[str, str]:
	try:
		data = json.loads(path.read_text(encoding="utf-8"))
	except FileNotFoundError:
		return {}
	except (OSError, ValueError) as exc:
		logger.warning("Could not read credentials file %s: %s", path, exc)
		return {}
	if not isinstance(data, dict):
		return {}
	return {k: v for k, v in data.items() if isinstance(v, str)}


def _write_file(path: Path, data: dict[str, str]) -> None:
	path.parent.mkdir(parents=True, exist_ok=True)
	fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
	with os.fdopen(fd, "w", encoding="utf-8") as f:
		json.dump(data, f, indent=2)
	os.chmod(path, 0o600)


def load_credential(kind: str, path: Path | None = None) -> str | None:
	"""Return the secret for ``kind``, or None if none is configured."""
	_check_kind(kind)
	for var in _ENV_VARS[kind]:
		value = os.environ.get(var, "").strip()
		if value:
			return value
	secret = _read_file(path or credentials_path()).get(kind, "").strip()
	return secret or None


def save_credential(kind: str, secret: str, path: Path | None = None) -> None:
	_check_kind(kind)
	target = path or credentials_path()
	data = _read_file(target)
	data[kind] = secret
	try:
		_write_file(target, data)
	except OSError as exc:
		raise CredentialError(f"Failed to save {kind} credential: {exc}") from exc


def delete_credential(kind: str, path: Path | None = None) -> None:
	_check_kind(kind)
	target = path or credentials_path()
	data = _read_file(target)
	if data.pop(kind, None) is None:
		return
	try:
		_write_file(target, data)
	except OSError as exc:
		raise CredentialError(f"Failed to delete {kind} credential: {exc}") from exc
