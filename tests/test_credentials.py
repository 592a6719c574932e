"""Tests for credential storage."""

from __future__ import annotations

import json
import stat
from pathlib import Path

import pytest

from marshroom.credentials import (
	ANTHROPIC,
	GITHUB,
	credentials_path,
	delete_credential,
	load_credential,
	save_credential,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
	for var in ("MARSHROOM_GITHUB_TOKEN", "GITHUB_TOKEN", "MARSHROOM_ANTHROPIC_KEY", "ANTHROPIC_API_KEY"):
		monkeypatch.delenv(var, raising=False)


@pytest.fixture()
def creds(tmp_path: Path) -> Path:
	return tmp_path / "cfg" / "credentials.json"


class TestCredentials:
	def test_missing_file(self, creds: Path) -> None:
		assert load_credential(GITHUB, creds) is None

	def test_save_and_load(self, creds: Path) -> None:
		save_credential(GITHUB, "ghp_abc", creds)
		save_credential(ANTHROPIC, "sk-ant", creds)
		assert load_credential(GITHUB, creds) == "ghp_abc"
		assert load_credential(ANTHROPIC, creds) == "sk-ant"
		assert json.loads(creds.read_text()) == {"github": "ghp_abc", "anthropic": "sk-ant"}

	def test_file_is_user_only(self, creds: Path) -> None:
		save_credential(GITHUB, "ghp_abc", creds)
		assert stat.S_IMODE(creds.stat().st_mode) == 0o600

	def test_env_takes_precedence(self, creds: Path, monkeypatch: pytest.MonkeyPatch) -> None:
		save_credential(GITHUB, "from-file", creds)
		monkeypatch.setenv("GITHUB_TOKEN", "from-env")
		assert load_credential(GITHUB, creds) == "from-env"
		monkeypatch.setenv("MARSHROOM_GITHUB_TOKEN", "from-marshroom-env")
		assert load_credential(GITHUB, creds) == "from-marshroom-env"

	def test_blank_env_ignored(self, creds: Path, monkeypatch: pytest.MonkeyPatch) -> None:
		save_credential(ANTHROPIC, "sk-ant", creds)
		monkeypatch.setenv("ANTHROPIC_API_KEY", "   ")
		assert load_credential(ANTHROPIC, creds) == "sk-ant"

	def test_delete(self, creds: Path) -> None:
		save_credential(GITHUB, "ghp_abc", creds)
		save_credential(ANTHROPIC, "sk-ant", creds)
		delete_credential(GITHUB, creds)
		assert load_credential(GITHUB, creds) is None
		assert load_credential(ANTHROPIC, creds) == "sk-ant"
		delete_credential(GITHUB, creds)

	def test_corrupt_file_treated_as_empty(self, creds: Path) -> None:
		creds.parent.mkdir(parents=True)
		creds.write_text("not json")
		assert load_credential(GITHUB, creds) is None

	def test_unknown_kind(self, creds: Path) -> None:
		with pytest.raises(ValueError, match="Unknown credential kind"):
			load_credential("gitlab", creds)
		with pytest.raises(ValueError):
			save_credential("gitlab", "x", creds)

	def test_default_location(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
		monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
		assert credentials_path() == tmp_path / "marshroom" / "credentials.json"
