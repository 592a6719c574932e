"""Tests for application wiring and lifecycle."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from marshroom.app import MarshroomApp
from marshroom.config import MarshroomConfig, ReposConfig, StateConfig
from marshroom.models import Issue


@pytest.fixture()
def config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> MarshroomConfig:
	monkeypatch.setenv("HOME", str(tmp_path))
	monkeypatch.delenv("MARSHROOM_STATE", raising=False)
	return MarshroomConfig(
		state=StateConfig(path=str(tmp_path / "cfg" / "state.json")),
		repos=ReposConfig(pinned=["acme/app", "acme/web"]),
	)


def _mock_client() -> MagicMock:
	client = MagicMock()
	client.rate_limit_remaining = 5000
	client.close = AsyncMock()
	return client


class TestRestore:
	def test_loads_state_and_merges_pinned(self, config: MarshroomConfig) -> None:
		config.state_path.parent.mkdir(parents=True)
		config.state_path.write_text(json.dumps({
			"version": 3,
			"repos": [{"fullName": "acme/app", "cloneURL": "https://github.com/acme/app.git"}],
			"cart": [{"repoFullName": "acme/app", "issueNumber": 3, "issueTitle": "Add export", "status": "running"}],
		}))
		app = MarshroomApp(config)
		app.restore()
		assert [r.full_name for r in app.engine.highlight_repos] == ["acme/app", "acme/web"]
		assert app.engine.get("acme/app#3").status.value == "running"
		assert app.engine.highlight_repos[0].clone_url == "https://github.com/acme/app.git"

	def test_no_state_file_starts_fresh(self, config: MarshroomConfig) -> None:
		app = MarshroomApp(config)
		app.restore()
		assert len(app.engine) == 0
		assert app.engine.today_completions == 0
		assert app.engine.today_completions_date == app.engine.current_day()
		assert not config.state_path.exists()

	def test_no_poller_without_client(self, config: MarshroomConfig) -> None:
		assert MarshroomApp(config).poller is None
		app = MarshroomApp(config, client=_mock_client())
		assert app.poller is not None
		assert app.poller.interval_seconds == config.polling.interval_seconds


class TestLifecycle:
	@pytest.mark.asyncio
	async def test_startup_shutdown_without_client(self, config: MarshroomConfig) -> None:
		app = MarshroomApp(config)
		await app.startup()
		assert app.watcher.running
		await app.shutdown()
		assert not app.watcher.running

	@pytest.mark.asyncio
	async def test_startup_starts_poller_and_shutdown_closes_client(self, config: MarshroomConfig) -> None:
		client = _mock_client()
		app = MarshroomApp(config, client=client)
		app.poller.poll_once = AsyncMock()
		await app.startup()
		await asyncio.sleep(0)
		assert app.poller.running
		app.poller.poll_once.assert_awaited_once()
		await app.shutdown()
		assert not app.poller.running
		client.close.assert_awaited_once()

	@pytest.mark.asyncio
	async def test_remote_state_uses_polling_watcher(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
		monkeypatch.setenv("HOME", str(tmp_path / "home"))
		monkeypatch.delenv("MARSHROOM_STATE", raising=False)
		config = MarshroomConfig(state=StateConfig(path=str(tmp_path / "nfs" / "state.json")))
		app = MarshroomApp(config)
		await app.startup()
		try:
			assert app.watcher.mode == "polling"
		finally:
			await app.shutdown()

	@pytest.mark.asyncio
	async def test_run_returns_when_stop_event_set(self, config: MarshroomConfig) -> None:
		app = MarshroomApp(config)
		stop = asyncio.Event()
		stop.set()
		await asyncio.wait_for(app.run(stop), timeout=5)
		assert not app.watcher.running

	@pytest.mark.asyncio
	async def test_external_edit_reconciled_while_running(self, config: MarshroomConfig) -> None:
		app = MarshroomApp(config)
		app.watcher.use_polling = True
		app.watcher.poll_interval = 0.02
		await app.startup()
		try:
			await asyncio.sleep(0.05)
			config.state_path.parent.mkdir(parents=True, exist_ok=True)
			config.state_path.write_text(json.dumps({
				"cart": [{"repoFullName": "acme/web", "issueNumber": 8, "status": "pending", "prNumber": 21}],
			}))
			for _ in range(100):
				if "acme/web#8" in app.engine:
					break
				await asyncio.sleep(0.02)
		finally:
			await app.shutdown()
		assert app.engine.get("acme/web#8").pr_number == 21

	@pytest.mark.asyncio
	async def test_shutdown_mid_cycle_stops_everything_before_close(self, config: MarshroomConfig) -> None:
		config.state_path.parent.mkdir(parents=True)
		config.state_path.write_text(json.dumps({"cart": [
			{"repoFullName": "acme/app", "issueNumber": 1, "issueTitle": "Add export"},
			{"repoFullName": "acme/app", "issueNumber": 2, "issueTitle": "Add import"},
		]}))
		second_fetch = asyncio.Event()

		async def get_issue(repo: str, number: int) -> Issue:
			if number == 1:
				return Issue(number=1, title="Add export", state="closed")
			second_fetch.set()
			await asyncio.Event().wait()
			return Issue(number=number)

		client = _mock_client()
		client.get_issue = AsyncMock(side_effect=get_issue)
		app = MarshroomApp(config, client=client)
		events: list[object] = []
		real_write = app.store.write

		def tracking_write(document):
			events.append("write")
			return real_write(document)

		async def close() -> None:
			events.append(("close", app.watcher.running, app.poller.running))

		app.store.write = tracking_write
		client.close.side_effect = close

		await app.startup()
		await asyncio.wait_for(second_fetch.wait(), timeout=5)
		before = config.state_path.read_text()
		await app.shutdown()
		await asyncio.sleep(0.05)

		assert events == [("close", False, False)]
		assert config.state_path.read_text() == before
