"""Application wiring -- owns the engine and starts/stops the poller and watcher."""

from __future__ import annotations

import asyncio
import logging
import signal

from marshroom.cart import CartEngine
from marshroom.config import MarshroomConfig
from marshroom.github import GitHubClient
from marshroom.models import Repo
from marshroom.poller import GitHubPoller
from marshroom.state_file import StateFileStore
from marshroom.watcher import StateFileWatcher

logger = logging.getLogger(__name__)


class MarshroomApp:
	"""Single owner of the cart engine.

	Everything that mutates the engine (poller task, watcher callbacks, CLI
	commands) runs on the event loop that called ``startup``.
	"""

	def __init__(
		self,
		config: MarshroomConfig,
		client: GitHubClient | None = None,
		store: StateFileStore | None = None,
	) -> None:
		self.config = config
		self.store = store or StateFileStore(config.state_path)
		self.engine = CartEngine(self.store, reset_hour=config.completions.reset_hour)
		self.client = client
		self.poller: GitHubPoller | None = None
		if client is not None:
			self.poller = GitHubPoller(self.engine, client, config.polling.interval_seconds)
		self.watcher = StateFileWatcher(
			self.store,
			self.engine.reconcile,
			use_polling=config.state_is_remote,
			debounce_seconds=config.state.watch_debounce_seconds,
			poll_interval=config.state.fallback_poll_seconds,
		)

	def restore(self) -> None:
		"""Load the engine from the state file and configured pinned repos."""
		document = self.store.read()
		if document is not None:
			self.engine.restore(document)
		else:
			self.engine.reset_completions_if_new_day()
		known = {r.full_name for r in self.engine.highlight_repos}
		for name in self.config.repos.pinned:
			if name not in known:
				self.engine.highlight_repos.append(Repo.stub(name))
				known.add(name)

	async def startup(self) -> None:
		self.restore()
		if self.poller is not None:
			self.poller.start()
		else:
			logger.warning("No GitHub token configured; remote polling disabled")
		self.watcher.start()

	async def shutdown(self) -> None:
		"""Stop watcher and poller, waiting for both, before closing the client.

		A poll pass interrupted here is discarded rather than written.
		"""
		await self.watcher.stop()
		if self.poller is not None:
			await self.poller.stop()
		if self.client is not None:
			await self.client.close()
		logger.info("Shut down")

	async def run(self, stop_event: asyncio.Event | None = None) -> None:
		"""Run until SIGINT/SIGTERM (or ``stop_event`` is set)."""
		stop = stop_event or asyncio.Event()
		loop = asyncio.get_running_loop()
		installed: list[signal.Signals] = []
		for sig in (signal.SIGINT, signal.SIGTERM):
			try:
				loop.add_signal_handler(sig, stop.set)
			except (NotImplementedError, RuntimeError):
				continue
			installed.append(sig)

		await self.startup()
		try:
			await stop.wait()
		finally:
			await self.shutdown()
			for sig in installed:
				loop.remove_signal_handler(sig)
