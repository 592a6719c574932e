"""State file watcher -- reconcile the cart when another process rewrites the file.

Watches the containing directory rather than the file, since an atomic
replace swaps the inode under any handle held on the file itself. Native
notifications come from watchdog on its own thread and are marshaled onto
the owning event loop. Paths outside $HOME fall back to polling the file's
mtime and content hash.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from marshroom.constants import FALLBACK_WATCH_INTERVAL_SECONDS, SELF_WRITE_DEBOUNCE_SECONDS
from marshroom.state_file import StateDocument, StateFileStore

logger = logging.getLogger(__name__)

_RELEVANT_EVENTS = frozenset({"created", "modified", "moved"})


class _StateDirHandler(FileSystemEventHandler):
	"""Forwards events that touch the state file name."""

	def __init__(self, file_name: str, notify: Callable[[], None]) -> None:
		super().__init__()
		self._file_name = file_name
		self._notify = notify

	def on_any_event(self, event: FileSystemEvent) -> None:
		if event.event_type not in _RELEVANT_EVENTS or event.is_directory:
			return
		paths = [event.src_path, getattr(event, "dest_path", "")]
		if any(p and os.path.basename(os.fsdecode(p)) == self._file_name for p in paths):
			self._notify()


class StateFileWatcher:
	"""Calls ``on_change`` with the fresh document after each external write."""

	def __init__(
		self,
		store: StateFileStore,
		on_change: Callable[[StateDocument], object],
		*,
		use_polling: bool = False,
		debounce_seconds: float = SELF_WRITE_DEBOUNCE_SECONDS,
		poll_interval: float = FALLBACK_WATCH_INTERVAL_SECONDS,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.store = store
		self.on_change = on_change
		self.use_polling = use_polling
		self.debounce_seconds = debounce_seconds
		self.poll_interval = poll_interval
		self._clock = clock
		self._loop: asyncio.AbstractEventLoop | None = None
		self._observer: Observer | None = None
		self._poll_task: asyncio.Task[None] | None = None

	@property
	def running(self) -> bool:
		return self._observer is not None or self._poll_task is not None

	@property
	def mode(self) -> str:
		if self._observer is not None:
			return "native"
		if self._poll_task is not None:
			return "polling"
		return "stopped"

	def start(self) -> None:
		"""Begin watching. Must be called from the owning event loop."""
		if self.running:
			return
		self._loop = asyncio.get_running_loop()
		if not self.use_polling:
			try:
				self._start_native()
				logger.info("Watching %s for external changes", self.store.directory)
				return
			except OSError as exc:
				logger.warning("Native watch unavailable for %s (%s), polling instead", self.store.directory, exc)
		self._poll_task = self._loop.create_task(self._poll_loop())
		logger.info("Polling %s every %.1fs for external changes", self.store.path, self.poll_interval)

	async def stop(self) -> None:
		"""Stop watching and wait for the observer thread or poll task to finish."""
		observer, task = self._observer, self._poll_task
		self._observer = None
		self._poll_task = None
		self._loop = None
		if observer is not None:
			observer.stop()
			await asyncio.to_thread(observer.join, 5)
		if task is not None:
			task.cancel()
			await asyncio.wait({task})

	def _start_native(self) -> None:
		self.store.directory.mkdir(parents=True, exist_ok=True)
		observer = Observer()
		handler = _StateDirHandler(self.store.path.name, self._notify_threadsafe)
		observer.schedule(handler, str(self.store.directory), recursive=False)
		observer.start()
		self._observer = observer

	def _notify_threadsafe(self) -> None:
		loop = self._loop
		if loop is None or loop.is_closed():
			return
		try:
			loop.call_soon_threadsafe(self.handle_change)
		except RuntimeError:
			# Loop shut down between the check and the call.
			pass

	def handle_change(self) -> bool:
		"""Reconcile from disk unless the change is our own recent write.

		Returns True if ``on_change`` was invoked.
		"""
		since_write = self._clock() - self.store.last_write_at
		if since_write < self.debounce_seconds:
			logger.debug("Ignoring state change %.2fs after self-write", since_write)
			return False
		document = self.store.read()
		if document is None:
			return False
		self.on_change(document)
		return True

	def _fingerprint(self) -> tuple[int, str] | None:
		path: Path = self.store.path
		try:
			mtime = path.stat().st_mtime_ns
			digest = hashlib.sha256(path.read_bytes()).hexdigest()
		except OSError:
			return None
		return mtime, digest

	async def _poll_loop(self) -> None:
		baseline = self._fingerprint()
		seen_write_at = self.store.last_write_at
		while True:
			await asyncio.sleep(self.poll_interval)
			current = self._fingerprint()
			if self.store.last_write_at != seen_write_at:
				# Our own write landed since the last tick.
				seen_write_at = self.store.last_write_at
				baseline = current
				continue
			if current != baseline:
				baseline = current
				try:
					self.handle_change()
				except Exception as exc:
					logger.error("State reconciliation failed: %s", exc, exc_info=True)
