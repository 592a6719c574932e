"""GitHub poller -- periodically reconcile cart items against GitHub.

Each cycle detects closed issues, abandoned PRs and review activity, then
refreshes stale repo file caches. Status changes made during a cycle are
persisted once, after every item has been processed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from marshroom.cart import CartEngine
from marshroom.config import clamp_poll_interval
from marshroom.constants import (
	CLAUDE_MD_PATH,
	DEFAULT_POLL_INTERVAL_SECONDS,
	RATE_LIMIT_WARNING_THRESHOLD,
)
from marshroom.github import GitHubAPIError, GitHubClient, NotFoundError, RateLimitExceededError
from marshroom.models import IssueStatus, has_changes_requested

logger = logging.getLogger(__name__)

RATE_LIMIT_PAUSED_MESSAGE = "GitHub API rate limit exceeded. Polling paused."


@dataclass
class PollResult:
	"""Outcome of a single poll cycle."""

	skipped: bool = False
	status_changes: int = 0
	prs_refreshed: int = 0
	caches_refreshed: int = 0
	failures: int = 0


class GitHubPoller:
	"""Background task that runs poll cycles on the engine's event loop."""

	def __init__(
		self,
		engine: CartEngine,
		client: GitHubClient,
		interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
	) -> None:
		self.engine = engine
		self.client = client
		self._interval_seconds = clamp_poll_interval(interval_seconds)
		self._task: asyncio.Task[None] | None = None
		self._last_banner: str | None = None

	@property
	def interval_seconds(self) -> int:
		return self._interval_seconds

	@interval_seconds.setter
	def interval_seconds(self, value: int) -> None:
		self._interval_seconds = clamp_poll_interval(value)

	@property
	def running(self) -> bool:
		return self._task is not None and not self._task.done()

	def start(self) -> None:
		if self.running:
			return
		self._task = asyncio.get_running_loop().create_task(self._poll_loop())
		logger.info("Poller started (every %ds)", self._interval_seconds)

	async def stop(self) -> None:
		"""Cancel the loop and wait for it to unwind. Safe to call when not running."""
		task = self._task
		if task is None:
			return
		self._task = None
		task.cancel()
		await asyncio.wait({task})
		logger.info("Poller stopped")

	async def _poll_loop(self) -> None:
		while True:
			try:
				await self.poll_once()
			except asyncio.CancelledError:
				raise
			except Exception as exc:
				logger.error("Poll cycle failed: %s", exc, exc_info=True)
			await asyncio.sleep(self._interval_seconds)

	def _set_banner(self, message: str | None) -> None:
		if message is None:
			# Only clear banners this poller put up.
			if self.engine.banner is not None and self.engine.banner == self._last_banner:
				self.engine.banner = None
			self._last_banner = None
			return
		self.engine.banner = message
		self._last_banner = message

	def _check_quota(self) -> bool:
		remaining = self.client.rate_limit_remaining
		if remaining <= 0:
			logger.warning("Rate limit exhausted, skipping poll cycle")
			self._set_banner(RATE_LIMIT_PAUSED_MESSAGE)
			return False
		if remaining < RATE_LIMIT_WARNING_THRESHOLD:
			logger.warning("GitHub rate limit low: %d requests remaining", remaining)
			self._set_banner(f"GitHub API quota low: {remaining} requests remaining.")
		else:
			self._set_banner(None)
		return True

	async def poll_once(self) -> PollResult:
		"""Run one poll cycle."""
		result = PollResult()
		if not self._check_quota():
			result.skipped = True
			return result

		with self.engine.batch():
			try:
				await self._refresh_items(result)
			except RateLimitExceededError as exc:
				result.failures += 1
				logger.warning("Rate limit hit mid-cycle: %s", exc)
				self._set_banner(RATE_LIMIT_PAUSED_MESSAGE)
				# Returning (not raising) lets the batch write the items already
				# settled this pass. Each was decided from a complete response;
				# a cancelled pass raises instead and writes nothing.
				return result
			await self._refresh_file_caches(result)

		if result.status_changes:
			logger.info("Poll cycle: %d status change(s)", result.status_changes)
		return result

	async def _refresh_items(self, result: PollResult) -> None:
		for item in self.engine.items:
			key = item.key
			repo = item.repo.full_name
			if key not in self.engine:
				# Dropped by a reconciliation while an earlier fetch was awaited.
				continue

			try:
				issue = await self.client.get_issue(repo, item.issue.number)
			except RateLimitExceededError:
				raise
			except GitHubAPIError as exc:
				result.failures += 1
				logger.warning("Failed to fetch issue %s: %s", key, exc)
				continue

			if issue.state == "closed":
				if self.engine.set_status(key, IssueStatus.COMPLETED):
					result.status_changes += 1
				continue

			self.engine.update_cached_issue(repo, issue)

			current = self.engine.get(key)
			if current is None or current.status != IssueStatus.PENDING or current.pr_number is None:
				continue

			try:
				pr = await self.client.get_pull_request(repo, current.pr_number)
				if pr.closed_without_merge:
					logger.info("%s: PR #%d closed without merge", key, current.pr_number)
					if self.engine.reset_pending_item(key):
						result.status_changes += 1
					continue
				reviews = await self.client.get_pull_request_reviews(repo, current.pr_number)
			except RateLimitExceededError:
				raise
			except GitHubAPIError as exc:
				result.failures += 1
				logger.warning("Failed to fetch PR #%d for %s: %s", current.pr_number, key, exc)
				continue

			if self.engine.update_pr_cache(key, pr, has_changes_requested(reviews)):
				result.prs_refreshed += 1

	async def _refresh_file_caches(self, result: PollResult) -> None:
		for repo in list(self.engine.highlight_repos):
			if not self.engine.is_file_cache_stale(repo.full_name):
				continue
			try:
				content: str | None = await self.client.fetch_file_content(repo.full_name, CLAUDE_MD_PATH)
			except NotFoundError:
				content = None
			except GitHubAPIError as exc:
				result.failures += 1
				logger.warning("Failed to refresh %s for %s: %s", CLAUDE_MD_PATH, repo.full_name, exc)
				continue
			self.engine.update_file_cache(repo.full_name, content)
			result.caches_refreshed += 1
