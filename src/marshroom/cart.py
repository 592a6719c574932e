"""Cart engine -- the in-memory owner of cart items, pinned repos and the completion counter.

All mutation goes through this class and must happen on the owning event
loop. Persisting operations write the shared state file; cache refreshes
do not.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from marshroom.constants import CLAUDE_MD_CACHE_TTL_SECONDS
from marshroom.models import (
	CartItem,
	Issue,
	IssueStatus,
	PullRequestDetail,
	Repo,
	RepoFileCache,
)
from marshroom.state_file import CartEntry, StateDocument, StateFileStore

logger = logging.getLogger(__name__)


def _local_now() -> datetime:
	return datetime.now().astimezone()


def day_string(now: datetime, reset_hour: int = 0) -> str:
	"""Calendar day of ``now`` shifted back by the reset hour."""
	return (now - timedelta(hours=reset_hour)).strftime("%Y-%m-%d")


def _item_from_entry(entry: CartEntry) -> CartItem:
	repo = Repo.stub(entry.repo_full_name, entry.repo_clone_url, entry.repo_ssh_url)
	issue = Issue(
		number=entry.issue_number,
		title=entry.issue_title,
		body=entry.issue_body,
		html_url=f"https://github.com/{entry.repo_full_name}/issues/{entry.issue_number}",
	)
	return CartItem(
		repo=repo,
		issue=issue,
		status=entry.status,
		pr_number=entry.pr_number,
		pr_url=entry.pr_url,
	)


class CartEngine:
	"""Authoritative in-memory model of today's cart."""

	def __init__(
		self,
		store: StateFileStore,
		reset_hour: int = 0,
		clock: Callable[[], datetime] = _local_now,
	) -> None:
		self.store = store
		self.reset_hour = reset_hour
		self._clock = clock
		self._items: dict[str, CartItem] = {}
		self.highlight_repos: list[Repo] = []
		self.today_completions: int = 0
		self.today_completions_date: str | None = None
		self.issues_by_repo: dict[str, list[Issue]] = {}
		self.file_caches: dict[str, RepoFileCache] = {}
		self.banner: str | None = None
		self._batch_depth = 0
		self._dirty = False

	# -- Read access --

	@property
	def items(self) -> list[CartItem]:
		return list(self._items.values())

	def get(self, key: str) -> CartItem | None:
		return self._items.get(key)

	def __contains__(self, key: object) -> bool:
		return key in self._items

	def __len__(self) -> int:
		return len(self._items)

	# -- Completion counter --

	def current_day(self) -> str:
		return day_string(self._clock(), self.reset_hour)

	def reset_completions_if_new_day(self) -> None:
		today = self.current_day()
		if self.today_completions_date != today:
			self.today_completions = 0
			self.today_completions_date = today

	def _adopt_counter(self, document: StateDocument, *, reset_if_stale: bool) -> None:
		today = self.current_day()
		if document.today_completions_date == today:
			self.today_completions = document.today_completions or 0
			self.today_completions_date = today
		elif reset_if_stale:
			self.today_completions = 0
			self.today_completions_date = today

	# -- Persistence --

	@contextmanager
	def batch(self) -> Iterator[None]:
		"""Defer persists inside the block and write at most once on exit.

		If the block is left by an exception (including cancellation) nothing
		is written; the pending change stays dirty for the next write.
		"""
		self._batch_depth += 1
		try:
			yield
		finally:
			self._batch_depth -= 1
		if self._batch_depth == 0 and self._dirty:
			self._write()

	def persist(self) -> None:
		if self._batch_depth > 0:
			self._dirty = True
			return
		self._write()

	def _write(self) -> bool:
		self._dirty = False
		existing = self.store.read()
		document = self.store.build(self.items, self.highlight_repos, existing, self.file_caches)
		document.today_completions = self.today_completions
		document.today_completions_date = self.today_completions_date
		return self.store.write(document)

	# -- Cart mutations --

	def add_item(self, repo: Repo, issue: Issue) -> bool:
		item = CartItem(repo=repo, issue=issue)
		if item.key in self._items:
			return False
		self._items[item.key] = item
		logger.info("Added %s to cart", item.key)
		self.persist()
		return True

	def remove_item(self, key: str) -> bool:
		if self._items.pop(key, None) is None:
			return False
		logger.info("Removed %s from cart", key)
		self.persist()
		return True

	def set_status(self, key: str, status: IssueStatus) -> bool:
		"""Move an item to ``status``. Returns True if the status changed."""
		item = self._items.get(key)
		if item is None:
			return False
		old = item.status
		if old == status:
			return False
		item.status = status
		if status == IssueStatus.COMPLETED:
			self.reset_completions_if_new_day()
			self.today_completions += 1
		logger.info("%s: %s -> %s", key, old.value, status.value)
		self.persist()
		return True

	def reset_pending_item(self, key: str) -> bool:
		"""Send an item back to SOON and drop its PR linkage."""
		item = self._items.get(key)
		if item is None:
			return False
		item.status = IssueStatus.SOON
		item.clear_pr_link()
		logger.info("%s: reset to soon, PR link cleared", key)
		self.persist()
		return True

	def update_pr_cache(
		self,
		key: str,
		pr: PullRequestDetail,
		changes_requested: bool,
	) -> bool:
		# Cache only: never persisted.
		item = self._items.get(key)
		if item is None:
			return False
		item.pr_detail = pr
		item.changes_requested = changes_requested
		return True

	def reset_day(self) -> int:
		"""Zero the counter and drop every completed item. Returns how many were removed."""
		self.today_completions = 0
		self.today_completions_date = self.current_day()
		completed = [key for key, item in self._items.items() if item.status == IssueStatus.COMPLETED]
		for key in completed:
			del self._items[key]
		logger.info("Day reset: removed %d completed item(s)", len(completed))
		self.persist()
		return len(completed)

	# -- Repos --

	def add_repo(self, repo: Repo) -> bool:
		if any(r.full_name == repo.full_name for r in self.highlight_repos):
			return False
		self.highlight_repos.append(repo)
		self.persist()
		return True

	def remove_repo(self, full_name: str) -> bool:
		before = len(self.highlight_repos)
		self.highlight_repos = [r for r in self.highlight_repos if r.full_name != full_name]
		if len(self.highlight_repos) == before:
			return False
		self.issues_by_repo.pop(full_name, None)
		self.file_caches.pop(full_name, None)
		self._items = {k: v for k, v in self._items.items() if v.repo.full_name != full_name}
		self.persist()
		return True

	# -- Issue list cache --

	def set_issues(self, repo: str, issues: list[Issue]) -> None:
		self.issues_by_repo[repo] = [i for i in issues if not i.is_pull_request]

	def update_cached_issue(self, repo: str, issue: Issue) -> bool:
		"""Replace a cached issue in place; issues not already listed are ignored."""
		issues = self.issues_by_repo.get(repo)
		if not issues:
			return False
		for idx, cached in enumerate(issues):
			if cached.number == issue.number:
				issues[idx] = issue
				return True
		return False

	# -- Repo file cache --

	def claude_md_for(self, repo: str) -> str | None:
		cache = self.file_caches.get(repo)
		return cache.content if cache else None

	def is_file_cache_stale(self, repo: str, now: datetime | None = None) -> bool:
		cache = self.file_caches.get(repo)
		if cache is None:
			return True
		age = cache.age_seconds(now)
		return age is None or age > CLAUDE_MD_CACHE_TTL_SECONDS

	def update_file_cache(self, repo: str, content: str | None) -> None:
		# Picked up by the next persist.
		self.file_caches[repo] = RepoFileCache(
			content=content,
			cached_at=datetime.now(timezone.utc).isoformat(),
		)

	# -- State file synchronization --

	def restore(self, document: StateDocument) -> None:
		"""Load cart, repos, file caches and counter at startup without persisting."""
		for entry in document.cart:
			if entry.key not in self._items:
				self._items[entry.key] = _item_from_entry(entry)

		known = {r.full_name for r in self.highlight_repos}
		for repo_entry in document.repos:
			if repo_entry.full_name not in known:
				self.highlight_repos.append(
					Repo.stub(repo_entry.full_name, repo_entry.clone_url, repo_entry.ssh_url),
				)
				known.add(repo_entry.full_name)
			if repo_entry.claude_md_cache is not None or repo_entry.claude_md_cached_at:
				self.file_caches[repo_entry.full_name] = RepoFileCache(
					content=repo_entry.claude_md_cache,
					cached_at=repo_entry.claude_md_cached_at,
				)

		self._adopt_counter(document, reset_if_stale=True)
		logger.info(
			"Restored %d cart item(s), %d repo(s) from state file",
			len(self._items), len(self.highlight_repos),
		)

	def reconcile(self, document: StateDocument) -> bool:
		"""Make the cart match an externally written document.

		The document wins for membership, status and PR linkage: held items
		missing from it are dropped, new entries are added as stubs.
		Returns True if anything changed.
		"""
		entries: dict[str, CartEntry] = {entry.key: entry for entry in document.cart}
		updated: dict[str, CartItem] = {}
		changed = False

		for key, item in self._items.items():
			entry = entries.pop(key, None)
			if entry is None:
				logger.info("%s removed externally", key)
				changed = True
				continue
			if entry.pr_number != item.pr_number:
				item.pr_detail = None
				item.changes_requested = False
			if (item.status, item.pr_number, item.pr_url) != (entry.status, entry.pr_number, entry.pr_url):
				changed = True
			item.status = entry.status
			item.pr_number = entry.pr_number
			item.pr_url = entry.pr_url
			updated[key] = item

		for key, entry in entries.items():
			logger.info("%s added externally", key)
			updated[key] = _item_from_entry(entry)
			changed = True

		self._items = updated
		self._adopt_counter(document, reset_if_stale=False)
		return changed
