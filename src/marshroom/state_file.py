"""Shared state file -- the JSON document exchanged with the external CLI.

The document is jointly owned by this process and the CLI. Reads tolerate
any older schema by defaulting absent fields; writes always emit the
current schema and replace the file atomically.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import (
	BaseModel,
	ConfigDict,
	Field,
	ValidationError,
	ValidationInfo,
	field_validator,
	model_validator,
)

from marshroom.constants import STATE_SCHEMA_VERSION
from marshroom.models import CartItem, IssueStatus, Repo, RepoFileCache, branch_name_for, cart_key

logger = logging.getLogger(__name__)


class _Entry(BaseModel):
	model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RepoEntry(_Entry):
	"""A pinned repo plus repo-level caches the app does not track itself."""

	full_name: str = Field(alias="fullName")
	clone_url: str = Field(default="", alias="cloneURL")
	ssh_url: str = Field(default="", alias="sshURL")
	claude_md_cache: str | None = Field(default=None, alias="claudeMdCache")
	claude_md_cached_at: str | None = Field(default=None, alias="claudeMdCachedAt")
	local_path: str | None = Field(default=None, alias="localPath")

	@field_validator("clone_url", "ssh_url", mode="before")
	@classmethod
	def _lenient_text(cls, value: Any) -> str:
		if value is None:
			return ""
		return value if isinstance(value, str) else str(value)

	@field_validator("claude_md_cache", "claude_md_cached_at", "local_path", mode="before")
	@classmethod
	def _optional_text(cls, value: Any) -> str | None:
		return value if isinstance(value, str) else None


class CartEntry(_Entry):
	"""Denormalized snapshot of one cart item."""

	repo_full_name: str = Field(alias="repoFullName")
	repo_clone_url: str = Field(default="", alias="repoCloneURL")
	repo_ssh_url: str = Field(default="", alias="repoSSHURL")
	issue_number: int = Field(alias="issueNumber")
	issue_title: str = Field(default="", alias="issueTitle")
	branch_name: str = Field(default="", alias="branchName")
	status: IssueStatus = IssueStatus.SOON
	issue_body: str | None = Field(default=None, alias="issueBody")
	pr_number: int | None = Field(default=None, alias="prNumber")
	pr_url: str | None = Field(default=None, alias="prURL")

	@field_validator("repo_clone_url", "repo_ssh_url", "issue_title", "branch_name", mode="before")
	@classmethod
	def _lenient_text(cls, value: Any) -> str:
		# Only the identity fields may reject an entry.
		if value is None:
			return ""
		return value if isinstance(value, str) else str(value)

	@field_validator("issue_body", "pr_url", mode="before")
	@classmethod
	def _optional_text(cls, value: Any) -> str | None:
		return value if isinstance(value, str) else None

	@field_validator("pr_number", mode="before")
	@classmethod
	def _lenient_pr_number(cls, value: Any) -> int | None:
		if value is None or isinstance(value, bool):
			return None
		try:
			return int(value)
		except (TypeError, ValueError):
			return None

	@field_validator("status", mode="before")
	@classmethod
	def _lenient_status(cls, value: Any) -> IssueStatus:
		return IssueStatus.parse(value)

	@model_validator(mode="after")
	def _fill_branch_name(self) -> CartEntry:
		if not self.branch_name:
			self.branch_name = branch_name_for(self.issue_title, self.issue_number)
		return self

	@property
	def key(self) -> str:
		return cart_key(self.repo_full_name, self.issue_number)


class StateDocument(_Entry):
	"""The versioned document persisted at the state file path."""

	version: int = 1
	updated_at: str = Field(default="", alias="updatedAt")
	repos: list[RepoEntry] = Field(default_factory=list)
	cart: list[CartEntry] = Field(default_factory=list)
	today_completions: int | None = Field(default=None, alias="todayCompletions")
	today_completions_date: str | None = Field(default=None, alias="todayCompletionsDate")

	@field_validator("repos", "cart", mode="before")
	@classmethod
	def _drop_unusable_entries(cls, value: Any, info: ValidationInfo) -> list[Any]:
		# Entries without an identity cannot be defaulted; skip them instead of
		# rejecting the whole document.
		if not isinstance(value, list):
			return []
		model = RepoEntry if info.field_name == "repos" else CartEntry
		kept: list[Any] = []
		for raw in value:
			try:
				kept.append(model.model_validate(raw))
			except ValidationError as exc:
				logger.warning("Skipping malformed %s entry: %s", info.field_name, exc.errors()[0]["msg"])
		return kept

	def repo_entry(self, full_name: str) -> RepoEntry | None:
		for entry in self.repos:
			if entry.full_name == full_name:
				return entry
		return None


def decode_document(raw: str | bytes) -> StateDocument:
	"""Parse JSON text into a StateDocument.

	Raises ValueError (json.JSONDecodeError or pydantic.ValidationError) on
	malformed input.
	"""
	data = json.loads(raw)
	if not isinstance(data, dict):
		raise ValueError("State document must be a JSON object")
	return StateDocument.model_validate(data)


def encode_document(document: StateDocument) -> str:
	payload = document.model_dump(mode="json", by_alias=True)
	return json.dumps(payload, indent=2, sort_keys=True) + "\n"


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


class StateFileStore:
	"""Atomic read/write of the shared state document.

	Records the monotonic time of its own last write so the file watcher can
	tell self-writes apart from external ones.
	"""

	def __init__(self, path: Path) -> None:
		self.path = Path(path)
		self.last_write_at: float = float("-inf")

	@property
	def directory(self) -> Path:
		return self.path.parent

	def read(self) -> StateDocument | None:
		"""Return the current document, or None if missing or unparseable."""
		try:
			raw = self.path.read_bytes()
		except FileNotFoundError:
			return None
		except OSError as exc:
			logger.warning("Could not read state file %s: %s", self.path, exc)
			return None

		try:
			return decode_document(raw)
		except (ValueError, ValidationError) as exc:
			logger.warning("Ignoring unparseable state file %s: %s", self.path, exc)
			return None

	def write(self, document: StateDocument) -> bool:
		"""Stamp and atomically write the document. Returns False on failure."""
		self.last_write_at = time.monotonic()
		stamped = document.model_copy(update={
			"version": STATE_SCHEMA_VERSION,
			"updated_at": _now_iso(),
		})
		try:
			self.directory.mkdir(parents=True, exist_ok=True)
			fd, tmp_name = tempfile.mkstemp(
				dir=self.directory, prefix=f".{self.path.name}.", suffix=".tmp",
			)
			try:
				with os.fdopen(fd, "w", encoding="utf-8") as f:
					f.write(encode_document(stamped))
					f.flush()
					os.fsync(f.fileno())
				os.replace(tmp_name, self.path)
			except BaseException:
				Path(tmp_name).unlink(missing_ok=True)
				raise
		except OSError as exc:
			logger.warning("Failed to write state file %s: %s", self.path, exc)
			return False
		return True

	@staticmethod
	def build(
		cart: list[CartItem],
		repos: list[Repo],
		existing: StateDocument | None = None,
		file_caches: dict[str, RepoFileCache] | None = None,
	) -> StateDocument:
		"""Build the next document from the in-memory model.

		Repo-level fields the model does not track (file cache, cache time,
		local checkout path) are carried over from ``existing`` by full name.
		Entries in ``file_caches`` override the carried-over cache fields.
		"""
		file_caches = file_caches or {}
		repo_entries: list[RepoEntry] = []
		for repo in repos:
			previous = existing.repo_entry(repo.full_name) if existing else None
			cache = file_caches.get(repo.full_name)
			repo_entries.append(RepoEntry(
				full_name=repo.full_name,
				clone_url=repo.clone_url,
				ssh_url=repo.ssh_url,
				claude_md_cache=cache.content if cache else (previous.claude_md_cache if previous else None),
				claude_md_cached_at=cache.cached_at if cache else (previous.claude_md_cached_at if previous else None),
				local_path=previous.local_path if previous else None,
			))

		cart_entries = [
			CartEntry(
				repo_full_name=item.repo.full_name,
				repo_clone_url=item.repo.clone_url,
				repo_ssh_url=item.repo.ssh_url,
				issue_number=item.issue.number,
				issue_title=item.issue.title,
				branch_name=item.branch_name,
				status=item.status,
				issue_body=item.issue.body,
				pr_number=item.pr_number,
				pr_url=item.pr_url,
			)
			for item in cart
		]

		return StateDocument(
			version=STATE_SCHEMA_VERSION,
			updated_at=_now_iso(),
			repos=repo_entries,
			cart=cart_entries,
		)
