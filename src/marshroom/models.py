"""Data models for the daily issue cart."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from marshroom.constants import FEATURE_BRANCH_PREFIX, HOTFIX_BRANCH_PREFIX, HOTFIX_KEYWORDS


def _now_iso() -> str:
	return datetime.now(timezone.utc).isoformat()


def branch_name_for(title: str, number: int) -> str:
	"""Derive the working branch for an issue from its title."""
	lowered = title.lower()
	if any(keyword in lowered for keyword in HOTFIX_KEYWORDS):
		return f"{HOTFIX_BRANCH_PREFIX}/#{number}"
	return f"{FEATURE_BRANCH_PREFIX}/#{number}"


def cart_key(repo_full_name: str, issue_number: int) -> str:
	return f"{repo_full_name}#{issue_number}"


class IssueStatus(str, Enum):
	"""Lifecycle of a cart item: soon -> running -> pending -> completed."""

	SOON = "soon"
	RUNNING = "running"
	PENDING = "pending"
	COMPLETED = "completed"

	@classmethod
	def parse(cls, value: Any) -> IssueStatus:
		"""Parse a raw status, falling back to SOON for anything unrecognized."""
		if isinstance(value, cls):
			return value
		try:
			return cls(str(value).lower())
		except ValueError:
			return cls.SOON


class PendingSubStatus(str, Enum):
	"""View-only refinement of PENDING, derived from cached PR data."""

	JUST_CREATED = "justCreated"
	AI_REVIEW_COMPLETED = "aiReviewCompleted"
	REVIEWER_ASSIGNED = "reviewerAssigned"
	CHANGES_REQUESTED = "changesRequested"

	@property
	def order(self) -> int:
		"""Display priority, 1 = highest."""
		return _SUB_STATUS_ORDER[self]

	@property
	def display_name(self) -> str:
		return _SUB_STATUS_LABELS[self]


_SUB_STATUS_ORDER: dict[PendingSubStatus, int] = {
	PendingSubStatus.CHANGES_REQUESTED: 1,
	PendingSubStatus.REVIEWER_ASSIGNED: 2,
	PendingSubStatus.AI_REVIEW_COMPLETED: 3,
	PendingSubStatus.JUST_CREATED: 4,
}

_SUB_STATUS_LABELS: dict[PendingSubStatus, str] = {
	PendingSubStatus.JUST_CREATED: "PR Just Created",
	PendingSubStatus.AI_REVIEW_COMPLETED: "AI Review Completed",
	PendingSubStatus.REVIEWER_ASSIGNED: "Reviewer Assigned",
	PendingSubStatus.CHANGES_REQUESTED: "Changes Requested",
}


@dataclass
class Repo:
	"""A GitHub repository reference."""

	full_name: str = ""
	clone_url: str = ""
	ssh_url: str = ""
	html_url: str = ""
	description: str | None = None
	private: bool = False

	@property
	def name(self) -> str:
		return self.full_name.rsplit("/", 1)[-1]

	@property
	def owner(self) -> str:
		return self.full_name.split("/", 1)[0] if "/" in self.full_name else ""

	@classmethod
	def from_api(cls, data: dict[str, Any]) -> Repo:
		return cls(
			full_name=data.get("full_name", ""),
			clone_url=data.get("clone_url", ""),
			ssh_url=data.get("ssh_url", ""),
			html_url=data.get("html_url", ""),
			description=data.get("description"),
			private=bool(data.get("private", False)),
		)

	@classmethod
	def stub(cls, full_name: str, clone_url: str = "", ssh_url: str = "") -> Repo:
		"""Build a repo from the denormalized fields kept in the state file."""
		return cls(
			full_name=full_name,
			clone_url=clone_url,
			ssh_url=ssh_url,
			html_url=f"https://github.com/{full_name}",
		)


@dataclass
class Issue:
	"""A GitHub issue snapshot."""

	number: int = 0
	title: str = ""
	body: str | None = None
	state: str = "open"
	html_url: str = ""
	labels: list[str] = field(default_factory=list)
	assignees: list[str] = field(default_factory=list)
	author: str = ""
	created_at: str = ""
	updated_at: str = ""
	is_pull_request: bool = False

	@property
	def branch_name(self) -> str:
		return branch_name_for(self.title, self.number)

	def is_assigned_to(self, login: str) -> bool:
		return login in self.assignees

	@classmethod
	def from_api(cls, data: dict[str, Any]) -> Issue:
		return cls(
			number=int(data.get("number", 0)),
			title=data.get("title", "") or "",
			body=data.get("body"),
			state=data.get("state", "open") or "open",
			html_url=data.get("html_url", ""),
			labels=[label.get("name", "") for label in data.get("labels") or []],
			assignees=[user.get("login", "") for user in data.get("assignees") or []],
			author=(data.get("user") or {}).get("login", ""),
			created_at=data.get("created_at", "") or "",
			updated_at=data.get("updated_at", "") or "",
			is_pull_request=data.get("pull_request") is not None,
		)


@dataclass
class PullRequestDetail:
	"""Cached PR fields used to derive the pending sub-status."""

	state: str = "open"
	merged_at: str | None = None
	comments: int = 0
	review_comments: int = 0
	requested_reviewers: list[str] = field(default_factory=list)
	requested_teams: list[str] = field(default_factory=list)

	@property
	def closed_without_merge(self) -> bool:
		return self.state == "closed" and self.merged_at is None

	@classmethod
	def from_api(cls, data: dict[str, Any]) -> PullRequestDetail:
		return cls(
			state=data.get("state", "open") or "open",
			merged_at=data.get("merged_at"),
			comments=int(data.get("comments") or 0),
			review_comments=int(data.get("review_comments") or 0),
			requested_reviewers=[r.get("login", "") for r in data.get("requested_reviewers") or []],
			requested_teams=[t.get("name", "") for t in data.get("requested_teams") or []],
		)


@dataclass
class Review:
	"""A submitted PR review."""

	id: int = 0
	author: str = ""
	author_type: str = "User"  # User/Bot
	state: str = ""  # APPROVED/CHANGES_REQUESTED/COMMENTED
	submitted_at: str | None = None

	@property
	def is_bot(self) -> bool:
		return self.author_type == "Bot"

	@classmethod
	def from_api(cls, data: dict[str, Any]) -> Review:
		user = data.get("user") or {}
		return cls(
			id=int(data.get("id", 0)),
			author=user.get("login", ""),
			author_type=user.get("type", "User"),
			state=data.get("state", ""),
			submitted_at=data.get("submitted_at"),
		)


def has_changes_requested(reviews: list[Review]) -> bool:
	"""True iff a non-bot reviewer submitted a "changes requested" review."""
	return any(r.state == "CHANGES_REQUESTED" and not r.is_bot for r in reviews)


def derive_pending_sub_status(
	pr: PullRequestDetail | None,
	changes_requested: bool = False,
) -> PendingSubStatus:
	"""Pick the highest-priority sub-status that applies to a cached PR."""
	if changes_requested:
		return PendingSubStatus.CHANGES_REQUESTED
	if pr is None:
		return PendingSubStatus.JUST_CREATED
	if pr.requested_reviewers or pr.requested_teams:
		return PendingSubStatus.REVIEWER_ASSIGNED
	if pr.comments > 0 or pr.review_comments > 0:
		return PendingSubStatus.AI_REVIEW_COMPLETED
	return PendingSubStatus.JUST_CREATED


@dataclass
class CartItem:
	"""One issue selected for same-day work."""

	repo: Repo
	issue: Issue
	status: IssueStatus = IssueStatus.SOON
	pr_number: int | None = None
	pr_url: str | None = None
	pr_detail: PullRequestDetail | None = None
	changes_requested: bool = False
	added_at: str = field(default_factory=_now_iso)

	@property
	def key(self) -> str:
		return cart_key(self.repo.full_name, self.issue.number)

	@property
	def branch_name(self) -> str:
		return self.issue.branch_name

	@property
	def pending_sub_status(self) -> PendingSubStatus | None:
		"""Recomputed on every read; None unless the item is pending."""
		if self.status != IssueStatus.PENDING:
			return None
		return derive_pending_sub_status(self.pr_detail, self.changes_requested)

	def clear_pr_link(self) -> None:
		self.pr_number = None
		self.pr_url = None
		self.pr_detail = None
		self.changes_requested = False


@dataclass
class RepoFileCache:
	"""Cached content of a repo file (CLAUDE.md) used as title-generation context."""

	content: str | None = None
	cached_at: str | None = None

	def age_seconds(self, now: datetime | None = None) -> float | None:
		if not self.cached_at:
			return None
		try:
			fetched = datetime.fromisoformat(self.cached_at.replace("Z", "+00:00"))
		except ValueError:
			return None
		if fetched.tzinfo is None:
			fetched = fetched.replace(tzinfo=timezone.utc)
		now = now or datetime.now(timezone.utc)
		return (now - fetched).total_seconds()
