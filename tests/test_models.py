"""Tests for cart data models and derived values."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from marshroom.models import (
	CartItem,
	Issue,
	IssueStatus,
	PendingSubStatus,
	PullRequestDetail,
	Repo,
	RepoFileCache,
	Review,
	branch_name_for,
	derive_pending_sub_status,
	has_changes_requested,
)


class TestBranchName:
	def test_fix_title_is_hotfix(self) -> None:
		assert branch_name_for("Fix crash on launch", 9) == "HotFix/#9"

	def test_plain_title_is_feature(self) -> None:
		assert branch_name_for("Add CSV export", 9) == "Feature/#9"

	def test_bug_keyword_case_insensitive(self) -> None:
		assert branch_name_for("BUG: login fails on empty password", 7) == "HotFix/#7"

	def test_hotfix_keyword(self) -> None:
		assert branch_name_for("HotFix production timeout", 3) == "HotFix/#3"

	def test_keyword_inside_word_matches(self) -> None:
		# Substring match: "prefix" contains "fix".
		assert branch_name_for("Add prefix option", 5) == "HotFix/#5"

	def test_issue_property(self) -> None:
		issue = Issue(number=42, title="Add dark mode support")
		assert issue.branch_name == "Feature/#42"


class TestIssueStatus:
	def test_parse_known(self) -> None:
		assert IssueStatus.parse("running") is IssueStatus.RUNNING
		assert IssueStatus.parse("PENDING") is IssueStatus.PENDING

	def test_parse_unknown_defaults_to_soon(self) -> None:
		assert IssueStatus.parse("archived") is IssueStatus.SOON
		assert IssueStatus.parse(None) is IssueStatus.SOON

	def test_parse_passthrough(self) -> None:
		assert IssueStatus.parse(IssueStatus.COMPLETED) is IssueStatus.COMPLETED


class TestPendingSubStatus:
	def test_changes_requested_beats_comments(self) -> None:
		pr = PullRequestDetail(comments=2, review_comments=0)
		reviews = [Review(id=1, author="alice", author_type="User", state="CHANGES_REQUESTED")]
		status = derive_pending_sub_status(pr, has_changes_requested(reviews))
		assert status is PendingSubStatus.CHANGES_REQUESTED

	def test_reviewer_assigned_beats_comments(self) -> None:
		pr = PullRequestDetail(comments=3, requested_reviewers=["bob"])
		assert derive_pending_sub_status(pr) is PendingSubStatus.REVIEWER_ASSIGNED

	def test_requested_team_counts_as_reviewer(self) -> None:
		pr = PullRequestDetail(requested_teams=["core"])
		assert derive_pending_sub_status(pr) is PendingSubStatus.REVIEWER_ASSIGNED

	def test_review_comments_mean_ai_review(self) -> None:
		pr = PullRequestDetail(review_comments=1)
		assert derive_pending_sub_status(pr) is PendingSubStatus.AI_REVIEW_COMPLETED

	def test_default_just_created(self) -> None:
		assert derive_pending_sub_status(PullRequestDetail()) is PendingSubStatus.JUST_CREATED
		assert derive_pending_sub_status(None) is PendingSubStatus.JUST_CREATED

	def test_bot_changes_requested_ignored(self) -> None:
		reviews = [Review(id=1, author="ci[bot]", author_type="Bot", state="CHANGES_REQUESTED")]
		assert has_changes_requested(reviews) is False

	def test_order(self) -> None:
		ordered = sorted(PendingSubStatus, key=lambda s: s.order)
		assert ordered[0] is PendingSubStatus.CHANGES_REQUESTED
		assert ordered[-1] is PendingSubStatus.JUST_CREATED


class TestCartItem:
	def _item(self, **kwargs: object) -> CartItem:
		return CartItem(repo=Repo.stub("acme/app"), issue=Issue(number=4, title="Add export"), **kwargs)

	def test_key(self) -> None:
		assert self._item().key == "acme/app#4"

	def test_sub_status_only_when_pending(self) -> None:
		item = self._item(status=IssueStatus.RUNNING, pr_detail=PullRequestDetail(comments=1))
		assert item.pending_sub_status is None
		item.status = IssueStatus.PENDING
		assert item.pending_sub_status is PendingSubStatus.AI_REVIEW_COMPLETED

	def test_sub_status_recomputed_on_read(self) -> None:
		item = self._item(status=IssueStatus.PENDING)
		assert item.pending_sub_status is PendingSubStatus.JUST_CREATED
		item.changes_requested = True
		assert item.pending_sub_status is PendingSubStatus.CHANGES_REQUESTED

	def test_clear_pr_link(self) -> None:
		item = self._item(pr_number=10, pr_url="u", pr_detail=PullRequestDetail(), changes_requested=True)
		item.clear_pr_link()
		assert item.pr_number is None
		assert item.pr_url is None
		assert item.pr_detail is None
		assert item.changes_requested is False


class TestFromApi:
	def test_issue_from_api(self) -> None:
		issue = Issue.from_api({
			"number": 12,
			"title": "Fix flaky test",
			"body": None,
			"state": "closed",
			"html_url": "https://github.com/acme/app/issues/12",
			"labels": [{"name": "bug"}],
			"assignees": [{"login": "me"}],
			"user": {"login": "author"},
			"pull_request": {"url": "x"},
		})
		assert issue.state == "closed"
		assert issue.labels == ["bug"]
		assert issue.is_assigned_to("me")
		assert not issue.is_assigned_to("other")
		assert issue.is_pull_request

	def test_pr_closed_without_merge(self) -> None:
		pr = PullRequestDetail.from_api({"state": "closed", "merged_at": None, "comments": 0, "review_comments": 0})
		assert pr.closed_without_merge
		merged = PullRequestDetail.from_api({"state": "closed", "merged_at": "2026-01-01T00:00:00Z"})
		assert not merged.closed_without_merge

	def test_pr_reviewers(self) -> None:
		pr = PullRequestDetail.from_api({
			"state": "open",
			"requested_reviewers": [{"login": "bob"}],
			"requested_teams": [{"name": "core"}],
		})
		assert pr.requested_reviewers == ["bob"]
		assert pr.requested_teams == ["core"]

	def test_review_from_api(self) -> None:
		review = Review.from_api({"id": 3, "user": {"login": "x", "type": "Bot"}, "state": "COMMENTED"})
		assert review.is_bot
		assert review.state == "COMMENTED"


class TestRepoFileCache:
	def test_age(self) -> None:
		now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
		cache = RepoFileCache(content="x", cached_at=(now - timedelta(minutes=5)).isoformat())
		assert cache.age_seconds(now) == 300

	def test_zulu_timestamp(self) -> None:
		now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
		cache = RepoFileCache(content="x", cached_at="2026-01-01T11:00:00Z")
		assert cache.age_seconds(now) == 3600

	def test_missing_or_bad_timestamp(self) -> None:
		assert RepoFileCache().age_seconds() is None
		assert RepoFileCache(cached_at="yesterday").age_seconds() is None
