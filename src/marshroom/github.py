"""Async GitHub REST client with rate-limit bookkeeping."""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from marshroom.constants import GITHUB_API_BASE_URL, GITHUB_API_VERSION, HTTP_TIMEOUT_SECONDS
from marshroom.models import Issue, PullRequestDetail, Repo, Review

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 5000


class GitHubAPIError(Exception):
	"""A failed GitHub request. status_code is 0 for transport failures."""

	def __init__(self, status_code: int, message: str) -> None:
		super().__init__(f"GitHub API error ({status_code}): {message}")
		self.status_code = status_code
		self.message = message


class NotFoundError(GitHubAPIError):
	pass


class RateLimitExceededError(GitHubAPIError):
	pass


class GitHubClient:
	"""Thin wrapper over the GitHub REST endpoints the app needs.

	Tracks X-RateLimit-Remaining / X-RateLimit-Reset from every response.
	"""

	def __init__(
		self,
		token: str,
		base_url: str = GITHUB_API_BASE_URL,
		client: httpx.AsyncClient | None = None,
	) -> None:
		self._token = token
		self._base_url = base_url.rstrip("/")
		self._client = client
		self._owns_client = client is None
		self.rate_limit_remaining: int = DEFAULT_RATE_LIMIT
		self.rate_limit_reset: datetime | None = None

	def update_token(self, token: str) -> None:
		self._token = token

	async def _ensure_client(self) -> httpx.AsyncClient:
		if self._client is None:
			self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
		return self._client

	async def close(self) -> None:
		if self._client is not None and self._owns_client:
			await self._client.aclose()
		self._client = None

	async def __aenter__(self) -> GitHubClient:
		return self

	async def __aexit__(self, *exc: object) -> None:
		await self.close()

	def _record_rate_limit(self, response: httpx.Response) -> None:
		remaining = response.headers.get("X-RateLimit-Remaining")
		if remaining is not None:
			try:
				self.rate_limit_remaining = int(remaining)
			except ValueError:
				pass
		reset = response.headers.get("X-RateLimit-Reset")
		if reset is not None:
			try:
				self.rate_limit_reset = datetime.fromtimestamp(int(reset), tz=timezone.utc)
			except (ValueError, OverflowError, OSError):
				pass

	async def _request(
		self,
		method: str,
		endpoint: str,
		*,
		params: dict[str, Any] | None = None,
		json_body: dict[str, Any] | None = None,
	) -> Any:
		client = await self._ensure_client()
		headers = {
			"Authorization": f"Bearer {self._token}",
			"Accept": "application/vnd.github+json",
			"X-GitHub-Api-Version": GITHUB_API_VERSION,
		}
		try:
			response = await client.request(
				method,
				f"{self._base_url}{endpoint}",
				params=params,
				json=json_body,
				headers=headers,
			)
		except httpx.HTTPError as exc:
			raise GitHubAPIError(0, str(exc)) from exc

		self._record_rate_limit(response)

		if response.status_code == 404:
			raise NotFoundError(404, response.text or "Not Found")
		if response.status_code in (403, 429) and self.rate_limit_remaining == 0:
			raise RateLimitExceededError(response.status_code, "GitHub API rate limit exceeded")
		if not response.is_success:
			raise GitHubAPIError(response.status_code, response.text or response.reason_phrase)

		try:
			return response.json()
		except ValueError as exc:
			raise GitHubAPIError(response.status_code, f"Invalid JSON response: {exc}") from exc

	# -- User --

	async def validate_token(self) -> str:
		"""Return the authenticated user's login."""
		data = await self._request("GET", "/user")
		return data.get("login", "")

	# -- Repositories --

	async def get_repo(self, repo: str) -> Repo:
		data = await self._request("GET", f"/repos/{repo}")
		return Repo.from_api(data)

	async def search_repos(self, query: str, per_page: int = 20) -> list[Repo]:
		data = await self._request(
			"GET", "/search/repositories", params={"q": query, "per_page": per_page},
		)
		return [Repo.from_api(item) for item in data.get("items", [])]

	# -- Issues --

	async def fetch_issues(self, repo: str, state: str = "open", page: int = 1) -> list[Issue]:
		data = await self._request(
			"GET", f"/repos/{repo}/issues",
			params={"state": state, "per_page": 30, "page": page},
		)
		return [Issue.from_api(item) for item in data]

	async def get_issue(self, repo: str, number: int) -> Issue:
		data = await self._request("GET", f"/repos/{repo}/issues/{number}")
		return Issue.from_api(data)

	async def create_issue(self, repo: str, title: str, body: str | None = None) -> Issue:
		payload: dict[str, Any] = {"title": title}
		if body is not None:
			payload["body"] = body
		data = await self._request("POST", f"/repos/{repo}/issues", json_body=payload)
		return Issue.from_api(data)

	async def assign_issue(self, repo: str, number: int, assignees: list[str]) -> Issue:
		data = await self._request(
			"POST", f"/repos/{repo}/issues/{number}/assignees",
			json_body={"assignees": assignees},
		)
		return Issue.from_api(data)

	# -- Pull requests --

	async def get_pull_request(self, repo: str, number: int) -> PullRequestDetail:
		data = await self._request("GET", f"/repos/{repo}/pulls/{number}")
		return PullRequestDetail.from_api(data)

	async def get_pull_request_reviews(self, repo: str, number: int) -> list[Review]:
		data = await self._request("GET", f"/repos/{repo}/pulls/{number}/reviews")
		return [Review.from_api(item) for item in data]

	# -- Contents --

	async def fetch_file_content(self, repo: str, path: str) -> str:
		"""Return a file's text. Raises NotFoundError if the file does not exist."""
		data = await self._request("GET", f"/repos/{repo}/contents/{quote(path)}")
		encoding = data.get("encoding", "")
		if encoding != "base64":
			raise GitHubAPIError(0, f"Unexpected encoding: {encoding}")
		cleaned = (data.get("content") or "").replace("\n", "")
		try:
			return base64.b64decode(cleaned).decode("utf-8")
		except (binascii.Error, UnicodeDecodeError) as exc:
			raise GitHubAPIError(0, "Failed to decode base64 content") from exc
