"""Issue title generation via the Anthropic Messages API."""

from __future__ import annotations

import logging

import httpx

from marshroom.constants import (
	ANTHROPIC_API_BASE_URL,
	ANTHROPIC_API_VERSION,
	HTTP_TIMEOUT_SECONDS,
	TITLE_MODEL,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
	"You are a GitHub issue title generator. Given raw developer thoughts and optional "
	"project context (CLAUDE.md), generate a concise, simple, and clear issue title. "
	"Title should be short as possible. Output ONLY the title, nothing else."
)


class AnthropicError(Exception):
	pass


class AnthropicClient:
	"""Turns free-form notes into a short issue title."""

	def __init__(
		self,
		api_key: str,
		base_url: str = ANTHROPIC_API_BASE_URL,
		client: httpx.AsyncClient | None = None,
	) -> None:
		self._api_key = api_key
		self._base_url = base_url.rstrip("/")
		self._client = client
		self._owns_client = client is None

	async def _ensure_client(self) -> httpx.AsyncClient:
		if self._client is None:
			self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
		return self._client

	async def close(self) -> None:
		if self._client is not None and self._owns_client:
			await self._client.aclose()
		self._client = None

	async def _post_messages(self, body: dict[str, object]) -> dict[str, object]:
		client = await self._ensure_client()
		try:
			resp = await client.post(
				f"{self._base_url}/v1/messages",
				json=body,
				headers={
					"x-api-key": self._api_key,
					"anthropic-version": ANTHROPIC_API_VERSION,
					"content-type": "application/json",
				},
			)
		except httpx.HTTPError as exc:
			raise AnthropicError(f"Anthropic request failed: {exc}") from exc
		if not resp.is_success:
			raise AnthropicError(f"Anthropic API error ({resp.status_code}): {resp.text}")
		try:
			return resp.json()
		except ValueError as exc:
			raise AnthropicError("Invalid response from Anthropic") from exc

	async def generate_title(self, raw_input: str, repo_name: str, claude_md: str | None = None) -> str:
		user_content = f"Repository: {repo_name}\n\nRaw input:\n{raw_input}"
		if claude_md:
			user_content += f"\n\nProject context (CLAUDE.md):\n{claude_md}"

		data = await self._post_messages({
			"model": TITLE_MODEL,
			"max_tokens": 100,
			"system": SYSTEM_PROMPT,
			"messages": [{"role": "user", "content": user_content}],
		})
		content = data.get("content")
		if not isinstance(content, list) or not content:
			raise AnthropicError("Invalid response from Anthropic")
		text = content[0].get("text") if isinstance(content[0], dict) else None
		if not isinstance(text, str):
			raise AnthropicError("Invalid response from Anthropic")
		return text.strip()

	async def test_connection(self) -> bool:
		try:
			await self._post_messages({
				"model": TITLE_MODEL,
				"max_tokens": 10,
				"messages": [{"role": "user", "content": "Hi"}],
			})
		except AnthropicError as exc:
			logger.warning("Anthropic connection test failed: %s", exc)
			return False
		return True
