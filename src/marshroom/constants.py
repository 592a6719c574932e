"""Centralized defaults, bounds and TTLs."""

from __future__ import annotations

# -- Polling --

DEFAULT_POLL_INTERVAL_SECONDS = 30
MIN_POLL_INTERVAL_SECONDS = 10
MAX_POLL_INTERVAL_SECONDS = 120
RATE_LIMIT_WARNING_THRESHOLD = 100

# -- State file --

STATE_SCHEMA_VERSION = 3
STATE_ENV_VAR = "MARSHROOM_STATE"
CONFIG_DIR_NAME = "marshroom"
STATE_FILE_NAME = "state.json"
CONFIG_FILE_NAME = "marshroom.toml"
CREDENTIALS_FILE_NAME = "credentials.json"

SELF_WRITE_DEBOUNCE_SECONDS = 1.0
FALLBACK_WATCH_INTERVAL_SECONDS = 2.0

# -- Repo file cache --

CLAUDE_MD_PATH = "CLAUDE.md"
CLAUDE_MD_CACHE_TTL_SECONDS = 3600

# -- Remote APIs --

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_API_VERSION = "2022-11-28"
ANTHROPIC_API_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"
TITLE_MODEL = "claude-haiku-4-5-20251001"
HTTP_TIMEOUT_SECONDS = 30.0

# -- Branch naming --

HOTFIX_KEYWORDS: tuple[str, ...] = ("bug", "fix", "hotfix")
HOTFIX_BRANCH_PREFIX = "HotFix"
FEATURE_BRANCH_PREFIX = "Feature"
