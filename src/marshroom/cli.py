"""CLI entry point -- headless sync daemon plus one-shot cart commands."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from marshroom import __version__
from marshroom.app import MarshroomApp
from marshroom.config import MarshroomConfig, load_config
from marshroom.credentials import ANTHROPIC, GITHUB, CredentialError, load_credential, save_credential
from marshroom.github import GitHubAPIError, GitHubClient
from marshroom.models import IssueStatus, Repo
from marshroom.titles import AnthropicClient, AnthropicError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="marshroom", description="Daily GitHub issue cart")
	parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
	parser.add_argument("--config", default=None, help="Path to marshroom.toml")
	parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
	sub = parser.add_subparsers(dest="command")

	sub.add_parser("run", help="Sync with the state file and GitHub until interrupted")
	sub.add_parser("status", help="Show today's cart")

	add = sub.add_parser("add", help="Add an issue to the cart")
	add.add_argument("repo", help="owner/name")
	add.add_argument("number", type=int)

	remove = sub.add_parser("remove", help="Remove an item from the cart")
	remove.add_argument("key", help="owner/name#number")

	set_status = sub.add_parser("set-status", help="Change an item's status")
	set_status.add_argument("key", help="owner/name#number")
	set_status.add_argument("status", choices=[s.value for s in IssueStatus])

	sub.add_parser("reset-day", help="Zero today's counter and drop completed items")

	pin = sub.add_parser("pin", help="Highlight a repo")
	pin.add_argument("repo", help="owner/name")

	unpin = sub.add_parser("unpin", help="Stop highlighting a repo (drops its cart items)")
	unpin.add_argument("repo", help="owner/name")

	new_issue = sub.add_parser("new-issue", help="Create an issue, titled by AI when a key is configured")
	new_issue.add_argument("repo", help="owner/name")
	new_issue.add_argument("text", help="Raw notes; used as the body")
	new_issue.add_argument("--title", default=None, help="Use this title instead of generating one")
	new_issue.add_argument("--add", action="store_true", help="Also add the new issue to the cart")

	login = sub.add_parser("login", help="Store API credentials")
	login.add_argument("--github", default=None, help="GitHub personal access token")
	login.add_argument("--anthropic", default=None, help="Anthropic API key")

	return parser


def _configure_logging(config: MarshroomConfig, verbose: bool) -> None:
	level = logging.DEBUG if verbose else getattr(logging, config.logging.level, logging.INFO)
	logging.basicConfig(
		level=level,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)


def _github_client() -> GitHubClient | None:
	token = load_credential(GITHUB)
	return GitHubClient(token) if token else None


def _load_app(config: MarshroomConfig, client: GitHubClient | None = None) -> MarshroomApp:
	app = MarshroomApp(config, client=client)
	app.restore()
	return app


def cmd_run(config: MarshroomConfig) -> int:
	app = MarshroomApp(config, client=_github_client())
	asyncio.run(app.run())
	return 0


def cmd_status(config: MarshroomConfig) -> int:
	engine = _load_app(config).engine
	print(f"State file: {config.state_path}")
	print(f"Completed today: {engine.today_completions} ({engine.today_completions_date})")
	if not engine.items:
		print("Cart is empty.")
		return 0
	for item in engine.items:
		line = f"  [{item.status.value:<9}] {item.key:<40} {item.branch_name}"
		if item.pr_number is not None:
			line += f"  PR #{item.pr_number}"
		if item.pending_sub_status is not None:
			line += f" ({item.pending_sub_status.display_name})"
		print(line)
		print(f"               {item.issue.title}")
	return 0


async def _add(config: MarshroomConfig, repo_name: str, number: int) -> int:
	client = _github_client()
	if client is None:
		print("No GitHub token configured. Run `marshroom login --github TOKEN`.", file=sys.stderr)
		return 1
	async with client:
		try:
			repo = await client.get_repo(repo_name)
			issue = await client.get_issue(repo_name, number)
		except GitHubAPIError as exc:
			print(f"Error: {exc}", file=sys.stderr)
			return 1
	if issue.is_pull_request:
		print(f"{repo_name}#{number} is a pull request, not an issue.", file=sys.stderr)
		return 1
	app = _load_app(config)
	if not app.engine.add_item(repo, issue):
		print(f"{repo_name}#{number} is already in the cart.")
		return 0
	print(f"Added {repo_name}#{number} ({issue.branch_name})")
	return 0


def cmd_remove(config: MarshroomConfig, key: str) -> int:
	if not _load_app(config).engine.remove_item(key):
		print(f"Not in cart: {key}", file=sys.stderr)
		return 1
	return 0


def cmd_set_status(config: MarshroomConfig, key: str, status: str) -> int:
	engine = _load_app(config).engine
	if key not in engine:
		print(f"Not in cart: {key}", file=sys.stderr)
		return 1
	engine.set_status(key, IssueStatus.parse(status))
	return 0


def cmd_reset_day(config: MarshroomConfig) -> int:
	removed = _load_app(config).engine.reset_day()
	print(f"Removed {removed} completed item(s).")
	return 0


async def _pin(config: MarshroomConfig, repo_name: str) -> int:
	repo = Repo.stub(repo_name)
	client = _github_client()
	if client is not None:
		async with client:
			try:
				repo = await client.get_repo(repo_name)
			except GitHubAPIError as exc:
				print(f"Error: {exc}", file=sys.stderr)
				return 1
	if not _load_app(config).engine.add_repo(repo):
		print(f"{repo_name} is already pinned.")
	return 0


def cmd_unpin(config: MarshroomConfig, repo_name: str) -> int:
	if not _load_app(config).engine.remove_repo(repo_name):
		print(f"{repo_name} is not pinned.", file=sys.stderr)
		return 1
	return 0


async def _new_issue(
	config: MarshroomConfig,
	repo_name: str,
	text: str,
	title: str | None,
	add_to_cart: bool,
) -> int:
	client = _github_client()
	if client is None:
		print("No GitHub token configured. Run `marshroom login --github TOKEN`.", file=sys.stderr)
		return 1
	app = _load_app(config)

	if title is None:
		key = load_credential(ANTHROPIC)
		if key is None:
			print("No title given and no Anthropic key configured.", file=sys.stderr)
			return 1
		titler = AnthropicClient(key)
		try:
			title = await titler.generate_title(text, repo_name, app.engine.claude_md_for(repo_name))
		except AnthropicError as exc:
			print(f"Error: {exc}", file=sys.stderr)
			return 1
		finally:
			await titler.close()

	async with client:
		try:
			issue = await client.create_issue(repo_name, title, text)
			repo = await client.get_repo(repo_name) if add_to_cart else None
		except GitHubAPIError as exc:
			print(f"Error: {exc}", file=sys.stderr)
			return 1

	print(f"Created {repo_name}#{issue.number}: {issue.title}")
	if repo is not None:
		app.engine.add_item(repo, issue)
	return 0


async def _login(github_token: str | None, anthropic_key: str | None) -> int:
	if github_token is None and anthropic_key is None:
		print("Nothing to store: pass --github and/or --anthropic.", file=sys.stderr)
		return 1
	if github_token is not None:
		async with GitHubClient(github_token) as client:
			try:
				login = await client.validate_token()
			except GitHubAPIError as exc:
				print(f"GitHub token rejected: {exc}", file=sys.stderr)
				return 1
		print(f"Authenticated as {login}")
	try:
		if github_token is not None:
			save_credential(GITHUB, github_token)
		if anthropic_key is not None:
			save_credential(ANTHROPIC, anthropic_key)
	except CredentialError as exc:
		print(f"Error: {exc}", file=sys.stderr)
		return 1
	return 0


def main(argv: list[str] | None = None) -> int:
	parser = build_parser()
	args = parser.parse_args(argv)

	if args.command is None:
		parser.print_help()
		return 0

	try:
		config = load_config(args.config)
	except FileNotFoundError as exc:
		print(f"Error: {exc}", file=sys.stderr)
		return 1
	_configure_logging(config, args.verbose)

	if args.command == "run":
		return cmd_run(config)
	if args.command == "status":
		return cmd_status(config)
	if args.command == "add":
		return asyncio.run(_add(config, args.repo, args.number))
	if args.command == "remove":
		return cmd_remove(config, args.key)
	if args.command == "set-status":
		return cmd_set_status(config, args.key, args.status)
	if args.command == "reset-day":
		return cmd_reset_day(config)
	if args.command == "pin":
		return asyncio.run(_pin(config, args.repo))
	if args.command == "unpin":
		return cmd_unpin(config, args.repo)
	if args.command == "new-issue":
		return asyncio.run(_new_issue(config, args.repo, args.text, args.title, args.add))
	if args.command == "login":
		return asyncio.run(_login(args.github, args.anthropic))

	parser.print_help()
	return 1


if __name__ == "__main__":
	sys.exit(main())
