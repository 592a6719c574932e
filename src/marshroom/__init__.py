"""Marshroom -- daily issue cart synchronized with a shared state file and GitHub."""

__version__ = "0.3.0"
