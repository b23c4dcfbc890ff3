"""Exception hierarchy shared by discovery, config, and the tmux adapter."""

from __future__ import annotations


class ClawdBayError(Exception):
    """Base class for errors surfaced to the CLI and dashboard."""


class PathResolutionError(ClawdBayError):
    pass


class ConfigError(ClawdBayError):
    pass


class BackendError(ClawdBayError):
    """tmux (or another session host) could not answer a query."""


class WorktreeListError(ClawdBayError):
    pass


class DiscoveryError(ClawdBayError):
    """A discovery pass could not produce a meaningful result."""
