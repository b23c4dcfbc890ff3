"""Parsers for tmux command output and pane content heuristics."""

from __future__ import annotations

from clawdbay.tmux.models import (
    SESSION_PREFIX,
    STATUS_IDLE,
    STATUS_WAITING,
    STATUS_WORKING,
    AgentType,
    Session,
    Status,
    Window,
)

AGENT_PROCESS_SIGNATURES: tuple[tuple[AgentType, tuple[str, ...]], ...] = (
    ("claude", ("claude",)),
    ("codex", ("codex",)),
    ("open_code", ("open-code", "open_code", "opencode")),
)

SHELL_COMMANDS = frozenset({"zsh", "bash", "sh", "fish"})

_BUSY_STRINGS = ("ctrl+c to interrupt", "esc to interrupt")

# Braille spinner frames plus the asterisk spinners newer Claude builds draw.
_SPINNER_CHARS = frozenset("⠋⠙⠹⠸⠼⠴⠦⠧⠇⠏✳✽✶✢")

_PROMPT_STRINGS = (
    "yes, allow once",
    "yes, allow always",
    "no, and tell claude",
)

_CONFIRMATION_PATTERNS = (
    "continue?",
    "proceed?",
    "(y/n)",
    "[yes/no]",
    "enter to select",
)


def parse_session_list(output: str, prefix: str | None = SESSION_PREFIX) -> list[Session]:
    """Parse ``tmux list-sessions`` lines such as ``cb_auth: 3 windows (created ...)``."""
    sessions: list[Session] = []
    for line in output.strip().splitlines():
        if not line:
            continue
        if prefix is not None and not line.startswith(prefix):
            continue
        name, sep, _ = line.partition(": ")
        if not sep:
            continue
        sessions.append(Session(name=name))
    return sessions


def parse_window_list(output: str) -> list[Window]:
    """Parse ``#{window_index}:#{window_name}:#{window_active}`` lines.

    Window names may themselves contain colons (``claude:default``), so the
    active flag is split from the right and the index from the left.
    """
    windows: list[Window] = []
    for line in output.strip().splitlines():
        if not line:
            continue
        rest, sep, active = line.rpartition(":")
        if not sep:
            continue
        raw_index, sep, name = rest.partition(":")
        if not sep:
            continue
        try:
            index = int(raw_index)
        except ValueError:
            index = 0
        windows.append(Window(index=index, name=name, active=active == "1"))
    return windows


def match_agent_signature(process_listing: str) -> AgentType:
    lowered = process_listing.strip().lower()
    for agent, signatures in AGENT_PROCESS_SIGNATURES:
        if any(signature in lowered for signature in signatures):
            return agent
    return "none"


def contains_spinner_chars(content: str) -> bool:
    for char in content:
        if char in _SPINNER_CHARS:
            return True
        if 0x2800 < ord(char) <= 0x28FF:
            return True
    return False


def has_busy_indicator(content: str) -> bool:
    lowered = content.lower()
    if any(marker in lowered for marker in _BUSY_STRINGS):
        return True
    return contains_spinner_chars(content)


def has_prompt_indicator(content: str) -> bool:
    lowered = content.lower()
    if any(marker in lowered for marker in _PROMPT_STRINGS):
        return True
    if any(pattern in lowered for pattern in _CONFIRMATION_PATTERNS):
        return True

    last_line = last_non_empty_line(content.split("\n")).strip()
    return last_line.endswith(">") or last_line.endswith("❯")


def last_non_empty_line(lines: list[str]) -> str:
    for line in reversed(lines):
        if line.strip():
            return line
    return ""


def classify_activity(content: str) -> Status:
    if has_busy_indicator(content):
        return STATUS_WORKING
    if has_prompt_indicator(content):
        return STATUS_WAITING
    return STATUS_IDLE
