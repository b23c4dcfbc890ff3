"""Name sanitizing for sessions, windows, and branches."""

from __future__ import annotations

import re
from collections.abc import Callable

from clawdbay.tmux.models import SESSION_PREFIX

_ALLOWED = re.compile(r"[a-z0-9_/-]")


def sanitize_name(raw: str) -> str:
    """Lowercase, whitespace to dashes, drop anything git or tmux dislikes."""
    chars: list[str] = []
    for char in raw.strip().lower():
        if char.isspace():
            chars.append("-")
        elif _ALLOWED.fullmatch(char):
            chars.append(char)
    sanitized = re.sub(r"-{2,}", "-", "".join(chars))
    return sanitized.strip("-/")


def ensure_session_prefix(name: str) -> str:
    if name.startswith(SESSION_PREFIX):
        return name
    return SESSION_PREFIX + name


def uniquify_name(base: str, exists: Callable[[str], bool]) -> str:
    if not exists(base):
        return base
    suffix = 2
    while exists(f"{base}-{suffix}"):
        suffix += 1
    return f"{base}-{suffix}"
