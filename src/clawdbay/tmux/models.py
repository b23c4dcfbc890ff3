"""Typed records returned by the tmux adapter."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Status = Literal["WORKING", "WAITING", "IDLE", "DONE"]
AgentType = Literal["none", "claude", "codex", "open_code"]

STATUS_WORKING: Status = "WORKING"
STATUS_WAITING: Status = "WAITING"
STATUS_IDLE: Status = "IDLE"
STATUS_DONE: Status = "DONE"

SESSION_PREFIX = "cb_"
SESSION_OPTION_HOME_PATH = "@cb_home_path"


@dataclass(frozen=True, slots=True)
class Session:
    name: str


@dataclass(frozen=True, slots=True)
class Window:
    index: int
    name: str
    active: bool = False


@dataclass(frozen=True, slots=True)
class AgentInfo:
    type: AgentType = "none"
    detected: bool = False
    status: Status = STATUS_DONE


NO_AGENT = AgentInfo()


@dataclass(frozen=True, slots=True)
class SessionWindowInfo:
    session_name: str
    repo_name: str
    window: Window
    agent_info: AgentInfo
    managed: bool
