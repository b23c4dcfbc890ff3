"""Immutable hierarchy produced by one discovery pass."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from clawdbay.tmux.models import (
    STATUS_DONE,
    STATUS_IDLE,
    STATUS_WAITING,
    STATUS_WORKING,
    AgentType,
    Status,
    Window,
)

MAIN_REPO_LABEL = "(main repo)"


def rollup_statuses(statuses: Iterable[Status]) -> Status:
    """Aggregate statuses by priority: WORKING > WAITING > IDLE > DONE.

    An empty input rolls up to DONE.
    """
    has_waiting = False
    has_idle = False
    for status in statuses:
        if status == STATUS_WORKING:
            return STATUS_WORKING
        if status == STATUS_WAITING:
            has_waiting = True
        elif status == STATUS_IDLE:
            has_idle = True
    if has_waiting:
        return STATUS_WAITING
    if has_idle:
        return STATUS_IDLE
    return STATUS_DONE


def window_key(session_name: str, window_name: str) -> str:
    return f"{session_name}:{window_name}"


@dataclass(frozen=True, slots=True)
class SessionNode:
    name: str
    status: Status
    windows: tuple[Window, ...] = ()


@dataclass(frozen=True, slots=True)
class Workspace:
    name: str
    path: str
    is_main: bool
    sessions: tuple[SessionNode, ...] = ()


@dataclass(frozen=True, slots=True)
class Project:
    name: str
    path: str
    workspaces: tuple[Workspace, ...] = ()
    invalid_error: str = ""

    @property
    def main_workspace_index(self) -> int:
        for index, workspace in enumerate(self.workspaces):
            if workspace.is_main:
                return index
        return -1


@dataclass(frozen=True, slots=True)
class DiscoveryResult:
    projects: tuple[Project, ...] = ()
    window_statuses: dict[str, Status] = field(default_factory=dict)
    window_agents: dict[str, AgentType] = field(default_factory=dict)
    config_missing: bool = False


@dataclass(frozen=True, slots=True)
class AgentRow:
    """One detected coding-agent window, for the flat agents view."""

    session_name: str
    window_name: str
    window_index: int
    repo_name: str
    agent_type: AgentType
    status: Status
    managed: bool
