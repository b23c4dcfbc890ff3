"""Background work dispatched by the dashboard: data refresh and add actions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol

from clawdbay.dashboard.naming import uniquify_name
from clawdbay.dashboard.tree import DashboardMode, ProjectGroup, groups_from_projects
from clawdbay.discovery.models import AgentRow
from clawdbay.discovery.service import DiscoveryService
from clawdbay.errors import ClawdBayError
from clawdbay.paths import canonical_path
from clawdbay.tmux.models import SESSION_OPTION_HOME_PATH, AgentType, Session, Status

AddKind = Literal["session", "window"]


@dataclass(slots=True)
class RefreshResult:
    generation: int
    mode: DashboardMode
    groups: list[ProjectGroup] = field(default_factory=list)
    rows: list[AgentRow] = field(default_factory=list)
    window_statuses: dict[str, Status] = field(default_factory=dict)
    window_agents: dict[str, AgentType] = field(default_factory=dict)
    config_missing: bool = False
    error: str | None = None


def fetch_dashboard_data(
    discovery: DiscoveryService,
    mode: DashboardMode,
    generation: int,
) -> RefreshResult:
    """Run the discovery query for ``mode``. Never raises."""
    try:
        if mode is DashboardMode.AGENTS:
            rows = discovery.discover_agent_rows()
            return RefreshResult(
                generation=generation,
                mode=mode,
                rows=rows,
                window_statuses={f"{row.session_name}:{row.window_name}": row.status for row in rows},
                window_agents={f"{row.session_name}:{row.window_name}": row.agent_type for row in rows},
            )

        result = discovery.discover()
    except ClawdBayError as exc:
        return RefreshResult(generation=generation, mode=mode, error=str(exc))

    return RefreshResult(
        generation=generation,
        mode=mode,
        groups=groups_from_projects(result.projects),
        window_statuses=dict(result.window_statuses),
        window_agents=dict(result.window_agents),
        config_missing=result.config_missing,
    )


@dataclass(frozen=True, slots=True)
class AddRequest:
    kind: AddKind
    name: str
    workspace_path: str = ""
    session_name: str = ""


@dataclass(frozen=True, slots=True)
class AddResult:
    kind: AddKind
    name: str
    target: str
    error: str | None = None


class AddBackend(Protocol):
    def list_sessions(self) -> list[Session]: ...

    def create_session(self, name: str, workdir: str) -> None: ...

    def set_session_option(self, session: str, key: str, value: str) -> None: ...

    def create_window(self, session: str, name: str, command: str = "") -> None: ...


def perform_add(backend: AddBackend, request: AddRequest) -> AddResult:
    """Create the requested session (pinned to its workspace) or window. Never raises."""
    if request.kind == "window":
        try:
            backend.create_window(request.session_name, request.name)
        except ClawdBayError as exc:
            return AddResult(kind="window", name=request.name, target=request.session_name, error=str(exc))
        return AddResult(kind="window", name=request.name, target=request.session_name)

    target = request.workspace_path
    try:
        existing = {session.name for session in backend.list_sessions()}
    except ClawdBayError as exc:
        return AddResult(kind="session", name=request.name, target=target, error=str(exc))

    name = uniquify_name(request.name, lambda candidate: candidate in existing)
    try:
        backend.create_session(name, target)
        backend.set_session_option(name, SESSION_OPTION_HOME_PATH, canonical_path(target))
    except ClawdBayError as exc:
        return AddResult(kind="session", name=name, target=target, error=str(exc))
    return AddResult(kind="session", name=name, target=target)
