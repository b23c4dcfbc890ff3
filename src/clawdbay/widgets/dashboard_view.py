"""Dashboard panel: tree lines, status bar, prompt, and key hints."""

from __future__ import annotations

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static

from clawdbay.dashboard.state import DashboardState
from clawdbay.dashboard.tree import DashboardMode, NodeType, TreeNode
from clawdbay.discovery.models import window_key
from clawdbay.tmux.models import Status

MAX_PANEL_WIDTH = 100

ACCENT = "#957FB8"
HIGHLIGHT = "#D27E99"
FG_DIM = "#C8C093"
FG_MUTED = "#727169"
BG_LIGHT = "#2A2A37"
ERROR = "#E82424"

STATUS_STYLES: dict[str, str] = {
    "WORKING": "#98BB6C",
    "WAITING": "#E6C384",
    "IDLE": "#FF9E3B",
    "DONE": "#54546D",
}

STATUS_BADGES: dict[str, str] = {
    "WORKING": "● WORKING",
    "WAITING": "◉ WAITING",
    "IDLE": "○ IDLE",
    "DONE": "◌ DONE",
}

SEPARATOR = "  ·  "


def status_badge(status: Status) -> Text:
    return Text(STATUS_BADGES.get(status, STATUS_BADGES["DONE"]), style=STATUS_STYLES.get(status, STATUS_STYLES["DONE"]))


def _toggle_icon(expanded: bool) -> str:
    return "▼" if expanded else "▸"


def _right_align(left: Text, right: Text | None, width: int) -> Text:
    if right is None or not right.plain:
        return left
    gap = max(width - left.cell_len - right.cell_len, 1)
    return Text.assemble(left, " " * gap, right)


def render_node(state: DashboardState, node: TreeNode, selected: bool, width: int) -> Text:
    cursor = "❯ " if selected else "  "
    badge: Text | None = None

    if node.type is NodeType.AGENT_ROW:
        row = state.agent_rows[node.agent]
        left = Text(cursor)
        left.append(f"{row.session_name}:{row.window_name}", style=FG_DIM)
        if row.repo_name:
            left.append(f"  {row.repo_name}", style=ACCENT)
        left.append(f"  {row.agent_type}", style=FG_MUTED)
        if not row.managed:
            left.append("  (external)", style=FG_MUTED)
        line = _right_align(left, status_badge(row.status), width)
    else:
        project = state.groups[node.project]
        if node.type is NodeType.PROJECT:
            line = Text(f"{cursor}{_toggle_icon(project.expanded)} ")
            line.append(project.name, style=f"bold {ACCENT}")
            if project.invalid_error:
                line.append(" [INVALID]", style=f"bold {ERROR}")
                line.append(f" {project.invalid_error}", style=FG_MUTED)
        elif node.type is NodeType.WORKSPACE:
            workspace = project.workspaces[node.workspace]
            line = Text(f"{cursor}  {_toggle_icon(workspace.expanded)} ")
            line.append(workspace.name, style=FG_DIM)
        elif node.type is NodeType.SESSION:
            session = project.workspaces[node.workspace].sessions[node.session]
            left = Text(f"{cursor}    {_toggle_icon(session.expanded)} ")
            left.append(session.name, style=FG_DIM)
            badge = status_badge(session.status)
            line = _right_align(left, badge, width)
        else:
            session = project.workspaces[node.workspace].sessions[node.session]
            window = session.windows[node.window]
            left = Text(f"{cursor}        ")
            left.append(window.name, style=FG_MUTED)
            status = state.window_statuses.get(window_key(session.name, window.name))
            if status is not None:
                badge = status_badge(status)
            line = _right_align(left, badge, width)

    if selected:
        line.stylize(f"bold {HIGHLIGHT} on {BG_LIGHT}")
    return line


def empty_message(state: DashboardState) -> str | None:
    """Message shown instead of the tree, or ``None`` when there is a tree."""
    if not state.loaded and not state.nodes:
        if state.load_error:
            return f"Failed to load: {state.load_error}\n  Retrying... (press r to retry now)"
        return "Loading..."
    if state.filtering and not state.filtered_nodes and state.nodes:
        return f"No matches for {state.filter_query!r}."
    if state.nodes:
        return None
    if state.mode is DashboardMode.AGENTS:
        return "No agent windows detected.\n  Start one with: cb claude"
    if state.config_missing:
        return "No configuration found.\n  Add a repo with: cb project add <path>"
    return "No repos configured.\n  Add one with: cb project add <path>"


def render_tree(state: DashboardState, width: int) -> Text:
    message = empty_message(state)
    if message is not None:
        return Text(message, style=FG_MUTED)

    rows = state.display_rows()
    start, end = state.visible_window()
    cursor = state.active_cursor()
    lines: list[Text] = []
    for row in rows[start:end]:
        if row is None:
            lines.append(Text(""))
            continue
        index, node = row
        lines.append(render_node(state, node, index == cursor, width))
    return Text("\n").join(lines)


def render_status_bar(state: DashboardState) -> Text:
    counts = state.session_counts()
    noun = "agents" if state.mode is DashboardMode.AGENTS else "sessions"
    parts = [Text(f"{counts.total} {noun}")]
    if counts.working:
        parts.append(Text(f"{counts.working} working", style=STATUS_STYLES["WORKING"]))
    if counts.waiting:
        parts.append(Text(f"{counts.waiting} waiting", style=STATUS_STYLES["WAITING"]))
    if counts.idle:
        parts.append(Text(f"{counts.idle} idle", style=STATUS_STYLES["IDLE"]))
    if state.status_message:
        style = ERROR if state.status_message.startswith("Error:") else STATUS_STYLES["DONE"]
        parts.append(Text(state.status_message, style=style))
    return Text.assemble("  ", Text(" · ", style=FG_MUTED).join(parts))


def render_prompt(state: DashboardState) -> Text | None:
    dialog = state.add_dialog
    if dialog is not None:
        if dialog.kind == "session":
            label = f"New session in {dialog.workspace_name}: "
        else:
            label = f"New window in {dialog.session_name}: "
        prompt = Text.assemble((label, ACCENT), dialog.text, ("█", FG_MUTED))
        if dialog.error:
            prompt.append(f"  {dialog.error}", style=ERROR)
        return prompt
    if state.filtering:
        return Text.assemble(("/", ACCENT), state.filter_query, ("█", FG_MUTED))
    return None


def footer_hint(state: DashboardState) -> str:
    if state.add_dialog is not None:
        return SEPARATOR.join(["enter create", "esc cancel"])
    if state.filtering:
        return SEPARATOR.join(["↑/↓ navigate", "enter select", "esc clear"])

    node = state.current_node()
    if node is None:
        return SEPARATOR.join(["m mode", "r refresh", "q quit"])
    if node.type is NodeType.AGENT_ROW:
        return SEPARATOR.join(["j/k navigate", "enter attach", "/ filter", "m mode", "q quit"])
    if node.type in (NodeType.PROJECT, NodeType.WORKSPACE):
        return SEPARATOR.join(["j/k navigate", "enter toggle", "h/l collapse/expand", "a add", "/ filter", "q quit"])
    return SEPARATOR.join(["j/k navigate", "enter attach", "h collapse", "a add", "/ filter", "m mode", "q quit"])


class DashboardView(Vertical):
    DEFAULT_CSS = """
    DashboardView {
        width: 100%;
        max-width: 100;
        height: 1fr;
        border: round #363646;
        border-title-color: #957FB8;
        border-title-style: bold;
        border-subtitle-color: #727169;
        padding: 0 1;
    }

    DashboardView #tree {
        height: 1fr;
    }

    DashboardView #status-bar {
        height: 2;
        border-top: solid #363646;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static(id="tree")
        yield Static(id="status-bar")

    def on_mount(self) -> None:
        self.border_title = "ClawdBay"

    def render_state(self, state: DashboardState) -> None:
        tree = self.query_one("#tree", Static)
        width = tree.content_size.width or max(min(state.width, MAX_PANEL_WIDTH) - 4, 10)
        tree.update(render_tree(state, width))

        # The filter and add prompts take over the status line while active.
        bottom = render_prompt(state) or render_status_bar(state)
        self.query_one("#status-bar", Static).update(bottom)
        self.border_subtitle = footer_hint(state)
