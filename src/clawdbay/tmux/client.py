"""tmux adapter: shells out to tmux/ps/git and returns structured records."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Callable, Sequence

from clawdbay.errors import BackendError
from clawdbay.runtime_logging import DisabledLogger, RuntimeLogger
from clawdbay.tmux.models import (
    NO_AGENT,
    SESSION_PREFIX,
    AgentInfo,
    AgentType,
    Session,
    SessionWindowInfo,
    Status,
    Window,
)
from clawdbay.tmux.parsing import (
    SHELL_COMMANDS,
    classify_activity,
    match_agent_signature,
    parse_session_list,
    parse_window_list,
)

_NO_SERVER_MARKERS = ("no server running", "no sessions", "error connecting to")


class CommandFailed(BackendError):
    def __init__(self, args: Sequence[str], returncode: int, stderr: str) -> None:
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"{' '.join(self.args_list[:2])}: {detail}")


Runner = Callable[[Sequence[str]], str]
InteractiveRunner = Callable[[Sequence[str]], int]


def run_command(args: Sequence[str]) -> str:
    try:
        completed = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as exc:
        raise CommandFailed(args, 127, f"{args[0]} not found") from exc
    if completed.returncode != 0:
        raise CommandFailed(args, completed.returncode, completed.stderr)
    return completed.stdout


def run_interactive(args: Sequence[str]) -> int:
    # Interactive commands need the terminal, not captured output.
    return subprocess.run(list(args), check=False).returncode


class TmuxClient:
    def __init__(
        self,
        runner: Runner | None = None,
        interactive_runner: InteractiveRunner | None = None,
        logger: RuntimeLogger | None = None,
    ) -> None:
        self._run = runner or run_command
        self._run_interactive = interactive_runner or run_interactive
        self.logger = logger or DisabledLogger()

    def _tmux(self, *args: str) -> str:
        return self._run(["tmux", *args])

    def _list_sessions_output(self) -> str:
        try:
            return self._tmux("list-sessions")
        except CommandFailed as exc:
            if any(marker in exc.stderr for marker in _NO_SERVER_MARKERS):
                return ""
            raise BackendError(f"failed to list tmux sessions: {exc}") from exc

    def list_sessions(self) -> list[Session]:
        """Return ClawdBay-managed (``cb_``) sessions."""
        return parse_session_list(self._list_sessions_output(), prefix=SESSION_PREFIX)

    def list_all_sessions(self) -> list[Session]:
        return parse_session_list(self._list_sessions_output(), prefix=None)

    def list_windows(self, session: str) -> list[Window]:
        try:
            output = self._tmux(
                "list-windows",
                "-t",
                session,
                "-F",
                "#{window_index}:#{window_name}:#{window_active}",
            )
        except CommandFailed as exc:
            raise BackendError(f"failed to list windows for {session}: {exc}") from exc
        return parse_window_list(output)

    def list_session_window_info(self) -> list[SessionWindowInfo]:
        rows: list[SessionWindowInfo] = []
        for session in self.list_all_sessions():
            repo_name = self.get_repo_name(session.name)
            try:
                windows = self.list_windows(session.name)
            except BackendError as exc:
                self.logger.debug("tmux.window_info.skipped", session=session.name, error=str(exc))
                continue

            managed = session.name.startswith(SESSION_PREFIX)
            for window in windows:
                rows.append(
                    SessionWindowInfo(
                        session_name=session.name,
                        repo_name=repo_name,
                        window=window,
                        agent_info=self.detect_agent_info(session.name, window.name),
                        managed=managed,
                    )
                )
        return rows

    def _display_message(self, target: str, fmt: str) -> str:
        return self._tmux("display-message", "-t", target, "-p", fmt).strip()

    def _detect_agent_type_for_target(self, target: str) -> AgentType:
        try:
            pane_tty = self._display_message(target, "#{pane_tty}")
            processes = self._run(["ps", "-t", pane_tty])
        except CommandFailed as exc:
            self.logger.debug("tmux.detect_agent_type.failed", target=target, error=str(exc))
            return "none"
        return match_agent_signature(processes)

    def detect_agent_type(self, session: str, window: str) -> AgentType:
        return self._detect_agent_type_for_target(f"{session}:{window}")

    def detect_agent_info(self, session: str, window: str) -> AgentInfo:
        target = f"{session}:{window}"
        try:
            command = self._display_message(target, "#{pane_current_command}")
        except CommandFailed as exc:
            self.logger.debug("tmux.detect_agent_info.failed", target=target, error=str(exc))
            return NO_AGENT

        if command in SHELL_COMMANDS:
            return NO_AGENT

        agent_type = self._detect_agent_type_for_target(target)
        if agent_type == "none":
            return NO_AGENT
        return AgentInfo(type=agent_type, detected=True, status=self._detect_activity(target))

    def _detect_activity(self, target: str) -> Status:
        try:
            content = self._tmux("capture-pane", "-t", target, "-p", "-S", "-20")
        except CommandFailed as exc:
            self.logger.debug("tmux.detect_activity.failed", target=target, error=str(exc))
            return "IDLE"
        return classify_activity(content)

    def get_session_option(self, session: str, key: str) -> str:
        try:
            return self._tmux("show-options", "-t", session, "-v", key).strip()
        except CommandFailed as exc:
            raise BackendError(f"failed to get option {key} on session {session}: {exc}") from exc

    def set_session_option(self, session: str, key: str, value: str) -> None:
        try:
            self._tmux("set-option", "-t", session, key, value)
        except CommandFailed as exc:
            raise BackendError(f"failed to set option {key} on session {session}: {exc}") from exc

    def get_pane_working_dir(self, session: str) -> str:
        """Working directory of the session's first pane, or ``""`` when unknown."""
        return self.get_window_working_dir(session, 0)

    def get_window_working_dir(self, session: str, window_index: int) -> str:
        try:
            return self._display_message(f"{session}:{window_index}", "#{pane_current_path}")
        except CommandFailed:
            return ""

    def get_repo_name(self, session: str) -> str:
        pane_dir = self.get_pane_working_dir(session)
        if not pane_dir:
            return "Unknown"
        try:
            toplevel = self._run(["git", "-C", pane_dir, "rev-parse", "--show-toplevel"]).strip()
        except CommandFailed:
            return "Unknown"
        return os.path.basename(toplevel) or "Unknown"

    def current_session_name(self) -> str:
        """Session of the attached client, or ``""`` outside tmux."""
        try:
            return self._tmux("display-message", "-p", "#{session_name}").strip()
        except CommandFailed:
            return ""

    def create_session(self, name: str, workdir: str) -> None:
        try:
            self._tmux("new-session", "-d", "-s", name, "-c", workdir)
        except CommandFailed as exc:
            raise BackendError(f"failed to create session {name}: {exc}") from exc

    def create_window(self, session: str, name: str, command: str = "") -> None:
        args = ["new-window", "-t", session, "-n", name]
        if command:
            args.append(command)
        try:
            self._tmux(*args)
        except CommandFailed as exc:
            raise BackendError(f"failed to create window {name} in {session}: {exc}") from exc

    def create_window_with_shell(self, session: str, name: str, command: str) -> None:
        """Open a window with a login shell, then type ``command`` into it.

        Running the command through the shell keeps the user's profile
        environment, which ``new-window <command>`` would skip.
        """
        self.create_window(session, name)
        if not command:
            return
        try:
            self._tmux("send-keys", "-t", f"{session}:{name}", command, "Enter")
        except CommandFailed as exc:
            raise BackendError(f"failed to send command to {session}:{name}: {exc}") from exc

    def kill_session(self, name: str) -> None:
        try:
            self._tmux("kill-session", "-t", name)
        except CommandFailed as exc:
            raise BackendError(f"failed to kill session {name}: {exc}") from exc

    def select_window(self, session: str, window_index: int) -> None:
        try:
            self._tmux("select-window", "-t", f"{session}:{window_index}")
        except CommandFailed as exc:
            raise BackendError(
                f"failed to select window {window_index} in session {session}: {exc}"
            ) from exc

    def attach_session(self, name: str) -> None:
        if self._run_interactive(["tmux", "attach-session", "-t", name]) != 0:
            raise BackendError(f"failed to attach to session {name}")

    def switch_client(self, name: str) -> None:
        if self._run_interactive(["tmux", "switch-client", "-t", name]) != 0:
            raise BackendError(f"failed to switch to session {name}")

    def attach_or_switch(self, name: str, in_tmux: bool) -> None:
        if in_tmux:
            self.switch_client(name)
        else:
            self.attach_session(name)
