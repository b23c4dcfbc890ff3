"""git worktree listing."""

from __future__ import annotations

from typing import Protocol

from clawdbay.errors import BackendError, WorktreeListError
from clawdbay.tmux.client import Runner, run_command

WORKTREES_DIRNAME = ".worktrees"


class WorktreeLister(Protocol):
    def list(self, project_path: str) -> list[str]: ...


def parse_worktree_list_porcelain(output: str) -> list[str]:
    paths: list[str] = []
    for line in output.strip().splitlines():
        line = line.strip()
        if not line.startswith("worktree "):
            continue
        path = line.removeprefix("worktree ").strip()
        if path:
            paths.append(path)
    return paths


class GitWorktreeLister:
    def __init__(self, runner: Runner | None = None) -> None:
        self._run = runner or run_command

    def list(self, project_path: str) -> list[str]:
        try:
            output = self._run(["git", "-C", project_path, "worktree", "list", "--porcelain"])
        except BackendError as exc:
            raise WorktreeListError(f"failed to list worktrees for {project_path}: {exc}") from exc
        return parse_worktree_list_porcelain(output)
