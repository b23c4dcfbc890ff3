"""XDG path helpers and canonical path comparison."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

from clawdbay.errors import PathResolutionError

APP_NAME = "clawdbay"
APP_AUTHOR = "clawdbay"
CONFIG_FILE_NAME = "config.toml"
CONFIG_DIR_ENV = "CB_CONFIG_DIR"


def dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=False)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_root() -> Path:
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path(dirs().user_config_path)


def state_root() -> Path:
    return ensure_dir(Path(dirs().user_state_path))


def config_path() -> Path:
    return config_root() / CONFIG_FILE_NAME


def canonical_path(path: str | Path) -> str:
    """Resolve ``path`` to the absolute, symlink-free form used for matching.

    The path must exist; a dangling or deleted path raises
    :class:`PathResolutionError` so callers can record it per entity.
    """
    raw = str(path).strip()
    if not raw:
        raise PathResolutionError("empty path")

    try:
        resolved = Path(raw).expanduser().absolute().resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise PathResolutionError(f"failed to resolve {raw!r}: {exc}") from exc
    return os.path.normpath(str(resolved))


def is_path_within_or_equal(path: str, root: str) -> bool:
    clean_path = os.path.normpath(path)
    clean_root = os.path.normpath(root)
    if clean_path == clean_root:
        return True
    prefix = clean_root if clean_root.endswith(os.sep) else clean_root + os.sep
    return clean_path.startswith(prefix)


def is_path_within(path: str, root: str) -> bool:
    if os.path.normpath(path) == os.path.normpath(root):
        return False
    return is_path_within_or_equal(path, root)


def relative_workspace_name(root: str, path: str) -> str:
    try:
        rel = os.path.relpath(path, root)
    except ValueError:
        return os.path.basename(path)
    return Path(rel).as_posix()
