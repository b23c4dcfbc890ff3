"""Load/save the user project list (config.toml)."""

from __future__ import annotations

import json
import os
import tempfile
import tomllib
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from clawdbay.config.models import SUPPORTED_CONFIG_VERSION, ProjectConfig, UserConfig
from clawdbay.errors import ConfigError, PathResolutionError
from clawdbay.paths import canonical_path, config_path


@dataclass(slots=True)
class ProjectStatus:
    display_name: str
    path: str
    status: str


class ConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self.path = path or config_path()

    def exists(self) -> bool:
        return self.path.exists()

    def load_with_meta(self) -> tuple[UserConfig, bool]:
        """Return the parsed config and whether the file existed."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return UserConfig(), False
        except OSError as exc:
            raise ConfigError(f"failed to read config file {self.path}: {exc}") from exc

        if not raw.strip():
            return UserConfig(), True

        try:
            data = tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"failed to parse config file {self.path}: {exc}") from exc

        if "version" not in data:
            raise ConfigError(f"failed to parse config file {self.path}: missing required version")

        try:
            return UserConfig.model_validate(data), True
        except ValidationError as exc:
            raise ConfigError(f"invalid config file {self.path}: {exc}") from exc

    def load(self) -> UserConfig:
        config, _ = self.load_with_meta()
        return config

    def save(self, config: UserConfig) -> None:
        normalized = normalize_for_save(config)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = render_config_toml(normalized)

        fd, tmp_name = tempfile.mkstemp(prefix="config-", suffix=".toml", dir=self.path.parent)
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise ConfigError(f"failed to write config file {self.path}: {exc}") from exc
        finally:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
        os.chmod(self.path, 0o600)

    def add_project(self, path: str, name: str | None = None) -> str:
        try:
            canonical = canonical_path(path)
        except PathResolutionError as exc:
            raise ConfigError(f"failed to canonicalize project path {path!r}: {exc}") from exc

        if name is not None and not name.strip():
            raise ConfigError("--name must be non-empty when provided")

        config = self.load()
        if any(project.path == canonical for project in config.projects):
            raise ConfigError(f"project already configured: {canonical}")

        config.projects.append(ProjectConfig(path=canonical, name=name.strip() if name else None))
        self.save(config)
        return canonical

    def remove_project_by_path(self, path: str) -> str:
        try:
            target = canonical_path(path)
        except PathResolutionError as exc:
            raise ConfigError(f"failed to canonicalize removal path {path!r}: {exc}") from exc

        config = self.load()
        kept: list[ProjectConfig] = []
        removed = 0
        for project in config.projects:
            try:
                configured = canonical_path(project.path)
            except PathResolutionError:
                kept.append(project)
                continue
            if configured == target:
                removed += 1
                continue
            kept.append(project)

        if removed == 0:
            raise ConfigError(f"no configured project matched canonical path {target}")

        config.projects = kept
        self.save(config)
        return target

    def remove_project_by_name(self, name: str) -> str:
        config = self.load()
        matches = [index for index, project in enumerate(config.projects) if project.name == name]
        if not matches:
            raise ConfigError(f"no configured project matched name {name!r}")
        if len(matches) > 1:
            raise ConfigError(f"project name {name!r} is ambiguous; use canonical path removal")

        removed = config.projects.pop(matches[0])
        self.save(config)
        return removed.path

    def project_statuses(self) -> tuple[list[ProjectStatus], bool]:
        config, exists = self.load_with_meta()
        statuses: list[ProjectStatus] = []
        for project in config.projects:
            status = "OK"
            try:
                canonical = canonical_path(project.path)
            except PathResolutionError as exc:
                status = f"INVALID: {exc}"
            else:
                if canonical != os.path.normpath(project.path):
                    status = f"INVALID: configured path is not canonical (canonical={canonical})"
            statuses.append(
                ProjectStatus(display_name=project.display_name, path=project.path, status=status)
            )
        return statuses, exists


def normalize_for_save(config: UserConfig) -> UserConfig:
    seen: set[str] = set()
    projects: list[ProjectConfig] = []
    for index, project in enumerate(config.projects):
        try:
            canonical = canonical_path(project.path)
        except PathResolutionError as exc:
            raise ConfigError(
                f"projects[{index}].path {project.path!r} is not canonicalizable: {exc}"
            ) from exc
        if canonical in seen:
            raise ConfigError(f"duplicate canonical project path: {canonical}")
        seen.add(canonical)
        name = project.name.strip() if project.name else None
        projects.append(ProjectConfig(path=canonical, name=name))

    projects.sort(key=lambda item: (item.display_name, item.path))
    return UserConfig(version=SUPPORTED_CONFIG_VERSION, projects=projects)


def render_config_toml(config: UserConfig) -> str:
    # json string quoting is a valid TOML basic string
    lines = [f"version = {config.version}"]
    for project in config.projects:
        lines.append("")
        lines.append("[[projects]]")
        lines.append(f"path = {json.dumps(project.path, ensure_ascii=False)}")
        if project.name:
            lines.append(f"name = {json.dumps(project.name, ensure_ascii=False)}")
    return "\n".join(lines) + "\n"
