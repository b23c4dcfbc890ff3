"""Configuration schema for ClawdBay."""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUPPORTED_CONFIG_VERSION = 1


class ProjectConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    path: str
    name: str | None = Field(default=None)

    @field_validator("path")
    @classmethod
    def validate_path(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("path is required")
        return value

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return None
        if not value.strip():
            raise ValueError("name must be non-empty when provided")
        return value

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return os.path.basename(os.path.normpath(self.path))


class UserConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = Field(default=SUPPORTED_CONFIG_VERSION)
    projects: list[ProjectConfig] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: int) -> int:
        if value != SUPPORTED_CONFIG_VERSION:
            raise ValueError(
                f"unsupported version {value} (supported: {SUPPORTED_CONFIG_VERSION})"
            )
        return value
