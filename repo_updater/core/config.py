"""Configuration model and TOML loader."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from tomlkit import loads
from tomlkit.exceptions import TOMLKitError

from repo_updater.core.errors import ValidationError

_DANGEROUS_PATH_CHARS = re.compile(r"[;&|`$(){}*?]")
_MAX_TIMEOUT_SECONDS = 300

TimeoutKey: TypeAlias = Literal["fetch", "pull", "merge", "log", "status", "default"]


class _Section(BaseModel):
    model_config = ConfigDict(extra="forbid")


class Timeouts(_Section):
    """Per-operation timeouts, in seconds."""

    fetch: float = Field(default=30, gt=0, le=_MAX_TIMEOUT_SECONDS)
    pull: float = Field(default=30, gt=0, le=_MAX_TIMEOUT_SECONDS)
    merge: float = Field(default=30, gt=0, le=_MAX_TIMEOUT_SECONDS)
    log: float = Field(default=15, gt=0, le=_MAX_TIMEOUT_SECONDS)
    status: float = Field(default=10, gt=0, le=_MAX_TIMEOUT_SECONDS)
    default: float = Field(default=20, gt=0, le=_MAX_TIMEOUT_SECONDS)

    def for_key(self, key: TimeoutKey) -> float:
        return float(getattr(self, key))


class GitOptions(_Section):
    rebase: bool = True
    autostash: bool = True


class PeriodicCheck(_Section):
    enabled: bool = True
    frequency_minutes: float = Field(default=20, ge=1)


class GitHubOptions(_Section):
    enabled: bool = True
    cache_ttl: float = Field(default=300, ge=0)
    timeout: float = Field(default=10, gt=0, le=_MAX_TIMEOUT_SECONDS)


class PluginOptions(_Section):
    """Where the plugin manager keeps its checkouts and how to restore them."""

    root: Path | None = None
    restore_command: str | None = "nvim --headless +'lua require(\"lazy\").restore({wait=true})' +qa"
    restore_timeout: float = Field(default=300, gt=0)


class ToolOptions(_Section):
    restore_command: str | None = None
    restore_timeout: float = Field(default=300, gt=0)


class UpdaterConfig(_Section):
    """Validated configuration for one tracked repository."""

    repo_path: Path
    main_branch: str = Field(default="main", min_length=1)
    log_count: int = Field(default=15, ge=1, le=100)
    timeouts: Timeouts = Field(default_factory=Timeouts)
    git: GitOptions = Field(default_factory=GitOptions)
    versioned_releases_only: bool = False
    tag_pattern: str = "v*"
    lockfile_paths: list[str] = Field(default_factory=lambda: ["lazy-lock.json", "mason-lock.json"])
    plugin_lockfile: str = "lazy-lock.json"
    tool_lockfile: str = "mason-lock.json"
    check_updates_on_startup: bool = True
    periodic_check: PeriodicCheck = Field(default_factory=PeriodicCheck)
    max_section_items: int = Field(default=10, ge=1)
    version_cache_ttl: float = Field(default=60, ge=0)
    github: GitHubOptions = Field(default_factory=GitHubOptions)
    plugins: PluginOptions = Field(default_factory=PluginOptions)
    tools: ToolOptions = Field(default_factory=ToolOptions)
    cache_dir: Path | None = None

    @field_validator("repo_path", mode="before")
    @classmethod
    def _sanitize_repo_path(cls, value: object) -> Path:
        if not isinstance(value, (str, Path)) or not str(value):
            msg = "repo_path must be a non-empty path"
            raise ValueError(msg)  # noqa: TRY004
        if _DANGEROUS_PATH_CHARS.search(str(value)):
            msg = "repo_path contains dangerous characters"
            raise ValueError(msg)
        return Path(value).expanduser().resolve()

    @field_validator("main_branch", "tag_pattern")
    @classmethod
    def _reject_option_like(cls, value: str) -> str:
        if value.startswith("-") or any(c.isspace() for c in value):
            msg = f"invalid git ref: {value!r}"
            raise ValueError(msg)
        return value

    @property
    def upstream(self) -> str:
        return f"origin/{self.main_branch}"


def _format_errors(exc: PydanticValidationError) -> str:
    lines = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "config"
        lines.append(f"{location}: {error['msg']}")
    return "\n".join(lines)


def build_config(**values: object) -> UpdaterConfig:
    """Validate keyword values into an UpdaterConfig, raising the project ValidationError."""
    try:
        return UpdaterConfig.model_validate(values)
    except PydanticValidationError as e:
        msg = f"Invalid configuration:\n{_format_errors(e)}"
        raise ValidationError(msg) from e


def load_config(config_path: Path, *, repo_path: Path | None = None) -> UpdaterConfig:
    """Load a TOML configuration file.

    Args:
        config_path: Path to the TOML file.
        repo_path: Overrides ``repo_path`` from the file when given.

    """
    try:
        with config_path.open(encoding="utf-8") as f:
            data = loads(f.read()).unwrap()
    except OSError as e:
        msg = f"Cannot read configuration file {config_path}: {e}"
        raise ValidationError(msg) from e
    except TOMLKitError as e:
        msg = f"Malformed configuration file {config_path}: {e}"
        raise ValidationError(msg) from e
    if repo_path is not None:
        data["repo_path"] = str(repo_path)
    return build_config(**data)
