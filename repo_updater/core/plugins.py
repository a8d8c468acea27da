"""Plugin manager capabilities and lockfile reconciliation."""

from __future__ import annotations

import asyncio
import json
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple, Protocol

from loguru import logger

from repo_updater.core.errors import UpdaterError, ValidationError
from repo_updater.core.tools.git import GitController
from repo_updater.core.tools.subprocess import run_command
from repo_updater.models.status import PluginReport, PluginUpdate

if TYPE_CHECKING:
    from repo_updater.core.config import Timeouts, UpdaterConfig
    from repo_updater.models.status import PluginDirection

DEFAULT_PLUGIN_ROOT = Path("~/.local/share/nvim/lazy")
SHORT_COMMIT_LENGTH = 7


class PluginManager(Protocol):
    """What the reconciler and the version switcher need from a plugin manager."""

    def is_available(self) -> bool: ...

    def plugin_dir(self, name: str) -> Path | None: ...

    async def installed_commit(self, name: str) -> str | None: ...

    async def restore(self, cwd: Path) -> None: ...


class ToolRestorer(Protocol):
    def is_available(self) -> bool: ...

    async def restore(self, cwd: Path) -> None: ...


class NullPluginManager:
    """Stands in when no plugin manager is installed. Reports nothing installed."""

    def is_available(self) -> bool:
        return False

    def plugin_dir(self, name: str) -> Path | None:  # noqa: ARG002
        return None

    async def installed_commit(self, name: str) -> str | None:  # noqa: ARG002
        return None

    async def restore(self, cwd: Path) -> None:
        logger.debug(f"No plugin manager available, skipping restore in {cwd}")


class NullToolRestorer:
    def is_available(self) -> bool:
        return False

    async def restore(self, cwd: Path) -> None:
        logger.debug(f"No tool restorer configured, skipping restore in {cwd}")


async def _run_restore(command: str, cwd: Path, timeout: float) -> None:
    argv = shlex.split(command)
    if not argv:
        msg = "Restore command is empty"
        raise ValidationError(msg)
    await run_command(argv, cwd=cwd, timeout=timeout, check=True, log_on_error=True)


class LazyPluginManager:
    """Plugin manager that keeps one git checkout per plugin under a root directory."""

    def __init__(
        self,
        root: Path,
        *,
        restore_command: str | None = None,
        restore_timeout: float = 300,
        timeouts: Timeouts | None = None,
    ) -> None:
        self.root = root
        self.restore_command = restore_command
        self.restore_timeout = restore_timeout
        self.timeouts = timeouts

    def is_available(self) -> bool:
        return self.root.is_dir()

    def plugin_dir(self, name: str) -> Path | None:
        if not name or "/" in name or name in {".", ".."}:
            return None
        path = self.root / name
        return path if (path / ".git").exists() else None

    async def installed_commit(self, name: str) -> str | None:
        path = self.plugin_dir(name)
        if path is None:
            return None
        try:
            return await GitController(path, self.timeouts).rev_parse("HEAD")
        except UpdaterError as e:
            logger.debug(f"Cannot read installed commit of {name}: {e}")
            return None

    async def restore(self, cwd: Path) -> None:
        if not self.restore_command:
            msg = "No plugin restore command configured"
            raise ValidationError(msg)
        logger.info("Restoring plugins from lockfile")
        await _run_restore(self.restore_command, cwd, self.restore_timeout)


class CommandToolRestorer:
    """Restores external tools by running a configured command in the repository."""

    def __init__(self, command: str, timeout: float = 300) -> None:
        self.command = command
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.command.strip())

    async def restore(self, cwd: Path) -> None:
        logger.info("Restoring tools from lockfile")
        await _run_restore(self.command, cwd, self.timeout)


def plugin_manager_from_config(config: UpdaterConfig) -> PluginManager:
    root = (config.plugins.root or DEFAULT_PLUGIN_ROOT).expanduser()
    if not root.is_dir():
        logger.debug(f"Plugin root {root} not found, plugin checks disabled")
        return NullPluginManager()
    return LazyPluginManager(
        root,
        restore_command=config.plugins.restore_command,
        restore_timeout=config.plugins.restore_timeout,
        timeouts=config.timeouts,
    )


def tool_restorer_from_config(config: UpdaterConfig) -> ToolRestorer:
    if not config.tools.restore_command:
        return NullToolRestorer()
    return CommandToolRestorer(config.tools.restore_command, config.tools.restore_timeout)


class LockEntry(NamedTuple):
    commit: str
    branch: str


def read_lockfile(path: Path) -> dict[str, LockEntry]:
    """Read a ``{name: {commit, branch}}`` lockfile.

    A missing or malformed file yields no entries. Entries without a commit are skipped.
    """
    if not path.exists():
        logger.debug(f"Lockfile {path} not found")
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Could not parse lockfile {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Lockfile {path} is not a JSON object")
        return {}

    entries = {}
    for name, entry in data.items():
        if not isinstance(entry, dict) or not isinstance(entry.get("commit"), str) or not entry["commit"]:
            logger.debug(f"Skipping lockfile entry {name!r} without a commit")
            continue
        branch = entry.get("branch")
        entries[name] = LockEntry(entry["commit"], branch if isinstance(branch, str) and branch else "main")
    return entries


def same_commit(a: str, b: str) -> bool:
    """Compare two hashes that may be abbreviated to different lengths."""
    a, b = a.lower(), b.lower()
    return a.startswith(b) or b.startswith(a)


def classify_direction(installed_ts: int | None, lockfile_ts: int | None) -> PluginDirection:
    """An installed commit newer than the pin is ahead. Everything else, unknown included, is behind."""
    if installed_ts is not None and lockfile_ts is not None and installed_ts > lockfile_ts:
        return "ahead"
    return "behind"


class PluginLockfileReconciler:
    """Compares lockfile pins against what the plugin manager has installed."""

    def __init__(self, manager: PluginManager, lockfile: Path, timeouts: Timeouts | None = None) -> None:
        self.manager = manager
        self.lockfile = lockfile
        self.timeouts = timeouts

    async def _direction(self, name: str, installed: str, pinned: str) -> PluginDirection:
        path = self.manager.plugin_dir(name)
        if path is None:
            return "behind"
        git = GitController(path, self.timeouts)
        installed_ts, lockfile_ts = await asyncio.gather(git.commit_timestamp(installed), git.commit_timestamp(pinned))
        return classify_direction(installed_ts, lockfile_ts)

    async def reconcile(self) -> PluginReport:
        if not self.manager.is_available():
            logger.debug("Plugin manager not available, no plugin drift reported")
            return PluginReport()
        entries = read_lockfile(self.lockfile)
        if not entries:
            return PluginReport()

        names = list(entries)
        installed = await asyncio.gather(*(self.manager.installed_commit(name) for name in names))
        drifted = [
            (name, commit)
            for name, commit in zip(names, installed, strict=True)
            if commit and not same_commit(commit, entries[name].commit)
        ]
        directions = await asyncio.gather(
            *(self._direction(name, commit, entries[name].commit) for name, commit in drifted)
        )

        updates = [
            PluginUpdate(
                name=name,
                installed_commit=commit[:SHORT_COMMIT_LENGTH],
                lockfile_commit=entries[name].commit[:SHORT_COMMIT_LENGTH],
                branch=entries[name].branch,
                direction=direction,
            )
            for (name, commit), direction in zip(drifted, directions, strict=True)
        ]
        report = PluginReport.from_updates(updates)
        logger.debug(f"Plugin drift: {len(report.behind)} behind, {len(report.ahead)} ahead")
        return report
