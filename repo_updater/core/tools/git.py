"""Git operations for repo-updater."""

from __future__ import annotations

import re
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger

from repo_updater.core.config import Timeouts
from repo_updater.core.errors import UpdaterError, ValidationError
from repo_updater.core.tools.subprocess import CommandResult, run_command

if TYPE_CHECKING:
    from repo_updater.core.config import TimeoutKey

_UNSAFE_REF_CHARS = re.compile(r"[\s;&|`$(){}*?<>\\'\"~^:\[]")
_VALIDATION_TIMEOUT = 5.0

_validation_cache: dict[Path, bool] = {}


def validate_ref(name: str) -> str:
    """Reject ref or tag names that could be read as options or carry shell metacharacters."""
    if not name or name.startswith("-") or ".." in name or _UNSAFE_REF_CHARS.search(name):
        msg = f"Invalid ref name: {name!r}"
        raise ValidationError(msg)
    return name


def clear_validation_cache() -> None:
    """Forget which paths were already validated as git repositories."""
    _validation_cache.clear()


def get_validation_status(path: Path) -> bool | None:
    """Return the memoised validation result, or None when the path was never checked."""
    return _validation_cache.get(path)


class GitController:
    """Runs git in one repository, always with that repository as the working directory."""

    def __init__(self, repo_path: Path, timeouts: Timeouts | None = None) -> None:
        """Initialize GitController with repository path and timeout budget."""
        self.repo_path = repo_path
        self.timeouts = timeouts or Timeouts()

    async def execute(
        self,
        *args: str,
        timeout_key: TimeoutKey = "default",
        check: bool = True,
    ) -> CommandResult:
        """Run a git command in the repository directory."""
        return await run_command(
            ["git", *args],
            cwd=self.repo_path,
            timeout=self.timeouts.for_key(timeout_key),
            check=check,
            env={"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"},
        )

    async def output(self, *args: str, timeout_key: TimeoutKey = "status") -> str:
        """Run a git command and return its stripped stdout, raising on failure."""
        result = await self.execute(*args, timeout_key=timeout_key, check=True)
        return result.stdout.strip()

    async def rev_parse(self, ref: str = "HEAD") -> str:
        """Resolve a ref to a full commit hash."""
        sha = await self.output("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        if not sha:
            msg = f"Could not resolve {ref!r}"
            raise ValidationError(msg)
        return sha

    async def commit_timestamp(self, commit: str) -> int | None:
        """Return the committer UNIX timestamp of a commit, or None when it cannot be resolved."""
        try:
            validate_ref(commit)
            out = await self.output("show", "-s", "--format=%ct", commit)
        except UpdaterError as e:
            logger.debug(f"No timestamp for {commit} in {self.repo_path}: {e}")
            return None
        try:
            return int(out.splitlines()[0])
        except (IndexError, ValueError):
            return None

    async def is_repository(self) -> bool:
        """Check that the path is inside a git work tree. Results are memoised per path."""
        cached = _validation_cache.get(self.repo_path)
        if cached is not None:
            return cached

        git_dir = self.repo_path / ".git"
        if not git_dir.exists():
            _validation_cache[self.repo_path] = False
            return False

        try:
            result = await run_command(
                ["git", "rev-parse", "--is-inside-work-tree"],
                cwd=self.repo_path,
                timeout=_VALIDATION_TIMEOUT,
            )
        except UpdaterError as e:
            logger.debug(f"Repository validation failed for {self.repo_path}: {e}")
            valid = False
        else:
            valid = result.ok and result.stdout.strip() == "true"
        _validation_cache[self.repo_path] = valid
        return valid
