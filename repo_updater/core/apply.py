"""Fetch, merge or pull, verify, and roll back on failure."""

from __future__ import annotations

import asyncio
import contextlib
from enum import StrEnum
from typing import TYPE_CHECKING

from loguru import logger

from repo_updater.core.errors import (
    ConflictDetectedError,
    ProcessError,
    RollbackFailedError,
    UpdaterError,
)
from repo_updater.core.query import UNKNOWN_BRANCH
from repo_updater.core.result import UpdateResult

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from repo_updater.core.config import TimeoutKey
    from repo_updater.core.query import RepositoryQueryEngine

STASH_MESSAGE = "repo-updater-auto-stash"

# git can exit 0 and still print these, so the exit code alone is not proof of success.
FAILURE_MARKERS = (
    "CONFLICT",
    "Automatic merge failed",
    "merge failed",
    "could not apply",
    "error:",
    "fatal:",
    "Cannot merge",
    "Merge conflict",
    "rebase failed",
)


class ApplyState(StrEnum):
    IDLE = "idle"
    FETCHING_BRANCH = "fetching_branch"
    SAVING_ROLLBACK_POINT = "saving_rollback_point"
    CHECKING_WORKING_TREE = "checking_working_tree"
    FETCHING = "fetching"
    APPLYING = "applying"
    SUCCESS = "success"
    ROLLING_BACK = "rolling_back"


def find_failure_marker(output: str) -> str | None:
    """Return the first conflict or failure marker found in git output."""
    for marker in FAILURE_MARKERS:
        if marker in output:
            return marker
    return None


class UpdateApplier:
    """Brings the current branch up to date with the upstream main branch.

    One ``run()`` walks the states in order. Nothing is mutated before the rollback
    point is saved; once the apply step starts, the run ends either in SUCCESS or
    with the repository reset to the rollback point.
    """

    def __init__(self, query: RepositoryQueryEngine) -> None:
        self.query = query
        self.git = query.git
        self.config = query.config
        self.state = ApplyState.IDLE
        self.history: list[ApplyState] = []
        self.rolled_back = False
        self._stash_pending = False

    def _enter(self, state: ApplyState) -> None:
        logger.debug(f"Update {self.state} -> {state}")
        self.state = state
        self.history.append(state)

    async def run(self) -> UpdateResult:
        """Apply upstream changes.

        Raises:
            ProcessError: A step failed. If it failed after mutation began, the repository was rolled back.
            CommandTimeoutError: A step timed out.
            ConflictDetectedError: The apply output carried conflict markers; the repository was rolled back.
            RollbackFailedError: Restoring the rollback point failed.

        """
        self.history.clear()
        self.rolled_back = False
        self._stash_pending = False
        try:
            return await self._run()
        finally:
            self._enter(ApplyState.IDLE)

    async def _run(self) -> UpdateResult:
        self._enter(ApplyState.FETCHING_BRANCH)
        branch = await self.query.current_branch()
        if branch == UNKNOWN_BRANCH:
            msg = "Failed to get current branch"
            raise ProcessError(msg)
        if branch == "HEAD":
            msg = "Cannot update a detached HEAD. Check out a branch or switch versions instead."
            raise ProcessError(msg)

        self._enter(ApplyState.SAVING_ROLLBACK_POINT)
        try:
            saved_head = await self.git.rev_parse("HEAD")
        except UpdaterError as e:
            msg = f"Failed to save current state: {e}"
            raise ProcessError(msg) from e

        self._enter(ApplyState.CHECKING_WORKING_TREE)
        try:
            dirty = await self.query.has_uncommitted_changes()
        except UpdaterError as e:
            msg = f"Failed to check working directory status: {e}"
            raise ProcessError(msg) from e
        on_main = branch == self.config.main_branch
        if dirty and on_main and not self.config.git.autostash:
            msg = "Uncommitted changes present and autostash is disabled. Commit or stash your changes first."
            raise ProcessError(msg)

        self._enter(ApplyState.FETCHING)
        await self._fetch()

        self._enter(ApplyState.APPLYING)
        async with self._revert_on_failure(saved_head):
            output = await self._apply(branch, stash=dirty and not on_main)

        self._enter(ApplyState.SUCCESS)
        try:
            new_head = await self.git.rev_parse("HEAD")
        except UpdaterError:
            new_head = None
        up_to_date = "Already up to date" in output or new_head == saved_head
        if up_to_date:
            message = f"Already up to date with {self.config.upstream}"
        elif on_main:
            message = f"Successfully pulled changes from {self.config.upstream}"
        else:
            message = f"Successfully merged {self.config.upstream} into {branch}"
        logger.info(message)
        return UpdateResult(
            branch=branch,
            old_commit=saved_head,
            new_commit=new_head,
            message=message,
            already_up_to_date=up_to_date,
        )

    async def _fetch(self) -> None:
        try:
            await self.git.execute("fetch", "origin", self.config.main_branch, timeout_key="fetch")
        except ProcessError as e:
            msg = f"Failed to fetch updates: {e}"
            raise ProcessError(msg, cmd=e.cmd, returncode=e.returncode, output=e.output) from e

    async def _step(self, *args: str, timeout_key: TimeoutKey) -> str:
        try:
            result = await self.git.execute(*args, timeout_key=timeout_key, check=True)
        except ProcessError as e:
            if "CONFLICT" in e.output:
                msg = f"Merge conflict detected while applying {self.config.upstream}"
                raise ConflictDetectedError(msg) from e
            msg = f"Failed to update: {e}"
            raise ProcessError(msg, cmd=e.cmd, returncode=e.returncode, output=e.output) from e
        output = result.output
        marker = find_failure_marker(output)
        if marker:
            msg = f"Merge conflict or error detected ({marker!r}) while applying {self.config.upstream}"
            raise ConflictDetectedError(msg)
        return output

    async def _stash_ref(self) -> str | None:
        result = await self.git.execute("rev-parse", "-q", "--verify", "refs/stash", check=False)
        return result.stdout.strip() if result.ok else None

    async def _stash_push(self) -> bool:
        """Stash local changes. Returns whether a new stash entry was created.

        ``stash push`` exits 0 without saving anything when only untracked files
        differ, so the stash ref is compared instead of trusting the exit code.
        """
        before = await self._stash_ref()
        await self._step("stash", "push", "-m", STASH_MESSAGE, timeout_key="default")
        return await self._stash_ref() != before

    async def _pop_stash(self) -> bool:
        try:
            await self.git.execute("stash", "pop")
        except UpdaterError as e:
            logger.warning(f"Local changes remain stashed as {STASH_MESSAGE!r}: {e}")
            return False
        return True

    async def _apply(self, branch: str, *, stash: bool) -> str:
        outputs = []
        if stash:
            self._stash_pending = await self._stash_push()

        if branch == self.config.main_branch:
            flags = []
            if self.config.git.rebase:
                flags.append("--rebase")
            if self.config.git.autostash:
                flags.append("--autostash")
            outputs.append(await self._step("pull", *flags, "origin", self.config.main_branch, timeout_key="pull"))
        else:
            outputs.append(await self._step("merge", self.config.upstream, "--no-edit", timeout_key="merge"))

        if self._stash_pending:
            outputs.append(await self._step("stash", "pop", timeout_key="default"))
            self._stash_pending = False
        return "\n".join(outputs)

    @contextlib.asynccontextmanager
    async def _revert_on_failure(self, saved_head: str) -> AsyncGenerator[str]:
        """Roll back to ``saved_head`` if the body fails, then re-raise."""
        try:
            yield saved_head
        except (UpdaterError, asyncio.CancelledError) as e:
            await self._roll_back(saved_head, e)
            raise

    async def _roll_back(self, saved_head: str, cause: BaseException) -> None:
        self._enter(ApplyState.ROLLING_BACK)
        logger.warning(f"Update failed ({cause}), rolling back to {saved_head[:7]}")
        for abort in (("merge", "--abort"), ("rebase", "--abort")):
            with contextlib.suppress(UpdaterError):
                await self.git.execute(*abort, check=False)
        # Aborting an autostashed pull puts local changes back in the working tree.
        try:
            kept_changes = await self._stash_push()
        except UpdaterError as e:
            logger.warning(f"Could not stash local changes before rollback: {e}")
            kept_changes = False
        try:
            await self.git.execute("reset", "--hard", saved_head)
        except UpdaterError as e:
            msg = f"{cause} Rollback also failed: {e}"
            logger.critical(msg)
            raise RollbackFailedError(msg, rollback_commit=saved_head) from e

        if kept_changes:
            await self._pop_stash()
        if self._stash_pending and await self._pop_stash():
            self._stash_pending = False
        self.rolled_back = True
        logger.info(f"Repository restored to {saved_head[:7]}")
