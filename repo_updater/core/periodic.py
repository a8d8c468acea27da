"""Startup and periodic background update checks."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from loguru import logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from repo_updater.core.updater import Updater

OUTDATED_MESSAGE = "Your repository is out of date. Run `repo-updater status` for details."


def outdated_message(updater: Updater) -> str:
    repo = updater.state.repo
    if repo.ahead_count > 0:
        return (
            f"Your branch is ahead by {repo.ahead_count} commit(s) and behind by {repo.behind_count} commit(s). "
            "Run `repo-updater status` for details."
        )
    return OUTDATED_MESSAGE


class PeriodicChecker:
    """Runs the silent update check on a timer and reports when updates show up.

    Checks are skipped while the status cache is younger than the check interval,
    so several sessions watching the same repository share one check.
    """

    def __init__(self, updater: Updater, on_updates: Callable[[str], None] | None = None) -> None:
        self.updater = updater
        self.on_updates = on_updates
        self._timer_task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def interval(self) -> float:
        return self.updater.config.periodic_check.frequency_minutes * 60

    @property
    def running(self) -> bool:
        return self._running

    def _cache_is_fresh(self) -> bool:
        return self.updater.cache.is_fresh(
            self.updater.repo_key, self.updater.config.periodic_check.frequency_minutes
        )

    def _notify(self, message: str) -> None:
        if self.on_updates is None:
            return
        try:
            self.on_updates(message)
        except Exception as e:  # noqa: BLE001
            logger.error(f"Update notification callback error: {e}")

    async def check_once(self) -> bool:
        """Run one check unless the cache is fresh. Returns whether updates were found."""
        if self._cache_is_fresh():
            logger.debug("Status cache is fresh, skipping periodic check")
            return False
        has_updates = await self.updater.check_updates_silent()
        if has_updates:
            self._notify(outdated_message(self.updater))
        return has_updates

    async def startup_check(self) -> bool:
        """Check once at startup. A fresh cache that recorded pending updates still notifies."""
        config = self.updater.config
        if not config.check_updates_on_startup:
            return False
        if self._cache_is_fresh():
            cached = self.updater.cache.read(self.updater.repo_key)
            if cached is not None and cached.needs_update:
                self._notify(OUTDATED_MESSAGE)
                return True
            return False
        return await self.check_once()

    def _arm_timer(self) -> None:
        if self._timer_task:
            self._timer_task.cancel()
        if not self._running:
            return

        async def tick() -> None:
            await asyncio.sleep(self.interval)
            if not self._running:
                return
            try:
                await self.check_once()
            except Exception as e:  # noqa: BLE001
                logger.error(f"Periodic update check failed: {e}")
            self._timer_task = None
            self._arm_timer()

        self._timer_task = asyncio.create_task(tick())

    def start(self) -> None:
        """Arm the timer. Must be called from inside a running event loop."""
        if not self.updater.config.periodic_check.enabled:
            logger.info("Periodic update checks disabled in config")
            return
        self._running = True
        self._arm_timer()
        logger.info(f"Periodic update checks every {self.interval:g}s")

    def stop(self) -> None:
        self._running = False
        if self._timer_task:
            self._timer_task.cancel()
            self._timer_task = None
