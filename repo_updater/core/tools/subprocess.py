"""Shared async subprocess execution utility."""

from __future__ import annotations

import asyncio
import contextlib
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger

from repo_updater.core.errors import CommandTimeoutError, ProcessError, SpawnError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path


@dataclass(frozen=True)
class CommandResult:
    """Captured outcome of a finished command."""

    cmd: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Stdout and stderr joined, the way a terminal would show them."""
        return "\n".join(part for part in (self.stdout.strip(), self.stderr.strip()) if part)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        proc.kill()
    await proc.wait()


async def run_command(
    cmd: Sequence[str],
    *,
    cwd: Path,
    timeout: float,
    check: bool = False,
    log_on_error: bool = False,
    env: Mapping[str, str] | None = None,
) -> CommandResult:
    """Run a command without a shell and capture stdout and stderr.

    Args:
        cmd: Command and arguments to run. Arguments are passed verbatim, never through a shell.
        cwd: Working directory for the command. Always explicit.
        timeout: Seconds before the process is killed and CommandTimeoutError is raised.
        check: If True and the command exits non-zero, raise ProcessError.
        log_on_error: If True, log the output before raising on non-zero exit.
        env: Optional environment overrides, merged over the current environment.

    Raises:
        CommandTimeoutError: The command exceeded its timeout and was killed.
        SpawnError: The executable could not be started.
        ProcessError: Non-zero exit while ``check`` is set.

    """
    cmd = tuple(cmd)
    logger.debug(f"Running {cmd!r} in {cwd} (timeout {timeout:g}s)")
    proc_env = {**os.environ, **env} if env is not None else None
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=proc_env,
        )
    except OSError as e:
        msg = f"Failed to start {cmd[0]!r}: {e}"
        raise SpawnError(msg) from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError as e:
        await _kill(proc)
        logger.warning(f"Command {cmd!r} timed out after {timeout:g}s, process killed")
        raise CommandTimeoutError(cmd, timeout) from e
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    result = CommandResult(
        cmd=cmd,
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
    if not result.ok and check:
        if log_on_error:
            logger.error(f"Command {cmd!r} failed: {result.output}")
        msg = result.output or f"Command failed with exit code {result.returncode}"
        raise ProcessError(msg, cmd=cmd, returncode=result.returncode, output=result.output)
    return result
