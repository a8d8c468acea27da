"""Tests for the async process runner."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from repo_updater.core.errors import CommandTimeoutError, ProcessError, SpawnError
from repo_updater.core.tools.subprocess import CommandResult, run_command


@pytest.mark.asyncio
async def test_run_command_captures_output(tmp_path: Path) -> None:
    result = await run_command([sys.executable, "-c", "print('hello')"], cwd=tmp_path, timeout=10)
    assert result.ok
    assert result.stdout.strip() == "hello"
    assert result.returncode == 0


@pytest.mark.asyncio
async def test_run_command_uses_explicit_cwd(tmp_path: Path) -> None:
    result = await run_command([sys.executable, "-c", "import os; print(os.getcwd())"], cwd=tmp_path, timeout=10)
    assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()


@pytest.mark.asyncio
async def test_non_zero_exit_is_returned_without_check(tmp_path: Path) -> None:
    result = await run_command([sys.executable, "-c", "import sys; sys.exit(3)"], cwd=tmp_path, timeout=10)
    assert not result.ok
    assert result.returncode == 3


@pytest.mark.asyncio
async def test_non_zero_exit_raises_with_check(tmp_path: Path) -> None:
    script = "import sys; sys.stderr.write('boom'); sys.exit(2)"
    with pytest.raises(ProcessError) as exc_info:
        await run_command([sys.executable, "-c", script], cwd=tmp_path, timeout=10, check=True)
    assert exc_info.value.returncode == 2
    assert "boom" in exc_info.value.output


@pytest.mark.asyncio
async def test_timeout_kills_and_raises_distinct_error(tmp_path: Path) -> None:
    with pytest.raises(CommandTimeoutError) as exc_info:
        await run_command([sys.executable, "-c", "import time; time.sleep(30)"], cwd=tmp_path, timeout=0.3)
    assert isinstance(exc_info.value, TimeoutError)
    assert not isinstance(exc_info.value, ProcessError)
    assert exc_info.value.timeout == 0.3


@pytest.mark.asyncio
async def test_missing_executable_raises_spawn_error(tmp_path: Path) -> None:
    with pytest.raises(SpawnError):
        await run_command(["definitely-not-a-real-binary-xyz"], cwd=tmp_path, timeout=5)


@pytest.mark.asyncio
async def test_arguments_are_not_interpreted_by_a_shell(tmp_path: Path) -> None:
    result = await run_command(
        [sys.executable, "-c", "import sys; print(sys.argv[1])", "$(echo pwned); ls"], cwd=tmp_path, timeout=10
    )
    assert result.stdout.strip() == "$(echo pwned); ls"


def test_command_result_output_joins_streams() -> None:
    result = CommandResult(cmd=("git",), returncode=1, stdout="out\n", stderr="  err\n")
    assert result.output == "out\nerr"
    assert CommandResult(cmd=("git",), returncode=0, stdout="", stderr="only err").output == "only err"
