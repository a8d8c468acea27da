from __future__ import annotations

import sys
from typing import TYPE_CHECKING

import pytest
from typer.testing import CliRunner

from repo_updater.cli.main import app, main

if TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import RepoPair

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(
        f"""
repo_path = "{tmp_path / 'unused'}"
cache_dir = "{tmp_path / 'cache'}"

[github]
enabled = false

[plugins]
root = "{tmp_path / 'no-plugins'}"
"""
    )
    return path


def _invoke(config_file: Path, repo_pair: RepoPair, *args: str):  # noqa: ANN202
    return runner.invoke(app, ["--config", str(config_file), "--path", str(repo_pair.local.path), *args])


def test_check_up_to_date(config_file: Path, repo_pair: RepoPair) -> None:
    result = _invoke(config_file, repo_pair, "check")
    assert result.exit_code == 0
    assert "Up to date" in result.output


def test_check_with_updates_exits_one(config_file: Path, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(2)
    result = _invoke(config_file, repo_pair, "check")
    assert result.exit_code == 1
    assert "Updates available: 2 commits updates" in result.output


def test_status(config_file: Path, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(1)
    result = _invoke(config_file, repo_pair, "status")
    assert result.exit_code == 0
    assert f"Branch: main @ {repo_pair.local.head()[:7]}" in result.output
    assert "Updates available" in result.output


def test_update(config_file: Path, repo_pair: RepoPair) -> None:
    repo_pair.upstream_commits(2)
    result = _invoke(config_file, repo_pair, "update")
    assert result.exit_code == 0
    assert "Successfully pulled changes from origin/main" in result.output
    assert repo_pair.local.head() == repo_pair.upstream.head()


def test_update_conflict_exits_one(config_file: Path, repo_pair: RepoPair) -> None:
    repo_pair.upstream.add_and_commit("README.md", "# Upstream edit\n", "Edit README upstream")
    saved = repo_pair.local.add_and_commit("README.md", "# Local edit\n", "Edit README locally")
    result = _invoke(config_file, repo_pair, "update")
    assert result.exit_code == 1
    assert repo_pair.local.head() == saved


def test_versions_and_switch(config_file: Path, repo_pair: RepoPair) -> None:
    repo_pair.local.tag("v1.0.0")

    result = _invoke(config_file, repo_pair, "versions")
    assert result.exit_code == 0
    assert "v1.0.0" in result.output

    result = _invoke(config_file, repo_pair, "switch", "v1.0.0")
    assert result.exit_code == 0
    assert "Switched to v1.0.0" in result.output
    assert repo_pair.local.branch() == "HEAD"


def test_versions_without_tags(config_file: Path, repo_pair: RepoPair) -> None:
    result = _invoke(config_file, repo_pair, "versions")
    assert result.exit_code == 0
    assert "No release tags found" in result.output


@pytest.mark.parametrize("args", [["switch"], ["switch", "v1.0.0", "--latest"]])
def test_switch_needs_exactly_one_target(config_file: Path, repo_pair: RepoPair, args: list[str]) -> None:
    result = _invoke(config_file, repo_pair, *args)
    assert result.exit_code == 2
    assert "Give either a TAG or --latest" in result.output


def test_release_unknown_tag(config_file: Path, repo_pair: RepoPair) -> None:
    result = _invoke(config_file, repo_pair, "release", "v9.9.9")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_check_outside_repository_exits_one(config_file: Path, tmp_path: Path) -> None:
    plain = tmp_path / "plain"
    plain.mkdir()
    result = runner.invoke(app, ["--config", str(config_file), "--path", str(plain), "check"])
    assert result.exit_code == 1
    assert "Could not determine repository status" in result.output


def test_dangerous_path_is_rejected(config_file: Path) -> None:
    result = runner.invoke(app, ["--config", str(config_file), "--path", "/tmp/repo;rm -rf ~", "check"])
    assert result.exit_code == 2
    assert "Error" in result.output


def test_main_is_working(config_file: Path, repo_pair: RepoPair) -> None:
    """Test that main function exits properly."""
    original_argv = sys.argv.copy()
    try:
        sys.argv = ["repo-updater", "--config", str(config_file), "--path", str(repo_pair.local.path), "check"]
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 0
    finally:
        sys.argv = original_argv
