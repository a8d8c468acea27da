"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import TYPE_CHECKING, Any, Protocol

import pytest

from repo_updater.core.config import UpdaterConfig, build_config
from repo_updater.core.query import RepositoryQueryEngine
from repo_updater.core.tools.git import GitController, clear_validation_cache
from tests.repo_controller import RepositoryController

if TYPE_CHECKING:
    from collections.abc import Generator


@pytest.fixture(autouse=True)
def _fresh_validation_cache() -> Generator[None]:
    clear_validation_cache()
    yield
    clear_validation_cache()


@pytest.fixture
def mock_repo() -> Generator[RepositoryController]:
    """Create a temporary directory with an initialized git repository."""
    tmp_dir = TemporaryDirectory()
    repo = RepositoryController.init(Path(tmp_dir.name))
    repo.add_and_commit(relative_path="README.md", content="# Test", message="Initial commit")
    yield repo
    tmp_dir.cleanup()


@dataclass
class RepoPair:
    """An upstream repository and a local clone tracking it as origin."""

    upstream: RepositoryController
    local: RepositoryController

    def upstream_commits(self, count: int, prefix: str = "upstream") -> list[str]:
        """Add ``count`` commits upstream, each touching its own file."""
        return [
            self.upstream.add_and_commit(f"{prefix}_{i}.txt", f"change {i}\n", f"{prefix} change {i}")
            for i in range(count)
        ]


@pytest.fixture
def repo_pair(tmp_path: Path) -> RepoPair:
    upstream = RepositoryController.init(tmp_path / "upstream")
    upstream.add_and_commit("README.md", "# Test\n", "Initial commit")
    upstream.add_and_commit("lazy-lock.json", "{}\n", "Add plugin lockfile")
    local = upstream.clone(tmp_path / "local")
    return RepoPair(upstream=upstream, local=local)


class ConfigFactory(Protocol):
    """Callable that builds an UpdaterConfig isolated from the user's home directory."""

    def __call__(self, repo: RepositoryController, **overrides: Any) -> UpdaterConfig: ...  # noqa: ANN401


@pytest.fixture
def make_config(tmp_path: Path) -> ConfigFactory:
    def _factory(repo: RepositoryController, **overrides: Any) -> UpdaterConfig:  # noqa: ANN401
        values: dict[str, Any] = {
            "repo_path": str(repo.path),
            "cache_dir": str(tmp_path / "cache"),
            "github": {"enabled": False},
            "plugins": {"root": str(tmp_path / "no-plugins")},
            "check_updates_on_startup": True,
        }
        values.update(overrides)
        return build_config(**values)

    return _factory


@pytest.fixture
def config(repo_pair: RepoPair, make_config: ConfigFactory) -> UpdaterConfig:
    return make_config(repo_pair.local)


@pytest.fixture
def git_controller(config: UpdaterConfig) -> GitController:
    return GitController(config.repo_path, config.timeouts)


@pytest.fixture
def query(git_controller: GitController, config: UpdaterConfig) -> RepositoryQueryEngine:
    return RepositoryQueryEngine(git_controller, config)
