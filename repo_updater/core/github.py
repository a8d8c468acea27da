"""GitHub release metadata, fetched through the gh CLI or curl."""

from __future__ import annotations

import json
import re
import shutil
import time
from typing import TYPE_CHECKING, Protocol

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from repo_updater.core.errors import UpdaterError
from repo_updater.core.tools.subprocess import run_command
from repo_updater.models.release import GitHubRelease

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

_GITHUB_URL_RE = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")


def parse_github_url(url: str | None) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from an https or ssh GitHub remote URL."""
    if not url:
        return None
    match = _GITHUB_URL_RE.search(url.strip())
    if not match:
        return None
    return match.group(1), match.group(2)


class ReleaseSource(Protocol):
    def is_available(self) -> bool: ...

    async def releases(self, remote_url: str | None) -> dict[str, GitHubRelease]: ...


class NullReleaseSource:
    def is_available(self) -> bool:
        return False

    async def releases(self, remote_url: str | None) -> dict[str, GitHubRelease]:  # noqa: ARG002
        return {}


class GitHubReleaseSource:
    """Lists releases of the repository's GitHub origin.

    Prefers ``gh`` (which also reaches private repositories) and falls back to
    unauthenticated ``curl``. Results are cached per TTL. Every failure yields an
    empty mapping, since release metadata only decorates the status view.
    """

    def __init__(
        self,
        cwd: Path,
        *,
        ttl: float = 300,
        timeout: float = 10,
        which: Callable[[str], str | None] = shutil.which,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cwd = cwd
        self.ttl = ttl
        self.timeout = timeout
        self._which = which
        self._clock = clock
        self._data: dict[str, GitHubRelease] = {}
        self._fetched_at: float | None = None

    def api_method(self) -> str | None:
        for tool in ("gh", "curl"):
            if self._which(tool):
                return tool
        return None

    def is_available(self) -> bool:
        return self.api_method() is not None

    def _command(self, method: str, owner: str, repo: str) -> list[str]:
        if method == "gh":
            return ["gh", "api", f"repos/{owner}/{repo}/releases"]
        return [
            "curl",
            "-s",
            "-H",
            "Accept: application/vnd.github.v3+json",
            f"https://api.github.com/repos/{owner}/{repo}/releases",
        ]

    async def releases(self, remote_url: str | None) -> dict[str, GitHubRelease]:
        now = self._clock()
        if self._data and self._fetched_at is not None and now - self._fetched_at < self.ttl:
            return dict(self._data)

        parsed = parse_github_url(remote_url)
        if parsed is None:
            logger.debug(f"Not a GitHub remote: {remote_url}")
            return {}
        method = self.api_method()
        if method is None:
            logger.debug("Neither gh nor curl is installed, skipping GitHub releases")
            return {}

        try:
            result = await run_command(self._command(method, *parsed), cwd=self.cwd, timeout=self.timeout)
        except UpdaterError as e:
            logger.debug(f"GitHub release request failed: {e}")
            return {}
        if not result.ok or not result.stdout.strip():
            logger.debug(f"GitHub release request failed with exit code {result.returncode}")
            return {}

        releases = self._parse(result.stdout)
        if releases is None:
            return {}
        self._data = releases
        self._fetched_at = now
        return dict(releases)

    @staticmethod
    def _parse(payload: str) -> dict[str, GitHubRelease] | None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            logger.debug(f"Unparseable GitHub response: {e}")
            return None
        if isinstance(data, dict):
            # Error payloads such as {"message": "Not Found"} for private repositories over curl
            logger.debug(f"GitHub API error: {data.get('message', 'unexpected response')}")
            return None
        if not isinstance(data, list):
            return None

        releases = {}
        for item in data:
            if not isinstance(item, dict) or not item.get("tag_name"):
                continue
            try:
                release = GitHubRelease.from_api(item)
            except PydanticValidationError as e:
                logger.debug(f"Skipping malformed release entry: {e}")
                continue
            releases[release.tag_name] = release
        return releases
