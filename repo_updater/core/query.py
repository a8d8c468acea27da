"""Read-only git queries composed into repository and release snapshots."""

from __future__ import annotations

import asyncio
import functools
import re
from typing import TYPE_CHECKING

from loguru import logger

from repo_updater.core.errors import UpdaterError
from repo_updater.core.tags import compare_tags
from repo_updater.core.tools.git import validate_ref
from repo_updater.models.release import ReleaseDetails
from repo_updater.models.status import MAX_COMMIT_MESSAGE_LENGTH, Commit, RepoStatus

if TYPE_CHECKING:
    from repo_updater.core.config import UpdaterConfig
    from repo_updater.core.tools.git import GitController
    from repo_updater.models.release import GitHubRelease
    from repo_updater.models.status import LogOrigin

UNKNOWN_BRANCH = "unknown"

_FIELD_SEP = "\x1f"
_RELATIVE_LOG_FORMAT = "--format=format:" + _FIELD_SEP.join(("%h", "%s", "%an", "%ar"))
_ISO_LOG_FORMAT = "--format=format:" + _FIELD_SEP.join(("%h", "%s", "%an", "%cs"))
_TAG_FORMAT = "--format=" + _FIELD_SEP.join(("%(refname:short)", "%(*committerdate:unix)", "%(committerdate:unix)"))

_AHEAD_BEHIND_RE = re.compile(r"(\d+)\s+(\d+)")
_SHORTSTAT_RE = {
    "files": re.compile(r"(\d+) files? changed"),
    "insertions": re.compile(r"(\d+) insertions?\(\+\)"),
    "deletions": re.compile(r"(\d+) deletions?\(-\)"),
}
_SSH_REMOTE_RE = re.compile(r"^(?:ssh://)?git@([^:/]+)[:/](.+?)(?:\.git)?/?$")


def parse_commit_line(line: str) -> Commit | None:
    """Parse one delimiter-joined log line. Lines with fewer than four fields are dropped."""
    parts = line.split(_FIELD_SEP)
    if len(parts) < 4:  # noqa: PLR2004
        return None
    commit_hash, message, author, date = (part.strip() for part in parts[:4])
    if not commit_hash:
        return None
    message = message.replace("\r", "").split("\n", 1)[0]
    if len(message) > MAX_COMMIT_MESSAGE_LENGTH:
        message = message[: MAX_COMMIT_MESSAGE_LENGTH - 3] + "..."
    return Commit(hash=commit_hash, message=message, author=author, date=date)


def parse_commits(output: str) -> list[Commit]:
    return [commit for line in output.splitlines() if (commit := parse_commit_line(line))]


def parse_ahead_behind(output: str) -> tuple[int, int]:
    """Parse ``rev-list --left-right --count`` output. Anything unparseable is ``(0, 0)``."""
    match = _AHEAD_BEHIND_RE.search(output)
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


def parse_shortstat(output: str) -> tuple[int, int, int]:
    """Return (files changed, insertions, deletions) from ``diff --shortstat`` output."""
    values = []
    for pattern in _SHORTSTAT_RE.values():
        match = pattern.search(output)
        values.append(int(match.group(1)) if match else 0)
    return values[0], values[1], values[2]


def parse_numstat(output: str) -> tuple[int, int]:
    """Sum added and deleted line counts from ``diff --numstat`` output. Binary rows count as zero."""
    added = deleted = 0
    for line in output.splitlines():
        fields = line.split("\t")
        if len(fields) < 3:  # noqa: PLR2004
            continue
        if fields[0].isdigit():
            added += int(fields[0])
        if fields[1].isdigit():
            deleted += int(fields[1])
    return added, deleted


def parse_porcelain(output: str) -> list[tuple[str, str]]:
    """Return (status code, path) pairs from ``status --porcelain`` output."""
    entries = []
    for line in output.splitlines():
        if len(line) < 4:  # noqa: PLR2004
            continue
        code, path = line[:2], line[3:]
        if " -> " in path:
            path = path.split(" -> ", 1)[1]
        entries.append((code, path.strip('"')))
    return entries


def to_https_url(remote_url: str) -> str:
    """Convert an ssh or https remote into a browsable https URL."""
    url = remote_url.strip()
    ssh = _SSH_REMOTE_RE.match(url)
    if ssh:
        return f"https://{ssh.group(1)}/{ssh.group(2)}"
    return url.removesuffix("/").removesuffix(".git")


class RepositoryQueryEngine:
    """Read-only queries against the tracked repository.

    Every query runs under its own timeout. Queries used to assemble a status
    snapshot degrade to safe defaults instead of raising, so one failing
    sub-query never blocks the rest of the snapshot.
    """

    def __init__(self, git: GitController, config: UpdaterConfig) -> None:
        self.git = git
        self.config = config

    @property
    def main_branch(self) -> str:
        return self.config.main_branch

    @property
    def upstream(self) -> str:
        return self.config.upstream

    async def fetch(self) -> None:
        """Fetch from origin. Raises on failure or timeout."""
        await self.git.execute("fetch", "--quiet", "origin", timeout_key="fetch")

    async def current_commit(self) -> str:
        return await self.git.rev_parse("HEAD")

    async def current_branch(self) -> str:
        """Return the checked-out branch name, ``HEAD`` when detached, or ``unknown`` on failure."""
        try:
            branch = await self.git.output("rev-parse", "--abbrev-ref", "HEAD")
        except UpdaterError as e:
            logger.debug(f"Could not determine current branch: {e}")
            return UNKNOWN_BRANCH
        return branch or UNKNOWN_BRANCH

    async def ahead_behind(self, branch: str, upstream: str | None = None) -> tuple[int, int]:
        """Count commits only on ``branch`` (ahead) and only on ``upstream`` (behind)."""
        upstream = upstream or self.upstream
        try:
            validate_ref(branch)
            result = await self.git.execute(
                "rev-list", "--left-right", "--count", f"{branch}...{upstream}", check=False
            )
        except UpdaterError as e:
            logger.debug(f"Ahead/behind count failed for {branch}: {e}")
            return 0, 0
        if not result.ok:
            return 0, 0
        return parse_ahead_behind(result.stdout)

    async def repo_status(self) -> RepoStatus:
        """Fetch, then describe the current branch relative to the upstream main branch."""
        try:
            await self.fetch()
        except UpdaterError as e:
            logger.warning(f"Fetch failed while checking {self.git.repo_path}: {e}")
            return RepoStatus.failed()

        branch = await self.current_branch()
        ahead, behind = await self.ahead_behind(branch)
        try:
            commit = await self.current_commit()
        except UpdaterError:
            commit = None
        return RepoStatus(
            branch=branch,
            current_commit=commit,
            ahead_count=ahead,
            behind_count=behind,
            is_main_branch=branch == self.main_branch,
            has_local_changes=ahead > 0,
        )

    async def _log(
        self, *revisions: str, log_format: str = _RELATIVE_LOG_FORMAT, limit: int | None = None
    ) -> list[Commit]:
        count = limit if limit is not None else self.config.log_count
        try:
            for revision in revisions:
                validate_ref(revision.removeprefix("^"))
            result = await self.git.execute(
                "log", log_format, "-n", str(count), *revisions, "--", timeout_key="log", check=False
            )
        except UpdaterError as e:
            logger.debug(f"git log {revisions} failed: {e}")
            return []
        if not result.ok:
            return []
        return parse_commits(result.stdout)

    async def commit_log(self, branch: str, ahead_count: int, behind_count: int) -> tuple[list[Commit], LogOrigin]:
        """Pick which log to show from the branch and its ahead/behind counts.

        On the main branch: upstream commits not yet local when behind, else the local
        HEAD log. On any other branch: local commits not on main when ahead, else main
        commits not yet on the branch.
        """
        origin: LogOrigin
        if branch == self.main_branch:
            if behind_count > 0:
                revisions, origin = (self.upstream, "^HEAD"), "remote"
            else:
                revisions, origin = ("HEAD",), "local"
        elif ahead_count > 0:
            revisions, origin = ("HEAD", f"^{self.upstream}"), "local"
        else:
            revisions, origin = (self.upstream, "^HEAD"), "remote"
        return await self._log(*revisions), origin

    async def remote_commits_not_in_local(self, branch: str) -> list[Commit]:
        local = "HEAD" if branch in (UNKNOWN_BRANCH, "HEAD") else branch
        return await self._log(self.upstream, f"^{local}")

    async def _is_ancestor(self, commit: str, branch: str) -> bool:
        try:
            result = await self.git.execute("merge-base", "--is-ancestor", commit, branch, check=False)
        except UpdaterError:
            return False
        return result.ok

    async def commits_in_branch(self, commits: list[Commit], branch: str) -> dict[str, bool]:
        """Map each commit hash to whether the branch already contains it."""
        if not commits:
            return {}
        target = "HEAD" if branch in (UNKNOWN_BRANCH, "HEAD") else branch
        contained = await asyncio.gather(*(self._is_ancestor(c.hash, target) for c in commits))
        return {c.hash: flag for c, flag in zip(commits, contained, strict=True)}

    async def uncommitted_changes(self) -> list[tuple[str, str]]:
        result = await self.git.execute("status", "--porcelain", timeout_key="status")
        return parse_porcelain(result.stdout)

    async def has_uncommitted_changes(self) -> bool:
        """Check for working tree changes, discarding changes confined to lockfiles.

        When every changed path is on the lockfile allow-list, tracked lockfiles are
        checked out clean and the tree counts as unchanged. Any other change blocks.
        Raises when ``git status`` itself fails.
        """
        entries = await self.uncommitted_changes()
        if not entries:
            return False
        lockfiles = set(self.config.lockfile_paths)
        if any(path not in lockfiles for _, path in entries):
            return True

        tracked = [path for code, path in entries if code != "??"]
        if tracked:
            try:
                await self.git.execute("checkout", "--", *tracked, timeout_key="status")
            except UpdaterError as e:
                logger.warning(f"Could not discard lockfile changes {tracked}: {e}")
                return True
            logger.info(f"Discarded local lockfile changes: {', '.join(tracked)}")
        return False

    async def remote_url(self) -> str | None:
        try:
            result = await self.git.execute("remote", "get-url", "origin", check=False)
        except UpdaterError:
            return None
        url = result.stdout.strip()
        return url if result.ok and url else None

    async def version_tags(self, pattern: str | None = None) -> list[str]:
        """List tags matching the pattern, newest commit first.

        Ordering uses the timestamp of the commit each tag points to, never the tag
        name. Tags on commits with equal timestamps fall back to version order.
        """
        pattern = pattern or self.config.tag_pattern
        try:
            result = await self.git.execute("tag", "-l", pattern, _TAG_FORMAT, check=False)
        except UpdaterError as e:
            logger.debug(f"Listing tags failed: {e}")
            return []
        if not result.ok:
            return []

        stamped: list[tuple[int, str]] = []
        for line in result.stdout.splitlines():
            name, _, rest = line.partition(_FIELD_SEP)
            peeled, _, own = rest.partition(_FIELD_SEP)
            if not name:
                continue
            raw = peeled.strip() or own.strip()
            stamped.append((int(raw) if raw.isdigit() else 0, name.strip()))

        def _newest_first(a: tuple[int, str], b: tuple[int, str]) -> int:
            if a[0] != b[0]:
                return -1 if a[0] > b[0] else 1
            return -compare_tags(a[1], b[1])

        return [name for _, name in sorted(stamped, key=functools.cmp_to_key(_newest_first))]

    async def head_tag(self) -> str | None:
        """Return the release tag exactly on HEAD, if any."""
        try:
            result = await self.git.execute(
                "describe", "--tags", "--exact-match", "--match", self.config.tag_pattern, "HEAD", check=False
            )
        except UpdaterError:
            return None
        tag = result.stdout.strip()
        return tag if result.ok and tag else None

    async def is_detached_head(self) -> bool:
        try:
            result = await self.git.execute("symbolic-ref", "-q", "HEAD", check=False)
        except UpdaterError:
            return False
        return not result.ok

    async def latest_release_for_ref(self, ref: str) -> str | None:
        """Return the most recent release tag reachable from ``ref``."""
        try:
            validate_ref(ref)
            result = await self.git.execute(
                "describe", "--tags", "--abbrev=0", "--match", self.config.tag_pattern, ref, check=False
            )
        except UpdaterError:
            return None
        tag = result.stdout.strip()
        return tag if result.ok and tag else None

    async def commits_since_tag(self, tag: str | None) -> int:
        if not tag:
            return 0
        try:
            validate_ref(tag)
            out = await self.git.output("rev-list", "--count", f"{tag}..HEAD")
        except UpdaterError:
            return 0
        return int(out) if out.isdigit() else 0

    async def commits_since_tag_list(self, tag: str | None) -> list[Commit]:
        if not tag:
            return []
        return await self._log("HEAD", f"^{tag}")

    async def tag_commit_info(self, tag: str | None) -> Commit | None:
        """Return the commit a tag points to, dated as ``YYYY-MM-DD``."""
        if not tag:
            return None
        commits = await self._log(tag, log_format=_ISO_LOG_FORMAT, limit=1)
        return commits[0] if commits else None

    async def _diff(self, *args: str) -> str:
        try:
            result = await self.git.execute("diff", *args, timeout_key="log", check=False)
        except UpdaterError as e:
            logger.debug(f"git diff {args} failed: {e}")
            return ""
        return result.stdout if result.ok else ""

    async def release_details(
        self,
        tag: str,
        previous_tag: str | None = None,
        github: GitHubRelease | None = None,
    ) -> ReleaseDetails:
        """Describe one release: its commit and what changed since the previous release."""
        validate_ref(tag)
        details = ReleaseDetails(tag=tag, previous_tag=previous_tag)
        commit = await self.tag_commit_info(tag)
        if commit:
            details.commit = commit.hash
            details.message = commit.message
            details.date = commit.date

        if previous_tag:
            validate_ref(previous_tag)
            shortstat, plugin_stat, tool_stat = await asyncio.gather(
                self._diff("--shortstat", previous_tag, tag),
                self._diff("--numstat", previous_tag, tag, "--", self.config.plugin_lockfile),
                self._diff("--numstat", previous_tag, tag, "--", self.config.tool_lockfile),
            )
            details.files_changed, details.lines_added, details.lines_deleted = parse_shortstat(shortstat)
            details.plugin_changes = max(parse_numstat(plugin_stat))
            details.tool_changes = max(parse_numstat(tool_stat))

        if github:
            details.url = github.html_url
            details.title = github.name
            details.description = github.body
        return details
