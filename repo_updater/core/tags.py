"""Version tag parsing and ordering."""

from __future__ import annotations

import re
from typing import Any, NamedTuple

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z.\-]+))?$")


class TagVersion(NamedTuple):
    """Numeric release components plus an optional prerelease suffix."""

    major: int
    minor: int
    patch: int
    prerelease: str | None

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)


def parse_tag(tag: str) -> TagVersion | None:
    """Parse ``v1.2.3`` or ``1.2.3-rc1`` style tags. Returns None for anything else."""
    match = _VERSION_RE.match(tag.strip())
    if not match:
        return None
    major, minor, patch, prerelease = match.groups()
    return TagVersion(int(major), int(minor), int(patch), prerelease)


def _cmp(a: Any, b: Any) -> int:  # noqa: ANN401
    return (a > b) - (a < b)


def compare_tags(a: str, b: str) -> int:
    """Three-way compare two tag names.

    Release components compare numerically. With equal components a tag without a
    prerelease suffix sorts above any prerelease, and two prerelease suffixes compare
    as plain strings, so ``pre10`` sorts below ``pre9``. Tags that do not parse sort
    below every parsed tag and compare lexically among themselves.
    """
    va, vb = parse_tag(a), parse_tag(b)
    if va is None or vb is None:
        if va is None and vb is None:
            return _cmp(a, b)
        return -1 if va is None else 1
    if va.release != vb.release:
        return _cmp(va.release, vb.release)
    if va.prerelease == vb.prerelease:
        return 0
    if va.prerelease is None:
        return 1
    if vb.prerelease is None:
        return -1
    return _cmp(va.prerelease, vb.prerelease)
