"""Semantic version parsing, precedence and increment rules."""

from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, Tuple, TypeVar

logger = logging.getLogger("tabula.versions")

_SEMVER_RE = re.compile(
    r"^[v=]?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*)(?:\.(?:0|[1-9]\d*|\d*[A-Za-z-][0-9A-Za-z-]*))*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

CHANGE_KINDS = ("major", "minor", "patch")
DEFAULT_VERSION = "1.0.0"

Version = Tuple[int, int, int, Tuple[str, ...]]
T = TypeVar("T")


def parse_version(value: object) -> Version | None:
    """Parse ``major.minor.patch[-pre][+build]``; build metadata is dropped.

    Returns None for anything that is not a valid semantic version.
    """
    if not isinstance(value, str):
        return None
    match = _SEMVER_RE.match(value.strip())
    if not match:
        return None
    major, minor, patch, pre, _build = match.groups()
    prerelease = tuple(pre.split(".")) if pre else ()
    return (int(major), int(minor), int(patch), prerelease)


def format_version(version: Version) -> str:
    major, minor, patch, prerelease = version
    text = f"{major}.{minor}.{patch}"
    if prerelease:
        text += "-" + ".".join(prerelease)
    return text


def _compare_identifiers(left: str, right: str) -> int:
    left_num = left.isdigit()
    right_num = right.isdigit()
    if left_num and right_num:
        a, b = int(left), int(right)
        return (a > b) - (a < b)
    # numeric identifiers always have lower precedence than alphanumeric ones
    if left_num:
        return -1
    if right_num:
        return 1
    return (left > right) - (left < right)


def _compare_prerelease(left: Tuple[str, ...], right: Tuple[str, ...]) -> int:
    if not left and not right:
        return 0
    if not left:
        return 1
    if not right:
        return -1
    for a, b in zip(left, right):
        result = _compare_identifiers(a, b)
        if result:
            return result
    return (len(left) > len(right)) - (len(left) < len(right))


def _compare_parsed(left: Version, right: Version) -> int:
    if left[:3] != right[:3]:
        return 1 if left[:3] > right[:3] else -1
    return _compare_prerelease(left[3], right[3])


def compare_versions(a: str | None, b: str | None) -> int:
    """Return 1 if ``a`` is newer than ``b``, -1 if older, 0 if equal.

    Missing or unparsable input fails open: ``a`` is reported as newer.
    """
    left = parse_version(a)
    right = parse_version(b)
    if left is None or right is None:
        logger.debug("version_compare_fail_open a=%r b=%r", a, b)
        return 1
    return _compare_parsed(left, right)


def is_update_needed(local_version: str | None, remote_version: str | None) -> bool:
    if not local_version or not remote_version:
        return True
    return compare_versions(remote_version, local_version) > 0


def increment_version(current: str | None, kind: str = "patch") -> str:
    if kind not in CHANGE_KINDS:
        raise ValueError(f"Unknown change kind: {kind}")
    parsed = parse_version(current)
    if parsed is None:
        return DEFAULT_VERSION
    major, minor, patch, prerelease = parsed
    # a pre-release is bumped to the release it precedes when that release
    # already matches the requested component
    if kind == "major":
        if prerelease and minor == 0 and patch == 0:
            return format_version((major, 0, 0, ()))
        return format_version((major + 1, 0, 0, ()))
    if kind == "minor":
        if prerelease and patch == 0:
            return format_version((major, minor, 0, ()))
        return format_version((major, minor + 1, 0, ()))
    if prerelease:
        return format_version((major, minor, patch, ()))
    return format_version((major, minor, patch + 1, ()))


def pick_latest(items: Iterable[T], version_of: Callable[[T], object]) -> T | None:
    """Item with the greatest valid version.

    The first item wins a tie. Items with invalid versions only win when no
    item has a valid one.
    """
    latest: T | None = None
    latest_parsed: Version | None = None
    for index, item in enumerate(items):
        parsed = parse_version(version_of(item))
        if index == 0:
            latest, latest_parsed = item, parsed
            continue
        if parsed is None:
            continue
        if latest_parsed is None or _compare_parsed(parsed, latest_parsed) > 0:
            latest, latest_parsed = item, parsed
    return latest
