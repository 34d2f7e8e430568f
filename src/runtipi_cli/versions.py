"""Version tokens and compatibility checks.

A version token given on the command line is either one of the sentinels
``latest`` / ``nightly`` or a strict semantic version with an optional
``v``/``V`` prefix.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from runtipi_cli.errors import MajorVersionBlocked, VersionParseError

# Strict semver 2.0.0: no leading zeros, optional pre-release and build metadata
_NUM = r"0|[1-9]\d*"
_PRE_ID = r"(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
_SEMVER_RE = re.compile(
    rf"^(?P<major>{_NUM})\.(?P<minor>{_NUM})\.(?P<patch>{_NUM})"
    rf"(?:-(?P<pre>{_PRE_ID}(?:\.{_PRE_ID})*))?"
    r"(?:\+(?P<build>[0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?\Z",
    re.ASCII,
)

LATEST = "latest"
NIGHTLY = "nightly"


@dataclass(frozen=True)
class SpecificVersion:
    """An exact release version."""

    major: int
    minor: int
    patch: int
    prerelease: str = ""
    build: str = ""

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text


@dataclass(frozen=True)
class LatestVersion:
    """The newest stable release."""

    def __str__(self) -> str:
        return LATEST


@dataclass(frozen=True)
class NightlyVersion:
    """The rolling nightly build."""

    def __str__(self) -> str:
        return NIGHTLY


VersionSpec = SpecificVersion | LatestVersion | NightlyVersion


def _strip_prefix(value: str) -> str:
    if value[:1] in ("v", "V"):
        return value[1:]
    return value


def parse_version(token: str) -> VersionSpec:
    """Parse a user supplied version token.

    Raises:
        VersionParseError: if the token is not a sentinel or strict semver.
            Surrounding whitespace is not trimmed.
    """
    if token == LATEST:
        return LatestVersion()
    if token == NIGHTLY:
        return NightlyVersion()

    m = _SEMVER_RE.match(_strip_prefix(token))
    if m is None:
        raise VersionParseError(token)
    return SpecificVersion(
        major=int(m.group("major")),
        minor=int(m.group("minor")),
        patch=int(m.group("patch")),
        prerelease=m.group("pre") or "",
        build=m.group("build") or "",
    )


def normalize_installed_version(raw: str) -> str:
    """Strip the optional ``v`` prefix from the recorded ``TIPI_VERSION``."""
    return _strip_prefix(raw.strip())


def _major(version: str) -> int | None:
    head = version.split(".", 1)[0]
    return int(head) if head.isascii() and head.isdigit() else None


def is_major_bump(current: str, target: str) -> bool:
    """Return True if *target*'s leading component is greater than *current*'s.

    Components are compared as integers, so ``9`` -> ``10`` is a bump.
    Non-numeric versions such as ``nightly`` cannot be compared and never
    count as a bump.
    """
    current_major = _major(current)
    target_major = _major(target)
    if current_major is None or target_major is None:
        return False
    return target_major > current_major


def ensure_not_major_bump(current: str, target: str) -> None:
    """Raise ``MajorVersionBlocked`` when *target* needs a manual upgrade."""
    if is_major_bump(current, target):
        raise MajorVersionBlocked(current, target)
