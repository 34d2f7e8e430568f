"""Release lookup against the GitHub releases API.

Finds the release matching a requested version and the build asset for the
current machine.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from runtipi_cli import __version__
from runtipi_cli.errors import (
    AssetNotFoundError,
    ReleaseNetworkError,
    ReleaseNotFoundError,
    VersionNotFoundError,
)
from runtipi_cli.logging import get_logger
from runtipi_cli.versions import LatestVersion, VersionSpec

log = get_logger("runtipi_cli.releases")

ARCH_X86_64 = "x86_64"
ARCH_AARCH64 = "aarch64"
_ARM64_ALIASES = frozenset({"arm64", "aarch64"})

KNOWN_PLATFORMS = ("linux", "darwin", "windows")
KNOWN_ARCHITECTURES = (ARCH_X86_64, ARCH_AARCH64)

PAGE_SIZE = 100


@dataclass(frozen=True)
class AssetDescriptor:
    """One platform/architecture build attached to a release."""

    name: str
    platform: str
    architecture: str
    download_url: str

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> AssetDescriptor:
        name = str(data.get("name", ""))
        lowered = name.lower()
        platform = next((p for p in KNOWN_PLATFORMS if p in lowered), "")
        architecture = next((a for a in KNOWN_ARCHITECTURES if a in lowered), "")
        # The API url serves raw bytes when asked for application/octet-stream
        url = str(data.get("url") or data.get("browser_download_url") or "")
        return cls(name=name, platform=platform, architecture=architecture, download_url=url)


@dataclass(frozen=True)
class ReleaseDescriptor:
    """Metadata of one published release."""

    version: str  # tag without the leading 'v'
    tag: str
    assets: tuple[AssetDescriptor, ...] = field(default_factory=tuple)
    prerelease: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ReleaseDescriptor:
        tag = str(data.get("tag_name", ""))
        return cls(
            version=strip_tag_prefix(tag),
            tag=tag,
            assets=tuple(AssetDescriptor.from_api(a) for a in data.get("assets") or []),
            prerelease=bool(data.get("prerelease", False)),
        )


def strip_tag_prefix(tag: str) -> str:
    return tag[1:] if tag[:1] in ("v", "V") else tag


def normalize_architecture(machine: str) -> str:
    """Map a detected machine type onto a release architecture.

    Only two builds are published: 64-bit ARM machines get ``aarch64``,
    every other machine gets ``x86_64``.
    """
    return ARCH_AARCH64 if machine.lower() in _ARM64_ALIASES else ARCH_X86_64


def match_release(version: str, releases: Iterable[ReleaseDescriptor]) -> ReleaseDescriptor:
    """Return the release whose version is exactly *version*."""
    for release in releases:
        if release.version == version:
            return release
    raise VersionNotFoundError(version)


def select_asset(
    release: ReleaseDescriptor, architecture: str, platform: str = "linux"
) -> AssetDescriptor:
    """Pick the asset built for *architecture* on *platform*.

    Raises:
        AssetNotFoundError: if the release has no such build.
    """
    matches = [
        asset
        for asset in release.assets
        if asset.architecture == architecture and asset.platform == platform
    ]
    if not matches:
        raise AssetNotFoundError(release.version, architecture, platform)
    if len(matches) > 1:
        log.warning(
            "release_multiple_assets_matched",
            version=release.version,
            architecture=architecture,
            platform=platform,
            assets=[a.name for a in matches],
        )
    return matches[0]


class ReleaseIndex:
    """Client for the release index of the CLI repository.

    Args:
        owner: Owner of the repository publishing CLI builds.
        repo: Name of the repository publishing CLI builds.
        latest_repo: ``owner/name`` whose latest stable release defines
            what ``latest`` means.
        api_url: GitHub API base URL.
        token: Optional bearer token to lift anonymous rate limits.
        timeout: Per-request timeout in seconds.
        client: Pre-built ``httpx.AsyncClient`` (tests inject a mock transport).
    """

    def __init__(
        self,
        owner: str,
        repo: str,
        latest_repo: str,
        *,
        api_url: str = "https://api.github.com",
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owner = owner
        self._repo = repo
        self._latest_repo = latest_repo
        self._api_url = api_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": f"runtipi-cli/{__version__}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, follow_redirects=True)
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        client = await self._get_client()
        try:
            resp = await client.get(url, headers=self._headers(), params=params)
        except httpx.RequestError as exc:
            log.warning("release_index_unreachable", url=url, error=str(exc))
            raise ReleaseNetworkError(
                f"Could not reach the release index: {exc}", details=url
            ) from exc

        if not resp.is_success:
            log.warning("release_index_error", url=url, status=resp.status_code)
            raise ReleaseNotFoundError(
                f"Release index answered HTTP {resp.status_code}",
                details=resp.text[:500],
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ReleaseNotFoundError("Release index returned invalid JSON") from exc

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def resolve_latest(self) -> str:
        """Return the version of the latest stable release, without ``v``."""
        data = await self._get_json(f"{self._api_url}/repos/{self._latest_repo}/releases/latest")
        tag = data.get("tag_name") if isinstance(data, dict) else None
        if not tag:
            raise ReleaseNotFoundError("Failed to fetch latest release")
        version = strip_tag_prefix(str(tag))
        log.debug("release_latest_resolved", version=version)
        return version

    async def list_releases(self) -> list[ReleaseDescriptor]:
        """Return every published release in the order the index lists them."""
        url = f"{self._api_url}/repos/{self._owner}/{self._repo}/releases"
        releases: list[ReleaseDescriptor] = []
        page = 1
        while True:
            data = await self._get_json(url, params={"per_page": PAGE_SIZE, "page": page})
            if not isinstance(data, list):
                raise ReleaseNotFoundError("Release index returned an unexpected payload")
            releases.extend(
                ReleaseDescriptor.from_api(item)
                for item in data
                if isinstance(item, dict) and not item.get("draft", False)
            )
            if len(data) < PAGE_SIZE:
                break
            page += 1

        log.debug("release_list_fetched", count=len(releases))
        return releases

    async def find_release(
        self,
        spec: VersionSpec,
        releases: Sequence[ReleaseDescriptor],
        latest_version: str | None = None,
    ) -> ReleaseDescriptor:
        """Find the release for *spec*.

        ``latest`` is resolved through the dedicated latest-release endpoint
        (unless *latest_version* was already resolved) rather than by list
        position, so prereleases and list ordering never influence it.
        """
        if isinstance(spec, LatestVersion):
            version = latest_version or await self.resolve_latest()
        else:
            version = str(spec)
        return match_release(version, releases)
