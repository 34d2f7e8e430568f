"""Self-replacement of the CLI binary.

The new binary is staged in a temporary directory next to the installed
executable, so the final swap is a same-filesystem ``os.replace``. The path
of the running executable therefore always points at a complete file: the
old one until the rename, the new one after it.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
import tempfile
from collections.abc import Iterator, Sequence
from pathlib import Path

import httpx

from runtipi_cli import __version__
from runtipi_cli.errors import (
    DownloadError,
    ExtractError,
    HandoffError,
    InstallError,
    UpdateInProgressError,
)
from runtipi_cli.logging import get_logger
from runtipi_cli.process import CommandResult, run_process
from runtipi_cli.releases import AssetDescriptor

log = get_logger("runtipi_cli.installer")

STAGING_PREFIX = "self_update"
LOCK_FILE_NAME = ".runtipi-update.lock"
CHUNK_SIZE = 64 * 1024
# The handed-off start pulls images and rebuilds the stack
HANDOFF_TIMEOUT = 3 * 3600
_EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


def binary_name_for(asset: AssetDescriptor) -> str:
    """Name of the executable inside an asset archive.

    ``runtipi-cli-linux-x86_64.tar.gz`` contains ``runtipi-cli-linux-x86_64``.
    """
    return asset.name.split(".", 1)[0]


class BinaryInstaller:
    """Downloads, extracts and installs a CLI build over *target_path*."""

    def __init__(
        self,
        target_path: Path,
        *,
        download_timeout: float = 600.0,
        command_timeout: float = 120.0,
        handoff_timeout: float | None = None,
        work_dir: Path | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._target = target_path
        self._work_dir = work_dir or target_path.parent
        self._download_timeout = download_timeout
        self._command_timeout = command_timeout
        self._handoff_timeout = handoff_timeout or HANDOFF_TIMEOUT
        self._client = client

    @property
    def target_path(self) -> Path:
        return self._target

    @property
    def work_dir(self) -> Path:
        """Root folder the handed-off command runs in."""
        return self._work_dir

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def update_lock(self) -> Iterator[Path]:
        """Hold an exclusive lock file next to the binary for one update."""
        lock_path = self._target.parent / LOCK_FILE_NAME
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError as exc:
            raise UpdateInProgressError(
                "Another update is already in progress",
                hint=f"If no update is running, remove {lock_path}",
            ) from exc
        except OSError as exc:
            raise InstallError(
                f"Cannot create update lock in {lock_path.parent}",
                original_intact=True,
                details=str(exc),
            ) from exc
        try:
            try:
                with os.fdopen(fd, "w") as handle:
                    handle.write(str(os.getpid()))
            except OSError as exc:
                raise InstallError(
                    f"Cannot write update lock {lock_path}",
                    original_intact=True,
                    details=str(exc),
                ) from exc
            yield lock_path
        finally:
            lock_path.unlink(missing_ok=True)

    @contextlib.contextmanager
    def staging_dir(self) -> Iterator[Path]:
        """Temporary directory on the same filesystem as the binary."""
        try:
            self._target.parent.mkdir(parents=True, exist_ok=True)
            path = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self._target.parent))
        except OSError as exc:
            raise InstallError(
                f"Cannot create a staging directory in {self._target.parent}",
                original_intact=True,
                details=str(exc),
            ) from exc
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def download(self, asset: AssetDescriptor, dest_dir: Path) -> Path:
        """Stream *asset* into *dest_dir* and return the archive path.

        Raises:
            DownloadError: on transport failure, non-2xx status or a body
                shorter than the announced ``Content-Length``.
        """
        dest = dest_dir / asset.name
        headers = {
            "Accept": "application/octet-stream",
            "User-Agent": f"runtipi-cli/{__version__}",
        }
        client = self._client or httpx.AsyncClient(
            timeout=self._download_timeout, follow_redirects=True
        )
        written = 0
        try:
            async with client.stream("GET", asset.download_url, headers=headers) as resp:
                if not resp.is_success:
                    raise DownloadError(
                        f"Failed to download {asset.name}: HTTP {resp.status_code}"
                    )
                expected = resp.headers.get("content-length")
                # Content-Length counts encoded bytes; the archive is kept as served
                with dest.open("wb") as handle:
                    async for chunk in resp.aiter_raw(CHUNK_SIZE):
                        handle.write(chunk)
                written = resp.num_bytes_downloaded
            if expected is not None and expected.isdigit() and written != int(expected):
                raise DownloadError(
                    f"Download of {asset.name} truncated: got {written} of {expected} bytes"
                )
            if written == 0:
                raise DownloadError(f"Download of {asset.name} is empty")
        except httpx.HTTPError as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Failed to download {asset.name}: {exc}") from exc
        except OSError as exc:
            dest.unlink(missing_ok=True)
            raise DownloadError(f"Failed to write {dest}: {exc}") from exc
        except DownloadError:
            dest.unlink(missing_ok=True)
            raise
        finally:
            if self._client is None:
                await client.aclose()

        log.info("update_asset_downloaded", asset=asset.name, bytes=written)
        return dest

    async def extract(self, archive_path: Path, dest_dir: Path) -> None:
        """Unpack a gzip tarball with the system ``tar``."""
        result = await run_process(
            ["tar", "-xzf", archive_path, "-C", dest_dir],
            timeout=self._command_timeout,
        )
        if not result.ok:
            raise ExtractError(
                f"Failed to extract {archive_path.name} (exit {result.returncode})",
                details=result.stderr.strip(),
            )
        log.debug("update_archive_extracted", archive=str(archive_path))

    def install(self, new_binary_path: Path) -> None:
        """Mark *new_binary_path* executable and swap it over the target.

        The staged file is gone afterwards whatever the outcome.

        Raises:
            InstallError: with ``original_intact`` telling whether the
                installed binary is still the previous version.
        """
        try:
            if not new_binary_path.is_file():
                raise InstallError(
                    f"Extracted archive does not contain {new_binary_path.name}",
                    original_intact=True,
                )
            try:
                mode = new_binary_path.stat().st_mode
                new_binary_path.chmod(mode | _EXEC_BITS)
            except OSError as exc:
                raise InstallError(
                    f"Failed to mark {new_binary_path.name} executable",
                    original_intact=True,
                    details=str(exc),
                ) from exc
            try:
                os.replace(new_binary_path, self._target)
            except OSError as exc:
                raise InstallError(
                    "Failed to replace old CLI",
                    original_intact=self._target.is_file(),
                    details=str(exc),
                ) from exc
        finally:
            new_binary_path.unlink(missing_ok=True)

        log.info("update_binary_replaced", target=str(self._target))

    async def handoff(self, run_args: Sequence[str]) -> CommandResult:
        """Run the freshly installed binary and wait for it to finish."""
        result = await run_process(
            [self._target, *run_args],
            cwd=self._work_dir,
            timeout=self._handoff_timeout,
        )
        if not result.ok:
            raise HandoffError(
                f"New CLI exited with status {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result
