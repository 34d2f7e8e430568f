"""Unit tests for downloading, extracting and swapping the CLI binary."""

from __future__ import annotations

import gzip
import io
import os
import stat
import tarfile
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from runtipi_cli.errors import (
    DownloadError,
    ExtractError,
    HandoffError,
    InstallError,
    UpdateInProgressError,
)
from runtipi_cli.installer import BinaryInstaller, binary_name_for
from runtipi_cli.process import CommandResult
from runtipi_cli.releases import AssetDescriptor

ASSET = AssetDescriptor(
    name="runtipi-cli-linux-x86_64.tar.gz",
    platform="linux",
    architecture="x86_64",
    download_url="https://api.github.com/repos/runtipi/cli/releases/assets/1",
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _installer(tmp_path: Path, handler=None) -> BinaryInstaller:
    target = tmp_path / "runtipi-cli"
    target.write_text("old binary")
    client = None
    if handler is not None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return BinaryInstaller(target, client=client)


def _tarball(member: str, payload: bytes) -> bytes:
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(member)
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Staging and locking
# ---------------------------------------------------------------------------


class TestStaging:
    """Tests for the staging directory and the update lock."""

    def test_staging_dir_is_sibling_and_removed(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)

        with installer.staging_dir() as staging:
            assert staging.parent == tmp_path
            assert staging.name.startswith("self_update")
            (staging / "junk").write_text("x")

        assert not staging.exists()

    def test_staging_dir_removed_on_error(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)

        with pytest.raises(RuntimeError):
            with installer.staging_dir() as staging:
                raise RuntimeError("boom")

        assert not staging.exists()

    def test_update_lock_is_exclusive(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)

        with installer.update_lock() as lock_path:
            assert lock_path.exists()
            with pytest.raises(UpdateInProgressError):
                with installer.update_lock():
                    pass

        assert not lock_path.exists()

    def test_lock_permission_error_is_reported(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        denied = PermissionError(13, "Permission denied")

        with patch("runtipi_cli.installer.os.open", side_effect=denied):
            with pytest.raises(InstallError) as exc_info:
                with installer.update_lock():
                    pass

        assert exc_info.value.original_intact is True
        assert "Permission denied" in exc_info.value.details

    def test_staging_permission_error_is_reported(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        denied = PermissionError(13, "Permission denied")

        with patch("runtipi_cli.installer.tempfile.mkdtemp", side_effect=denied):
            with pytest.raises(InstallError) as exc_info:
                with installer.staging_dir():
                    pass

        assert "Permission denied" in exc_info.value.details
        assert installer.target_path.read_text() == "old binary"

    def test_binary_name_for_asset(self) -> None:
        assert binary_name_for(ASSET) == "runtipi-cli-linux-x86_64"


# ---------------------------------------------------------------------------
# download
# ---------------------------------------------------------------------------


class TestDownload:
    """Tests for BinaryInstaller.download()."""

    @pytest.mark.asyncio
    async def test_writes_body_with_octet_stream_header(self, tmp_path: Path) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=b"archive-bytes")

        installer = _installer(tmp_path, handler)

        path = await installer.download(ASSET, tmp_path)

        assert path == tmp_path / ASSET.name
        assert path.read_bytes() == b"archive-bytes"
        assert seen[0].headers["Accept"] == "application/octet-stream"
        assert str(seen[0].url) == ASSET.download_url

    @pytest.mark.asyncio
    async def test_content_encoding_is_kept_as_served(self, tmp_path: Path) -> None:
        payload = gzip.compress(b"tarball bytes" * 100)
        installer = _installer(
            tmp_path,
            lambda r: httpx.Response(200, headers={"Content-Encoding": "gzip"}, content=payload),
        )

        path = await installer.download(ASSET, tmp_path)

        assert path.read_bytes() == payload

    @pytest.mark.asyncio
    async def test_http_error_status(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path, lambda r: httpx.Response(404, content=b"nope"))

        with pytest.raises(DownloadError, match="HTTP 404"):
            await installer.download(ASSET, tmp_path)

        assert not (tmp_path / ASSET.name).exists()

    @pytest.mark.asyncio
    async def test_truncated_body_is_rejected(self, tmp_path: Path) -> None:
        installer = _installer(
            tmp_path,
            lambda r: httpx.Response(200, headers={"Content-Length": "100"}, content=b"short"),
        )

        with pytest.raises(DownloadError, match="truncated"):
            await installer.download(ASSET, tmp_path)

        assert not (tmp_path / ASSET.name).exists()

    @pytest.mark.asyncio
    async def test_empty_body_is_rejected(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path, lambda r: httpx.Response(200, content=b""))

        with pytest.raises(DownloadError, match="empty"):
            await installer.download(ASSET, tmp_path)

    @pytest.mark.asyncio
    async def test_transport_error(self, tmp_path: Path) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        installer = _installer(tmp_path, handler)

        with pytest.raises(DownloadError, match="timed out"):
            await installer.download(ASSET, tmp_path)


# ---------------------------------------------------------------------------
# extract
# ---------------------------------------------------------------------------


class TestExtract:
    """Tests for BinaryInstaller.extract()."""

    @pytest.mark.asyncio
    async def test_extracts_tarball(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        archive = tmp_path / ASSET.name
        archive.write_bytes(_tarball("runtipi-cli-linux-x86_64", b"#!/bin/sh\n"))
        dest = tmp_path / "out"
        dest.mkdir()

        await installer.extract(archive, dest)

        assert (dest / "runtipi-cli-linux-x86_64").read_bytes() == b"#!/bin/sh\n"

    @pytest.mark.asyncio
    async def test_corrupt_archive_surfaces_stderr(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        archive = tmp_path / ASSET.name
        archive.write_bytes(b"not a tarball")

        with pytest.raises(ExtractError) as exc_info:
            await installer.extract(archive, tmp_path)

        assert exc_info.value.details

    @pytest.mark.asyncio
    async def test_uses_tar_xzf(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        run = AsyncMock(return_value=CommandResult(("tar",), 0))

        with patch("runtipi_cli.installer.run_process", run):
            await installer.extract(tmp_path / "a.tar.gz", tmp_path / "dest")

        args = [str(a) for a in run.call_args.args[0]]
        assert args == ["tar", "-xzf", str(tmp_path / "a.tar.gz"), "-C", str(tmp_path / "dest")]


# ---------------------------------------------------------------------------
# install
# ---------------------------------------------------------------------------


class TestInstall:
    """Tests for BinaryInstaller.install()."""

    def test_replaces_target_and_marks_executable(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        staged = tmp_path / "staged"
        staged.write_text("new binary")
        staged.chmod(0o644)

        installer.install(staged)

        target = installer.target_path
        assert target.read_text() == "new binary"
        assert target.stat().st_mode & stat.S_IXUSR
        assert not staged.exists()

    def test_missing_extracted_binary(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)

        with pytest.raises(InstallError) as exc_info:
            installer.install(tmp_path / "absent")

        assert exc_info.value.original_intact is True
        assert installer.target_path.read_text() == "old binary"

    def test_replace_failure_keeps_original_and_cleans_staged(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        staged = tmp_path / "staged"
        staged.write_text("new binary")

        with patch("runtipi_cli.installer.os.replace", side_effect=OSError("cross-device link")):
            with pytest.raises(InstallError) as exc_info:
                installer.install(staged)

        assert exc_info.value.original_intact is True
        assert "cross-device" in exc_info.value.details
        assert installer.target_path.read_text() == "old binary"
        assert not staged.exists()

    def test_target_is_never_missing_during_replace(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        staged = tmp_path / "staged"
        staged.write_text("new binary")
        real_replace = os.replace
        observed: list[bool] = []

        def spying_replace(src, dst):
            observed.append(Path(dst).is_file())
            real_replace(src, dst)
            observed.append(Path(dst).is_file())

        with patch("runtipi_cli.installer.os.replace", side_effect=spying_replace):
            installer.install(staged)

        assert observed == [True, True]


# ---------------------------------------------------------------------------
# handoff
# ---------------------------------------------------------------------------


class TestHandoff:
    """Tests for BinaryInstaller.handoff()."""

    @pytest.mark.asyncio
    async def test_runs_new_binary_with_forwarded_args(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        run = AsyncMock(return_value=CommandResult(("x",), 0, "started", ""))

        with patch("runtipi_cli.installer.run_process", run):
            result = await installer.handoff(["start", "--no-permissions"])

        assert result.stdout == "started"
        argv = run.call_args.args[0]
        assert argv[0] == installer.target_path
        assert list(argv[1:]) == ["start", "--no-permissions"]

    @pytest.mark.asyncio
    async def test_non_zero_exit_raises_with_stderr(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        script = installer.target_path
        script.write_text("#!/bin/sh\necho 'docker missing' >&2\nexit 3\n")
        script.chmod(0o755)

        with pytest.raises(HandoffError) as exc_info:
            await installer.handoff(["start"])

        assert exc_info.value.returncode == 3
        assert "docker missing" in exc_info.value.stderr

    @pytest.mark.asyncio
    async def test_runs_in_root_folder_not_binary_dir(self, tmp_path: Path) -> None:
        root = tmp_path / "runtipi"
        root.mkdir()
        target = tmp_path / "bin" / "runtipi-cli"
        target.parent.mkdir()
        target.write_text("#!/bin/sh\npwd\n")
        target.chmod(0o755)
        installer = BinaryInstaller(target, work_dir=root)

        result = await installer.handoff(["start"])

        assert Path(result.stdout.strip()).resolve() == root.resolve()

    def test_work_dir_defaults_to_binary_dir(self, tmp_path: Path) -> None:
        installer = _installer(tmp_path)
        assert installer.work_dir == tmp_path
