"""Filesystem layout of a Runtipi installation."""

from __future__ import annotations

import os
import platform
import shutil
from pathlib import Path

from runtipi_cli.errors import PasswordResetError, PermissionsError, SystemFilesError
from runtipi_cli.logging import get_logger

log = get_logger("runtipi_cli.system")

LAYOUT_DIRS = (
    "apps",
    "app-data",
    "data",
    "logs",
    "media",
    "media/torrents",
    "media/downloads",
    "media/data",
    "repos",
    "state",
    "traefik",
    "traefik/tls",
    "user-config",
)

# Directories bind-mounted into containers running as arbitrary users
WRITABLE_DIRS = ("app-data", "data", "logs", "media", "repos", "state", "traefik")

PASSWORD_RESET_FILE = "password-change-request"


def detect_machine() -> str:
    """Machine hardware name as reported by the kernel (``uname -m``)."""
    return platform.machine()


class SystemFiles:
    """Creates and maintains the working tree under *root*."""

    def __init__(self, root: Path, assets_dir: Path | None = None) -> None:
        self._root = root
        self._assets_dir = assets_dir

    def copy_system_files(self) -> None:
        """Create the layout folders and copy bundled static files.

        Files under ``user-config`` belong to the operator and are never
        overwritten.
        """
        try:
            for name in LAYOUT_DIRS:
                (self._root / name).mkdir(parents=True, exist_ok=True)

            if self._assets_dir is not None:
                if not self._assets_dir.is_dir():
                    raise SystemFilesError(f"Assets directory {self._assets_dir} does not exist")
                for source in sorted(self._assets_dir.rglob("*")):
                    relative = source.relative_to(self._assets_dir)
                    dest = self._root / relative
                    if source.is_dir():
                        dest.mkdir(parents=True, exist_ok=True)
                    elif relative.parts[0] == "user-config" and dest.exists():
                        continue
                    else:
                        dest.parent.mkdir(parents=True, exist_ok=True)
                        shutil.copy2(source, dest)
        except OSError as exc:
            raise SystemFilesError("Failed to copy system files", details=str(exc)) from exc

        log.debug("system_files_copied", root=str(self._root))

    def ensure_file_permissions(self) -> None:
        """Open up container data folders and keep ``.env`` owner-writable."""
        try:
            for name in WRITABLE_DIRS:
                top = self._root / name
                if not top.exists():
                    continue
                top.chmod(0o777)
                for dirpath, dirnames, _filenames in os.walk(top):
                    for dirname in dirnames:
                        (Path(dirpath) / dirname).chmod(0o777)

            env_file = self._root / ".env"
            if env_file.exists():
                env_file.chmod(0o644)
        except OSError as exc:
            raise PermissionsError(
                "Failed to ensure file permissions", details=str(exc)
            ) from exc

        log.debug("file_permissions_ensured", root=str(self._root))

    def request_password_reset(self) -> Path:
        """Drop the marker file the dashboard polls to allow a password reset."""
        marker = self._root / "state" / PASSWORD_RESET_FILE
        try:
            marker.parent.mkdir(parents=True, exist_ok=True)
            marker.touch()
        except OSError as exc:
            raise PasswordResetError(
                "Unable to create password reset request",
                details=str(exc),
                hint=(
                    f"You can manually create an empty file at {marker} "
                    "to initiate a password reset."
                ),
            ) from exc
        return marker
