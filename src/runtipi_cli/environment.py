"""The ``.env`` file shared by the CLI and the compose stack."""

from __future__ import annotations

import socket
from pathlib import Path

from dotenv import dotenv_values, set_key

from runtipi_cli.errors import EnvironmentGenerationError, MissingEnvironmentKey
from runtipi_cli.logging import get_logger

log = get_logger("runtipi_cli.environment")

DEFAULTS = {
    "NGINX_PORT": "80",
}


def detect_internal_ip() -> str:
    """Best-effort LAN address of this host, ``localhost`` when unknown."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            # No packet is sent for a UDP connect; it only selects a route
            sock.connect(("8.8.8.8", 80))
            return str(sock.getsockname()[0])
    except OSError:
        return "localhost"


class EnvironmentStore:
    """Generates and reads ``<root>/.env``.

    Generation keeps every key already present, overlays the operator's
    custom env file and fills the defaults the CLI itself depends on.
    """

    def __init__(self, env_file: Path) -> None:
        self._path = env_file

    @property
    def path(self) -> Path:
        return self._path

    def generate(self, user_env_file: Path | None = None) -> dict[str, str]:
        if user_env_file is not None and not user_env_file.is_file():
            raise EnvironmentGenerationError(f"Env file {user_env_file} does not exist")

        try:
            values = self.load()
            if user_env_file is not None:
                values.update(_read(user_env_file))

            values.setdefault("INTERNAL_IP", detect_internal_ip())
            for key, value in DEFAULTS.items():
                values.setdefault(key, value)

            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.touch(exist_ok=True)
            for key, value in values.items():
                set_key(self._path, key, value, quote_mode="always")
        except OSError as exc:
            raise EnvironmentGenerationError(
                f"Failed to write {self._path}", details=str(exc)
            ) from exc

        log.debug("env_file_generated", path=str(self._path), keys=len(values))
        return values

    def load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        return _read(self._path)

    def get(self, key: str) -> str:
        value = self.load().get(key)
        if not value:
            raise MissingEnvironmentKey(key)
        return value


def _read(path: Path) -> dict[str, str]:
    return {k: v for k, v in dotenv_values(path).items() if v is not None}
