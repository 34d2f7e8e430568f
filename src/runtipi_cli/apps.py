"""Per-app lifecycle requests against the local worker API."""

from __future__ import annotations

from enum import Enum

import httpx
import jwt

from runtipi_cli import __version__
from runtipi_cli.errors import AppCommandError
from runtipi_cli.logging import get_logger

log = get_logger("runtipi_cli.apps")

JWT_ALGORITHM = "HS256"
DEFAULT_JWT_SECRET = "secret"


class AppAction(Enum):
    """Actions the worker API accepts for a single app."""

    START = "start"
    STOP = "stop"
    UNINSTALL = "uninstall"
    RESET = "reset"
    UPDATE = "update"

    @property
    def progressive(self) -> str:
        return _FORMS[self][0]

    @property
    def past_tense(self) -> str:
        return _FORMS[self][1]


_FORMS = {
    AppAction.START: ("Starting", "started"),
    AppAction.STOP: ("Stopping", "stopped"),
    AppAction.UNINSTALL: ("Uninstalling", "uninstalled"),
    AppAction.RESET: ("Resetting", "reset"),
    AppAction.UPDATE: ("Updating", "updated"),
}


class AppClient:
    """Signs and sends app lifecycle requests.

    The worker authenticates requests with an HS256 token for the admin
    user (``sub=1``) signed with the instance's ``JWT_SECRET``.
    """

    def __init__(
        self,
        base_url: str,
        jwt_secret: str | None = None,
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._secret = jwt_secret or DEFAULT_JWT_SECRET
        self._timeout = timeout
        self._client = client

    def _token(self) -> str:
        return jwt.encode({"sub": "1"}, self._secret, algorithm=JWT_ALGORITHM)

    async def _post(self, url: str, failure: str) -> None:
        headers = {
            "Authorization": f"Bearer {self._token()}",
            "User-Agent": f"runtipi-cli/{__version__}",
        }
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        try:
            resp = await client.post(url, headers=headers)
        except httpx.RequestError as exc:
            raise AppCommandError(f"{failure}.", details=str(exc)) from exc
        finally:
            if self._client is None:
                await client.aclose()

        if not resp.is_success:
            log.warning("app_request_failed", url=url, status=resp.status_code)
            raise AppCommandError(
                f"{failure}. See logs/error.log for more details.",
                details=f"HTTP {resp.status_code}",
            )

    async def run(self, action: AppAction, app_id: str) -> None:
        await self._post(
            f"{self._base_url}/{app_id}/{action.value}",
            f"Failed to {action.value} app {app_id}",
        )

    async def start_all(self) -> None:
        await self._post(f"{self._base_url}/start-all", "Failed to start apps")
