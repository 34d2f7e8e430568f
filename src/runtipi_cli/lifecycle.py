"""Start, stop and restart of the Runtipi container stack.

Start path::

    IDLE -> RUNTIME_CHECKED -> SYSTEM_FILES_COPIED -> ENV_GENERATED
         -> PERMISSIONS_ENSURED -> IMAGES_PULLED -> STALE_CONTAINERS_REMOVED
         -> STACK_UP -> RUNNING

Stop path::

    IDLE -> STACK_DOWN -> CONTAINERS_REMOVED -> STOPPED

Any failing step moves the orchestrator to FAILED and raises; nothing is
retried. Removing the fixed set of containers is best-effort because the
goal is only that none of them is left running.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from pathlib import Path

from runtipi_cli.config import Settings
from runtipi_cli.environment import EnvironmentStore
from runtipi_cli.errors import (
    MissingEnvironmentKey,
    OrchestratorCommandFailed,
    RuntimeUnavailable,
    RuntipiError,
)
from runtipi_cli.logging import get_logger
from runtipi_cli.process import CommandResult, run_process
from runtipi_cli.progress import ProgressReporter
from runtipi_cli.system import SystemFiles

log = get_logger("runtipi_cli.lifecycle")


class LifecycleState(Enum):
    """Position of the orchestrator in a start or stop sequence."""

    IDLE = "idle"
    RUNTIME_CHECKED = "runtime_checked"
    SYSTEM_FILES_COPIED = "system_files_copied"
    ENV_GENERATED = "env_generated"
    PERMISSIONS_ENSURED = "permissions_ensured"
    IMAGES_PULLED = "images_pulled"
    STALE_CONTAINERS_REMOVED = "stale_containers_removed"
    STACK_UP = "stack_up"
    RUNNING = "running"
    STACK_DOWN = "stack_down"
    CONTAINERS_REMOVED = "containers_removed"
    STOPPED = "stopped"
    FAILED = "failed"


class ComposeRuntime:
    """Thin wrapper over the docker and docker compose CLIs."""

    def __init__(
        self,
        root_folder: Path,
        *,
        compose_command: Sequence[str] = ("docker", "compose"),
        docker_command: str = "docker",
        command_timeout: int = 120,
        pull_timeout: int = 1800,
        up_timeout: int = 1800,
    ) -> None:
        self._root = root_folder
        self._compose = list(compose_command)
        self._docker = docker_command
        self._command_timeout = command_timeout
        self._pull_timeout = pull_timeout
        self._up_timeout = up_timeout

    async def _compose_run(self, args: Sequence[str | Path], timeout: int) -> CommandResult:
        return await run_process([*self._compose, *args], cwd=self._root, timeout=timeout)

    async def _docker_run(self, *args: str) -> CommandResult:
        return await run_process(
            [self._docker, *args], cwd=self._root, timeout=self._command_timeout
        )

    async def check_available(self) -> CommandResult:
        """``docker info`` succeeds only when the daemon is reachable."""
        return await self._docker_run("info", "--format", "{{.ServerVersion}}")

    async def pull(self, env_file: Path) -> CommandResult:
        return await self._compose_run(["--env-file", env_file, "pull"], self._pull_timeout)

    async def up(self, compose_files: Sequence[Path], env_file: Path) -> CommandResult:
        args: list[str | Path] = []
        for compose_file in compose_files:
            args += ["-f", compose_file]
        args += ["--env-file", env_file, "up", "--detach", "--remove-orphans", "--build"]
        return await self._compose_run(args, self._up_timeout)

    async def down(self) -> CommandResult:
        return await self._compose_run(
            ["down", "--remove-orphans", "--rmi", "local"], self._command_timeout
        )

    async def remove_container(self, name: str) -> None:
        """Stop then remove *name*; a missing container is not an error."""
        for action in ("stop", "rm"):
            result = await self._docker_run(action, name)
            if not result.ok:
                log.debug(
                    "container_cleanup_skipped",
                    container=name,
                    action=action,
                    stderr=result.stderr.strip()[:200],
                )


class StackOrchestrator:
    """Drives the start/stop sequences against injected collaborators."""

    def __init__(
        self,
        settings: Settings,
        runtime: ComposeRuntime,
        system: SystemFiles,
        environment: EnvironmentStore,
        reporter: ProgressReporter,
    ) -> None:
        self._settings = settings
        self._runtime = runtime
        self._system = system
        self._environment = environment
        self._reporter = reporter
        self._state = LifecycleState.IDLE
        self._failed_step: str | None = None
        self.visited: list[LifecycleState] = [LifecycleState.IDLE]

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def failed_step(self) -> str | None:
        return self._failed_step

    def _advance(self, state: LifecycleState) -> None:
        self._state = state
        self.visited.append(state)

    def _fail(self, step: str, message: str, exc: Exception) -> None:
        self._state = LifecycleState.FAILED
        self._failed_step = step
        self.visited.append(LifecycleState.FAILED)
        self._reporter.fail(message)
        log.warning("lifecycle_step_failed", step=step, error=str(exc))

    def _reset(self) -> None:
        self._state = LifecycleState.IDLE
        self._failed_step = None
        self.visited = [LifecycleState.IDLE]

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(
        self, env_file: Path | None = None, skip_permissions: bool = False
    ) -> dict[str, str]:
        """Bring the stack up and return the loaded environment map."""
        self._reset()
        reporter = self._reporter

        reporter.begin("Checking Docker...")
        result = await self._runtime.check_available()
        if not result.ok:
            exc = RuntimeUnavailable("Docker is not available", details=result.stderr.strip())
            self._fail("check_runtime", "Docker is not installed or not running", exc)
            raise exc
        self._advance(LifecycleState.RUNTIME_CHECKED)
        reporter.succeed("Docker is available")

        reporter.begin("Copying system files...")
        try:
            self._system.copy_system_files()
        except RuntipiError as exc:
            self._fail("copy_system_files", "Failed to copy system files", exc)
            raise
        self._advance(LifecycleState.SYSTEM_FILES_COPIED)
        reporter.succeed("Copied system files")

        reporter.begin("Generating .env file...")
        try:
            self._environment.generate(env_file)
            env_map = self._environment.load()
        except RuntipiError as exc:
            self._fail("generate_env", "Failed to generate .env file", exc)
            raise
        self._advance(LifecycleState.ENV_GENERATED)
        reporter.succeed("Generated .env file")

        if skip_permissions:
            reporter.info("Skipping file permissions (--no-permissions)")
        else:
            reporter.begin(
                "Ensuring file permissions... This may take a while depending on "
                "how many files there are to fix"
            )
            try:
                self._system.ensure_file_permissions()
            except RuntipiError as exc:
                self._fail("ensure_permissions", "Failed to ensure file permissions", exc)
                raise
            reporter.succeed("File permissions ok")
        self._advance(LifecycleState.PERMISSIONS_ENSURED)

        env_path = self._environment.path
        reporter.begin("Pulling images...")
        result = await self._runtime.pull(env_path)
        self._check(result, "pull images", LifecycleState.IMAGES_PULLED)
        reporter.succeed("Images pulled")

        reporter.begin("Stopping existing containers...")
        await self._remove_containers()
        self._advance(LifecycleState.STALE_CONTAINERS_REMOVED)
        reporter.succeed("Existing containers stopped")

        reporter.begin("Starting containers...")
        compose_files = [self._settings.compose_file]
        if self._settings.user_compose_file.exists():
            compose_files.append(self._settings.user_compose_file)
        result = await self._runtime.up(compose_files, env_path)
        self._check(result, "start containers", LifecycleState.STACK_UP)
        reporter.succeed("Containers started")

        self._advance(LifecycleState.RUNNING)
        reporter.info(f"Visit {dashboard_url(env_map)} to access the dashboard")
        log.info("stack_started", compose_files=[str(f) for f in compose_files])
        return env_map

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Take the stack down and clear every known container."""
        self._reset()
        self._reporter.begin("Stopping containers...")
        result = await self._runtime.down()
        self._check(result, "stop containers", LifecycleState.STACK_DOWN)

        await self._remove_containers()
        self._advance(LifecycleState.CONTAINERS_REMOVED)
        self._advance(LifecycleState.STOPPED)
        self._reporter.succeed("Tipi successfully stopped")
        log.info("stack_stopped")

    async def restart(
        self, env_file: Path | None = None, skip_permissions: bool = False
    ) -> dict[str, str]:
        await self.stop()
        return await self.start(env_file=env_file, skip_permissions=skip_permissions)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check(self, result: CommandResult, step: str, next_state: LifecycleState) -> None:
        if not result.ok:
            exc = OrchestratorCommandFailed(
                step, stderr=result.stderr.strip(), returncode=result.returncode
            )
            self._fail(step.replace(" ", "_"), f"Failed to {step}", exc)
            raise exc
        self._advance(next_state)

    async def _remove_containers(self) -> None:
        for name in self._settings.container_names:
            await self._runtime.remove_container(name)


def dashboard_url(env_map: dict[str, str]) -> str:
    """Address the dashboard is reachable at, from ``INTERNAL_IP``/``NGINX_PORT``."""
    try:
        ip = env_map["INTERNAL_IP"]
        port = env_map["NGINX_PORT"]
    except KeyError as exc:
        raise MissingEnvironmentKey(exc.args[0]) from exc
    return f"http://{ip}:{port}"
