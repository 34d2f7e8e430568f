"""End-to-end CLI update.

Steps, in order, each aborting the update on failure:

1. Resolve the requested version (network call for ``latest``)
2. Refuse major version bumps
3. Locate the release
4. Select the asset for this machine
5. Lock and stage next to the installed binary, then download the asset
6. Extract the archive
7. Mark the new binary executable and atomically replace the old one
8. Hand off to the new binary with a forwarded ``start`` run in the root folder
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from runtipi_cli.config import Settings
from runtipi_cli.environment import EnvironmentStore
from runtipi_cli.errors import EnvironmentGenerationError, RuntipiError
from runtipi_cli.installer import BinaryInstaller, binary_name_for
from runtipi_cli.lifecycle import dashboard_url
from runtipi_cli.logging import get_logger
from runtipi_cli.progress import ProgressReporter
from runtipi_cli.releases import (
    AssetDescriptor,
    ReleaseDescriptor,
    ReleaseIndex,
    normalize_architecture,
    select_asset,
)
from runtipi_cli.system import detect_machine
from runtipi_cli.versions import (
    LatestVersion,
    VersionSpec,
    ensure_not_major_bump,
    normalize_installed_version,
)

log = get_logger("runtipi_cli.update")


class UpdateStatus(Enum):
    """Outcome of an update run."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class UpdateRequest:
    """What the operator asked for on the command line."""

    version: VersionSpec
    env_file: Path | None = None
    no_permissions: bool = False


@dataclass(frozen=True)
class UpdatePlan:
    """Release and asset chosen for this machine."""

    target: ReleaseDescriptor
    asset: AssetDescriptor


@dataclass
class UpdateResult:
    """Result of an update attempt."""

    status: UpdateStatus
    requested_version: str
    current_version: str | None = None
    target_version: str | None = None
    failed_step: str | None = None
    error: RuntipiError | None = None
    steps_completed: list[str] = field(default_factory=list)
    dashboard_url: str | None = None
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "requested_version": self.requested_version,
            "current_version": self.current_version,
            "target_version": self.target_version,
            "failed_step": self.failed_step,
            "error": str(self.error) if self.error else None,
            "steps_completed": self.steps_completed,
            "dashboard_url": self.dashboard_url,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }


def build_start_args(request: UpdateRequest) -> list[str]:
    """Command line forwarded to the new binary.

    Raises:
        EnvironmentGenerationError: if the forwarded env file does not exist.
    """
    run_args = ["start"]
    if request.no_permissions:
        run_args.append("--no-permissions")
    if request.env_file is not None:
        if not request.env_file.exists():
            raise EnvironmentGenerationError(f"Env file {request.env_file} does not exist")
        run_args += ["--env-file", str(request.env_file.resolve())]
    return run_args


class UpdatePipeline:
    """Runs one update from version resolution to handoff."""

    def __init__(
        self,
        settings: Settings,
        index: ReleaseIndex,
        installer: BinaryInstaller,
        environment: EnvironmentStore,
        reporter: ProgressReporter,
        machine: str | None = None,
    ) -> None:
        self._settings = settings
        self._index = index
        self._installer = installer
        self._environment = environment
        self._reporter = reporter
        self._machine = machine

    async def run(self, request: UpdateRequest) -> UpdateResult:
        result = UpdateResult(status=UpdateStatus.FAILED, requested_version=str(request.version))
        step = "resolve_version"
        try:
            wanted = await self._resolve(request.version)
            result.target_version = wanted
            result.steps_completed.append(step)

            step = "check_compatibility"
            current = normalize_installed_version(self._environment.get("TIPI_VERSION"))
            result.current_version = current
            ensure_not_major_bump(current, wanted)
            result.steps_completed.append(step)

            step = "find_release"
            release = await self._find(request.version, wanted)
            result.steps_completed.append(step)

            step = "select_asset"
            plan = UpdatePlan(target=release, asset=self._select(release))
            result.steps_completed.append(step)

            step = "prepare_handoff"
            run_args = build_start_args(request)

            step = "stage_update"
            with self._installer.update_lock(), self._installer.staging_dir() as staging:
                step = "download"
                self._reporter.begin(f"Downloading {plan.asset.architecture} release")
                archive = await self._installer.download(plan.asset, staging)
                self._reporter.succeed(f"Downloaded {plan.asset.name}")
                result.steps_completed.append(step)

                step = "extract"
                self._reporter.begin("Extracting tarball")
                await self._installer.extract(archive, staging)
                self._reporter.succeed("Extracted tarball")
                result.steps_completed.append(step)

                step = "install"
                self._reporter.begin("Replacing old CLI")
                self._installer.install(staging / binary_name_for(plan.asset))
                self._reporter.succeed("Tipi updated successfully. Starting new CLI")
                result.steps_completed.append(step)

            step = "handoff"
            self._reporter.begin("Starting Tipi... This may take a while.")
            await self._installer.handoff(run_args)
            self._reporter.succeed("Tipi started")
            result.steps_completed.append(step)

        except RuntipiError as exc:
            result.failed_step = step
            result.error = exc
            self._reporter.fail(f"{exc} (step: {step})")
            log.warning("update_failed", step=step, error=str(exc))
            return result
        finally:
            result.completed_at = datetime.now().isoformat()

        result.status = UpdateStatus.SUCCESS
        env_map = self._environment.load()
        if "INTERNAL_IP" in env_map and "NGINX_PORT" in env_map:
            result.dashboard_url = dashboard_url(env_map)
        log.info("update_success", version=result.target_version)
        return result

    async def _resolve(self, spec: VersionSpec) -> str:
        if not isinstance(spec, LatestVersion):
            return str(spec)
        self._reporter.begin("Resolving latest version")
        version = await self._index.resolve_latest()
        self._reporter.succeed(f"Latest version is {version}")
        return version

    async def _find(self, spec: VersionSpec, wanted: str) -> ReleaseDescriptor:
        self._reporter.begin("Grabbing releases from GitHub")
        releases = await self._index.list_releases()
        release = await self._index.find_release(spec, releases, latest_version=wanted)
        self._reporter.succeed(f"Found version {release.version}")
        return release

    def _select(self, release: ReleaseDescriptor) -> AssetDescriptor:
        machine = self._machine if self._machine is not None else detect_machine()
        architecture = normalize_architecture(machine)
        return select_asset(release, architecture, self._settings.platform)
