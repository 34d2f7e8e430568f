"""Exception hierarchy for the Runtipi CLI.

Every failure that should abort a command derives from ``RuntipiError``.
The command dispatcher prints ``str(exc)``, the optional ``hint`` and any
captured ``details`` (stderr, HTTP status) before exiting non-zero.
"""

from __future__ import annotations

BREAKING_UPDATES_URL = "https://runtipi.io/docs/reference/breaking-updates"


class RuntipiError(Exception):
    """Base error for all CLI failures."""

    hint: str | None = None

    def __init__(self, message: str, *, details: str = "", hint: str | None = None) -> None:
        super().__init__(message)
        self.details = details
        if hint is not None:
            self.hint = hint


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RuntipiError):
    """CLI settings from the environment or runtipi-cli.env are invalid."""

    hint = "Check the RUNTIPI_* environment variables and runtipi-cli.env"


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


class VersionParseError(RuntipiError, ValueError):
    """A version token is neither a sentinel nor strict semver."""

    def __init__(self, token: str) -> None:
        super().__init__(
            f"Invalid version {token!r}: expected 'latest', 'nightly' or vX.Y.Z"
        )
        self.token = token


class MajorVersionBlocked(RuntipiError):
    """The requested version is a major bump and must be applied manually."""

    hint = (
        "You are trying to update to a new major version. Please update manually "
        f"using the update instructions on the website. {BREAKING_UPDATES_URL}"
    )

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Major version bump from {current} to {target} is not automatic")
        self.current = current
        self.target = target


# ---------------------------------------------------------------------------
# Release lookup
# ---------------------------------------------------------------------------


class ReleaseLookupError(RuntipiError):
    """Base error for release index failures."""


class ReleaseNetworkError(ReleaseLookupError):
    """The release index could not be reached."""


class ReleaseNotFoundError(ReleaseLookupError):
    """The release index answered without a usable release."""


class VersionNotFoundError(ReleaseLookupError):
    """No published release matches the requested version."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Version {version} not found")
        self.version = version


class AssetNotFoundError(ReleaseLookupError):
    """The release has no build for this machine."""

    def __init__(self, version: str, architecture: str, platform: str) -> None:
        super().__init__(
            f"No asset found for {architecture} {platform} on release {version}"
        )
        self.version = version
        self.architecture = architecture
        self.platform = platform


# ---------------------------------------------------------------------------
# Binary update
# ---------------------------------------------------------------------------


class DownloadError(RuntipiError):
    """The release asset could not be downloaded completely."""


class ExtractError(RuntipiError):
    """The downloaded archive could not be extracted."""


class InstallError(RuntipiError):
    """The new binary could not replace the running one."""

    def __init__(self, message: str, *, original_intact: bool, details: str = "") -> None:
        super().__init__(message, details=details)
        self.original_intact = original_intact
        if original_intact:
            self.hint = "The previous CLI binary is still in place."
        else:
            self.hint = "The CLI binary may be missing; reinstall it manually."


class HandoffError(RuntipiError):
    """The freshly installed CLI failed to start the stack."""

    hint = "The CLI binary was replaced; run the start command again to retry."

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = "") -> None:
        super().__init__(message, details=stderr)
        self.returncode = returncode
        self.stderr = stderr


class UpdateInProgressError(RuntipiError):
    """Another update holds the update lock."""


# ---------------------------------------------------------------------------
# Stack lifecycle
# ---------------------------------------------------------------------------


class RuntimeUnavailable(RuntipiError):
    """Docker is not installed or not reachable."""

    hint = "Please ensure that you have Docker installed and running"


class SystemFilesError(RuntipiError):
    """Static files or the working layout could not be written."""

    hint = "Please ensure that you have the required permissions to copy system files"


class EnvironmentGenerationError(RuntipiError):
    """The .env file could not be generated."""

    hint = "Please ensure that you have the required permissions to generate the .env file"


class MissingEnvironmentKey(RuntipiError, KeyError):
    """A required key is absent from the environment file."""

    def __init__(self, key: str) -> None:
        super().__init__(f"{key} is not set in the environment file")
        self.key = key

    def __str__(self) -> str:
        return self.args[0]


class PermissionsError(RuntipiError):
    """File permissions could not be normalized."""

    hint = "Re-run with sufficient privileges or pass --no-permissions"


class OrchestratorCommandFailed(RuntipiError):
    """A compose command exited non-zero."""

    def __init__(self, step: str, stderr: str = "", returncode: int | None = None) -> None:
        super().__init__(f"Failed to {step}", details=stderr)
        self.step = step
        self.stderr = stderr
        self.returncode = returncode


# ---------------------------------------------------------------------------
# Peripheral commands
# ---------------------------------------------------------------------------


class AppCommandError(RuntipiError):
    """The control API rejected an app lifecycle request."""


class PasswordResetError(RuntipiError):
    """The password reset request file could not be created."""
