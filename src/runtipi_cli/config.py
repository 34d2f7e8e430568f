"""Configuration management for the Runtipi CLI."""

import sys
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONTAINER_NAMES = [
    "tipi-reverse-proxy",
    "tipi-docker-proxy",
    "tipi-db",
    "tipi-redis",
    "tipi-worker",
    "tipi-dashboard",
]


class Settings(BaseSettings):
    """CLI settings loaded from ``RUNTIPI_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RUNTIPI_",
        env_file="runtipi-cli.env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Layout
    root_folder: Path = Field(
        default_factory=Path.cwd, description="Runtipi installation directory"
    )
    binary_path: Path | None = Field(
        default=None, description="Path of the CLI executable replaced on update"
    )
    binary_name: str = Field(default="runtipi-cli", description="CLI executable file name")
    assets_dir: Path | None = Field(
        default=None, description="Directory of static files copied into the root on start"
    )

    # Releases
    github_api_url: str = Field(default="https://api.github.com", description="GitHub API base")
    release_owner: str = Field(default="runtipi", description="Owner of the CLI release repo")
    release_repo: str = Field(default="cli", description="Name of the CLI release repo")
    latest_release_repo: str = Field(
        default="runtipi/runtipi", description="Repo whose latest release defines 'latest'"
    )
    github_token: SecretStr | None = Field(default=None, description="Optional GitHub token")
    platform: str = Field(default="linux", description="Release asset platform")

    # Container stack
    container_names: Annotated[
        list[str],
        Field(
            default_factory=lambda: list(DEFAULT_CONTAINER_NAMES),
            description="Containers force-removed before the stack is recreated",
        ),
    ]
    compose_command: Annotated[
        list[str],
        Field(default_factory=lambda: ["docker", "compose"], description="Compose invocation"),
    ]
    docker_command: str = Field(default="docker", description="Container runtime CLI")

    # Timeouts (seconds)
    http_timeout: float = Field(default=30.0, description="Release API request timeout")
    download_timeout: float = Field(default=600.0, description="Asset download timeout")
    command_timeout: int = Field(default=120, description="Default external command timeout")
    pull_timeout: int = Field(default=1800, description="Image pull timeout")
    up_timeout: int = Field(default=1800, description="Stack up timeout")

    # Local control API
    api_base_url: str = Field(
        default="http://localhost/worker-api/apps", description="Per-app control API base"
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="WARNING", description="Logging level")
    log_json: bool = Field(default=False, description="Render logs as JSON")

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def env_file_path(self) -> Path:
        return self.root_folder / ".env"

    @property
    def compose_file(self) -> Path:
        return self.root_folder / "docker-compose.yml"

    @property
    def user_compose_file(self) -> Path:
        return self.root_folder / "user-config" / "tipi-compose.yml"

    @property
    def executable_path(self) -> Path:
        """Resolve the on-disk path of the running CLI executable."""
        if self.binary_path is not None:
            return self.binary_path
        if getattr(sys, "frozen", False):
            return Path(sys.executable).resolve()
        return self.root_folder / self.binary_name


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
