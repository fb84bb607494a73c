"""Configuration settings for blobfree_installer.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_scratch_dir() -> Path:
    """Return the default scratch root for working directories."""
    return Path(tempfile.gettempdir()) / "blobfree-installer"


def _default_db_url() -> str:
    """Return the default database URL (SQLite)."""
    db_path = Path.home() / ".local" / "share" / "blobfree-installer" / "db.sqlite"
    return f"sqlite:///{db_path}"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the BLOBFREE_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="BLOBFREE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    scratch_dir: Path = Field(
        default_factory=_default_scratch_dir,
        description="Scratch root holding one working directory per product",
    )
    db_url: str = Field(
        default_factory=_default_db_url,
        description="Database connection URL for install records",
    )
    tools_dir: Path | None = Field(
        default=None,
        description="Directory holding mkbootfs, mkbootimg and make_ext4fs "
        "(PATH is searched if not set)",
    )
    adb_path: str = Field(default="adb", description="adb executable")
    fastboot_path: str = Field(default="fastboot", description="fastboot executable")

    # Catalog
    catalog_url: str | None = Field(
        default=None,
        description="Remote device catalog URL (distribution devices.json if unset)",
    )

    # Operational modes
    offline: bool = Field(
        default=False,
        description="Offline mode - do not fetch the remote catalog",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    cleanup_workdir: bool = Field(
        default=False,
        description="Remove the working directory once an install finishes",
    )
    target_os_marker: str = Field(
        default="/system/b2g/b2g",
        description="Device file whose presence means the target OS is installed",
    )

    # Device transitions (in seconds)
    settle_delay: float = Field(
        default=5.0,
        ge=0,
        description="Wait after rebooting into flash mode before resolving the device",
    )
    elevation_settle_delay: float = Field(
        default=5.0,
        ge=0,
        description="Wait after requesting elevated access before resolving the device",
    )
    resolve_timeout: float | None = Field(
        default=None,
        ge=0,
        description="Bound on one device resolution attempt (settle_delay if unset)",
    )
    poll_interval: float = Field(
        default=1.0,
        gt=0,
        description="Device enumeration polling period",
    )

    # Concurrency
    max_concurrent_builds: int = Field(
        default=4,
        ge=1,
        le=4,
        description="Maximum concurrent image builds",
    )

    # Timeouts (in seconds)
    command_timeout: int = Field(
        default=60,
        ge=1,
        description="Timeout for short device commands",
    )
    pull_timeout: int = Field(
        default=300,
        ge=1,
        description="Timeout for a single blob pull",
    )
    build_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for a single image tool invocation",
    )
    flash_timeout: int = Field(
        default=1800,
        ge=60,
        description="Timeout for a single partition write",
    )

    def effective_resolve_timeout(self) -> float:
        """Return the bound applied to one device resolution attempt."""
        if self.resolve_timeout is None:
            return self.settle_delay
        return self.resolve_timeout


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
