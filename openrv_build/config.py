"""Configuration settings for openrv_build.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

Most settings use the OPENRV_ prefix. Variables already understood by the
upstream scripts and CI images (QT_HOME, RV_VFX_PLATFORM, DISTRO_SUFFIX, ...)
are accepted under their plain names as well.
"""

import os
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from openrv_build.types import ArchiveFormat, Platform

DEFAULT_REPO = "https://github.com/AcademySoftwareFoundation/OpenRV.git"


def _default_workdir() -> Path:
    """Return the default work directory.

    The upstream Docker image runs as user ``rv``; reuse its home when it
    is writable.
    """
    upstream_home = Path("/home/rv")
    if upstream_home.is_dir() and os.access(upstream_home, os.W_OK):
        return upstream_home
    return Path("/work")


def _default_out_dir() -> Path:
    """Return the default output directory for release archives."""
    return Path.cwd() / "out"


def _default_parallelism() -> int:
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the OPENRV_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="OPENRV_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Source
    tag: str | None = Field(default=None, description="Upstream tag to build")
    repo: str = Field(default=DEFAULT_REPO, description="Upstream repository URL")
    supported_tags: list[str] = Field(
        default_factory=list,
        description="Tags this pipeline is pinned to (empty = any tag)",
    )

    # Target
    platform: Platform = Field(
        default=Platform.LINUX_ROCKY9,
        validation_alias=AliasChoices("OPENRV_PLATFORM", "DISTRO_SUFFIX"),
        description="Target platform / distribution suffix",
    )
    arch: str = Field(default="x86_64", description="Architecture archive suffix")
    project_name: str = Field(default="OpenRV", description="Archive name prefix")

    # Paths
    workdir: Path = Field(
        default_factory=_default_workdir,
        validation_alias=AliasChoices("OPENRV_WORKDIR", "WORKDIR"),
        description="Directory holding the checkout and stage logs",
    )
    out_dir: Path = Field(
        default_factory=_default_out_dir,
        validation_alias=AliasChoices("OPENRV_OUT_DIR", "OUT_DIR"),
        description="Directory receiving the release archive",
    )
    patch_catalog: Path | None = Field(
        default=None,
        description="Patch catalog file (uses the built-in catalog if not set)",
    )

    # Upstream build environment
    qt_home: Path | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENRV_QT_HOME", "QT_HOME"),
        description="Pre-set Qt installation prefix",
    )
    qt_version: str = Field(default="6.5", description="Wanted Qt major.minor")
    vfx_platform: str = Field(
        default="CY2024",
        validation_alias=AliasChoices("OPENRV_VFX_PLATFORM", "RV_VFX_PLATFORM"),
    )
    build_type: str = Field(
        default="Release",
        validation_alias=AliasChoices("OPENRV_BUILD_TYPE", "RV_BUILD_TYPE"),
    )
    build_parallelism: int = Field(
        default_factory=_default_parallelism,
        ge=1,
        validation_alias=AliasChoices(
            "OPENRV_BUILD_PARALLELISM", "RV_BUILD_PARALLELISM"
        ),
    )
    cfg_extra: str = Field(
        default="",
        validation_alias=AliasChoices("OPENRV_CFG_EXTRA", "RV_CFG_EXTRA"),
        description="Extra CMake arguments appended to rvcfg",
    )
    shell: str = Field(default="bash", description="Shell used for upstream aliases")

    # Optional SDKs
    bmd_decklink_sdk_zip_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENRV_BMD_DECKLINK_SDK_ZIP_URL", "BMD_DECKLINK_SDK_ZIP_URL"
        ),
    )
    ndi_sdk_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENRV_NDI_SDK_URL", "NDI_SDK_URL"),
    )

    # Fixups
    fix_gc_include: bool = Field(
        default=True, description="Repair flat bdwgc include layout"
    )
    fix_openssl_libs: bool = Field(
        default=True, description="Repair OpenSSL library locations and names"
    )
    wrap_compilers: bool = Field(
        default=True, description="Wrap gcc/g++ to drop Intel-only flags (Linux)"
    )

    # Packaging
    archive_format: ArchiveFormat | None = Field(
        default=None, description="Archive format (platform default if not set)"
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for each upstream invocation (none by default)",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for SDK downloads",
    )

    def effective_archive_format(self) -> ArchiveFormat:
        """Return the configured archive format or the platform default."""
        return self.archive_format or self.platform.default_archive_format


def get_settings() -> Settings:
    """Get the application settings.

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


__all__ = ["DEFAULT_REPO", "Settings", "get_settings", "print_settings_json"]
