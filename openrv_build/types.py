"""Shared type definitions for openrv_build.

This module contains enums and dataclasses shared across subpackages to
avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class Platform(str, Enum):
    """Target platform of a pipeline run."""

    LINUX_ROCKY9 = "linux-rocky9"
    LINUX_UBUNTU = "linux-ubuntu"
    WINDOWS = "windows"

    @property
    def is_windows(self) -> bool:
        return self is Platform.WINDOWS

    @property
    def default_archive_format(self) -> "ArchiveFormat":
        return ArchiveFormat.ZIP if self.is_windows else ArchiveFormat.TAR_GZ


class ArchiveFormat(str, Enum):
    """Release archive format."""

    TAR_GZ = "tar.gz"
    ZIP = "zip"


class Criticality(str, Enum):
    """Whether a patch that cannot be applied stops the pipeline."""

    REQUIRED = "required"
    OPTIONAL = "optional"


class PatchStatus(str, Enum):
    """Outcome of applying a single patch."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "not_applicable"


class Stage(str, Enum):
    """Pipeline stages, in execution order."""

    CHECKOUT = "checkout"
    PATCH = "patch"
    SDKS = "sdks"
    ENVIRONMENT = "environment"
    SETUP = "setup"
    DEPENDENCIES = "dependencies"
    BUILD = "build"
    PACKAGE = "package"


class StageStatus(str, Enum):
    """Status of a pipeline stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ArtifactInfo:
    """Information about a release artifact."""

    filename: str
    relative_path: str
    size_bytes: int
    sha256: str
    kind: str | None = None


__all__ = [
    "ArchiveFormat",
    "ArtifactInfo",
    "Criticality",
    "PatchStatus",
    "Platform",
    "Stage",
    "StageStatus",
]
