"""Release archive packaging and manifest generation.

This module handles:
- Deterministic archive naming
- Archiving the staged output tree as tar.gz or zip
- Computing checksums
- Writing a JSON build manifest
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tarfile
import zipfile
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from openrv_build.types import ArchiveFormat, ArtifactInfo, Platform

logger = logging.getLogger(__name__)

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


class PackagingError(Exception):
    """Raised when the release archive cannot be written."""

    def __init__(self, message: str, code: str = "packaging_error") -> None:
        super().__init__(message)
        self.code = code


def archive_name(
    project: str,
    tag: str,
    platform: Platform | str,
    arch: str,
    fmt: ArchiveFormat,
) -> str:
    """Return the release archive filename.

    Example: ``OpenRV-v1.2.3-linux-rocky9-x86_64.tar.gz``.
    """
    suffix = platform.value if isinstance(platform, Platform) else platform
    return f"{project}-{tag}-{suffix}-{arch}.{fmt.value}"


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def _write_tar_gz(stage_dir: Path, archive_path: Path) -> None:
    with tarfile.open(archive_path, "w:gz") as tar:
        tar.add(stage_dir, arcname=stage_dir.name)


def _write_zip(stage_dir: Path, archive_path: Path) -> None:
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.write(stage_dir, stage_dir.name)
        for dirpath, dirnames, filenames in os.walk(stage_dir):
            dirnames.sort()
            current = Path(dirpath)
            for name in [*dirnames, *sorted(filenames)]:
                path = current / name
                zf.write(path, Path(stage_dir.name, path.relative_to(stage_dir)).as_posix())


def package_stage(
    stage_dir: Path,
    out_dir: Path,
    name: str,
    fmt: ArchiveFormat,
) -> ArtifactInfo:
    """Archive the whole staged tree.

    The archive's top-level directory is the staged directory's name.

    Args:
        stage_dir: Staged output directory (``_build/stage``).
        out_dir: Directory receiving the archive.
        name: Archive filename.
        fmt: Archive format.

    Returns:
        ArtifactInfo for the written archive.

    Raises:
        PackagingError: If the stage directory is missing or writing fails.
    """
    if not stage_dir.is_dir():
        raise PackagingError(
            f"Staged output directory not found: {stage_dir}", code="stage_missing"
        )

    archive_path = out_dir / name
    logger.info("Packaging %s into %s", stage_dir, archive_path)

    try:
        out_dir.mkdir(parents=True, exist_ok=True)
        if fmt is ArchiveFormat.TAR_GZ:
            _write_tar_gz(stage_dir, archive_path)
        elif fmt is ArchiveFormat.ZIP:
            _write_zip(stage_dir, archive_path)
        else:
            raise PackagingError(
                f"Unsupported archive format: {fmt}", code="unsupported_format"
            )
        size_bytes = archive_path.stat().st_size
        sha256 = compute_file_hash(archive_path)
    except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
        if archive_path.is_file():
            archive_path.unlink()
        raise PackagingError(
            f"Failed to write {archive_path}: {e}", code="write_error"
        ) from e

    logger.info("Wrote %s (%d bytes, sha256 %s...)", name, size_bytes, sha256[:16])
    return ArtifactInfo(
        filename=name,
        relative_path=name,
        size_bytes=size_bytes,
        sha256=sha256,
        kind=fmt.value,
    )


def generate_manifest(
    artifact: ArtifactInfo,
    cache_key: str | None = None,
    build_inputs: dict[str, Any] | None = None,
    patches: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Generate a build manifest for a packaged run.

    Args:
        artifact: The release archive.
        cache_key: Optional cache key of the run.
        build_inputs: Optional build inputs dictionary.
        patches: Optional per-patch outcomes.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    manifest: dict[str, Any] = {
        "version": "1.0",
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "artifact": asdict(artifact),
    }
    if cache_key:
        manifest["cache_key"] = cache_key
    if build_inputs:
        manifest["build_inputs"] = build_inputs
    if patches is not None:
        manifest["patches"] = patches
    return manifest


def write_manifest(manifest: dict[str, Any], output_path: Path) -> Path:
    """Write manifest to a JSON file."""
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, sort_keys=True)

    logger.info("Wrote manifest to %s", output_path)
    return output_path


__all__ = [
    "HASH_CHUNK_SIZE",
    "PackagingError",
    "archive_name",
    "compute_file_hash",
    "generate_manifest",
    "package_stage",
    "write_manifest",
]
