"""Cache key computation for CI caches.

This module handles:
- Canonical input snapshot creation from settings, tag, and commit
- Deterministic hash computation over normalized inputs
- Human-readable cache keys scoped by platform, tag, and commit

The source checkout and build-object caches of a CI job are keyed by these
values, so jobs for different tags or commits never share a cache directory.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from openrv_build.config import Settings

# Schema version for cache key format; bump when cache key format changes
CACHE_KEY_SCHEMA_VERSION = "1"

# Length of the commit prefix embedded in the readable key
COMMIT_PREFIX_LENGTH = 12

# Length of the digest prefix embedded in the readable key
DIGEST_PREFIX_LENGTH = 16


@dataclass
class BuildInputs:
    """Canonical representation of all inputs that affect build output.

    Attributes:
        schema_version: Version of cache key schema.
        tag: Upstream tag.
        commit: Commit SHA the tag resolves to.
        platform: Target platform value.
        arch: Target architecture.
        vfx_platform: VFX reference platform year.
        build_type: CMake build type.
        patch_catalog_digest: Digest of the patches applied for this platform.
    """

    schema_version: str = CACHE_KEY_SCHEMA_VERSION
    tag: str = ""
    commit: str = ""
    platform: str = ""
    arch: str = ""
    vfx_platform: str = ""
    build_type: str = ""
    patch_catalog_digest: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


def create_build_inputs(
    settings: Settings,
    tag: str,
    commit: str,
    patch_catalog_digest: str | None = None,
) -> BuildInputs:
    """Create canonical build inputs.

    Args:
        settings: Effective settings.
        tag: Upstream tag.
        commit: Commit SHA.
        patch_catalog_digest: Optional digest of the effective patch catalog.

    Returns:
        BuildInputs instance.
    """
    return BuildInputs(
        tag=tag,
        commit=commit.lower(),
        platform=settings.platform.value,
        arch=settings.arch,
        vfx_platform=settings.vfx_platform,
        build_type=settings.build_type,
        patch_catalog_digest=patch_catalog_digest,
    )


def compute_inputs_digest(inputs: BuildInputs) -> str:
    """Compute the SHA-256 hex digest of the canonical JSON inputs."""
    canonical_json = json.dumps(
        inputs.to_dict(),
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


def compute_cache_key(inputs: BuildInputs) -> str:
    """Compute a cache key from build inputs.

    Args:
        inputs: BuildInputs instance.

    Returns:
        Key of the form ``openrv-<platform>-<tag>-<commit12>-<digest16>``.
    """
    digest = compute_inputs_digest(inputs)
    commit = inputs.commit[:COMMIT_PREFIX_LENGTH]
    return (
        f"openrv-{inputs.platform}-{inputs.tag}-{commit}-"
        f"{digest[:DIGEST_PREFIX_LENGTH]}"
    )


__all__ = [
    "CACHE_KEY_SCHEMA_VERSION",
    "BuildInputs",
    "compute_cache_key",
    "compute_inputs_digest",
    "create_build_inputs",
]
