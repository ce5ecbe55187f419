"""Patch application.

This module handles:
- Applying catalog patches to a checkout in declared order
- Trying layout variants until one matches the file's context
- Idempotence via applied markers
- Turning missing context into a fatal error or a warning, per patch

See patches/catalogs/default.yaml for the built-in patch list.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

from openrv_build.patches.schema import PatchSchema, PatchVariantSchema
from openrv_build.types import Criticality, PatchStatus, Platform

logger = logging.getLogger(__name__)


class PatchApplyError(Exception):
    """Raised when a required patch cannot be applied."""

    def __init__(self, message: str, patch_id: str, code: str = "patch_failed") -> None:
        super().__init__(message)
        self.patch_id = patch_id
        self.code = code


@dataclass
class PatchOutcome:
    """Result of applying one patch.

    Attributes:
        patch_id: Identifier of the patch.
        status: What happened.
        variant: Name of the variant that was applied, if any.
        message: Human-readable detail.
    """

    patch_id: str
    status: PatchStatus
    variant: str | None = None
    message: str = ""


def read_text(path: Path) -> str:
    """Read a file without newline translation."""
    with open(path, encoding="utf-8", newline="") as f:
        return f.read()


def write_text(path: Path, content: str) -> None:
    """Write a file without newline translation."""
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def substitute_variant(content: str, variant: PatchVariantSchema) -> str | None:
    """Apply a substitution variant to ``content``.

    The variant matches when every required pattern is present and at
    least one pattern is present.

    Args:
        content: Original file content.
        variant: Variant with replacements.

    Returns:
        The patched content, or None if the variant's context is missing.
    """
    compiled = [(r, r.compile()) for r in variant.replacements]

    matched_any = False
    for replacement, regex in compiled:
        if regex.search(content):
            matched_any = True
        elif replacement.required:
            return None
    if not matched_any:
        return None

    for replacement, regex in compiled:
        if replacement.regex:
            content = regex.sub(replacement.replacement, content, count=replacement.count)
        else:
            text = replacement.replacement
            content = regex.sub(lambda _m, text=text: text, content, count=replacement.count)
    return content


def run_patch_tool(
    diff_path: Path,
    source_dir: Path,
    strip: int = 1,
    dry_run: bool = False,
) -> bool:
    """Run ``patch`` with a unified diff.

    ``--forward`` makes an already-applied diff fail instead of reversing it.

    Args:
        diff_path: Path to the diff file.
        source_dir: Root of the tree to patch.
        strip: Leading path components to strip.
        dry_run: Only check whether the diff applies.

    Returns:
        True if patch exited with status 0.

    Raises:
        PatchApplyError: If the patch tool is not available.
    """
    cmd = [
        "patch",
        f"-p{strip}",
        "--forward",
        "--batch",
        "--reject-file=-",
        "-i",
        str(diff_path),
    ]
    if dry_run:
        cmd.append("--dry-run")

    logger.debug("Running: %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=source_dir,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise PatchApplyError(
            "patch executable not found",
            patch_id=diff_path.name,
            code="patch_tool_missing",
        ) from e

    if result.returncode != 0:
        logger.debug("patch output: %s", result.stdout.strip())
    return result.returncode == 0


def _apply_variant(
    patch: PatchSchema,
    variant: PatchVariantSchema,
    target: Path,
    source_dir: Path,
    content: str,
) -> bool:
    if variant.diff:
        diff_path = Path(variant.diff)
        if not diff_path.is_file():
            raise PatchApplyError(
                f"Diff file for patch {patch.patch_id} not found: {diff_path}",
                patch_id=patch.patch_id,
                code="diff_missing",
            )
        if not run_patch_tool(diff_path, source_dir, variant.strip, dry_run=True):
            return False
        if not run_patch_tool(diff_path, source_dir, variant.strip):
            raise PatchApplyError(
                f"Diff for patch {patch.patch_id} passed a dry run but failed to apply",
                patch_id=patch.patch_id,
                code="diff_failed",
            )
        return True

    patched = substitute_variant(content, variant)
    if patched is None:
        return False
    write_text(target, patched)
    return True


def _not_applied(patch: PatchSchema, message: str, code: str) -> PatchOutcome:
    if patch.criticality is Criticality.REQUIRED:
        raise PatchApplyError(
            f"Required patch {patch.patch_id} not applied: {message}",
            patch_id=patch.patch_id,
            code=code,
        )
    logger.warning("Optional patch %s not applied: %s", patch.patch_id, message)
    return PatchOutcome(
        patch_id=patch.patch_id,
        status=PatchStatus.SKIPPED,
        message=message,
    )


def apply_patch(
    patch: PatchSchema,
    source_dir: Path,
    platform: Platform,
) -> PatchOutcome:
    """Apply one patch to a checkout.

    Args:
        patch: Patch declaration.
        source_dir: Root of the checkout.
        platform: Platform being built.

    Returns:
        PatchOutcome describing what happened.

    Raises:
        PatchApplyError: If a required patch cannot be applied.
    """
    if not patch.applies_to(platform):
        return PatchOutcome(
            patch_id=patch.patch_id,
            status=PatchStatus.NOT_APPLICABLE,
            message=f"not used on {platform.value}",
        )

    target = source_dir / patch.target
    if not target.is_file():
        return _not_applied(
            patch, f"target file not found: {patch.target}", "target_missing"
        )

    content = read_text(target)
    if patch.applied_marker and patch.applied_marker in content:
        logger.info("Patch %s already applied", patch.patch_id)
        return PatchOutcome(
            patch_id=patch.patch_id,
            status=PatchStatus.ALREADY_APPLIED,
            message=f"marker found in {patch.target}",
        )

    for index, variant in enumerate(patch.variants):
        name = variant.name or f"variant-{index + 1}"
        if _apply_variant(patch, variant, target, source_dir, content):
            logger.info("Applied patch %s (%s) to %s", patch.patch_id, name, patch.target)
            return PatchOutcome(
                patch_id=patch.patch_id,
                status=PatchStatus.APPLIED,
                variant=name,
                message=f"patched {patch.target}",
            )
        logger.debug("Patch %s variant %s did not match", patch.patch_id, name)

    return _not_applied(
        patch,
        f"expected context not found in {patch.target} "
        "(upstream may have changed the file)",
        "context_not_found",
    )


def apply_patches(
    patches: list[PatchSchema],
    source_dir: Path,
    platform: Platform,
) -> list[PatchOutcome]:
    """Apply patches in order.

    Stops at the first required patch that fails.

    Args:
        patches: Patches in application order.
        source_dir: Root of the checkout.
        platform: Platform being built.

    Returns:
        One PatchOutcome per patch.

    Raises:
        PatchApplyError: If a required patch cannot be applied.
    """
    outcomes = [apply_patch(p, source_dir, platform) for p in patches]

    applied = sum(1 for o in outcomes if o.status is PatchStatus.APPLIED)
    skipped = sum(1 for o in outcomes if o.status is PatchStatus.SKIPPED)
    logger.info(
        "Patches: %d applied, %d skipped, %d total", applied, skipped, len(outcomes)
    )
    return outcomes


__all__ = [
    "PatchApplyError",
    "PatchOutcome",
    "apply_patch",
    "apply_patches",
    "read_text",
    "run_patch_tool",
    "substitute_variant",
    "write_text",
]
