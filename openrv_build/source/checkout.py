"""Upstream checkout at a pinned tag.

This module handles:
- Precondition checks on the work directory (writability, stale checkouts)
- Cloning the upstream repository with submodules
- Checking out an exact tag and resolving its commit

A cached checkout directory may be mounted from the host with a different
owner. That case is reported, never worked around, so a build never runs
from a partial or foreign checkout.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_CHECKOUT_DIRNAME = "OpenRV"


class CheckoutError(Exception):
    """Raised when the upstream source cannot be prepared."""

    def __init__(self, message: str, code: str = "checkout_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class SourceTree:
    """A checked-out upstream working tree.

    Attributes:
        path: Root of the working tree.
        tag: Tag that is checked out.
        commit: Commit SHA of the tag.
    """

    path: Path
    tag: str
    commit: str


def _is_writable(path: Path) -> bool:
    return os.access(path, os.W_OK)


def check_writable(path: Path) -> None:
    """Fail if ``path`` exists but cannot be written to.

    Args:
        path: Directory to check.

    Raises:
        CheckoutError: If the directory exists and is not writable.
    """
    if path.exists() and not _is_writable(path):
        owner = path.stat().st_uid
        raise CheckoutError(
            f"{path} exists but is not writable (owned by uid {owner}). "
            "A cache volume mounted with a different owner must be fixed "
            "or removed before building.",
            code="not_writable",
        )


def run_git(args: list[str], cwd: Path | None = None) -> str:
    """Run a git command and return its stripped stdout.

    Args:
        args: Arguments after ``git``.
        cwd: Working directory.

    Returns:
        Standard output of the command.

    Raises:
        CheckoutError: If git is missing or the command fails.
    """
    cmd = ["git", *args]
    logger.debug("Running: %s", shlex.join(cmd))
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise CheckoutError("git executable not found", code="git_not_found") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        raise CheckoutError(
            f"git {args[0]} failed with exit code {e.returncode}: {stderr}",
            code="git_error",
        ) from e
    return result.stdout.strip()


def tag_exists(repo_dir: Path, tag: str) -> bool:
    """Check whether ``refs/tags/<tag>`` resolves to a commit."""
    result = subprocess.run(
        ["git", "rev-parse", "--verify", "--quiet", f"refs/tags/{tag}^{{commit}}"],
        cwd=repo_dir,
        capture_output=True,
        text=True,
        check=False,
    )
    return result.returncode == 0


def clone_repository(repo_url: str, dest: Path) -> None:
    """Clone ``repo_url`` into ``dest`` with submodules."""
    logger.info("Cloning %s into %s", repo_url, dest)
    run_git(["clone", "--recursive", repo_url, str(dest)])


def checkout_tag(repo_dir: Path, tag: str) -> None:
    """Check out an exact tag and initialize submodules.

    Uncommitted changes to tracked files in the tree and its submodules are
    discarded.

    Raises:
        CheckoutError: If the tag does not exist or git fails.
    """
    run_git(["fetch", "--tags"], cwd=repo_dir)

    if not tag_exists(repo_dir, tag):
        raise CheckoutError(
            f"Tag not found in upstream repository: {tag}",
            code="tag_not_found",
        )

    # Local edits are earlier source patches; they are reapplied after checkout
    logger.info("Checking out refs/tags/%s", tag)
    run_git(["checkout", "--quiet", "--force", f"refs/tags/{tag}"], cwd=repo_dir)
    run_git(["submodule", "update", "--init", "--recursive", "--force"], cwd=repo_dir)


def resolve_commit(repo_dir: Path) -> str:
    """Return the commit SHA checked out in ``repo_dir``."""
    return run_git(["rev-parse", "HEAD"], cwd=repo_dir)


def prepare_source(
    repo_url: str,
    tag: str,
    workdir: Path,
    dirname: str = DEFAULT_CHECKOUT_DIRNAME,
    supported_tags: list[str] | None = None,
) -> SourceTree:
    """Produce a working tree of ``repo_url`` at ``tag``.

    An existing checkout directory is reused (CI source cache); otherwise
    the repository is cloned.

    Args:
        repo_url: Upstream repository URL or local path.
        tag: Tag to check out.
        workdir: Directory that holds the checkout.
        dirname: Name of the checkout directory inside ``workdir``.
        supported_tags: Tags the pipeline is pinned to; empty accepts any.

    Returns:
        SourceTree for the checked-out tag.

    Raises:
        CheckoutError: On any failed precondition or git failure.
    """
    if supported_tags and tag not in supported_tags:
        raise CheckoutError(
            f"Tag {tag} is not one of the supported tags: {', '.join(supported_tags)}",
            code="unsupported_tag",
        )

    dest = workdir / dirname

    # All precondition checks run before anything is created
    check_writable(workdir)
    check_writable(dest)
    if dest.exists() and not (dest / ".git").exists():
        raise CheckoutError(
            f"{dest} exists but is not a git checkout; remove it and retry",
            code="not_a_repository",
        )

    try:
        workdir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise CheckoutError(
            f"Cannot create work directory {workdir}: {e}",
            code="not_writable",
        ) from e

    if dest.exists():
        logger.info("Reusing existing checkout at %s", dest)
    else:
        clone_repository(repo_url, dest)

    checkout_tag(dest, tag)
    commit = resolve_commit(dest)
    logger.info("Checked out %s at %s", tag, commit)

    return SourceTree(path=dest, tag=tag, commit=commit)


__all__ = [
    "DEFAULT_CHECKOUT_DIRNAME",
    "CheckoutError",
    "SourceTree",
    "check_writable",
    "checkout_tag",
    "clone_repository",
    "prepare_source",
    "resolve_commit",
    "run_git",
    "tag_exists",
]
