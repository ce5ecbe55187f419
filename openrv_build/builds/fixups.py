"""Post-dependency-build layout fixups.

This module handles:
- bdwgc installed with a flat include layout (gc.h instead of gc/gc.h)
- OpenSSL libraries installed under lib64 instead of lib (Linux)
- OpenSSL import libraries named libssl.lib/libcrypto.lib (Windows)

Each fixup only acts when the problem is present and the fixed state is
absent, so running them again is a no-op.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path

from openrv_build.types import Platform

logger = logging.getLogger(__name__)

GC_INSTALL = Path("RV_DEPS_GC") / "install"
GC_HEADERS = ("gc.h", "gc_allocator.h")

OPENSSL_INSTALL = Path("RV_DEPS_OPENSSL") / "install"
OPENSSL_IMPORT_LIBS = {"libssl.lib": "ssl.lib", "libcrypto.lib": "crypto.lib"}


@dataclass
class FixupResult:
    """Result of a single fixup.

    Attributes:
        name: Fixup name.
        applied: Whether anything was changed.
        message: Human-readable detail.
    """

    name: str
    applied: bool
    message: str = ""


def fix_gc_include_layout(build_dir: Path) -> FixupResult:
    """Copy bdwgc headers into include/gc/ when only the flat layout exists."""
    name = "gc-include-layout"
    include_dir = build_dir / GC_INSTALL / "include"
    nested = include_dir / "gc"

    if not (include_dir / "gc.h").is_file():
        return FixupResult(name, False, "gc.h not installed")
    if (nested / "gc.h").is_file():
        return FixupResult(name, False, "include/gc/gc.h already present")

    nested.mkdir(parents=True, exist_ok=True)
    copied = []
    for header in GC_HEADERS:
        src = include_dir / header
        if src.is_file():
            shutil.copy2(src, nested / header)
            copied.append(header)

    logger.info("Fixed bdwgc include layout: copied %s", ", ".join(copied))
    return FixupResult(name, True, f"copied {', '.join(copied)} into include/gc")


def fix_openssl_lib_dir(build_dir: Path) -> FixupResult:
    """Copy OpenSSL libraries from install/lib64 into install/lib."""
    name = "openssl-lib-dir"
    install = build_dir / OPENSSL_INSTALL
    lib64 = install / "lib64"
    lib = install / "lib"

    if not lib64.is_dir():
        return FixupResult(name, False, "no lib64 directory")

    missing = [
        entry
        for entry in sorted(lib64.iterdir())
        if entry.name.startswith(("libssl", "libcrypto"))
        and not (lib / entry.name).exists()
        and not (lib / entry.name).is_symlink()
    ]
    if not missing:
        return FixupResult(name, False, "libraries already present in lib")

    lib.mkdir(parents=True, exist_ok=True)
    for entry in missing:
        shutil.copy2(entry, lib / entry.name, follow_symlinks=False)

    logger.info("Copied %d OpenSSL libraries from lib64 to lib", len(missing))
    return FixupResult(name, True, f"copied {len(missing)} files from lib64")


def fix_openssl_import_libs(build_dir: Path) -> FixupResult:
    """Provide ssl.lib/crypto.lib next to libssl.lib/libcrypto.lib."""
    name = "openssl-import-libs"
    lib = build_dir / OPENSSL_INSTALL / "lib"

    created = []
    for source_name, wanted in OPENSSL_IMPORT_LIBS.items():
        src = lib / source_name
        dest = lib / wanted
        if src.is_file() and not dest.exists():
            shutil.copy2(src, dest)
            created.append(wanted)

    if not created:
        return FixupResult(name, False, "import libraries already named as expected")

    logger.info("Created OpenSSL import libraries: %s", ", ".join(created))
    return FixupResult(name, True, f"created {', '.join(created)}")


def run_fixups(
    build_dir: Path,
    platform: Platform,
    fix_gc_include: bool = True,
    fix_openssl_libs: bool = True,
) -> list[FixupResult]:
    """Run the fixups enabled for ``platform``.

    Args:
        build_dir: The upstream build directory (``_build``).
        platform: Platform being built.
        fix_gc_include: Enable the bdwgc include fixup.
        fix_openssl_libs: Enable the OpenSSL fixups.

    Returns:
        One FixupResult per fixup that ran.
    """
    results: list[FixupResult] = []
    if fix_gc_include:
        results.append(fix_gc_include_layout(build_dir))
    if fix_openssl_libs:
        if platform.is_windows:
            results.append(fix_openssl_import_libs(build_dir))
        else:
            results.append(fix_openssl_lib_dir(build_dir))

    for result in results:
        logger.debug("Fixup %s: %s", result.name, result.message)
    return results


__all__ = [
    "FixupResult",
    "fix_gc_include_layout",
    "fix_openssl_import_libs",
    "fix_openssl_lib_dir",
    "run_fixups",
]
