"""Qt installation discovery.

Candidates are checked in a fixed order:
1. A pre-set QT_HOME
2. Known SDK image locations (ASWF/Conan images, /opt/qt)
3. Standard user installs (~/Qt/<version>/<kit>)

A candidate is accepted only if it is a directory containing a Qt marker
library. The first accepted candidate wins.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path

from openrv_build.env.paths import prepend_path
from openrv_build.types import Platform

logger = logging.getLogger(__name__)

LINUX_SDK_ROOTS = (Path("/tmp/qttemp"), Path("/opt/qt"), Path("/usr/local"))
WINDOWS_SDK_ROOTS = (Path("C:/Qt"),)

LINUX_KIT_GLOB = "gcc_64"
WINDOWS_KIT_GLOB = "msvc*_64"

QT_CONFIG_NAME = "Qt6Config.cmake"
QT_CONFIG_MARKER = "lib/cmake/Qt6/Qt6Config.cmake"
LINUX_MARKERS = ("lib/libQt6Core.so", QT_CONFIG_MARKER)
WINDOWS_MARKERS = ("bin/Qt6Core.dll", "lib/Qt6Core.lib", QT_CONFIG_MARKER)

_VERSION_DIR = re.compile(r"^\d+(?:\.\d+)+$")


class QtNotFoundError(Exception):
    """Raised when no usable Qt installation is found."""

    def __init__(self, message: str, code: str = "qt_not_found") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class QtInstallation:
    """A detected Qt installation.

    Attributes:
        home: Qt prefix (contains bin/ and lib/).
        source: Which discovery step found it (preset, sdk-image, user).
    """

    home: Path
    source: str


def marker_files(platform: Platform) -> tuple[str, ...]:
    """Return the marker files that identify a Qt prefix on ``platform``."""
    return WINDOWS_MARKERS if platform.is_windows else LINUX_MARKERS


def is_valid_qt_prefix(path: Path, platform: Platform) -> bool:
    """Check that ``path`` is a directory containing a Qt marker library."""
    if not path.is_dir():
        return False
    return any((path / marker).is_file() for marker in marker_files(platform))


def _version_key(path: Path) -> tuple[int, ...]:
    for part in reversed(path.parts):
        if _VERSION_DIR.match(part):
            return tuple(int(n) for n in part.split("."))
    return ()


def _walk(root: Path, max_depth: int) -> Iterator[tuple[Path, list[str], list[str]]]:
    root_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        yield current, list(dirnames), filenames
        if len(current.parts) - root_depth >= max_depth:
            dirnames[:] = []


def find_config_prefixes(root: Path, max_depth: int = 4) -> list[Path]:
    """Find Qt prefixes below ``root`` through their Qt6Config.cmake.

    The config file lives in <prefix>/lib/cmake/Qt6/, so the prefix is three
    directories above it.
    """
    prefixes: list[Path] = []
    for current, _dirnames, filenames in _walk(root, max_depth - 1):
        if QT_CONFIG_NAME in filenames:
            config = current / QT_CONFIG_NAME
            if len(config.parents) > 3:
                prefixes.append(config.parents[3])
    return prefixes


def find_kit_dirs(
    root: Path,
    kit_glob: str,
    version: str,
    max_depth: int = 3,
) -> list[Path]:
    """Find kit directories (e.g. 6.5.3/gcc_64) for ``version``, newest first."""
    kits: list[Path] = []
    for current, dirnames, _filenames in _walk(root, max_depth - 1):
        for name in dirnames:
            candidate = current / name
            if fnmatch(name, kit_glob) and version in str(candidate):
                kits.append(candidate)
    return sorted(kits, key=_version_key, reverse=True)


def detect_qt(
    platform: Platform,
    qt_home: Path | None = None,
    version: str = "6.5",
    home: Path | None = None,
    search_roots: tuple[Path, ...] | None = None,
) -> QtInstallation:
    """Locate a Qt installation.

    Args:
        platform: Platform being built.
        qt_home: Pre-set Qt prefix (QT_HOME).
        version: Wanted Qt version prefix, e.g. "6.5".
        home: User home directory (defaults to Path.home()).
        search_roots: SDK image roots to search (platform default if None).

    Returns:
        The first valid QtInstallation in precedence order.

    Raises:
        QtNotFoundError: If no candidate is valid.
    """
    if qt_home is not None:
        if is_valid_qt_prefix(qt_home, platform):
            logger.info("Using existing QT_HOME=%s", qt_home)
            return QtInstallation(home=qt_home, source="preset")
        logger.warning(
            "QT_HOME=%s has no Qt marker library; searching other locations", qt_home
        )

    if search_roots is None:
        search_roots = WINDOWS_SDK_ROOTS if platform.is_windows else LINUX_SDK_ROOTS
    kit_glob = WINDOWS_KIT_GLOB if platform.is_windows else LINUX_KIT_GLOB

    for root in search_roots:
        if not root.is_dir():
            continue
        for prefix in find_config_prefixes(root):
            if is_valid_qt_prefix(prefix, platform):
                logger.info("Found Qt at %s (SDK image config)", prefix)
                return QtInstallation(home=prefix, source="sdk-image")
        for kit in find_kit_dirs(root, kit_glob, version):
            if is_valid_qt_prefix(kit, platform):
                logger.info("Found Qt at %s", kit)
                return QtInstallation(home=kit, source="sdk-image")

    user_root = (home or Path.home()) / "Qt"
    if user_root.is_dir():
        for kit in find_kit_dirs(user_root, kit_glob, version, max_depth=4):
            if is_valid_qt_prefix(kit, platform):
                logger.info("Found Qt at %s", kit)
                return QtInstallation(home=kit, source="user")

    raise QtNotFoundError(
        f"Qt {version} not found. Set QT_HOME or install Qt "
        "(e.g. aqtinstall) to ~/Qt or /opt/qt."
    )


def qt_environment(qt: QtInstallation, env: dict[str, str]) -> dict[str, str]:
    """Return ``env`` updated to build against ``qt``.

    CMAKE_PREFIX_PATH is ``;``-separated on every platform.
    """
    updated = dict(env)
    updated["QT_HOME"] = str(qt.home)
    updated["CMAKE_PREFIX_PATH"] = prepend_path(
        qt.home, env.get("CMAKE_PREFIX_PATH"), sep=";"
    )
    updated["PATH"] = prepend_path(qt.home / "bin", env.get("PATH"))
    return updated


__all__ = [
    "LINUX_SDK_ROOTS",
    "QtInstallation",
    "QtNotFoundError",
    "WINDOWS_SDK_ROOTS",
    "detect_qt",
    "find_config_prefixes",
    "find_kit_dirs",
    "is_valid_qt_prefix",
    "marker_files",
    "qt_environment",
]
