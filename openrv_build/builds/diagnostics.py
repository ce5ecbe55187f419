"""Failure diagnostics.

Collects the log excerpts that explain a failed upstream build, in the
order they are most useful when reading a CI log:

1. ``error_summary.txt`` (whole file)
2. the tail of ``build_errors.log``
3. error lines from every ``*.log`` in the build tree
4. the GLEW build log
5. the bdwgc install layout and build logs
6. ``CMakeFiles/CMakeError.log`` (whole file)
7. the tail of the orchestrator's own stage logs

Nothing here raises: unreadable files are skipped.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

logger = logging.getLogger(__name__)

ERROR_PATTERN = re.compile(r"(error|fatal|failed|undefined reference)", re.IGNORECASE)

BUILD_ERRORS_TAIL = 150
MATCHES_PER_LOG = 50
GLEW_TAIL = 100
GC_LOG_LIMIT = 5
GC_TAIL = 80
STAGE_LOG_TAIL = 100

RULE = "=" * 40


@dataclass
class DiagnosticSection:
    """A titled excerpt of a log or listing."""

    title: str
    lines: list[str] = field(default_factory=list)


def _read_lines(path: Path) -> list[str] | None:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read().splitlines()
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return None


def tail_lines(path: Path, count: int) -> list[str] | None:
    """Return the last ``count`` lines of ``path``, or None if unreadable."""
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return [line.rstrip("\r\n") for line in deque(f, maxlen=count)]
    except OSError as e:
        logger.debug("Cannot read %s: %s", path, e)
        return None


def matching_lines(path: Path, limit: int = MATCHES_PER_LOG) -> list[str]:
    """Return up to ``limit`` lines of ``path`` that look like errors."""
    lines = _read_lines(path) or []
    return [line for line in lines if ERROR_PATTERN.search(line)][:limit]


def _log_files(build_dir: Path) -> list[Path]:
    return sorted(p for p in build_dir.rglob("*.log") if p.is_file())


def _listing(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return [
        f"{entry.name}/" if entry.is_dir() else entry.name
        for entry in sorted(directory.iterdir())
    ]


def _gc_sections(build_dir: Path, logs: list[Path]) -> list[DiagnosticSection]:
    gc_root = build_dir / "RV_DEPS_GC"
    if not gc_root.is_dir():
        return []

    include_dir = gc_root / "install" / "include"
    listing = [f"{include_dir}:", *_listing(include_dir)]
    if (include_dir / "gc").is_dir():
        listing += [f"{include_dir / 'gc'}:", *_listing(include_dir / "gc")]
    sections = [DiagnosticSection("RV_DEPS_GC install include dir", listing)]

    gc_logs = [
        p for p in logs if "RV_DEPS_GC" in p.relative_to(build_dir).parts
    ][:GC_LOG_LIMIT]
    if gc_logs:
        lines: list[str] = []
        for log in gc_logs:
            lines.append(f"--- {log} ---")
            lines.extend(tail_lines(log, GC_TAIL) or [])
        sections.append(
            DiagnosticSection(f"GC (bdwgc) build logs (last {GC_TAIL} lines each)", lines)
        )
    return sections


def collect_diagnostics(
    build_dir: Path,
    stage_logs: Iterable[Path] = (),
) -> list[DiagnosticSection]:
    """Collect diagnostic sections for a failed build.

    Args:
        build_dir: The upstream build directory (``_build``).
        stage_logs: Stage logs written by the orchestrator.

    Returns:
        Sections in display order; empty sections are omitted.
    """
    sections: list[DiagnosticSection] = []
    logs = _log_files(build_dir) if build_dir.is_dir() else []

    summary = _read_lines(build_dir / "error_summary.txt")
    if summary is not None:
        sections.append(DiagnosticSection("_build/error_summary.txt", summary))

    build_errors = tail_lines(build_dir / "build_errors.log", BUILD_ERRORS_TAIL)
    if build_errors is not None:
        sections.append(
            DiagnosticSection(
                f"Last {BUILD_ERRORS_TAIL} lines of _build/build_errors.log",
                build_errors,
            )
        )

    for log in logs:
        matches = matching_lines(log)
        if matches:
            sections.append(DiagnosticSection(f"Errors in: {log}", matches))

    glew_logs = [
        p
        for p in logs
        if any("GLEW" in part for part in p.relative_to(build_dir).parts)
        and "build" in p.name
    ]
    if glew_logs:
        sections.append(
            DiagnosticSection(
                f"GLEW build log (last {GLEW_TAIL} lines)",
                tail_lines(glew_logs[0], GLEW_TAIL) or [],
            )
        )

    sections.extend(_gc_sections(build_dir, logs))

    cmake_errors = _read_lines(build_dir / "CMakeFiles" / "CMakeError.log")
    if cmake_errors is not None:
        sections.append(DiagnosticSection("CMakeError.log", cmake_errors))

    for stage_log in stage_logs:
        tail = tail_lines(stage_log, STAGE_LOG_TAIL)
        if tail:
            sections.append(
                DiagnosticSection(
                    f"Stage log {stage_log.name} (last {STAGE_LOG_TAIL} lines)", tail
                )
            )

    return sections


def render_diagnostics(sections: list[DiagnosticSection], stream: TextIO) -> None:
    """Write diagnostic sections to ``stream``."""
    stream.write(f"\n{RULE}\nBUILD FAILED - Searching for error logs\n{RULE}\n")
    if not sections:
        stream.write("No diagnostic logs found.\n")
    for section in sections:
        stream.write(f"\n=== {section.title} ===\n")
        for line in section.lines:
            stream.write(f"{line}\n")
    stream.flush()


__all__ = [
    "DiagnosticSection",
    "ERROR_PATTERN",
    "collect_diagnostics",
    "matching_lines",
    "render_diagnostics",
    "tail_lines",
]
