"""Runner for the upstream build aliases.

This module handles:
- Composing the bash script that sources rvcmds.sh and runs its aliases
- Executing it with output captured to a stage log (optionally echoed)
- Enforcing an optional timeout
- Verifying the output binary after the main build

The upstream aliases (rvsetup, rvcfg, rvenv, rvbuild) only exist inside a
shell that has sourced rvcmds.sh with alias expansion enabled, so every
invocation goes through a generated script.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from openrv_build.types import Platform

logger = logging.getLogger(__name__)

RVCMDS = "rvcmds.sh"

SETUP_COMMANDS = ["rvsetup"]
CONFIGURE_COMMANDS = ["rvcfg"]
BUILD_COMMANDS = ["rvbuild"]

STAGE_BINARY_DIR = Path("_build") / "stage" / "app" / "bin"


class UpstreamExecutionError(Exception):
    """Raised when an upstream invocation cannot be run to completion."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "execution_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


class BuildFailedError(Exception):
    """Raised when the main build does not produce a usable result."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        code: str = "build_failed",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class UpstreamResult:
    """Result of an upstream invocation.

    Attributes:
        success: Whether the script exited with status 0.
        exit_code: Process exit code.
        log_path: Path to the stage log.
        command: The commands that were run, joined with "; ".
        started_at: Start time.
        finished_at: Finish time.
    """

    success: bool
    exit_code: int
    log_path: Path
    command: str
    started_at: datetime
    finished_at: datetime


def dependencies_commands(build_type: str = "Release") -> list[str]:
    """Commands building only the third-party dependency targets."""
    return [
        "rvenv",
        'cmake --build "${RV_BUILD}" --config '
        + shlex.quote(build_type)
        + ' --parallel="${RV_BUILD_PARALLELISM}" --target dependencies',
    ]


def compose_upstream_script(commands: list[str], rvcmds: str = RVCMDS) -> str:
    """Compose the bash script running ``commands`` after sourcing rvcmds.sh.

    ``set -e`` comes after the source so that a non-zero status inside
    rvcmds.sh itself does not abort the script.
    """
    lines = [
        "#!/bin/bash",
        "shopt -s expand_aliases",
        f"source ./{shlex.quote(rvcmds)}",
        "set -e",
        *commands,
        "",
    ]
    return "\n".join(lines)


def upstream_environment(
    env: dict[str, str],
    vfx_platform: str,
    build_type: str,
    parallelism: int,
    cfg_extra: str = "",
) -> dict[str, str]:
    """Return ``env`` with the variables the upstream scripts read."""
    updated = dict(env)
    updated["RV_VFX_PLATFORM"] = vfx_platform
    updated["RV_BUILD_TYPE"] = build_type
    updated["RV_BUILD_PARALLELISM"] = str(parallelism)
    updated["RV_CFG_EXTRA"] = cfg_extra
    return updated


def _kill_process_tree(proc: subprocess.Popen) -> None:
    # Children of the shell (cmake, make, compilers) hold the output pipe open.
    if os.name == "posix":
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    else:
        proc.kill()


def _pump(stream: TextIO, log_file: TextIO, echo: TextIO | None) -> None:
    for line in stream:
        log_file.write(line)
        if echo is not None:
            echo.write(line)
            echo.flush()


def run_upstream(
    commands: list[str],
    source_dir: Path,
    log_path: Path,
    env: dict[str, str],
    shell: str = "bash",
    rvcmds: str = RVCMDS,
    timeout: int | None = None,
    echo: TextIO | None = None,
) -> UpstreamResult:
    """Run upstream alias commands in ``source_dir``.

    Args:
        commands: Shell commands, one per line of the script.
        source_dir: Checkout root containing rvcmds.sh.
        log_path: Stage log file (the script is written next to it).
        env: Complete environment for the subprocess.
        shell: Shell executable.
        rvcmds: Name of the alias file relative to ``source_dir``.
        timeout: Timeout in seconds (None = no timeout).
        echo: Stream that also receives the output.

    Returns:
        UpstreamResult with execution details.

    Raises:
        UpstreamExecutionError: If the shell cannot be started or times out.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)
    script_path = log_path.with_suffix(".sh")
    script_path.write_text(compose_upstream_script(commands, rvcmds), encoding="utf-8")

    cmd_str = "; ".join(commands)
    logger.info("Executing upstream: %s", cmd_str)
    logger.debug("Working directory: %s", source_dir)

    started_at = datetime.now(timezone.utc)
    timed_out = threading.Event()

    try:
        with log_path.open("w", encoding="utf-8") as log_file:
            log_file.write(f"# Command: {cmd_str}\n")
            log_file.write(f"# Started: {started_at.isoformat()}\n")
            log_file.write(f"# CWD: {source_dir}\n")
            log_file.write("# " + "=" * 70 + "\n\n")
            log_file.flush()

            proc = subprocess.Popen(
                [shell, str(script_path)],
                cwd=source_dir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name == "posix",
            )

            timer: threading.Timer | None = None
            if timeout is not None:

                def _kill() -> None:
                    timed_out.set()
                    _kill_process_tree(proc)

                timer = threading.Timer(timeout, _kill)
                timer.start()
            try:
                if proc.stdout is not None:
                    _pump(proc.stdout, log_file, echo)
                exit_code = proc.wait()
            finally:
                if timer is not None:
                    timer.cancel()

    except OSError as e:
        error_message = f"Failed to execute {shell}: {e}"
        logger.error(error_message)
        raise UpstreamExecutionError(error_message, code="execution_error") from e

    if timed_out.is_set():
        error_message = f"Upstream command timed out after {timeout} seconds"
        logger.error("%s. See log: %s", error_message, log_path)
        with log_path.open("a", encoding="utf-8") as log_file:
            log_file.write(f"\n# TIMEOUT after {timeout} seconds\n")
        raise UpstreamExecutionError(error_message, exit_code=-1, code="timeout")

    finished_at = datetime.now(timezone.utc)
    success = exit_code == 0
    if not success:
        logger.error("Upstream command failed with exit code %d. See log: %s", exit_code, log_path)

    with log_path.open("a", encoding="utf-8") as log_file:
        log_file.write(f"\n# Finished: {finished_at.isoformat()}\n")
        log_file.write(f"# Exit code: {exit_code}\n")
        duration = (finished_at - started_at).total_seconds()
        log_file.write(f"# Duration: {duration:.1f}s\n")

    return UpstreamResult(
        success=success,
        exit_code=exit_code,
        log_path=log_path,
        command=cmd_str,
        started_at=started_at,
        finished_at=finished_at,
    )


def expected_binary(source_dir: Path, platform: Platform) -> Path:
    """Return the path of the main binary the build must produce."""
    name = "rv.exe" if platform.is_windows else "rv"
    return source_dir / STAGE_BINARY_DIR / name


def verify_output_binary(source_dir: Path, platform: Platform) -> Path:
    """Check that the main build produced its binary.

    Raises:
        BuildFailedError: If the binary is missing.
    """
    binary = expected_binary(source_dir, platform)
    if not binary.is_file():
        raise BuildFailedError(
            f"Build exited successfully but {binary} was not produced",
            exit_code=0,
            code="missing_binary",
        )
    logger.info("Output binary: %s", binary)
    return binary


__all__ = [
    "BUILD_COMMANDS",
    "BuildFailedError",
    "CONFIGURE_COMMANDS",
    "RVCMDS",
    "SETUP_COMMANDS",
    "UpstreamExecutionError",
    "UpstreamResult",
    "compose_upstream_script",
    "dependencies_commands",
    "expected_binary",
    "run_upstream",
    "upstream_environment",
    "verify_output_binary",
]
