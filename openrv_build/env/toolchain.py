"""Compiler toolchain detection.

This module handles:
- Linux: GCC wrappers that drop Intel-only version probes
- Windows: locating Visual Studio and loading its x64 developer environment

Autoconf/libtool checks in some dependencies (LibRaw among them) probe the
compiler with -V, -qversion or -version. GCC rejects those flags, so the
probe fails and configure gives up. The wrappers turn such a probe into
--version and pass everything else through.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from openrv_build.env.paths import prepend_path
from openrv_build.types import Platform

logger = logging.getLogger(__name__)

INTEL_VERSION_FLAGS = frozenset({"-V", "-qversion", "-version"})
FLAG_VARIABLES = ("CFLAGS", "CXXFLAGS", "LDFLAGS")
WRAP_DIRNAME = ".ci_cc_wrap"

VSWHERE_RELATIVE = Path("Microsoft Visual Studio") / "Installer" / "vswhere.exe"
VC_TOOLS_COMPONENT = "Microsoft.VisualStudio.Component.VC.Tools.x86.x64"

WRAPPER_TEMPLATE = """#!/bin/bash
# Generated by openrv-build. Drops Intel-only version flags that {name} rejects.
args=()
version_only=0
for a in "$@"; do
    case "$a" in
        -V|-qversion|-version) version_only=1 ;;
        *) args+=("$a") ;;
    esac
done
if [ "$version_only" = 1 ] && [ ${{#args[@]}} -eq 0 ]; then
    exec {real} --version
fi
exec {real} "${{args[@]}}"
"""


class ToolchainError(Exception):
    """Raised when no usable compiler toolchain is found."""

    def __init__(self, message: str, code: str = "toolchain_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class Toolchain:
    """A detected compiler toolchain.

    Attributes:
        kind: gcc-wrapped, gcc or msvc.
        cc: C compiler command.
        cxx: C++ compiler command.
        env: Environment variables to add for the upstream build.
    """

    kind: str
    cc: str
    cxx: str
    env: dict[str, str] = field(default_factory=dict)


def strip_intel_flags(value: str) -> str:
    """Remove Intel-only version flags from a compiler flags string."""
    return " ".join(f for f in value.split() if f not in INTEL_VERSION_FLAGS)


def render_wrapper(name: str, real: str) -> str:
    """Render the wrapper script for compiler ``name`` at path ``real``."""
    return WRAPPER_TEMPLATE.format(name=name, real=shlex.quote(real))


def _which(name: str, env: dict[str, str]) -> str:
    found = shutil.which(name, path=env.get("PATH"))
    if found is None:
        raise ToolchainError(f"{name} not found on PATH", code="compiler_not_found")
    return found


def write_compiler_wrappers(wrap_dir: Path, env: dict[str, str]) -> Toolchain:
    """Write gcc/g++ wrappers and return the toolchain using them.

    The real compilers are resolved before the wrapper directory is put on
    PATH, so the wrappers never call themselves.

    Args:
        wrap_dir: Directory for the wrapper scripts.
        env: Current build environment.

    Returns:
        Toolchain whose env points CC/CXX at the wrappers.

    Raises:
        ToolchainError: If gcc or g++ is missing.
    """
    real = {name: _which(name, env) for name in ("gcc", "g++")}

    wrap_dir.mkdir(parents=True, exist_ok=True)
    for name, real_path in real.items():
        wrapper = wrap_dir / name
        wrapper.write_text(render_wrapper(name, real_path), encoding="utf-8")
        wrapper.chmod(0o755)
        logger.debug("Wrote compiler wrapper %s -> %s", wrapper, real_path)

    updates = {
        "PATH": prepend_path(wrap_dir, env.get("PATH")),
        "CC": str(wrap_dir / "gcc"),
        "CXX": str(wrap_dir / "g++"),
    }
    for var in FLAG_VARIABLES:
        if var in env:
            updates[var] = strip_intel_flags(env[var])

    return Toolchain(
        kind="gcc-wrapped", cc=updates["CC"], cxx=updates["CXX"], env=updates
    )


def find_vswhere() -> Path | None:
    """Locate vswhere.exe in the Visual Studio installer directory."""
    program_files = os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
    candidate = Path(program_files) / VSWHERE_RELATIVE
    return candidate if candidate.is_file() else None


def find_vs_installation(vswhere: Path) -> Path | None:
    """Return the latest Visual Studio installation with the C++ tools."""
    try:
        out = subprocess.run(
            [
                str(vswhere),
                "-latest",
                "-products",
                "*",
                "-requires",
                VC_TOOLS_COMPONENT,
                "-property",
                "installationPath",
            ],
            capture_output=True,
            text=True,
            check=True,
        ).stdout.strip()
    except (OSError, subprocess.CalledProcessError) as e:
        logger.warning("vswhere failed: %s", e)
        return None
    return Path(out) if out else None


def parse_set_output(output: str) -> dict[str, str]:
    """Parse the output of ``cmd /c set`` into a mapping."""
    result: dict[str, str] = {}
    for line in output.splitlines():
        name, sep, value = line.partition("=")
        if sep and name:
            result[name] = value
    return result


def load_vsdevcmd_environment(vsdevcmd: Path, env: dict[str, str]) -> dict[str, str]:
    """Run VsDevCmd.bat for x64 and return the resulting environment.

    Raises:
        ToolchainError: If the developer command prompt cannot be loaded.
    """
    cmd = f'"{vsdevcmd}" -arch=x64 -host_arch=x64 >nul && set'
    try:
        result = subprocess.run(
            ["cmd.exe", "/s", "/c", f'"{cmd}"'],
            capture_output=True,
            text=True,
            env=env,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as e:
        raise ToolchainError(
            f"Failed to load MSVC environment from {vsdevcmd}: {e}",
            code="vsdevcmd_failed",
        ) from e
    return parse_set_output(result.stdout)


def detect_msvc(env: dict[str, str]) -> Toolchain:
    """Detect the MSVC toolchain.

    A ``cl.exe`` already on PATH (developer prompt, msvc-dev-cmd action) is
    used as-is; otherwise Visual Studio is located with vswhere.

    Raises:
        ToolchainError: If no MSVC installation is found.
    """
    if shutil.which("cl", path=env.get("PATH")):
        logger.info("Using MSVC from the current environment")
        return Toolchain(kind="msvc", cc="cl", cxx="cl")

    vswhere = find_vswhere()
    installation = find_vs_installation(vswhere) if vswhere else None
    if installation is None:
        raise ToolchainError(
            "Visual Studio with C++ build tools not found",
            code="msvc_not_found",
        )

    vsdevcmd = installation / "Common7" / "Tools" / "VsDevCmd.bat"
    if not vsdevcmd.is_file():
        raise ToolchainError(
            f"VsDevCmd.bat not found in {installation}",
            code="msvc_not_found",
        )

    loaded = load_vsdevcmd_environment(vsdevcmd, env)
    updates = {k: v for k, v in loaded.items() if env.get(k) != v}
    logger.info("Loaded MSVC x64 environment from %s", vsdevcmd)
    return Toolchain(kind="msvc", cc="cl", cxx="cl", env=updates)


def detect_toolchain(
    platform: Platform,
    workdir: Path,
    env: dict[str, str],
    wrap_compilers: bool = True,
) -> Toolchain:
    """Detect the compiler toolchain for ``platform``.

    Args:
        platform: Platform being built.
        workdir: Work directory (holds the wrapper directory on Linux).
        env: Current build environment.
        wrap_compilers: Write GCC wrappers on Linux.

    Returns:
        The detected Toolchain.

    Raises:
        ToolchainError: If no usable toolchain is found.
    """
    if platform.is_windows:
        return detect_msvc(env)

    if wrap_compilers:
        return write_compiler_wrappers(workdir / WRAP_DIRNAME, env)

    return Toolchain(kind="gcc", cc=_which("gcc", env), cxx=_which("g++", env))


__all__ = [
    "INTEL_VERSION_FLAGS",
    "Toolchain",
    "ToolchainError",
    "WRAP_DIRNAME",
    "detect_msvc",
    "detect_toolchain",
    "find_vs_installation",
    "find_vswhere",
    "load_vsdevcmd_environment",
    "parse_set_output",
    "render_wrapper",
    "strip_intel_flags",
    "write_compiler_wrappers",
]
