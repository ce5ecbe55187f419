"""Build environment module.

This module handles:
- Qt installation discovery
- Compiler toolchain detection
- Optional vendor SDK download
"""

from openrv_build.env.qt import QtInstallation, QtNotFoundError, detect_qt, qt_environment
from openrv_build.env.sdks import SdkError, SdkSetup, prepare_sdks
from openrv_build.env.toolchain import Toolchain, ToolchainError, detect_toolchain

__all__ = [
    "QtInstallation",
    "QtNotFoundError",
    "SdkError",
    "SdkSetup",
    "Toolchain",
    "ToolchainError",
    "detect_qt",
    "detect_toolchain",
    "prepare_sdks",
    "qt_environment",
]
