"""OpenRV Build - release automation for tag-pinned OpenRV builds.

This package provides orchestration around the upstream OpenRV build
scripts: checkout, source patching, environment detection, dependency
and main builds, failure diagnostics, and release packaging.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
