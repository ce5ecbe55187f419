"""Helpers for PATH-like environment variables."""

import os
from pathlib import Path


def prepend_path(entry: Path | str, value: str | None, sep: str = os.pathsep) -> str:
    """Prepend ``entry`` to a PATH-like ``value``."""
    if not value:
        return str(entry)
    return f"{entry}{sep}{value}"


__all__ = ["prepend_path"]
