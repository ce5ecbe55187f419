"""Upstream source module.

This module handles:
- Cloning and checking out the upstream repository at a tag
- Cache key computation for the CI source and build caches
"""

from openrv_build.source.checkout import CheckoutError, SourceTree, prepare_source

__all__ = ["CheckoutError", "SourceTree", "prepare_source"]
