"""Source patch module.

This module handles:
- Patch catalog schema validation
- Loading catalogs from YAML (built-in or user supplied)
- Applying patches with per-patch criticality
"""

from openrv_build.patches.apply import PatchApplyError, PatchOutcome, apply_patches
from openrv_build.patches.io import load_catalog
from openrv_build.patches.schema import PatchCatalogSchema, PatchSchema

__all__ = [
    "PatchApplyError",
    "PatchCatalogSchema",
    "PatchOutcome",
    "PatchSchema",
    "apply_patches",
    "load_catalog",
]
