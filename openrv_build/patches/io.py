"""Patch catalog loading.

This module provides helpers for loading patch catalogs from YAML files,
including the catalog shipped with the package.
"""

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from openrv_build.patches.schema import PatchCatalogSchema, PatchSchema

BUILTIN_CATALOG_PATH = Path(__file__).parent / "catalogs" / "default.yaml"


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file is not valid YAML or not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def parse_catalog_data(
    data: dict[str, Any],
    base_dir: Path | None = None,
) -> PatchCatalogSchema:
    """Parse and validate catalog data.

    Relative diff paths are resolved against ``base_dir``.

    Args:
        data: Dictionary containing catalog data.
        base_dir: Directory of the catalog file.

    Returns:
        Validated PatchCatalogSchema instance.

    Raises:
        pydantic.ValidationError: If data does not match schema.
    """
    catalog = PatchCatalogSchema.model_validate(data)
    if base_dir is not None:
        for patch in catalog.patches:
            for variant in patch.variants:
                if variant.diff and not Path(variant.diff).is_absolute():
                    variant.diff = str((base_dir / variant.diff).resolve())
    return catalog


def load_catalog(path: Path | None = None) -> PatchCatalogSchema:
    """Load a patch catalog.

    Args:
        path: Catalog file; the built-in catalog is used when None.

    Returns:
        Validated PatchCatalogSchema instance.
    """
    if path is None:
        path = BUILTIN_CATALOG_PATH
    data = load_yaml(path)
    return parse_catalog_data(data, base_dir=path.parent)


def catalog_digest(patches: list[PatchSchema]) -> str:
    """Compute a SHA-256 digest over a list of patches.

    Used as a cache key input: changing any patch of a platform changes
    the key of that platform only.
    """
    payload = [p.model_dump(mode="json") for p in patches]
    canonical_json = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


__all__ = [
    "BUILTIN_CATALOG_PATH",
    "catalog_digest",
    "load_catalog",
    "load_yaml",
    "parse_catalog_data",
]
