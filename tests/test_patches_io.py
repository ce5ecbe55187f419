"""Tests for patches/io.py module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from openrv_build.patches.io import (
    BUILTIN_CATALOG_PATH,
    catalog_digest,
    load_catalog,
    load_yaml,
    parse_catalog_data,
)
from openrv_build.types import Criticality, Platform


class TestLoadYaml:
    """Tests for load_yaml function."""

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_yaml(path) == {}

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_yaml(path)

    def test_invalid_yaml_is_value_error(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("patches: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_yaml(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml(tmp_path / "missing.yaml")


class TestBuiltinCatalog:
    """Tests for the catalog shipped with the package."""

    def test_builtin_catalog_loads(self):
        catalog = load_catalog()
        ids = [p.patch_id for p in catalog.patches]
        assert ids == [
            "rvcmds-cfg-extra",
            "dav1d-use-git",
            "glew-2.3.0",
            "openssl-windows-no-asm",
            "ffmpeg-msvc-linker",
            "atomic-ops-msvc-intrinsics",
        ]

    def test_builtin_patches_are_optional(self):
        catalog = load_catalog(BUILTIN_CATALOG_PATH)
        assert all(p.criticality is Criticality.OPTIONAL for p in catalog.patches)

    def test_windows_only_patches(self):
        catalog = load_catalog()
        linux = {p.patch_id for p in catalog.for_platform(Platform.LINUX_ROCKY9)}
        assert linux == {"rvcmds-cfg-extra", "dav1d-use-git", "glew-2.3.0"}
        assert len(catalog.for_platform(Platform.WINDOWS)) == 6


class TestParseCatalogData:
    """Tests for parse_catalog_data function."""

    def test_relative_diff_resolved_against_catalog_dir(self, tmp_path):
        data = {
            "patches": [
                {
                    "patch_id": "with-diff",
                    "target": "CMakeLists.txt",
                    "variants": [{"diff": "diffs/fix.diff"}],
                }
            ]
        }
        catalog = parse_catalog_data(data, base_dir=tmp_path)
        diff = catalog.patches[0].variants[0].diff
        assert Path(diff) == (tmp_path / "diffs" / "fix.diff").resolve()

    def test_invalid_data_raises_validation_error(self):
        with pytest.raises(ValidationError):
            parse_catalog_data({"patches": [{"patch_id": "x"}]})

    def test_load_user_catalog(self, tmp_path):
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "version: 1\n"
            "patches:\n"
            "  - patch_id: one\n"
            "    target: a.txt\n"
            "    criticality: required\n"
            "    variants:\n"
            "      - replacements:\n"
            "          - pattern: old\n"
            "            replacement: new\n"
        )
        catalog = load_catalog(path)
        assert catalog.patches[0].criticality is Criticality.REQUIRED


class TestCatalogDigest:
    """Tests for catalog_digest function."""

    def test_digest_is_stable(self):
        patches = load_catalog().patches
        assert catalog_digest(patches) == catalog_digest(load_catalog().patches)

    def test_digest_depends_on_platform_subset(self):
        catalog = load_catalog()
        linux = catalog_digest(catalog.for_platform(Platform.LINUX_ROCKY9))
        windows = catalog_digest(catalog.for_platform(Platform.WINDOWS))
        assert linux != windows

    def test_rocky_and_ubuntu_share_digest(self):
        catalog = load_catalog()
        assert catalog_digest(catalog.for_platform(Platform.LINUX_ROCKY9)) == (
            catalog_digest(catalog.for_platform(Platform.LINUX_UBUNTU))
        )
