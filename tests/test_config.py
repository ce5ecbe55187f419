"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from openrv_build.config import DEFAULT_REPO, Settings, get_settings, print_settings_json
from openrv_build.types import ArchiveFormat, Platform


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run each test in an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()

        assert settings.tag is None
        assert settings.repo == DEFAULT_REPO
        assert settings.platform is Platform.LINUX_ROCKY9
        assert settings.arch == "x86_64"
        assert settings.project_name == "OpenRV"
        assert settings.supported_tags == []
        assert settings.qt_home is None
        assert settings.vfx_platform == "CY2024"
        assert settings.build_type == "Release"
        assert settings.build_parallelism >= 1
        assert settings.cfg_extra == ""
        assert settings.fix_gc_include is True
        assert settings.fix_openssl_libs is True
        assert settings.wrap_compilers is True
        assert settings.log_level == "INFO"
        assert settings.build_timeout is None
        assert settings.download_timeout == 3600

    def test_default_out_dir_is_below_cwd(self, tmp_path) -> None:
        """The default output directory should be ./out."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings()
        assert settings.out_dir == tmp_path / "out"

    def test_settings_from_prefixed_env(self) -> None:
        """Settings should be loadable from OPENRV_ variables."""
        with patch.dict(
            os.environ,
            {
                "OPENRV_TAG": "v2.0.0",
                "OPENRV_LOG_LEVEL": "DEBUG",
                "OPENRV_WRAP_COMPILERS": "false",
                "OPENRV_SUPPORTED_TAGS": '["v2.0.0", "v2.1.0"]',
            },
            clear=True,
        ):
            settings = Settings()
            assert settings.tag == "v2.0.0"
            assert settings.log_level == "DEBUG"
            assert settings.wrap_compilers is False
            assert settings.supported_tags == ["v2.0.0", "v2.1.0"]

    def test_settings_from_plain_env_names(self) -> None:
        """Variables understood by the upstream scripts should be accepted."""
        with patch.dict(
            os.environ,
            {
                "DISTRO_SUFFIX": "linux-ubuntu",
                "QT_HOME": "/opt/qt/6.5.3/gcc_64",
                "RV_VFX_PLATFORM": "CY2023",
                "RV_BUILD_TYPE": "Debug",
                "RV_BUILD_PARALLELISM": "6",
                "RV_CFG_EXTRA": "-DFOO=1",
                "WORKDIR": "/tmp/rv-work",
                "OUT_DIR": "/tmp/rv-out",
                "NDI_SDK_URL": "https://example.com/ndi.tar.gz",
            },
            clear=True,
        ):
            settings = Settings()
            assert settings.platform is Platform.LINUX_UBUNTU
            assert settings.qt_home == Path("/opt/qt/6.5.3/gcc_64")
            assert settings.vfx_platform == "CY2023"
            assert settings.build_type == "Debug"
            assert settings.build_parallelism == 6
            assert settings.cfg_extra == "-DFOO=1"
            assert settings.workdir == Path("/tmp/rv-work")
            assert settings.out_dir == Path("/tmp/rv-out")
            assert settings.ndi_sdk_url == "https://example.com/ndi.tar.gz"

    def test_invalid_platform_rejected(self) -> None:
        """Unknown platform names should fail validation."""
        with patch.dict(os.environ, {"OPENRV_PLATFORM": "macos"}, clear=True):
            with pytest.raises(ValidationError):
                Settings()

    def test_parallelism_must_be_positive(self) -> None:
        """RV_BUILD_PARALLELISM=0 should fail validation."""
        with patch.dict(os.environ, {"RV_BUILD_PARALLELISM": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings()

    def test_init_by_field_name(self) -> None:
        """Settings should accept field names as keyword arguments."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(platform=Platform.WINDOWS, workdir=Path("/w"))
        assert settings.platform is Platform.WINDOWS
        assert settings.workdir == Path("/w")


class TestArchiveFormat:
    """Test effective archive format selection."""

    def test_linux_defaults_to_tar_gz(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(platform=Platform.LINUX_ROCKY9)
        assert settings.effective_archive_format() is ArchiveFormat.TAR_GZ

    def test_windows_defaults_to_zip(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(platform=Platform.WINDOWS)
        assert settings.effective_archive_format() is ArchiveFormat.ZIP

    def test_explicit_format_wins(self) -> None:
        with patch.dict(os.environ, {"OPENRV_ARCHIVE_FORMAT": "zip"}, clear=True):
            settings = Settings(platform=Platform.LINUX_UBUNTU)
        assert settings.effective_archive_format() is ArchiveFormat.ZIP


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_returns_valid_json(self) -> None:
        """Output should be valid JSON with all fields."""
        with patch.dict(os.environ, {}, clear=True):
            data = json.loads(print_settings_json(Settings()))

        for key in ("repo", "platform", "workdir", "out_dir", "qt_version", "log_level"):
            assert key in data
        assert data["platform"] == "linux-rocky9"
