"""Tests for env/qt.py module.

Qt installations are simulated with marker files under tmp_path.
"""

from pathlib import Path

import pytest

from openrv_build.env.qt import (
    QtInstallation,
    QtNotFoundError,
    detect_qt,
    find_config_prefixes,
    find_kit_dirs,
    is_valid_qt_prefix,
    qt_environment,
)
from openrv_build.types import Platform


def make_linux_qt(prefix):
    (prefix / "lib").mkdir(parents=True)
    (prefix / "lib" / "libQt6Core.so").write_text("")
    (prefix / "bin").mkdir()
    return prefix


def make_windows_qt(prefix):
    (prefix / "bin").mkdir(parents=True)
    (prefix / "bin" / "Qt6Core.dll").write_text("")
    return prefix


def make_config_qt(prefix):
    config_dir = prefix / "lib" / "cmake" / "Qt6"
    config_dir.mkdir(parents=True)
    (config_dir / "Qt6Config.cmake").write_text("")
    return prefix


@pytest.fixture
def empty_home(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return home


class TestIsValidQtPrefix:
    """Tests for is_valid_qt_prefix function."""

    def test_linux_marker(self, tmp_path):
        prefix = make_linux_qt(tmp_path / "qt")
        assert is_valid_qt_prefix(prefix, Platform.LINUX_ROCKY9)

    def test_windows_marker(self, tmp_path):
        prefix = make_windows_qt(tmp_path / "qt")
        assert is_valid_qt_prefix(prefix, Platform.WINDOWS)
        assert not is_valid_qt_prefix(prefix, Platform.LINUX_ROCKY9)

    def test_config_marker_any_platform(self, tmp_path):
        prefix = make_config_qt(tmp_path / "qt")
        assert is_valid_qt_prefix(prefix, Platform.LINUX_UBUNTU)
        assert is_valid_qt_prefix(prefix, Platform.WINDOWS)

    def test_directory_without_marker(self, tmp_path):
        (tmp_path / "qt" / "lib").mkdir(parents=True)
        assert not is_valid_qt_prefix(tmp_path / "qt", Platform.LINUX_ROCKY9)

    def test_missing_directory(self, tmp_path):
        assert not is_valid_qt_prefix(tmp_path / "missing", Platform.LINUX_ROCKY9)


class TestDetectQt:
    """Tests for detect_qt precedence."""

    def test_preset_qt_home_wins(self, tmp_path, empty_home):
        preset = make_linux_qt(tmp_path / "preset")
        sdk_root = tmp_path / "opt"
        make_linux_qt(sdk_root / "6.5.3" / "gcc_64")

        qt = detect_qt(
            Platform.LINUX_ROCKY9,
            qt_home=preset,
            home=empty_home,
            search_roots=(sdk_root,),
        )

        assert qt == QtInstallation(home=preset, source="preset")

    def test_invalid_preset_falls_through(self, tmp_path, empty_home):
        preset = tmp_path / "preset"
        preset.mkdir()
        sdk_root = tmp_path / "opt"
        kit = make_linux_qt(sdk_root / "6.5.3" / "gcc_64")

        qt = detect_qt(
            Platform.LINUX_ROCKY9, qt_home=preset, home=empty_home, search_roots=(sdk_root,)
        )

        assert qt.home == kit
        assert qt.source == "sdk-image"

    def test_sdk_image_config_prefix(self, tmp_path, empty_home):
        """A Qt6Config.cmake below an SDK root identifies the prefix."""
        sdk_root = make_config_qt(tmp_path / "qttemp")

        qt = detect_qt(Platform.LINUX_ROCKY9, home=empty_home, search_roots=(sdk_root,))

        assert qt.home == sdk_root

    def test_highest_kit_version_first(self, tmp_path, empty_home):
        sdk_root = tmp_path / "opt"
        make_linux_qt(sdk_root / "6.5.1" / "gcc_64")
        newest = make_linux_qt(sdk_root / "6.5.3" / "gcc_64")

        qt = detect_qt(Platform.LINUX_ROCKY9, home=empty_home, search_roots=(sdk_root,))

        assert qt.home == newest

    def test_version_filter(self, tmp_path, empty_home):
        sdk_root = tmp_path / "opt"
        make_linux_qt(sdk_root / "6.8.0" / "gcc_64")

        with pytest.raises(QtNotFoundError):
            detect_qt(Platform.LINUX_ROCKY9, home=empty_home, search_roots=(sdk_root,))

    def test_user_install(self, tmp_path):
        home = tmp_path / "home"
        kit = make_linux_qt(home / "Qt" / "6.5.3" / "gcc_64")

        qt = detect_qt(Platform.LINUX_UBUNTU, home=home, search_roots=())

        assert qt == QtInstallation(home=kit, source="user")

    def test_windows_msvc_kit(self, tmp_path, empty_home):
        sdk_root = tmp_path / "Qt"
        kit = make_windows_qt(sdk_root / "6.5.3" / "msvc2019_64")

        qt = detect_qt(Platform.WINDOWS, home=empty_home, search_roots=(sdk_root,))

        assert qt.home == kit

    def test_not_found(self, tmp_path, empty_home):
        with pytest.raises(QtNotFoundError) as exc_info:
            detect_qt(
                Platform.LINUX_ROCKY9,
                home=empty_home,
                search_roots=(tmp_path / "nowhere",),
            )
        assert exc_info.value.code == "qt_not_found"


class TestSearchHelpers:
    """Tests for directory search helpers."""

    def test_config_prefix_depth_limit(self, tmp_path):
        make_config_qt(tmp_path / "a")
        assert find_config_prefixes(tmp_path, max_depth=4) == []
        assert find_config_prefixes(tmp_path, max_depth=5) == [tmp_path / "a"]

    def test_config_without_prefix_levels_is_skipped(self, tmp_path, monkeypatch):
        """A config file less than three levels below the path start has no prefix."""
        monkeypatch.chdir(tmp_path)
        (tmp_path / "qt").mkdir()
        (tmp_path / "qt" / "Qt6Config.cmake").write_text("")
        make_config_qt(tmp_path / "qt" / "kit")

        assert find_config_prefixes(Path("qt"), max_depth=5) == [Path("qt") / "kit"]

    def test_kit_dirs_glob(self, tmp_path):
        make_windows_qt(tmp_path / "6.5.3" / "msvc2019_64")
        make_windows_qt(tmp_path / "6.5.3" / "mingw_64")
        kits = find_kit_dirs(tmp_path, "msvc*_64", "6.5")
        assert kits == [tmp_path / "6.5.3" / "msvc2019_64"]


class TestQtEnvironment:
    """Tests for qt_environment function."""

    def test_prepends_prefix_and_bin(self, tmp_path):
        qt = QtInstallation(home=tmp_path / "qt", source="preset")
        env = {"PATH": "/usr/bin", "CMAKE_PREFIX_PATH": "/opt/other"}

        updated = qt_environment(qt, env)

        assert updated["QT_HOME"] == str(tmp_path / "qt")
        assert updated["CMAKE_PREFIX_PATH"] == f"{tmp_path / 'qt'};/opt/other"
        assert updated["PATH"].startswith(str(tmp_path / "qt" / "bin"))
        assert env == {"PATH": "/usr/bin", "CMAKE_PREFIX_PATH": "/opt/other"}

    def test_empty_prefix_path(self, tmp_path):
        qt = QtInstallation(home=tmp_path / "qt", source="preset")
        updated = qt_environment(qt, {})
        assert updated["CMAKE_PREFIX_PATH"] == str(tmp_path / "qt")
        assert updated["PATH"] == str(tmp_path / "qt" / "bin")
