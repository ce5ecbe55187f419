"""Smoke tests for the CLI.

These tests verify CLI wiring without network access or an upstream
checkout; the pipeline itself is mocked.
"""

import json
import subprocess
import sys
import tarfile
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from openrv_build import __version__
from openrv_build.builds.pipeline import PipelineError
from openrv_build.cli import app
from openrv_build.config import Settings
from openrv_build.patches.io import catalog_digest, load_catalog
from openrv_build.source.cache_key import compute_cache_key, create_build_inputs
from openrv_build.types import Platform, Stage

runner = CliRunner()

COMMIT = "89abcdef0123456789abcdef0123456789abcdef"


@pytest.fixture(autouse=True)
def isolated_cwd(tmp_path, monkeypatch):
    """Run each test in an empty directory so no .env file is picked up."""
    monkeypatch.chdir(tmp_path)


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "OpenRV Build" in result.stdout

    def test_version_flag(self) -> None:
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    @pytest.mark.parametrize(
        "command",
        ["run", "checkout", "patch", "patches", "detect-qt", "fixups", "diagnose",
         "package", "cache-key", "config"],
    )
    def test_subcommand_help(self, command) -> None:
        result = runner.invoke(app, [command, "--help"])
        assert result.exit_code == 0


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_sections(self) -> None:
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        for section in ("Source:", "Target:", "Paths:", "Upstream build:", "Timeouts"):
            assert section in result.stdout

    def test_config_json(self) -> None:
        result = runner.invoke(
            app, ["config", "--json"], env={"OPENRV_PLATFORM": "windows"}
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["platform"] == "windows"
        assert data["arch"] == "x86_64"


class TestCLIPatches:
    """Test patches subcommands."""

    def test_list_builtin(self) -> None:
        result = runner.invoke(app, ["patches", "list"])
        assert result.exit_code == 0
        assert "Found 6 patch(es)" in result.stdout
        assert "dav1d-use-git" in result.stdout

    def test_list_json_platform_filter(self) -> None:
        result = runner.invoke(
            app, ["patches", "list", "--platform", "linux-ubuntu", "--json"]
        )
        assert result.exit_code == 0
        ids = [p["patch_id"] for p in json.loads(result.stdout)]
        assert ids == ["rvcmds-cfg-extra", "dav1d-use-git", "glew-2.3.0"]

    def test_validate_valid(self, tmp_path) -> None:
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "patches:\n"
            "  - patch_id: one\n"
            "    target: a.txt\n"
            "    variants:\n"
            "      - replacements:\n"
            "          - {pattern: old, replacement: new}\n"
        )
        result = runner.invoke(app, ["patches", "validate", str(path)])
        assert result.exit_code == 0
        assert "Valid patch catalog: 1 patch(es)" in result.stdout

    def test_validate_schema_error(self, tmp_path) -> None:
        path = tmp_path / "catalog.yaml"
        path.write_text("patches:\n  - patch_id: one\n")
        result = runner.invoke(app, ["patches", "validate", str(path)])
        assert result.exit_code == 1
        assert "Validation failed" in result.stdout

    def test_validate_missing_diff(self, tmp_path) -> None:
        path = tmp_path / "catalog.yaml"
        path.write_text(
            "patches:\n"
            "  - patch_id: with-diff\n"
            "    target: a.txt\n"
            "    variants:\n"
            "      - diff: missing.diff\n"
        )
        result = runner.invoke(app, ["patches", "validate", str(path)])
        assert result.exit_code == 1
        assert "diff files not found" in result.stdout

    def test_validate_missing_file(self, tmp_path) -> None:
        result = runner.invoke(app, ["patches", "validate", str(tmp_path / "no.yaml")])
        assert result.exit_code == 1


class TestCLIPatch:
    """Test patch command."""

    def test_applies_builtin_catalog(self, tmp_path) -> None:
        src = tmp_path / "OpenRV"
        src.mkdir()
        (src / "rvcmds.sh").write_text(
            "alias rvcfg='cmake -DRV_VFX_PLATFORM=${RV_VFX_PLATFORM}'\n"
        )
        result = runner.invoke(
            app, ["patch", str(src), "--platform", "linux-rocky9"]
        )
        assert result.exit_code == 0
        assert "rvcmds-cfg-extra: applied" in result.stdout
        assert "${RV_CFG_EXTRA}" in (src / "rvcmds.sh").read_text()


class TestCLIRun:
    """Test run command with a mocked pipeline."""

    def test_failure_exits_one(self) -> None:
        error = PipelineError("tag v9 not found", stage=Stage.CHECKOUT, code="tag_not_found")
        with patch("openrv_build.builds.pipeline.run_pipeline", side_effect=error):
            result = runner.invoke(app, ["run", "v9", "--quiet"])
        assert result.exit_code == 1
        assert "Stage checkout failed (tag_not_found)" in result.stdout

    def test_failure_json(self) -> None:
        error = PipelineError("rv missing", stage=Stage.BUILD, code="missing_binary")
        with patch("openrv_build.builds.pipeline.run_pipeline", side_effect=error):
            result = runner.invoke(app, ["run", "v2.0.0", "--json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["success"] is False
        assert data["error"] == {
            "code": "missing_binary",
            "category": "build",
            "stage": "build",
            "message": "rv missing",
        }

    def test_flags_override_settings(self, tmp_path) -> None:
        error = PipelineError("stop", stage=Stage.CHECKOUT, code="tag_not_found")
        with patch(
            "openrv_build.builds.pipeline.run_pipeline", side_effect=error
        ) as mock_run:
            runner.invoke(
                app,
                ["run", "v2.0.0", "-p", "windows", "-w", str(tmp_path), "-j", "3", "-q"],
            )
        settings = mock_run.call_args.args[0]
        assert settings.platform is Platform.WINDOWS
        assert settings.workdir == tmp_path
        assert settings.build_parallelism == 3
        assert mock_run.call_args.kwargs["echo"] is None


class TestCLIPackage:
    """Test package command."""

    def test_package_stage(self, tmp_path) -> None:
        stage = tmp_path / "stage"
        (stage / "app" / "bin").mkdir(parents=True)
        (stage / "app" / "bin" / "rv").write_bytes(b"rv")
        out_dir = tmp_path / "out"

        result = runner.invoke(
            app,
            ["package", str(stage), "--tag", "v1.2.3", "-p", "linux-rocky9",
             "-o", str(out_dir)],
        )

        assert result.exit_code == 0
        archive = out_dir / "OpenRV-v1.2.3-linux-rocky9-x86_64.tar.gz"
        assert archive.is_file()
        with tarfile.open(archive) as tar:
            assert "stage/app/bin/rv" in tar.getnames()

    def test_package_missing_stage(self, tmp_path) -> None:
        result = runner.invoke(
            app, ["package", str(tmp_path / "missing"), "--tag", "v1"]
        )
        assert result.exit_code == 1
        assert "stage_missing" in result.stdout


class TestCLICacheKey:
    """Test cache-key command."""

    def test_matches_library(self) -> None:
        result = runner.invoke(
            app, ["cache-key", "v2.0.0", COMMIT, "--platform", "linux-rocky9"]
        )
        assert result.exit_code == 0

        settings = Settings(platform=Platform.LINUX_ROCKY9)
        digest = catalog_digest(load_catalog().for_platform(Platform.LINUX_ROCKY9))
        expected = compute_cache_key(
            create_build_inputs(settings, "v2.0.0", COMMIT, digest)
        )
        assert result.stdout.strip() == expected

    def test_json(self) -> None:
        result = runner.invoke(app, ["cache-key", "v2.0.0", COMMIT, "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["inputs"]["commit"] == COMMIT
        assert data["cache_key"].startswith("openrv-")


class TestCLIDiagnose:
    """Test diagnose and fixups commands."""

    def test_diagnose(self, tmp_path) -> None:
        build = tmp_path / "OpenRV" / "_build"
        build.mkdir(parents=True)
        (build / "error_summary.txt").write_text("1 error\n")
        result = runner.invoke(app, ["diagnose", str(tmp_path / "OpenRV")])
        assert result.exit_code == 0
        assert "=== _build/error_summary.txt ===" in result.stderr
        assert "error_summary" not in result.stdout

    def test_diagnose_missing_build_dir(self, tmp_path) -> None:
        result = runner.invoke(app, ["diagnose", str(tmp_path)])
        assert result.exit_code == 1

    def test_fixups(self, tmp_path) -> None:
        include = tmp_path / "RV_DEPS_GC" / "install" / "include"
        include.mkdir(parents=True)
        (include / "gc.h").write_text("")
        result = runner.invoke(app, ["fixups", str(tmp_path), "-p", "linux-rocky9"])
        assert result.exit_code == 0
        assert "gc-include-layout: applied" in result.stdout
        assert (include / "gc" / "gc.h").is_file()


class TestCLIModuleInvocation:
    """Test running the package as a module."""

    def test_python_m(self) -> None:
        result = subprocess.run(
            [sys.executable, "-m", "openrv_build", "--version"],
            capture_output=True,
            text=True,
        )
        assert result.returncode == 0
        assert __version__ in result.stdout
