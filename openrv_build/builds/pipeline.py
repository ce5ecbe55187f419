"""Build pipeline orchestration.

This is the main entry point for a CI run. Stages run strictly forward:

1. checkout      clone/reuse the upstream tree at the tag
2. patch         apply the patch catalog
3. sdks          download optional vendor SDKs
4. environment   detect Qt and the compiler toolchain
5. setup         rvsetup + rvcfg
6. dependencies  build dependency targets, then layout fixups
7. build         rvbuild, then verify the output binary
8. package       archive the staged tree

Each stage reads and extends an explicit BuildContext. The process
environment is only read once, to seed the context.

A failed stage raises PipelineError. Failures of the upstream stages also
render log diagnostics first.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TextIO

import httpx

from openrv_build.builds.artifacts import (
    PackagingError,
    archive_name,
    generate_manifest,
    package_stage,
    write_manifest,
)
from openrv_build.builds.diagnostics import collect_diagnostics, render_diagnostics
from openrv_build.builds.fixups import FixupResult, run_fixups
from openrv_build.builds.runner import (
    BUILD_COMMANDS,
    CONFIGURE_COMMANDS,
    SETUP_COMMANDS,
    BuildFailedError,
    UpstreamExecutionError,
    dependencies_commands,
    run_upstream,
    upstream_environment,
    verify_output_binary,
)
from openrv_build.config import Settings
from openrv_build.env.qt import QtInstallation, QtNotFoundError, detect_qt, qt_environment
from openrv_build.env.sdks import SdkError, prepare_sdks
from openrv_build.env.toolchain import Toolchain, ToolchainError, detect_toolchain
from openrv_build.patches.apply import PatchApplyError, PatchOutcome, apply_patches
from openrv_build.patches.io import catalog_digest, load_catalog
from openrv_build.source.cache_key import compute_cache_key, create_build_inputs
from openrv_build.source.checkout import CheckoutError, SourceTree, prepare_source
from openrv_build.types import ArtifactInfo, Platform, Stage, StageStatus

logger = logging.getLogger(__name__)

LOGS_DIRNAME = "logs"
MANIFEST_FILENAME = "manifest.json"

# Exceptions that end a stage; each carries a ``code`` attribute.
# A plain OSError from a stage is reported as IO_ERROR_CODE.
STAGE_ERRORS = (
    CheckoutError,
    PatchApplyError,
    SdkError,
    QtNotFoundError,
    ToolchainError,
    UpstreamExecutionError,
    BuildFailedError,
    PackagingError,
)
IO_ERROR_CODE = "io_error"

# Stages that run upstream build commands and get diagnostics on failure
UPSTREAM_STAGES = (Stage.SETUP, Stage.DEPENDENCIES, Stage.BUILD)


@dataclass
class StageRecord:
    """Status of one pipeline stage."""

    stage: Stage
    status: StageStatus
    message: str = ""


@dataclass
class BuildContext:
    """State threaded through the pipeline stages.

    Attributes:
        settings: Effective settings.
        platform: Platform being built.
        tag: Upstream tag.
        workdir: Work directory.
        env: Environment mapping for upstream subprocesses.
        source: Checked-out tree (after checkout).
        cfg_extra: Extra rvcfg CMake arguments (after sdks).
        patch_outcomes: Per-patch results (after patch).
        patch_digest: Digest of the patches used (after patch).
        qt: Detected Qt installation (after environment).
        toolchain: Detected toolchain (after environment).
        fixups: Fixup results (after dependencies).
        stage_logs: Stage logs written so far.
    """

    settings: Settings
    platform: Platform
    tag: str
    workdir: Path
    env: dict[str, str] = field(default_factory=dict)
    source: SourceTree | None = None
    cfg_extra: str = ""
    patch_outcomes: list[PatchOutcome] = field(default_factory=list)
    patch_digest: str | None = None
    qt: QtInstallation | None = None
    toolchain: Toolchain | None = None
    fixups: list[FixupResult] = field(default_factory=list)
    stage_logs: list[Path] = field(default_factory=list)

    @property
    def source_dir(self) -> Path:
        if self.source is None:
            raise RuntimeError("source tree is not checked out yet")
        return self.source.path

    @property
    def build_dir(self) -> Path:
        return self.source_dir / "_build"

    @property
    def logs_dir(self) -> Path:
        return self.workdir / LOGS_DIRNAME


@dataclass
class PipelineResult:
    """Result of a successful pipeline run."""

    tag: str
    commit: str
    platform: Platform
    archive_path: Path
    artifact: ArtifactInfo
    cache_key: str
    manifest_path: Path
    stages: list[StageRecord] = field(default_factory=list)
    patch_outcomes: list[PatchOutcome] = field(default_factory=list)


class PipelineError(Exception):
    """Raised when a pipeline stage fails."""

    def __init__(
        self,
        message: str,
        stage: Stage,
        code: str = "pipeline_error",
        stages: list[StageRecord] | None = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.code = code
        self.stages = stages or []


def create_context(settings: Settings, tag: str) -> BuildContext:
    """Create the initial context, seeding env from the process environment."""
    return BuildContext(
        settings=settings,
        platform=settings.platform,
        tag=tag,
        workdir=settings.workdir,
        env=dict(os.environ),
    )


def stage_checkout(ctx: BuildContext) -> str:
    ctx.source = prepare_source(
        ctx.settings.repo,
        ctx.tag,
        ctx.workdir,
        supported_tags=ctx.settings.supported_tags,
    )
    return f"{ctx.tag} at {ctx.source.commit[:12]}"


def stage_patch(ctx: BuildContext) -> str:
    try:
        catalog = load_catalog(ctx.settings.patch_catalog)
    except (OSError, ValueError) as e:
        raise PatchApplyError(
            f"Cannot load patch catalog: {e}", patch_id="catalog", code="invalid_catalog"
        ) from e

    patches = catalog.for_platform(ctx.platform)
    ctx.patch_digest = catalog_digest(patches)
    ctx.patch_outcomes = apply_patches(patches, ctx.source_dir, ctx.platform)
    return f"{len(ctx.patch_outcomes)} patches processed"


def make_sdk_stage(client: httpx.Client | None) -> Callable[[BuildContext], str]:
    def stage_sdks(ctx: BuildContext) -> str:
        setup = prepare_sdks(ctx.settings, ctx.workdir, client=client)
        ctx.cfg_extra = setup.cfg_extra(ctx.settings.cfg_extra)
        ctx.env.update(setup.env)
        return f"{len(setup.cmake_args)} SDK arguments"

    return stage_sdks


def stage_environment(ctx: BuildContext) -> str:
    settings = ctx.settings
    ctx.qt = detect_qt(ctx.platform, qt_home=settings.qt_home, version=settings.qt_version)
    ctx.env = qt_environment(ctx.qt, ctx.env)

    ctx.toolchain = detect_toolchain(
        ctx.platform, ctx.workdir, ctx.env, wrap_compilers=settings.wrap_compilers
    )
    ctx.env.update(ctx.toolchain.env)

    ctx.env = upstream_environment(
        ctx.env,
        vfx_platform=settings.vfx_platform,
        build_type=settings.build_type,
        parallelism=settings.build_parallelism,
        cfg_extra=ctx.cfg_extra,
    )
    logger.info("QT_HOME=%s", ctx.qt.home)
    logger.info("RV_VFX_PLATFORM=%s", settings.vfx_platform)
    logger.info("CC=%s CXX=%s", ctx.toolchain.cc, ctx.toolchain.cxx)
    logger.info("RV_CFG_EXTRA=%s", ctx.cfg_extra)
    return f"Qt {ctx.qt.home}, {ctx.toolchain.kind}"


def _upstream(
    ctx: BuildContext,
    name: str,
    commands: list[str],
    echo: TextIO | None,
) -> None:
    log_path = ctx.logs_dir / f"{name}.log"
    ctx.stage_logs.append(log_path)
    result = run_upstream(
        commands,
        ctx.source_dir,
        log_path,
        ctx.env,
        shell=ctx.settings.shell,
        timeout=ctx.settings.build_timeout,
        echo=echo,
    )
    if not result.success:
        raise BuildFailedError(
            f"{name} failed with exit code {result.exit_code}",
            exit_code=result.exit_code,
            code=f"{name}_failed",
        )


def make_upstream_stages(
    echo: TextIO | None,
) -> dict[Stage, Callable[[BuildContext], str]]:
    def stage_setup(ctx: BuildContext) -> str:
        _upstream(ctx, "setup", SETUP_COMMANDS, echo)
        _upstream(ctx, "configure", CONFIGURE_COMMANDS, echo)
        return "configured"

    def stage_dependencies(ctx: BuildContext) -> str:
        _upstream(
            ctx, "dependencies", dependencies_commands(ctx.settings.build_type), echo
        )
        ctx.fixups = run_fixups(
            ctx.build_dir,
            ctx.platform,
            fix_gc_include=ctx.settings.fix_gc_include,
            fix_openssl_libs=ctx.settings.fix_openssl_libs,
        )
        applied = [f.name for f in ctx.fixups if f.applied]
        return f"fixups applied: {', '.join(applied) or 'none'}"

    def stage_build(ctx: BuildContext) -> str:
        _upstream(ctx, "build", BUILD_COMMANDS, echo)
        binary = verify_output_binary(ctx.source_dir, ctx.platform)
        return f"binary {binary}"

    return {
        Stage.SETUP: stage_setup,
        Stage.DEPENDENCIES: stage_dependencies,
        Stage.BUILD: stage_build,
    }


def run_pipeline(
    settings: Settings,
    tag: str | None = None,
    echo: TextIO | None = None,
    diagnostics_stream: TextIO | None = None,
    client: httpx.Client | None = None,
) -> PipelineResult:
    """Run the full pipeline for one platform.

    Args:
        settings: Effective settings.
        tag: Upstream tag (falls back to settings.tag).
        echo: Stream receiving upstream build output (None = log files only).
        diagnostics_stream: Stream for failure diagnostics (default stderr).
        client: HTTPX client for SDK downloads.

    Returns:
        PipelineResult describing the archive.

    Raises:
        PipelineError: If any stage fails.
    """
    tag = tag or settings.tag
    if not tag:
        raise PipelineError("No tag given", stage=Stage.CHECKOUT, code="missing_tag")
    if diagnostics_stream is None:
        diagnostics_stream = sys.stderr

    ctx = create_context(settings, tag)
    records: list[StageRecord] = []

    stages: list[tuple[Stage, Callable[[BuildContext], str]]] = [
        (Stage.CHECKOUT, stage_checkout),
        (Stage.PATCH, stage_patch),
        (Stage.SDKS, make_sdk_stage(client)),
        (Stage.ENVIRONMENT, stage_environment),
        *make_upstream_stages(echo).items(),
    ]

    total = len(stages) + 1
    for index, (stage, func) in enumerate(stages, start=1):
        logger.info("[%d/%d] %s", index, total, stage.value)
        try:
            message = func(ctx)
        except (*STAGE_ERRORS, OSError) as e:
            code = e.code if isinstance(e, STAGE_ERRORS) else IO_ERROR_CODE
            records.append(StageRecord(stage, StageStatus.FAILED, str(e)))
            logger.error("Stage %s failed: %s", stage.value, e)
            if stage in UPSTREAM_STAGES and ctx.source is not None:
                sections = collect_diagnostics(ctx.build_dir, ctx.stage_logs)
                render_diagnostics(sections, diagnostics_stream)
            raise PipelineError(str(e), stage=stage, code=code, stages=records) from e
        records.append(StageRecord(stage, StageStatus.SUCCEEDED, message))

    logger.info("[%d/%d] %s", total, total, Stage.PACKAGE.value)
    if ctx.source is None:
        raise PipelineError(
            "No source tree after checkout",
            stage=Stage.PACKAGE,
            code="missing_source",
            stages=records,
        )
    inputs = create_build_inputs(settings, tag, ctx.source.commit, ctx.patch_digest)
    cache_key = compute_cache_key(inputs)
    fmt = settings.effective_archive_format()
    name = archive_name(settings.project_name, tag, ctx.platform, settings.arch, fmt)
    try:
        artifact = package_stage(ctx.build_dir / "stage", settings.out_dir, name, fmt)
        manifest = generate_manifest(
            artifact,
            cache_key=cache_key,
            build_inputs=inputs.to_dict(),
            patches=[
                {**asdict(o), "status": o.status.value} for o in ctx.patch_outcomes
            ],
        )
        manifest_path = write_manifest(manifest, ctx.logs_dir / MANIFEST_FILENAME)
    except (PackagingError, OSError) as e:
        records.append(StageRecord(Stage.PACKAGE, StageStatus.FAILED, str(e)))
        code = e.code if isinstance(e, PackagingError) else "write_error"
        raise PipelineError(str(e), stage=Stage.PACKAGE, code=code, stages=records) from e
    records.append(StageRecord(Stage.PACKAGE, StageStatus.SUCCEEDED, name))

    return PipelineResult(
        tag=tag,
        commit=ctx.source.commit,
        platform=ctx.platform,
        archive_path=settings.out_dir / name,
        artifact=artifact,
        cache_key=cache_key,
        manifest_path=manifest_path,
        stages=records,
        patch_outcomes=ctx.patch_outcomes,
    )


__all__ = [
    "BuildContext",
    "PipelineError",
    "PipelineResult",
    "StageRecord",
    "create_context",
    "run_pipeline",
]
