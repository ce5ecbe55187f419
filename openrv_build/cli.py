"""Thin CLI wrapper for openrv_build.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import sys
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from openrv_build import __version__
from openrv_build.config import Settings, get_settings, print_settings_json
from openrv_build.log import configure_logging
from openrv_build.types import ArchiveFormat, Platform

app = typer.Typer(
    name="openrv-build",
    help="OpenRV Build - tag-pinned OpenRV builds, patches and release archives",
    no_args_is_help=True,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"openrv-build version {__version__}")
        raise typer.Exit()


def _settings(**overrides: object) -> Settings:
    """Return settings with CLI flag overrides applied."""
    settings = get_settings()
    updates = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=updates) if updates else settings


def _echo_json(data: object) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """OpenRV Build - tag-pinned OpenRV builds, patches and release archives."""
    level = "DEBUG" if verbose else get_settings().log_level
    configure_logging(level)


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        typer.echo(print_settings_json(settings))
        return

    catalog_display = (
        str(settings.patch_catalog) if settings.patch_catalog else "(built-in)"
    )
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Source:[/bold]")
    console.print(f"  Repository:          {settings.repo}")
    console.print(f"  Tag:                 {settings.tag or '(not set)'}")
    console.print(f"  Supported tags:      {', '.join(settings.supported_tags) or '(any)'}")
    console.print()
    console.print("[bold]Target:[/bold]")
    console.print(f"  Platform:            {settings.platform.value}")
    console.print(f"  Architecture:        {settings.arch}")
    console.print(f"  Archive format:      {settings.effective_archive_format().value}")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Work directory:      {settings.workdir}")
    console.print(f"  Output directory:    {settings.out_dir}")
    console.print(f"  Patch catalog:       {catalog_display}")
    console.print()
    console.print("[bold]Upstream build:[/bold]")
    console.print(f"  Qt home:             {settings.qt_home or '(auto-detect)'}")
    console.print(f"  VFX platform:        {settings.vfx_platform}")
    console.print(f"  Build type:          {settings.build_type}")
    console.print(f"  Parallelism:         {settings.build_parallelism}")
    console.print()
    console.print("[bold]Operational:[/bold]")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Timeouts (seconds):[/bold]")
    console.print(f"  Download timeout:    {settings.download_timeout}")
    console.print(f"  Build timeout:       {settings.build_timeout or '(none)'}")


@app.command()
def run(
    tag: Annotated[str, typer.Argument(help="Upstream tag to build")],
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Target platform"),
    ] = None,
    workdir: Annotated[
        Path | None,
        typer.Option("--workdir", "-w", help="Work directory"),
    ] = None,
    out_dir: Annotated[
        Path | None,
        typer.Option("--out-dir", "-o", help="Output directory for the archive"),
    ] = None,
    jobs: Annotated[
        int | None,
        typer.Option("--jobs", "-j", min=1, help="Build parallelism"),
    ] = None,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", "-q", help="Do not echo upstream build output"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output result as JSON"),
    ] = False,
) -> None:
    """Check out, patch, build and package a tag.

    Exits with code 1 if any stage fails.
    """
    from openrv_build.builds.pipeline import PipelineError, run_pipeline
    from openrv_build.errors import make_report

    settings = _settings(
        platform=platform,
        workdir=workdir,
        out_dir=out_dir,
        build_parallelism=jobs,
    )

    try:
        result = run_pipeline(settings, tag, echo=None if quiet else sys.stdout)
    except PipelineError as e:
        if json_output:
            report = make_report(e.stage, e.code, str(e))
            _echo_json({"success": False, "error": report.to_dict()})
        else:
            console.print(f"[red]Stage {e.stage.value} failed ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _echo_json(
            {
                "success": True,
                "tag": result.tag,
                "commit": result.commit,
                "platform": result.platform.value,
                "archive": str(result.archive_path),
                "sha256": result.artifact.sha256,
                "size_bytes": result.artifact.size_bytes,
                "cache_key": result.cache_key,
                "manifest": str(result.manifest_path),
            }
        )
        return

    console.print("[green]✓ Build successful[/green]")
    for record in result.stages:
        console.print(f"  {record.stage.value:<13} {record.message}")
    console.print(f"  Archive:   {result.archive_path}")
    console.print(f"  SHA256:    {result.artifact.sha256}")
    console.print(f"  Cache key: {result.cache_key}")


@app.command()
def checkout(
    tag: Annotated[str, typer.Argument(help="Upstream tag to check out")],
    workdir: Annotated[
        Path | None,
        typer.Option("--workdir", "-w", help="Work directory"),
    ] = None,
    repo: Annotated[
        str | None,
        typer.Option("--repo", help="Repository URL or path"),
    ] = None,
) -> None:
    """Clone or update the upstream checkout at a tag."""
    from openrv_build.source.checkout import CheckoutError, prepare_source

    settings = _settings(workdir=workdir, repo=repo)
    try:
        tree = prepare_source(
            settings.repo,
            tag,
            settings.workdir,
            supported_tags=settings.supported_tags,
        )
    except CheckoutError as e:
        console.print(f"[red]Checkout failed ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(f"[green]✓ {tree.tag} checked out[/green]")
    console.print(f"  Path:   {tree.path}")
    console.print(f"  Commit: {tree.commit}")


@app.command()
def patch(
    source_dir: Annotated[Path, typer.Argument(help="Upstream checkout root")],
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Target platform"),
    ] = None,
    catalog: Annotated[
        Path | None,
        typer.Option("--catalog", "-c", help="Patch catalog file"),
    ] = None,
) -> None:
    """Apply the patch catalog to a checkout."""
    from openrv_build.patches.apply import PatchApplyError, apply_patches
    from openrv_build.patches.io import load_catalog

    settings = _settings(platform=platform, patch_catalog=catalog)
    if not source_dir.is_dir():
        console.print(f"[red]Path not found: {source_dir}[/red]")
        raise typer.Exit(code=1)

    try:
        patch_catalog = load_catalog(settings.patch_catalog)
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot load patch catalog: {e}[/red]")
        raise typer.Exit(code=1) from None

    try:
        outcomes = apply_patches(
            patch_catalog.for_platform(settings.platform),
            source_dir,
            settings.platform,
        )
    except PatchApplyError as e:
        console.print(f"[red]Patch {e.patch_id} failed ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    for outcome in outcomes:
        variant = f" ({outcome.variant})" if outcome.variant else ""
        console.print(f"  {outcome.patch_id}: {outcome.status.value}{variant}")


patches_app = typer.Typer(help="Inspect patch catalogs")
app.add_typer(patches_app, name="patches")


@patches_app.command("list")
def patches_list(
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Only patches used on this platform"),
    ] = None,
    catalog: Annotated[
        Path | None,
        typer.Option("--catalog", "-c", help="Patch catalog file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List patches in catalog order."""
    from openrv_build.patches.io import load_catalog

    try:
        patch_catalog = load_catalog(catalog)
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot load patch catalog: {e}[/red]")
        raise typer.Exit(code=1) from None

    patches = (
        patch_catalog.for_platform(platform) if platform else patch_catalog.patches
    )

    if json_output:
        _echo_json([p.model_dump(mode="json", exclude_none=True) for p in patches])
        return

    console.print(f"[bold]Found {len(patches)} patch(es):[/bold]")
    console.print()
    for p in patches:
        platforms = ", ".join(x.value for x in p.platforms) if p.platforms else "all"
        console.print(f"  [green]{p.patch_id}[/green]")
        console.print(f"    Target: {p.target}")
        console.print(f"    Criticality: {p.criticality.value}")
        console.print(f"    Platforms: {platforms}")
        console.print(f"    Variants: {len(p.variants)}")


@patches_app.command("validate")
def patches_validate(
    path: Annotated[Path, typer.Argument(help="Patch catalog file to validate")],
) -> None:
    """Validate a patch catalog file."""
    from pydantic import ValidationError

    from openrv_build.patches.io import load_catalog

    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)

    try:
        patch_catalog = load_catalog(path)
    except ValidationError as e:
        console.print("[red]Validation failed:[/red]")
        console.print(str(e), markup=False)
        raise typer.Exit(code=1) from None
    except ValueError as e:
        console.print(f"[red]Validation failed: {e}[/red]")
        raise typer.Exit(code=1) from None

    missing = [
        f"{p.patch_id}: {v.diff}"
        for p in patch_catalog.patches
        for v in p.variants
        if v.diff and not Path(v.diff).is_file()
    ]
    if missing:
        console.print("[red]Validation failed: diff files not found[/red]")
        for entry in missing:
            console.print(f"  {entry}")
        raise typer.Exit(code=1)

    console.print(
        f"[green]✓ Valid patch catalog: {len(patch_catalog.patches)} patch(es)[/green]"
    )


@app.command("detect-qt")
def detect_qt_command(
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Target platform"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Locate the Qt installation the build would use."""
    from openrv_build.env.qt import QtNotFoundError, detect_qt

    settings = _settings(platform=platform)
    try:
        qt = detect_qt(
            settings.platform, qt_home=settings.qt_home, version=settings.qt_version
        )
    except QtNotFoundError as e:
        if json_output:
            _echo_json({"found": False, "error": str(e)})
        else:
            console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        _echo_json({"found": True, "qt_home": str(qt.home), "source": qt.source})
    else:
        console.print(f"[green]✓ Qt found at {qt.home}[/green] ({qt.source})")


@app.command()
def fixups(
    build_dir: Annotated[Path, typer.Argument(help="Upstream build directory (_build)")],
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Target platform"),
    ] = None,
) -> None:
    """Run the post-dependency-build layout fixups."""
    from openrv_build.builds.fixups import run_fixups

    settings = _settings(platform=platform)
    if not build_dir.is_dir():
        console.print(f"[red]Path not found: {build_dir}[/red]")
        raise typer.Exit(code=1)

    results = run_fixups(
        build_dir,
        settings.platform,
        fix_gc_include=settings.fix_gc_include,
        fix_openssl_libs=settings.fix_openssl_libs,
    )
    for result in results:
        mark = "[green]applied[/green]" if result.applied else "unchanged"
        console.print(f"  {result.name}: {mark} - {result.message}")


@app.command()
def diagnose(
    source_dir: Annotated[Path, typer.Argument(help="Upstream checkout root")],
    stage_logs: Annotated[
        list[Path] | None,
        typer.Option("--stage-log", help="Stage log to include (can be repeated)"),
    ] = None,
) -> None:
    """Print log excerpts explaining a failed build."""
    from openrv_build.builds.diagnostics import collect_diagnostics, render_diagnostics

    build_dir = source_dir / "_build"
    if not build_dir.is_dir():
        console.print(f"[red]Build directory not found: {build_dir}[/red]")
        raise typer.Exit(code=1)

    sections = collect_diagnostics(build_dir, stage_logs or [])
    render_diagnostics(sections, sys.stderr)


@app.command()
def package(
    stage_dir: Annotated[Path, typer.Argument(help="Staged output directory")],
    tag: Annotated[str, typer.Option("--tag", "-t", help="Upstream tag")],
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Target platform"),
    ] = None,
    arch: Annotated[
        str | None,
        typer.Option("--arch", help="Architecture suffix"),
    ] = None,
    out_dir: Annotated[
        Path | None,
        typer.Option("--out-dir", "-o", help="Output directory"),
    ] = None,
    archive_format: Annotated[
        ArchiveFormat | None,
        typer.Option("--format", "-f", help="Archive format"),
    ] = None,
) -> None:
    """Archive a staged output tree under its release name."""
    from openrv_build.builds.artifacts import PackagingError, archive_name, package_stage

    settings = _settings(
        platform=platform,
        arch=arch,
        out_dir=out_dir,
        archive_format=archive_format,
    )
    fmt = settings.effective_archive_format()
    name = archive_name(settings.project_name, tag, settings.platform, settings.arch, fmt)

    try:
        artifact = package_stage(stage_dir, settings.out_dir, name, fmt)
    except PackagingError as e:
        console.print(f"[red]Packaging failed ({e.code}): {e}[/red]")
        raise typer.Exit(code=1) from None

    console.print(f"[green]✓ Wrote {settings.out_dir / artifact.filename}[/green]")
    console.print(f"  Size:   {artifact.size_bytes} bytes")
    console.print(f"  SHA256: {artifact.sha256}")


@app.command("cache-key")
def cache_key(
    tag: Annotated[str, typer.Argument(help="Upstream tag")],
    commit: Annotated[str, typer.Argument(help="Commit SHA of the tag")],
    platform: Annotated[
        Platform | None,
        typer.Option("--platform", "-p", help="Target platform"),
    ] = None,
    catalog: Annotated[
        Path | None,
        typer.Option("--catalog", "-c", help="Patch catalog file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Print the CI cache key for a tag and commit."""
    from openrv_build.patches.io import catalog_digest, load_catalog
    from openrv_build.source.cache_key import compute_cache_key, create_build_inputs

    settings = _settings(platform=platform, patch_catalog=catalog)
    try:
        patch_catalog = load_catalog(settings.patch_catalog)
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot load patch catalog: {e}[/red]")
        raise typer.Exit(code=1) from None

    digest = catalog_digest(patch_catalog.for_platform(settings.platform))
    inputs = create_build_inputs(settings, tag, commit, digest)
    key = compute_cache_key(inputs)

    if json_output:
        _echo_json({"cache_key": key, "inputs": inputs.to_dict()})
    else:
        typer.echo(key)


if __name__ == "__main__":
    app()
