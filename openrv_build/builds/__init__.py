"""Build module.

This module handles:
- Running the upstream build aliases with per-stage logs
- Post-dependency-build layout fixups
- Failure diagnostics
- Packaging the staged output
- The end-to-end pipeline
"""

from openrv_build.builds.artifacts import PackagingError, archive_name, package_stage
from openrv_build.builds.pipeline import PipelineError, PipelineResult, run_pipeline
from openrv_build.builds.runner import (
    BuildFailedError,
    UpstreamExecutionError,
    run_upstream,
)

__all__ = [
    "BuildFailedError",
    "PackagingError",
    "PipelineError",
    "PipelineResult",
    "UpstreamExecutionError",
    "archive_name",
    "package_stage",
    "run_pipeline",
    "run_upstream",
]
