"""Error taxonomy for pipeline failures.

Every failure carries a stable code from the raising module
(``tag_not_found``, ``missing_binary``, ...). This module maps a failed
stage to one of four categories:

- precondition: tag, tool, Qt, SDK or writable directory missing
- patch: a required patch could not be applied
- build: an upstream command failed or produced no binary
- packaging: the release archive could not be written
"""

from dataclasses import dataclass
from typing import Any

from openrv_build.types import Stage

PRECONDITION_ERROR = "precondition"
PATCH_ERROR = "patch"
BUILD_ERROR = "build"
PACKAGING_ERROR = "packaging"

STAGE_CATEGORIES = {
    Stage.CHECKOUT: PRECONDITION_ERROR,
    Stage.PATCH: PATCH_ERROR,
    Stage.SDKS: PRECONDITION_ERROR,
    Stage.ENVIRONMENT: PRECONDITION_ERROR,
    Stage.SETUP: BUILD_ERROR,
    Stage.DEPENDENCIES: BUILD_ERROR,
    Stage.BUILD: BUILD_ERROR,
    Stage.PACKAGE: PACKAGING_ERROR,
}


@dataclass
class ErrorReport:
    """Structured description of a pipeline failure.

    Attributes:
        code: Stable error code for programmatic handling.
        category: One of the four error categories.
        stage: Stage that failed.
        message: Human-readable error message.
    """

    code: str
    category: str
    stage: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "code": self.code,
            "category": self.category,
            "stage": self.stage,
            "message": self.message,
        }


def category_for_stage(stage: Stage) -> str:
    """Return the error category of a failure in ``stage``."""
    return STAGE_CATEGORIES[stage]


def make_report(stage: Stage, code: str, message: str) -> ErrorReport:
    """Create an ErrorReport for a failure in ``stage``."""
    return ErrorReport(
        code=code,
        category=category_for_stage(stage),
        stage=stage.value,
        message=message,
    )


__all__ = [
    "BUILD_ERROR",
    "ErrorReport",
    "PACKAGING_ERROR",
    "PATCH_ERROR",
    "PRECONDITION_ERROR",
    "STAGE_CATEGORIES",
    "category_for_stage",
    "make_report",
]
