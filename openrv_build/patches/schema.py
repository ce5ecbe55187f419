"""Pydantic models for patch catalog validation.

A patch catalog declares, in application order, the source edits made to a
fresh upstream checkout. Every patch states its own criticality, so the
required/optional split is explicit data instead of per-script habit.
"""

import re
from pathlib import PurePosixPath

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from openrv_build.types import Criticality, Platform

PATCH_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")


class ReplacementSchema(BaseModel):
    """A single text substitution.

    Attributes:
        pattern: Literal text, or a regular expression when ``regex`` is set.
        replacement: Replacement text (a ``re`` template when ``regex`` is set).
        regex: Interpret ``pattern`` as a multiline regular expression.
        required: The pattern must be present for the variant to match.
        count: Maximum replacements (0 replaces every occurrence).
    """

    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(min_length=1)
    replacement: str
    regex: bool = False
    required: bool = True
    count: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def validate_pattern(self) -> "ReplacementSchema":
        """Validate that regex patterns compile."""
        if self.regex:
            try:
                re.compile(self.pattern, re.MULTILINE)
            except re.error as e:
                raise ValueError(f"invalid regex '{self.pattern}': {e}") from e
        return self

    def compile(self) -> re.Pattern[str]:
        """Return the compiled search pattern."""
        source = self.pattern if self.regex else re.escape(self.pattern)
        return re.compile(source, re.MULTILINE)


class PatchVariantSchema(BaseModel):
    """One way of applying a patch.

    Variants cover different upstream layouts of the same file. A variant
    is either a list of substitutions or a unified diff.
    """

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    replacements: list[ReplacementSchema] = Field(default_factory=list)
    diff: str | None = Field(
        default=None, description="Unified diff, relative to the catalog file"
    )
    strip: int = Field(default=1, ge=0, description="patch -p level for diffs")

    @model_validator(mode="after")
    def validate_kind(self) -> "PatchVariantSchema":
        """Exactly one of replacements or diff must be given."""
        if bool(self.replacements) == bool(self.diff):
            raise ValueError("a variant needs either 'replacements' or 'diff'")
        return self


class PatchSchema(BaseModel):
    """A patch applied to one file of the upstream tree.

    Attributes:
        patch_id: Unique stable identifier.
        description: Why the patch exists.
        target: File path relative to the checkout root.
        criticality: Whether failure to apply stops the pipeline.
        platforms: Platforms the patch applies to (None = all).
        applied_marker: Text whose presence means the patch is already in.
        variants: Alternatives tried in order; the first match wins.
    """

    model_config = ConfigDict(extra="forbid")

    patch_id: str = Field(description="Unique patch identifier")
    description: str = Field(default="")
    target: str = Field(description="Target file relative to the checkout root")
    criticality: Criticality = Criticality.OPTIONAL
    platforms: list[Platform] | None = None
    applied_marker: str | None = None
    variants: list[PatchVariantSchema] = Field(min_length=1)

    @field_validator("patch_id")
    @classmethod
    def validate_patch_id(cls, v: str) -> str:
        if not PATCH_ID_PATTERN.match(v):
            raise ValueError(
                f"patch_id must match {PATCH_ID_PATTERN.pattern}, got '{v}'"
            )
        return v

    @field_validator("target")
    @classmethod
    def validate_target(cls, v: str) -> str:
        """Targets must stay inside the checkout."""
        path = PurePosixPath(v)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(f"target must be a relative path inside the tree: '{v}'")
        return v

    def applies_to(self, platform: Platform) -> bool:
        """Check whether this patch applies to ``platform``."""
        return self.platforms is None or platform in self.platforms


class PatchCatalogSchema(BaseModel):
    """An ordered list of patches."""

    model_config = ConfigDict(extra="forbid")

    version: int = Field(default=1, ge=1, le=1)
    patches: list[PatchSchema] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "PatchCatalogSchema":
        seen: set[str] = set()
        for patch in self.patches:
            if patch.patch_id in seen:
                raise ValueError(f"duplicate patch_id: {patch.patch_id}")
            seen.add(patch.patch_id)
        return self

    def for_platform(self, platform: Platform) -> list[PatchSchema]:
        """Return the patches that apply to ``platform``, in order."""
        return [p for p in self.patches if p.applies_to(platform)]


__all__ = [
    "PATCH_ID_PATTERN",
    "PatchCatalogSchema",
    "PatchSchema",
    "PatchVariantSchema",
    "ReplacementSchema",
]
