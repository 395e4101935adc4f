"""
Macro schemas.
"""

from enum import Enum

from pydantic import BaseModel, Field


class MacroSort(str, Enum):
    """Orderings supported by the macro list."""

    NAME_ASC = "name-asc"
    NAME_DESC = "name-desc"
    MOST_USED = "most-used"
    LEAST_USED = "least-used"


class Macro(BaseModel):
    """A named, reusable SPL fragment referenced in queries with backticks."""

    name: str = Field(..., description="Macro name without backticks")
    definition: str = Field(default="", description="SPL the macro expands to")
    description: str = Field(default="")
    arguments: str = Field(default="", description="Comma separated argument names")
    deprecated: bool = Field(default=False)
    usage_count: int = Field(
        default=0, ge=0, description="Detections referencing the macro, derived from the corpus"
    )


class MacroUsage(BaseModel):
    """Identifying projection of a detection that references a macro."""

    name: str
    severity: str
    domain: str


class MacroValidationResult(BaseModel):
    """Outcome of macro name or macro creation checks."""

    valid: bool
    error: str | None = None
    name: str | None = None
