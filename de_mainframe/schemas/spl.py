"""
Schemas for SPL parse results and custom parsing rules.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ParsingRule(BaseModel):
    """A user-defined rule that tags a query when ``field=value`` matches."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1, description="SPL field name, e.g. index")
    value: str = Field(..., min_length=1, description="Regular expression for the value")
    category: str = Field(..., min_length=1, description="Tag category, e.g. datasource")
    tag: str = Field(..., min_length=1, description="Tag applied when the rule matches")

    @field_validator("field")
    @classmethod
    def validate_field(cls, v: str) -> str:
        if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_.]*", v):
            raise ValueError(f"field must be an SPL field name, got {v!r}")
        return v

    @model_validator(mode="after")
    def validate_pattern(self) -> "ParsingRule":
        try:
            re.compile(self.pattern)
        except re.error as e:
            raise ValueError(f"value is not a valid regular expression: {e}") from e
        return self

    @property
    def pattern(self) -> str:
        return self.field + r'\s*=\s*"?(' + self.value + ')"?'


class CustomTag(BaseModel):
    """Tag contributed by a matching parsing rule."""

    model_config = ConfigDict(frozen=True)

    category: str
    tag: str


class ParsedSPL(BaseModel):
    """Resources referenced by an SPL query, each in first-occurrence order."""

    indexes: list[str] = Field(default_factory=list)
    sourcetypes: list[str] = Field(default_factory=list)
    macros: list[str] = Field(default_factory=list)
    lookups: list[str] = Field(default_factory=list)
    commands: list[str] = Field(
        default_factory=list, description="Pipe commands, lower-cased"
    )

    comments: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    event_codes: list[str] = Field(default_factory=list)
    eval_fields: list[str] = Field(default_factory=list)
    fields: list[str] = Field(default_factory=list)
    by_fields: list[str] = Field(default_factory=list)
    main_search_fields: list[str] = Field(default_factory=list)
    custom_tags: list[CustomTag] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        """True when none of the five core resource sequences has an entry."""
        return not (
            self.indexes or self.sourcetypes or self.macros or self.lookups or self.commands
        )

    @property
    def data_sources(self) -> list[str]:
        return self.indexes + self.sourcetypes + self.categories


class DrilldownVariables(BaseModel):
    """Fields and commands of a main search plus the $tokens$ of its drilldowns."""

    main_search_fields: list[str] = Field(default_factory=list)
    main_search_functions: list[str] = Field(default_factory=list)
    drilldown_vars: dict[str, list[str]] = Field(default_factory=dict)
    all_drilldown_vars: list[str] = Field(default_factory=list)
