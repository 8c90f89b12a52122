"""Pydantic models describing versioned upload templates and company customizations."""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_YEAR_PATTERN = r"^[0-9]{4}$"

TemplateCategory = Literal["financial", "operational", "qualitative"]


class ColumnType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    EMAIL = "email"
    URL = "url"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class RuleType(str, Enum):
    REQUIRED_FIELDS = "required_fields"
    FORMAT = "format"
    RANGE = "range"
    CALCULATION = "calculation"
    CUSTOM = "custom"
    BALANCE_CHECK = "balance_check"
    CALCULATION_CHECK = "calculation_check"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, use_enum_values=False)


def _compile_pattern(value: str | None) -> str | None:
    if value is not None:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"Invalid regular expression {value!r}: {exc}") from exc
    return value


class ColumnValidation(_Frozen):
    """A rule attached to a single column."""

    type: Literal["range", "format", "required", "calculation", "custom"]
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    rule: str | None = None
    message: str | None = None
    tolerance: float | None = None

    @field_validator("pattern")
    @classmethod
    def _valid_pattern(cls, value: str | None) -> str | None:
        return _compile_pattern(value)


class TemplateColumn(_Frozen):
    name: str = Field(..., min_length=1)
    type: ColumnType = ColumnType.TEXT
    required: bool = False
    description: str | None = None
    validations: tuple[ColumnValidation, ...] = ()
    default_value: Any = Field(default=None, alias="defaultValue")
    options: tuple[str, ...] | None = None


class ValidationRule(_Frozen):
    """Template-level rule evaluated across rows."""

    type: RuleType
    message: str
    severity: Severity | None = None
    fields: tuple[str, ...] | None = None
    field: str | None = None
    description: str | None = None
    rule: str | None = None
    formula: str | None = None
    pattern: str | None = None
    target_field: str | None = None
    tolerance: float | None = None
    min: float | None = None
    max: float | None = None

    @field_validator("pattern")
    @classmethod
    def _valid_pattern(cls, value: str | None) -> str | None:
        return _compile_pattern(value)


class TemplateSchemaDefinition(_Frozen):
    """Column layout and parsing hints for one document kind."""

    columns: tuple[TemplateColumn, ...] = ()
    variable_year_columns: bool = Field(default=False, alias="variableYearColumns")
    year_column_pattern: str | None = Field(default=None, alias="yearColumnPattern")
    expected_concepts: tuple[str, ...] | None = Field(default=None, alias="expectedConcepts")
    allow_additional_columns: bool = Field(default=True, alias="allowAdditionalColumns")
    strict_columns: bool = Field(default=False, alias="strictColumns")
    delimiter: str | None = None
    encoding: str | None = None

    @field_validator("year_column_pattern")
    @classmethod
    def _valid_year_pattern(cls, value: str | None) -> str | None:
        return _compile_pattern(value)

    @model_validator(mode="after")
    def _unique_column_names(self) -> "TemplateSchemaDefinition":
        seen: set[str] = set()
        for column in self.columns:
            key = column.name.strip().casefold()
            if key in seen:
                raise ValueError(f"Duplicate column name '{column.name}' in template definition")
            seen.add(key)
        return self

    @property
    def year_pattern(self) -> str:
        return self.year_column_pattern or DEFAULT_YEAR_PATTERN

    @property
    def required_columns(self) -> list[TemplateColumn]:
        return [column for column in self.columns if column.required]


class TemplateSchema(_Frozen):
    """A versioned template as stored by administrators."""

    id: str | None = None
    name: str = Field(..., min_length=1)
    display_name: str
    description: str | None = None
    category: TemplateCategory = "financial"
    version: int = Field(default=1, ge=1)
    is_active: bool = True
    is_required: bool = False
    schema_definition: TemplateSchemaDefinition = Field(default_factory=TemplateSchemaDefinition)
    validation_rules: tuple[ValidationRule, ...] = ()

    @property
    def columns(self) -> tuple[TemplateColumn, ...]:
        return self.schema_definition.columns


class CompanyTemplateCustomization(_Frozen):
    """Per-company override for one template.

    ``custom_schema`` is a partial :class:`TemplateSchemaDefinition` keyed by
    either the camelCase or the snake_case field names.
    """

    id: str | None = None
    company_id: str
    template_schema_id: str | None = None
    custom_schema: dict[str, Any] | None = None
    custom_validations: tuple[ValidationRule, ...] = ()
    custom_display_name: str | None = None
    notes: str | None = None
    is_active: bool = True


def dump_definition(definition: TemplateSchemaDefinition) -> dict[str, Any]:
    """Serialise a definition using its camelCase wire names."""

    return definition.model_dump(mode="json", by_alias=True, exclude_none=True)
