"""Template models, built-in catalog, header matching and customization merge."""

from .catalog import builtin_templates, get_builtin
from .matching import (
    AUTO_SELECT_THRESHOLD,
    DETECTION_THRESHOLD,
    TemplateMatch,
    match_template,
    rank_templates,
    select_template,
    suggest_header_mapping,
)
from .merge import merge_customization
from .render import render_template_csv, template_headers
from .schema import (
    ColumnType,
    ColumnValidation,
    CompanyTemplateCustomization,
    RuleType,
    Severity,
    TemplateColumn,
    TemplateSchema,
    TemplateSchemaDefinition,
    ValidationRule,
)

__all__ = [
    "AUTO_SELECT_THRESHOLD",
    "DETECTION_THRESHOLD",
    "ColumnType",
    "ColumnValidation",
    "CompanyTemplateCustomization",
    "RuleType",
    "Severity",
    "TemplateColumn",
    "TemplateMatch",
    "TemplateSchema",
    "TemplateSchemaDefinition",
    "ValidationRule",
    "builtin_templates",
    "get_builtin",
    "match_template",
    "merge_customization",
    "rank_templates",
    "render_template_csv",
    "select_template",
    "suggest_header_mapping",
    "template_headers",
]
