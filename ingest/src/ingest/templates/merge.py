"""Effective-schema construction from a base template and a company customization."""

from __future__ import annotations

from typing import Any

from .schema import CompanyTemplateCustomization, TemplateSchema, TemplateSchemaDefinition, dump_definition

_ALIASES: dict[str, str] = {
    name: (info.alias or name) for name, info in TemplateSchemaDefinition.model_fields.items()
}


def _wire_key(key: str) -> str:
    return _ALIASES.get(key, key)


def merge_customization(
    base: TemplateSchema,
    customization: CompanyTemplateCustomization | None,
) -> TemplateSchema:
    """Return the effective schema for a company.

    Merge rules:

    * ``custom_schema`` keys replace the matching top-level keys of
      ``schema_definition``; keys it does not mention keep the base value.
      Lists such as ``columns`` are replaced whole, never merged item by item.
    * ``custom_validations`` are appended after the base ``validation_rules``.
    * ``custom_display_name`` replaces ``display_name`` only when non-empty.
    * Inactive or missing customizations leave ``base`` untouched.
    """

    if customization is None or not customization.is_active:
        return base

    updates: dict[str, Any] = {}

    if customization.custom_schema:
        merged = dump_definition(base.schema_definition)
        merged.update({_wire_key(key): value for key, value in customization.custom_schema.items()})
        updates["schema_definition"] = TemplateSchemaDefinition.model_validate(merged)

    if customization.custom_validations:
        updates["validation_rules"] = (*base.validation_rules, *customization.custom_validations)

    if customization.custom_display_name:
        updates["display_name"] = customization.custom_display_name

    if not updates:
        return base
    return base.model_copy(update=updates)
