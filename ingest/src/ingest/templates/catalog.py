"""Built-in templates for the canonical Spanish financial statements."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from ..concepts import PGC_PYG_CONCEPTS
from .schema import TemplateSchema

_YEAR_COLUMNS = {"variableYearColumns": True, "yearColumnPattern": r"^[0-9]{4}$"}


def _concept_columns(*extra: dict[str, Any]) -> list[dict[str, Any]]:
    return [
        {"name": "Concepto", "type": "text", "required": True, "description": "Line item label"},
        *extra,
        {"name": "Notas", "type": "text", "required": False, "description": "Free-form notes"},
    ]


_DEFINITIONS: tuple[dict[str, Any], ...] = (
    {
        "name": "cuenta-pyg",
        "display_name": "Cuenta de Pérdidas y Ganancias",
        "description": "Profit and loss account, one column per year.",
        "category": "financial",
        "is_required": True,
        "schema_definition": {
            "columns": _concept_columns(),
            **_YEAR_COLUMNS,
            "expectedConcepts": list(PGC_PYG_CONCEPTS),
        },
        "validation_rules": [
            {
                "type": "calculation_check",
                "message": "P&L uploads must not contain derived metrics (EBIT, EBITDA, margins, ratios)",
                "severity": "warning",
            },
        ],
    },
    {
        "name": "balance-situacion",
        "display_name": "Balance de Situación",
        "description": "Balance sheet grouped by section headers, one column per year.",
        "category": "financial",
        "is_required": True,
        "schema_definition": {
            "columns": _concept_columns(
                {"name": "Seccion", "type": "text", "required": False, "description": "Optional explicit section"},
            ),
            **_YEAR_COLUMNS,
        },
        "validation_rules": [
            {
                "type": "balance_check",
                "message": "Total assets must equal liabilities plus equity",
                "severity": "error",
            },
        ],
    },
    {
        "name": "estado-flujos",
        "display_name": "Estado de Flujos de Efectivo",
        "description": "Cash flow statement grouped by activity.",
        "category": "financial",
        "schema_definition": {"columns": _concept_columns(), **_YEAR_COLUMNS},
    },
    {
        "name": "pool-deuda",
        "display_name": "Pool de Deuda",
        "description": "One row per financing instrument.",
        "category": "financial",
        "schema_definition": {
            "columns": [
                {"name": "Loan_Key", "type": "text", "required": False},
                {"name": "Entidad", "type": "text", "required": True},
                {"name": "Tipo_Financiacion", "type": "text", "required": False},
                {"name": "Principal_Inicial", "type": "number", "required": True},
                {
                    "name": "Tipo_Interes",
                    "type": "number",
                    "required": False,
                    "validations": [
                        {"type": "range", "min": 0, "max": 100, "message": "Interest rate must be between 0 and 100"},
                    ],
                },
                {
                    "name": "Vencimiento",
                    "type": "date",
                    "required": False,
                    "validations": [
                        {"type": "format", "pattern": r"^\d{4}-\d{2}-\d{2}$", "message": "Maturity must be YYYY-MM-DD"},
                    ],
                },
                {
                    "name": "Moneda",
                    "type": "text",
                    "required": False,
                    "validations": [
                        {"type": "format", "pattern": r"^(EUR|USD|GBP)$", "message": "Unsupported currency"},
                    ],
                },
                {"name": "Garantias", "type": "text", "required": False},
                {"name": "Observaciones", "type": "text", "required": False},
            ],
        },
    },
    {
        "name": "pool-deuda-vencimientos",
        "display_name": "Vencimientos de Deuda",
        "description": "Repayment schedule linked to the debt pool through Loan_Key.",
        "category": "financial",
        "schema_definition": {
            "columns": [
                {"name": "Loan_Key", "type": "text", "required": True},
                {
                    "name": "Year",
                    "type": "number",
                    "required": True,
                    "validations": [{"type": "range", "min": 2020, "max": 2050}],
                },
                {"name": "Due_Principal", "type": "number", "required": False},
                {"name": "Due_Interest", "type": "number", "required": False},
                {"name": "New_Drawdowns", "type": "number", "required": False},
                {"name": "Scheduled_Repayments", "type": "number", "required": False},
            ],
        },
    },
    {
        "name": "datos-operativos",
        "display_name": "Datos Operativos",
        "description": "Physical and operational metrics per year.",
        "category": "operational",
        "schema_definition": {
            "columns": [
                {"name": "Concepto", "type": "text", "required": True},
                {"name": "Unidad", "type": "text", "required": True},
                {"name": "Descripción", "type": "text", "required": False},
            ],
            **_YEAR_COLUMNS,
        },
    },
    {
        "name": "supuestos-financieros",
        "display_name": "Supuestos Financieros",
        "description": "Forecast assumptions (growth, inflation, rates).",
        "category": "financial",
        "schema_definition": {
            "columns": [
                {"name": "Concepto", "type": "text", "required": True},
                {"name": "Valor", "type": "number", "required": True},
                {"name": "Unidad", "type": "text", "required": False},
                {"name": "Notas", "type": "text", "required": False},
            ],
        },
    },
    {
        "name": "info-empresa",
        "display_name": "Información de la Empresa",
        "description": "Key/value company profile.",
        "category": "qualitative",
        "schema_definition": {
            "columns": [
                {"name": "Campo", "type": "text", "required": True},
                {"name": "Valor", "type": "text", "required": False},
            ],
        },
    },
    {
        "name": "ratios-financieros",
        "display_name": "Ratios Financieros",
        "description": "Externally reported ratios, one column per year.",
        "category": "financial",
        "schema_definition": {"columns": _concept_columns(), **_YEAR_COLUMNS},
    },
    {
        "name": "libro-diario",
        "display_name": "Libro Diario",
        "description": "Journal entries with one debit or credit amount per line.",
        "category": "financial",
        "schema_definition": {
            "columns": [
                {"name": "Fecha", "type": "date", "required": True},
                {"name": "Cuenta", "type": "text", "required": True},
                {"name": "Descripcion", "type": "text", "required": False},
                {"name": "Debe", "type": "number", "required": False},
                {"name": "Haber", "type": "number", "required": False},
            ],
            "allowAdditionalColumns": False,
            "strictColumns": True,
        },
        "validation_rules": [
            {
                "type": "balance_check",
                "message": "Total debits must equal total credits",
                "fields": ["Debe", "Haber"],
                "severity": "error",
            },
        ],
    },
)


@lru_cache
def builtin_templates() -> tuple[TemplateSchema, ...]:
    """Return the built-in template catalog, validated once per process."""

    return tuple(TemplateSchema.model_validate(definition) for definition in _DEFINITIONS)


def get_builtin(name: str) -> TemplateSchema | None:
    for template in builtin_templates():
        if template.name == name:
            return template
    return None
