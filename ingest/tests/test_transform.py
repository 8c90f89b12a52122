"""Tests for wide-to-long statement transformation."""

from __future__ import annotations

from ingest.concepts import map_concept, resolve_pyg_concept
from ingest.transform import (
    TransformContext,
    normalize_concept_text,
    resolve_year_columns,
    transform_balance,
    transform_cashflow,
    transform_pyg,
    transform_statement,
)


def test_generic_year_headers_need_a_base_year() -> None:
    headers = ["Concepto", "Año1", "Año 2", "2025"]

    assert resolve_year_columns(headers, 2022) == [(1, "Año1", 2022), (2, "Año 2", 2023), (3, "2025", 2025)]
    assert resolve_year_columns(headers) == [(3, "2025", 2025)]


def test_pyg_maps_synonyms_and_rejects_unknown_or_negative_values() -> None:
    headers = ["Concepto", "2023", "2024"]
    rows = [
        ["Ventas", "1.000,50", "1200"],
        ["EBITDA", "5", "6"],
        ["Gastos de personal", "-10", "20"],
    ]
    context = TransformContext(company_id="acme", currency_code="USD", job_id="job-1")

    result = transform_pyg(headers, rows, context)

    assert [(line.concept_normalized, line.period_year, line.amount) for line in result.lines] == [
        ("Cifra de negocios", 2023, 1000.5),
        ("Cifra de negocios", 2024, 1200.0),
        ("Gastos de personal", 2024, 20.0),
    ]
    assert result.concept_mappings == {"Ventas": "Cifra de negocios"}
    assert [(issue.code, issue.row) for issue in result.issues] == [
        ("concept_not_allowed", 3),
        ("invalid_amount", 4),
    ]
    line = result.lines[0]
    assert line.company_id == "acme"
    assert line.currency_code == "USD"
    assert line.job_id == "job-1"
    assert line.concept_original == "Ventas"
    assert line.statement == "pyg"


def test_invalid_amounts_are_reported_with_their_column() -> None:
    result = transform_pyg(["Concepto", "2023"], [["Cifra de negocios", "n/a"]], TransformContext())

    assert result.lines == []
    assert result.issues[0].column == "2023"
    assert result.issues[0].value == "n/a"


def test_balance_tracks_sections_from_header_rows() -> None:
    headers = ["Concepto", "2023"]
    rows = [
        ["ACTIVO NO CORRIENTE", ""],
        ["Inmovilizado material", "2000"],
        ["ACTIVO CORRIENTE", ""],
        ["Clientes", "1000"],
        ["PASIVO CORRIENTE", ""],
        ["Proveedores", "-50"],
    ]

    result = transform_balance(headers, rows, TransformContext())

    assert [(line.concept_original, line.section) for line in result.lines] == [
        ("Inmovilizado material", "ACTIVO_NC"),
        ("Clientes", "ACTIVO_C"),
        ("Proveedores", "PASIVO_C"),
    ]
    assert result.lines[1].concept_normalized == "Deudores comerciales y otras cuentas a cobrar"
    assert result.lines[2].amount == -50.0


def test_explicit_section_column_wins_over_header_rows() -> None:
    headers = ["Concepto", "Seccion", "2023"]
    rows = [["ACTIVO CORRIENTE", "", ""], ["Capital", "Patrimonio Neto", "300"]]

    result = transform_balance(headers, rows, TransformContext())

    assert result.lines[0].section == "PATRIMONIO_NETO"


def test_cashflow_defaults_to_operating_and_skips_cash_summary() -> None:
    headers = ["Concepto", "2023"]
    rows = [
        ["Resultado del ejercicio", "100"],
        ["ACTIVIDADES DE INVERSIÓN", ""],
        ["Compra de maquinaria", "-40"],
        ["EFECTIVO", ""],
        ["Efectivo al final del periodo", "60"],
    ]

    result = transform_cashflow(headers, rows, TransformContext())

    assert [(line.section, line.concept_normalized) for line in result.lines] == [
        ("OPERATIVO", "resultado del ejercicio"),
        ("INVERSION", "compra de maquinaria"),
    ]


def test_selected_years_filter_the_output() -> None:
    context = TransformContext(selected_years=frozenset({2024}))

    result = transform_statement("ratios", ["Concepto", "2023", "2024"], [["Liquidez", "1,5", "1,7"]], context)

    assert [(line.period_year, line.amount, line.statement) for line in result.lines] == [(2024, 1.7, "ratios")]
    assert result.years == [2024]


def test_concept_helpers() -> None:
    assert normalize_concept_text("  Gastos (de) Personal!! ") == "gastos de personal"
    assert map_concept("Importe neto cifra negocios").mapped == "Cifra de negocios"
    assert map_concept("Nóminas").confidence == 0.95
    assert map_concept("Otros conceptos varios").mapped is None
    assert resolve_pyg_concept("gastos de personal") == "Gastos de personal"
    assert resolve_pyg_concept("Existencias") is None
