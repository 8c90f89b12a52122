"""Tests for canonical bundle handling."""

from __future__ import annotations

import pytest

from ingest.bundle import check_bundle, detect_file_kind, resolve_bundle, validate_bundle_file
from ingest.errors import MissingRequiredFiles
from ingest.parsers.delimited import parse_table
from ingest.pipeline import FilePipeline
from ingest.templates import builtin_templates
from ingest.transform import TransformContext

PYG_BODY = "Concepto,2024\nCifra de negocios,1\nAprovisionamientos,2\nGastos de personal,3\n"
BALANCE_BODY = "Concepto,2024\nACTIVO CORRIENTE,\nCaja,10\nPATRIMONIO NETO,\nCapital,10\n"


def test_check_bundle_orders_present_files_for_processing() -> None:
    ordered = check_bundle(["info-empresa.csv", "Balance-Situacion.csv", "data/Cuenta-PyG.csv"])

    assert ordered == ["cuenta-pyg.csv", "balance-situacion.csv", "info-empresa.csv"]


def test_check_bundle_requires_pyg_and_balance() -> None:
    with pytest.raises(MissingRequiredFiles) as excinfo:
        check_bundle(["cuenta-pyg.csv", "pool-deuda.csv"])

    assert excinfo.value.missing == ["balance-situacion.csv"]


def test_detect_file_kind_combines_name_and_content() -> None:
    detection = detect_file_kind("perdidas_y_ganancias_2024.csv", PYG_BODY)

    assert detection.canonical == "cuenta-pyg.csv"
    assert detection.confidence == 1.0


def test_detect_file_kind_only_suggests_on_partial_evidence() -> None:
    detection = detect_file_kind("flujos.csv", "Concepto,2024\nCobros,1\n")

    assert detection.canonical is None
    assert detection.confidence == 0.4
    assert detection.suggestions == ["File may be estado-flujos.csv (confidence: 40%)"]


def test_detect_file_kind_explains_unrecognised_files() -> None:
    detection = detect_file_kind("misc.csv", "hello")

    assert detection.canonical is None
    assert detection.suggestions[0].startswith("File not recognised automatically")


def test_resolve_bundle_keeps_canonical_names_and_detects_the_rest() -> None:
    files = {
        "PyG 2024.csv": PYG_BODY,
        "balance-situacion.csv": BALANCE_BODY,
        "random.txt": "x",
    }

    assert resolve_bundle(files) == {
        "cuenta-pyg.csv": "PyG 2024.csv",
        "balance-situacion.csv": "balance-situacion.csv",
    }


def test_company_info_requires_a_name() -> None:
    table = parse_table("Campo,Valor\nSector,Energía\n\nNombre,\n")
    pipeline = FilePipeline(templates=builtin_templates())

    result = validate_bundle_file("info-empresa.csv", table, TransformContext(company_id="acme"), pipeline=pipeline)

    assert result.kind == "company_info"
    assert not result.outcome.is_valid
    assert [(issue.row, issue.value) for issue in result.extra_issues] == [(3, "Nombre")]
    assert result.outcome.report.statistics.invalid_rows == 1
    assert len(result.outcome.reference_rows) == 2


def test_bundle_files_use_their_builtin_template_and_source_name() -> None:
    table = parse_table(PYG_BODY)
    pipeline = FilePipeline(templates=builtin_templates())

    result = validate_bundle_file("Cuenta-PyG.csv", table, TransformContext(company_id="acme"), pipeline=pipeline)

    assert result.name == "cuenta-pyg.csv"
    assert result.outcome.template is not None
    assert result.outcome.template.name == "cuenta-pyg"
    assert {line.source_file for line in result.outcome.lines} == {"cuenta-pyg.csv"}
    assert result.outcome.is_valid
