"""Tests for the offline validation CLI."""

from __future__ import annotations

import json
from pathlib import Path

from typer.testing import CliRunner

from ingest.cli import app

runner = CliRunner()


def _write(path: Path, content: str) -> Path:
    path.write_text(content, encoding="utf-8")
    return path


def test_validate_prints_json_report(tmp_path: Path) -> None:
    source = _write(tmp_path / "pyg.csv", "Concepto,2023\nCifra de negocios,1000\n")

    result = runner.invoke(app, ["validate", str(source), "--template", "cuenta-pyg", "--json"])

    assert result.exit_code == 0, result.output
    report = json.loads(result.stdout)
    assert report["is_valid"] is True
    assert report["statistics"]["total_rows"] == 1


def test_validate_exits_non_zero_for_invalid_files(tmp_path: Path) -> None:
    source = _write(tmp_path / "deuda.csv", "Entidad,Principal_Inicial,Tipo_Interes\nBBVA,1000,150\n")

    result = runner.invoke(app, ["validate", str(source), "-t", "pool-deuda"])

    assert result.exit_code == 1
    assert "invalid" in result.output


def test_validate_rejects_unknown_template(tmp_path: Path) -> None:
    source = _write(tmp_path / "pyg.csv", "Concepto,2023\nCifra de negocios,1000\n")

    result = runner.invoke(app, ["validate", str(source), "--template", "nope"])

    assert result.exit_code == 2


def test_detect_exits_non_zero_without_candidates(tmp_path: Path) -> None:
    source = _write(tmp_path / "otro.csv", "foo,bar\n1,2\n")

    result = runner.invoke(app, ["detect", str(source)])

    assert result.exit_code == 1


def test_ledger_reports_unbalanced_journals(tmp_path: Path) -> None:
    source = _write(
        tmp_path / "diario.csv",
        "Fecha,Cuenta,Descripcion,Debe,Haber\n2024-01-01,Caja,Cobro,100,\n2024-01-01,Ventas,Venta,,90\n",
    )

    result = runner.invoke(app, ["ledger", str(source)])

    assert result.exit_code == 1
    assert "Unbalanced entries" in result.output


def test_bundle_requires_the_mandatory_files(tmp_path: Path) -> None:
    _write(tmp_path / "cuenta-pyg.csv", "Concepto,2023\nCifra de negocios,1000\n")

    result = runner.invoke(app, ["bundle", str(tmp_path)])

    assert result.exit_code == 1
    assert "balance-situacion.csv" in result.output


def test_template_prints_csv_skeleton() -> None:
    result = runner.invoke(app, ["template", "cuenta-pyg", "--years", "2024,2023"])

    assert result.exit_code == 0
    assert result.stdout.splitlines()[0] == "Concepto,2023,2024,Notas"
