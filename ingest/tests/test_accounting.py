"""Tests for double-entry, trial balance and balance sheet coherence."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from ingest.accounting import (
    check_balance_by_year,
    check_financial_ratios,
    validate_balance_sheet,
    validate_journal_entries,
    validate_ledger_rows,
    validate_trial_balance,
    within_tolerance,
)
from ingest.errors import UnbalancedEntries


def test_tolerance_is_one_cent() -> None:
    assert within_tolerance(3000.005, 3000)
    assert within_tolerance(100.01, 100)
    assert not within_tolerance(3000.02, 3000)


def test_balanced_journal_is_valid() -> None:
    result = validate_journal_entries(
        [{"account": "Caja", "debit": 100}, {"account": "Ventas", "credit": 100}]
    )

    assert result.is_valid
    assert result.total_debits == 100.0
    assert result.total_credits == 100.0
    assert len(result.entries) == 2


def test_entry_with_both_sides_is_reported_by_index() -> None:
    result = validate_journal_entries(
        [
            {"account": "Caja", "debit": 50, "credit": 50},
            {"account": "Bancos", "debit": 10},
            {"account": "Ventas", "credit": 10},
        ]
    )

    assert [issue.index for issue in result.issues] == [0]
    assert "either a debit or a credit" in result.issues[0].message


def test_unbalanced_journal_raises_on_demand() -> None:
    result = validate_journal_entries([{"account": "Caja", "debit": 100}, {"account": "Ventas", "credit": 90}])

    assert not result.is_valid
    assert "diff: 10.00" in result.errors[0]
    with pytest.raises(UnbalancedEntries):
        result.raise_for_errors()


def test_empty_journal_is_invalid() -> None:
    assert not validate_journal_entries([]).is_valid


def test_trial_balance_totals_per_account() -> None:
    result = validate_trial_balance(
        [
            {"account": "Caja", "debit": "1.000,50"},
            {"account": "Caja", "credit": "1000.50"},
            {"account": "Ventas", "debit": 10},
            {"account": "Ventas", "credit": 10},
        ]
    )

    assert result.is_valid
    assert result.accounts["Caja"].balance == 0.0
    summary = result.summary()
    assert summary["total_debits"] == 1010.5
    assert summary["difference"] == 0.0


def test_trial_balance_summary_is_filled_when_unbalanced() -> None:
    result = validate_trial_balance([{"account": "Caja", "debit": 100}, {"account": "Ventas", "credit": 40}])

    assert not result.is_valid
    assert result.difference == 60.0
    assert result.accounts["Ventas"].credit == 40.0


def _sheet(equity_total: float) -> dict:
    return {
        "assets": {"current": 100, "nonCurrent": 200, "total": 300},
        "liabilities": {"current": 50, "nonCurrent": 50, "total": 100},
        "equity": {"capital": 100, "retainedEarnings": 100, "total": equity_total},
    }


def test_balance_sheet_identity() -> None:
    assert validate_balance_sheet(_sheet(200)).is_valid

    result = validate_balance_sheet(_sheet(150))
    assert not result.is_valid
    assert "Accounting identity violated" in result.errors[0]


def test_ratio_check_warns_but_never_fails() -> None:
    check = check_financial_ratios(
        current_assets=100,
        current_liabilities=400,
        total_assets=1000,
        total_liabilities=950,
        revenue=100,
        net_income=10,
    )

    assert check.ratios == {"current_ratio": 0.25, "debt_to_assets": 0.95, "profit_margin": 0.1}
    assert len(check.warnings) == 2
    assert not check.is_reasonable


def test_ratio_check_skips_zero_denominators() -> None:
    check = check_financial_ratios(
        current_assets=0, current_liabilities=0, total_assets=0, total_liabilities=0, revenue=0, net_income=0
    )

    assert check.ratios == {"current_ratio": None, "debt_to_assets": None, "profit_margin": None}
    assert check.is_reasonable


def _line(year: int, section: str | None, concept: str, amount: float) -> SimpleNamespace:
    return SimpleNamespace(period_year=year, section=section, concept_original=concept, amount=amount)


def test_balance_by_year_skips_totals_and_uses_labels_without_section() -> None:
    lines = [
        _line(2023, "ACTIVO_C", "Existencias", 500),
        _line(2023, "ACTIVO_C", "TOTAL ACTIVO CORRIENTE", 500),
        _line(2023, None, "Pasivo bancario", 200),
        _line(2023, "PATRIMONIO_NETO", "Capital", 300),
        _line(2024, "ACTIVO_C", "Existencias", 600),
        _line(2024, "PATRIMONIO_NETO", "Capital", 500),
    ]

    result = check_balance_by_year(lines)

    assert [entry.year for entry in result.years] == [2023, 2024]
    assert result.years[0].balanced
    assert [issue.index for issue in result.issues] == [2024]
    assert result.years[1].diff == 100.0


def test_ledger_rows_are_sanitised_before_the_journal_check() -> None:
    rows = [
        {"account": "<b>Caja</b>", "debit": "€100,00", "date": "2024-01-31"},
        {"account": "Ventas", "credit": "100", "date": "31/13/2024"},
        {"account": "Ventas", "credit": "100"},
    ]

    result = validate_ledger_rows(rows)

    assert [issue.index for issue in result.issues] == [1]
    assert result.processed[0]["account"] == "Caja"
    assert result.total_debits == 100.0
    assert result.total_credits == 100.0


def test_ledger_reports_journal_issues_against_original_rows() -> None:
    rows = [
        {"account": "", "debit": "1"},
        {"account": "Caja", "debit": "10", "credit": "10"},
    ]

    result = validate_ledger_rows(rows)

    assert [issue.index for issue in result.issues] == [0, 1]


def test_empty_ledger_is_invalid() -> None:
    assert not validate_ledger_rows([]).is_valid
