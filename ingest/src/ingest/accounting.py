"""Double-entry and balance-sheet coherence checks.

Every comparison uses the fixed ``TOLERANCE`` of 0.01 currency units and is
done on decimal representations so ``3000.005`` versus ``3000`` is accepted
while a one-cent-plus gap is not.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .amounts import (
    round_amount,
    sanitize_account_name,
    sanitize_amount,
    sanitize_date,
    sanitize_description,
)
from .concepts import ASSET_SECTIONS, LIABILITY_EQUITY_SECTIONS
from .errors import (
    EmptyFile,
    IngestError,
    InvalidAmount,
    InvalidDate,
    UnbalancedBalanceSheet,
    UnbalancedEntries,
    UnbalancedTrialBalance,
)

logger = logging.getLogger(__name__)

TOLERANCE = Decimal("0.01")

CURRENT_RATIO_MIN = 0.5
CURRENT_RATIO_MAX = 10.0
DEBT_TO_ASSETS_MAX = 0.9
PROFIT_MARGIN_BOUND = 0.5


def _gap(left: float, right: float) -> Decimal:
    return abs(Decimal(str(left)) - Decimal(str(right)))


def within_tolerance(left: float, right: float) -> bool:
    """True when ``left`` and ``right`` differ by at most 0.01."""

    return _gap(left, right) <= TOLERANCE


@dataclass(slots=True)
class CoherenceIssue:
    message: str
    index: int | None = None


@dataclass(slots=True)
class CoherenceResult:
    """Outcome of a coherence check; ``failure`` is raised by :meth:`raise_for_errors`."""

    issues: list[CoherenceIssue] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    failure: type[IngestError] = IngestError

    @property
    def errors(self) -> list[str]:
        return [issue.message for issue in self.issues]

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def fail(self, message: str, index: int | None = None) -> None:
        self.issues.append(CoherenceIssue(message, index))

    def raise_for_errors(self) -> None:
        if self.issues:
            raise self.failure("; ".join(self.errors))


class JournalEntry(BaseModel):
    """A single ledger line carrying either a debit or a credit."""

    model_config = ConfigDict(frozen=True)

    account: str = Field(..., min_length=1)
    debit: float | None = Field(default=None, ge=0)
    credit: float | None = Field(default=None, ge=0)
    description: str | None = None
    date: dt.date | None = None
    reference: str | None = None
    category: str | None = None

    @model_validator(mode="after")
    def _debit_xor_credit(self) -> "JournalEntry":
        has_debit = self.debit is not None and self.debit > 0
        has_credit = self.credit is not None and self.credit > 0
        if has_debit == has_credit:
            raise ValueError("Entry must carry either a debit or a credit, not both")
        return self


def _first_error(exc: ValidationError) -> str:
    first = exc.errors()[0]
    message = str(first.get("msg", "invalid entry"))
    return message.removeprefix("Value error, ")


def _numeric(value: Any) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return sanitize_amount(value)
    except InvalidAmount:
        return 0.0


@dataclass(slots=True)
class JournalResult(CoherenceResult):
    total_debits: float = 0.0
    total_credits: float = 0.0
    entries: list[JournalEntry] = field(default_factory=list)


def validate_journal_entries(entries: Iterable[JournalEntry | Mapping[str, Any]]) -> JournalResult:
    """Check the debit/credit XOR per entry and that the totals balance."""

    result = JournalResult(failure=UnbalancedEntries)
    items = list(entries)
    if not items:
        result.fail("No entries to validate")
        return result

    debits = Decimal("0")
    credits = Decimal("0")
    for index, item in enumerate(items):
        raw = item.model_dump() if isinstance(item, JournalEntry) else dict(item)
        debits += Decimal(str(_numeric(raw.get("debit"))))
        credits += Decimal(str(_numeric(raw.get("credit"))))

        if isinstance(item, JournalEntry):
            result.entries.append(item)
            continue
        try:
            result.entries.append(JournalEntry.model_validate(raw))
        except ValidationError as exc:
            result.fail(f"Invalid entry: {_first_error(exc)}", index)

    result.total_debits = round_amount(debits)
    result.total_credits = round_amount(credits)
    if abs(debits - credits) > TOLERANCE:
        result.fail(
            f"Unbalanced entries: debits {result.total_debits:.2f} != credits "
            f"{result.total_credits:.2f} (diff: {abs(debits - credits):.2f})"
        )
    return result


@dataclass(slots=True)
class AccountTotals:
    debit: float = 0.0
    credit: float = 0.0

    @property
    def balance(self) -> float:
        return round_amount(Decimal(str(self.debit)) - Decimal(str(self.credit)))


@dataclass(slots=True)
class TrialBalanceResult(CoherenceResult):
    total_debits: float = 0.0
    total_credits: float = 0.0
    difference: float = 0.0
    accounts: dict[str, AccountTotals] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        return {
            "total_debits": self.total_debits,
            "total_credits": self.total_credits,
            "difference": self.difference,
            "accounts": {
                name: {"debit": totals.debit, "credit": totals.credit, "balance": totals.balance}
                for name, totals in self.accounts.items()
            },
        }


def validate_trial_balance(accounts: Iterable[Mapping[str, Any]]) -> TrialBalanceResult:
    """Sanitise and total every account; the summary is filled in even when unbalanced."""

    result = TrialBalanceResult(failure=UnbalancedTrialBalance)
    per_account: dict[str, list[Decimal]] = defaultdict(lambda: [Decimal("0"), Decimal("0")])

    for index, line in enumerate(accounts):
        name = sanitize_account_name(str(line.get("account") or "")) or f"#{index + 1}"
        for slot, key in enumerate(("debit", "credit")):
            raw = line.get(key)
            if raw in (None, ""):
                continue
            try:
                per_account[name][slot] += Decimal(str(sanitize_amount(raw)))
            except InvalidAmount as exc:
                result.fail(str(exc), index)

    total_debits = sum((values[0] for values in per_account.values()), Decimal("0"))
    total_credits = sum((values[1] for values in per_account.values()), Decimal("0"))

    result.accounts = {
        name: AccountTotals(debit=round_amount(values[0]), credit=round_amount(values[1]))
        for name, values in per_account.items()
    }
    result.total_debits = round_amount(total_debits)
    result.total_credits = round_amount(total_credits)
    result.difference = round_amount(total_debits - total_credits)

    if abs(total_debits - total_credits) > TOLERANCE:
        result.fail(
            f"Trial balance unbalanced: debits {result.total_debits:.2f} != credits "
            f"{result.total_credits:.2f} (diff: {abs(result.difference):.2f})"
        )
    return result


class _Block(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class AssetsBlock(_Block):
    current: float = Field(..., ge=0)
    non_current: float = Field(..., ge=0, alias="nonCurrent")
    total: float = Field(..., ge=0)


class LiabilitiesBlock(_Block):
    current: float = Field(..., ge=0)
    non_current: float = Field(..., ge=0, alias="nonCurrent")
    total: float = Field(..., ge=0)


class EquityBlock(_Block):
    capital: float
    retained_earnings: float = Field(..., alias="retainedEarnings")
    total: float


class BalanceSheet(_Block):
    """Balance sheet subtotals; construction fails unless assets = liabilities + equity."""

    assets: AssetsBlock
    liabilities: LiabilitiesBlock
    equity: EquityBlock

    @model_validator(mode="after")
    def _accounting_identity(self) -> "BalanceSheet":
        other_side = Decimal(str(self.liabilities.total)) + Decimal(str(self.equity.total))
        if abs(Decimal(str(self.assets.total)) - other_side) > TOLERANCE:
            raise ValueError("Accounting identity violated: assets must equal liabilities plus equity")
        return self


def validate_balance_sheet(data: BalanceSheet | Mapping[str, Any]) -> CoherenceResult:
    result = CoherenceResult(failure=UnbalancedBalanceSheet)
    if isinstance(data, BalanceSheet):
        return result
    try:
        BalanceSheet.model_validate(data)
    except ValidationError as exc:
        for error in exc.errors():
            result.fail(str(error.get("msg", "invalid balance sheet")).removeprefix("Value error, "))
    return result


@dataclass(slots=True)
class RatioCheck:
    ratios: dict[str, float | None]
    warnings: list[str] = field(default_factory=list)

    @property
    def is_reasonable(self) -> bool:
        return not self.warnings


def _ratio(numerator: float, denominator: float) -> float | None:
    if denominator == 0:
        return None
    return round(numerator / denominator, 4)


def check_financial_ratios(
    *,
    current_assets: float,
    current_liabilities: float,
    total_assets: float,
    total_liabilities: float,
    revenue: float,
    net_income: float,
) -> RatioCheck:
    """Compute headline ratios and flag unusual values. Never raises."""

    ratios = {
        "current_ratio": _ratio(current_assets, current_liabilities),
        "debt_to_assets": _ratio(total_liabilities, total_assets),
        "profit_margin": _ratio(net_income, revenue),
    }
    check = RatioCheck(ratios=ratios)

    current_ratio = ratios["current_ratio"]
    if current_ratio is not None and current_ratio < CURRENT_RATIO_MIN:
        check.warnings.append(f"Current ratio {current_ratio:.2f} is very low (< {CURRENT_RATIO_MIN})")
    elif current_ratio is not None and current_ratio > CURRENT_RATIO_MAX:
        check.warnings.append(f"Current ratio {current_ratio:.2f} is unusually high (> {CURRENT_RATIO_MAX})")

    debt_to_assets = ratios["debt_to_assets"]
    if debt_to_assets is not None and debt_to_assets > DEBT_TO_ASSETS_MAX:
        check.warnings.append(f"Debt to assets {debt_to_assets:.2f} exceeds {DEBT_TO_ASSETS_MAX}")

    margin = ratios["profit_margin"]
    if margin is not None and not -PROFIT_MARGIN_BOUND <= margin <= PROFIT_MARGIN_BOUND:
        check.warnings.append(f"Profit margin {margin:.2f} is outside [-{PROFIT_MARGIN_BOUND}, {PROFIT_MARGIN_BOUND}]")

    return check


@dataclass(slots=True)
class YearBalance:
    year: int
    assets: float
    liabilities_equity: float

    @property
    def diff(self) -> float:
        return round_amount(_gap(self.assets, self.liabilities_equity))

    @property
    def balanced(self) -> bool:
        return within_tolerance(self.assets, self.liabilities_equity)


@dataclass(slots=True)
class BalanceByYearResult(CoherenceResult):
    years: list[YearBalance] = field(default_factory=list)


def _side(section: str | None, concept: str) -> str | None:
    if section in ASSET_SECTIONS:
        return "assets"
    if section in LIABILITY_EQUITY_SECTIONS:
        return "liabilities_equity"
    label = concept.upper()
    if "ACTIVO" in label:
        return "assets"
    if "PATRIMONIO" in label or "PASIVO" in label:
        return "liabilities_equity"
    return None


def check_balance_by_year(lines: Iterable[Any]) -> BalanceByYearResult:
    """Verify assets = liabilities + equity for every year of transformed balance lines.

    ``lines`` need ``period_year``, ``section``, ``concept_original`` and
    ``amount`` attributes. ``TOTAL ...`` rows are skipped so subtotals are not
    counted twice; lines outside any section are classified by their label.
    """

    totals: dict[int, dict[str, Decimal]] = defaultdict(
        lambda: {"assets": Decimal("0"), "liabilities_equity": Decimal("0")}
    )
    for line in lines:
        concept = str(line.concept_original).strip()
        if concept.upper().startswith("TOTAL"):
            continue
        side = _side(line.section, concept)
        if side is None:
            continue
        totals[line.period_year][side] += Decimal(str(line.amount))

    result = BalanceByYearResult(failure=UnbalancedBalanceSheet)
    for year in sorted(totals):
        entry = YearBalance(
            year=year,
            assets=round_amount(totals[year]["assets"]),
            liabilities_equity=round_amount(totals[year]["liabilities_equity"]),
        )
        result.years.append(entry)
        if not entry.balanced:
            result.fail(
                f"Balance does not square in {year}: assets {entry.assets:.2f} != "
                f"liabilities+equity {entry.liabilities_equity:.2f} (diff: {entry.diff:.2f})",
                year,
            )
    return result


@dataclass(slots=True)
class LedgerResult(JournalResult):
    processed: list[dict[str, Any]] = field(default_factory=list)


def validate_ledger_rows(rows: Sequence[Mapping[str, Any]] | None) -> LedgerResult:
    """Sanitise raw ledger rows and run the journal checks over them.

    Each row may carry ``account``, ``description``, ``debit``, ``credit`` and
    ``date``. Rows that fail sanitisation are reported by index and left out
    of the journal totals.
    """

    result = LedgerResult(failure=UnbalancedEntries)
    if not rows:
        result.fail(str(EmptyFile()))
        return result

    origins: list[int] = []
    for index, row in enumerate(rows):
        cleaned: dict[str, Any] = {
            "account": sanitize_account_name(row.get("account")),
            "description": sanitize_description(row.get("description")),
        }
        problems: list[str] = []
        if not cleaned["account"]:
            problems.append("Account is required")

        for key in ("debit", "credit"):
            raw = row.get(key)
            if raw in (None, ""):
                continue
            try:
                cleaned[key] = sanitize_amount(raw)
            except InvalidAmount as exc:
                problems.append(str(exc))

        raw_date = row.get("date")
        if raw_date not in (None, ""):
            try:
                cleaned["date"] = sanitize_date(raw_date)
            except InvalidDate as exc:
                problems.append(str(exc))

        if problems:
            for problem in problems:
                result.fail(problem, index)
            continue
        result.processed.append(cleaned)
        origins.append(index)

    journal = validate_journal_entries(result.processed) if result.processed else None
    if journal is not None:
        for issue in journal.issues:
            origin = origins[issue.index] if issue.index is not None else None
            result.fail(issue.message, origin)
        result.entries = journal.entries
        result.total_debits = journal.total_debits
        result.total_credits = journal.total_credits

    logger.debug(
        "ledger.validated rows=%d processed=%d errors=%d",
        len(rows),
        len(result.processed),
        len(result.issues),
    )
    return result
