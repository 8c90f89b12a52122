"""Wide-to-long reshaping of concept-by-year statements into normalized lines.

Each transformer is a left fold over the data rows. The fold state carries the
current section (balance sheet) or category (cash flow), so the output is a
pure function of the input rows.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Callable, Literal, Sequence

from pydantic import BaseModel

from .amounts import try_sanitize_amount
from .concepts import (
    DEFAULT_CASHFLOW_CATEGORY,
    balance_section_for,
    cashflow_category_for,
    map_concept,
    resolve_pyg_concept,
)
from .errors import ConceptNotAllowed, InvalidAmount
from .issues import ValidationIssue

logger = logging.getLogger(__name__)

Statement = Literal["pyg", "balance", "cashflow", "ratios", "operational"]

FOUR_DIGIT_YEAR = re.compile(r"^\d{4}$")
GENERIC_YEAR = re.compile(r"^año\s*(\d+)$", re.IGNORECASE)
CONCEPT_HEADERS = ("concepto", "concept")
SECTION_HEADERS = ("seccion", "sección")

STATEMENT_BY_TEMPLATE: dict[str, Statement] = {
    "cuenta-pyg": "pyg",
    "balance-situacion": "balance",
    "estado-flujos": "cashflow",
    "ratios-financieros": "ratios",
    "datos-operativos": "operational",
}


class NormalizedLine(BaseModel):
    """One (concept, year) record in long format."""

    company_id: str | None = None
    statement: Statement
    period_type: str = "annual"
    period_year: int
    period_quarter: int | None = None
    period_month: int | None = None
    concept_original: str
    concept_normalized: str
    section: str | None = None
    amount: float
    currency_code: str = "EUR"
    uploaded_by: str | None = None
    job_id: str | None = None
    source_file: str | None = None


@dataclass(slots=True)
class TransformContext:
    company_id: str | None = None
    period_type: str = "annual"
    base_year: int | None = None
    period_quarter: int | None = None
    period_month: int | None = None
    currency_code: str = "EUR"
    uploaded_by: str | None = None
    job_id: str | None = None
    source_file: str | None = None
    selected_years: frozenset[int] | None = None


@dataclass(slots=True)
class TransformResult:
    lines: list[NormalizedLine] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)
    concept_mappings: dict[str, str] = field(default_factory=dict)

    @property
    def years(self) -> list[int]:
        return sorted({line.period_year for line in self.lines})


@dataclass(slots=True, frozen=True)
class _Layout:
    concept_index: int
    section_index: int | None
    year_columns: tuple[tuple[int, str, int], ...]


@dataclass(slots=True)
class _FoldState:
    result: TransformResult
    section: str | None = None


def normalize_concept_text(concept: str) -> str:
    """Lower-case, drop punctuation and collapse whitespace."""

    text = re.sub(r"[^\w\s]", " ", concept.lower())
    return re.sub(r"\s+", " ", text).strip()


def resolve_year_columns(headers: Sequence[str], base_year: int | None = None) -> list[tuple[int, str, int]]:
    """Return ``(index, header, year)`` for four-digit and ``AñoN`` headers.

    ``AñoN`` resolves to ``base_year + N - 1`` and is ignored without a base year.
    """

    resolved: list[tuple[int, str, int]] = []
    for index, header in enumerate(headers):
        label = header.strip()
        if FOUR_DIGIT_YEAR.match(label):
            resolved.append((index, label, int(label)))
            continue
        generic = GENERIC_YEAR.match(label)
        if generic and base_year is not None:
            resolved.append((index, label, base_year + int(generic.group(1)) - 1))
    return resolved


def _find(headers: Sequence[str], names: Sequence[str]) -> int | None:
    for index, header in enumerate(headers):
        if header.strip().lower() in names:
            return index
    return None


def _layout(headers: Sequence[str], context: TransformContext) -> _Layout:
    concept_index = _find(headers, CONCEPT_HEADERS)
    years = resolve_year_columns(headers, context.base_year)
    if context.selected_years:
        years = [entry for entry in years if entry[2] in context.selected_years]
    return _Layout(
        concept_index=0 if concept_index is None else concept_index,
        section_index=_find(headers, SECTION_HEADERS),
        year_columns=tuple(years),
    )


def _cell(row: Sequence[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def _line(
    context: TransformContext,
    statement: Statement,
    *,
    year: int,
    concept: str,
    normalized: str,
    amount: float,
    section: str | None,
) -> NormalizedLine:
    return NormalizedLine(
        company_id=context.company_id,
        statement=statement,
        period_type=context.period_type,
        period_year=year,
        period_quarter=context.period_quarter,
        period_month=context.period_month,
        concept_original=concept,
        concept_normalized=normalized,
        section=section,
        amount=amount,
        currency_code=context.currency_code,
        uploaded_by=context.uploaded_by,
        job_id=context.job_id,
        source_file=context.source_file,
    )


def _emit_amounts(
    state: _FoldState,
    layout: _Layout,
    context: TransformContext,
    statement: Statement,
    row: Sequence[str],
    row_number: int,
    *,
    concept: str,
    normalized: str,
    section: str | None,
    allow_negative: bool = True,
) -> None:
    for index, header, year in layout.year_columns:
        raw = _cell(row, index)
        if not raw:
            continue
        amount = try_sanitize_amount(raw)
        if amount is None:
            state.result.issues.append(
                ValidationIssue.from_error(
                    InvalidAmount(raw),
                    row=row_number,
                    column=header,
                    value=raw,
                    message=f"Invalid amount for '{concept}' in column {header}: {raw}",
                )
            )
            continue
        if amount < 0 and not allow_negative:
            state.result.issues.append(
                ValidationIssue.from_error(
                    InvalidAmount,
                    row=row_number,
                    column=header,
                    value=raw,
                    message=f"Negative amount for '{concept}' in column {header}: {raw}",
                )
            )
            continue
        state.result.lines.append(
            _line(
                context,
                statement,
                year=year,
                concept=concept,
                normalized=normalized,
                amount=amount,
                section=section,
            )
        )


_Step = Callable[[_FoldState, tuple[int, Sequence[str]]], _FoldState]


def _fold(
    rows: Sequence[Sequence[str]],
    step: _Step,
    initial_section: str | None = None,
    row_numbers: Sequence[int] | None = None,
) -> TransformResult:
    numbered = zip(row_numbers if row_numbers is not None else range(2, len(rows) + 2), rows)
    final = reduce(step, numbered, _FoldState(result=TransformResult(), section=initial_section))
    return final.result


def transform_balance(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    context: TransformContext,
    *,
    row_numbers: Sequence[int] | None = None,
) -> TransformResult:
    """Emit one line per (concept, year), tagging each with the current balance section."""

    layout = _layout(headers, context)

    def step(state: _FoldState, item: tuple[int, Sequence[str]]) -> _FoldState:
        row_number, row = item
        concept = _cell(row, layout.concept_index)
        if not concept:
            return state

        header_section = balance_section_for(concept)
        if header_section is not None:
            return replace(state, section=header_section)

        explicit = _cell(row, layout.section_index)
        section = (balance_section_for(explicit) or explicit.upper()) if explicit else state.section

        match = map_concept(concept)
        if match.mapped and match.mapped != concept:
            state.result.concept_mappings[concept] = match.mapped
        _emit_amounts(
            state,
            layout,
            context,
            "balance",
            row,
            row_number,
            concept=concept,
            normalized=match.normalized,
            section=section,
        )
        return state

    return _fold(rows, step, row_numbers=row_numbers)


def transform_pyg(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    context: TransformContext,
    *,
    row_numbers: Sequence[int] | None = None,
) -> TransformResult:
    """Emit P&L lines for whitelisted concepts; reject unknown concepts and negative amounts."""

    layout = _layout(headers, context)

    def step(state: _FoldState, item: tuple[int, Sequence[str]]) -> _FoldState:
        row_number, row = item
        concept = _cell(row, layout.concept_index)
        if not concept:
            return state

        canonical = resolve_pyg_concept(concept)
        if canonical is None:
            state.result.issues.append(
                ValidationIssue.from_error(
                    ConceptNotAllowed,
                    row=row_number,
                    column=headers[layout.concept_index] if headers else "Concepto",
                    value=concept,
                    message=f"Concept '{concept}' is not a permitted P&L line item",
                )
            )
            return state

        if canonical != concept:
            state.result.concept_mappings[concept] = canonical
        _emit_amounts(
            state,
            layout,
            context,
            "pyg",
            row,
            row_number,
            concept=concept,
            normalized=canonical,
            section=None,
            allow_negative=False,
        )
        return state

    return _fold(rows, step, row_numbers=row_numbers)


def transform_cashflow(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    context: TransformContext,
    *,
    row_numbers: Sequence[int] | None = None,
) -> TransformResult:
    """Emit cash-flow lines tagged with their activity category.

    Rows under the ``EFECTIVO`` header are informational and not emitted.
    """

    layout = _layout(headers, context)

    def step(state: _FoldState, item: tuple[int, Sequence[str]]) -> _FoldState:
        row_number, row = item
        concept = _cell(row, layout.concept_index)
        if not concept:
            return state

        category = cashflow_category_for(concept)
        if category is not None:
            return replace(state, section=category)
        if state.section == "EFECTIVO":
            return state

        _emit_amounts(
            state,
            layout,
            context,
            "cashflow",
            row,
            row_number,
            concept=concept,
            normalized=normalize_concept_text(concept),
            section=state.section,
        )
        return state

    return _fold(rows, step, initial_section=DEFAULT_CASHFLOW_CATEGORY, row_numbers=row_numbers)


def transform_generic(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    context: TransformContext,
    statement: Statement = "ratios",
    *,
    row_numbers: Sequence[int] | None = None,
) -> TransformResult:
    layout = _layout(headers, context)

    def step(state: _FoldState, item: tuple[int, Sequence[str]]) -> _FoldState:
        row_number, row = item
        concept = _cell(row, layout.concept_index)
        if concept:
            _emit_amounts(
                state,
                layout,
                context,
                statement,
                row,
                row_number,
                concept=concept,
                normalized=normalize_concept_text(concept),
                section=None,
            )
        return state

    return _fold(rows, step, row_numbers=row_numbers)


def transform_statement(
    statement: Statement,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    context: TransformContext,
    *,
    row_numbers: Sequence[int] | None = None,
) -> TransformResult:
    """Dispatch to the transformer for ``statement``."""

    if statement == "pyg":
        result = transform_pyg(headers, rows, context, row_numbers=row_numbers)
    elif statement == "balance":
        result = transform_balance(headers, rows, context, row_numbers=row_numbers)
    elif statement == "cashflow":
        result = transform_cashflow(headers, rows, context, row_numbers=row_numbers)
    else:
        result = transform_generic(headers, rows, context, statement, row_numbers=row_numbers)

    if result.concept_mappings:
        logger.info(
            "transform.concepts.mapped statement=%s count=%d",
            statement,
            len(result.concept_mappings),
        )
    return result
