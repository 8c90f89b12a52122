"""Derived ratio materialization run after each successful load."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.tables import FinancialLine, RatioSnapshot
from app.services.storage import fetch_lines
from ingest.accounting import RatioCheck, check_financial_ratios

logger = get_logger(__name__)

REVENUE_CONCEPT = "Cifra de negocios"

# Quarterly and monthly lines share the year but are not part of the annual figures.
RATIO_PERIOD_TYPE = "annual"

# P&L amounts are stored unsigned; these concepts reduce profit.
EXPENSE_CONCEPTS = frozenset(
    {
        "Aprovisionamientos",
        "Aprovisionamientos (compras)",
        "Gastos de personal",
        "Otros gastos de explotación",
        "Amortización del inmovilizado",
        "Deterioro y resultado por enajenaciones del inmovilizado",
        "Gastos financieros",
        "Deterioro y resultado por enajenaciones de instrumentos financieros",
        "Impuesto sobre beneficios",
    }
)


def _is_total(line: FinancialLine) -> bool:
    return line.concept_original.strip().upper().startswith("TOTAL")


def summarize_year(lines: Sequence[FinancialLine]) -> dict[str, float]:
    """Reduce one year's stored lines to the inputs of the ratio check."""

    figures = defaultdict(float)
    for line in lines:
        if line.statement == "pyg":
            if line.concept_normalized == REVENUE_CONCEPT:
                figures["revenue"] += line.amount
            sign = -1.0 if line.concept_normalized in EXPENSE_CONCEPTS else 1.0
            figures["net_income"] += sign * line.amount
        elif line.statement == "balance" and not _is_total(line):
            if line.section == "ACTIVO_C":
                figures["current_assets"] += line.amount
            if line.section in {"ACTIVO_C", "ACTIVO_NC"}:
                figures["total_assets"] += line.amount
            if line.section == "PASIVO_C":
                figures["current_liabilities"] += line.amount
            if line.section in {"PASIVO_C", "PASIVO_NC"}:
                figures["total_liabilities"] += line.amount
    return dict(figures)


async def recompute_ratios(
    session: AsyncSession,
    company_id: str,
    years: Sequence[int],
    *,
    job_id: str | None = None,
) -> dict[int, RatioCheck]:
    """Recompute and store annual ratio snapshots for ``years``; warnings never fail the job."""

    if not years:
        return {}

    lines = await fetch_lines(session, company_id, years=years, period_type=RATIO_PERIOD_TYPE)
    by_year: dict[int, list[FinancialLine]] = defaultdict(list)
    for line in lines:
        by_year[line.period_year].append(line)

    checks: dict[int, RatioCheck] = {}
    for year in sorted(by_year):
        figures = summarize_year(by_year[year])
        checks[year] = check_financial_ratios(
            current_assets=figures.get("current_assets", 0.0),
            current_liabilities=figures.get("current_liabilities", 0.0),
            total_assets=figures.get("total_assets", 0.0),
            total_liabilities=figures.get("total_liabilities", 0.0),
            revenue=figures.get("revenue", 0.0),
            net_income=figures.get("net_income", 0.0),
        )

    # fetch_lines autobegan a transaction; commit it so the write below can open its own.
    await session.commit()
    async with session.begin():
        await session.execute(
            delete(RatioSnapshot).where(
                RatioSnapshot.company_id == company_id,
                RatioSnapshot.period_year.in_(list(checks)),
            )
        )
        session.add_all(
            RatioSnapshot(company_id=company_id, period_year=year, name=name, value=value, job_id=job_id)
            for year, check in checks.items()
            for name, value in check.ratios.items()
        )

    for year, check in checks.items():
        if check.warnings:
            logger.warning("aggregation.ratios.unusual", company_id=company_id, year=year, warnings=check.warnings)
    logger.info("aggregation.ratios.stored", company_id=company_id, years=sorted(checks))
    return checks
