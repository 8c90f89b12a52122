"""REPLACE-by-period loading of normalized lines and reference rows."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from typing import Mapping

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.tables import FinancialLine, ReferenceRow
from ingest.transform import NormalizedLine

logger = get_logger(__name__)


def _period_groups(lines: Sequence[NormalizedLine]) -> dict[tuple, set[int]]:
    groups: dict[tuple, set[int]] = defaultdict(set)
    for line in lines:
        key = (line.company_id, line.statement, line.period_type, line.period_quarter, line.period_month)
        groups[key].add(line.period_year)
    return groups


async def replace_period_lines(session: AsyncSession, lines: Sequence[NormalizedLine]) -> int:
    """Delete existing lines for every (company, statement, period) in ``lines`` and insert the batch.

    The delete and the insert commit together or not at all.
    """

    if not lines:
        return 0
    if any(line.company_id is None for line in lines):
        raise ValueError("Normalized lines must carry a company_id before loading")

    async with session.begin():
        deleted = 0
        for (company_id, statement, period_type, quarter, month), years in _period_groups(lines).items():
            stmt = delete(FinancialLine).where(
                FinancialLine.company_id == company_id,
                FinancialLine.statement == statement,
                FinancialLine.period_type == period_type,
                FinancialLine.period_year.in_(sorted(years)),
                FinancialLine.period_quarter.is_(None) if quarter is None else FinancialLine.period_quarter == quarter,
                FinancialLine.period_month.is_(None) if month is None else FinancialLine.period_month == month,
            )
            result = await session.execute(stmt)
            deleted += result.rowcount or 0

        session.add_all(FinancialLine(**line.model_dump()) for line in lines)

    logger.info("storage.lines.replaced", inserted=len(lines), deleted=deleted)
    return len(lines)


async def replace_reference_rows(
    session: AsyncSession,
    *,
    company_id: str,
    kind: str,
    rows: Sequence[Mapping[str, str]],
    job_id: str | None = None,
    source_file: str | None = None,
) -> int:
    """Replace every stored row of ``kind`` for ``company_id`` with ``rows``."""

    async with session.begin():
        await session.execute(
            delete(ReferenceRow).where(ReferenceRow.company_id == company_id, ReferenceRow.kind == kind)
        )
        session.add_all(
            ReferenceRow(
                company_id=company_id,
                kind=kind,
                row_number=index,
                payload=dict(row),
                job_id=job_id,
                source_file=source_file,
            )
            for index, row in enumerate(rows, start=2)
        )

    logger.info("storage.reference.replaced", company_id=company_id, kind=kind, inserted=len(rows))
    return len(rows)


async def fetch_lines(
    session: AsyncSession,
    company_id: str,
    *,
    statement: str | None = None,
    years: Sequence[int] | None = None,
    period_type: str | None = None,
) -> list[FinancialLine]:
    """Fetch stored lines for inspection and aggregation."""

    stmt = select(FinancialLine).where(FinancialLine.company_id == company_id)
    if statement:
        stmt = stmt.where(FinancialLine.statement == statement)
    if years:
        stmt = stmt.where(FinancialLine.period_year.in_(list(years)))
    if period_type:
        stmt = stmt.where(FinancialLine.period_type == period_type)
    results = await session.scalars(stmt.order_by(FinancialLine.period_year, FinancialLine.id))
    return list(results)
