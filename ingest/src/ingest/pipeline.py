"""Per-file ingestion workflow: parse, detect, validate and transform."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePath
from typing import Mapping, Sequence

from pydantic import BaseModel, Field

from .issues import ValidationIssue, ValidationReport
from .parsers.delimited import ParsedTable, parse_table
from .parsers.workbook import WORKBOOK_SUFFIXES, workbook_to_csv
from .templates.matching import (
    AUTO_SELECT_THRESHOLD,
    DETECTION_THRESHOLD,
    TemplateMatch,
    match_template,
    rank_templates,
    select_template,
)
from .templates.schema import TemplateSchema
from .transform import STATEMENT_BY_TEMPLATE, NormalizedLine, TransformContext, transform_statement
from .validation import DEFAULT_TOLERANCE, validate_file

logger = logging.getLogger(__name__)

SAMPLE_ROWS = 5
_STRUCTURAL_CODES = frozenset({"missing_required_column", "empty_file"})


@dataclass(slots=True)
class PipelineConfig:
    detection_threshold: float = DETECTION_THRESHOLD
    auto_select_threshold: float = AUTO_SELECT_THRESHOLD
    tolerance: float = DEFAULT_TOLERANCE
    escaped_quotes: bool = False
    sample_rows: int = SAMPLE_ROWS


class FilePreview(BaseModel):
    """What was learned about a file before validation."""

    filename: str | None = None
    delimiter: str
    encoding: str
    headers: list[str]
    sample_rows: list[list[str]] = Field(default_factory=list)
    row_count: int
    column_count: int
    file_size: int
    detected_years: list[int] = Field(default_factory=list)
    detected_template: str | None = None
    candidates: list[TemplateMatch] = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)


@dataclass(slots=True)
class FileOutcome:
    preview: FilePreview
    report: ValidationReport
    template: TemplateSchema | None = None
    match: TemplateMatch | None = None
    lines: list[NormalizedLine] = field(default_factory=list)
    reference_rows: list[dict[str, str]] = field(default_factory=list)
    needs_mapping: bool = False

    @property
    def is_valid(self) -> bool:
        return not self.needs_mapping and self.report.is_valid

    @property
    def years(self) -> list[int]:
        return sorted({line.period_year for line in self.lines})


def read_table(
    content: bytes | str,
    *,
    filename: str | None = None,
    escaped_quotes: bool = False,
) -> ParsedTable:
    """Parse CSV text or an Excel workbook into a :class:`ParsedTable`."""

    suffix = PurePath(filename).suffix.lower() if filename else ""
    if suffix in WORKBOOK_SUFFIXES and isinstance(content, bytes):
        table = parse_table(workbook_to_csv(content), escaped_quotes=True, filename=filename, delimiter=",")
        return table.model_copy(update={"file_size": len(content)})
    return parse_table(content, escaped_quotes=escaped_quotes, filename=filename)


def _is_blank(row: Sequence[str]) -> bool:
    return all(not cell.strip() for cell in row)


def _rename_headers(headers: Sequence[str], overrides: Mapping[str, str] | None) -> list[str]:
    if not overrides:
        return list(headers)
    return [overrides.get(header, header) for header in headers]


@dataclass(slots=True)
class FilePipeline:
    """Runs one file through detection, validation and transformation without any I/O."""

    templates: Sequence[TemplateSchema] = ()
    config: PipelineConfig = field(default_factory=PipelineConfig)

    def preview(self, table: ParsedTable, *, filename: str | None = None) -> FilePreview:
        candidates = rank_templates(
            self.templates,
            table.headers,
            table.rows[: self.config.sample_rows],
            threshold=self.config.detection_threshold,
        )
        return FilePreview(
            filename=filename,
            delimiter=table.delimiter,
            encoding=table.encoding,
            headers=table.headers,
            sample_rows=table.rows[: self.config.sample_rows],
            row_count=table.row_count,
            column_count=table.column_count,
            file_size=table.file_size,
            detected_years=table.detected_years,
            detected_template=candidates[0].template_name if candidates else None,
            candidates=candidates,
        )

    def run(
        self,
        content: bytes | str,
        schema: TemplateSchema | None = None,
        context: TransformContext | None = None,
        *,
        filename: str | None = None,
        mapping_overrides: Mapping[str, str] | None = None,
    ) -> FileOutcome:
        """Parse ``content`` and hand it to :meth:`run_table`.

        Raises :class:`~ingest.errors.EmptyFile` when the file has no lines.
        """

        table = read_table(content, filename=filename, escaped_quotes=self.config.escaped_quotes)
        return self.run_table(table, schema, context, filename=filename, mapping_overrides=mapping_overrides)

    def run_table(
        self,
        table: ParsedTable,
        schema: TemplateSchema | None = None,
        context: TransformContext | None = None,
        *,
        filename: str | None = None,
        mapping_overrides: Mapping[str, str] | None = None,
        defer_to_mapping: bool = True,
    ) -> FileOutcome:
        """Validate and transform an already parsed table.

        Without ``schema`` the best template above the auto-select threshold is
        used. With ``defer_to_mapping`` a file that fits no template, or fits the
        given one too poorly to find its required columns, comes back with
        ``needs_mapping`` set instead of a report full of missing-column errors.
        """

        context = context or TransformContext(source_file=filename)
        preview = self.preview(table, filename=filename)
        headers = _rename_headers(table.headers, mapping_overrides)
        numbered = [(number, row) for number, row in table.numbered_rows() if not _is_blank(row)]
        rows = [row for _, row in numbered]
        row_numbers = [number for number, _ in numbered]

        match: TemplateMatch | None
        if schema is None:
            selected = select_template(self.templates, headers, rows, threshold=self.config.auto_select_threshold)
            if selected is None:
                logger.info("pipeline.template.undetected filename=%s headers=%s", filename, headers)
                return FileOutcome(preview=preview, report=ValidationReport(), needs_mapping=True)
            schema, match = selected
        else:
            match = match_template(schema, headers, rows)
            missing_required = any(
                column.required and column.name in match.missing_columns for column in schema.columns
            )
            poor_fit = missing_required and match.confidence <= self.config.auto_select_threshold
            if defer_to_mapping and poor_fit and not mapping_overrides:
                logger.info(
                    "pipeline.mapping.required template=%s confidence=%.2f",
                    schema.name,
                    match.confidence,
                )
                return FileOutcome(
                    preview=preview,
                    report=ValidationReport(),
                    template=schema,
                    match=match,
                    needs_mapping=True,
                )

        preview = preview.model_copy(update={"detected_template": schema.name})
        report = validate_file(schema, headers, rows, tolerance=self.config.tolerance, row_numbers=row_numbers)
        outcome = FileOutcome(preview=preview, report=report, template=schema, match=match)

        if any(issue.code in _STRUCTURAL_CODES for issue in report.errors):
            return outcome

        statement = STATEMENT_BY_TEMPLATE.get(schema.name)
        if statement is not None:
            transformed = transform_statement(statement, headers, rows, context, row_numbers=row_numbers)
            outcome.lines = transformed.lines
            report.extend(transformed.issues)
            report.recount(len(rows))
        else:
            outcome.reference_rows = [
                {header: (row[index] if index < len(row) else "") for index, header in enumerate(headers)}
                for row in rows
            ]

        logger.info(
            "pipeline.file.validated template=%s rows=%d errors=%d warnings=%d lines=%d",
            schema.name,
            len(rows),
            len(report.errors),
            len(report.warnings),
            len(outcome.lines),
        )
        return outcome
