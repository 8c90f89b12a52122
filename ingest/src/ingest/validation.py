"""Row and template-level validation of parsed files against an effective schema."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Mapping, Sequence
from urllib.parse import urlparse

from .accounting import check_balance_by_year, validate_journal_entries
from .amounts import parse_date, try_sanitize_amount
from .concepts import FORBIDDEN_DERIVED_PATTERNS, fold_text, map_concept
from .errors import (
    ConceptNotAllowed,
    EmptyFile,
    EmptyRequiredField,
    FormatViolation,
    MissingRequiredColumn,
    RangeViolation,
    RowStructureMismatch,
    TypeMismatch,
    UnbalancedBalanceSheet,
    UnbalancedEntries,
)
from .issues import IssueSeverity, ValidationIssue, ValidationReport
from .templates.schema import (
    ColumnType,
    ColumnValidation,
    RuleType,
    TemplateColumn,
    TemplateSchema,
    ValidationRule,
)
from .transform import CONCEPT_HEADERS, TransformContext, transform_balance

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = 0.01
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_BOOLEAN_VALUES = {"true", "false", "1", "0", "yes", "no", "si", "sí"}
_FORBIDDEN = [re.compile(pattern, re.IGNORECASE) for pattern in FORBIDDEN_DERIVED_PATTERNS]


@dataclass(slots=True)
class ColumnMapping:
    """Template column name (or year header) to file column index."""

    mapped: dict[str, int] = field(default_factory=dict)
    unmapped: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    def index_of(self, name: str) -> int | None:
        if name in self.mapped:
            return self.mapped[name]
        lowered = name.strip().lower()
        for key, index in self.mapped.items():
            if key.strip().lower() == lowered:
                return index
        return None


def map_columns(
    schema: TemplateSchema,
    headers: Sequence[str],
    overrides: Mapping[str, str] | None = None,
) -> ColumnMapping:
    """Map template columns onto file headers case-insensitively.

    ``overrides`` holds manual ``header -> template column`` choices and wins
    over automatic matching.
    """

    mapping = ColumnMapping()
    lowered = [header.strip().lower() for header in headers]
    manual = {column: header for header, column in (overrides or {}).items()}

    for column in schema.columns:
        target = manual.get(column.name, column.name).strip().lower()
        if target in lowered:
            mapping.mapped[column.name] = lowered.index(target)
        else:
            mapping.unmapped.append(column.name)

    definition = schema.schema_definition
    if definition.variable_year_columns:
        pattern = re.compile(definition.year_pattern)
        for index, header in enumerate(headers):
            if pattern.match(header.strip()):
                mapping.mapped[header.strip()] = index

    used = set(mapping.mapped.values())
    mapping.extra = [header for index, header in enumerate(headers) if index not in used]
    return mapping


def _is_number(value: str) -> bool:
    if "_" in value:
        return False
    candidate = value.strip()
    if candidate.count(",") == 1 and "." not in candidate:
        # decimal comma: 2,5
        candidate = candidate.replace(",", ".")
    try:
        return math.isfinite(float(candidate))
    except ValueError:
        return False


def _as_number(value: str) -> float:
    return float(value.strip().replace(",", "."))


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


_TYPE_CHECKS: dict[ColumnType, tuple[Callable[[str], bool], str]] = {
    ColumnType.NUMBER: (_is_number, "'{name}' must be a number"),
    ColumnType.DATE: (lambda value: parse_date(value) is not None, "'{name}' must be a valid date"),
    ColumnType.EMAIL: (lambda value: bool(EMAIL_PATTERN.match(value)), "'{name}' must be a valid email address"),
    ColumnType.URL: (_is_url, "'{name}' must be a valid URL"),
    ColumnType.BOOLEAN: (lambda value: value.lower() in _BOOLEAN_VALUES, "'{name}' must be true or false"),
}


def _format_bound(value: float) -> str:
    return f"{value:g}"


def _check_column_rule(
    column: TemplateColumn,
    rule: ColumnValidation,
    value: str,
    row_number: int,
) -> ValidationIssue | None:
    if rule.type == "range":
        if not _is_number(value):
            return None
        number = _as_number(value)
        if rule.min is not None and number < rule.min:
            message = rule.message or f"'{column.name}' must be at least {_format_bound(rule.min)}"
            return ValidationIssue.from_error(
                RangeViolation, row=row_number, column=column.name, value=value, message=message
            )
        if rule.max is not None and number > rule.max:
            message = rule.message or f"'{column.name}' must be at most {_format_bound(rule.max)}"
            return ValidationIssue.from_error(
                RangeViolation, row=row_number, column=column.name, value=value, message=message
            )
    elif rule.type == "format" and rule.pattern:
        if not re.search(rule.pattern, value):
            message = rule.message or f"'{column.name}' format is invalid"
            return ValidationIssue.from_error(
                FormatViolation, row=row_number, column=column.name, value=value, message=message
            )
    return None


def validate_row(
    schema: TemplateSchema,
    row: Sequence[str],
    mapping: ColumnMapping,
    row_number: int,
) -> list[ValidationIssue]:
    """Check presence, type and per-column rules for one data row."""

    issues: list[ValidationIssue] = []

    for column in schema.columns:
        index = mapping.mapped.get(column.name)
        if index is None:
            if column.required:
                issues.append(
                    ValidationIssue.from_error(
                        MissingRequiredColumn,
                        row=row_number,
                        column=column.name,
                        message=f"Required column '{column.name}' is missing",
                    )
                )
            continue

        value = row[index].strip() if index < len(row) else ""
        if not value:
            if column.required:
                issues.append(
                    ValidationIssue.from_error(
                        EmptyRequiredField,
                        row=row_number,
                        column=column.name,
                        value=value,
                        message=f"Required field '{column.name}' is empty",
                    )
                )
            continue

        check = _TYPE_CHECKS.get(column.type)
        if check is not None and not check[0](value):
            issues.append(
                ValidationIssue.from_error(
                    TypeMismatch,
                    row=row_number,
                    column=column.name,
                    value=value,
                    message=check[1].format(name=column.name),
                )
            )

        for rule in column.validations:
            issue = _check_column_rule(column, rule, value, row_number)
            if issue is not None:
                issues.append(issue)

    return issues


def _severity(rule: ValidationRule, default: IssueSeverity = "error") -> IssueSeverity:
    return rule.severity.value if rule.severity is not None else default  # type: ignore[return-value]


def _cell(row: Sequence[str], index: int | None) -> str:
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def _concept_index(headers: Sequence[str], mapping: ColumnMapping) -> int:
    for name in CONCEPT_HEADERS:
        index = mapping.index_of(name)
        if index is not None:
            return index
    return 0


def _numbered(
    rows: Sequence[Sequence[str]], row_numbers: Sequence[int] | None = None
) -> list[tuple[int, Sequence[str]]]:
    numbers = row_numbers if row_numbers is not None else range(2, len(rows) + 2)
    return list(zip(numbers, rows))


def _required_fields_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    severity = _severity(rule)
    for name in rule.fields or ((rule.field,) if rule.field else ()):
        index = mapping.index_of(name)
        if index is None:
            issues.append(
                ValidationIssue.from_error(MissingRequiredColumn, column=name, message=rule.message, severity=severity)
            )
            continue
        for row_number, row in rows:
            if not _cell(row, index):
                issues.append(
                    ValidationIssue.from_error(
                        EmptyRequiredField, row=row_number, column=name, message=rule.message, severity=severity
                    )
                )
    return issues


def _format_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    index = mapping.index_of(rule.field) if rule.field else None
    if index is None or not rule.pattern:
        return []
    pattern = re.compile(rule.pattern)
    return [
        ValidationIssue.from_error(
            FormatViolation,
            row=row_number,
            column=rule.field,
            value=_cell(row, index),
            message=rule.message,
            severity=_severity(rule),
        )
        for row_number, row in rows
        if _cell(row, index) and not pattern.search(_cell(row, index))
    ]


def _range_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    index = mapping.index_of(rule.field) if rule.field else None
    if index is None:
        return []
    issues: list[ValidationIssue] = []
    for row_number, row in rows:
        amount = try_sanitize_amount(_cell(row, index)) if _cell(row, index) else None
        if amount is None:
            continue
        if (rule.min is not None and amount < rule.min) or (rule.max is not None and amount > rule.max):
            issues.append(
                ValidationIssue.from_error(
                    RangeViolation,
                    row=row_number,
                    column=rule.field,
                    value=_cell(row, index),
                    message=rule.message,
                    severity=_severity(rule),
                )
            )
    return issues


def _calculation_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    if not rule.fields or not rule.target_field:
        logger.debug("validation.rule.calculation.skipped reason=%s", "no fields or target declared")
        return []
    indexes = [mapping.index_of(name) for name in rule.fields]
    target = mapping.index_of(rule.target_field)
    if target is None or any(index is None for index in indexes):
        return []

    limit = Decimal(str(rule.tolerance if rule.tolerance is not None else tolerance))
    issues: list[ValidationIssue] = []
    for row_number, row in rows:
        parts = [try_sanitize_amount(_cell(row, index)) if _cell(row, index) else 0.0 for index in indexes]
        expected = try_sanitize_amount(_cell(row, target)) if _cell(row, target) else None
        if expected is None or any(part is None for part in parts):
            continue
        total = sum((Decimal(str(part)) for part in parts), Decimal("0"))
        if abs(total - Decimal(str(expected))) > limit:
            issues.append(
                ValidationIssue(
                    row=row_number,
                    column=rule.target_field,
                    value=_cell(row, target),
                    message=f"{rule.message} (expected {total:.2f}, found {expected:.2f})",
                    type="calculation",
                    severity=_severity(rule),
                )
            )
    return issues


def _balance_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    severity = _severity(rule)

    if rule.fields and len(rule.fields) == 2:
        debit_index, credit_index = (mapping.index_of(name) for name in rule.fields)
        if debit_index is None or credit_index is None:
            return []
        entries: list[dict[str, object]] = []
        origins: list[int] = []
        account_index = mapping.index_of("Cuenta")
        for row_number, row in rows:
            debit = try_sanitize_amount(_cell(row, debit_index)) if _cell(row, debit_index) else None
            credit = try_sanitize_amount(_cell(row, credit_index)) if _cell(row, credit_index) else None
            entries.append({"account": _cell(row, account_index) or f"row {row_number}", "debit": debit, "credit": credit})
            origins.append(row_number)
        result = validate_journal_entries(entries)
        return [
            ValidationIssue.from_error(
                UnbalancedEntries,
                row=origins[issue.index] if issue.index is not None else None,
                message=issue.message if issue.index is not None else f"{rule.message}: {issue.message}",
                severity=severity,
            )
            for issue in result.issues
        ]

    lines = transform_balance(headers, [row for _, row in rows], TransformContext()).lines
    result = check_balance_by_year(lines)
    by_year = {entry.year: entry for entry in result.years}
    return [
        ValidationIssue.from_error(
            UnbalancedBalanceSheet,
            column=str(issue.index),
            value=by_year[issue.index].diff if issue.index in by_year else None,
            message=issue.message,
            severity=severity,
        )
        for issue in result.issues
    ]


def _calculation_check_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    index = _concept_index(headers, mapping)
    column = headers[index] if index < len(headers) else "Concepto"
    issues: list[ValidationIssue] = []
    for row_number, row in rows:
        concept = _cell(row, index)
        if concept and any(pattern.search(concept) for pattern in _FORBIDDEN):
            issues.append(
                ValidationIssue(
                    row=row_number,
                    column=column,
                    value=concept,
                    message=rule.message,
                    type="calculation",
                    severity=_severity(rule, "warning"),
                )
            )
    return issues


def _custom_rule(rule, headers, rows, mapping, tolerance) -> list[ValidationIssue]:
    logger.debug("validation.rule.custom.skipped rule=%s", rule.rule or rule.message)
    return []


_RuleHandler = Callable[
    [ValidationRule, Sequence[str], Sequence[tuple[int, Sequence[str]]], ColumnMapping, float],
    list[ValidationIssue],
]

RULE_HANDLERS: dict[RuleType, _RuleHandler] = {
    RuleType.REQUIRED_FIELDS: _required_fields_rule,
    RuleType.FORMAT: _format_rule,
    RuleType.RANGE: _range_rule,
    RuleType.CALCULATION: _calculation_rule,
    RuleType.BALANCE_CHECK: _balance_rule,
    RuleType.CALCULATION_CHECK: _calculation_check_rule,
    RuleType.CUSTOM: _custom_rule,
}


def apply_template_rules(
    schema: TemplateSchema,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    mapping: ColumnMapping,
    *,
    tolerance: float = DEFAULT_TOLERANCE,
    row_numbers: Sequence[int] | None = None,
) -> list[ValidationIssue]:
    """Run every template-level rule in declaration order.

    ``row_numbers`` gives the file line of each row; rows otherwise count from line 2.
    """

    numbered = _numbered(rows, row_numbers)
    issues: list[ValidationIssue] = []
    for rule in schema.validation_rules:
        issues.extend(RULE_HANDLERS[rule.type](rule, headers, numbered, mapping, tolerance))
    return issues


def check_expected_concepts(
    schema: TemplateSchema,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    mapping: ColumnMapping,
    *,
    row_numbers: Sequence[int] | None = None,
) -> list[ValidationIssue]:
    """Warn about concept labels outside the template's expected list."""

    expected = schema.schema_definition.expected_concepts
    if not expected:
        return []

    known = {fold_text(concept) for concept in expected}
    index = _concept_index(headers, mapping)
    issues: list[ValidationIssue] = []
    for row_number, row in _numbered(rows, row_numbers):
        concept = _cell(row, index)
        if not concept or fold_text(concept) in known:
            continue
        mapped = map_concept(concept).mapped
        if mapped and fold_text(mapped) in known:
            continue
        issues.append(
            ValidationIssue.from_error(
                ConceptNotAllowed,
                row=row_number,
                column=headers[index] if index < len(headers) else None,
                value=concept,
                message=f"Concept '{concept}' is not among the expected concepts",
                severity="warning",
            )
        )
    return issues


def _is_blank(row: Sequence[str]) -> bool:
    return all(not cell.strip() for cell in row)


def validate_file(
    schema: TemplateSchema,
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    tolerance: float = DEFAULT_TOLERANCE,
    mapping_overrides: Mapping[str, str] | None = None,
    row_numbers: Sequence[int] | None = None,
) -> ValidationReport:
    """Validate a whole file and return the accumulated report.

    File-level problems (no data rows, missing required columns) stop
    validation with a single summary error. Otherwise every row is checked,
    followed by the template-level rules; nothing fails fast.
    Issues carry the file line from ``row_numbers`` when it is given.
    """

    report = ValidationReport()
    numbered = [(number, row) for number, row in _numbered(rows, row_numbers) if not _is_blank(row)]
    data_rows = [row for _, row in numbered]
    data_numbers = [number for number, _ in numbered]
    report.statistics.empty_rows_count = len(rows) - len(data_rows)

    if not data_rows:
        report.add(ValidationIssue.from_error(EmptyFile, message="File has no data rows"))
        report.recount(0)
        return report

    mapping = map_columns(schema, headers, mapping_overrides)
    missing = [column.name for column in schema.columns if column.required and column.name in mapping.unmapped]
    if missing:
        report.add(
            ValidationIssue.from_error(
                MissingRequiredColumn,
                message=f"Missing required columns: {', '.join(missing)}",
            )
        )
        report.recount(len(data_rows))
        report.statistics.invalid_rows = len(data_rows)
        report.statistics.valid_rows = 0
        return report

    definition = schema.schema_definition
    if not definition.allow_additional_columns and mapping.extra:
        report.add(
            ValidationIssue.from_error(
                RowStructureMismatch,
                message=f"Unexpected columns: {', '.join(mapping.extra)}",
            )
        )

    for row_number, row in numbered:
        if definition.strict_columns and len(row) != len(headers):
            report.add(
                ValidationIssue.from_error(
                    RowStructureMismatch,
                    row=row_number,
                    value=len(row),
                    message=f"Row has {len(row)} columns, expected {len(headers)}",
                )
            )
        report.extend(validate_row(schema, row, mapping, row_number))

    report.extend(
        apply_template_rules(schema, headers, data_rows, mapping, tolerance=tolerance, row_numbers=data_numbers)
    )
    report.extend(check_expected_concepts(schema, headers, data_rows, mapping, row_numbers=data_numbers))
    report.recount(len(data_rows))
    return report
