"""Validation issue and report models shared by every validator."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field

from .errors import IngestError

IssueType = Literal[
    "required",
    "format",
    "range",
    "calculation",
    "custom",
    "balance",
    "structure",
    "concept",
    "amount",
]
IssueSeverity = Literal["error", "warning", "info"]


class ValidationIssue(BaseModel):
    """One problem found in an uploaded file."""

    row: int | None = None
    column: str | None = None
    value: Any = None
    message: str
    type: IssueType
    severity: IssueSeverity = "error"
    code: str | None = None

    @classmethod
    def from_error(
        cls,
        error: IngestError | type[IngestError],
        *,
        row: int | None = None,
        column: str | None = None,
        value: Any = None,
        message: str | None = None,
        severity: IssueSeverity = "error",
    ) -> "ValidationIssue":
        """Build an issue from an :class:`IngestError` instance, or from a subclass plus ``message``."""

        return cls(
            row=row,
            column=column,
            value=value,
            message=message or str(error),
            type=error.issue_type,  # type: ignore[arg-type]
            severity=severity,
            code=error.code,
        )


class ValidationStatistics(BaseModel):
    total_rows: int = 0
    valid_rows: int = 0
    invalid_rows: int = 0
    warnings_count: int = 0
    errors_count: int = 0
    empty_rows_count: int = 0


class ValidationReport(BaseModel):
    """Aggregated outcome of validating one file."""

    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    statistics: ValidationStatistics = Field(default_factory=ValidationStatistics)
    summary: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_valid(self) -> bool:
        return not self.errors

    def add(self, issue: ValidationIssue) -> None:
        """Route ``issue`` by severity; ``info`` issues are kept with the warnings."""

        if issue.severity == "error":
            self.errors.append(issue)
        else:
            self.warnings.append(issue)
        self.statistics.errors_count = len(self.errors)
        self.statistics.warnings_count = len(self.warnings)

    def extend(self, issues: list[ValidationIssue]) -> None:
        for issue in issues:
            self.add(issue)

    def recount(self, total_rows: int) -> None:
        """Derive valid/invalid row counts from the row numbers carried by errors."""

        invalid = {issue.row for issue in self.errors if issue.row is not None}
        self.statistics.total_rows = total_rows
        self.statistics.invalid_rows = min(len(invalid), total_rows)
        self.statistics.valid_rows = total_rows - self.statistics.invalid_rows
        self.statistics.errors_count = len(self.errors)
        self.statistics.warnings_count = len(self.warnings)

    def merge(self, other: "ValidationReport") -> None:
        """Fold another report into this one, summing row statistics."""

        self.extend(other.errors)
        self.extend(other.warnings)
        self.statistics.total_rows += other.statistics.total_rows
        self.statistics.valid_rows += other.statistics.valid_rows
        self.statistics.invalid_rows += other.statistics.invalid_rows
        self.statistics.empty_rows_count += other.statistics.empty_rows_count
