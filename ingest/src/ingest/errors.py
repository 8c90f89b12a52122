"""Exception taxonomy for the ingestion core."""

from __future__ import annotations


class IngestError(Exception):
    """Base class for every ingestion failure."""

    code = "ingest_error"
    issue_type = "custom"


class InvalidAmount(IngestError, ValueError):
    code = "invalid_amount"
    issue_type = "amount"

    def __init__(self, raw: object) -> None:
        super().__init__(f"Invalid amount: {raw!r} is not a finite number")
        self.raw = raw


class InvalidDate(IngestError, ValueError):
    code = "invalid_date"
    issue_type = "format"

    def __init__(self, raw: object, *, out_of_range: bool = False) -> None:
        reason = "is outside 1900-2100" if out_of_range else "is not a valid date"
        super().__init__(f"Invalid date: {raw!r} {reason}")
        self.raw = raw
        self.out_of_range = out_of_range


class EmptyFile(IngestError):
    code = "empty_file"
    issue_type = "required"

    def __init__(self, filename: str | None = None) -> None:
        label = f"'{filename}' " if filename else ""
        super().__init__(f"File {label}is empty")
        self.filename = filename


class TemplateNotFound(IngestError, LookupError):
    code = "template_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"Template '{name}' not found")
        self.name = name


class MissingRequiredColumn(IngestError):
    code = "missing_required_column"
    issue_type = "required"


class EmptyRequiredField(IngestError):
    code = "empty_required_field"
    issue_type = "required"


class TypeMismatch(IngestError):
    code = "type_mismatch"
    issue_type = "format"


class RangeViolation(IngestError):
    code = "range_violation"
    issue_type = "range"


class FormatViolation(IngestError):
    code = "format_violation"
    issue_type = "format"


class UnbalancedEntries(IngestError):
    code = "unbalanced_entries"
    issue_type = "balance"


class UnbalancedTrialBalance(IngestError):
    code = "unbalanced_trial_balance"
    issue_type = "balance"


class UnbalancedBalanceSheet(IngestError):
    code = "unbalanced_balance_sheet"
    issue_type = "balance"


class MissingRequiredFiles(IngestError):
    code = "missing_required_files"
    issue_type = "required"

    def __init__(self, missing: list[str]) -> None:
        super().__init__(f"Missing required files: {', '.join(missing)}")
        self.missing = missing


class RowStructureMismatch(IngestError):
    code = "row_structure_mismatch"
    issue_type = "structure"


class ConceptNotAllowed(IngestError):
    code = "concept_not_allowed"
    issue_type = "concept"
