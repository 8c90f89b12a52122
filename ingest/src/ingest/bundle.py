"""Canonical multi-file upload bundle: names, required files and kind detection."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import PurePath
from typing import Iterable, Mapping

from .errors import EmptyRequiredField, MissingRequiredFiles
from .issues import ValidationIssue
from .parsers.delimited import ParsedTable
from .pipeline import FileOutcome, FilePipeline
from .templates.catalog import get_builtin
from .templates.schema import TemplateSchema
from .transform import TransformContext

logger = logging.getLogger(__name__)

CANONICAL_FILES: dict[str, str] = {
    "cuenta-pyg.csv": "pyg",
    "balance-situacion.csv": "balance",
    "pool-deuda.csv": "debt_pool",
    "pool-deuda-vencimientos.csv": "debt_maturities",
    "estado-flujos.csv": "cashflow",
    "datos-operativos.csv": "operational",
    "supuestos-financieros.csv": "assumptions",
    "info-empresa.csv": "company_info",
    "ratios-financieros.csv": "ratios",
}
REQUIRED_FILES = ("cuenta-pyg.csv", "balance-situacion.csv")

# Load order: reference data after the statements it annotates.
PROCESSING_ORDER = tuple(CANONICAL_FILES)

FILENAME_WEIGHT = 0.4
CONCEPT_WEIGHT = 0.6
KIND_ACCEPT_SCORE = 0.7
KIND_SUGGEST_SCORE = 0.3

COMPANY_INFO_REQUIRED_FIELDS = ("Nombre",)


@dataclass(frozen=True, slots=True)
class KindPattern:
    canonical: str
    patterns: tuple[re.Pattern[str], ...]
    required_concepts: tuple[str, ...]


def _patterns(*expressions: str) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(expression, re.IGNORECASE) for expression in expressions)


FILE_DETECTION_PATTERNS: tuple[KindPattern, ...] = (
    KindPattern(
        "cuenta-pyg.csv",
        _patterns(r"cuenta.*p.*g", r"perdidas.*ganancias", r"p.*g", r"resultado", r"income.*statement", r"profit.*loss"),
        ("Cifra de negocios", "Aprovisionamientos", "Gastos de personal"),
    ),
    KindPattern(
        "balance-situacion.csv",
        _patterns(r"balance.*situacion", r"balance.*sheet", r"balance", r"situacion.*patrimonial", r"activo.*pasivo"),
        ("ACTIVO", "PASIVO", "PATRIMONIO"),
    ),
    KindPattern(
        "estado-flujos.csv",
        _patterns(r"estado.*flujos", r"flujos.*efectivo", r"cash.*flow", r"tesoreria", r"flujos"),
        ("ACTIVIDADES DE EXPLOTACIÓN", "EFECTIVO"),
    ),
    KindPattern(
        "pool-deuda.csv",
        _patterns(r"pool.*deuda", r"deuda.*financiera", r"prestamos", r"debt.*pool", r"financiacion"),
        ("Entidad", "Principal"),
    ),
    KindPattern(
        "datos-operativos.csv",
        _patterns(r"datos.*operativos", r"operativo", r"unidades.*fisicas", r"produccion", r"ventas.*unidades"),
        ("Concepto", "Unidad"),
    ),
)


@dataclass(slots=True)
class KindDetection:
    canonical: str | None
    confidence: float
    suggestions: list[str] = field(default_factory=list)


def canonical_name(filename: str) -> str:
    """Lower-case basename of ``filename``, the key used by :data:`CANONICAL_FILES`."""

    return PurePath(filename).name.strip().lower()


def check_bundle(names: Iterable[str]) -> list[str]:
    """Return the canonical names present; raise when a required file is absent."""

    present = [canonical_name(name) for name in names]
    missing = [name for name in REQUIRED_FILES if name not in present]
    if missing:
        raise MissingRequiredFiles(missing)
    return [name for name in PROCESSING_ORDER if name in present]


def detect_file_kind(filename: str, content: str) -> KindDetection:
    """Guess the canonical name of a bundle file from its name and body.

    A filename pattern contributes 0.4 and the fraction of required concepts
    present in the body contributes up to 0.6. Only scores of at least 0.7
    are accepted; partial scores become suggestions.
    """

    normalized_name = re.sub(r"[_\s-]+", " ", filename.lower())
    body = content.lower()
    best_name: str | None = None
    best_score = 0.0
    suggestions: list[str] = []

    for kind in FILE_DETECTION_PATTERNS:
        score = FILENAME_WEIGHT if any(pattern.search(normalized_name) for pattern in kind.patterns) else 0.0
        found = [concept for concept in kind.required_concepts if concept.lower() in body]
        score += CONCEPT_WEIGHT * len(found) / len(kind.required_concepts)
        score = round(score, 4)
        if score > best_score:
            best_name, best_score = kind.canonical, score
        if KIND_SUGGEST_SCORE < score < KIND_ACCEPT_SCORE:
            suggestions.append(f"File may be {kind.canonical} (confidence: {round(score * 100)}%)")

    if best_score >= KIND_ACCEPT_SCORE:
        return KindDetection(best_name, best_score, suggestions)
    if not suggestions:
        known = ", ".join(kind.canonical for kind in FILE_DETECTION_PATTERNS)
        suggestions.append(f"File not recognised automatically. Expected one of: {known}")
    return KindDetection(None, best_score, suggestions)


def resolve_bundle(files: Mapping[str, str]) -> dict[str, str]:
    """Map uploaded filenames to canonical names, falling back to content detection.

    Files that match neither a canonical name nor a detected kind are dropped
    with a log line.
    """

    resolved: dict[str, str] = {}
    for filename, content in files.items():
        name = canonical_name(filename)
        if name not in CANONICAL_FILES:
            detection = detect_file_kind(filename, content)
            if detection.canonical is None:
                logger.warning(
                    "bundle.file.unrecognised filename=%s confidence=%.2f",
                    filename,
                    detection.confidence,
                )
                continue
            logger.info(
                "bundle.file.detected filename=%s canonical=%s confidence=%.2f",
                filename,
                detection.canonical,
                detection.confidence,
            )
            name = detection.canonical
        resolved.setdefault(name, filename)
    return resolved


def _company_info_issues(table: ParsedTable) -> list[ValidationIssue]:
    headers = [header.strip().lower() for header in table.headers]
    if "campo" not in headers or "valor" not in headers:
        return []
    field_index, value_index = headers.index("campo"), headers.index("valor")
    issues: list[ValidationIssue] = []
    rows = [(number, row) for number, row in table.numbered_rows() if any(cell.strip() for cell in row)]
    for row_number, row in rows:
        key = row[field_index].strip() if field_index < len(row) else ""
        value = row[value_index].strip() if value_index < len(row) else ""
        if key in COMPANY_INFO_REQUIRED_FIELDS and not value:
            issues.append(
                ValidationIssue.from_error(
                    EmptyRequiredField,
                    row=row_number,
                    column="Valor",
                    value=key,
                    message=f"Required company field has no value: {key}",
                )
            )
    return issues


@dataclass(slots=True)
class BundleFileOutcome:
    name: str
    kind: str
    outcome: FileOutcome
    extra_issues: list[ValidationIssue] = field(default_factory=list)


def validate_bundle_file(
    name: str,
    table: ParsedTable,
    context: TransformContext,
    *,
    pipeline: FilePipeline,
    schema: TemplateSchema | None = None,
) -> BundleFileOutcome:
    """Validate and transform one canonical bundle file against its template."""

    name = canonical_name(name)
    kind = CANONICAL_FILES[name]
    template_name = PurePath(name).stem
    schema = schema or get_builtin(template_name)
    outcome = pipeline.run_table(
        table,
        schema,
        replace(context, source_file=name),
        filename=name,
        defer_to_mapping=False,
    )
    result = BundleFileOutcome(name=name, kind=kind, outcome=outcome)
    if kind == "company_info":
        result.extra_issues = _company_info_issues(table)
        outcome.report.extend(result.extra_issues)
        outcome.report.recount(outcome.report.statistics.total_rows)
    return result
