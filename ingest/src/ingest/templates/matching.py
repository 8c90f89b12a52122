"""Confidence scoring of file headers against candidate templates."""

from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Iterable, Sequence

from pydantic import BaseModel, Field

from .schema import TemplateSchema

DETECTION_THRESHOLD = 0.3
AUTO_SELECT_THRESHOLD = 0.5
REQUIRED_BOOST = 0.3
EXTRA_COLUMN_PENALTY = 0.7
SUGGESTION_CUTOFF = 0.6


class TemplateMatch(BaseModel):
    template_name: str
    confidence: float
    matched_columns: list[str] = Field(default_factory=list)
    missing_columns: list[str] = Field(default_factory=list)
    extra_columns: list[str] = Field(default_factory=list)
    year_columns: list[str] = Field(default_factory=list)
    suggested_mappings: dict[str, str] = Field(default_factory=dict)


def _norm(value: str) -> str:
    return value.strip().lower()


def match_template(
    template: TemplateSchema,
    headers: Sequence[str],
    sample_rows: Sequence[Sequence[str]] | None = None,
) -> TemplateMatch:
    """Score how well ``headers`` fit ``template``.

    The base score is the share of template columns present in the file
    (case-insensitive). Headers matching the year pattern count as matched
    when the template declares variable year columns. Required-column hits add
    up to 0.3, more unmatched headers than template columns multiply the score
    by 0.7, and the result is clamped to ``[0, 1]``. ``sample_rows`` are
    accepted for call-site symmetry and do not influence the score.
    """

    definition = template.schema_definition
    columns = definition.columns
    header_lookup = {_norm(header): header for header in headers}

    matched: list[str] = []
    missing: list[str] = []
    for column in columns:
        if _norm(column.name) in header_lookup:
            matched.append(column.name)
        else:
            missing.append(column.name)

    year_headers: list[str] = []
    if definition.variable_year_columns:
        pattern = re.compile(definition.year_pattern)
        year_headers = [header for header in headers if pattern.match(header.strip())]
        matched.extend(year_headers)
        missing = [name for name in missing if not pattern.match(name.strip())]

    matched_keys = {_norm(name) for name in matched}
    extra = [header for header in headers if _norm(header) not in matched_keys]

    confidence = len(matched) / len(columns) if columns else 0.0

    required = definition.required_columns
    if required:
        matched_required = sum(1 for column in required if _norm(column.name) in header_lookup)
        confidence += REQUIRED_BOOST * (matched_required / len(required))

    if len(extra) > len(columns):
        confidence *= EXTRA_COLUMN_PENALTY

    confidence = min(max(confidence, 0.0), 1.0)

    return TemplateMatch(
        template_name=template.name,
        confidence=round(confidence, 4),
        matched_columns=matched,
        missing_columns=missing,
        extra_columns=extra,
        year_columns=year_headers,
        suggested_mappings=suggest_header_mapping(extra, template, exclude=matched) if missing else {},
    )


def rank_templates(
    templates: Iterable[TemplateSchema],
    headers: Sequence[str],
    sample_rows: Sequence[Sequence[str]] | None = None,
    *,
    threshold: float = DETECTION_THRESHOLD,
) -> list[TemplateMatch]:
    """Return matches strictly above ``threshold`` sorted by descending confidence."""

    matches = [match_template(template, headers, sample_rows) for template in templates if template.is_active]
    candidates = [match for match in matches if match.confidence > threshold]
    return sorted(candidates, key=lambda match: match.confidence, reverse=True)


def select_template(
    templates: Iterable[TemplateSchema],
    headers: Sequence[str],
    sample_rows: Sequence[Sequence[str]] | None = None,
    *,
    threshold: float = AUTO_SELECT_THRESHOLD,
) -> tuple[TemplateSchema, TemplateMatch] | None:
    """Pick the best template scoring strictly above ``threshold``, if any."""

    pool = list(templates)
    ranked = rank_templates(pool, headers, sample_rows, threshold=threshold)
    if not ranked:
        return None
    best = ranked[0]
    template = next(template for template in pool if template.name == best.template_name)
    return template, best


def suggest_header_mapping(
    headers: Iterable[str],
    template: TemplateSchema,
    *,
    exclude: Iterable[str] = (),
    cutoff: float = SUGGESTION_CUTOFF,
) -> dict[str, str]:
    """Propose ``header -> template column`` pairs for headers that did not match exactly.

    Uses :class:`difflib.SequenceMatcher` similarity and never proposes the same
    template column twice.
    """

    taken = {_norm(name) for name in exclude}
    available = [column.name for column in template.columns if _norm(column.name) not in taken]
    suggestions: dict[str, str] = {}

    for header in headers:
        best_name, best_ratio = None, cutoff
        for name in available:
            ratio = SequenceMatcher(None, _norm(header), _norm(name)).ratio()
            if ratio >= best_ratio:
                best_name, best_ratio = name, ratio
        if best_name is not None:
            suggestions[header] = best_name
            available.remove(best_name)
    return suggestions
