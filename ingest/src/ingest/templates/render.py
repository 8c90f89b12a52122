"""Blank CSV generation from a template so users can download a starting file."""

from __future__ import annotations

import re
from typing import Iterable

from .schema import TemplateSchema


def template_headers(template: TemplateSchema, years: Iterable[int] = ()) -> list[str]:
    """Return the header row, inserting ``years`` before ``Notas`` for year-based templates."""

    definition = template.schema_definition
    headers = [column.name for column in definition.columns]
    selected = sorted(set(years))
    if not definition.variable_year_columns or not selected:
        return headers

    pattern = re.compile(definition.year_pattern)
    headers = [header for header in headers if not pattern.match(header)]
    lowered = [header.lower() for header in headers]
    insert_at = lowered.index("notas") if "notas" in lowered else len(headers)
    return headers[:insert_at] + [str(year) for year in selected] + headers[insert_at:]


def _quote(value: str) -> str:
    return '"' + value.replace('"', '""') + '"'


def render_template_csv(
    template: TemplateSchema,
    years: Iterable[int] = (),
    *,
    delimiter: str = ",",
    include_sample_data: bool = True,
) -> str:
    """Render a downloadable CSV skeleton for ``template``.

    With ``include_sample_data`` the expected concepts are listed as empty rows
    under the header.
    """

    headers = template_headers(template, years)
    lines = [delimiter.join(headers)]

    if include_sample_data and template.schema_definition.expected_concepts:
        for concept in template.schema_definition.expected_concepts:
            row = [""] * len(headers)
            row[0] = _quote(concept)
            lines.append(delimiter.join(row))

    return "\n".join(lines) + "\n"
