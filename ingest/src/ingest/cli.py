"""Typer-based CLI for validating financial uploads offline."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ingest.bundle import CANONICAL_FILES, check_bundle, resolve_bundle, validate_bundle_file
from ingest.errors import IngestError
from ingest.issues import ValidationReport
from ingest.accounting import validate_ledger_rows
from ingest.parsers.delimited import decode_content
from ingest.pipeline import FilePipeline, PipelineConfig, read_table
from ingest.templates import builtin_templates, get_builtin, render_template_csv
from ingest.templates.schema import TemplateSchema
from ingest.transform import TransformContext

app = typer.Typer(help="Validation utilities for financial statement uploads")
console = Console()

_LEDGER_HEADERS = {
    "fecha": "date",
    "date": "date",
    "cuenta": "account",
    "account": "account",
    "descripcion": "description",
    "descripción": "description",
    "description": "description",
    "debe": "debit",
    "debit": "debit",
    "haber": "credit",
    "credit": "credit",
}


def _load_template(name: Optional[str], template_file: Optional[Path]) -> Optional[TemplateSchema]:
    if template_file is not None:
        return TemplateSchema.model_validate_json(template_file.read_text(encoding="utf-8"))
    if name is None:
        return None
    template = get_builtin(name)
    if template is None:
        known = ", ".join(item.name for item in builtin_templates())
        raise typer.BadParameter(f"Unknown template '{name}'. Known templates: {known}")
    return template


def _parse_years(years: Optional[str]) -> Optional[frozenset[int]]:
    if not years:
        return None
    try:
        return frozenset(int(part) for part in years.split(",") if part.strip())
    except ValueError as exc:
        raise typer.BadParameter("Years must be a comma-separated list such as 2023,2024") from exc


def _print_report(report: ValidationReport, *, title: str) -> None:
    stats = report.statistics
    colour = "green" if report.is_valid else "red"
    console.print(
        f"[bold]{title}[/bold]: [{colour}]{'valid' if report.is_valid else 'invalid'}[/{colour}] "
        f"rows={stats.total_rows} valid={stats.valid_rows} invalid={stats.invalid_rows} "
        f"errors={stats.errors_count} warnings={stats.warnings_count}"
    )
    issues = [*report.errors, *report.warnings]
    if not issues:
        return
    table = Table(show_lines=False)
    for heading in ("Severity", "Row", "Column", "Type", "Message"):
        table.add_column(heading)
    for issue in issues:
        table.add_row(
            issue.severity,
            "" if issue.row is None else str(issue.row),
            issue.column or "",
            issue.type,
            issue.message,
        )
    console.print(table)


@app.command()
def validate(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or Excel file to validate."),
    template: Optional[str] = typer.Option(None, "--template", "-t", help="Built-in template name; detected when omitted."),
    template_file: Optional[Path] = typer.Option(None, "--template-file", exists=True, help="JSON template definition."),
    years: Optional[str] = typer.Option(None, "--years", help="Only transform these years (comma-separated)."),
    base_year: Optional[int] = typer.Option(None, "--base-year", help="Year that 'Año1' columns refer to."),
    escaped_quotes: bool = typer.Option(False, "--escaped-quotes", help='Treat "" inside quotes as a literal quote.'),
    as_json: bool = typer.Option(False, "--json", help="Print the validation report as JSON."),
):
    """Validate one file against a template and print the report."""

    schema = _load_template(template, template_file)
    pipeline = FilePipeline(
        templates=builtin_templates(),
        config=PipelineConfig(escaped_quotes=escaped_quotes),
    )
    context = TransformContext(base_year=base_year, selected_years=_parse_years(years), source_file=path.name)
    try:
        outcome = pipeline.run(path.read_bytes(), schema, context, filename=path.name)
    except IngestError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    if outcome.needs_mapping:
        console.print("[yellow]Headers could not be matched to a template with enough confidence.[/yellow]")
        for candidate in outcome.preview.candidates:
            console.print(f"  {candidate.template_name}: {candidate.confidence:.2f}")
        raise typer.Exit(code=1)

    if as_json:
        typer.echo(outcome.report.model_dump_json(indent=2))
    else:
        _print_report(outcome.report, title=f"{path.name} ({outcome.template.name if outcome.template else '-'})")
        if outcome.lines:
            console.print(f"Normalized lines: {len(outcome.lines)} across years {outcome.years}")
    if not outcome.is_valid:
        raise typer.Exit(code=1)


@app.command()
def detect(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or Excel file to inspect."),
):
    """Show the delimiter, encoding and ranked template candidates of a file."""

    pipeline = FilePipeline(templates=builtin_templates())
    try:
        table = read_table(path.read_bytes(), filename=path.name)
    except IngestError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    preview = pipeline.preview(table, filename=path.name)
    console.print(
        f"delimiter={preview.delimiter!r} encoding={preview.encoding} "
        f"rows={preview.row_count} columns={preview.column_count} years={preview.detected_years}"
    )
    if not preview.candidates:
        console.print("[yellow]No template candidates above the detection threshold.[/yellow]")
        raise typer.Exit(code=1)

    table_view = Table(title="Template candidates")
    for heading in ("Template", "Confidence", "Matched", "Missing", "Extra"):
        table_view.add_column(heading)
    for candidate in preview.candidates:
        table_view.add_row(
            candidate.template_name,
            f"{candidate.confidence:.2f}",
            ", ".join(candidate.matched_columns),
            ", ".join(candidate.missing_columns),
            ", ".join(candidate.extra_columns),
        )
    console.print(table_view)


@app.command()
def bundle(
    directory: Path = typer.Argument(..., exists=True, file_okay=False, help="Directory holding the bundle CSVs."),
    company: Optional[str] = typer.Option(None, "--company", "-c", help="Company identifier stamped on lines."),
    currency: str = typer.Option("EUR", "--currency", help="Currency code stamped on lines."),
):
    """Validate a canonical multi-file bundle."""

    contents: dict[str, str] = {}
    raw_files: dict[str, bytes] = {}
    for file_path in sorted(directory.iterdir()):
        if file_path.is_file() and file_path.suffix.lower() == ".csv":
            raw = file_path.read_bytes()
            raw_files[file_path.name] = raw
            contents[file_path.name], _ = decode_content(raw)

    resolved = resolve_bundle(contents)
    try:
        ordered = check_bundle(resolved)
    except IngestError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    pipeline = FilePipeline(templates=builtin_templates(), config=PipelineConfig(escaped_quotes=True))
    context = TransformContext(company_id=company, currency_code=currency)
    failed = False
    for name in ordered:
        source = resolved[name]
        try:
            table = read_table(raw_files[source], filename=source, escaped_quotes=True)
        except IngestError as exc:
            console.print(f"[red]{name}: {exc}[/red]")
            failed = True
            continue
        result = validate_bundle_file(name, table, context, pipeline=pipeline)
        _print_report(result.outcome.report, title=f"{name} [{CANONICAL_FILES[name]}]")
        failed = failed or not result.outcome.is_valid

    if failed:
        raise typer.Exit(code=1)


@app.command()
def ledger(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Journal CSV (Fecha, Cuenta, Descripcion, Debe, Haber)."),
):
    """Check that a journal's entries are one-sided and balance overall."""

    try:
        table = read_table(path.read_bytes(), filename=path.name)
    except IngestError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1) from exc

    keys = [_LEDGER_HEADERS.get(header.strip().lower()) for header in table.headers]
    rows = [
        {key: row[index] for index, key in enumerate(keys) if key is not None and index < len(row)}
        for row in table.rows
    ]
    result = validate_ledger_rows(rows)
    console.print(f"debits={result.total_debits:.2f} credits={result.total_credits:.2f} entries={len(result.entries)}")
    for issue in result.issues:
        # Ledger indices are zero-based over data rows; row 1 is the header.
        location = "" if issue.index is None else f"row {issue.index + 2}: "
        console.print(f"[red]{location}{issue.message}[/red]")
    if not result.is_valid:
        raise typer.Exit(code=1)
    console.print("[green]Journal balances[/green]")


@app.command()
def template(
    name: str = typer.Argument(..., help="Built-in template name."),
    years: Optional[str] = typer.Option(None, "--years", help="Year columns to include (comma-separated)."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to this file instead of stdout."),
):
    """Print a CSV skeleton for a built-in template."""

    schema = _load_template(name, None)
    assert schema is not None
    content = render_template_csv(schema, sorted(_parse_years(years) or ()))
    if output is None:
        typer.echo(content, nl=False)
        return
    output.write_text(content, encoding="utf-8")
    console.print(f"Wrote {output}")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline events to stderr.")) -> None:
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)


if __name__ == "__main__":  # pragma: no cover
    app()
