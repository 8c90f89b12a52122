"""Upload orchestration: drives files through validation, loading and aggregation.

Every job walks ``PARSING -> VALIDATING -> (NEEDS_MAPPING | LOADING) ->
AGGREGATING -> DONE``. Validation errors end the job in ``FAILED`` with the
full report stored as an artifact. ``PARTIAL_OK`` means some data was loaded
before a later step failed.
"""

from __future__ import annotations

import hashlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, fields
from pathlib import PurePath
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import AppSettings
from app.core.logging import bind_job_context, get_logger
from app.models.schemas import JobStatus, UploadResponse
from app.models.tables import ProcessingJob, UploadHistory
from app.services.aggregation import recompute_ratios
from app.services.artifacts import LocalObjectStore
from app.services.jobs import InvalidTransition, JobTracker
from app.services.normalizer import NormalizationAssistant
from app.services.storage import replace_period_lines, replace_reference_rows
from app.services.templates import TemplateRepository
from ingest.bundle import CANONICAL_FILES, check_bundle, resolve_bundle, validate_bundle_file
from ingest.errors import IngestError, TemplateNotFound
from ingest.issues import ValidationReport
from ingest.parsers.delimited import ParsedTable, decode_content
from ingest.pipeline import FileOutcome, FilePipeline, FilePreview, PipelineConfig, read_table
from ingest.templates import get_builtin, rank_templates, suggest_header_mapping
from ingest.templates.schema import TemplateSchema
from ingest.transform import TransformContext

logger = get_logger(__name__)

AGGREGATED_STATEMENTS = frozenset({"pyg", "balance"})


class PeriodBusy(RuntimeError):
    """Another job is still processing data for the same company and period."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Another upload for this company and period is in progress (job {job_id})")
        self.job_id = job_id


class DuplicateUpload(RuntimeError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"The same files were already processed by job {job_id}")
        self.job_id = job_id


class AssistantUnavailable(RuntimeError):
    def __init__(self) -> None:
        super().__init__("Assisted normalization is not configured")


@dataclass(slots=True)
class UploadRequest:
    content: bytes
    filename: str
    template_name: str | None = None
    company_id: str | None = None
    selected_years: list[int] = field(default_factory=list)
    base_year: int | None = None
    period_type: str = "annual"
    period_quarter: int | None = None
    period_month: int | None = None
    currency_code: str = "EUR"
    dry_run: bool = False
    user_id: str | None = None

    def context(self, job_id: str | None = None) -> TransformContext:
        return TransformContext(
            company_id=self.company_id,
            period_type=self.period_type,
            base_year=self.base_year,
            period_quarter=self.period_quarter,
            period_month=self.period_month,
            currency_code=self.currency_code,
            uploaded_by=self.user_id,
            job_id=job_id,
            source_file=self.filename,
            selected_years=frozenset(self.selected_years) or None,
        )


@dataclass(slots=True)
class BundleRequest:
    files: dict[str, bytes]
    company_id: str
    selected_years: list[int] = field(default_factory=list)
    period_type: str = "annual"
    currency_code: str = "EUR"
    dry_run: bool = False
    force: bool = False
    user_id: str | None = None


def content_hash(files: Mapping[str, bytes]) -> str:
    digest = hashlib.sha256()
    for name in sorted(files):
        digest.update(name.lower().encode("utf-8"))
        digest.update(b"\0")
        digest.update(files[name])
    return digest.hexdigest()


def _request_key(job_id: str) -> str:
    return f"jobs/{job_id}/request.json"


def _upload_key(job_id: str, filename: str) -> str:
    return f"jobs/{job_id}/uploads/{PurePath(filename).name}"


def _errors_key(job_id: str) -> str:
    return f"jobs/{job_id}/errors.json"


class UploadOrchestrator:
    """Coordinates the ingest core with storage, artifacts and job tracking."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        settings: AppSettings,
        store: LocalObjectStore,
        assistant: NormalizationAssistant | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._store = store
        self._assistant = assistant
        self.tracker = JobTracker(session_factory)

    def _pipeline(self, templates: Sequence[TemplateSchema]) -> FilePipeline:
        return FilePipeline(
            templates=templates,
            config=PipelineConfig(
                detection_threshold=self._settings.detection_threshold,
                auto_select_threshold=self._settings.auto_select_threshold,
            ),
        )

    async def _templates(
        self, template_name: str | None, company_id: str | None
    ) -> tuple[TemplateSchema | None, list[TemplateSchema]]:
        async with self._session_factory() as session:
            repository = TemplateRepository(session)
            schema = await repository.resolve(template_name, company_id) if template_name else None
            candidates = await repository.resolve_all(company_id)
        return schema, candidates

    async def _record_history(
        self,
        *,
        job_id: str | None,
        company_id: str | None,
        user_id: str | None,
        filename: str,
        size: int,
        template_name: str | None,
        status: str,
        report: ValidationReport,
        years: list[int],
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                UploadHistory(
                    company_id=company_id,
                    job_id=job_id,
                    user_id=user_id,
                    file_name=filename,
                    file_size=size,
                    template_name=template_name,
                    upload_status=status,
                    validation_results=report.model_dump(mode="json"),
                    detected_years=years,
                )
            )
            await session.commit()

    # Single-file uploads

    async def detect(self, content: bytes, *, filename: str, company_id: str | None = None) -> FilePreview:
        """Parse a file and rank the company's effective templates against its headers."""

        table = read_table(content, filename=filename)
        _, candidates = await self._templates(None, company_id)
        preview = self._pipeline(candidates).preview(table, filename=filename)
        logger.info("upload.detected", filename=filename, candidates=len(preview.candidates))
        return preview

    async def run_template_upload(self, request: UploadRequest) -> UploadResponse:
        """Validate one file against a template and, unless ``dry_run``, load it.

        Raises :class:`~ingest.errors.EmptyFile` and
        :class:`~ingest.errors.TemplateNotFound` before any job is created.
        """

        table = read_table(request.content, filename=request.filename)
        schema, candidates = await self._templates(request.template_name, request.company_id)
        pipeline = self._pipeline(candidates)

        if request.dry_run:
            outcome = pipeline.run_table(table, schema, request.context(), filename=request.filename)
            logger.info(
                "upload.dry_run",
                filename=request.filename,
                template=outcome.template.name if outcome.template else None,
                is_valid=outcome.is_valid,
            )
            return self._response(outcome, job_id=None, dry_run=True)

        if not request.company_id:
            raise ValueError("company_id is required unless dry_run is set")
        active = await self.tracker.find_active(request.company_id, period_type=request.period_type)
        if active is not None:
            raise PeriodBusy(active.id)

        job = await self.tracker.create(
            job_type="template",
            company_id=request.company_id,
            user_id=request.user_id,
            template_name=schema.name if schema else None,
            file_hash=content_hash({request.filename: request.content}),
            period_type=request.period_type,
            stats={"file_name": request.filename, "file_size": len(request.content)},
        )
        self._store.put_bytes(_upload_key(job.id, request.filename), request.content)
        self._store.put_json(_request_key(job.id), {"kind": "template", **_request_metadata(request)})

        with bind_job_context(job_id=job.id, company_id=request.company_id):
            try:
                await self.tracker.transition(
                    job.id,
                    JobStatus.VALIDATING,
                    message=f"Validating {request.filename}",
                    total_rows=table.row_count,
                )
                outcome = pipeline.run_table(table, schema, request.context(job.id), filename=request.filename)
                return await self._complete(job, request, outcome)
            except Exception as exc:
                await self._fail_unfinished(job.id, exc)
                raise

    async def _fail_unfinished(self, job_id: str, exc: Exception) -> None:
        """Move a job that raised mid-flight to ``FAILED`` so it stops holding its period."""

        job = await self.tracker.get(job_id)
        if not JobStatus(job.status).is_terminal:
            logger.exception("upload.unexpected_error", status=job.status)
            await self.tracker.fail(job_id, f"Unexpected error: {exc}")

    async def _complete(self, job: ProcessingJob, request: UploadRequest, outcome: FileOutcome) -> UploadResponse:
        report = outcome.report
        if outcome.needs_mapping:
            suggestions = (
                suggest_header_mapping(outcome.preview.headers, outcome.template) if outcome.template else {}
            )
            await self.tracker.transition(
                job.id,
                JobStatus.NEEDS_MAPPING,
                message="Column headers need to be mapped to a template",
                candidates=[match.model_dump(mode="json") for match in outcome.preview.candidates],
                suggested_mappings=suggestions,
            )
            logger.info("upload.mapping.required", filename=request.filename)
            response = self._response(outcome, job_id=job.id)
            response.suggested_mappings = suggestions
            return response

        stats = {
            "total_rows": report.statistics.total_rows,
            "rows_valid": report.statistics.valid_rows,
            "errors_count": report.statistics.errors_count,
            "warnings_count": report.statistics.warnings_count,
        }
        template_name = outcome.template.name if outcome.template else None

        if not outcome.is_valid:
            key = self._store.put_json(_errors_key(job.id), report.model_dump(mode="json"))
            await self.tracker.fail(
                job.id,
                f"Validation failed with {len(report.errors)} errors",
                errors_artifact=key,
                template_name=template_name,
                **stats,
            )
            await self._record_history(
                job_id=job.id,
                company_id=request.company_id,
                user_id=request.user_id,
                filename=request.filename,
                size=len(request.content),
                template_name=template_name,
                status="failed",
                report=report,
                years=outcome.preview.detected_years,
            )
            logger.info("upload.validation.failed", errors=len(report.errors), template=template_name)
            return self._response(outcome, job_id=job.id)

        kind = CANONICAL_FILES.get(f"{template_name}.csv", template_name)
        await self.tracker.transition(job.id, JobStatus.LOADING, message="Replacing stored data", **stats)
        try:
            loaded = await self._load(outcome, company_id=request.company_id or "", job_id=job.id, name=kind)
        except Exception as exc:
            logger.exception("upload.load.failed", template=template_name)
            await self.tracker.fail(job.id, f"Loading failed: {exc}")
            raise

        final_status = await self._aggregate(job.id, request.company_id or "", outcome.lines, loaded=loaded)
        await self._record_history(
            job_id=job.id,
            company_id=request.company_id,
            user_id=request.user_id,
            filename=request.filename,
            size=len(request.content),
            template_name=template_name,
            status="completed" if final_status is JobStatus.DONE else "partial",
            report=report,
            years=outcome.years,
        )
        response = self._response(outcome, job_id=job.id)
        response.lines_loaded = loaded
        return response

    async def _load(self, outcome: FileOutcome, *, company_id: str, job_id: str, name: str | None) -> int:
        async with self._session_factory() as session:
            if outcome.lines:
                return await replace_period_lines(session, outcome.lines)
            if outcome.reference_rows and name:
                return await replace_reference_rows(
                    session,
                    company_id=company_id,
                    kind=name,
                    rows=outcome.reference_rows,
                    job_id=job_id,
                    source_file=outcome.preview.filename,
                )
        return 0

    async def _aggregate(self, job_id: str, company_id: str, lines: Sequence[Any], *, loaded: int) -> JobStatus:
        years = sorted({line.period_year for line in lines if line.statement in AGGREGATED_STATEMENTS})
        await self.tracker.transition(
            job_id, JobStatus.AGGREGATING, message="Recomputing derived ratios", rows_loaded=loaded
        )
        try:
            async with self._session_factory() as session:
                checks = await recompute_ratios(session, company_id, years, job_id=job_id)
        except Exception as exc:
            logger.exception("aggregation.failed", years=years)
            await self.tracker.transition(
                job_id, JobStatus.PARTIAL_OK, message=f"Data loaded but ratio aggregation failed: {exc}"
            )
            return JobStatus.PARTIAL_OK

        ratio_warnings = {str(year): check.warnings for year, check in checks.items() if check.warnings}
        await self.tracker.transition(
            job_id,
            JobStatus.DONE,
            message=f"Loaded {loaded} rows",
            rows_loaded=loaded,
            ratio_warnings=ratio_warnings,
        )
        return JobStatus.DONE

    def _response(self, outcome: FileOutcome, *, job_id: str | None, dry_run: bool = False) -> UploadResponse:
        return UploadResponse(
            success=outcome.is_valid,
            job_id=job_id,
            dry_run=dry_run,
            needs_mapping=outcome.needs_mapping,
            template_name=outcome.template.name if outcome.template else None,
            detected_years=outcome.years or outcome.preview.detected_years,
            validation_results=outcome.report,
            preview=outcome.preview,
        )

    # Manual and assisted mapping

    async def _reload(self, job: ProcessingJob) -> tuple[UploadRequest, ParsedTable]:
        metadata = self._store.get_json(_request_key(job.id))
        filename = metadata["filename"]
        content = self._store.get_bytes(_upload_key(job.id, filename))
        request = UploadRequest(content=content, **{key: value for key, value in metadata.items() if key != "kind"})
        return request, read_table(content, filename=filename)

    async def submit_mapping(
        self,
        job_id: str,
        mapping: Mapping[str, str],
        *,
        template_name: str | None = None,
    ) -> UploadResponse:
        """Re-validate a ``NEEDS_MAPPING`` job with a manual header mapping."""

        job = await self.tracker.get(job_id)
        current = JobStatus(job.status)
        if current is not JobStatus.NEEDS_MAPPING:
            raise InvalidTransition(job_id, current, JobStatus.VALIDATING)

        request, table = await self._reload(job)
        name = template_name or job.template_name
        if not name:
            raise ValueError("template_name is required when the job has no detected template")
        schema, candidates = await self._templates(name, request.company_id)

        with bind_job_context(job_id=job_id, company_id=request.company_id):
            try:
                await self.tracker.transition(
                    job_id, JobStatus.VALIDATING, message="Validating with manual column mapping", mapping=dict(mapping)
                )
                outcome = self._pipeline(candidates).run_table(
                    table, schema, request.context(job_id), filename=request.filename, mapping_overrides=mapping
                )
                return await self._complete(job, request, outcome)
            except Exception as exc:
                await self._fail_unfinished(job_id, exc)
                raise

    async def run_assisted_normalization(self, job_id: str) -> UploadResponse:
        """Ask the normalization assistant for a mapping, then re-validate."""

        if self._assistant is None:
            raise AssistantUnavailable()
        job = await self.tracker.get(job_id)
        current = JobStatus(job.status)
        if current is not JobStatus.NEEDS_MAPPING:
            raise InvalidTransition(job_id, current, JobStatus.GPT_NORMALIZE)

        request, table = await self._reload(job)
        with bind_job_context(job_id=job_id, company_id=request.company_id):
            try:
                return await self._assisted_normalization(job, request, table)
            except Exception as exc:
                await self._fail_unfinished(job_id, exc)
                raise

    async def _assisted_normalization(
        self, job: ProcessingJob, request: UploadRequest, table: ParsedTable
    ) -> UploadResponse:
        job_id = job.id
        await self.tracker.transition(job_id, JobStatus.GPT_NORMALIZE, message="Preparing assisted normalization")
        schema, candidates = await self._templates(job.template_name, request.company_id)
        if schema is None:
            ranked = rank_templates(candidates, table.headers, table.rows[:5], threshold=0.0)
            schema = next((item for item in candidates if ranked and item.name == ranked[0].template_name), None)
        if schema is None:
            await self.tracker.transition(
                job_id, JobStatus.NEEDS_MAPPING, message="No template resembles this file; map it manually"
            )
            return UploadResponse(success=False, job_id=job_id, needs_mapping=True)

        await self.tracker.transition(
            job_id, JobStatus.GPT_PROCESSING, message=f"Mapping headers onto {schema.name}"
        )
        try:
            mapping = await self._assistant.suggest_mapping(table.headers, schema, table.rows[:5])
        except Exception as exc:
            logger.exception("normalizer.failed", template=schema.name)
            await self.tracker.fail(job_id, f"Assisted normalization failed: {exc}")
            raise

        if not mapping:
            await self.tracker.transition(
                job_id, JobStatus.NEEDS_MAPPING, message="The assistant could not map the headers"
            )
            return UploadResponse(success=False, job_id=job_id, needs_mapping=True, template_name=schema.name)

        await self.tracker.transition(
            job_id, JobStatus.VALIDATING, message="Validating with assisted column mapping", mapping=mapping
        )
        outcome = self._pipeline(candidates).run_table(
            table, schema, request.context(job_id), filename=request.filename, mapping_overrides=mapping
        )
        response = await self._complete(job, request, outcome)
        response.suggested_mappings = mapping
        return response

    # Canonical bundles

    async def accept_bundle(self, request: BundleRequest) -> tuple[ProcessingJob, dict[str, str]]:
        """Check a bundle before any processing and create its job.

        Raises :class:`~ingest.errors.MissingRequiredFiles`,
        :class:`DuplicateUpload` or :class:`PeriodBusy`.
        """

        texts = {name: decode_content(raw)[0] for name, raw in request.files.items()}
        resolved = resolve_bundle(texts)
        check_bundle(resolved)

        file_hash = content_hash(request.files)
        if not request.force and not request.dry_run:
            duplicate = await self.tracker.find_duplicate(
                file_hash, within_hours=self._settings.duplicate_window_hours
            )
            if duplicate is not None:
                raise DuplicateUpload(duplicate.id)
        if not request.dry_run:
            active = await self.tracker.find_active(request.company_id, period_type=request.period_type)
            if active is not None:
                raise PeriodBusy(active.id)

        job = await self.tracker.create(
            job_type="bundle",
            company_id=request.company_id,
            user_id=request.user_id,
            file_hash=file_hash,
            period_type=request.period_type,
            period_year=min(request.selected_years) if request.selected_years else None,
            stats={"files": sorted(resolved), "dry_run": request.dry_run},
        )
        for source in resolved.values():
            self._store.put_bytes(_upload_key(job.id, source), request.files[source])
        return job, resolved

    async def run_bundle(self, job_id: str, request: BundleRequest, resolved: Mapping[str, str]) -> JobStatus:
        """Process an accepted bundle to a terminal state. Never raises."""

        with bind_job_context(job_id=job_id, company_id=request.company_id):
            try:
                return await self._run_bundle(job_id, request, resolved)
            except Exception as exc:
                logger.exception("bundle.unexpected_error")
                job = await self.tracker.get(job_id)
                if not JobStatus(job.status).is_terminal:
                    await self.tracker.fail(job_id, f"Unexpected error: {exc}")
                return JobStatus.FAILED

    async def _run_bundle(self, job_id: str, request: BundleRequest, resolved: Mapping[str, str]) -> JobStatus:
        ordered = check_bundle(resolved)
        reports: dict[str, Any] = {}
        tables: dict[str, ParsedTable] = {}
        for name in ordered:
            source = resolved[name]
            try:
                tables[name] = read_table(request.files[source], filename=source, escaped_quotes=True)
            except IngestError as exc:
                reports[name] = {"errors": [{"message": str(exc), "type": exc.issue_type, "severity": "error"}]}

        await self.tracker.transition(
            job_id, JobStatus.VALIDATING, message=f"Validating {len(tables)} files", files=ordered
        )

        context = TransformContext(
            company_id=request.company_id,
            period_type=request.period_type,
            currency_code=request.currency_code,
            uploaded_by=request.user_id,
            job_id=job_id,
            selected_years=frozenset(request.selected_years) or None,
        )
        async with self._session_factory() as session:
            repository = TemplateRepository(session)
            schemas: dict[str, TemplateSchema] = {}
            for name in tables:
                template_name = PurePath(name).stem
                try:
                    schemas[name] = await repository.resolve(template_name, request.company_id)
                except TemplateNotFound:
                    builtin = get_builtin(template_name)
                    if builtin is None:
                        raise
                    schemas[name] = builtin

        pipeline = FilePipeline(
            templates=list(schemas.values()),
            config=PipelineConfig(escaped_quotes=True, auto_select_threshold=self._settings.auto_select_threshold),
        )
        outcomes: dict[str, FileOutcome] = {}
        file_stats: dict[str, Any] = {}
        for name, table in tables.items():
            result = validate_bundle_file(name, table, context, pipeline=pipeline, schema=schemas[name])
            outcomes[name] = result.outcome
            file_stats[name] = result.outcome.report.statistics.model_dump()
            if not result.outcome.is_valid:
                reports[name] = result.outcome.report.model_dump(mode="json")

        total_rows = sum(stats["total_rows"] for stats in file_stats.values())
        rows_valid = sum(stats["valid_rows"] for stats in file_stats.values())
        if reports:
            key = self._store.put_json(_errors_key(job_id), reports)
            await self.tracker.fail(
                job_id,
                f"Validation failed in {len(reports)} of {len(ordered)} files",
                errors_artifact=key,
                file_stats=file_stats,
                total_rows=total_rows,
                rows_valid=rows_valid,
            )
            logger.info("bundle.validation.failed", files=sorted(reports))
            return JobStatus.FAILED

        if request.dry_run:
            await self.tracker.transition(
                job_id,
                JobStatus.DONE,
                message="Dry run: every file passed validation",
                file_stats=file_stats,
                total_rows=total_rows,
                rows_valid=rows_valid,
            )
            return JobStatus.DONE

        await self.tracker.transition(
            job_id,
            JobStatus.LOADING,
            message="Replacing stored data",
            file_stats=file_stats,
            total_rows=total_rows,
            rows_valid=rows_valid,
        )
        loaded = 0
        loaded_files: list[str] = []
        lines: list[Any] = []
        for name in ordered:
            if name not in outcomes:
                continue
            outcome = outcomes[name]
            try:
                count = await self._load(
                    outcome, company_id=request.company_id, job_id=job_id, name=CANONICAL_FILES[name]
                )
            except Exception as exc:
                logger.exception("bundle.load.failed", file=name)
                status = JobStatus.PARTIAL_OK if loaded_files else JobStatus.FAILED
                await self.tracker.transition(
                    job_id,
                    status,
                    message=f"Loading {name} failed: {exc}",
                    error=str(exc),
                    rows_loaded=loaded,
                    loaded_files=loaded_files,
                )
                return status
            loaded += count
            loaded_files.append(name)
            lines.extend(outcome.lines)

        return await self._aggregate(job_id, request.company_id, lines, loaded=loaded)


def _request_metadata(request: UploadRequest) -> dict[str, Any]:
    return {item.name: getattr(request, item.name) for item in fields(request) if item.name != "content"}
