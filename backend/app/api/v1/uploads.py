"""Upload endpoints for single template files and canonical bundles."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile, status

from app.api import deps
from app.core.config import AppSettings
from app.core.logging import get_logger
from app.models.schemas import BundleAccepted, UploadResponse
from app.services.identity import Identity
from app.services.orchestrator import BundleRequest, UploadOrchestrator, UploadRequest

logger = get_logger(__name__)

router = APIRouter()


@router.post(
    "/uploads",
    response_model=UploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Validate one file against a template and load it.",
)
async def upload_template_file(
    file: UploadFile = File(...),
    template_name: str | None = Form(default=None),
    company_id: str | None = Form(default=None),
    selected_years: list[int] = Form(default=[]),
    base_year: int | None = Form(default=None),
    period_type: str = Form(default="annual"),
    period_quarter: int | None = Form(default=None),
    period_month: int | None = Form(default=None),
    currency_code: str | None = Form(default=None),
    dry_run: bool = Form(default=False),
    identity: Identity = Depends(deps.require_admin),
    settings: AppSettings = Depends(deps.get_app_settings),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> UploadResponse:
    """Run the template pipeline synchronously and return the validation report."""

    content = await deps.read_upload(file, settings)
    request = UploadRequest(
        content=content,
        filename=file.filename or "upload.csv",
        template_name=template_name or None,
        company_id=company_id or None,
        selected_years=selected_years,
        base_year=base_year,
        period_type=period_type,
        period_quarter=period_quarter,
        period_month=period_month,
        currency_code=currency_code or settings.default_currency,
        dry_run=dry_run,
        user_id=identity.user_id,
    )
    try:
        return await orchestrator.run_template_upload(request)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post(
    "/uploads/bundle",
    response_model=BundleAccepted,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Accept a canonical bundle and process it in the background.",
)
async def upload_bundle(
    background_tasks: BackgroundTasks,
    files: list[UploadFile] = File(...),
    company_id: str = Form(...),
    selected_years: list[int] = Form(default=[]),
    period_type: str = Form(default="annual"),
    currency_code: str | None = Form(default=None),
    dry_run: bool = Form(default=False),
    force: bool = Form(default=False),
    identity: Identity = Depends(deps.require_admin),
    settings: AppSettings = Depends(deps.get_app_settings),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> BundleAccepted:
    """Reject incomplete, duplicate or conflicting bundles up front; process the rest asynchronously."""

    contents: dict[str, bytes] = {}
    for upload in files:
        name = upload.filename or f"file-{len(contents) + 1}.csv"
        if name in contents:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Duplicate file name: {name}")
        contents[name] = await deps.read_upload(upload, settings)

    request = BundleRequest(
        files=contents,
        company_id=company_id,
        selected_years=selected_years,
        period_type=period_type,
        currency_code=currency_code or settings.default_currency,
        dry_run=dry_run,
        force=force,
        user_id=identity.user_id,
    )
    job, resolved = await orchestrator.accept_bundle(request)
    background_tasks.add_task(orchestrator.run_bundle, job.id, request, resolved)
    logger.info("bundle.accepted", job_id=job.id, files=sorted(resolved))
    return BundleAccepted(job_id=job.id, files=sorted(resolved))
