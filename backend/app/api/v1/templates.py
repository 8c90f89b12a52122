"""Template catalog, company customization and detection endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.config import AppSettings
from app.models.schemas import CustomizationRequest, DetectResponse, TemplateSummary
from app.services.identity import Identity
from app.services.orchestrator import UploadOrchestrator
from app.services.templates import TemplateRepository
from ingest.templates import TemplateSchema, render_template_csv

router = APIRouter()


@router.get("/templates", response_model=list[TemplateSummary], summary="List active templates.")
async def list_templates(
    _: Identity = Depends(deps.get_identity),
    session: AsyncSession = Depends(deps.get_db_session),
) -> list[TemplateSummary]:
    templates = await TemplateRepository(session).list_active()
    return [
        TemplateSummary(
            name=template.name,
            display_name=template.display_name,
            description=template.description,
            category=template.category,
            version=template.version,
            is_required=template.is_required,
        )
        for template in templates
    ]


@router.get("/templates/{name}", response_model=TemplateSchema, summary="Effective template for a company.")
async def get_template(
    name: str,
    company_id: str | None = Query(default=None),
    _: Identity = Depends(deps.get_identity),
    session: AsyncSession = Depends(deps.get_db_session),
) -> TemplateSchema:
    """Return the latest version of ``name`` with the company's customization applied."""

    return await TemplateRepository(session).resolve(name, company_id)


@router.get("/templates/{name}/csv", response_class=PlainTextResponse, summary="Download a CSV skeleton.")
async def download_template(
    name: str,
    years: list[int] = Query(default=[]),
    company_id: str | None = Query(default=None),
    _: Identity = Depends(deps.get_identity),
    session: AsyncSession = Depends(deps.get_db_session),
) -> PlainTextResponse:
    template = await TemplateRepository(session).resolve(name, company_id)
    return PlainTextResponse(
        render_template_csv(template, years),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{template.name}.csv"'},
    )


@router.put(
    "/templates/{name}/customizations/{company_id}",
    response_model=TemplateSchema,
    summary="Create or replace a company's customization of a template.",
)
async def save_customization(
    name: str,
    company_id: str,
    payload: CustomizationRequest,
    identity: Identity = Depends(deps.require_admin),
    session: AsyncSession = Depends(deps.get_db_session),
) -> TemplateSchema:
    """Store the customization and return the merged schema the company will validate against."""

    try:
        return await TemplateRepository(session).save_customization(
            name,
            company_id,
            custom_schema=payload.custom_schema,
            custom_validations=payload.custom_validations,
            custom_display_name=payload.custom_display_name,
            notes=payload.notes,
            is_active=payload.is_active,
            user_id=identity.user_id,
        )
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


@router.post("/templates/detect", response_model=DetectResponse, summary="Rank templates against a file.")
async def detect_template(
    file: UploadFile = File(...),
    company_id: str | None = Form(default=None),
    _: Identity = Depends(deps.get_identity),
    settings: AppSettings = Depends(deps.get_app_settings),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> DetectResponse:
    content = await deps.read_upload(file, settings)
    preview = await orchestrator.detect(content, filename=file.filename or "upload.csv", company_id=company_id)
    return DetectResponse(preview=preview, matches=preview.candidates)
