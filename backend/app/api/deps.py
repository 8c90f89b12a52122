"""Shared FastAPI dependencies."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Query, UploadFile, status

from app.core.config import AppSettings, get_settings
from app.core.db import get_session, get_session_factory
from app.services.artifacts import LocalObjectStore
from app.services.identity import Identity, TokenIdentityService
from app.services.normalizer import NormalizationAssistant, build_assistant
from app.services.orchestrator import UploadOrchestrator


def get_app_settings() -> AppSettings:
    """Expose application settings as a dependency."""

    return get_settings()


async def get_db_session():
    """Provide an async SQLAlchemy session."""

    async with get_session() as session:
        yield session


def get_identity_service(settings: AppSettings = Depends(get_app_settings)) -> TokenIdentityService:
    return TokenIdentityService(settings.api_tokens, allow_anonymous=settings.environment == "dev")


def get_identity(
    authorization: str | None = Header(default=None),
    access_token: str | None = Query(default=None, description="Token for clients that cannot set headers."),
    service: TokenIdentityService = Depends(get_identity_service),
) -> Identity:
    """Resolve the caller from ``Authorization: Bearer <token>`` or ``?access_token=``."""

    token = access_token
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials:
            token = credentials.strip()
    identity = service.authenticate(token)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid credentials.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    """Uploads and template changes are reserved for administrators."""

    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator role required.")
    return identity


def get_object_store(settings: AppSettings = Depends(get_app_settings)) -> LocalObjectStore:
    return LocalObjectStore(settings.artifacts_dir)


def get_assistant(settings: AppSettings = Depends(get_app_settings)) -> NormalizationAssistant | None:
    return build_assistant(settings)


def get_orchestrator(
    settings: AppSettings = Depends(get_app_settings),
    store: LocalObjectStore = Depends(get_object_store),
    assistant: NormalizationAssistant | None = Depends(get_assistant),
) -> UploadOrchestrator:
    return UploadOrchestrator(
        session_factory=get_session_factory(),
        settings=settings,
        store=store,
        assistant=assistant,
    )


async def read_upload(file: UploadFile, settings: AppSettings) -> bytes:
    """Read an uploaded file, rejecting it with 413 when it exceeds the configured limit."""

    limit = settings.max_upload_bytes
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File '{file.filename}' exceeds the {settings.max_upload_mb} MB limit.",
        )
    return content
