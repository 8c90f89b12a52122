"""Job status, progress streaming and mapping endpoints."""

from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from app.api import deps
from app.core.logging import get_logger
from app.models.schemas import JobResponse, MappingRequest, UploadResponse
from app.services.identity import Identity
from app.services.jobs import JobNotFound
from app.services.orchestrator import UploadOrchestrator

logger = get_logger(__name__)

router = APIRouter()

POLL_INTERVAL_SECONDS = 0.5


@router.get("/jobs/{job_id}", response_model=JobResponse, summary="Current status of a processing job.")
async def get_job(
    job_id: str,
    _: Identity = Depends(deps.get_identity),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> JobResponse:
    try:
        job = await orchestrator.tracker.get(job_id)
    except JobNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobResponse.model_validate(job)


@router.websocket("/jobs/{job_id}/ws")
async def stream_job(
    websocket: WebSocket,
    job_id: str,
    _: Identity = Depends(deps.get_identity),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> None:
    """Push a ``progress`` event on every change and a final ``done`` event at a terminal state."""

    await websocket.accept()
    last_seen: tuple[str, object] | None = None

    try:
        while True:
            try:
                job = await orchestrator.tracker.get(job_id)
            except JobNotFound as exc:
                await websocket.send_json({"event": "error", "data": {"message": str(exc)}})
                break

            snapshot = JobResponse.model_validate(job)
            key = (snapshot.status.value, snapshot.stats_json)
            if key != last_seen:
                last_seen = key
                event = "done" if snapshot.status.is_terminal else "progress"
                await websocket.send_json({"event": event, "data": snapshot.model_dump(mode="json")})
            if snapshot.status.is_terminal:
                break
            await asyncio.sleep(POLL_INTERVAL_SECONDS)
    except WebSocketDisconnect:
        logger.info("jobs.ws.disconnected", job_id=job_id)
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            pass


@router.post(
    "/jobs/{job_id}/mapping",
    response_model=UploadResponse,
    summary="Re-validate a job waiting for a manual column mapping.",
)
async def submit_mapping(
    job_id: str,
    payload: MappingRequest,
    _: Identity = Depends(deps.require_admin),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> UploadResponse:
    try:
        return await orchestrator.submit_mapping(job_id, payload.mapping, template_name=payload.template_name)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post(
    "/jobs/{job_id}/normalize",
    response_model=UploadResponse,
    summary="Ask the normalization assistant to map a job's headers.",
)
async def normalize_job(
    job_id: str,
    _: Identity = Depends(deps.require_admin),
    orchestrator: UploadOrchestrator = Depends(deps.get_orchestrator),
) -> UploadResponse:
    return await orchestrator.run_assisted_normalization(job_id)

