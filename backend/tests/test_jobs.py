"""Tests for the job state machine and the job endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.models.schemas import JobStatus
from app.services.jobs import STAGE_PROGRESS, TRANSITIONS, InvalidTransition, JobNotFound, JobTracker, can_transition
from app.services.orchestrator import UploadRequest
from ingest.pipeline import FilePipeline

DEBT_CSV = b"Bank,Amount\nBBVA,1000\n"
PYG_CSV = b"Concepto,2023\nCifra de negocios,1000\n"


def test_terminal_states_have_no_exits() -> None:
    for status in JobStatus:
        assert (TRANSITIONS[status] == frozenset()) is status.is_terminal
    assert STAGE_PROGRESS[JobStatus.DONE] == 100
    assert can_transition(JobStatus.NEEDS_MAPPING, JobStatus.GPT_NORMALIZE)
    assert not can_transition(JobStatus.PARSING, JobStatus.LOADING)


@pytest.mark.asyncio
async def test_transitions_merge_stats_and_track_progress(session_factory) -> None:
    tracker = JobTracker(session_factory)
    job = await tracker.create(job_type="template", company_id="acme", stats={"file_name": "pyg.csv"})

    assert job.status == JobStatus.PARSING.value
    assert job.stats_json["progress_pct"] == 10

    updated = await tracker.transition(job.id, JobStatus.VALIDATING, message="Validating", total_rows=3)

    assert updated.status == "VALIDATING"
    assert updated.stats_json["file_name"] == "pyg.csv"
    assert updated.stats_json["total_rows"] == 3
    assert updated.stats_json["progress_pct"] == 30
    assert updated.stats_json["message"] == "Validating"


@pytest.mark.asyncio
async def test_illegal_transitions_are_rejected(session_factory) -> None:
    tracker = JobTracker(session_factory)
    job = await tracker.create(job_type="template", company_id="acme")

    with pytest.raises(InvalidTransition) as excinfo:
        await tracker.transition(job.id, JobStatus.LOADING, message="Skipping validation")

    assert excinfo.value.current is JobStatus.PARSING
    assert (await tracker.get(job.id)).status == "PARSING"


@pytest.mark.asyncio
async def test_failed_jobs_keep_their_error_message(session_factory) -> None:
    tracker = JobTracker(session_factory)
    job = await tracker.create(job_type="bundle", company_id="acme")

    failed = await tracker.fail(job.id, "Broken file")

    assert failed.status == "FAILED"
    assert failed.error_message == "Broken file"
    with pytest.raises(InvalidTransition):
        await tracker.transition(job.id, JobStatus.VALIDATING, message="Retry")


@pytest.mark.asyncio
async def test_unknown_jobs_raise(session_factory) -> None:
    with pytest.raises(JobNotFound):
        await JobTracker(session_factory).get("missing")


@pytest.mark.asyncio
async def test_find_active_ignores_parked_and_finished_jobs(session_factory) -> None:
    tracker = JobTracker(session_factory)
    running = await tracker.create(job_type="template", company_id="acme")
    parked = await tracker.create(job_type="template", company_id="beta")
    await tracker.transition(parked.id, JobStatus.VALIDATING, message="Validating")
    await tracker.transition(parked.id, JobStatus.NEEDS_MAPPING, message="Map me")

    assert (await tracker.find_active("acme")).id == running.id
    assert await tracker.find_active("acme", period_type="quarterly") is None
    assert await tracker.find_active("acme", exclude=running.id) is None
    assert await tracker.find_active("beta") is None


@pytest.mark.asyncio
async def test_find_duplicate_only_matches_successful_jobs(session_factory) -> None:
    tracker = JobTracker(session_factory)
    pending = await tracker.create(job_type="bundle", company_id="acme", file_hash="abc")

    assert await tracker.find_duplicate("abc", within_hours=24) is None

    await tracker.transition(pending.id, JobStatus.VALIDATING, message="Validating")
    await tracker.transition(pending.id, JobStatus.DONE, message="Dry run")

    assert (await tracker.find_duplicate("abc", within_hours=24)).id == pending.id
    assert await tracker.find_duplicate("other", within_hours=24) is None


def test_unknown_job_is_404(client: TestClient) -> None:
    assert client.get("/v1/jobs/missing").status_code == 404


def _park_debt_upload(client: TestClient) -> dict:
    response = client.post(
        "/v1/uploads",
        files={"file": ("deuda.csv", DEBT_CSV, "text/csv")},
        data={"company_id": "acme", "template_name": "pool-deuda"},
    )
    assert response.status_code == 200
    return response.json()


def test_poorly_matching_upload_waits_for_a_mapping(client: TestClient) -> None:
    body = _park_debt_upload(client)

    assert body["needs_mapping"] is True
    assert body["success"] is False
    job = client.get(f"/v1/jobs/{body['job_id']}").json()
    assert job["status"] == "NEEDS_MAPPING"
    assert job["template_name"] == "pool-deuda"


def test_manual_mapping_completes_the_job(client: TestClient) -> None:
    job_id = _park_debt_upload(client)["job_id"]

    response = client.post(
        f"/v1/jobs/{job_id}/mapping",
        json={"mapping": {"Bank": "Entidad", "Amount": "Principal_Inicial"}},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["lines_loaded"] == 1
    assert client.get(f"/v1/jobs/{job_id}").json()["status"] == "DONE"

    again = client.post(f"/v1/jobs/{job_id}/mapping", json={"mapping": {"Bank": "Entidad"}})
    assert again.status_code == 409
    assert again.json()["status"] == "DONE"


def test_parked_jobs_do_not_block_the_period(client: TestClient) -> None:
    _park_debt_upload(client)

    response = client.post(
        "/v1/uploads",
        files={"file": ("pyg.csv", b"Concepto,2023\nCifra de negocios,1000\n", "text/csv")},
        data={"company_id": "acme", "template_name": "cuenta-pyg"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_empty_mapping_is_rejected(client: TestClient) -> None:
    job_id = _park_debt_upload(client)["job_id"]

    assert client.post(f"/v1/jobs/{job_id}/mapping", json={"mapping": {}}).status_code == 422


def test_assisted_normalization_needs_a_configured_model(client: TestClient) -> None:
    job_id = _park_debt_upload(client)["job_id"]

    response = client.post(f"/v1/jobs/{job_id}/normalize")

    assert response.status_code == 503


def test_websocket_sends_done_for_finished_jobs(client: TestClient) -> None:
    job_id = client.post(
        "/v1/uploads",
        files={"file": ("pyg.csv", b"Concepto,2023\nCifra de negocios,1000\n", "text/csv")},
        data={"company_id": "acme", "template_name": "cuenta-pyg"},
    ).json()["job_id"]

    with client.websocket_connect(f"/v1/jobs/{job_id}/ws") as websocket:
        message = websocket.receive_json()

    assert message["event"] == "done"
    assert message["data"]["id"] == job_id
    assert message["data"]["status"] == "DONE"


def test_websocket_reports_unknown_jobs(client: TestClient) -> None:
    with client.websocket_connect("/v1/jobs/missing/ws") as websocket:
        message = websocket.receive_json()

    assert message == {"event": "error", "data": {"message": "Job not found: missing"}}


def _crash(self, *args, **kwargs):
    raise RuntimeError("validator crashed")


@pytest.mark.asyncio
async def test_crash_during_validation_fails_the_job_and_frees_the_period(orchestrator_factory, monkeypatch) -> None:
    orchestrator = orchestrator_factory()
    request = UploadRequest(content=PYG_CSV, filename="pyg.csv", template_name="cuenta-pyg", company_id="acme")

    with monkeypatch.context() as patch:
        patch.setattr(FilePipeline, "run_table", _crash)
        with pytest.raises(RuntimeError):
            await orchestrator.run_template_upload(request)

    assert await orchestrator.tracker.find_active("acme") is None
    retry = await orchestrator.run_template_upload(request)
    assert retry.success
    assert (await orchestrator.tracker.get(retry.job_id)).status == JobStatus.DONE.value


@pytest.mark.asyncio
async def test_crash_during_manual_mapping_fails_the_job(orchestrator_factory, monkeypatch) -> None:
    orchestrator = orchestrator_factory()
    parked = await orchestrator.run_template_upload(
        UploadRequest(content=DEBT_CSV, filename="deuda.csv", template_name="pool-deuda", company_id="acme")
    )
    assert parked.needs_mapping

    monkeypatch.setattr(FilePipeline, "run_table", _crash)
    with pytest.raises(RuntimeError):
        await orchestrator.submit_mapping(parked.job_id, {"Bank": "Entidad", "Amount": "Principal_Inicial"})

    job = await orchestrator.tracker.get(parked.job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.error_message == "Unexpected error: validator crashed"
