"""Tests for LLM-assisted header mapping."""

from __future__ import annotations

import json

import pytest
from langchain_core.messages import AIMessage

from app.core.config import AppSettings
from app.models.schemas import JobStatus
from app.services.normalizer import NormalizationAssistant, _parse_json_content, build_assistant
from app.services.orchestrator import AssistantUnavailable, UploadRequest
from ingest.templates import get_builtin

DEBT_CSV = b"Bank,Amount\nBBVA,1000\n"


class StubLLM:
    """Minimal async-compatible LLM stub."""

    def __init__(self, responses: list[AIMessage]) -> None:
        self._responses = responses
        self.calls = 0
        self.last_messages = None

    async def ainvoke(self, messages) -> AIMessage:
        self.last_messages = messages
        if self.calls >= len(self._responses):
            raise AssertionError("StubLLM received more calls than configured")
        response = self._responses[self.calls]
        self.calls += 1
        return response


def _reply(mapping: dict[str, str]) -> AIMessage:
    return AIMessage(content=json.dumps({"mapping": mapping}))


def test_parse_json_content_handles_code_fences_and_garbage() -> None:
    assert _parse_json_content('```json\n{"mapping": {"A": "B"}}\n```') == {"mapping": {"A": "B"}}
    assert _parse_json_content("not json") == {}
    assert _parse_json_content("[1, 2]") == {}
    assert _parse_json_content("") == {}


@pytest.mark.asyncio
async def test_suggestions_are_filtered_to_known_headers_and_columns() -> None:
    llm = StubLLM([_reply({"Bank": "Entidad", "Amount": "Principal_Inicial", "Ghost": "Entidad", "Rate": "Nope"})])
    assistant = NormalizationAssistant(llm)

    mapping = await assistant.suggest_mapping(["Bank", "Amount", "Rate"], get_builtin("pool-deuda"), [["BBVA", "1", "2"]])

    assert mapping == {"Bank": "Entidad", "Amount": "Principal_Inicial"}
    payload = json.loads(llm.last_messages[1].content)
    assert payload["file_headers"] == ["Bank", "Amount", "Rate"]
    assert payload["sample_rows"] == [["BBVA", "1", "2"]]
    assert "Entidad" in [column["name"] for column in payload["template_columns"]]


@pytest.mark.asyncio
async def test_list_content_blocks_are_joined() -> None:
    message = AIMessage(content=[{"type": "text", "text": '{"mapping": '}, {"type": "text", "text": '{"Bank": "Entidad"}}'}])
    assistant = NormalizationAssistant(StubLLM([message]))

    assert await assistant.suggest_mapping(["Bank"], get_builtin("pool-deuda")) == {"Bank": "Entidad"}


def test_assistant_is_only_built_with_an_api_key(settings: AppSettings) -> None:
    assert build_assistant(settings) is None
    assert isinstance(build_assistant(settings.model_copy(update={"openai_api_key": "stub"})), NormalizationAssistant)


async def _parked_job(orchestrator) -> str:
    response = await orchestrator.run_template_upload(
        UploadRequest(content=DEBT_CSV, filename="deuda.csv", template_name="pool-deuda", company_id="acme")
    )
    assert response.needs_mapping
    return response.job_id


@pytest.mark.asyncio
async def test_assisted_normalization_loads_the_remapped_file(orchestrator_factory) -> None:
    llm = StubLLM([_reply({"Bank": "Entidad", "Amount": "Principal_Inicial"})])
    orchestrator = orchestrator_factory(NormalizationAssistant(llm))
    job_id = await _parked_job(orchestrator)

    response = await orchestrator.run_assisted_normalization(job_id)

    assert response.success
    assert response.lines_loaded == 1
    assert response.suggested_mappings == {"Bank": "Entidad", "Amount": "Principal_Inicial"}
    job = await orchestrator.tracker.get(job_id)
    assert job.status == JobStatus.DONE.value
    assert job.stats_json["mapping"] == {"Bank": "Entidad", "Amount": "Principal_Inicial"}


@pytest.mark.asyncio
async def test_unhelpful_assistant_parks_the_job_again(orchestrator_factory) -> None:
    orchestrator = orchestrator_factory(NormalizationAssistant(StubLLM([_reply({})])))
    job_id = await _parked_job(orchestrator)

    response = await orchestrator.run_assisted_normalization(job_id)

    assert response.needs_mapping
    assert (await orchestrator.tracker.get(job_id)).status == JobStatus.NEEDS_MAPPING.value


@pytest.mark.asyncio
async def test_assistant_errors_fail_the_job(orchestrator_factory) -> None:
    orchestrator = orchestrator_factory(NormalizationAssistant(StubLLM([])))
    job_id = await _parked_job(orchestrator)

    with pytest.raises(AssertionError):
        await orchestrator.run_assisted_normalization(job_id)

    job = await orchestrator.tracker.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.error_message.startswith("Assisted normalization failed")


@pytest.mark.asyncio
async def test_normalization_requires_an_assistant(orchestrator_factory) -> None:
    with pytest.raises(AssistantUnavailable):
        await orchestrator_factory().run_assisted_normalization("any")
