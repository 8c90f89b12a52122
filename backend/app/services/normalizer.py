"""LLM-assisted header mapping for files that automatic matching could not place."""

from __future__ import annotations

import json
from collections.abc import Sequence
from json import JSONDecodeError
from typing import Any

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from app.core.config import AppSettings
from app.core.logging import get_logger
from ingest.templates.schema import TemplateSchema

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You map the column headers of an uploaded spreadsheet onto the columns of a financial template. "
    "Reply with a JSON object of the form {\"mapping\": {\"<file header>\": \"<template column>\"}}. "
    "Only use headers and template columns that were given to you. Leave out headers you cannot place. "
    "Four-digit year headers are kept as they are and must not be mapped."
)


def _message_content_to_text(message: AIMessage) -> str:
    """Coerce message content into a string for downstream parsing."""

    content = message.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
        return "".join(parts)
    return str(content)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("```", 2)[1] if stripped.count("```") >= 2 else stripped.lstrip("`")
    if stripped.lower().startswith("json"):
        stripped = stripped[4:]
    return stripped.strip()


def _parse_json_content(raw: str) -> dict[str, Any]:
    """Parse a JSON object from an LLM response string."""

    if not raw:
        return {}

    cleaned = _strip_code_fence(raw)
    try:
        data = json.loads(cleaned)
    except JSONDecodeError:
        logger.warning("normalizer.json.parse_failed", content=cleaned[:200])
        return {}

    return data if isinstance(data, dict) else {}


class NormalizationAssistant:
    """Asks a chat model for a header -> template column mapping."""

    def __init__(self, llm: Any) -> None:
        self._llm = llm

    async def suggest_mapping(
        self,
        headers: Sequence[str],
        template: TemplateSchema,
        sample_rows: Sequence[Sequence[str]] = (),
    ) -> dict[str, str]:
        """Return only pairs whose header exists in the file and whose target exists in the template."""

        columns = [column.name for column in template.columns]
        payload = {
            "template": template.name,
            "template_columns": [
                {"name": column.name, "type": column.type.value, "required": column.required}
                for column in template.columns
            ],
            "file_headers": list(headers),
            "sample_rows": [list(row) for row in sample_rows[:5]],
        }
        messages = [
            SystemMessage(content=SYSTEM_PROMPT),
            HumanMessage(content=json.dumps(payload, ensure_ascii=False)),
        ]

        response = await self._llm.ainvoke(messages)
        data = _parse_json_content(_message_content_to_text(response))
        raw_mapping = data.get("mapping", {})
        if not isinstance(raw_mapping, dict):
            return {}

        header_set, column_set = set(headers), set(columns)
        mapping = {
            str(header): str(column)
            for header, column in raw_mapping.items()
            if header in header_set and column in column_set
        }
        logger.info(
            "normalizer.mapping.suggested",
            template=template.name,
            proposed=len(raw_mapping),
            accepted=len(mapping),
        )
        return mapping


def build_assistant(settings: AppSettings) -> NormalizationAssistant | None:
    """Return an assistant when an OpenAI key is configured, otherwise ``None``."""

    if not settings.openai_api_key:
        return None

    llm = ChatOpenAI(
        model=settings.normalization_model,
        temperature=settings.normalization_temperature,
        openai_api_key=settings.openai_api_key,
        openai_api_base=settings.openai_api_base,
    )
    return NormalizationAssistant(llm)
