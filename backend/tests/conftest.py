"""Shared fixtures: every test gets its own SQLite database and artifact directory."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import AppSettings, get_settings
from app.core.db import get_session_factory, init_models, reset_engine
from app.main import create_app
from app.services.artifacts import LocalObjectStore
from app.services.orchestrator import UploadOrchestrator
from app.services.templates import TemplateRepository

ADMIN_TOKEN = "admin-token"
VIEWER_TOKEN = "viewer-token"


@pytest.fixture
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[AppSettings]:
    monkeypatch.setenv("ENVIRONMENT", "dev")
    monkeypatch.setenv("STRUCTURED_DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'ingestion.db'}")
    monkeypatch.setenv("ARTIFACTS_DIR", str(tmp_path / "artifacts"))
    monkeypatch.setenv("LOG_FORMAT", "console")
    monkeypatch.delenv("API_TOKENS", raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def secured(settings: AppSettings, monkeypatch: pytest.MonkeyPatch) -> Iterator[AppSettings]:
    """Settings with bearer tokens configured, so anonymous access is off."""

    monkeypatch.setenv("API_TOKENS", f'{{"{ADMIN_TOKEN}": "alice:admin", "{VIEWER_TOKEN}": "bob:viewer"}}')
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def tokens() -> dict[str, str]:
    return {"admin": ADMIN_TOKEN, "viewer": VIEWER_TOKEN}


def _client() -> Iterator[TestClient]:
    # The lifespan disposes the engine on shutdown; this drops one left by a previous test.
    asyncio.run(reset_engine())
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def client(settings: AppSettings) -> Iterator[TestClient]:
    yield from _client()


@pytest.fixture
def secured_client(secured: AppSettings) -> Iterator[TestClient]:
    yield from _client()


@pytest_asyncio.fixture
async def session_factory(settings: AppSettings) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    await reset_engine()
    await init_models()
    factory = get_session_factory()
    async with factory() as session:
        await TemplateRepository(session).seed_builtin()
    yield factory
    await reset_engine()


@pytest.fixture
def orchestrator_factory(settings: AppSettings, session_factory: async_sessionmaker[AsyncSession]):
    def build(assistant=None) -> UploadOrchestrator:
        return UploadOrchestrator(
            session_factory=session_factory,
            settings=settings,
            store=LocalObjectStore(settings.artifacts_dir),
            assistant=assistant,
        )

    return build
