from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import (
    get_category_registry,
    get_page_writer,
    get_transcription_service,
    reset_cached_dependencies,
)
from backend.app.main import create_app
from backend.app.services.auth_service import hash_password
from backend.app.services.notion_writer import NotionPageWriter
from backend.app.services.transcription_service import TranscriptionService

TEST_USERNAME = "athan"
TEST_PASSWORD = "correct horse battery staple"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD, rounds=4)
TEST_SESSION_SECRET = "test-session-secret-0123456789-abcdefghij"
TEST_DATABASE_ID = "db-0000"

CATEGORIES: list[dict[str, str]] = [
    {"name": "Project", "icon": "🚀", "description": "Work projects and planning."},
    {"name": "Learning", "icon": "📚", "description": "Things learned or to study."},
    {"name": "Personal", "icon": "✨", "description": "Personal life and reflections."},
    {"name": "Task", "icon": "✅", "description": "Actionable to-dos."},
]


def write_categories(config_dir: Path, categories: list[dict[str, str]] | None = None) -> Path:
    config_dir.mkdir(parents=True, exist_ok=True)
    config_path = config_dir / "categories.json"
    config_path.write_text(
        json.dumps({"categories": categories if categories is not None else CATEGORIES}),
        encoding="utf-8",
    )
    return config_path


def build_note_json(**overrides: Any) -> str:
    payload: dict[str, Any] = {
        "title": "Roadmap meeting အကြောင်း",
        "content": "ဒီနေ့ roadmap အစည်းအဝေးမှာ နောက်လအတွက် အစီအစဉ်တွေ ဆွေးနွေးခဲ့တယ်။",
        "summary": "နောက်လ roadmap အစီအစဉ်ကို ဆွေးနွေးခဲ့သည်။",
        "category": "Project",
        "tags": ["meeting", "roadmap", "planning"],
    }
    payload.update(overrides)
    return json.dumps(payload, ensure_ascii=False)


class FakeNotionApi:
    def __init__(self, *, page_id: str = "1234-abcd-5678", error: Exception | None = None) -> None:
        self.page_id = page_id
        self.error = error
        self.database_error: Exception | None = None
        self.created_payloads: list[dict[str, object]] = []
        self.retrieved_databases: list[str] = []

    def create_page(self, payload: dict[str, object]) -> dict[str, object]:
        self.created_payloads.append(payload)
        if self.error is not None:
            raise self.error
        return {"object": "page", "id": self.page_id}

    def retrieve_database(self, database_id: str) -> dict[str, object]:
        self.retrieved_databases.append(database_id)
        if self.database_error is not None:
            raise self.database_error
        return {"object": "database", "id": database_id}


class FakeGenerator:
    """Returns (or raises) a scripted outcome per model id."""

    def __init__(self, outcomes: Mapping[str, str | Exception] | None = None) -> None:
        self.outcomes: dict[str, str | Exception] = dict(outcomes or {})
        self.calls: list[str] = []
        self.mime_types: list[str] = []

    def generate(self, *, model: str, audio: bytes, mime_type: str, prompt: str) -> str:
        _ = (audio, prompt)
        self.calls.append(model)
        self.mime_types.append(mime_type)
        outcome = self.outcomes.get(model, build_note_json())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass
class ApiHarness:
    client: TestClient
    notion: FakeNotionApi
    generator: FakeGenerator
    models: tuple[str, ...] = field(default=("model-a", "model-b", "model-c"))

    def login(self) -> None:
        response = self.client.post(
            "/api/auth/login",
            json={"username": TEST_USERNAME, "password": TEST_PASSWORD},
        )
        assert response.status_code == 200


@pytest.fixture(autouse=True)
def _athan_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:  # pyright: ignore[reportUnusedFunction]
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    config_dir = tmp_path / "config"
    write_categories(config_dir)

    monkeypatch.setenv("ATHAN_NOTES_DATA_DIR", str(data_dir))
    monkeypatch.setenv("ATHAN_NOTES_CATEGORIES_DIR", str(config_dir))
    monkeypatch.setenv("ATHAN_NOTES_GEMINI_API_KEY", "test-gemini-key")
    monkeypatch.setenv("ATHAN_NOTES_NOTION_API_KEY", "test-notion-key")
    monkeypatch.setenv("ATHAN_NOTES_NOTION_DATABASE_ID", TEST_DATABASE_ID)
    monkeypatch.setenv("ATHAN_NOTES_APP_USERNAME", TEST_USERNAME)
    monkeypatch.setenv("ATHAN_NOTES_APP_PASSWORD_HASH", TEST_PASSWORD_HASH)
    monkeypatch.setenv("ATHAN_NOTES_SESSION_SECRET", TEST_SESSION_SECRET)
    monkeypatch.setenv("ATHAN_NOTES_RATE_LIMIT_SWEEP_ENABLED", "0")
    monkeypatch.setenv("ATHAN_NOTES_TELEMETRY_SINK", "none")
    return config_dir


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:  # pyright: ignore[reportUnusedFunction]
    yield
    for name in ("athan_notes", "athan_notes.telemetry"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)


@pytest.fixture
def api() -> Iterator[ApiHarness]:
    reset_cached_dependencies()
    notion = FakeNotionApi()
    generator = FakeGenerator()
    models = ("model-a", "model-b", "model-c")

    app = create_app()

    def _page_writer() -> NotionPageWriter:
        return NotionPageWriter(
            client=notion,
            database_id=TEST_DATABASE_ID,
            registry=get_category_registry(),
        )

    def _transcription_service() -> TranscriptionService:
        return TranscriptionService(
            generator=generator,
            page_writer=_page_writer(),
            registry=get_category_registry(),
            models=models,
        )

    app.dependency_overrides[get_page_writer] = _page_writer
    app.dependency_overrides[get_transcription_service] = _transcription_service

    with TestClient(app) as test_client:
        yield ApiHarness(client=test_client, notion=notion, generator=generator, models=models)

    reset_cached_dependencies()
