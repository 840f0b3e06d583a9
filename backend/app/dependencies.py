from __future__ import annotations

from functools import lru_cache

from backend.app.config import AppSettings, load_settings
from backend.app.services.auth_service import PasswordVerifier
from backend.app.services.category_registry import CategoryRegistry, load_category_registry
from backend.app.services.gemini_client import GeminiGenerationClient
from backend.app.services.notion_writer import NotionClient, NotionPageWriter
from backend.app.services.rate_limiter import LoginRateLimiter
from backend.app.services.transcription_service import TranscriptionService
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_category_registry() -> CategoryRegistry:
    return load_category_registry(get_settings().categories_dir)


@lru_cache(maxsize=1)
def get_page_writer() -> NotionPageWriter:
    settings = get_settings()
    assert settings.notion_api_key is not None
    assert settings.notion_database_id is not None
    return NotionPageWriter(
        client=NotionClient(
            api_key=settings.notion_api_key,
            base_url=settings.notion_base_url,
            notion_version=settings.notion_version,
            http_timeout_seconds=settings.notion_http_timeout_seconds,
        ),
        database_id=settings.notion_database_id,
        registry=get_category_registry(),
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_generation_client() -> GeminiGenerationClient:
    settings = get_settings()
    assert settings.gemini_api_key is not None
    return GeminiGenerationClient(
        api_key=settings.gemini_api_key,
        timeout_seconds=settings.gemini_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_transcription_service() -> TranscriptionService:
    settings = get_settings()
    return TranscriptionService(
        generator=get_generation_client(),
        page_writer=get_page_writer(),
        registry=get_category_registry(),
        models=settings.gemini_models,
        summary_max_length=settings.summary_max_length,
        telemetry=get_telemetry(),
    )


@lru_cache(maxsize=1)
def get_login_rate_limiter() -> LoginRateLimiter:
    settings = get_settings()
    return LoginRateLimiter(
        max_attempts=settings.login_rate_limit_max_attempts,
        window_seconds=settings.login_rate_limit_window_seconds,
    )


@lru_cache(maxsize=1)
def get_password_verifier() -> PasswordVerifier:
    settings = get_settings()
    return PasswordVerifier(
        username=settings.app_username,
        password_hash=settings.app_password_hash,
    )


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


def reset_cached_dependencies() -> None:
    if get_generation_client.cache_info().currsize:
        get_generation_client().close()
    get_transcription_service.cache_clear()
    get_generation_client.cache_clear()
    get_page_writer.cache_clear()
    get_category_registry.cache_clear()
    get_login_rate_limiter.cache_clear()
    get_password_verifier.cache_clear()
    get_telemetry.cache_clear()
    get_settings.cache_clear()
