from __future__ import annotations

import logging
import time
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile
from fastapi.responses import JSONResponse
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.config import AppSettings
from backend.app.dependencies import (
    get_login_rate_limiter,
    get_page_writer,
    get_password_verifier,
    get_settings,
    get_telemetry,
    get_transcription_service,
)
from backend.app.models.note_contracts import (
    LoginRequest,
    NotionTestResponse,
    ProcessedNoteWithMetadata,
    VoiceNoteData,
)
from backend.app.services.auth_service import PasswordVerifier
from backend.app.services.notion_writer import NotionPageWriter
from backend.app.services.rate_limiter import LoginRateLimitDecision, LoginRateLimiter
from backend.app.services.transcription_service import (
    ALLOWED_AUDIO_MIME_TYPES,
    INVALID_FORMAT_PREFIX,
    INVALID_JSON_MESSAGE,
    TranscriptionError,
    TranscriptionService,
    validate_audio_upload,
)
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("athan_notes.api")

router = APIRouter()

_SESSION_USERNAME = "username"
_SESSION_LOGGED_IN = "is_logged_in"
_SESSION_LOGGED_IN_AT = "logged_in_at"

_NOTION_TEST_NOTE = VoiceNoteData(
    title="Test Voice Note",
    summary=(
        "This is a test page created by Athan Notes to verify Notion integration "
        "is working correctly."
    ),
    content=(
        "Full test content here. This page was automatically created to test the "
        "connection between Athan Notes and your Notion workspace. If you see this page "
        "with all properties filled correctly, the integration is working! You can "
        "safely delete this test page."
    ),
    category="Personal",
    tags=("test", "system-check", "athan-notes"),
)


def _error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _client_identifier(request: Request) -> str:
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def _rate_limit_headers(decision: LoginRateLimitDecision) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining_attempts),
        "X-RateLimit-Reset": str(int(decision.reset_at)),
    }
    if not decision.allowed:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def require_login(request: Request) -> str:
    session = request.session
    username = session.get(_SESSION_USERNAME)
    if session.get(_SESSION_LOGGED_IN) is not True or not isinstance(username, str):
        raise HTTPException(status_code=401, detail="Unauthorized. Please login first.")
    return username


def _status_for_transcription_error(message: str) -> int:
    if INVALID_FORMAT_PREFIX in message or INVALID_JSON_MESSAGE in message:
        return 502
    return 500


@router.post("/api/auth/login", tags=["auth"], operation_id="auth_login")
def auth_login(
    body: LoginRequest,
    request: Request,
    limiter: Annotated[LoginRateLimiter, Depends(get_login_rate_limiter)],
    verifier: Annotated[PasswordVerifier, Depends(get_password_verifier)],
    telemetry: Annotated[TelemetryClient, Depends(get_telemetry)],
) -> Response:
    identifier = _client_identifier(request)
    decision = limiter.check(identifier)
    headers = _rate_limit_headers(decision)

    if not decision.allowed:
        minutes = max(1, -(-decision.retry_after_seconds // 60))
        LOGGER.warning("login rate limit exceeded client=%s", identifier)
        telemetry.emit("auth.login.rate_limited", retry_after_seconds=decision.retry_after_seconds)
        response = _error_response(
            429,
            f"Too many login attempts. Please try again in {minutes} minutes.",
        )
        response.headers.update(headers)
        return response

    if not body.username or not body.password:
        response = _error_response(400, "Username and password are required")
        response.headers.update(headers)
        return response

    if not verifier.verify(body.username, body.password):
        telemetry.emit("auth.login.rejected", remaining_attempts=decision.remaining_attempts)
        response = _error_response(
            401,
            "Invalid username or password",
            remainingAttempts=decision.remaining_attempts,
        )
        response.headers.update(headers)
        return response

    limiter.reset(identifier)
    request.session.clear()
    request.session.update(
        {
            _SESSION_USERNAME: body.username,
            _SESSION_LOGGED_IN: True,
            _SESSION_LOGGED_IN_AT: int(time.time() * 1000),
        }
    )
    LOGGER.info("login succeeded client=%s", identifier)
    telemetry.emit("auth.login.success")
    return JSONResponse(
        status_code=200,
        content={"success": True, "message": "Login successful", "username": body.username},
    )


@router.post("/api/auth/logout", tags=["auth"], operation_id="auth_logout")
def auth_logout(request: Request) -> dict[str, object]:
    request.session.clear()
    return {"success": True, "message": "Logout successful"}


@router.get("/api/auth/check", tags=["auth"], operation_id="auth_check")
def auth_check(request: Request) -> dict[str, object]:
    session = request.session
    if session.get(_SESSION_LOGGED_IN) is True:
        return {
            "authenticated": True,
            "username": session.get(_SESSION_USERNAME),
            "loggedInAt": session.get(_SESSION_LOGGED_IN_AT),
        }
    return {"authenticated": False}


@router.post(
    "/api/process-audio",
    response_model=ProcessedNoteWithMetadata,
    tags=["notes"],
    operation_id="process_audio",
)
def process_audio(
    username: Annotated[str, Depends(require_login)],
    service: Annotated[TranscriptionService, Depends(get_transcription_service)],
    settings: Annotated[AppSettings, Depends(get_settings)],
    audio: Annotated[UploadFile | None, File()] = None,
) -> Response:
    if audio is None:
        return _error_response(400, "No audio file provided")

    audio_bytes = audio.file.read()
    validation = validate_audio_upload(
        size_bytes=len(audio_bytes),
        mime_type=audio.content_type,
        max_size_bytes=settings.max_audio_size_bytes,
    )
    if not validation.valid:
        return _error_response(400, validation.error or "Invalid audio file format")

    context_tokens = bind_contextvars(audio_mime_type=validation.mime_type, session_user=username)
    try:
        note = service.process_audio(audio_bytes, validation.mime_type)
    except TranscriptionError as exc:
        message = str(exc) or "Failed to process audio"
        LOGGER.error("audio processing failed error=%s", message)
        return _error_response(_status_for_transcription_error(message), message)
    finally:
        reset_contextvars(**context_tokens)

    return JSONResponse(status_code=200, content=note.model_dump(by_alias=True))


@router.get("/api/process-audio", tags=["notes"], operation_id="process_audio_info")
def process_audio_info(
    settings: Annotated[AppSettings, Depends(get_settings)],
) -> dict[str, object]:
    return {
        "endpoint": "/api/process-audio",
        "method": "POST",
        "description": "Process Burmese voice notes with Gemini AI and save them to Notion",
        "authentication": "Required (session-based)",
        "requestFormat": "multipart/form-data",
        "requestFields": {
            "audio": f"Audio file (required) - {', '.join(ALLOWED_AUDIO_MIME_TYPES)}",
        },
        "constraints": {
            "maxFileSize": f"{settings.max_audio_size_bytes // (1024 * 1024)}MB",
            "language": "Burmese (my-MM)",
            "models": list(settings.gemini_models),
        },
        "responseFormat": {
            "title": "string (original language as spoken, max 100 characters)",
            "content": "string (cleaned full transcription in Burmese)",
            "summary": "string (one sentence in Burmese)",
            "category": "one of the configured category names",
            "tags": "string[] (3-5 tags in English)",
            "categoryIcon": "string (emoji)",
            "notionUrl": "string",
        },
    }


@router.get(
    "/api/notion/test",
    response_model=NotionTestResponse,
    tags=["notes"],
    operation_id="notion_test",
)
def notion_test(
    _username: Annotated[str, Depends(require_login)],
    writer: Annotated[NotionPageWriter, Depends(get_page_writer)],
) -> Response:
    if not writer.validate_database():
        return _error_response(
            500,
            "Cannot access Notion database. Please check:\n"
            "1. Database ID is correct\n"
            "2. Database is shared with your integration\n"
            "3. API key is valid",
            success=False,
        )

    result = writer.create_voice_note_page(_NOTION_TEST_NOTE)
    if not result.success:
        return _error_response(
            500,
            result.error or "Failed to create test page",
            success=False,
        )

    assert result.page_id is not None
    assert result.page_url is not None
    assert result.category_mapped is not None
    payload = NotionTestResponse(
        success=True,
        message="Test page created successfully in Notion!",
        page_id=result.page_id,
        page_url=result.page_url,
        category_mapped=result.category_mapped,
        note="You can safely delete this test page from your Notion database.",
    )
    return JSONResponse(status_code=200, content=payload.model_dump(by_alias=True))
