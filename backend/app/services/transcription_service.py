from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from time import perf_counter
from typing import Any, cast

from pydantic import ValidationError

from backend.app.models.note_contracts import (
    ProcessedNote,
    ProcessedNoteWithMetadata,
    VoiceNoteData,
    build_processed_note_schema,
)
from backend.app.services.category_registry import CategoryDefinition, CategoryRegistry
from backend.app.services.gemini_client import AudioGenerator, GenerationError
from backend.app.services.notion_writer import NotionPageWriter
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("athan_notes.transcription")

ALLOWED_AUDIO_MIME_TYPES: tuple[str, ...] = (
    "audio/webm",
    "audio/wav",
    "audio/mpeg",
    "audio/mp3",
    "audio/mp4",
    "audio/m4a",
    "audio/ogg",
    "audio/flac",
)
DEFAULT_AUDIO_MIME_TYPE = "audio/webm"
DEFAULT_MAX_AUDIO_SIZE_BYTES = 50 * 1024 * 1024

INVALID_JSON_MESSAGE = "Gemini returned invalid JSON response"
INVALID_FORMAT_PREFIX = "Invalid response format from Gemini"
NOTION_FAILURE_PREFIX = "Failed to save note to Notion"

_FENCED_JSON_PATTERN = re.compile(r"```(?:json)?\s*(\{[\s\S]*\})\s*```")


class TranscriptionError(RuntimeError):
    pass


@dataclass(frozen=True)
class AudioValidation:
    valid: bool
    mime_type: str
    error: str | None = None


def normalize_audio_mime_type(raw_mime_type: str | None) -> str:
    if raw_mime_type is None or not raw_mime_type.strip():
        return DEFAULT_AUDIO_MIME_TYPE
    # Browsers send e.g. "audio/webm;codecs=opus"; only the media type is checked.
    return raw_mime_type.split(";", 1)[0].strip().lower()


def validate_audio_upload(
    *,
    size_bytes: int,
    mime_type: str | None,
    max_size_bytes: int = DEFAULT_MAX_AUDIO_SIZE_BYTES,
) -> AudioValidation:
    normalized_mime_type = normalize_audio_mime_type(mime_type)
    if size_bytes > max_size_bytes:
        return AudioValidation(
            valid=False,
            mime_type=normalized_mime_type,
            error=f"Audio file too large. Maximum size is {max_size_bytes // (1024 * 1024)}MB",
        )
    if size_bytes <= 0:
        return AudioValidation(
            valid=False,
            mime_type=normalized_mime_type,
            error="Audio file is empty",
        )
    if normalized_mime_type not in ALLOWED_AUDIO_MIME_TYPES:
        return AudioValidation(
            valid=False,
            mime_type=normalized_mime_type,
            error=(
                f"Unsupported audio format: {normalized_mime_type}. "
                f"Allowed formats: {', '.join(ALLOWED_AUDIO_MIME_TYPES)}"
            ),
        )
    return AudioValidation(valid=True, mime_type=normalized_mime_type)


def build_transcription_prompt(categories: Sequence[CategoryDefinition]) -> str:
    if not categories:
        raise TranscriptionError("No categories configured; cannot build transcription prompt.")

    category_lines = "\n".join(
        f"- {category.name}: {category.description}" for category in categories
    )
    quoted_names = ", ".join(f'"{category.name}"' for category in categories)
    pipe_names = "|".join(category.name for category in categories)

    return f"""
You are analyzing a Burmese voice note. Follow these steps PRECISELY:

STEP 1: TRANSCRIBE AND CLEAN
Transcribe the audio to Burmese text. This becomes the CONTENT field.
Remove filler words, false starts and repetitions, and fix obvious grammar
slips, but preserve the original meaning and nuance. Do NOT translate to English.

STEP 2: SUMMARIZE
Write ONE short sentence in Burmese that captures the main point.
This is the SUMMARY field. It must be shorter than the content.

STEP 3: CATEGORIZE
Choose EXACTLY ONE category from this list. You MUST use the EXACT name (case-sensitive):
{category_lines}

Pick the PRIMARY purpose of the note.
You MUST return one of these EXACT strings: {quoted_names}
Do NOT use variations, lowercase, plurals, or synonyms.

STEP 4: EXTRACT TAGS
Extract 3-5 short topic tags IN ENGLISH ONLY, even though the note is in Burmese.

STEP 5: CREATE TITLE
Write a brief, descriptive title (maximum 10 words) in the language(s) the
speaker actually used: Burmese, English, or a mix of both, exactly as spoken.

Return ONLY valid JSON in this EXACT format:
{{
  "title": "title in the speaker's original language(s)",
  "content": "cleaned full transcription in Burmese",
  "summary": "one sentence summary in Burmese",
  "category": "{pipe_names}",
  "tags": ["tag1", "tag2", "tag3"]
}}

The "category" field MUST be exactly one of: {quoted_names}.
"""


def parse_model_response(text: str) -> Any:
    match = _FENCED_JSON_PATTERN.search(text)
    json_text = match.group(1) if match else text
    try:
        return json.loads(json_text)
    except json.JSONDecodeError as exc:
        LOGGER.error("failed to parse gemini response length=%s", len(text))
        raise TranscriptionError(INVALID_JSON_MESSAGE) from exc


def validate_processed_note(
    payload: Any,
    *,
    category_names: Sequence[str],
    summary_max_length: int,
) -> ProcessedNote:
    schema = build_processed_note_schema(category_names, summary_max_length=summary_max_length)
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise TranscriptionError(f"{INVALID_FORMAT_PREFIX}: {_format_issues(exc)}") from exc


class TranscriptionService:
    def __init__(
        self,
        *,
        generator: AudioGenerator,
        page_writer: NotionPageWriter,
        registry: CategoryRegistry,
        models: Sequence[str],
        summary_max_length: int = 200,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        if not models:
            raise ValueError("TranscriptionService requires at least one model.")
        self._generator = generator
        self._page_writer = page_writer
        self._registry = registry
        self._models = tuple(models)
        self._summary_max_length = summary_max_length
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def process_audio(self, audio: bytes, mime_type: str) -> ProcessedNoteWithMetadata:
        """Transcribe, categorize and persist one voice note.

        Raises `TranscriptionError` with a human-readable message on any failure,
        including a failed Notion write after a successful transcription.
        """
        started_at = perf_counter()
        categories = self._registry.all()
        prompt = build_transcription_prompt(categories)
        raw_text = self._generate_with_fallback(audio=audio, mime_type=mime_type, prompt=prompt)

        payload = parse_model_response(raw_text)
        note = validate_processed_note(
            payload,
            category_names=[category.name for category in categories],
            summary_max_length=self._summary_max_length,
        )

        result = self._page_writer.create_voice_note_page(
            VoiceNoteData(
                title=note.title,
                summary=note.summary,
                content=note.content,
                category=note.category,
                tags=tuple(note.tags),
            )
        )
        if not result.success or result.page_url is None:
            raise TranscriptionError(
                f"{NOTION_FAILURE_PREFIX}: {result.error or 'Unknown error occurred'}"
            )

        category = result.category_mapped or note.category
        self._telemetry.emit(
            "transcription.finish",
            category=category,
            tag_count=len(note.tags),
            duration_ms=int((perf_counter() - started_at) * 1000),
        )
        return ProcessedNoteWithMetadata(
            title=note.title,
            content=note.content,
            summary=note.summary,
            category=note.category,
            tags=list(note.tags),
            category_icon=self._registry.icon(category),
            notion_url=result.page_url,
        )

    def _generate_with_fallback(self, *, audio: bytes, mime_type: str, prompt: str) -> str:
        last_index = len(self._models) - 1
        for index, model in enumerate(self._models):
            attempt_started = perf_counter()
            try:
                text = self._generator.generate(
                    model=model,
                    audio=audio,
                    mime_type=mime_type,
                    prompt=prompt,
                )
            except GenerationError as exc:
                duration_ms = int((perf_counter() - attempt_started) * 1000)
                self._telemetry.emit(
                    "transcription.model.error",
                    model=model,
                    attempt=index + 1,
                    failure_kind=exc.kind.value,
                    duration_ms=duration_ms,
                )
                if exc.kind.allows_fallback and index < last_index:
                    LOGGER.warning(
                        "gemini model failed; falling back model=%s next_model=%s kind=%s error=%s",
                        model,
                        self._models[index + 1],
                        exc.kind.value,
                        exc,
                    )
                    continue
                LOGGER.error(
                    "gemini model failed; giving up model=%s kind=%s error=%s",
                    model,
                    exc.kind.value,
                    exc,
                )
                raise TranscriptionError(str(exc)) from exc

            LOGGER.info("gemini model succeeded model=%s attempt=%s", model, index + 1)
            self._telemetry.emit(
                "transcription.model.finish",
                model=model,
                attempt=index + 1,
                duration_ms=int((perf_counter() - attempt_started) * 1000),
            )
            return text

        raise TranscriptionError("No Gemini models configured")


def _format_issues(exc: ValidationError) -> str:
    issues: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in cast(tuple[Any, ...], error["loc"]))
        issues.append(f"{location or 'response'}: {error['msg']}")
    return ", ".join(issues)
