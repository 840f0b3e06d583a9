from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

LOGGER = logging.getLogger("athan_notes.gemini")

_TRANSIENT_STATUS_CODES: frozenset[int] = frozenset({404, 429, 500, 503})
_TRANSIENT_STATUSES: frozenset[str] = frozenset(
    {"NOT_FOUND", "RESOURCE_EXHAUSTED", "INTERNAL", "UNAVAILABLE"}
)
_TRANSIENT_MESSAGE_MARKERS: tuple[str, ...] = (
    "404",
    "not found",
    "503",
    "service unavailable",
    "overloaded",
    "unavailable",
    "429",
    "rate limit",
    "too many requests",
    "quota",
    "resource_exhausted",
    "resource exhausted",
    "500",
    "internal server error",
    "internal error",
)
_TIMEOUT_MESSAGE_MARKERS: tuple[str, ...] = (
    "request timeout",
    "timed out",
    "deadline exceeded",
    "deadline_exceeded",
)


class FailureKind(enum.Enum):
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    FATAL = "fatal"

    @property
    def allows_fallback(self) -> bool:
        return self is not FailureKind.FATAL


class GenerationError(RuntimeError):
    def __init__(self, message: str, *, kind: FailureKind, model: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.model = model


class AudioGenerator(Protocol):
    def generate(self, *, model: str, audio: bytes, mime_type: str, prompt: str) -> str:
        ...


def classify_error_message(message: str) -> FailureKind:
    normalized = message.lower()
    if any(marker in normalized for marker in _TIMEOUT_MESSAGE_MARKERS):
        return FailureKind.TIMEOUT
    if any(marker in normalized for marker in _TRANSIENT_MESSAGE_MARKERS):
        return FailureKind.TRANSIENT
    return FailureKind.FATAL


def classify_api_error(exc: Exception) -> FailureKind:
    code = getattr(exc, "code", None)
    if isinstance(code, int) and code in _TRANSIENT_STATUS_CODES:
        return FailureKind.TRANSIENT
    if code == 504:
        return FailureKind.TIMEOUT

    status = getattr(exc, "status", None)
    if isinstance(status, str) and status.strip():
        normalized_status = status.strip().upper()
        if normalized_status in _TRANSIENT_STATUSES:
            return FailureKind.TRANSIENT
        if normalized_status == "DEADLINE_EXCEEDED":
            return FailureKind.TIMEOUT
        return FailureKind.FATAL

    if isinstance(code, int):
        return FailureKind.FATAL

    # No structured code or status: fall back to the message text.
    return classify_error_message(str(exc))


class GeminiGenerationClient:
    """Runs one generation request per call, bounded by a wall-clock timeout.

    The SDK call runs on a worker thread so the caller can stop waiting once the
    timeout elapses. The abandoned request is left to finish in the background
    (the SDK's own HTTP timeout ends it eventually) and its result is discarded.
    Its worker pool is retired on timeout, so stuck calls never queue ahead of
    later requests.
    """

    def __init__(
        self,
        *,
        api_key: str,
        timeout_seconds: float,
        max_workers: int = 4,
        client: Any | None = None,
    ) -> None:
        self._client = (
            client if client is not None else _build_sdk_client(api_key, timeout_seconds)
        )
        self._timeout_seconds = timeout_seconds
        self._max_workers = max(1, max_workers)
        self._executor_lock = threading.Lock()
        self._executor = self._new_executor()

    def generate(self, *, model: str, audio: bytes, mime_type: str, prompt: str) -> str:
        with self._executor_lock:
            executor = self._executor
            future = executor.submit(self._generate_blocking, model, audio, mime_type, prompt)
        try:
            return future.result(timeout=self._timeout_seconds)
        except TimeoutError as exc:
            self._retire_executor(executor)
            raise GenerationError(
                f"Request timeout after {self._timeout_seconds:g}s",
                kind=FailureKind.TIMEOUT,
                model=model,
            ) from exc
        except GenerationError:
            raise
        except genai_errors.APIError as exc:
            raise GenerationError(str(exc), kind=classify_api_error(exc), model=model) from exc
        except Exception as exc:
            message = str(exc) or type(exc).__name__
            raise GenerationError(
                message,
                kind=classify_error_message(message),
                model=model,
            ) from exc

    def close(self) -> None:
        with self._executor_lock:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="athan-notes-gemini",
        )

    def _retire_executor(self, executor: ThreadPoolExecutor) -> None:
        with self._executor_lock:
            if self._executor is not executor:
                return
            self._executor = self._new_executor()
        # Queued and running calls on the old pool still complete.
        executor.shutdown(wait=False)
        LOGGER.warning("gemini call abandoned after timeout; worker pool replaced")

    def _generate_blocking(self, model: str, audio: bytes, mime_type: str, prompt: str) -> str:
        response = self._client.models.generate_content(
            model=model,
            contents=[
                types.Part.from_bytes(data=audio, mime_type=mime_type),
                types.Part.from_text(text=prompt),
            ],
        )
        text = response.text
        if not text:
            raise GenerationError(
                "Gemini returned an empty response",
                kind=FailureKind.FATAL,
                model=model,
            )
        return text


def _build_sdk_client(api_key: str, timeout_seconds: float) -> genai.Client:
    # HttpOptions.timeout is in milliseconds.
    return genai.Client(
        api_key=api_key,
        http_options=types.HttpOptions(timeout=int(timeout_seconds * 1000)),
    )
