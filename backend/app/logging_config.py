from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings
from backend.app.telemetry import REDACTED, TELEMETRY_LOGGER_NAME

LOG_FILE_NAME = "athan-notes.log"
TELEMETRY_LOG_FILE_NAME = "athan-notes-telemetry.log"
ROOT_LOGGER_NAME = "athan_notes"
# SDK loggers that log every HTTP round trip at INFO.
_NOISY_LIBRARY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "google_genai")
# Shorter values would mask ordinary words in log lines.
_MIN_MASKED_SECRET_LENGTH = 8


class SecretMasker:
    """structlog processor that blanks configured credentials in string fields.

    Gemini and Notion errors can echo request details back, so the API keys,
    the session secret and the password hash are masked wherever they appear,
    including rendered tracebacks.
    """

    def __init__(self, secrets: Iterable[str | None]) -> None:
        unique = {
            secret for secret in secrets if secret and len(secret) >= _MIN_MASKED_SECRET_LENGTH
        }
        # Longest first, so a secret containing another is masked whole.
        self._secrets = tuple(sorted(unique, key=len, reverse=True))

    @classmethod
    def from_settings(cls, settings: AppSettings) -> SecretMasker:
        return cls(
            (
                settings.gemini_api_key,
                settings.notion_api_key,
                settings.session_secret,
                settings.app_password_hash,
            )
        )

    def mask(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def __call__(self, _logger: object, _method_name: str, event_dict: EventDict) -> EventDict:
        if not self._secrets:
            return event_dict
        for key, value in event_dict.items():
            if isinstance(value, str):
                event_dict[key] = self.mask(value)
        return event_dict


def configure_application_logging(settings: AppSettings) -> Path:
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    log_file = settings.log_dir / LOG_FILE_NAME
    telemetry_log_file = settings.log_dir / TELEMETRY_LOG_FILE_NAME
    masker = SecretMasker.from_settings(settings)

    _configure_structlog()

    console_stream = sys.stdout
    console_handler = logging.StreamHandler(stream=console_stream)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(
        _build_console_formatter(masker, enable_colors=_stream_supports_color(console_stream))
    )

    app_logger = _isolated_logger(ROOT_LOGGER_NAME, logging.DEBUG)
    app_logger.addHandler(console_handler)
    app_logger.addHandler(_json_file_handler(log_file, logging.DEBUG, masker))

    telemetry_logger = _isolated_logger(TELEMETRY_LOGGER_NAME, logging.INFO)
    telemetry_logger.addHandler(_json_file_handler(telemetry_log_file, logging.INFO, masker))

    for name in _NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app_logger.info(
        "logging configured console_level=%s path=%s telemetry_path=%s",
        settings.log_level.upper(),
        log_file,
        telemetry_log_file,
    )
    return log_file


def _resolve_log_level(raw_level: str) -> int:
    resolved = logging.getLevelName(raw_level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _isolated_logger(name: str, level: int) -> logging.Logger:
    """Return `name` with its old handlers closed and propagation turned off."""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    return logger


def _json_file_handler(path: Path, level: int, masker: SecretMasker) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(_build_file_formatter(masker))
    return handler


def _build_console_formatter(
    masker: SecretMasker,
    *,
    enable_colors: bool,
) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            masker,
            structlog.dev.ConsoleRenderer(colors=enable_colors),
        ],
    )


def _build_file_formatter(masker: SecretMasker) -> structlog.stdlib.ProcessorFormatter:
    # ensure_ascii=False keeps Burmese note titles readable in the JSON log.
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            _add_source_location,
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            masker,
            structlog.processors.JSONRenderer(sort_keys=True, ensure_ascii=False),
        ],
    )


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _add_source_location(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict.update(
            pathname=record.pathname,
            lineno=record.lineno,
            func_name=record.funcName,
            thread_name=record.threadName,
        )
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        return bool(isatty())
    except Exception:
        return False
