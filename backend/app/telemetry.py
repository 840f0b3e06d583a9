from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "athan_notes.telemetry"
REDACTED = "[redacted]"

# Note fields and login input never leave the process through telemetry.
_NOTE_FIELDS: frozenset[str] = frozenset(
    {"audio", "content", "password", "summary", "tags", "text", "title", "transcript", "username"}
)
_CREDENTIAL_SUFFIXES: tuple[str, ...] = ("_key", "_secret", "_token", "_cookie", "_hash")
_CREDENTIAL_NAMES: frozenset[str] = frozenset({"authorization", "cookie", "secret", "token"})
_MAX_STRING_LENGTH = 160

TelemetryValue = bool | int | float | str | None


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes events to the telemetry logger; bound request context is merged in."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger(TELEMETRY_LOGGER_NAME)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    enabled: bool
    sink: TelemetrySink

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(event_name=event_name, attributes=scrub_attributes(attributes))

    @contextmanager
    def span(self, event_prefix: str, **attributes: Any) -> Iterator[dict[str, Any]]:
        """Time a block and emit `<prefix>.finish` or `<prefix>.error`.

        The yielded dict collects attributes that are only known once the block
        has run, such as a response status. Exceptions are re-raised unchanged.
        """
        finish_attributes: dict[str, Any] = {}
        started_at = perf_counter()
        try:
            yield finish_attributes
        except Exception as exc:
            self.emit(
                f"{event_prefix}.error",
                **attributes,
                duration_ms=_elapsed_ms(started_at),
                error_type=type(exc).__name__,
            )
            raise
        self.emit(
            f"{event_prefix}.finish",
            **attributes,
            **finish_attributes,
            duration_ms=_elapsed_ms(started_at),
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unknown telemetry sink, telemetry disabled sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def scrub_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    scrubbed: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        scrubbed[key] = REDACTED if is_private_attribute(key) else _flatten_value(raw_value)
    return scrubbed


def is_private_attribute(key: str) -> bool:
    if key in _NOTE_FIELDS or key in _CREDENTIAL_NAMES:
        return True
    return key.endswith(_CREDENTIAL_SUFFIXES)


def _flatten_value(value: Any) -> TelemetryValue:
    # Payloads are reported by size only.
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, bytes | bytearray):
        return f"<{len(value)} bytes>"
    if isinstance(value, list | tuple | set | frozenset):
        return f"<{len(value)} items>"
    if not isinstance(value, str):
        return type(value).__name__

    compact = " ".join(value.split())
    if len(compact) > _MAX_STRING_LENGTH:
        return compact[:_MAX_STRING_LENGTH] + "..."
    return compact


def _elapsed_ms(started_at: float) -> int:
    return int((perf_counter() - started_at) * 1000)
