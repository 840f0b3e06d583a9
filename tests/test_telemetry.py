from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from backend.app.telemetry import (
    TelemetryClient,
    build_telemetry_client,
    is_private_attribute,
    scrub_attributes,
)


class _CaptureSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self.events.append((event_name, dict(attributes)))


def test_telemetry_client_redacts_note_text_and_credentials() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "transcription.finish",
        request_id="req_123",
        title="ဒီနေ့ မှတ်စု",
        summary="summary text",
        transcript="very long transcript text",
        password="hunter2",
        session_cookie="abc",
        api_key="secret",
        tag_count=3,
    )

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "transcription.finish"
    assert attributes["request_id"] == "req_123"
    assert attributes["tag_count"] == 3
    for key in ("title", "summary", "transcript", "password", "session_cookie", "api_key"):
        assert attributes[key] == "[redacted]"


def test_telemetry_client_compacts_values() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    client.emit(
        "notion.page.create.finish",
        page_id="p-1",
        payload_bytes=b"\x00" * 12,
        models=("a", "b"),
        note="x" * 500,
        extra={"nested": True},
    )

    attributes = sink.events[0][1]
    assert attributes["page_id"] == "p-1"
    assert attributes["payload_bytes"] == "<12 bytes>"
    assert attributes["models"] == "<2 items>"
    assert attributes["note"] == "x" * 160 + "..."
    assert attributes["extra"] == "dict"


def test_disabled_telemetry_client_does_not_emit() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=False, sink=sink)

    client.emit("http.request.start", request_id="req_1")
    assert sink.events == []


def test_build_telemetry_client_none_sink_is_disabled() -> None:
    assert build_telemetry_client(enabled=True, sink="none").enabled is False
    assert build_telemetry_client(enabled=False, sink="log").enabled is False
    assert build_telemetry_client(enabled=True, sink="log").enabled is True


def test_private_attributes_cover_note_fields_and_credentials() -> None:
    assert is_private_attribute("content") is True
    assert is_private_attribute("notion_api_key") is True
    assert is_private_attribute("app_password_hash") is True
    assert is_private_attribute("tag_count") is False
    assert is_private_attribute("page_id") is False
    assert scrub_attributes({" Model ": "gemini-2.5-flash", "": "dropped"}) == {
        "model": "gemini-2.5-flash"
    }


def test_span_emits_finish_with_late_attributes() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    with client.span("http.request", request_id="req_9", path="/api/process-audio") as finish:
        finish["status_code"] = 200

    event_name, attributes = sink.events[0]
    assert event_name == "http.request.finish"
    assert attributes["request_id"] == "req_9"
    assert attributes["path"] == "/api/process-audio"
    assert attributes["status_code"] == 200
    assert isinstance(attributes["duration_ms"], int)


def test_span_emits_error_and_reraises() -> None:
    sink = _CaptureSink()
    client = TelemetryClient(enabled=True, sink=sink)

    with pytest.raises(ValueError, match="bad upload"):
        with client.span("http.request", request_id="req_10"):
            raise ValueError("bad upload")

    assert len(sink.events) == 1
    event_name, attributes = sink.events[0]
    assert event_name == "http.request.error"
    assert attributes["error_type"] == "ValueError"
    assert attributes["request_id"] == "req_10"
