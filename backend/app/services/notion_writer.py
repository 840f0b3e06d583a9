from __future__ import annotations

import json
import logging
from typing import Any, Protocol, cast
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from backend.app.models.note_contracts import CreatePageResult, VoiceNoteData
from backend.app.services.category_registry import CategoryRegistry
from backend.app.services.text_segmentation import chunk_content, truncate_summary, truncate_text
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("athan_notes.notion")

FALLBACK_CATEGORY = "Personal"
NOTION_PAGE_URL_PREFIX = "https://notion.so/"
SUMMARY_MAX_LENGTH = 150
TITLE_MAX_LENGTH = 100
TAG_MAX_LENGTH = 100
# Notion caps rich text at 2000 characters per block.
BLOCK_MAX_LENGTH = 1900


class NotionApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotionPagesApi(Protocol):
    def create_page(self, payload: dict[str, object]) -> dict[str, object]:
        ...

    def retrieve_database(self, database_id: str) -> dict[str, object]:
        ...


class NotionClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        notion_version: str,
        http_timeout_seconds: float,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._notion_version = notion_version
        self._http_timeout_seconds = max(1.0, float(http_timeout_seconds))

    def create_page(self, payload: dict[str, object]) -> dict[str, object]:
        return self._request_json(method="POST", path="/pages", payload=payload)

    def retrieve_database(self, database_id: str) -> dict[str, object]:
        return self._request_json(method="GET", path=f"/databases/{database_id}", payload=None)

    def _request_json(
        self,
        *,
        method: str,
        path: str,
        payload: dict[str, object] | None,
    ) -> dict[str, object]:
        url = f"{self._base_url}{path}"
        headers: dict[str, str] = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._api_key}",
            "Notion-Version": self._notion_version,
        }
        body: bytes | None = None
        if payload is not None:
            body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
            headers["Content-Type"] = "application/json; charset=utf-8"

        request = Request(url=url, data=body, headers=headers, method=method)

        try:
            with urlopen(request, timeout=self._http_timeout_seconds) as response:
                raw_body = response.read().decode("utf-8", errors="replace")
        except HTTPError as exc:
            response_body = exc.read().decode("utf-8", errors="replace") if exc.fp else ""
            parsed = _decode_json_object(response_body)
            message = _extract_error_message(parsed) or response_body or str(exc)
            raise NotionApiError(
                f"Notion API request failed: {message}",
                status_code=exc.code,
            ) from exc
        except URLError as exc:
            raise NotionApiError(
                f"Notion request failed: {exc.reason}",
                status_code=None,
            ) from exc

        return _decode_json_object(raw_body)


def validate_category(category: str, registry: CategoryRegistry) -> str:
    """Return `category` if it is an exact configured name, else the fallback."""
    if registry.is_valid(category):
        return category

    LOGGER.warning('invalid category "%s", falling back to: %s', category, FALLBACK_CATEGORY)
    return FALLBACK_CATEGORY


def build_notion_page_url(page_id: str) -> str:
    return f"{NOTION_PAGE_URL_PREFIX}{page_id.replace('-', '')}"


class NotionPageWriter:
    def __init__(
        self,
        *,
        client: NotionPagesApi,
        database_id: str,
        registry: CategoryRegistry,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._client = client
        self._database_id = database_id
        self._registry = registry
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()

    def create_voice_note_page(self, data: VoiceNoteData) -> CreatePageResult:
        """Create one database page for a voice note.

        Never raises: any failure, including payload construction, is returned as
        `CreatePageResult.failed` carrying the error message.
        """
        try:
            category = validate_category(data.category, self._registry)
            payload = self._build_page_payload(data, category=category)
            response = self._client.create_page(payload)
            page_id = response.get("id")
            if not isinstance(page_id, str) or not page_id:
                raise NotionApiError(
                    "Notion response did not include a page id.",
                    status_code=None,
                )
        except Exception as exc:
            message = str(exc) or "Unknown error occurred"
            LOGGER.error("failed to create notion page error=%s", message, exc_info=True)
            self._telemetry.emit(
                "notion.page.create.error",
                error_type=type(exc).__name__,
                status_code=getattr(exc, "status_code", None),
            )
            return CreatePageResult.failed(message)

        page_url = build_notion_page_url(page_id)
        LOGGER.info("notion page created page_id=%s category=%s", page_id, category)
        self._telemetry.emit(
            "notion.page.create.finish",
            page_id=page_id,
            category=category,
            block_count=len(cast(list[Any], payload["children"])),
        )
        return CreatePageResult.succeeded(
            page_id=page_id,
            page_url=page_url,
            category_mapped=category,
        )

    def validate_database(self) -> bool:
        try:
            self._client.retrieve_database(self._database_id)
        except Exception:
            LOGGER.error(
                "failed to validate notion database database_id=%s",
                self._database_id,
                exc_info=True,
            )
            return False
        return True

    def _build_page_payload(self, data: VoiceNoteData, *, category: str) -> dict[str, object]:
        return {
            "parent": {"database_id": self._database_id},
            "icon": {"type": "emoji", "emoji": self._registry.icon(category)},
            "properties": {
                "Name": {"title": [_text_item(truncate_text(data.title, TITLE_MAX_LENGTH))]},
                "Summary": {
                    "rich_text": [_text_item(truncate_summary(data.summary, SUMMARY_MAX_LENGTH))]
                },
                "Category": {"select": {"name": category}},
                "Tags": {
                    "multi_select": [
                        {"name": truncate_text(tag, TAG_MAX_LENGTH)} for tag in data.tags
                    ]
                },
            },
            "children": [
                {
                    "object": "block",
                    "type": "paragraph",
                    "paragraph": {"rich_text": [_text_item(chunk)]},
                }
                for chunk in chunk_content(data.content, BLOCK_MAX_LENGTH)
            ],
        }


def _text_item(content: str) -> dict[str, object]:
    return {"type": "text", "text": {"content": content}}


def _decode_json_object(raw_body: str) -> dict[str, object]:
    if not raw_body.strip():
        return {}
    try:
        parsed = json.loads(raw_body)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, dict):
        parsed_dict = cast(dict[object, object], parsed)
        return {key: value for key, value in parsed_dict.items() if isinstance(key, str)}
    return {}


def _extract_error_message(payload: dict[str, object]) -> str | None:
    for key in ("message", "code"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
