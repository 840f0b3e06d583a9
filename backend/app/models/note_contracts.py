from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, create_model

TITLE_MAX_LENGTH = 100
TAGS_MAX_COUNT = 10


@dataclass(frozen=True)
class VoiceNoteData:
    title: str
    summary: str
    content: str
    category: str
    tags: tuple[str, ...]


@dataclass(frozen=True)
class CreatePageResult:
    success: bool
    page_id: str | None = None
    page_url: str | None = None
    category_mapped: str | None = None
    error: str | None = None

    @classmethod
    def succeeded(cls, *, page_id: str, page_url: str, category_mapped: str) -> CreatePageResult:
        return cls(
            success=True,
            page_id=page_id,
            page_url=page_url,
            category_mapped=category_mapped,
        )

    @classmethod
    def failed(cls, error: str) -> CreatePageResult:
        return cls(success=False, error=error)


class ProcessedNote(BaseModel):
    """Base for the per-request schema built by `build_processed_note_schema`."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    title: str
    content: str
    summary: str
    category: str
    tags: list[str]


def build_processed_note_schema(
    category_names: Sequence[str],
    *,
    summary_max_length: int = 200,
) -> type[ProcessedNote]:
    if not category_names:
        raise ValueError("At least one category must be configured.")

    category_type: Any = Literal[tuple(category_names)]  # type: ignore[valid-type]
    return create_model(
        "ProcessedNote",
        __base__=ProcessedNote,
        title=(
            str,
            Field(max_length=TITLE_MAX_LENGTH, description="Title in the speaker's language(s)."),
        ),
        content=(str, Field(min_length=1, description="Cleaned Burmese transcription.")),
        summary=(str, Field(min_length=1, max_length=summary_max_length)),
        category=(category_type, Field(description="Exact configured category name.")),
        tags=(list[str], Field(min_length=1, max_length=TAGS_MAX_COUNT)),
    )


class ProcessedNoteWithMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    title: str
    content: str
    summary: str
    category: str
    tags: list[str]
    category_icon: str = Field(alias="categoryIcon")
    notion_url: str = Field(alias="notionUrl")


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    username: str | None = Field(default=None, max_length=200)
    password: str | None = Field(default=None, max_length=1024)


class NotionTestResponse(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    success: bool
    message: str
    page_id: str = Field(alias="pageId")
    page_url: str = Field(alias="pageUrl")
    category_mapped: str = Field(alias="categoryMapped")
    note: str
