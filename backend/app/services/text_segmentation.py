"""Length-bounding helpers for text that is written into Notion fields.

Notion rejects rich-text values above 2000 characters, and very long summaries
render poorly in database views. These helpers cut Burmese (and mixed
Burmese/English) text at the nearest word or clause boundary they can find.
"""

from __future__ import annotations

BURMESE_SENTENCE_END = "။"
BURMESE_CLAUSE_END = "၊"
ELLIPSIS = "..."

# Characters held back from the cut so combining marks of a Burmese syllable
# are less likely to be split from their base consonant.
SUMMARY_SAFETY_MARGIN = 10
SUMMARY_BOUNDARY_RATIO = 0.7
CHUNK_BOUNDARY_SEARCH_WINDOW = 200

DEFAULT_SUMMARY_LENGTH = 150
DEFAULT_CHUNK_SIZE = 1900


def truncate_summary(text: str, max_length: int = DEFAULT_SUMMARY_LENGTH) -> str:
    """Shorten `text` to roughly `max_length`, preferring a word or clause break.

    Text that already fits is returned unchanged. Otherwise the result is at most
    `max_length - 10 + 3` characters and always ends with an ellipsis.
    """
    if not text:
        return ""
    if len(text) <= max_length:
        return text

    safe_max_length = max_length - SUMMARY_SAFETY_MARGIN
    truncated = text[:safe_max_length]

    boundary = max(
        truncated.rfind(" "),
        truncated.rfind(BURMESE_SENTENCE_END),
        truncated.rfind(BURMESE_CLAUSE_END),
    )
    if boundary > safe_max_length * SUMMARY_BOUNDARY_RATIO:
        truncated = truncated[:boundary]

    return truncated.strip() + ELLIPSIS


def truncate_text(text: str, max_length: int) -> str:
    """Hard-cut `text` to exactly `max_length` characters including the ellipsis."""
    if not text or len(text) <= max_length:
        return text
    return text[: max_length - len(ELLIPSIS)] + ELLIPSIS


def chunk_content(text: str, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Split `text` into ordered chunks no longer than `max_chunk_size`.

    Each cut is placed just after the furthest Burmese full stop, Burmese comma,
    newline or space found in the last 200 characters before the limit; without
    one the text is hard-cut. Chunks and the remaining tail are stripped, so a
    little whitespace is lost at every cut.
    """
    if not text:
        return [""]
    if len(text) <= max_chunk_size:
        return [text]

    chunks: list[str] = []
    remaining = text
    search_start = max(0, max_chunk_size - CHUNK_BOUNDARY_SEARCH_WINDOW)

    while remaining:
        if len(remaining) <= max_chunk_size:
            chunks.append(remaining)
            break

        break_point = max_chunk_size
        # The boundary character itself must still fit inside the chunk.
        window = remaining[:max_chunk_size]
        boundaries = [
            position
            for position in (
                window.rfind(BURMESE_SENTENCE_END),
                window.rfind(BURMESE_CLAUSE_END),
                window.rfind("\n"),
                window.rfind(" "),
            )
            if position >= search_start
        ]
        if boundaries:
            break_point = max(boundaries) + 1

        chunks.append(remaining[:break_point].strip())
        remaining = remaining[break_point:].strip()

    return chunks
