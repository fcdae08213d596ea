"""Metadata record model and the normalizer every generated record passes through."""

from collections.abc import Mapping
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field


PLACEHOLDER_TITLE = "Untitled Image"
SHORT_TITLE_WARNING_CHARS = 100


class MetadataRecord(BaseModel):
    """Title, tags and optional token usage for one image."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    tags: list[str] = Field(default_factory=list)
    token_info: dict[str, int] | None = Field(default=None, alias="tokenInfo")


def normalize_metadata(
    raw: Mapping[str, Any] | MetadataRecord,
    max_title_chars: int,
    max_tags: int,
) -> MetadataRecord:
    """
    Repair a provider record so it satisfies the title and tag invariants.

    Rules, in order:
    - a missing, blank or non-string title becomes ``PLACEHOLDER_TITLE``
    - a missing or non-list ``tags`` becomes an empty list
    - tags are filtered to non-empty strings, trimmed, lowercased and de-duplicated
      (first occurrence wins)
    - the tag list is cut to the first ``max_tags`` entries

    Title length is not enforced; titles that look too short or too long are only logged.
    Never raises, and normalizing an already normalized record returns an equal record.

    Examples:
        >>> normalize_metadata({"title": "Cats", "tags": ["Cat", "cat ", "Dog"]}, 200, 5).tags
        ['cat', 'dog']

    """
    data = raw.model_dump() if isinstance(raw, MetadataRecord) else dict(raw)

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        logger.error("ai_returned_no_valid_title", received=type(title).__name__)
        title = PLACEHOLDER_TITLE

    raw_tags = data.get("tags")
    if not isinstance(raw_tags, (list, tuple)):
        logger.error("ai_returned_no_valid_tags", received=type(raw_tags).__name__)
        raw_tags = []

    tags = list(
        dict.fromkeys(
            tag.strip().lower() for tag in raw_tags if isinstance(tag, str) and tag.strip()
        ),
    )
    if len(tags) > max_tags:
        logger.debug("tags_truncated", received=len(tags), kept=max_tags)
        tags = tags[:max_tags]

    if len(title) < SHORT_TITLE_WARNING_CHARS:
        logger.warning("title_shorter_than_recommended", length=len(title))
    elif len(title) > max_title_chars:
        logger.warning("title_longer_than_limit", length=len(title), limit=max_title_chars)

    token_info = data.get("token_info", data.get("tokenInfo"))
    if isinstance(token_info, Mapping):
        token_info = {
            str(kind): count
            for kind, count in token_info.items()
            if isinstance(count, int) and not isinstance(count, bool)
        }
    else:
        token_info = None

    return MetadataRecord(title=title, tags=tags, token_info=token_info)
