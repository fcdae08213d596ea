"""Recover a JSON object from free-form model output."""

import json
import re
from typing import Any

from loguru import logger


FENCED_JSON_PATTERN = re.compile(r"```json[ \t]*\r?\n(.*?)\r?\n[ \t]*```", re.DOTALL | re.IGNORECASE)


class ResponseParseError(ValueError):
    """Raised when no strategy recovers a JSON object from a response."""


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _first_brace_object(text: str) -> dict[str, Any] | None:
    """
    Decode the first ``{...}`` region that is a complete JSON object.

    Examples:
        >>> _first_brace_object('Sure! {"title": "Sky"} Hope this helps {x}')
        {'title': 'Sky'}

    """
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            parsed, _ = decoder.raw_decode(text, start)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            return parsed
        start = text.find("{", start + 1)
    return None


def extract_json_payload(text: str) -> dict[str, Any]:
    """
    Parse the structured part of a model response.

    Strategies, first success wins:
    1. a fenced code block labelled ``json``
    2. the first brace-delimited region that decodes to an object
    3. the whole response as JSON

    Raises:
        ResponseParseError: if none of the strategies yields a JSON object.

    """
    if match := FENCED_JSON_PATTERN.search(text):
        if (parsed := _loads_object(match.group(1))) is not None:
            logger.debug("response_parsed", strategy="fenced_block")
            return parsed
        logger.debug("fenced_block_not_json")

    if (parsed := _first_brace_object(text)) is not None:
        logger.debug("response_parsed", strategy="brace_region")
        return parsed

    if (parsed := _loads_object(text.strip())) is not None:
        logger.debug("response_parsed", strategy="whole_text")
        return parsed

    msg = "could not parse provider response as JSON"
    raise ResponseParseError(msg)
