"""Tests for the metadata normalizer applied to every provider response."""

from typing import Any

import pytest

from image_metadata_cli.metadata import PLACEHOLDER_TITLE, MetadataRecord, normalize_metadata


LONG_TITLE = "Golden retriever puppy running across a sunlit meadow with wildflowers " * 2


def test_normalize_dedupes_case_insensitively_then_truncates_in_first_seen_order() -> None:
    """Duplicates collapse to their first occurrence before the list is cut to max_tags."""
    raw = {"title": LONG_TITLE, "tags": ["Cat", "cat ", "Dog", "Bird", "Fish", "Lion", "Tiger"]}

    record = normalize_metadata(raw, max_title_chars=200, max_tags=5)

    assert record.tags == ["cat", "dog", "bird", "fish", "lion"]


def test_normalize_drops_blank_and_non_string_tags() -> None:
    """Only non-empty strings survive, trimmed and lowercased."""
    raw = {"title": LONG_TITLE, "tags": ["  Sunset ", "", "   ", None, 42, ["nested"], "BEACH"]}

    record = normalize_metadata(raw, max_title_chars=200, max_tags=45)

    assert record.tags == ["sunset", "beach"]


@pytest.mark.parametrize("title", [None, "", "   ", 123, ["Sky"]])
def test_normalize_replaces_invalid_title_with_placeholder(title: Any) -> None:  # noqa: ANN401
    """Missing, blank or non-string titles fall back to the placeholder."""
    record = normalize_metadata({"title": title, "tags": ["sky"]}, 200, 45)

    assert record.title == PLACEHOLDER_TITLE


def test_normalize_handles_missing_keys() -> None:
    """An empty payload still yields a usable record."""
    record = normalize_metadata({}, 200, 45)

    assert record.title == PLACEHOLDER_TITLE
    assert record.tags == []
    assert record.token_info is None


@pytest.mark.parametrize("tags", [None, "cat, dog", {"cat": 1}, 7])
def test_normalize_replaces_non_list_tags_with_empty_list(tags: Any) -> None:  # noqa: ANN401
    """Tags that are not a sequence are discarded rather than split or coerced."""
    record = normalize_metadata({"title": LONG_TITLE, "tags": tags}, 200, 45)

    assert record.tags == []


def test_normalize_does_not_truncate_long_titles() -> None:
    """Title length is advisory only."""
    title = "x" * 300

    record = normalize_metadata({"title": title, "tags": []}, max_title_chars=200, max_tags=45)

    assert record.title == title


def test_normalize_keeps_integer_token_info() -> None:
    """Token usage passes through; non-integer and boolean counts are dropped."""
    raw = {
        "title": LONG_TITLE,
        "tags": ["a"],
        "tokenInfo": {"prompt": 120, "total": 180, "note": "cached", "cached": True},
    }

    record = normalize_metadata(raw, 200, 45)

    assert record.token_info == {"prompt": 120, "total": 180}


def test_normalize_is_idempotent() -> None:
    """Normalizing a normalized record changes nothing."""
    raw = {
        "title": None,
        "tags": ["Cat", "cat ", " Dog", "BIRD", "", "fish", "Lion", "tiger"],
        "tokenInfo": {"prompt": 1, "completion": 2, "total": 3},
    }

    once = normalize_metadata(raw, 200, 5)
    twice = normalize_metadata(once, 200, 5)

    assert twice == once


def test_normalize_output_satisfies_tag_invariants() -> None:
    """No case-insensitive duplicates and never more than max_tags."""
    raw = {"title": "Short", "tags": [f"Tag{i % 7} " for i in range(30)] + ["TAG1", "tag2"]}

    record = normalize_metadata(raw, 200, 4)

    folded = [tag.strip().casefold() for tag in record.tags]
    assert len(folded) == len(set(folded))
    assert len(record.tags) <= 4


def test_metadata_record_accepts_token_info_alias() -> None:
    """The camelCase tokenInfo key populates token_info."""
    record = MetadataRecord.model_validate({"title": "t", "tags": [], "tokenInfo": {"total": 5}})

    assert record.token_info == {"total": 5}
