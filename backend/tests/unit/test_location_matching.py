"""
Unit tests for location string normalization and suggestions.
"""

import pytest

from backend.src.services.location_matching import (
    normalize_location,
    score_candidate,
    similarity,
    split_location_string,
    suggest_locations,
)


class TestSplitLocationString:
    """Tests for splitting raw location strings into segments."""

    def test_splits_on_commas_and_semicolons(self):
        assert split_location_string("Main Chapel, Room 402; Library") == [
            "Main Chapel",
            "Room 402",
            "Library",
        ]

    def test_drops_empty_segments(self):
        assert split_location_string(" ;Main Chapel,, ;") == ["Main Chapel"]

    @pytest.mark.parametrize("raw", [None, "", "  "])
    def test_empty_input(self, raw):
        assert split_location_string(raw) == []


class TestNormalizeLocation:
    """Tests for normalize_location."""

    def test_case_and_whitespace(self):
        assert normalize_location("  Main   CHAPEL ") == "main chapel"

    def test_apostrophes_removed(self):
        assert normalize_location("Rabbi's Study") == "rabbis study"
        assert normalize_location("Rabbi’s Study") == "rabbis study"

    def test_punctuation_becomes_space(self):
        assert normalize_location("Bldg-A/Floor.2") == "bldg a fl 2"

    def test_abbreviations_canonicalized(self):
        assert normalize_location("Conference Room 402") == "conf 402"
        assert normalize_location("Conf 402") == "conf 402"

    def test_room_marker_before_number_dropped(self):
        assert normalize_location("Room 402") == normalize_location("402")
        assert normalize_location("Rm 402") == "402"

    def test_room_marker_kept_before_words(self):
        assert normalize_location("Room A") == "rm a"

    def test_empty(self):
        assert normalize_location(None) == ""
        assert normalize_location("!!") == ""


class TestSuggestions:
    """Tests for advisory similarity suggestions."""

    def test_similarity_bounds(self):
        assert similarity("library", "library") == 1.0
        assert similarity("", "library") == 0.0

    def test_containment_scores_at_least_threshold(self):
        assert score_candidate("chapel", "main chapel") >= 0.75
        assert score_candidate("main chapel", "chapel") >= 0.75

    def test_suggest_ranks_by_confidence(self):
        candidates = [
            (1, ["Main Chapel"]),
            (2, ["Library"]),
            (3, ["Chapel"]),
        ]

        suggestions = suggest_locations("chapel", candidates)

        assert [s["location_id"] for s in suggestions] == [3, 1]
        assert suggestions[0]["confidence"] == 1.0
        assert suggestions[1]["matched"] == "Main Chapel"

    def test_suggest_respects_limit(self):
        candidates = [(i, [f"Classroom {i}"]) for i in range(1, 10)]

        suggestions = suggest_locations(normalize_location("Classroom"), candidates, limit=3)

        assert len(suggestions) == 3

    def test_no_suggestion_below_threshold(self):
        assert suggest_locations("youth lounge", [(1, ["Sanctuary"])]) == []
