"""
Location string normalization and matching helpers.

Free-text location strings come from external calendar events and from
reservation requests. These helpers turn a raw string into comparable
segments and compute advisory suggestions for strings that match no
known location.

Matching rules:
- A raw string is split on ',' and ';' into independent segments
- Two strings match automatically only when their normalized forms are equal
- Containment and similarity are used for suggestions only
"""

import re
from difflib import SequenceMatcher
from typing import Dict, Iterable, List, Optional, Tuple


SEPARATOR_PATTERN = re.compile(r"[,;]")
APOSTROPHE_PATTERN = re.compile(r"['’]")
NON_ALNUM_PATTERN = re.compile(r"[^a-z0-9 ]+")
WHITESPACE_PATTERN = re.compile(r"\s+")

# Long form -> canonical short form
ABBREVIATIONS = {
    "conference": "conf",
    "room": "rm",
    "floor": "fl",
    "building": "bldg",
    "auditorium": "aud",
}

SUGGESTION_LIMIT = 5
SUGGESTION_MIN_SIMILARITY = 0.6


def split_location_string(raw: Optional[str]) -> List[str]:
    """
    Split a raw location string into trimmed, non-empty segments.

    Example:
        >>> split_location_string("Main Chapel, Room 402;")
        ['Main Chapel', 'Room 402']
    """
    if not raw:
        return []
    segments = (segment.strip() for segment in SEPARATOR_PATTERN.split(raw))
    return [segment for segment in segments if segment]


def normalize_location(value: Optional[str]) -> str:
    """
    Normalize a single location segment for comparison.

    Lower-cases, removes apostrophes, turns other punctuation into spaces,
    collapses whitespace and canonicalizes common abbreviations. A room
    marker directly followed by a number is dropped, so "Room 402" and
    "402" compare equal.

    Example:
        >>> normalize_location("Conference Room 402")
        'conf 402'
        >>> normalize_location("Conf 402")
        'conf 402'
    """
    if not value:
        return ""
    text = APOSTROPHE_PATTERN.sub("", value.lower())
    text = NON_ALNUM_PATTERN.sub(" ", text)
    tokens = [ABBREVIATIONS.get(token, token) for token in WHITESPACE_PATTERN.split(text.strip()) if token]

    result = []
    for index, token in enumerate(tokens):
        if token == "rm" and index + 1 < len(tokens) and any(c.isdigit() for c in tokens[index + 1]):
            continue
        result.append(token)
    return " ".join(result)


def similarity(left: str, right: str) -> float:
    """Similarity ratio in [0, 1] between two normalized strings."""
    if not left or not right:
        return 0.0
    return SequenceMatcher(None, left, right).ratio()


def score_candidate(normalized: str, candidate: str) -> float:
    """
    Confidence that ``candidate`` is what ``normalized`` refers to.

    Containment in either direction scores at least 0.75; otherwise the
    plain similarity ratio is used. Exact matches are never scored here
    because they resolve automatically.
    """
    ratio = similarity(normalized, candidate)
    if normalized and candidate and (normalized in candidate or candidate in normalized):
        return max(ratio, 0.75)
    return ratio


def suggest_locations(
    normalized: str,
    candidates: Iterable[Tuple[int, Iterable[str]]],
    limit: int = SUGGESTION_LIMIT,
) -> List[Dict]:
    """
    Rank locations that might match an unresolved segment.

    Args:
        normalized: Normalized unresolved segment
        candidates: (location_id, match_strings) pairs of approved locations
        limit: Maximum number of suggestions

    Returns:
        List of {location_id, matched, confidence} sorted by confidence
    """
    suggestions = []
    for location_id, strings in candidates:
        best_score = 0.0
        best_string = None
        for string in strings:
            candidate = normalize_location(string)
            score = score_candidate(normalized, candidate)
            if score > best_score:
                best_score = score
                best_string = string
        if best_score >= SUGGESTION_MIN_SIMILARITY:
            suggestions.append({
                "location_id": location_id,
                "matched": best_string,
                "confidence": round(best_score, 3),
            })

    suggestions.sort(key=lambda s: (-s["confidence"], s["location_id"]))
    return suggestions[:limit]
