"""Stop name normalization.

Bus Time names a stop after its two cross streets, e.g.
``"WLMSBRG BRDG PLZ/NSTRND AV"``, while nearby-stop lookups spell the same
place ``"NOSTRAND AV/WILLIAMSBURG BRIDGE PLAZA"``. ``normalize_into_streets``
reduces both to the same pair of street tokens.
"""
import re
from typing import List, Sequence

SERVICE_PREFIX = re.compile(r"^SBS\s+")
ROUTE_PREFIX = re.compile(r"^[A-Z]\d+\s+")

ABBREVIATIONS = [
    ("WLMSBRG", "WILLIAMSBURG"),
    ("BRDG", "BRIDGE"),
    ("PLZ", "PLAZA"),
    ("NSTRND", "NOSTRAND"),
    ("RGRS", "ROGERS"),
    ("MKR", "MEEKER"),
    ("AV", "AVENUE"),
    ("ST", "STREET"),
]
_ABBREVIATION_PATTERNS = [
    (re.compile(rf"\b{abbr}\b", re.IGNORECASE), full) for abbr, full in ABBREVIATIONS
]

# applied in order, each anchored at the end of the segment
STREET_SUFFIXES = [
    re.compile(r"(avenue|ave|av)$"),
    re.compile(r"(street|str|st)$"),
    re.compile(r"(road|rd)$"),
    re.compile(r"(place|pl)$"),
    re.compile(r"(boulevard|blvd)$"),
]
_WHITESPACE = re.compile(r"\s+")


def expand_abbreviations(name: str) -> str:
    for pattern, full in _ABBREVIATION_PATTERNS:
        name = pattern.sub(full, name)
    return name


def _street_token(segment: str) -> str:
    segment = segment.strip()
    for suffix in STREET_SUFFIXES:
        segment = suffix.sub("", segment)
    return _WHITESPACE.sub("", segment).strip()


def normalize_into_streets(name: str) -> List[str]:
    """Return the cross-street tokens of a stop name, in their original order."""
    name = ROUTE_PREFIX.sub("", SERVICE_PREFIX.sub("", name or ""))
    parts = expand_abbreviations(name).lower().split("/")
    return [token for token in (_street_token(part) for part in parts) if token]


def streets_match(a: Sequence[str], b: Sequence[str]) -> bool:
    """True when both token pairs name the same two streets, in either order."""
    if not a or not b:
        return False
    first_a, second_a = _pair(a)
    first_b, second_b = _pair(b)
    return (first_a == first_b and second_a == second_b) or (
        first_a == second_b and second_a == first_b
    )


def _pair(tokens: Sequence[str]):
    return tokens[0], tokens[1] if len(tokens) > 1 else None
