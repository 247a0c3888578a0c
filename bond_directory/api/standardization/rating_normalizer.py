"""
Rating Normalizer - Canonical credit grades and their ranking

Maps free-text, multi-agency rating strings such as "CRISILAAA/STABLE",
"INDAA+CE" or "ICRAAAA/STABLE;CRISILAAA/STABLE" onto one grade of a fixed
ladder. Used when building bond records and when sorting served data, so
both functions here are total: they never raise.
"""

import re
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

UNRATED = "Unrated"
WITHDRAWN = "WITHDRAWN"
PP_MLD = "PP-MLD"

# Best to worst
GRADE_LADDER: Tuple[str, ...] = (
    "AAA", "AA+", "AA", "AA-",
    "A+", "A", "A-",
    "BBB+", "BBB", "BBB-",
    "BB+", "BB", "BB-",
    "B+", "B", "B-",
    "C+", "C", "C-",
    "D",
)

# Matching order: longest first so a prefix match prefers 'AA+' over 'AA' over 'A'
KNOWN_GRADES: Tuple[str, ...] = tuple(
    sorted(GRADE_LADDER, key=lambda grade: (-len(grade), GRADE_LADDER.index(grade)))
)

# Lower = better quality
GRADE_RANK: Mapping[str, int] = MappingProxyType({
    **{grade: position for position, grade in enumerate(GRADE_LADDER, start=1)},
    PP_MLD: 80,
    WITHDRAWN: 90,
    UNRATED: 99,
})
WORST_RANK = max(GRADE_RANK.values())

NOISE_RESULTS = frozenset({
    "WITHDRAWN",
    "ISSUERNOTCOOPERATING",
    "CISSUERNOTCOOPERATING",
    "PROVISIONALCAREWITHDRAWN",
    "INDWITHDRAWN",
})

UNRATED_TOKENS = frozenset({"UNRATED", "NOTRATED", "NR"})

AGENCY_PREFIXES: Tuple[str, ...] = tuple(sorted((
    "CRISIL", "ICRA", "CARE", "IVR", "BWR", "ACUITE", "SMERA", "BRICKWORK",
    "INDIARATINGS", "INDIARATING", "INFOMERICS", "CRISILBBL",
), key=len, reverse=True))

PROVISIONAL = "PROVISIONAL"
COUNTRY_PREFIX = "IND"

SUFFIXES_RE = re.compile(
    r"(CE|SO|RSO|STABLE|POSITIVE|NEGATIVE|WATCH|OUTLOOK|SUSPENSION|REAFFIRMED)$"
)
SUFFIX_PASSES = 3

_STRIP_RE = re.compile(r"[\s()*]+")


def _clean(raw: str) -> str:
    segment = raw.split(";", 1)[0]
    segment = segment.split("/", 1)[0]
    return _STRIP_RE.sub("", segment.upper())


def _strip_agency(value: str) -> str:
    if value.startswith(PROVISIONAL):
        value = value[len(PROVISIONAL):]
    for agency in AGENCY_PREFIXES:
        if value.startswith(agency):
            value = value[len(agency):]
            break
    if value.startswith(PROVISIONAL):
        value = value[len(PROVISIONAL):]
    return value


def _strip_suffixes(value: str) -> str:
    for _ in range(SUFFIX_PASSES):
        stripped = SUFFIXES_RE.sub("", value)
        if stripped == value:
            break
        value = stripped
    return value


def _match_grade(value: str) -> Optional[str]:
    if value in GRADE_LADDER:
        return value
    for grade in KNOWN_GRADES:
        if value.startswith(grade):
            return grade
    return None


def normalize_rating(raw: Any) -> Optional[str]:
    """
    Normalize a raw credit rating string to a canonical grade.

    Returns the grade ('AAA', 'AA+', ...), a sentinel ('WITHDRAWN', 'PP-MLD'),
    the cleaned text when nothing on the ladder matches, or None for empty input.
    """
    if raw is None:
        return None
    text = str(raw)
    if not text.strip():
        return None

    value = _clean(text)
    if not value:
        return None

    if value in NOISE_RESULTS:
        return WITHDRAWN
    if value in UNRATED_TOKENS:
        return UNRATED

    value = _strip_agency(value)

    if PP_MLD in value:
        return PP_MLD

    if value.startswith(COUNTRY_PREFIX):
        value = value[len(COUNTRY_PREFIX):]

    value = _strip_suffixes(value)

    grade = _match_grade(value)
    if grade:
        return grade

    return value or None


def get_rating_rank(grade: Optional[str]) -> int:
    """Numeric rank for a grade (lower = better); unknown grades rank worst"""
    if grade is None:
        return WORST_RANK
    return GRADE_RANK.get(grade, WORST_RANK)


def rating_sort_key(raw: Any) -> Tuple[int, str]:
    """Sort key ordering raw rating strings best-first"""
    grade = normalize_rating(raw)
    return get_rating_rank(grade), grade or ""


def is_investment_grade(grade: Optional[str]) -> bool:
    """True for BBB- and better"""
    return get_rating_rank(grade) <= GRADE_RANK["BBB-"]
