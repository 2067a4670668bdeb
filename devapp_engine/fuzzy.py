from __future__ import annotations

from typing import Sequence

from rapidfuzz import process
from rapidfuzz.distance import Levenshtein

DEFAULT_MAX_DISTANCE = 2


def _normalize(text: str) -> str:
    return " ".join(str(text).split()).lower()


def _keep_case(text: str) -> str:
    return " ".join(str(text).split())


def closest_match(
    text: str,
    choices: Sequence[str],
    *,
    max_distance: int = DEFAULT_MAX_DISTANCE,
    case_sensitive: bool = False,
) -> str | None:
    """Return the choice with the smallest edit distance to ``text``.

    Ties go to the earliest choice. Returns None when nothing is within
    ``max_distance`` edits. Surrounding/repeated whitespace is ignored.
    """
    if text is None or not choices:
        return None
    hit = process.extractOne(
        text,
        choices,
        scorer=Levenshtein.distance,
        processor=_keep_case if case_sensitive else _normalize,
        score_cutoff=max_distance,
    )
    if hit is None:
        return None
    return hit[0]


def distance(a: str, b: str) -> int:
    return Levenshtein.distance(a, b)
