"""Fuzzy relevance scoring shared by key, chain-name and global search."""

from __future__ import annotations

from typing import Iterable

from rapidfuzz.distance import JaroWinkler

SUBSTRING_BONUS_MEMORY = 0.2
SUBSTRING_BONUS_CHAIN = 0.3
CHAIN_NAME_FLOOR = 0.4
GLOBAL_SEARCH_FLOOR = 0.3
FUZZY_WINDOW = 100


def jaro_winkler(left: str, right: str) -> float:
    return JaroWinkler.similarity(left, right)


def score(text: str, query: str) -> float:
    """Relevance of ``query`` against a document, in ``[0, 1]``.

    Verbatim containment ranks highest, then partial word overlap, then a
    halved Jaro-Winkler similarity against the head of the text.
    """

    text = text.lower()
    query = query.lower()
    if not query.strip():
        return 0.0

    if query in text:
        return 0.9 + min(0.1, len(query) / len(text))

    words = query.split()
    matched = sum(1 for word in words if word in text)
    if matched:
        return 0.5 + 0.4 * (matched / len(words))

    return jaro_winkler(text[:FUZZY_WINDOW], query) * 0.5


def name_score(name: str, query: str, boost: float) -> float:
    """Score a short identifier such as a memory key or chain name."""

    name = name.lower()
    query = query.lower()
    bonus = boost if query in name else 0.0
    return min(1.0, jaro_winkler(name, query) + bonus)


def rank_names(
    names: Iterable[str],
    query: str,
    limit: int,
    *,
    boost: float,
    floor: float | None = None,
) -> list[tuple[str, float]]:
    """Score every name, drop those at or below ``floor`` if given, then truncate."""

    scored = [(name, name_score(name, query, boost)) for name in names]
    if floor is not None:
        scored = [item for item in scored if item[1] > floor]
    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored[: max(limit, 0)]


__all__ = [
    "CHAIN_NAME_FLOOR",
    "GLOBAL_SEARCH_FLOOR",
    "SUBSTRING_BONUS_CHAIN",
    "SUBSTRING_BONUS_MEMORY",
    "jaro_winkler",
    "name_score",
    "rank_names",
    "score",
]
