from __future__ import annotations

import re

from .schema import SearchResult

RERANK_BOOST_FACTOR = 0.1

STOP_WORDS = frozenset(
    """
    a an and are as at be by for from has he in is it its of on or that the
    to was were will with this their they have been would could should what
    when where which who how can do does did you your we our i my me if then
    than but not
    """.split()
)

_NON_ALPHANUMERIC = re.compile(r"[^a-z0-9\s]")


def extract_keywords(text: str) -> list[str]:
    """Lowercased unique keywords, without stop words or words of two letters or fewer."""
    words = _NON_ALPHANUMERIC.sub(" ", text.lower()).split()
    return list(dict.fromkeys(word for word in words if len(word) > 2 and word not in STOP_WORDS))


def rerank_by_keywords(
    results: list[SearchResult],
    query: str,
    boost_factor: float = RERANK_BOOST_FACTOR,
) -> list[SearchResult]:
    """Boost results by the share of query keywords they contain, then re-sort.

    Each score grows by ``overlap_fraction * boost_factor``, so a result never
    gains more than ``boost_factor`` and never loses score. Results are
    adjusted in place; the re-sort is stable.

    Args:
        results: Similarity-ranked search results.
        query: The user's question.
        boost_factor: Maximum boost for full keyword overlap.

    Returns:
        The same result objects ordered by adjusted score. Returned unchanged
        when the query has no keywords.
    """
    query_keywords = extract_keywords(query)
    if not query_keywords:
        return results

    for result in results:
        result_keywords = set(extract_keywords(result.content)) | set(extract_keywords(result.heading))
        matches = sum(1 for keyword in query_keywords if keyword in result_keywords)
        result.score += (matches / len(query_keywords)) * boost_factor

    return sorted(results, key=lambda result: result.score, reverse=True)
