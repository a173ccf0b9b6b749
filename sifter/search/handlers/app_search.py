"""
App Search Handler - Fuzzy ranking of indexed applications.

An entry qualifies when the query is a (case-insensitive) subsequence of
its name or its description. Qualifying fields are scored with rapidfuzz
partial_ratio plus a bonus for prefix and word-start matches, so "fir"
puts "Firefox Web Browser" ahead of "File Manager".

Name matches always win over description matches: when the name
qualifies its score is used, otherwise the description score is halved.
"""

from typing import Optional, Sequence

from rapidfuzz import fuzz, utils

from sifter.search.router import AppResult

PREFIX_BONUS = 100.0
WORD_START_BONUS = 50.0
DESCRIPTION_WEIGHT = 0.5


def is_subsequence(query: str, text: str) -> bool:
    """True if every character of query appears in text, in order."""
    remaining = iter(text.casefold())
    return all(ch in remaining for ch in query.casefold())


def _field_score(query: str, text: str) -> Optional[float]:
    if not text or not is_subsequence(query, text):
        return None

    score = fuzz.partial_ratio(query, text, processor=utils.default_process)
    folded_query, folded_text = query.casefold(), text.casefold()
    if folded_text.startswith(folded_query):
        score += PREFIX_BONUS
    elif any(word.startswith(folded_query) for word in folded_text.split()):
        score += WORD_START_BONUS
    return score


def score(entry, query: str) -> Optional[float]:
    """
    Score an index entry against a query.

    Returns:
        The score, or None if neither name nor description matches
    """
    name_score = _field_score(query, entry.display_name)
    if name_score is not None:
        return name_score

    description_score = _field_score(query, entry.description)
    if description_score is not None:
        return description_score * DESCRIPTION_WEIGHT
    return None


def rank(entries: Sequence, query: str, limit: int) -> list[AppResult]:
    """
    Rank entries for a query, best first.

    Equal scores keep their index order (the sort is stable). A blank
    query skips scoring and returns the first `limit` entries.
    """
    query = query.strip()
    if not query:
        return [AppResult(entry, 0.0) for entry in entries[:limit]]

    scored = []
    for entry in entries:
        entry_score = score(entry, query)
        if entry_score is not None:
            scored.append(AppResult(entry, entry_score))

    scored.sort(key=lambda result: result.score, reverse=True)
    return scored[:limit]


class AppSearchHandler:
    """Search the application index."""

    name = "app_search"

    def __init__(self, index_service, max_results: int = 64):
        self.index_service = index_service
        self.max_results = max_results

    def get_results(self, query: str) -> list[AppResult]:
        # One snapshot per query; a concurrent rebuild swaps in a new index
        index = self.index_service.current
        return rank(index.entries, query, self.max_results)
