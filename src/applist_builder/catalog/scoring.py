"""
Fuzzy name scoring for catalog search.

Scores are additive bonuses for progressively weaker kinds of match,
minus a small penalty for every extra character in the name.
"""

import re

EXACT_MATCH_SCORE = 10000
PREFIX_BONUS = 5000
FIRST_WORD_BONUS = 3000
ALL_WORDS_BONUS = 2000
SUBSTRING_BONUS = 1000
WORD_PREFIX_BONUS = 500
SUBSEQUENCE_BONUS = 100
LENGTH_PENALTY_PER_CHAR = 0.1

MIN_QUERY_LENGTH = 2

_TOKEN_SPLIT = re.compile(r"[\s\-:_™®]+")


def normalize_query(query: str) -> str:
    return query.strip().lower()


def tokenize(text: str) -> list[str]:
    """Split lowercase text into words on whitespace and name punctuation."""
    return [token for token in _TOKEN_SPLIT.split(text) if token]


def is_subsequence(text: str, chars: str) -> bool:
    """True if every character of ``chars`` appears in ``text`` in order."""
    remaining = iter(text)
    return all(char in remaining for char in chars)


def score_name(name: str, query: str) -> int:
    """
    Score how well ``name`` matches an already normalized ``query``.

    An exact (case-insensitive) match scores ``EXACT_MATCH_SCORE``; any
    other match scores strictly less, so exact hits always rank first.

    Args:
        name: Candidate app name as published
        query: Lowercased, trimmed search text

    Returns:
        int: Score, 0 meaning no useful match
    """
    if not name or not query:
        return 0

    name_lower = name.lower()
    if name_lower == query:
        return EXACT_MATCH_SCORE

    score = 0.0
    name_words = tokenize(name_lower)
    query_words = tokenize(query)

    if name_lower.startswith(query):
        score += PREFIX_BONUS

    if name_words and name_words[0].startswith(query):
        score += FIRST_WORD_BONUS

    if len(query_words) > 1 and all(
        any(word.startswith(query_word) for word in name_words) for query_word in query_words
    ):
        score += ALL_WORDS_BONUS

    if query in name_lower:
        score += SUBSTRING_BONUS

    if is_subsequence(name_lower, query):
        score += SUBSEQUENCE_BONUS

    if any(word.startswith(query) for word in name_words):
        score += WORD_PREFIX_BONUS

    if score <= 0:
        return 0

    score -= max(0, len(name_lower) - len(query)) * LENGTH_PENALTY_PER_CHAR
    return max(0, min(int(score), EXACT_MATCH_SCORE - 1))
