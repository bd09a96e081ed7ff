"""Sparse term features computed locally from text.

Features are term frequencies normalised by the most frequent term, so the
heaviest term always weighs 1.0. Distinguished terms are the entity/fact
tokens of a text: words outside the stopword list capitalised mid-sentence,
or tokens carrying a digit (dates, amounts, room numbers). A capital at the
start of a sentence says nothing about the word, so it only counts when the
same word is also capitalised elsewhere in the text.
"""

import re
from collections import Counter

_TOKEN_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9'_\-]*")
_SENTENCE_BREAK_RE = re.compile(r"[.!?]['\")\]]*\s+$")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "did", "do",
        "does", "for", "from", "had", "has", "have", "he", "her", "him", "his",
        "i", "if", "in", "into", "is", "it", "its", "me", "my", "of", "on",
        "or", "our", "she", "so", "that", "the", "their", "them", "then",
        "there", "they", "this", "to", "was", "we", "were", "what", "when",
        "where", "which", "who", "will", "with", "you", "your",
    }
)


def _raw_tokens(text: str) -> list[str]:
    return [t.strip("'-_") for t in _TOKEN_RE.findall(text)]


def tokenize(text: str) -> list[str]:
    """Lowercase content tokens with stopwords removed."""
    tokens = []
    for raw in _raw_tokens(text):
        token = raw.lower()
        if token and token not in STOPWORDS:
            tokens.append(token)
    return tokens


def sparse_features(text: str) -> dict[str, float]:
    """Term -> weight map. Never fails; empty text yields an empty map."""
    counts = Counter(tokenize(text))
    if not counts:
        return {}
    peak = max(counts.values())
    return {term: count / peak for term, count in counts.items()}


def entity_terms(text: str) -> set[str]:
    """Distinguished entity/fact terms, lowercased."""
    terms = set()
    previous_end = 0
    for match in _TOKEN_RE.finditer(text):
        sentence_start = previous_end == 0 or bool(
            _SENTENCE_BREAK_RE.search(text[previous_end : match.start()])
        )
        previous_end = match.end()

        raw = match.group().strip("'-_")
        token = raw.lower()
        if not token or token in STOPWORDS:
            continue
        if any(ch.isdigit() for ch in raw):
            terms.add(token)
        elif raw[0].isupper() and not sentence_start:
            terms.add(token)
    return terms


def sparse_overlap(query: dict[str, float], fragment: dict[str, float]) -> float:
    """Weighted Jaccard similarity in [0, 1]."""
    if not query or not fragment:
        return 0.0
    numerator = 0.0
    denominator = 0.0
    for term in query.keys() | fragment.keys():
        q = query.get(term, 0.0)
        f = fragment.get(term, 0.0)
        numerator += min(q, f)
        denominator += max(q, f)
    return numerator / denominator if denominator > 0 else 0.0


def has_entity_match(query: dict[str, float], content: str) -> bool:
    """True when the query names one of the content's distinguished terms."""
    if not query:
        return False
    return bool(entity_terms(content) & query.keys())
