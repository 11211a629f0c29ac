"""Language-agnostic tokenization.

No stop-word lists: common words are discounted later through entropy, so
the same code handles any script.
"""

import math
import unicodedata
from collections import Counter
from collections.abc import Iterable, Mapping

_KEPT_PUNCTUATION = frozenset("-_")


def _normalize_char(ch: str) -> str:
    if ch.isspace() or ch in _KEPT_PUNCTUATION:
        return ch
    # Unicode letters (L*) and numbers (N*) survive in every script
    if unicodedata.category(ch)[0] in ("L", "N"):
        return ch
    return " "


def _tokens(text: str, min_length: int) -> list[str]:
    text = unicodedata.normalize("NFKC", text or "").lower()
    cleaned = "".join(_normalize_char(ch) for ch in text)
    return [tok for tok in cleaned.split() if len(tok) >= min_length]


def tokenize(text: str, min_length: int = 1) -> frozenset[str]:
    """Return the set of tokens in ``text`` (duplicates collapsed)."""
    return frozenset(_tokens(text, min_length))


def token_counts(text: str, min_length: int = 1) -> Counter:
    """Return token frequencies for ``text``."""
    return Counter(_tokens(text, min_length))


def extract_key_terms(counts: Mapping[str, int] | Iterable[str], limit: int = 10) -> list[str]:
    """Pick the tokens contributing most to the entropy of a distribution.

    A token's contribution ``-p * log2(p)`` peaks for tokens that are frequent
    without dominating the text, which makes them good clustering keywords.
    """
    if not isinstance(counts, Mapping):
        counts = Counter(counts)
    total = sum(counts.values())
    if total == 0:
        return []

    contributions = []
    for token, count in counts.items():
        p = count / total
        contributions.append((-p * math.log2(p) if p < 1 else 0.0, token))

    contributions.sort(key=lambda c: (-c[0], c[1]))
    return [token for _, token in contributions[:limit]]
