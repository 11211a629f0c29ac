"""Statistical scoring: tokenization, Jaccard overlap and entropy bands."""

from .metrics import classify, combined_score, entropy, jaccard, score_pair
from .tokenizer import extract_key_terms, token_counts, tokenize

__all__ = [
    "classify",
    "combined_score",
    "entropy",
    "extract_key_terms",
    "jaccard",
    "score_pair",
    "token_counts",
    "tokenize",
]
