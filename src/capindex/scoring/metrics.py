"""Jaccard similarity, Shannon entropy and their combination into bands.

Key observations behind the bands:

- High Jaccard with moderate-to-high entropy: same technical domain.
- High Jaccard with low entropy: overlap comes from common words.
- Low Jaccard with similar entropy: different domains, equally complex.
"""

import math
from collections import Counter
from collections.abc import Iterable, Mapping, Set

from ..config import IndexConfig
from ..models import Band, RelationshipEdge

# Entropy gap (bits) under which two elements count as equally complex.
ENTROPY_SIMILARITY_TOLERANCE = 1.0


def jaccard(tokens_a: Set[str], tokens_b: Set[str]) -> float:
    """|A ∩ B| / |A ∪ B|, defined as 0.0 when both sets are empty."""
    if not tokens_a and not tokens_b:
        return 0.0
    union = len(tokens_a | tokens_b)
    return len(tokens_a & tokens_b) / union


def entropy(counts: Mapping[str, int] | Iterable[str]) -> float:
    """Shannon entropy in bits of a token frequency distribution."""
    if not isinstance(counts, Mapping):
        counts = Counter(counts)
    total = sum(counts.values())
    if total == 0:
        return 0.0

    h = 0.0
    for count in counts.values():
        if count <= 0:
            continue
        p = count / total
        h -= p * math.log2(p)
    # -0.0 for a single repeated token
    return abs(h)


def classify(jaccard_score: float, entropy_a: float, entropy_b: float, config: IndexConfig) -> Band:
    """Combine a Jaccard score and two entropies into a qualitative band."""
    bands = config.entropy_bands
    thresholds = config.jaccard_thresholds

    if jaccard_score >= thresholds.high:
        if all(bands.moderate <= e <= bands.high for e in (entropy_a, entropy_b)):
            return Band.SAME_DOMAIN
        if entropy_a < bands.low or entropy_b < bands.low:
            return Band.COMMON_WORD_OVERLAP
    if jaccard_score <= thresholds.low and abs(entropy_a - entropy_b) < ENTROPY_SIMILARITY_TOLERANCE:
        return Band.DISTINCT_DOMAINS
    return Band.UNCLASSIFIED


def combined_score(jaccard_score: float, entropy_a: float, entropy_b: float, config: IndexConfig) -> float:
    """Relevance score in [0, 1] used to decide which edges to keep."""
    bands = config.entropy_bands
    thresholds = config.jaccard_thresholds
    avg_entropy = (entropy_a + entropy_b) / 2

    if jaccard_score >= thresholds.high and avg_entropy >= bands.low:
        # 0 at 2 bits, 1 at 6 bits and above
        entropy_quality = min(1.0, max(0.0, (avg_entropy - 2.0) / 4.0))
        score = 0.7 + (jaccard_score - thresholds.high) * 0.5 + entropy_quality * 0.2
    elif jaccard_score >= thresholds.high:
        score = 0.3 + jaccard_score * 0.2
    elif jaccard_score >= thresholds.moderate and avg_entropy >= bands.low:
        score = 0.4 + jaccard_score * 0.4 + min(avg_entropy / 10, 1.0) * 0.2
    elif jaccard_score < thresholds.low and abs(entropy_a - entropy_b) < ENTROPY_SIMILARITY_TOLERANCE:
        score = jaccard_score * 0.5
    else:
        score = jaccard_score * 0.3

    return max(0.0, min(1.0, score))


def score_pair(
    id_a: str,
    tokens_a: Set[str],
    entropy_a: float,
    id_b: str,
    tokens_b: Set[str],
    entropy_b: float,
    config: IndexConfig,
) -> RelationshipEdge:
    """Score two prepared elements and return the (unfiltered) edge."""
    j = jaccard(tokens_a, tokens_b)
    return RelationshipEdge.create(
        id_a,
        id_b,
        jaccard=j,
        entropy_a=entropy_a,
        entropy_b=entropy_b,
        band=classify(j, entropy_a, entropy_b, config),
        score=combined_score(j, entropy_a, entropy_b, config),
    )
