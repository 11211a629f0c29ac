"""Keyword clusters for the first pass of sampled relationship discovery."""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Keywords shared by more than this share of elements never form a cluster.
MAX_KEYWORD_SHARE = 0.5


@dataclass(frozen=True)
class KeywordCluster:
    keyword: str
    members: tuple[str, ...]

    @property
    def size(self) -> int:
        return len(self.members)


def build_keyword_clusters(elements, max_share: float = MAX_KEYWORD_SHARE) -> list[KeywordCluster]:
    """Group element ids by shared keyword, smallest clusters first.

    ``elements`` are objects with ``id`` and ``keywords`` attributes. A keyword
    found in fewer than two elements, or in more than ``max_share`` of all
    elements, is dropped: a ubiquitous term would otherwise collapse the
    population into one mega-cluster.
    """
    groups: dict[str, set[str]] = {}
    for element in elements:
        for keyword in element.keywords:
            groups.setdefault(keyword.lower(), set()).add(element.id)

    total = len(elements)
    limit = total * max_share
    clusters = [
        KeywordCluster(keyword, tuple(sorted(members)))
        for keyword, members in groups.items()
        if 2 <= len(members) <= limit
    ]
    clusters.sort(key=lambda c: (c.size, c.keyword))

    logger.debug(
        "Keyword clusters built: %d keywords, %d significant, largest %d",
        len(groups),
        len(clusters),
        clusters[-1].size if clusters else 0,
    )
    return clusters
