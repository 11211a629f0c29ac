"""Build scored relationship edges for an element population.

Small populations get the exact pairwise matrix. Larger ones get a bounded
two-pass approximation: keyword clusters first, then comparisons spread
across element types in proportion to their population sizes.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from itertools import combinations

import numpy as np

from ..config import IndexConfig
from ..models import BuildResult, ElementRef, RelationshipEdge
from ..scoring import entropy, extract_key_terms, score_pair, token_counts
from .keywords import build_keyword_clusters
from .sampling import allocate_type_pair_budget, sample_pairs

logger = logging.getLogger(__name__)

# Share of the comparison budget spent inside keyword clusters.
CLUSTER_BUDGET_RATIO = 0.6


@dataclass(frozen=True)
class ScoredElement:
    """Statistical features of one element's content."""
    id: str
    type: str
    tokens: frozenset[str]
    entropy: float
    keywords: tuple[str, ...]


def prepare_element(ref: ElementRef, text: str, config: IndexConfig) -> ScoredElement:
    counts = token_counts(text, min_length=config.nlp.min_token_length)
    return ScoredElement(
        id=ref.id,
        type=ref.type,
        tokens=frozenset(counts),
        entropy=entropy(counts),
        keywords=tuple(extract_key_terms(counts, limit=config.nlp.keywords_per_element)),
    )


def prepare_elements(items, config: IndexConfig) -> list[ScoredElement]:
    """Turn ``(ElementRef, text)`` pairs into scored elements, sorted by id."""
    elements = [prepare_element(ref, text, config) for ref, text in items]
    elements.sort(key=lambda e: e.id)
    return elements


class RelationshipBuilder:
    """Produces a bounded-cost edge set for a population of elements."""

    def __init__(self, config: IndexConfig, seed: int | None = None):
        self.config = config
        self.seed = seed
        self._reset()

    def _reset(self) -> None:
        self._compared: set[tuple[str, str]] = set()
        self._edges: list[RelationshipEdge] = []
        self._by_type_pair: Counter = Counter()
        self._since_yield = 0

    def strategy_for(self, element_count: int) -> str:
        if element_count <= self.config.performance.max_elements_for_full_matrix:
            return "full"
        return "sampled"

    async def build(self, elements: list[ScoredElement], seed: int | None = None) -> BuildResult:
        """Compare elements and return edges at or above the similarity threshold."""
        self._reset()
        by_id = {e.id: e for e in elements}
        if len(by_id) != len(elements):
            raise ValueError("Duplicate element ids in relationship build")

        strategy = self.strategy_for(len(elements))
        logger.info(
            "Starting relationship build: %d elements, strategy=%s",
            len(elements),
            strategy,
        )

        cluster_comparisons = 0
        if strategy == "full":
            for a, b in combinations(elements, 2):
                await self._compare(a, b)
        else:
            rng = np.random.default_rng(self.seed if seed is None else seed)
            budget = self.config.performance.max_similarity_comparisons
            cluster_comparisons = await self._cluster_pass(elements, by_id, int(budget * CLUSTER_BUDGET_RATIO), rng)
            await self._cross_type_pass(elements, by_id, budget - cluster_comparisons, rng)

        threshold = self.config.performance.similarity_threshold
        edges = [e for e in self._edges if e.score >= threshold]
        edges.sort(key=lambda e: (-e.score, e.from_id, e.to_id))

        logger.info(
            "Relationship build finished: %d comparisons, %d edges kept (threshold %.2f)",
            len(self._compared),
            len(edges),
            threshold,
        )
        return BuildResult(
            edges=edges,
            comparisons=len(self._compared),
            strategy=strategy,
            cluster_comparisons=cluster_comparisons,
            comparisons_by_type_pair=Counter(self._by_type_pair),
        )

    async def _cluster_pass(self, elements, by_id, budget: int, rng: np.random.Generator) -> int:
        """Compare pairs inside keyword clusters, smallest cluster first."""
        limit = self.config.sampling.cluster_sample_limit
        performed = 0
        for cluster in build_keyword_clusters(elements):
            if performed >= budget:
                break
            members = list(cluster.members)
            if len(members) > limit:
                picked = rng.choice(len(members), size=limit, replace=False)
                members = sorted(members[i] for i in picked)
            for id_a, id_b in combinations(members, 2):
                if performed >= budget:
                    break
                if (id_a, id_b) in self._compared:
                    continue
                await self._compare(by_id[id_a], by_id[id_b])
                performed += 1

        logger.debug("Keyword cluster pass: %d of %d comparisons used", performed, budget)
        return performed

    async def _cross_type_pass(self, elements, by_id, budget: int, rng: np.random.Generator) -> int:
        """Sample comparisons across type pairs in proportion to population products."""
        if budget <= 0:
            logger.debug("Skipping cross-type pass, comparison budget exhausted")
            return 0

        members: dict[str, list[str]] = {}
        for e in elements:
            members.setdefault(e.type, []).append(e.id)
        populations = {t: len(ids) for t, ids in members.items()}

        sampling = self.config.sampling
        quotas = allocate_type_pair_budget(
            populations, budget, sampling.base_sample_size, sampling.sample_ratio
        )
        logger.debug("Proportional sampling quotas: %s", {f"{a}|{b}": q for (a, b), q in quotas.items()})

        performed = 0
        for (type_a, type_b), quota in sorted(quotas.items()):
            pairs = sample_pairs(rng, members[type_a], members[type_b], quota, self._compared)
            for id_a, id_b in pairs:
                if performed >= budget:
                    break
                await self._compare(by_id[id_a], by_id[id_b])
                performed += 1
        return performed

    async def _compare(self, a: ScoredElement, b: ScoredElement) -> None:
        edge = score_pair(a.id, a.tokens, a.entropy, b.id, b.tokens, b.entropy, self.config)
        self._compared.add(edge.key)
        self._edges.append(edge)
        self._by_type_pair[type_pair_key(a.type, b.type)] += 1

        self._since_yield += 1
        if self._since_yield >= self.config.performance.similarity_batch_size:
            self._since_yield = 0
            await asyncio.sleep(0)


def type_pair_key(type_a: str, type_b: str) -> str:
    return "|".join(sorted((type_a, type_b)))
