"""Proportional comparison budgets across element types.

Budget for a pair of types follows the share of all element pairs it
represents (``2 * pa * pb / N**2``, or ``pa**2 / N**2`` within one type), so a
small type still gets comparisons against a large one in proportion to the
pairs it actually takes part in.
"""

import math
from collections.abc import Mapping

import numpy as np

TypePair = tuple[str, str]


def type_pairs(populations: Mapping[str, int]) -> list[TypePair]:
    types = sorted(t for t, n in populations.items() if n > 0)
    return [(a, b) for i, a in enumerate(types) for b in types[i:]]


def available_pairs(populations: Mapping[str, int], pair: TypePair) -> int:
    a, b = pair
    if a == b:
        return populations[a] * (populations[a] - 1) // 2
    return populations[a] * populations[b]


def pair_weight(populations: Mapping[str, int], pair: TypePair) -> float:
    total = sum(populations.values())
    if total == 0:
        return 0.0
    a, b = pair
    product = populations[a] * populations[b]
    if a != b:
        product *= 2
    return product / (total * total)


def allocate_type_pair_budget(
    populations: Mapping[str, int],
    budget: int,
    base_sample_size: int,
    sample_ratio: float,
) -> dict[TypePair, int]:
    """Split ``budget`` comparisons across type pairs by population product.

    Each type pair is capped at ``max(base_sample_size, ceil(sample_ratio *
    available))`` and never above its number of distinct pairs. Budget a cap
    frees up is handed to the remaining type pairs in proportion.
    """
    pairs = type_pairs(populations)
    weights = {p: pair_weight(populations, p) for p in pairs}
    caps = {}
    for p in pairs:
        available = available_pairs(populations, p)
        caps[p] = min(available, max(base_sample_size, math.ceil(sample_ratio * available)))

    quotas = {p: 0 for p in pairs}
    active = [p for p in pairs if caps[p] > 0 and weights[p] > 0]

    # every round either spends the budget or retires at least one capped pair
    for _ in range(len(pairs) + 1):
        remaining = budget - sum(quotas.values())
        if remaining <= 0 or not active:
            break
        total_weight = sum(weights[p] for p in active)
        shares = {p: remaining * weights[p] / total_weight for p in active}
        grants = _largest_remainder(shares, remaining)

        capped = False
        for p in active:
            room = caps[p] - quotas[p]
            if grants[p] >= room:
                quotas[p] += room
                capped = True
            else:
                quotas[p] += grants[p]
        active = [p for p in active if quotas[p] < caps[p]]
        if not capped:
            break

    return {p: q for p, q in quotas.items() if q > 0}


def _largest_remainder(shares: dict[TypePair, float], total: int) -> dict[TypePair, int]:
    """Round shares to integers summing to ``total`` (Hamilton's method)."""
    grants = {p: int(math.floor(s)) for p, s in shares.items()}
    leftover = total - sum(grants.values())
    by_remainder = sorted(shares, key=lambda p: (-(shares[p] - grants[p]), p))
    for p in by_remainder[:max(0, leftover)]:
        grants[p] += 1
    return grants


def sample_pairs(
    rng: np.random.Generator,
    members_a: list[str],
    members_b: list[str],
    quota: int,
    exclude: set[tuple[str, str]],
) -> list[tuple[str, str]]:
    """Draw up to ``quota`` distinct, canonical id pairs not in ``exclude``.

    ``members_a is members_b`` (or equal lists) samples pairs within one type.
    """
    same = members_a == members_b
    total = len(members_a) * (len(members_a) - 1) // 2 if same else len(members_a) * len(members_b)
    if quota <= 0 or total == 0:
        return []

    # Dense request: enumerate and shuffle instead of rejection sampling
    if quota * 2 >= total:
        candidates = []
        if same:
            for i in range(len(members_a)):
                for j in range(i + 1, len(members_a)):
                    candidates.append(_canonical(members_a[i], members_a[j]))
        else:
            for x in members_a:
                for y in members_b:
                    candidates.append(_canonical(x, y))
        candidates = [c for c in candidates if c not in exclude]
        order = rng.permutation(len(candidates))
        return [candidates[i] for i in order[:quota]]

    chosen: list[tuple[str, str]] = []
    seen: set[tuple[str, str]] = set()
    attempts = 0
    max_attempts = quota * 20 + 100
    while len(chosen) < quota and attempts < max_attempts:
        batch = max(quota - len(chosen), 16)
        xs = rng.integers(0, len(members_a), size=batch)
        ys = rng.integers(0, len(members_b), size=batch)
        for x, y in zip(xs, ys):
            attempts += 1
            a, b = members_a[x], members_b[y]
            if a == b:
                continue
            pair = _canonical(a, b)
            if pair in seen or pair in exclude:
                continue
            seen.add(pair)
            chosen.append(pair)
            if len(chosen) >= quota:
                break
    return chosen


def _canonical(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)
