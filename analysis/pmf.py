"""
Exact Roll Distributions.

Probability mass functions for roll specifications, computed with numpy
instead of sampling. Advantage, single reroll and per-die clamps are all
reflected in the per-die distribution before the dice are convolved.
"""

import math
from typing import Dict, Sequence

import numpy as np

from sim.dice import ADVANTAGE, DISADVANTAGE, RollSpec


def die_pmf(spec: RollSpec) -> np.ndarray:
    """
    Distribution of one die slot.

    Returns:
        Array of length ``size + 1`` where index ``f`` holds P(face == f);
        index 0 is always zero.
    """
    size = spec.size
    faces = np.arange(1, size + 1)
    p = np.full(size, 1.0 / size)

    if spec.advantage == ADVANTAGE:
        cdf = faces / size
        p = np.diff(np.concatenate(([0.0], cdf ** 2)))
    elif spec.advantage == DISADVANTAGE:
        survive = (size - faces + 1) / size  # P(face >= f)
        p = survive ** 2 - np.concatenate(((survive ** 2)[1:], [0.0]))

    if spec.reroll_below is not None:
        low_mask = faces < spec.reroll_below
        rerolled_mass = p[low_mask].sum()
        p = np.where(low_mask, 0.0, p) + rerolled_mass / size

    low = spec.minimum if spec.minimum is not None else 1
    high = spec.maximum if spec.maximum is not None else size
    clamped = np.zeros(size + 1)
    np.add.at(clamped, np.clip(faces, low, high), p)
    return clamped


def roll_pmf(spec: RollSpec) -> Dict[int, float]:
    """Exact distribution of ``roll(spec).total``."""
    if spec.count == 0:
        return {spec.modifier: 1.0}

    single = die_pmf(spec)
    total = np.array([1.0])
    for _ in range(spec.count):
        total = np.convolve(total, single)

    # index i of the convolution is a face sum of i
    return {int(i) + spec.modifier: float(p) for i, p in enumerate(total) if p > 0}


def expected_total(spec: RollSpec) -> float:
    single = die_pmf(spec)
    per_die = float(np.dot(np.arange(spec.size + 1), single))
    return spec.count * per_die + spec.modifier


def probability_at_least(spec: RollSpec, dc: int) -> float:
    """P(total >= dc). Critical rules are not applied here."""
    return float(sum(p for total, p in roll_pmf(spec).items() if total >= dc))


def binomial_coefficient(n: int, k: int) -> float:
    if k < 0 or k > n:
        return 0.0
    return float(math.comb(n, k))


def multinomial_probability(n: int, counts: Sequence[int], probabilities: Sequence[float]) -> float:
    """Probability of observing ``counts`` over ``n`` independent draws."""
    if len(counts) != len(probabilities):
        raise ValueError("counts and probabilities must have the same length")
    if sum(counts) != n:
        raise ValueError("counts must sum to n")

    coefficient = math.factorial(n)
    for k in counts:
        coefficient //= math.factorial(k)
    return float(coefficient * np.prod([p ** k for k, p in zip(counts, probabilities)]))
