"""
Randomness Source.

Seedable dice stream built on numpy's SeedSequence so that every trial
receives an independent, reproducible child stream.
"""

import numpy as np
from typing import List, Optional, Sequence, TypeVar

T = TypeVar("T")


class Roller:
    """Deterministic randomness stream with injectable seed."""

    def __init__(self, seed: Optional[int] = None, seed_sequence: np.random.SeedSequence = None):
        self.seed_sequence = seed_sequence if seed_sequence is not None else np.random.SeedSequence(seed)
        self.rng = np.random.default_rng(self.seed_sequence)

    @classmethod
    def from_seed(cls, seed: int) -> "Roller":
        return cls(seed=seed)

    def fork(self) -> "Roller":
        """Create a child stream; successive forks are independent of each other."""
        return Roller(seed_sequence=self.seed_sequence.spawn(1)[0])

    def spawn(self, n: int) -> List["Roller"]:
        """Create ``n`` children. Child ``i`` depends only on the root seed and ``i``."""
        return [Roller(seed_sequence=child) for child in self.seed_sequence.spawn(n)]

    def child(self, index: int) -> "Roller":
        """Child ``index`` of this stream; equal to ``spawn(n)[index]`` on a fresh root."""
        seq = self.seed_sequence
        return Roller(seed_sequence=np.random.SeedSequence(
            seq.entropy, spawn_key=tuple(seq.spawn_key) + (index,), pool_size=seq.pool_size))

    def die(self, size: int) -> int:
        """Roll a single die with faces 1..size."""
        return int(self.rng.integers(1, size + 1))

    def choice(self, items: Sequence[T], weights: Optional[Sequence[float]] = None) -> T:
        """Pick one item, optionally weighted."""
        if len(items) == 0:
            raise ValueError("cannot choose from an empty sequence")
        if weights is None:
            return items[int(self.rng.integers(0, len(items)))]
        w = np.asarray(weights, dtype=float)
        if len(w) != len(items) or np.any(w < 0) or w.sum() <= 0:
            raise ValueError("weights must be non-negative, match items and not all be zero")
        return items[int(self.rng.choice(len(items), p=w / w.sum()))]

    def __repr__(self) -> str:
        return f"Roller(entropy={self.seed_sequence.entropy}, spawn_key={self.seed_sequence.spawn_key})"
