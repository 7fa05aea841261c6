"""
Deterministic RNG: Seeded random wrapper.

All randomness in the demo seeder passes through a single DeterministicRNG
instance. Identical (seed) → identical call sequence → identical results.
"""

from __future__ import annotations

import random
from typing import List, Sequence, TypeVar

T = TypeVar("T")


class DeterministicRNG:
    """Local seeded RNG. No global random state touched."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(seed)

    def rand_int(self, low: int, high: int) -> int:
        """Return random integer in [low, high] inclusive."""
        return self._rng.randint(low, high)

    def rand_choice(self, seq: Sequence[T]) -> T:
        """Pick one element from a non-empty sequence."""
        return self._rng.choice(seq)

    def rand_bool(self, percent_true: int) -> bool:
        """True with probability percent_true / 100."""
        return self._rng.randint(1, 100) <= percent_true

    def sample(self, seq: Sequence[T], k: int) -> List[T]:
        """k distinct elements, in the sequence's original order."""
        k = min(k, len(seq))
        picked = sorted(self._rng.sample(range(len(seq)), k))
        return [seq[i] for i in picked]
