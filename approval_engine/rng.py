"""Deterministic random utilities."""

from __future__ import annotations

import hashlib
import random


class DeterministicRNG:
    """Wraps :mod:`random` with deterministic replay support.

    ``derive`` hands out child generators keyed by stable labels, so draws made
    from worker threads do not depend on the order the workers run in.
    """

    def __init__(self, seed: int) -> None:
        self._seed = seed & 0xFFFFFFFF
        # nosec B311 - deterministic pseudo-RNG acceptable for game mechanics
        self._random = random.Random(self._seed)

    @property
    def seed(self) -> int:
        return self._seed

    def derive(self, *parts: object) -> "DeterministicRNG":
        """Return an independent generator for the given key parts."""

        key = "|".join([str(self._seed), *(str(part) for part in parts)])
        digest = hashlib.sha256(key.encode("utf-8")).digest()
        return DeterministicRNG(int.from_bytes(digest[:4], "big"))

    def randint(self, a: int, b: int) -> int:
        return self._random.randint(a, b)


__all__ = ["DeterministicRNG"]
