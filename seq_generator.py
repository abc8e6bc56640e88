"""Reproducible pseudo-random streams for fields the caller leaves unset."""

from __future__ import annotations

import zlib
from typing import Dict, Mapping, Optional

# Knuth's MMIX constants.
LCG_MULTIPLIER = 6364136223846793005
LCG_INCREMENT = 1442695040888963407
MASK64 = (1 << 64) - 1
GOLDEN_GAMMA = 0x9E3779B97F4A7C15


class SequenceGenerator:
    """64-bit linear-congruential generator.

    Not suitable for anything security related; the point is that the same
    seed always yields the same stream.
    """

    def __init__(self, seed: int = 0) -> None:
        self.seed = seed & MASK64
        self._state = self.seed

    def next_u64(self) -> int:
        self._state = (self._state * LCG_MULTIPLIER + LCG_INCREMENT) & MASK64
        return self._state

    def below(self, bound: int) -> int:
        """Return a value in ``[0, bound)``; ``bound`` must fit in 32 bits."""
        if bound <= 0 or bound > 1 << 32:
            raise ValueError(f"bound out of range: {bound}")
        # the low bits of an LCG cycle with short periods
        return (self.next_u64() >> 32) % bound

    def randbytes(self, count: int) -> bytes:
        return bytes(self.below(256) for _ in range(count))


def derive_seed(base_seed: int, name: str) -> int:
    """Mix the session seed with a stream name into a per-stream seed."""
    return (base_seed * GOLDEN_GAMMA + zlib.crc32(name.encode("utf-8"))) & MASK64


class GeneratorRegistry:
    """Named generators created on first use, one per distinct name."""

    def __init__(self, seed: int = 0, seeds: Optional[Mapping[str, int]] = None) -> None:
        self.seed = seed
        self._seeds: Dict[str, int] = dict(seeds or {})
        self._streams: Dict[str, SequenceGenerator] = {}

    def get(self, name: str) -> SequenceGenerator:
        stream = self._streams.get(name)
        if stream is None:
            seed = self._seeds.get(name)
            if seed is None:
                seed = derive_seed(self.seed, name)
            stream = SequenceGenerator(seed)
            self._streams[name] = stream
        return stream

    def __contains__(self, name: str) -> bool:
        return name in self._streams

    def names(self):
        return sorted(self._streams)
