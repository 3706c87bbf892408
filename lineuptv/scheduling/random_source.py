"""
Seedable random source for reproducible scheduling.

A Mersenne Twister (MT19937) seeded from an array of 32-bit words with
the reference `init_by_array` routine. Every 32-bit output consumed is
counted, so a generator can be rebuilt at the same position from
`(seed, use_count)` by re-seeding and discarding `use_count` outputs.

Distributions (integer, real, bool, shuffle) consume outputs exactly the
way the persisted seeds were originally drawn, which keeps stored
schedules reproducible across restarts.
"""

import random
from typing import Any, MutableSequence, Optional, Sequence, TypeVar

T = TypeVar("T")

_N = 624
_UINT32_MASK = 0xFFFFFFFF
_UINT32_SIZE = 0x100000000
_UINT53_SIZE = 0x20000000000000
_MAX_INT53 = 0x1FFFFFFFFFFFFF


def _init_genrand(seed: int) -> list[int]:
    mt = [0] * _N
    mt[0] = seed & _UINT32_MASK
    for i in range(1, _N):
        prev = mt[i - 1]
        mt[i] = (1812433253 * (prev ^ (prev >> 30)) + i) & _UINT32_MASK
    return mt


def _init_by_array(words: Sequence[int]) -> list[int]:
    key = [w & _UINT32_MASK for w in words]
    mt = _init_genrand(19650218)
    i, j = 1, 0
    key_length = len(key)
    k = max(_N, key_length)
    for _ in range(k):
        prev = mt[i - 1]
        mt[i] = ((mt[i] ^ ((prev ^ (prev >> 30)) * 1664525)) + (key[j] if key else 0) + j) & _UINT32_MASK
        i += 1
        j += 1
        if i >= _N:
            mt[0] = mt[_N - 1]
            i = 1
        if j >= key_length:
            j = 0
    for _ in range(_N - 1):
        prev = mt[i - 1]
        mt[i] = ((mt[i] ^ ((prev ^ (prev >> 30)) * 1566083941)) - i) & _UINT32_MASK
        i += 1
        if i >= _N:
            mt[0] = mt[_N - 1]
            i = 1
    mt[0] = 0x80000000
    return mt


def _to_int32(value: int) -> int:
    value &= _UINT32_MASK
    return value - _UINT32_SIZE if value & 0x80000000 else value


def create_entropy(length: int = 16) -> list[int]:
    """Return `length` fresh signed 32-bit words suitable as a seed."""
    system = random.SystemRandom()
    return [_to_int32(system.getrandbits(32)) for _ in range(length)]


class RandomSource:
    """
    MT19937 engine plus the distributions the schedulers draw from.

    Instances are never shared between generation runs; each scheduler
    owns the one it was constructed with.
    """

    def __init__(self, seed: Optional[Sequence[int]] = None, discard_count: int = 0):
        self.seed: list[int] = list(seed) if seed is not None else create_entropy()
        self._engine = random.Random()
        self._engine.setstate((3, tuple(_init_by_array(self.seed)) + (_N,), None))
        self._use_count = 0
        self.discard(discard_count)

    @classmethod
    def seed_with_array(cls, words: Sequence[int]) -> "RandomSource":
        return cls(words)

    @classmethod
    def from_state(cls, seed: Sequence[int], use_count: int) -> "RandomSource":
        """Rebuild a generator at the position described by `get_state()`."""
        return cls(seed, use_count)

    @property
    def use_count(self) -> int:
        """Number of 32-bit outputs consumed since seeding, discards included."""
        return self._use_count

    def get_state(self) -> dict[str, Any]:
        return {"seed": list(self.seed), "use_count": self._use_count}

    def discard(self, count: int) -> "RandomSource":
        if count > 0:
            # getrandbits(32 * n) consumes exactly n outputs
            self._engine.getrandbits(32 * count)
            self._use_count += count
        return self

    def next_uint32(self) -> int:
        self._use_count += 1
        return self._engine.getrandbits(32)

    def _uint53(self) -> int:
        high = self.next_uint32() & 0x1FFFFF
        low = self.next_uint32()
        return high * _UINT32_SIZE + low

    def integer(self, minimum: float, maximum: float) -> int:
        """Uniform integer in the inclusive range [minimum, maximum]."""
        low = int(minimum // 1)
        high = int(maximum // 1)
        span = high - low
        if span <= 0:
            return low
        if span == _UINT32_MASK:
            return low + self.next_uint32()
        if span < _UINT32_MASK:
            if (span + 1) & span == 0:
                return low + (self.next_uint32() & span)
            extended = span + 1
            limit = extended * (_UINT32_SIZE // extended)
            while True:
                value = self.next_uint32()
                if value < limit:
                    return low + value % extended
        if span == _MAX_INT53:
            return low + self._uint53()
        if span > _MAX_INT53:
            raise ValueError(f"Range too large: [{minimum}, {maximum}]")
        extended = span + 1
        if extended % _UINT32_SIZE == 0:
            high_span = extended // _UINT32_SIZE - 1
            if (high_span + 1) & high_span == 0:
                high_word = self.next_uint32() & high_span
                return low + high_word * _UINT32_SIZE + self.next_uint32()
        limit = extended * (_UINT53_SIZE // extended)
        while True:
            value = self._uint53()
            if value < limit:
                return low + value % extended

    def real(self, minimum: float, maximum: float) -> float:
        """Uniform float in the half-open range [minimum, maximum)."""
        fraction = self._uint53() / _UINT53_SIZE
        return minimum + fraction * (maximum - minimum)

    def bool(self, numerator: float, denominator: float) -> bool:
        """
        True with probability numerator / denominator.

        Integral arguments draw an integer in [0, denominator) so that
        persisted seeds replay identically. Fractional weights draw a real
        instead, which keeps the probability exact.
        """
        if numerator <= 0:
            return False
        if numerator >= denominator:
            return True
        if float(numerator).is_integer() and float(denominator).is_integer():
            return self.integer(0, denominator - 1) < numerator
        return self.real(0, denominator) < numerator

    def pick(self, items: Sequence[T]) -> Optional[T]:
        if not items:
            return None
        return items[self.integer(0, len(items) - 1)]

    def shuffle(self, items: MutableSequence[T]) -> MutableSequence[T]:
        """Fisher-Yates shuffle in place, walking down from the last index."""
        for i in range(len(items) - 1, 0, -1):
            j = self.integer(0, i)
            if i != j:
                items[i], items[j] = items[j], items[i]
        return items
