"""Participant identity helpers: anonymous display names and short ids."""

from __future__ import annotations

from collections import deque
import random
from threading import Lock

_NAME_POOL = [
    "Amber Falcon",
    "Brisk Otter",
    "Calm Heron",
    "Clever Lynx",
    "Daring Marten",
    "Eager Badger",
    "Gentle Ibis",
    "Golden Newt",
    "Hasty Wren",
    "Jolly Tapir",
    "Keen Osprey",
    "Lively Gecko",
    "Lucky Puffin",
    "Mellow Koala",
    "Nimble Stoat",
    "Plucky Vole",
    "Quick Egret",
    "Quiet Bison",
    "Rapid Lemur",
    "Silver Crane",
    "Steady Yak",
    "Swift Dingo",
    "Witty Quokka",
    "Zesty Civet",
]

_SHORT_ID_MODULUS = 10_000


def short_participant_id(participant_id: str | None) -> str:
    """Return a stable four digit id derived from ``participant_id``.

    The hash is the 32-bit ``h * 31 + code`` string hash, so the same
    participant id always maps to the same short id on every node.
    """
    if not participant_id:
        return "0000"
    value = 0
    for char in participant_id:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return f"{abs(value) % _SHORT_ID_MODULUS:04d}"


class NameAssigner:
    """Hands out shuffled, non-repeating display names."""

    def __init__(self, names: list[str], seed: int | None = None):
        cleaned = [name.strip() for name in names if name.strip()]
        if not cleaned:
            raise ValueError("Name list cannot be empty.")
        self._names = cleaned
        self._pool: deque[str] = deque()
        self._lock = Lock()
        self._rng = random.Random(seed)
        self._refill_pool()

    @classmethod
    def with_default_names(cls, seed: int | None = None) -> "NameAssigner":
        return cls(list(_NAME_POOL), seed=seed)

    def next_name(self) -> str:
        with self._lock:
            if not self._pool:
                self._refill_pool()
            return self._pool.popleft()

    def reset_cycle(self) -> None:
        """Drop the remaining pool and reshuffle all names."""
        with self._lock:
            self._pool.clear()
            self._refill_pool()

    def _refill_pool(self) -> None:
        shuffled = list(self._names)
        self._rng.shuffle(shuffled)
        self._pool.extend(shuffled)
