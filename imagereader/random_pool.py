"""Lending pool of seeded random generators shared by concurrent workers."""
from __future__ import annotations

import queue
from collections.abc import Iterator
from contextlib import contextmanager

import numpy as np


def make_generator(seed: int) -> np.random.Generator:
    """Create a Mersenne Twister backed generator for ``seed``."""
    return np.random.Generator(np.random.MT19937(seed))


class RandomSourcePool:
    """Free list of generators, one per in-flight worker.

    Workers pop a generator (or get a freshly seeded one when the pool is
    empty) and push it back when they are done, so the pool grows to the
    peak number of concurrent borrowers. A borrowed generator is owned by a
    single worker until it is returned. Every generator starts from the same
    seed; their streams only differ by how calls are scheduled.
    """

    def __init__(self, seed: int = 0) -> None:
        self._seed = int(seed)
        self._free: queue.SimpleQueue[np.random.Generator] = queue.SimpleQueue()

    @property
    def seed(self) -> int:
        return self._seed

    def __len__(self) -> int:
        """Number of idle generators."""
        return self._free.qsize()

    def pop_or_create(self) -> np.random.Generator:
        try:
            return self._free.get_nowait()
        except queue.Empty:
            return make_generator(self._seed)

    def push(self, rng: np.random.Generator) -> None:
        self._free.put(rng)

    @contextmanager
    def borrow(self) -> Iterator[np.random.Generator]:
        """Lend a generator for the duration of a ``with`` block."""
        rng = self.pop_or_create()
        try:
            yield rng
        finally:
            self.push(rng)

    def reseed(self, seed: int) -> None:
        """Drop idle generators so that new ones start from ``seed``.

        Must not be called while generators are borrowed.
        """
        self._seed = int(seed)
        self._free = queue.SimpleQueue()
