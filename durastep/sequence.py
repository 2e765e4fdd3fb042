"""Per-run step sequence allocation."""

from __future__ import annotations

import itertools


class SequenceAllocator:
    """Hand out strictly increasing integers, starting at zero.

    ``next`` is a single fetch-and-increment on an ``itertools.count``, which
    the interpreter lock makes atomic, so concurrent callers never share a
    value and nobody waits on a mutex. Nothing is persisted: a restarted run
    counts from zero again and relies on the driver issuing steps in the same
    order.
    """

    def __init__(self, start: int = 0) -> None:
        self._counter = itertools.count(start)
        self._issued = start

    def next(self) -> int:
        value = next(self._counter)
        self._issued = value + 1
        return value

    def peek(self) -> int:
        """Value the next call will return. Informational under concurrency."""
        return self._issued
