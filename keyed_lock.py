"""
Per-key locking for shared routing histories.

Keys (agent id, test id, user id) hash onto a fixed set of lock stripes, so
requests touching unrelated keys rarely wait on each other and the number of
locks stays constant however many distinct users pass through.
"""

import threading
import zlib
from contextlib import contextmanager
from typing import Hashable, Iterator, List

DEFAULT_STRIPES = 64


class KeyedLock:
    """Thread-safe striped lock keyed by an arbitrary hashable.

    Callers must not hold two keys of the same KeyedLock at once.
    """

    def __init__(self, stripes: int = DEFAULT_STRIPES) -> None:
        if stripes < 1:
            raise ValueError(f"stripes must be >= 1, got {stripes}")
        self._stripes: List[threading.Lock] = [threading.Lock() for _ in range(stripes)]

    def _index(self, key: Hashable) -> int:
        # stable across processes, unlike hash() on str
        return zlib.crc32(repr(key).encode("utf-8")) % len(self._stripes)

    def get(self, key: Hashable) -> threading.Lock:
        return self._stripes[self._index(key)]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self.get(key):
            yield

    def __len__(self) -> int:
        return len(self._stripes)
