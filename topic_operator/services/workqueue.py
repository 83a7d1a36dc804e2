"""Deduplicating work queue with delayed adds and per-key exponential backoff."""
from __future__ import annotations

import collections
import heapq
import itertools
import threading
import time
from typing import Callable, Deque, Dict, Hashable, List, Optional, Set, Tuple


class WorkQueue:
    """
    FIFO of keys with three guarantees:

    - a key is queued at most once no matter how many times it is added;
    - a key handed out by ``get`` is not handed out again until ``done``;
    - a key added while being processed is queued once more after ``done``.

    ``add_after`` parks a key until its deadline; the earliest deadline wins.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: Deque[Hashable] = collections.deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._waiting: List[Tuple[float, int, Hashable]] = []
        self._deadlines: Dict[Hashable, float] = {}
        self._seq = itertools.count()
        self._shutting_down = False

    def add(self, key: Hashable) -> None:
        with self._cond:
            self._add_locked(key)

    def add_after(self, key: Hashable, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            ready_at = self._clock() + delay
            current = self._deadlines.get(key)
            if current is not None and current <= ready_at:
                return
            self._deadlines[key] = ready_at
            heapq.heappush(self._waiting, (ready_at, next(self._seq), key))
            self._cond.notify_all()

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Block until a key is ready. Returns None on shutdown or timeout."""
        give_up = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                self._promote_ready()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key
                if self._shutting_down:
                    return None
                now = self._clock()
                wait = None
                if self._waiting:
                    wait = max(0.0, self._waiting[0][0] - now)
                if give_up is not None:
                    if now >= give_up:
                        return None
                    wait = give_up - now if wait is None else min(wait, give_up - now)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shut_down(self) -> None:
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def waiting(self) -> int:
        with self._cond:
            return len(self._deadlines)

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def _promote_ready(self) -> None:
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            ready_at, _, key = heapq.heappop(self._waiting)
            # stale heap entry superseded by an earlier deadline
            if self._deadlines.get(key) != ready_at:
                continue
            del self._deadlines[key]
            self._add_locked(key)


class ExponentialBackoff:
    """Per-key delay ``min(cap, base * 2**failures)``; ``forget`` resets a key."""

    def __init__(self, base: float = 1.0, cap: float = 300.0) -> None:
        self._base = base
        self._cap = cap
        self._failures: Dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, key: Hashable) -> float:
        with self._lock:
            n = self._failures.get(key, 0)
            self._failures[key] = n + 1
        # guard against float overflow for long-failing keys
        return min(self._cap, self._base * (2 ** min(n, 32)))

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._failures.pop(key, None)

    def failures(self, key: Hashable) -> int:
        with self._lock:
            return self._failures.get(key, 0)
