"""
wagertrace/access/scheduler.py

Single-thread expiry timer wheel.

One daemon thread sleeps on a heap of (deadline, key). Each key fires
at most once; cancel() before the deadline guarantees it never fires.
Callbacks run on the scheduler thread, outside the scheduler lock.
"""

import heapq
import itertools
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from wagertrace.core.time import Clock, SystemClock

logger = logging.getLogger(__name__)


class ExpiryScheduler:

    def __init__(self, callback: Callable[[str], None], clock: Clock = None):
        self.callback = callback
        self.clock    = clock or SystemClock()

        self._cond:    threading.Condition = threading.Condition()
        self._heap:    List[Tuple[datetime, int, str]] = []
        self._pending: Dict[str, datetime] = {}
        self._counter  = itertools.count()
        self._running  = False
        self._thread:  Optional[threading.Thread] = None

    # ── Public API ────────────────────────────────────────────

    def schedule(self, key: str, deadline: datetime) -> bool:
        """Returns False if key is already scheduled."""
        with self._cond:
            if key in self._pending:
                return False
            self._pending[key] = deadline
            heapq.heappush(self._heap, (deadline, next(self._counter), key))
            self._cond.notify()
            return True

    def cancel(self, key: str) -> bool:
        """Returns True if a pending timer was removed."""
        with self._cond:
            return self._pending.pop(key, None) is not None

    def is_scheduled(self, key: str) -> bool:
        with self._cond:
            return key in self._pending

    def __len__(self) -> int:
        with self._cond:
            return len(self._pending)

    def start(self) -> "ExpiryScheduler":
        with self._cond:
            if self._running:
                return self
            self._running = True
        self._thread = threading.Thread(
            target=self._run, name="wagertrace-expiry", daemon=True
        )
        self._thread.start()
        return self

    def stop(self, timeout: float = 2.0) -> None:
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    # ── Internal ──────────────────────────────────────────────

    def _next_due(self) -> Optional[str]:
        """Block until a key is due or the scheduler stops. Holds the lock."""
        while self._running:
            if not self._heap:
                self._cond.wait()
                continue
            deadline, _, key = self._heap[0]
            delay = (deadline - self.clock.now()).total_seconds()
            if delay > 0:
                self._cond.wait(timeout=delay)
                continue
            heapq.heappop(self._heap)
            if self._pending.get(key) != deadline:
                continue    # cancelled or rescheduled
            del self._pending[key]
            return key
        return None

    def _run(self) -> None:
        while True:
            with self._cond:
                key = self._next_due()
            if key is None:
                return
            try:
                self.callback(key)
            except Exception:
                logger.exception("Expiry callback failed for %s", key)
