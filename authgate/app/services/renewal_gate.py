"""
services/renewal_gate.py — single-flight renewal per user.

Two requests carrying the same expired session can arrive together. Without
coordination both call the provider and both overwrite the session row
(last writer wins, and the provider may reject the second use of the refresh
token). The gate serializes renewal per user id inside one process:

  - A request that found the expired row before the renewal committed waits
    on hold(), then re-reads the row and adopts the renewed handle.
  - A request whose lookup ran after the commit no longer finds its handle.
    It asks replacement_for(old handle) instead. The renewing request
    records the replacement before it commits, so the answer is there
    whenever the old handle has already disappeared from the store.

Replacements are kept for `handoff_ttl` only and are keyed by a SHA-256
digest of the old handle, never the handle itself.

Scope: one process. Separate worker processes still race; that case keeps
last-writer-wins semantics.
"""

from __future__ import annotations

import hashlib
import threading
import time
from contextlib import contextmanager
from datetime import timedelta
from typing import Any, Dict, Iterator, Optional, Tuple

DEFAULT_HANDOFF_TTL = timedelta(seconds=30)


def _digest(handle: str) -> str:
    return hashlib.sha256(handle.encode("utf-8")).hexdigest()


class RenewalGate:

    def __init__(self, handoff_ttl: timedelta = DEFAULT_HANDOFF_TTL) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}
        self._waiters: Dict[int, int] = {}
        self._handoff_ttl = handoff_ttl.total_seconds()
        # digest(old handle) -> (deadline on the monotonic clock, replacement)
        self._handoffs: Dict[str, Tuple[float, Any]] = {}

    @contextmanager
    def hold(self, user_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(user_id, threading.Lock())
            self._waiters[user_id] = self._waiters.get(user_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[user_id] -= 1
                # Drop idle entries so the map does not grow with every user ever seen.
                if self._waiters[user_id] == 0:
                    del self._waiters[user_id]
                    del self._locks[user_id]

    def active_users(self) -> int:
        with self._guard:
            return len(self._locks)

    # ── Handoff of replaced handles ────────────────────────────────────────

    def remember(self, old_handle: str, replacement: Any) -> None:
        with self._guard:
            self._prune(time.monotonic())
            self._handoffs[_digest(old_handle)] = (time.monotonic() + self._handoff_ttl, replacement)

    def forget(self, old_handle: str) -> None:
        with self._guard:
            self._handoffs.pop(_digest(old_handle), None)

    def replacement_for(self, old_handle: str) -> Optional[Any]:
        with self._guard:
            self._prune(time.monotonic())
            entry = self._handoffs.get(_digest(old_handle))
        return entry[1] if entry else None

    def pending_handoffs(self) -> int:
        with self._guard:
            self._prune(time.monotonic())
            return len(self._handoffs)

    def _prune(self, now: float) -> None:
        # Caller holds self._guard.
        stale = [key for key, (deadline, _) in self._handoffs.items() if deadline <= now]
        for key in stale:
            del self._handoffs[key]
