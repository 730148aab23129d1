"""Deduplication and throttling of client engagement signals.

Policy (fixed windows, keyed by user/content/kind):

- ``play_start``: one accepted per 60s, extra ones are "deduped"
- ``like`` / ``save`` / ``follow``: one accepted per 3s, extra ones are
  "throttled" (double-click guard, a real toggle outside the window passes)
- every other kind is always accepted

Only accepted events refresh the key's timestamp. The store behind the
policy is swappable: ``MemoryDedupStore`` is per-process and best-effort,
``SqliteDedupStore`` is shared by every process using the same database file.
"""
from __future__ import annotations

import logging
import sqlite3
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from backend.engagement.models import EventKind

logger = logging.getLogger(__name__)

DEDUPED = "deduped"
THROTTLED = "throttled"

TOGGLE_KINDS = {EventKind.LIKE, EventKind.SAVE, EventKind.FOLLOW}


def dedup_key(user_id: str, content_id: str, event_kind: EventKind) -> str:
    return f"{user_id}:{content_id}:{EventKind(event_kind).value}"


class DedupStore(Protocol):
    def check(self, key: str) -> Optional[float]:
        """Last accepted timestamp for key, or None."""

    def record(self, key: str, ts: float) -> None:
        ...

    def sweep(self, now: float, max_age: float) -> int:
        """Drop entries older than max_age seconds; returns how many were removed."""


class MemoryDedupStore:
    """Process-local store.

    Expired entries are popped from the oldest end once it grows past
    ``sweep_threshold``, and it is hard-capped at ``max_entries`` (oldest
    dropped first) so memory stays bounded between periodic sweeps.
    """

    def __init__(self, sweep_threshold: int = 100, max_entries: int = 50000, max_age: float = 120.0):
        self._seen: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()
        self._sweep_threshold = sweep_threshold
        self._max_entries = max_entries
        self._max_age = max_age

    def __len__(self) -> int:
        return len(self._seen)

    def check(self, key: str) -> Optional[float]:
        with self._lock:
            return self._seen.get(key)

    def record(self, key: str, ts: float) -> None:
        with self._lock:
            self._seen[key] = ts
            self._seen.move_to_end(key)

            if len(self._seen) > self._sweep_threshold:
                self._evict_expired_locked(ts - self._max_age)

            while len(self._seen) > self._max_entries:
                self._seen.popitem(last=False)

    def sweep(self, now: float, max_age: float) -> int:
        with self._lock:
            return self._sweep_locked(now, max_age)

    def _evict_expired_locked(self, cutoff: float) -> None:
        # entries sit in record order, so the stale ones are at the front
        while self._seen:
            key, ts = next(iter(self._seen.items()))
            if ts >= cutoff:
                break
            del self._seen[key]

    def _sweep_locked(self, now: float, max_age: float) -> int:
        cutoff = now - max_age
        stale = [k for k, ts in self._seen.items() if ts < cutoff]
        for k in stale:
            del self._seen[k]
        return len(stale)


class SqliteDedupStore:
    """Shared store backed by the ``dedup_cache`` table.

    Opens a short-lived connection per call through ``connect`` so it can be
    used from request handlers and the background sweeper alike.
    """

    def __init__(self, connect: Callable[[], sqlite3.Connection]):
        self._connect = connect

    def check(self, key: str) -> Optional[float]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT last_seen FROM dedup_cache WHERE dedup_key = ?",
                (key,),
            ).fetchone()
        finally:
            conn.close()
        return float(row["last_seen"]) if row else None

    def record(self, key: str, ts: float) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO dedup_cache(dedup_key, last_seen) VALUES(?, ?)
                ON CONFLICT(dedup_key) DO UPDATE SET last_seen = excluded.last_seen
                """,
                (key, ts),
            )
            conn.commit()
        finally:
            conn.close()

    def sweep(self, now: float, max_age: float) -> int:
        conn = self._connect()
        try:
            cur = conn.execute("DELETE FROM dedup_cache WHERE last_seen < ?", (now - max_age,))
            conn.commit()
            return int(cur.rowcount or 0)
        finally:
            conn.close()


@dataclass(frozen=True)
class DedupDecision:
    accept: bool
    reason: Optional[str] = None  # "deduped" | "throttled" | None


class Deduplicator:
    def __init__(
        self,
        store: DedupStore,
        play_start_window: float = 60.0,
        toggle_window: float = 3.0,
    ):
        self.store = store
        self.play_start_window = play_start_window
        self.toggle_window = toggle_window

    @property
    def retention(self) -> float:
        """How long entries are kept: twice the longest window."""
        return 2 * max(self.play_start_window, self.toggle_window)

    def check(
        self,
        user_id: str,
        content_id: str,
        event_kind: EventKind,
        now: float,
    ) -> DedupDecision:
        """Decide without touching the store; pair with ``mark_accepted`` once the event is written."""
        kind = EventKind(event_kind)
        last = self.store.check(dedup_key(user_id, content_id, kind))

        if last is not None:
            elapsed = now - last
            if kind == EventKind.PLAY_START and elapsed < self.play_start_window:
                logger.info("Deduped play_start for user %s, snippet %s", user_id, content_id)
                return DedupDecision(accept=False, reason=DEDUPED)
            if kind in TOGGLE_KINDS and elapsed < self.toggle_window:
                logger.info("Throttled %s for user %s, snippet %s", kind.value, user_id, content_id)
                return DedupDecision(accept=False, reason=THROTTLED)

        return DedupDecision(accept=True)

    def mark_accepted(self, user_id: str, content_id: str, event_kind: EventKind, now: float) -> None:
        self.store.record(dedup_key(user_id, content_id, EventKind(event_kind)), now)

    def should_accept(
        self,
        user_id: str,
        content_id: str,
        event_kind: EventKind,
        now: float,
    ) -> DedupDecision:
        decision = self.check(user_id, content_id, event_kind, now)
        if decision.accept:
            self.mark_accepted(user_id, content_id, event_kind, now)
        return decision

    def sweep(self, now: float) -> int:
        removed = self.store.sweep(now, self.retention)
        if removed:
            logger.debug("Dedup sweep removed %d entries", removed)
        return removed
