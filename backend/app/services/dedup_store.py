"""
Duplicate suppression for quote requests.

Customers double-click, browsers retry, and the storefront occasionally posts
the same cart twice. Every request body is reduced to a keyed fingerprint and
tracked here for a short sliding window so that:

  - a repeat arriving while the first copy is still queued is ignored
    (``IN_PROGRESS``),
  - a repeat arriving shortly after the emails went out is ignored
    (``ALREADY_SENT``),
  - no recipient is ever emailed twice for the same fingerprint.

State lives in memory only and is lost on restart. A background sweep drops
entries older than the window.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

# Marker for a container that was already visited during canonicalisation.
_OMIT = object()


class ReservationStatus(str, Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    ALREADY_SENT = "already_sent"


# ---------------------------------------------------------------------------
# Fingerprinting
# ---------------------------------------------------------------------------

def canonicalize(value: Any) -> Any:
    """
    Return a copy of ``value`` with every dict's keys sorted.

    Lists keep their order. A dict or list that has already been visited is
    omitted: dropped when it is a dict value, replaced by None inside a list.
    This keeps self-referencing structures finite.
    """
    seen: set[int] = set()

    def _walk(node: Any) -> Any:
        if isinstance(node, (dict, list)):
            if id(node) in seen:
                return _OMIT
            seen.add(id(node))
            if isinstance(node, list):
                return [None if item is _OMIT else item for item in map(_walk, node)]
            out = {}
            for key in sorted(node, key=str):
                child = _walk(node[key])
                if child is not _OMIT:
                    out[str(key)] = child
            return out
        return node

    result = _walk(value)
    return None if result is _OMIT else result


def stable_stringify(value: Any) -> str:
    """Compact JSON of the canonical form of ``value``."""
    return json.dumps(
        canonicalize(value),
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def compute_fingerprint(body: Any, secret: str) -> str:
    """HMAC-SHA256 (hex) of the canonical JSON form of a request body."""
    return hmac.new(
        secret.encode("utf-8"),
        stable_stringify(body).encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@dataclass
class _Entry:
    first_seen: Optional[float] = None
    completed_at: Optional[float] = None
    notified: set[str] = field(default_factory=set)


class DuplicateSuppressionStore:
    """
    In-memory record of recent fingerprints.

    Each fingerprint maps to one entry holding the time it was first accepted
    (the recent-request record), the time its emails were sent (the sent
    record) and the addresses already notified. Every public method holds the
    same lock, so ``check_and_reserve`` is an atomic check-and-insert and the
    sweep never interleaves with a job's updates.
    """

    def __init__(
        self,
        window_seconds: int = 15,
        sweep_interval: int = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = window_seconds
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def _within_window(self, ts: Optional[float], now: float) -> bool:
        return ts is not None and now - ts < self.window_seconds

    def check_and_reserve(self, fingerprint: str) -> ReservationStatus:
        """
        Classify a fingerprint and reserve it when it is new.

        Returns IN_PROGRESS if it was first accepted within the window,
        ALREADY_SENT if its emails went out within the window, otherwise
        records it as accepted now and returns NEW.
        """
        with self._lock:
            now = self._clock()
            entry = self._entries.get(fingerprint)
            if entry is None:
                self._entries[fingerprint] = _Entry(first_seen=now)
                return ReservationStatus.NEW
            if self._within_window(entry.first_seen, now):
                return ReservationStatus.IN_PROGRESS
            if self._within_window(entry.completed_at, now):
                return ReservationStatus.ALREADY_SENT
            # A job may still be sending for this fingerprint; its recipients
            # are kept until a sent record expires.
            if entry.completed_at is not None:
                entry.completed_at = None
                entry.notified.clear()
            entry.first_seen = now
            return ReservationStatus.NEW

    def release(self, fingerprint: str) -> None:
        """Forget a reservation that was never turned into a job."""
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return
            entry.first_seen = None
            if entry.completed_at is None and not entry.notified:
                del self._entries[fingerprint]

    def recipients_already_notified(self, fingerprint: str) -> set[str]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            return set(entry.notified) if entry is not None else set()

    def mark_notified(self, fingerprint: str, address: str) -> None:
        with self._lock:
            entry = self._entries.setdefault(fingerprint, _Entry())
            entry.notified.add(address)

    def mark_completed(self, fingerprint: str) -> None:
        with self._lock:
            entry = self._entries.setdefault(fingerprint, _Entry())
            entry.completed_at = self._clock()

    def sweep(self) -> int:
        """
        Drop records older than the window.

        A notified-recipient set is dropped together with its sent record, and
        an entry with neither record left is removed entirely. Returns the
        number of fingerprints removed.
        """
        with self._lock:
            now = self._clock()
            removed = 0
            for fingerprint in list(self._entries):
                entry = self._entries[fingerprint]
                if entry.first_seen is not None and now - entry.first_seen > self.window_seconds:
                    entry.first_seen = None
                if entry.completed_at is not None and now - entry.completed_at > self.window_seconds:
                    entry.completed_at = None
                if entry.completed_at is None:
                    entry.notified.clear()
                    if entry.first_seen is None:
                        del self._entries[fingerprint]
                        removed += 1
            return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                removed = self.sweep()
                if removed:
                    logger.debug("Duplicate sweep removed %d fingerprint(s)", removed)
            except Exception:
                logger.exception("Duplicate sweep failed")

    def start_sweeper(self) -> None:
        """Start the periodic sweep on the running event loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
