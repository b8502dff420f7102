"""
In-memory snapshot cache for reconciled calendar windows.

A snapshot is the list of serialized events read from the store after a
complete reconciliation of one calendar over one time window. Snapshots
are keyed by (calendar_id, window_start, window_end) and replaced
atomically, so a reader sees either the old or the new list for a key.

Staleness:
    - A snapshot is stale once ``ttl`` has elapsed since it was stored
    - Invalidation removes snapshots by calendar, by event ids, or all
    - Beyond ``max_entries`` the least recently used snapshot is evicted
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple


SnapshotKey = Tuple[str, datetime, datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Snapshot:
    """
    Cached result of one reconciled window.

    Attributes:
        calendar_id: Calendar the events belong to
        window_start / window_end: Half-open window covered by the snapshot
        events: Serialized events (dicts with at least 'guid', 'start_at', 'end_at')
        stored_at: When the snapshot was stored
    """
    calendar_id: str
    window_start: datetime
    window_end: datetime
    events: List[Dict[str, Any]] = field(default_factory=list)
    stored_at: Optional[datetime] = None

    @property
    def key(self) -> SnapshotKey:
        return (self.calendar_id, self.window_start, self.window_end)

    @property
    def event_guids(self) -> List[str]:
        return [e.get("guid") for e in self.events]

    def covers(self, start: datetime, end: datetime) -> bool:
        return self.window_start <= start and end <= self.window_end


class SnapshotCache:
    """
    Thread-safe TTL + LRU snapshot store.

    Args:
        ttl: Age after which a snapshot is stale
        max_entries: Number of snapshots kept before LRU eviction
        clock: Returns the current aware datetime (injectable for tests)
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=60),
        max_entries: int = 200,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ttl = ttl
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: "OrderedDict[SnapshotKey, Snapshot]" = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._stale = 0
        self._invalidations = 0

    def put(
        self,
        calendar_id: str,
        window_start: datetime,
        window_end: datetime,
        events: List[Dict[str, Any]],
    ) -> Snapshot:
        """Store (or replace) the snapshot for a window."""
        snapshot = Snapshot(
            calendar_id=calendar_id,
            window_start=window_start,
            window_end=window_end,
            events=list(events),
            stored_at=self._clock(),
        )
        with self._lock:
            self._entries[snapshot.key] = snapshot
            self._entries.move_to_end(snapshot.key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return snapshot

    def get(
        self,
        calendar_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> Optional[Snapshot]:
        """
        Find a fresh snapshot of ``calendar_id`` covering the window.

        An exact key match is preferred; otherwise any fresh snapshot of the
        same calendar whose window contains the requested one is used.
        Stale snapshots found on the way are dropped.
        """
        now = self._clock()
        with self._lock:
            exact = self._entries.get((calendar_id, window_start, window_end))
            candidates = [exact] if exact else []
            candidates.extend(
                s for s in self._entries.values()
                if s is not exact
                and s.calendar_id == calendar_id
                and s.covers(window_start, window_end)
            )

            for snapshot in candidates:
                if self._is_stale(snapshot, now):
                    del self._entries[snapshot.key]
                    self._stale += 1
                    continue
                self._entries.move_to_end(snapshot.key)
                self._hits += 1
                return snapshot

            self._misses += 1
            return None

    def invalidate_calendar(self, calendar_id: str) -> int:
        """Drop every snapshot of a calendar. Returns the number removed."""
        return self._invalidate(lambda s: s.calendar_id == calendar_id)

    def invalidate_events(self, event_guids: Iterable[str]) -> int:
        """Drop every snapshot containing any of the given event GUIDs."""
        wanted = set(event_guids)
        if not wanted:
            return 0
        return self._invalidate(lambda s: bool(wanted.intersection(s.event_guids)))

    def invalidate_window(self, calendar_id: Optional[str], start: datetime, end: datetime) -> int:
        """Drop snapshots overlapping a time range (optionally for one calendar)."""
        return self._invalidate(
            lambda s: (calendar_id is None or s.calendar_id == calendar_id)
            and s.window_start < end and start < s.window_end
        )

    def clear(self) -> int:
        return self._invalidate(lambda s: True)

    def stats(self) -> Dict[str, Any]:
        """Cache statistics for the cache stats endpoint."""
        now = self._clock()
        with self._lock:
            by_calendar: Dict[str, int] = {}
            stale_entries = 0
            for snapshot in self._entries.values():
                by_calendar[snapshot.calendar_id] = by_calendar.get(snapshot.calendar_id, 0) + 1
                if self._is_stale(snapshot, now):
                    stale_entries += 1
            return {
                "entries": len(self._entries),
                "stale_entries": stale_entries,
                "max_entries": self.max_entries,
                "ttl_seconds": int(self.ttl.total_seconds()),
                "hits": self._hits,
                "misses": self._misses,
                "stale_evictions": self._stale,
                "invalidations": self._invalidations,
                "by_calendar": by_calendar,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_stale(self, snapshot: Snapshot, now: datetime) -> bool:
        return now - snapshot.stored_at >= self.ttl

    def _invalidate(self, match: Callable[[Snapshot], bool]) -> int:
        with self._lock:
            keys = [key for key, snapshot in self._entries.items() if match(snapshot)]
            for key in keys:
                del self._entries[key]
            self._invalidations += len(keys)
            return len(keys)
