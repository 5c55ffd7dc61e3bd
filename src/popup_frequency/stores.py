"""
In-memory stores for visitor, session and global counter state.

Every store is guarded by a pool of sharded locks so that work on one key
never waits on an unrelated key outside its shard.
"""

from __future__ import annotations

import copy
import threading
import zlib
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .data_models import (
    BehaviorProfile,
    GlobalDayCounter,
    SessionRecord,
    SessionShow,
    VisitorRecord,
)


class KeyedLocks:
    """
    A fixed pool of re-entrant locks; a key always maps to the same shard.
    """

    def __init__(self, shards: int = 64) -> None:
        if shards < 1:
            raise ValueError("shards must be positive")
        self._locks = [threading.RLock() for _ in range(shards)]

    def _shard(self, key: str) -> threading.RLock:
        return self._locks[zlib.crc32(key.encode("utf-8")) % len(self._locks)]

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Context manager holding the shard lock for `key`."""
        shard = self._shard(key)
        with shard:
            yield


class VisitorStore:
    """
    Visitor records and behavior profiles, both keyed by visitor id.

    The two maps share one lock pool: callers hold `lock(visitor_id)` for the
    whole of a read-modify-write on either record.
    """

    def __init__(self, shards: int = 64) -> None:
        self.locks = KeyedLocks(shards)
        self._records: Dict[str, VisitorRecord] = {}
        self._profiles: Dict[str, BehaviorProfile] = {}

    def lock(self, visitor_id: str):
        return self.locks.lock(visitor_id)

    def get(self, visitor_id: str) -> Optional[VisitorRecord]:
        return self._records.get(visitor_id)

    def ensure(self, visitor_id: str) -> VisitorRecord:
        record = self._records.get(visitor_id)
        if record is None:
            record = self._records.setdefault(visitor_id, VisitorRecord())
        return record

    def profile(self, visitor_id: str) -> Optional[BehaviorProfile]:
        return self._profiles.get(visitor_id)

    def ensure_profile(self, visitor_id: str) -> BehaviorProfile:
        profile = self._profiles.get(visitor_id)
        if profile is None:
            profile = self._profiles.setdefault(visitor_id, BehaviorProfile())
        return profile

    def visitor_ids(self) -> List[str]:
        return list(set(self._records) | set(self._profiles))

    def snapshot(
        self, visitor_id: str
    ) -> Tuple[Optional[VisitorRecord], Optional[BehaviorProfile]]:
        """
        Deep copies of one visitor's records, taken under that visitor's lock only.
        """

        with self.lock(visitor_id):
            return (
                copy.deepcopy(self._records.get(visitor_id)),
                copy.deepcopy(self._profiles.get(visitor_id)),
            )

    def preferences(self) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = {}
        for visitor_id in list(self._records):
            with self.lock(visitor_id):
                record = self._records.get(visitor_id)
                if record is not None and record.preferences:
                    result[visitor_id] = dict(record.preferences)
        return result

    def __len__(self) -> int:
        return len(self._records)


class SessionStore:
    def __init__(self, shards: int = 64) -> None:
        self.locks = KeyedLocks(shards)
        self._sessions: Dict[str, SessionRecord] = {}

    def count(self, session_id: str) -> int:
        with self.locks.lock(session_id):
            record = self._sessions.get(session_id)
            return len(record.shown) if record else 0

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self.locks.lock(session_id):
            return copy.deepcopy(self._sessions.get(session_id))

    def record(
        self, session_id: str, popup_id: str, timestamp: datetime, context: Dict[str, Any]
    ) -> None:
        with self.locks.lock(session_id):
            record = self._sessions.get(session_id)
            if record is None:
                record = self._sessions.setdefault(session_id, SessionRecord(start_time=timestamp))
            record.shown.append(SessionShow(popup_id=popup_id, timestamp=timestamp, context=context))

    def evict_before(self, cutoff: datetime) -> int:
        """
        Drop sessions whose latest show is older than `cutoff`.
        """

        evicted = 0
        for session_id in list(self._sessions):
            with self.locks.lock(session_id):
                record = self._sessions.get(session_id)
                if record is None:
                    continue
                latest = record.shown[-1].timestamp if record.shown else record.start_time
                if latest < cutoff:
                    del self._sessions[session_id]
                    evicted += 1
        return evicted

    def __len__(self) -> int:
        return len(self._sessions)


class GlobalCounters:
    """
    Per-day, per-popup show counts, retained for `retention_days` days.
    """

    def __init__(self, retention_days: int = 35, shards: int = 16) -> None:
        self.retention_days = retention_days
        self.locks = KeyedLocks(shards)
        self._days: Dict[date, GlobalDayCounter] = {}

    def count_for_day(self, day: date, popup_id: str) -> int:
        with self.locks.lock(day.isoformat()):
            counter = self._days.get(day)
            return counter.per_popup.get(popup_id, 0) if counter else 0

    def count_for_hour(self, day: date, hour: int, popup_id: str) -> int:
        with self.locks.lock(day.isoformat()):
            counter = self._days.get(day)
            if counter is None:
                return 0
            return counter.per_hour.get(popup_id, {}).get(hour, 0)

    def increment(self, ts: datetime, popup_id: str) -> None:
        day = ts.date()
        with self.locks.lock(day.isoformat()):
            counter = self._days.get(day)
            if counter is None:
                counter = self._days.setdefault(day, GlobalDayCounter(day=day))
            counter.increment(popup_id, ts.hour)
        self._prune(day - timedelta(days=self.retention_days))

    def day(self, day: date) -> Dict[str, int]:
        with self.locks.lock(day.isoformat()):
            counter = self._days.get(day)
            return dict(counter.per_popup) if counter else {}

    def days(self) -> List[date]:
        return sorted(self._days)

    def _prune(self, cutoff: date) -> None:
        for day in [d for d in list(self._days) if d < cutoff]:
            with self.locks.lock(day.isoformat()):
                self._days.pop(day, None)
