"""
Core data models used across the popup_frequency package.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional


def as_utc(ts: datetime) -> datetime:
    """
    Normalise a timestamp to an aware UTC datetime. Naive values are read as UTC.
    """

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_next_day(ts: datetime) -> datetime:
    ts = as_utc(ts)
    midnight = datetime(ts.year, ts.month, ts.day, tzinfo=timezone.utc)
    return midnight + timedelta(days=1)


def start_of_next_hour(ts: datetime) -> datetime:
    ts = as_utc(ts)
    return ts.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


@dataclass
class ShowEvent:
    """
    One rendered popup in a visitor's history, plus the reaction to it.
    """

    popup_id: str
    timestamp: datetime
    session_id: str
    context: Dict[str, Any] = field(default_factory=dict)
    action: Optional[str] = None
    action_timestamp: Optional[datetime] = None
    response_time_ms: Optional[float] = None


@dataclass
class VisitorRecord:
    """
    Show history, last-seen timestamps and personal overrides for a visitor.
    """

    total_shown: int = 0
    history: List[ShowEvent] = field(default_factory=list)
    last_seen: Dict[str, datetime] = field(default_factory=dict)
    preferences: Dict[str, Any] = field(default_factory=dict)

    def append_show(self, event: ShowEvent, limit: int, keep: int) -> None:
        self.total_shown += 1
        self.history.append(event)
        if len(self.history) > limit:
            self.history = self.history[-keep:]
        previous = self.last_seen.get(event.popup_id)
        if previous is None or event.timestamp >= previous:
            self.last_seen[event.popup_id] = event.timestamp

    def shown_on(self, day: date) -> int:
        return sum(1 for item in self.history if item.timestamp.date() == day)

    def latest_show(self, popup_id: str) -> Optional[ShowEvent]:
        for item in reversed(self.history):
            if item.popup_id == popup_id:
                return item
        return None

    def heal(self, limit: int, keep: int) -> bool:
        """
        Re-apply the history bound and clamp `last_seen` to the history.

        Returns True when something had to be repaired.
        """

        repaired = False
        if len(self.history) > limit:
            self.history = self.history[-keep:]
            repaired = True
        newest: Dict[str, datetime] = {}
        for item in self.history:
            if item.popup_id not in newest or item.timestamp > newest[item.popup_id]:
                newest[item.popup_id] = item.timestamp
        for popup_id, seen in list(self.last_seen.items()):
            # Entries trimmed out of the history keep their last_seen.
            if popup_id in newest and seen > newest[popup_id]:
                self.last_seen[popup_id] = newest[popup_id]
                repaired = True
        return repaired


@dataclass
class SessionShow:
    popup_id: str
    timestamp: datetime
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SessionRecord:
    start_time: datetime
    shown: List[SessionShow] = field(default_factory=list)


@dataclass
class GlobalDayCounter:
    """
    Show counts for one UTC calendar day, independent of visitor identity.
    """

    day: date
    per_popup: Dict[str, int] = field(default_factory=dict)
    per_hour: Dict[str, Dict[int, int]] = field(default_factory=dict)

    def increment(self, popup_id: str, hour: int) -> None:
        self.per_popup[popup_id] = self.per_popup.get(popup_id, 0) + 1
        hours = self.per_hour.setdefault(popup_id, {})
        hours[hour] = hours.get(hour, 0) + 1


@dataclass
class BehaviorProfile:
    """
    Interaction counters used to classify a visitor.

    `blocker` is an explicit external signal (e.g. a detected ad-blocker) and
    is never derived from the counters.
    """

    total_shown: int = 0
    conversions: int = 0
    dismissals: int = 0
    interactions: int = 0
    interaction_timestamps: List[datetime] = field(default_factory=list)
    response_time_avg_ms: float = 0.0
    last_activity: Optional[datetime] = None
    blocker: bool = False

    def add_interaction_time(self, ts: datetime, limit: int, keep: int) -> None:
        self.interaction_timestamps.append(ts)
        if len(self.interaction_timestamps) > limit:
            self.interaction_timestamps = self.interaction_timestamps[-keep:]

    def heal(self, limit: int, keep: int) -> bool:
        if len(self.interaction_timestamps) > limit:
            self.interaction_timestamps = self.interaction_timestamps[-keep:]
            return True
        return False


@dataclass
class FrequencyRule:
    """
    Per-popup override of a single capacity or timing constraint.
    """

    popup_id: str
    kind: str
    value: float
    enabled: bool = True
    priority: int = 1
    conditions: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "enabled": self.enabled,
            "priority": self.priority,
            "conditions": dict(self.conditions),
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Decision:
    """
    Result of an admission check. A deny is a normal result, not an error.
    """

    allowed: bool
    reason: Optional[str] = None
    next_allowed_at: Optional[datetime] = None
    priority: Optional[int] = None
    suggested_hour: Optional[int] = None
    timing_confidence: Optional[float] = None
    suggestions: List[str] = field(default_factory=list)
    check: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed
