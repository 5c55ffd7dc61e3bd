"""
Admission engine deciding whether a popup may be shown to a visitor right now.

The engine runs a fixed chain of checks against the visitor, session and
global stores and returns a `Decision`. Showing a popup is recorded through a
separate call so that callers who decide not to render do not pollute the
history.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional

import numpy as np

from . import monitoring
from .config import FrequencyConfig
from .data_models import (
    BehaviorProfile,
    Decision,
    FrequencyRule,
    ShowEvent,
    VisitorRecord,
    as_utc,
    start_of_next_day,
    start_of_next_hour,
    utc_now,
)
from .errors import InvalidArgument, StateCorruption, require_id
from .events import EventLogger
from .rules import RuleKind, RuleRegistry
from .state_machine import (
    AdaptiveAdjuster,
    InteractionAction,
    VisitorState,
    classify,
    optimal_hour,
    priority_for,
    record_action,
)
from .stores import GlobalCounters, SessionStore, VisitorStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

# A page rule returns a denial reason, or None to let the popup through.
PageRule = Callable[[str, str, Dict[str, Any]], Optional[str]]


class FrequencyEngine:
    """
    Decides popup admission and adapts per-visitor frequency from reactions.

    Parameters
    ----------
    config:
        Engine-wide defaults. `FrequencyConfig()` when omitted.
    clock:
        Zero-argument callable returning the current time; used whenever a
        call carries no explicit timestamp.
    rng:
        `numpy.random.Generator` behind probabilistic throttling. Pass a
        seeded generator for reproducible decisions.
    event_logger:
        Optional sink receiving one exposure row per recorded show and one
        outcome row per recorded interaction.
    page_rules:
        Mapping of page identifier to `PageRule`, consulted when the
        evaluation context carries a matching `page`.
    """

    def __init__(
        self,
        config: Optional[FrequencyConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[np.random.Generator] = None,
        event_logger: Optional[EventLogger] = None,
        page_rules: Optional[Mapping[str, PageRule]] = None,
        shards: int = 64,
    ) -> None:
        self.config = config or FrequencyConfig()
        self.clock = clock or utc_now
        self.rng = rng if rng is not None else np.random.default_rng()
        self.event_logger = event_logger
        self.page_rules: Dict[str, PageRule] = dict(page_rules or {})

        self.rules = RuleRegistry()
        self.visitors = VisitorStore(shards)
        self.sessions = SessionStore(shards)
        self.counters = GlobalCounters(self.config.counter_retention_days)
        self.adjuster = AdaptiveAdjuster(self.config)
        self._rng_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def evaluate(
        self,
        visitor_id: str,
        popup_id: str,
        session_id: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Decision:
        require_id(visitor_id, "visitor_id")
        require_id(popup_id, "popup_id")
        require_id(session_id, "session_id")
        context = dict(context or {})
        now = self._timestamp(context)

        with self.visitors.lock(visitor_id):
            record = self.visitors.get(visitor_id)
            profile = self.visitors.profile(visitor_id)
            self._heal(visitor_id, record, profile)

            checks = [
                ("global_daily", lambda: self._check_global_daily(popup_id, now)),
                ("visitor_daily", lambda: self._check_visitor_daily(record, now)),
                ("session", lambda: self._check_session(session_id)),
                ("cooldown", lambda: self._check_cooldown(record, popup_id, now)),
                ("behavior", lambda: self._check_behavior(profile)),
                ("page", lambda: self._check_page(visitor_id, popup_id, context)),
                ("hourly", lambda: self._check_hourly(popup_id, now)),
            ]
            for name, check in checks:
                denial = check()
                if denial is not None:
                    denial.check = name
                    logger.debug(
                        "deny visitor=%s popup=%s check=%s reason=%s",
                        visitor_id, popup_id, name, denial.reason,
                    )
                    return denial

            decision = Decision(allowed=True, priority=priority_for(profile))
            timing = optimal_hour(profile.interaction_timestamps) if profile else None
            if timing is not None:
                decision.suggested_hour, decision.timing_confidence = timing

        logger.debug("allow visitor=%s popup=%s priority=%s", visitor_id, popup_id, decision.priority)
        return decision

    def _check_global_daily(self, popup_id: str, now: datetime) -> Optional[Decision]:
        rule = self.rules.active_rule(popup_id, RuleKind.MAX_PER_DAY)
        if rule is None:
            return None
        if self.counters.count_for_day(now.date(), popup_id) >= rule.value:
            return Decision(
                allowed=False,
                reason="Global daily limit reached",
                next_allowed_at=start_of_next_day(now),
            )
        return None

    def _check_visitor_daily(self, record: Optional[VisitorRecord], now: datetime) -> Optional[Decision]:
        preferences = record.preferences if record else {}
        cap = None
        reason = "User daily limit reached"
        if self.config.respect_user_preferences and preferences.get("max_per_day") is not None:
            cap = preferences["max_per_day"]
            reason = "User daily preference limit reached"
        elif self.config.max_per_day is not None:
            cap = self.config.max_per_day
        if cap is None:
            return None

        shown_today = record.shown_on(now.date()) if record else 0
        if shown_today >= cap:
            return Decision(allowed=False, reason=reason, next_allowed_at=start_of_next_day(now))
        return None

    def _check_session(self, session_id: str) -> Optional[Decision]:
        cap = self.config.max_per_session
        if cap is None or self.sessions.count(session_id) < cap:
            return None
        return Decision(
            allowed=False,
            reason="Session limit reached",
            suggestions=["Start a new session", "Reduce session frequency"],
        )

    def _check_cooldown(
        self, record: Optional[VisitorRecord], popup_id: str, now: datetime
    ) -> Optional[Decision]:
        last_seen = record.last_seen.get(popup_id) if record else None
        if last_seen is None:
            return None
        cooldown = self.cooldown_for(popup_id)
        if now - last_seen < cooldown:
            return Decision(
                allowed=False,
                reason="Cooldown period active",
                next_allowed_at=last_seen + cooldown,
            )
        return None

    def _check_behavior(self, profile: Optional[BehaviorProfile]) -> Optional[Decision]:
        if profile is None:
            return None
        state = classify(profile)

        if state is VisitorState.POPUP_BLOCKER:
            return Decision(
                allowed=False,
                reason="User frequently blocks popups",
                suggestions=["Try different popup types", "Reduce frequency further"],
            )
        if state is VisitorState.POPUP_DISMISSER:
            if self._draw() >= self.config.dismisser_admit_rate:
                return Decision(allowed=False, reason="High dismissal rate - reduced frequency")
        elif state is VisitorState.CONVERTED_USER:
            if self._draw() >= self.config.converted_admit_rate:
                return Decision(allowed=False, reason="User already converted")
        return None

    def _check_page(
        self, visitor_id: str, popup_id: str, context: Dict[str, Any]
    ) -> Optional[Decision]:
        rule = self.page_rules.get(context.get("page"))
        if rule is None:
            return None
        reason = rule(visitor_id, popup_id, context)
        if reason:
            return Decision(allowed=False, reason=reason)
        return None

    def _check_hourly(self, popup_id: str, now: datetime) -> Optional[Decision]:
        rule = self.rules.active_rule(popup_id, RuleKind.MAX_PER_HOUR)
        if rule is None:
            return None
        if self.counters.count_for_hour(now.date(), now.hour, popup_id) >= rule.value:
            return Decision(
                allowed=False,
                reason="Hourly limit reached",
                next_allowed_at=start_of_next_hour(now),
            )
        return None

    def cooldown_for(self, popup_id: str) -> timedelta:
        rule = self.rules.active_rule(popup_id, RuleKind.COOLDOWN_PERIOD)
        if rule is None:
            return self.config.default_cooldown
        return timedelta(seconds=float(rule.value))

    def _draw(self) -> float:
        # numpy generators are not safe for concurrent use
        with self._rng_lock:
            return float(self.rng.random())

    # ------------------------------------------------------------------
    # Event recording
    # ------------------------------------------------------------------

    def record_shown(
        self,
        visitor_id: str,
        popup_id: str,
        session_id: str,
        context: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Record that a popup was actually rendered. Call at most once per render.
        """

        require_id(visitor_id, "visitor_id")
        require_id(popup_id, "popup_id")
        require_id(session_id, "session_id")
        context = dict(context or {})
        ts = as_utc(timestamp) if timestamp is not None else self._timestamp(context)

        with self.visitors.lock(visitor_id):
            record = self.visitors.ensure(visitor_id)
            record.append_show(
                ShowEvent(popup_id=popup_id, timestamp=ts, session_id=session_id, context=context),
                self.config.history_limit,
                self.config.history_keep,
            )
            profile = self.visitors.ensure_profile(visitor_id)
            profile.total_shown += 1
            profile.last_activity = ts
            self.sessions.record(session_id, popup_id, ts, context)
            self.counters.increment(ts, popup_id)

        if self.event_logger is not None:
            self.event_logger.log_exposure(
                visitor_id, popup_id, session_id, ts, page=context.get("page")
            )

    def record_interaction(
        self,
        visitor_id: str,
        popup_id: str,
        action: Any,
        context: Optional[Mapping[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        """
        Record the visitor's reaction to the most recent show of `popup_id`.
        """

        require_id(visitor_id, "visitor_id")
        require_id(popup_id, "popup_id")
        action = InteractionAction.parse(action)
        context = dict(context or {})
        ts = as_utc(timestamp) if timestamp is not None else self._timestamp(context)

        with self.visitors.lock(visitor_id):
            record = self.visitors.ensure(visitor_id)
            shown = record.latest_show(popup_id)
            response_time_ms = None
            session_id = None
            if shown is not None:
                response_time_ms = max(0.0, (ts - shown.timestamp).total_seconds() * 1000.0)
                shown.action = action.value
                shown.action_timestamp = ts
                shown.response_time_ms = response_time_ms
                session_id = shown.session_id

            profile = self.visitors.ensure_profile(visitor_id)
            record_action(profile, action, ts, self.config)
            self.adjuster.adjust(record, profile, action, response_time_ms)

        if self.event_logger is not None:
            self.event_logger.log_outcome(
                visitor_id,
                popup_id,
                action.value,
                ts,
                response_time_ms=response_time_ms,
                session_id=session_id,
                page=context.get("page"),
            )

    # ------------------------------------------------------------------
    # Rules and preferences
    # ------------------------------------------------------------------

    def set_rule(
        self,
        popup_id: str,
        kind: Any,
        value: float,
        enabled: bool = True,
        priority: int = 1,
        conditions: Optional[Mapping[str, Any]] = None,
    ) -> FrequencyRule:
        return self.rules.set_rule(
            popup_id, kind, value, enabled=enabled, priority=priority, conditions=conditions,
            created_at=self.clock(),
        )

    def get_rules(self, popup_id: str) -> List[FrequencyRule]:
        return self.rules.get_rules(popup_id)

    def remove_rule(self, popup_id: str, kind: Any) -> bool:
        return self.rules.remove_rule(popup_id, kind)

    def set_preferences(self, visitor_id: str, preferences: Mapping[str, Any]) -> None:
        """
        Merge `preferences` into the visitor's overrides. `max_per_day=None` clears it.
        """

        require_id(visitor_id, "visitor_id")
        updates = _validate_preferences(preferences)
        with self.visitors.lock(visitor_id):
            record = self.visitors.ensure(visitor_id)
            for key, value in updates.items():
                if value is None:
                    record.preferences.pop(key, None)
                else:
                    record.preferences[key] = value

    def get_preferences(self, visitor_id: str) -> Dict[str, Any]:
        with self.visitors.lock(visitor_id):
            record = self.visitors.get(visitor_id)
            return dict(record.preferences) if record else {}

    def set_blocker(self, visitor_id: str, blocked: bool = True) -> None:
        """
        Flag (or unflag) a visitor as a popup blocker from an external signal.
        """

        require_id(visitor_id, "visitor_id")
        with self.visitors.lock(visitor_id):
            self.visitors.ensure_profile(visitor_id).blocker = bool(blocked)

    def classify_visitor(self, visitor_id: str) -> VisitorState:
        with self.visitors.lock(visitor_id):
            profile = self.visitors.profile(visitor_id)
            if profile is None:
                return VisitorState.NEW_VISITOR
            return classify(profile)

    def reset_visitor(self, visitor_id: str, popup_id: Optional[str] = None) -> None:
        require_id(visitor_id, "visitor_id")
        with self.visitors.lock(visitor_id):
            record = self.visitors.get(visitor_id)
            if record is None:
                return
            if popup_id:
                record.last_seen.pop(popup_id, None)
                record.history = [item for item in record.history if item.popup_id != popup_id]
            else:
                record.total_shown = 0
                record.history = []
                record.last_seen = {}

    # ------------------------------------------------------------------
    # Reporting and state transfer
    # ------------------------------------------------------------------

    def summarize(self, window_days: float = 7) -> monitoring.Report:
        if isinstance(window_days, bool) or not isinstance(window_days, (int, float)) or window_days <= 0:
            raise InvalidArgument(f"window_days must be a positive number, got {window_days!r}")
        now = as_utc(self.clock())
        snapshots = []
        for visitor_id in self.visitors.visitor_ids():
            record, profile = self.visitors.snapshot(visitor_id)
            if record is not None:
                record.heal(self.config.history_limit, self.config.history_keep)
            snapshots.append((visitor_id, record, profile))
        return monitoring.summarize(snapshots, now, window_days, self.config)

    def evict_idle_sessions(self, max_idle: timedelta = timedelta(days=1)) -> int:
        """
        Forget sessions with no show in the last `max_idle`. Returns the count removed.
        """

        return self.sessions.evict_before(as_utc(self.clock()) - max_idle)

    def export_state(self) -> Dict[str, Any]:
        """
        JSON-safe snapshot of configuration, rules and visitor preferences.
        """

        return {
            "version": SNAPSHOT_VERSION,
            "config": self.config.to_dict(),
            "rules": self.rules.export(),
            "preferences": self.visitors.preferences(),
        }

    def import_state(self, snapshot: Mapping[str, Any]) -> None:
        """
        Apply an `export_state()` snapshot. Nothing changes if any part is invalid.
        """

        if not isinstance(snapshot, Mapping):
            raise InvalidArgument("snapshot must be a mapping")
        version = snapshot.get("version", SNAPSHOT_VERSION)
        if version != SNAPSHOT_VERSION:
            raise StateCorruption(f"unsupported snapshot version {version!r}")

        config = self.config
        if snapshot.get("config"):
            merged = self.config.to_dict()
            merged.update(snapshot["config"])
            config = FrequencyConfig.from_mapping(merged)

        staged_rules = None
        if "rules" in snapshot:
            staged_rules = RuleRegistry()
            staged_rules.load(snapshot["rules"] or {})

        preferences = {}
        for visitor_id, prefs in (snapshot.get("preferences") or {}).items():
            require_id(visitor_id, "visitor_id")
            preferences[visitor_id] = _validate_preferences(prefs)

        self.config = config
        self.adjuster.config = config
        self.counters.retention_days = config.counter_retention_days
        if staged_rules is not None:
            self.rules = staged_rules
        for visitor_id, prefs in preferences.items():
            self.set_preferences(visitor_id, prefs)

    # ------------------------------------------------------------------

    def _timestamp(self, context: Mapping[str, Any]) -> datetime:
        ts = context.get("timestamp")
        if ts is None:
            return as_utc(self.clock())
        if not isinstance(ts, datetime):
            raise InvalidArgument(f"context timestamp must be a datetime, got {ts!r}")
        return as_utc(ts)

    def _heal(
        self,
        visitor_id: str,
        record: Optional[VisitorRecord],
        profile: Optional[BehaviorProfile],
    ) -> None:
        if record is not None and record.heal(self.config.history_limit, self.config.history_keep):
            logger.warning("visitor %s: repaired history state", visitor_id)
        if profile is not None and profile.heal(self.config.interaction_limit, self.config.interaction_keep):
            logger.warning("visitor %s: trimmed interaction timeline", visitor_id)


def _validate_preferences(preferences: Any) -> Dict[str, Any]:
    if not isinstance(preferences, Mapping):
        raise InvalidArgument("preferences must be a mapping")
    updates = dict(preferences)
    cap = updates.get("max_per_day")
    if cap is not None and (isinstance(cap, bool) or not isinstance(cap, int) or cap < 0):
        raise InvalidArgument(f"max_per_day must be a non-negative integer, got {cap!r}")
    return updates
