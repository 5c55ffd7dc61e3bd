"""
Tests for visitor classification and the adaptive frequency adjuster.
"""

from datetime import datetime, timedelta, timezone

import pytest

from popup_frequency.config import FrequencyConfig
from popup_frequency.data_models import BehaviorProfile, VisitorRecord
from popup_frequency.errors import InvalidArgument
from popup_frequency.state_machine import (
    AdaptiveAdjuster,
    InteractionAction,
    VisitorState,
    classify,
    optimal_hour,
    priority_for,
    record_action,
)

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestClassify:
    def test_no_shows_is_new(self):
        assert classify(BehaviorProfile()) is VisitorState.NEW_VISITOR

    def test_conversion_ratio_above_ten_percent(self):
        profile = BehaviorProfile(total_shown=10, conversions=2)
        assert classify(profile) is VisitorState.CONVERTED_USER

    def test_conversion_ratio_exactly_ten_percent_is_not_converted(self):
        profile = BehaviorProfile(total_shown=10, conversions=1)
        assert classify(profile) is VisitorState.RETURNING_VISITOR

    def test_heavy_dismisser(self):
        profile = BehaviorProfile(total_shown=10, dismissals=9, interactions=9)
        assert classify(profile) is VisitorState.POPUP_DISMISSER

    def test_conversion_checked_before_dismissal(self):
        profile = BehaviorProfile(total_shown=10, conversions=2, dismissals=9)
        assert classify(profile) is VisitorState.CONVERTED_USER

    def test_engaged_user(self):
        profile = BehaviorProfile(total_shown=10, interactions=6, dismissals=2)
        assert classify(profile) is VisitorState.ENGAGED_USER

    def test_engaged_needs_low_dismissal(self):
        profile = BehaviorProfile(total_shown=10, interactions=6, dismissals=3)
        assert classify(profile) is VisitorState.RETURNING_VISITOR

    def test_single_show_stays_new(self):
        assert classify(BehaviorProfile(total_shown=1)) is VisitorState.NEW_VISITOR

    def test_blocker_signal_wins(self):
        profile = BehaviorProfile(total_shown=10, conversions=5, blocker=True)
        assert classify(profile) is VisitorState.POPUP_BLOCKER

    def test_classify_is_pure(self):
        profile = BehaviorProfile(total_shown=7, conversions=1, dismissals=3, interactions=4)
        before = BehaviorProfile(**vars(profile))
        results = {classify(profile) for _ in range(20)}
        assert len(results) == 1
        assert profile == before


class TestPriorityAndTiming:
    def test_priorities(self):
        assert priority_for(None) == 8
        assert priority_for(BehaviorProfile()) == 8
        assert priority_for(BehaviorProfile(total_shown=10, interactions=6)) == 7
        assert priority_for(BehaviorProfile(total_shown=10, conversions=3)) == 2
        assert priority_for(BehaviorProfile(total_shown=10, dismissals=10)) == 3
        assert priority_for(BehaviorProfile(total_shown=3)) == 5

    def test_optimal_hour_picks_most_common(self):
        stamps = [T0.replace(hour=9), T0.replace(hour=20), T0.replace(hour=20)]
        hour, confidence = optimal_hour(stamps)
        assert hour == 20
        assert confidence == pytest.approx(2 / 3)

    def test_optimal_hour_tie_goes_to_earliest(self):
        stamps = [T0.replace(hour=18), T0.replace(hour=7)]
        assert optimal_hour(stamps)[0] == 7

    def test_optimal_hour_empty(self):
        assert optimal_hour([]) is None


class TestRecordAction:
    def test_counters(self):
        config = FrequencyConfig()
        profile = BehaviorProfile()
        record_action(profile, InteractionAction.CONVERTED, T0, config)
        record_action(profile, InteractionAction.DISMISSED, T0, config)
        record_action(profile, InteractionAction.CLICKED, T0, config)
        assert (profile.conversions, profile.dismissals, profile.interactions) == (1, 1, 3)
        assert len(profile.interaction_timestamps) == 3
        assert profile.last_activity == T0

    def test_blocked_changes_no_counter(self):
        profile = BehaviorProfile()
        record_action(profile, InteractionAction.BLOCKED, T0, FrequencyConfig())
        assert profile.interactions == 0
        assert profile.interaction_timestamps == []

    def test_timeline_bounded(self):
        config = FrequencyConfig()
        profile = BehaviorProfile()
        for i in range(200):
            record_action(profile, InteractionAction.CLICKED, T0 + timedelta(seconds=i), config)
            assert len(profile.interaction_timestamps) <= config.interaction_limit

    def test_parse_action(self):
        assert InteractionAction.parse("Clicked") is InteractionAction.CLICKED
        with pytest.raises(InvalidArgument):
            InteractionAction.parse("hovered")


class TestAdaptiveAdjuster:
    def _adjust(self, adjuster, record, action, response=None, profile=None):
        adjuster.adjust(record, profile or BehaviorProfile(), InteractionAction(action), response)

    def test_dismissal_decays_from_default(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig(max_per_day=5))
        record = VisitorRecord()
        self._adjust(adjuster, record, "dismissed")
        assert record.preferences["max_per_day"] == 4

    def test_dismissal_never_increases_or_drops_below_one(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig(max_per_day=10))
        record = VisitorRecord()
        caps = []
        for _ in range(20):
            self._adjust(adjuster, record, "dismissed")
            caps.append(record.preferences["max_per_day"])
        assert caps == sorted(caps, reverse=True)
        assert caps[-1] == 1

    def test_dismissal_keeps_blocked_visitor_at_zero(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig())
        record = VisitorRecord(preferences={"max_per_day": 0})
        self._adjust(adjuster, record, "dismissed")
        assert record.preferences["max_per_day"] == 0

    def test_conversion_sets_one(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig())
        record = VisitorRecord(preferences={"max_per_day": 8})
        self._adjust(adjuster, record, "converted")
        assert record.preferences["max_per_day"] == 1

    def test_block_sets_zero(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig())
        record = VisitorRecord()
        self._adjust(adjuster, record, "blocked")
        assert record.preferences["max_per_day"] == 0

    def test_click_updates_response_average(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig())
        record = VisitorRecord()
        profile = BehaviorProfile()
        self._adjust(adjuster, record, "clicked", 400.0, profile)
        self._adjust(adjuster, record, "clicked", 200.0, profile)
        assert profile.response_time_avg_ms == pytest.approx(300.0)
        assert "max_per_day" not in record.preferences

    def test_disabled_learning_leaves_cap_alone(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig(adaptive_learning=False))
        record = VisitorRecord()
        self._adjust(adjuster, record, "converted")
        assert record.preferences == {}

    def test_disabled_learning_still_tracks_response_time(self):
        adjuster = AdaptiveAdjuster(FrequencyConfig(adaptive_learning=False))
        record = VisitorRecord()
        profile = BehaviorProfile()
        self._adjust(adjuster, record, "clicked", 400.0, profile)
        self._adjust(adjuster, record, "clicked", 200.0, profile)
        assert profile.response_time_avg_ms == pytest.approx(300.0)
        assert record.preferences == {}
