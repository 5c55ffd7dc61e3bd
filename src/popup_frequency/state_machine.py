"""
Visitor behaviour classification and adaptive frequency adjustment.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

from .config import FrequencyConfig
from .data_models import BehaviorProfile, VisitorRecord
from .errors import InvalidArgument

logger = logging.getLogger(__name__)

CONVERSION_THRESHOLD = 0.10
DISMISSAL_THRESHOLD = 0.80
ENGAGED_MIN_INTERACTIONS = 5
ENGAGED_MAX_DISMISSAL = 0.30
DISMISSAL_DECAY = 0.8


class VisitorState(str, Enum):
    NEW_VISITOR = "new_visitor"
    RETURNING_VISITOR = "returning_visitor"
    ENGAGED_USER = "engaged_user"
    CONVERTED_USER = "converted_user"
    POPUP_DISMISSER = "popup_dismisser"
    POPUP_BLOCKER = "popup_blocker"


class InteractionAction(str, Enum):
    DISMISSED = "dismissed"
    CLICKED = "clicked"
    CONVERTED = "converted"
    BLOCKED = "blocked"

    @classmethod
    def parse(cls, action: Any) -> "InteractionAction":
        if isinstance(action, cls):
            return action
        try:
            return cls(str(action).lower())
        except ValueError:
            raise InvalidArgument(
                f"unknown action {action!r}; expected one of {[a.value for a in cls]}"
            ) from None


def classify(profile: BehaviorProfile) -> VisitorState:
    """
    Map a behaviour profile to a visitor state. First match wins.
    """

    if profile.blocker:
        return VisitorState.POPUP_BLOCKER
    if profile.total_shown == 0:
        return VisitorState.NEW_VISITOR

    conversion_rate = profile.conversions / profile.total_shown
    dismissal_rate = profile.dismissals / profile.total_shown

    if conversion_rate > CONVERSION_THRESHOLD:
        return VisitorState.CONVERTED_USER
    if dismissal_rate > DISMISSAL_THRESHOLD:
        return VisitorState.POPUP_DISMISSER
    if profile.interactions > ENGAGED_MIN_INTERACTIONS and dismissal_rate < ENGAGED_MAX_DISMISSAL:
        return VisitorState.ENGAGED_USER
    if profile.total_shown > 1:
        return VisitorState.RETURNING_VISITOR
    return VisitorState.NEW_VISITOR


_PRIORITY: Dict[VisitorState, int] = {
    VisitorState.NEW_VISITOR: 8,
    VisitorState.ENGAGED_USER: 7,
    VisitorState.CONVERTED_USER: 2,
    VisitorState.POPUP_DISMISSER: 3,
}
DEFAULT_PRIORITY = 5


def priority_for(profile: Optional[BehaviorProfile]) -> int:
    if profile is None:
        return _PRIORITY[VisitorState.NEW_VISITOR]
    return _PRIORITY.get(classify(profile), DEFAULT_PRIORITY)


def optimal_hour(timestamps: Sequence[datetime]) -> Optional[Tuple[int, float]]:
    """
    UTC hour with the most recorded interactions and the share it represents.

    Ties go to the earliest hour.
    """

    if not timestamps:
        return None
    counts = np.bincount([ts.hour for ts in timestamps], minlength=24)
    hour = int(np.argmax(counts))
    return hour, float(counts[hour] / len(timestamps))


def record_action(
    profile: BehaviorProfile,
    action: InteractionAction,
    timestamp: datetime,
    config: FrequencyConfig,
) -> None:
    """
    Update profile counters and the bounded interaction timeline.
    """

    profile.last_activity = timestamp
    if action is InteractionAction.BLOCKED:
        return
    if action is InteractionAction.CONVERTED:
        profile.conversions += 1
    elif action is InteractionAction.DISMISSED:
        profile.dismissals += 1
    profile.interactions += 1
    profile.add_interaction_time(timestamp, config.interaction_limit, config.interaction_keep)


class AdaptiveAdjuster:
    """
    Lowers a visitor's personal daily cap in response to their reactions.
    """

    def __init__(self, config: FrequencyConfig) -> None:
        self.config = config

    def current_cap(self, record: VisitorRecord) -> int:
        cap = record.preferences.get("max_per_day")
        if cap is None:
            cap = self.config.max_per_day
        # Without any default the decay starts from a single daily show.
        return 1 if cap is None else int(cap)

    def adjust(
        self,
        record: VisitorRecord,
        profile: BehaviorProfile,
        action: InteractionAction,
        response_time_ms: Optional[float] = None,
    ) -> None:
        if action is InteractionAction.CLICKED and response_time_ms is not None:
            if profile.response_time_avg_ms == 0:
                profile.response_time_avg_ms = float(response_time_ms)
            else:
                profile.response_time_avg_ms = (profile.response_time_avg_ms + response_time_ms) / 2
        if not self.config.adaptive_learning:
            return

        before = record.preferences.get("max_per_day")
        if action is InteractionAction.DISMISSED:
            current = self.current_cap(record)
            # A blocked visitor (cap 0) stays blocked.
            if current >= 1:
                record.preferences["max_per_day"] = max(1, math.floor(current * DISMISSAL_DECAY))
        elif action is InteractionAction.CONVERTED:
            record.preferences["max_per_day"] = 1
        elif action is InteractionAction.BLOCKED:
            record.preferences["max_per_day"] = 0

        after = record.preferences.get("max_per_day")
        if after != before:
            logger.debug("max_per_day %s -> %s after %s", before, after, action.value)
