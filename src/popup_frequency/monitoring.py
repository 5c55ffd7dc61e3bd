"""
Read-only analytics over visitor history: frequency and behaviour distributions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd
import scipy.stats

from .config import FrequencyConfig
from .data_models import BehaviorProfile, VisitorRecord
from .state_machine import VisitorState, classify

BUCKETS = ["0", "1", "2-3", "4-5", "6-10", "10+"]

HISTORY_COLUMNS = ["visitor_id", "popup_id", "timestamp", "action", "response_time_ms"]

BASE_SUGGESTIONS = [
    "Consider reducing frequency for high-dismissal users",
    "Increase frequency for engaged new visitors",
    "Implement time-based optimization",
]

VisitorSnapshot = Tuple[str, Optional[VisitorRecord], Optional[BehaviorProfile]]


def frequency_bucket(count: int) -> str:
    if count <= 0:
        return "0"
    if count == 1:
        return "1"
    if count <= 3:
        return "2-3"
    if count <= 5:
        return "4-5"
    if count <= 10:
        return "6-10"
    return "10+"


@dataclass
class Report:
    """
    Advisory analytics snapshot. Nothing here is fed back into the engine.
    """

    window_days: float
    generated_at: datetime
    total_shown: int = 0
    unique_visitors: int = 0
    active_visitors: int = 0
    popup_breakdown: Dict[str, int] = field(default_factory=dict)
    frequency_distribution: Dict[str, int] = field(default_factory=dict)
    behavior_distribution: Dict[str, int] = field(default_factory=dict)
    conversion_by_frequency: Dict[str, float] = field(default_factory=dict)
    interaction_metrics: Dict[str, float] = field(default_factory=dict)
    insights: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window_days": self.window_days,
            "generated_at": self.generated_at.isoformat(),
            "total_shown": self.total_shown,
            "unique_visitors": self.unique_visitors,
            "active_visitors": self.active_visitors,
            "popup_breakdown": dict(self.popup_breakdown),
            "frequency_distribution": dict(self.frequency_distribution),
            "behavior_distribution": dict(self.behavior_distribution),
            "conversion_by_frequency": dict(self.conversion_by_frequency),
            "interaction_metrics": dict(self.interaction_metrics),
            "insights": dict(self.insights),
        }


def history_frame(
    snapshots: Iterable[VisitorSnapshot], start: datetime, end: datetime
) -> pd.DataFrame:
    """
    One row per show event with `start <= timestamp <= end`.
    """

    rows = []
    for visitor_id, record, _ in snapshots:
        if record is None:
            continue
        for item in record.history:
            if start <= item.timestamp <= end:
                rows.append(
                    {
                        "visitor_id": visitor_id,
                        "popup_id": item.popup_id,
                        "timestamp": item.timestamp,
                        "action": item.action,
                        "response_time_ms": item.response_time_ms,
                    }
                )
    if not rows:
        return pd.DataFrame(columns=HISTORY_COLUMNS)
    return pd.DataFrame(rows, columns=HISTORY_COLUMNS)


def interaction_metrics(history: pd.DataFrame) -> Dict[str, float]:
    """
    Reaction rates per show within the window.
    """

    shows = len(history)
    if shows == 0:
        return {"shows": 0.0, "click_rate": 0.0, "conversion_rate": 0.0, "dismissal_rate": 0.0,
                "avg_response_time_ms": 0.0}
    actions = history["action"].value_counts()
    response = pd.to_numeric(history["response_time_ms"], errors="coerce").mean()
    return {
        "shows": float(shows),
        "click_rate": float(actions.get("clicked", 0) / shows),
        "conversion_rate": float(actions.get("converted", 0) / shows),
        "dismissal_rate": float(actions.get("dismissed", 0) / shows),
        "avg_response_time_ms": float(response if not np.isnan(response) else 0.0),
    }


@dataclass
class DismissalGuardrail:
    """
    Monitors the dismissal rate against an alert level using a Beta posterior.
    """

    alpha_prior: float = 1.0
    beta_prior: float = 1.0

    def probability_above(self, dismissals: int, shows: int, alert_rate: float) -> float:
        alpha_post = self.alpha_prior + dismissals
        beta_post = self.beta_prior + max(shows - dismissals, 0)
        posterior = scipy.stats.beta(alpha_post, beta_post)
        return float(posterior.sf(alert_rate))


def summarize(
    snapshots: List[VisitorSnapshot],
    now: datetime,
    window_days: float,
    config: FrequencyConfig,
    guardrail: Optional[DismissalGuardrail] = None,
) -> Report:
    start = now - timedelta(days=window_days)
    history = history_frame(snapshots, start, now)
    visitor_ids = [visitor_id for visitor_id, record, _ in snapshots if record is not None]

    report = Report(window_days=window_days, generated_at=now)
    report.total_shown = len(history)
    report.unique_visitors = len(visitor_ids)
    report.popup_breakdown = {
        str(k): int(v) for k, v in history["popup_id"].value_counts().items()
    }

    per_visitor = (
        history.groupby("visitor_id").size().reindex(visitor_ids, fill_value=0)
        if visitor_ids
        else pd.Series(dtype="int64")
    )
    report.active_visitors = int((per_visitor > 0).sum())
    buckets = per_visitor.map(frequency_bucket)
    counts = buckets.value_counts()
    report.frequency_distribution = {bucket: int(counts.get(bucket, 0)) for bucket in BUCKETS}

    converted = (
        history.assign(converted=history["action"] == "converted")
        .groupby("visitor_id")["converted"]
        .any()
        .reindex(visitor_ids, fill_value=False)
        if visitor_ids
        else pd.Series(dtype="bool")
    )
    if len(buckets):
        rates = converted.astype(float).groupby(buckets).mean()
        report.conversion_by_frequency = {
            bucket: float(rates[bucket]) for bucket in BUCKETS if bucket in rates.index
        }

    states: Dict[str, int] = {}
    for _, _, profile in snapshots:
        if profile is not None:
            state = classify(profile).value
            states[state] = states.get(state, 0) + 1
    report.behavior_distribution = states

    report.interaction_metrics = interaction_metrics(history)
    report.insights = _insights(report, history, config, guardrail or DismissalGuardrail())
    return report


def _insights(
    report: Report,
    history: pd.DataFrame,
    config: FrequencyConfig,
    guardrail: DismissalGuardrail,
) -> Dict[str, Any]:
    suggestions = list(BASE_SUGGESTIONS)

    profiled = sum(report.behavior_distribution.values())
    dismissers = report.behavior_distribution.get(VisitorState.POPUP_DISMISSER.value, 0)
    if profiled and dismissers / profiled > 0.2:
        suggestions.append(
            f"{dismissers} of {profiled} profiled visitors dismiss most popups; lower their daily cap"
        )

    shows = len(history)
    dismissals = int((history["action"] == "dismissed").sum()) if shows else 0
    probability = guardrail.probability_above(dismissals, shows, config.dismissal_alert_rate)
    if shows and probability > 0.95:
        suggestions.append(
            f"Dismissal rate is likely above {config.dismissal_alert_rate:.0%}; "
            "lengthen the cooldown period"
        )

    heavy = report.frequency_distribution.get("6-10", 0) + report.frequency_distribution.get("10+", 0)
    if heavy:
        suggestions.append(f"{heavy} visitors saw more than 5 popups in the window")

    return {
        "recommended_max_per_day": config.recommended_max_per_day,
        "recommended_cooldown_seconds": config.recommended_cooldown.total_seconds(),
        "dismissal_above_alert_probability": probability,
        "suggestions": suggestions,
    }
