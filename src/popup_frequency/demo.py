"""
End-to-end demo wiring together the popup_frequency components
with event logging and analytics.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict

import numpy as np

from . import config, engine, events, rules

# Reaction probabilities per synthetic visitor persona
PERSONAS: Dict[str, Dict[str, float]] = {
    "browser": {"dismissed": 0.5, "clicked": 0.2, "converted": 0.02},
    "shopper": {"dismissed": 0.2, "clicked": 0.5, "converted": 0.15},
    "annoyed": {"dismissed": 0.95, "clicked": 0.0, "converted": 0.0},
}


class SimulatedClock:
    """
    Manually advanced clock so the demo covers several days in one run.
    """

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


def build_engine(clock: SimulatedClock, rng: np.random.Generator) -> engine.FrequencyEngine:
    """
    Engine with the `moderate` preset and a couple of per-popup rules.
    """

    frequency_engine = engine.FrequencyEngine(
        config=config.FrequencyConfig.preset("moderate"),
        clock=clock,
        rng=rng,
        event_logger=events.EventLogger(),
    )
    frequency_engine.set_rule("exit_intent", rules.RuleKind.MAX_PER_DAY, 40)
    frequency_engine.set_rule("exit_intent", rules.RuleKind.COOLDOWN_PERIOD, 2 * 3600)
    frequency_engine.set_rule("newsletter", rules.RuleKind.MAX_PER_HOUR, 5)
    return frequency_engine


def simulate_traffic(
    frequency_engine: engine.FrequencyEngine,
    clock: SimulatedClock,
    rng: np.random.Generator,
    num_visitors: int = 60,
    days: int = 5,
) -> Dict[str, int]:
    """
    Drive random page views through evaluate / record_shown / record_interaction.

    Returns a tally of decision reasons.
    """

    visitor_ids = [f"visitor_{i}" for i in range(num_visitors)]
    personas = rng.choice(list(PERSONAS), size=num_visitors, p=[0.5, 0.3, 0.2])
    popups = ["exit_intent", "newsletter"]
    tally: Dict[str, int] = {}

    for day in range(days):
        for visit in range(num_visitors * 2):
            idx = int(rng.integers(num_visitors))
            visitor_id = visitor_ids[idx]
            session_id = f"{visitor_id}_d{day}_s{int(rng.integers(3))}"
            popup_id = popups[int(rng.integers(len(popups)))]
            clock.advance(timedelta(seconds=int(rng.integers(30, 600))))

            decision = frequency_engine.evaluate(visitor_id, popup_id, session_id, {"page": "/"})
            key = "allowed" if decision.allowed else decision.reason
            tally[key] = tally.get(key, 0) + 1
            if not decision.allowed:
                continue

            frequency_engine.record_shown(visitor_id, popup_id, session_id, {"page": "/"})
            odds = PERSONAS[personas[idx]]
            draw = rng.random()
            reaction = None
            if draw < odds["converted"]:
                reaction = "converted"
            elif draw < odds["converted"] + odds["clicked"]:
                reaction = "clicked"
            elif draw < odds["converted"] + odds["clicked"] + odds["dismissed"]:
                reaction = "dismissed"
            if reaction is not None:
                clock.advance(timedelta(seconds=int(rng.integers(1, 20))))
                frequency_engine.record_interaction(visitor_id, popup_id, reaction)
        clock.advance(timedelta(days=1))
    return tally


def main() -> None:
    rng = np.random.default_rng(seed=123)
    clock = SimulatedClock(datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc))
    frequency_engine = build_engine(clock, rng)

    tally = simulate_traffic(frequency_engine, clock, rng)
    print("[main] Decision outcomes:")
    for reason, count in sorted(tally.items(), key=lambda item: item[1], reverse=True):
        print(f"    {reason}: {count}")

    events_df = frequency_engine.event_logger.to_dataframe()
    print(f"[main] Logged {len(events_df)} events.")
    print(events_df.groupby(["event_type", "popup_id"]).size())

    report = frequency_engine.summarize(window_days=7)
    print("[main] Frequency distribution:", report.frequency_distribution)
    print("[main] Behaviour distribution:", report.behavior_distribution)
    print("[main] Interaction metrics:", report.interaction_metrics)
    for suggestion in report.insights["suggestions"]:
        print(f"[main] Suggestion: {suggestion}")


if __name__ == "__main__":
    main()
