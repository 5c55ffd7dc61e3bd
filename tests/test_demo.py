"""
Smoke test for the end-to-end demo harness.
"""

from datetime import datetime, timezone

import numpy as np

from popup_frequency import demo


def test_simulated_traffic_respects_daily_caps():
    rng = np.random.default_rng(seed=1)
    clock = demo.SimulatedClock(datetime(2025, 1, 6, 8, 0, tzinfo=timezone.utc))
    engine = demo.build_engine(clock, rng)

    tally = demo.simulate_traffic(engine, clock, rng, num_visitors=15, days=2)
    assert tally.get("allowed", 0) > 0
    assert sum(tally.values()) == 15 * 2 * 2

    frame = engine.event_logger.to_dataframe()
    assert (frame["event_type"] == "exposure").sum() == tally["allowed"]

    for visitor_id in engine.visitors.visitor_ids():
        record = engine.visitors.get(visitor_id)
        cap = engine.config.max_per_day
        for day in {item.timestamp.date() for item in record.history}:
            assert record.shown_on(day) <= cap


def test_main_prints_summary(capsys):
    demo.main()
    out = capsys.readouterr().out
    assert "[main] Frequency distribution:" in out
