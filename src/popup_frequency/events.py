"""
Event logging utilities for popup exposure experiments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import pandas as pd

COLUMNS = [
    "event_type",
    "event_ts",
    "visitor_id",
    "popup_id",
    "session_id",
    "page",
    "action",
    "response_time_ms",
]


@dataclass
class EventLogger:
    """
    Collects exposure and outcome events into a single DataFrame.

    Each record is a flat dict; use `to_dataframe()` at the end of a run.
    """

    records: List[Dict[str, Any]] = field(default_factory=list)

    def log_exposure(
        self,
        visitor_id: str,
        popup_id: str,
        session_id: str,
        ts: datetime,
        page: Optional[str] = None,
    ) -> None:
        """
        Log that a visitor was shown a popup.
        """
        self.records.append(
            {
                "event_type": "exposure",
                "event_ts": ts,
                "visitor_id": visitor_id,
                "popup_id": popup_id,
                "session_id": session_id,
                "page": page,
                # outcome fields left blank for exposure rows
                "action": None,
                "response_time_ms": None,
            }
        )

    def log_outcome(
        self,
        visitor_id: str,
        popup_id: str,
        action: str,
        ts: datetime,
        response_time_ms: Optional[float] = None,
        session_id: Optional[str] = None,
        page: Optional[str] = None,
    ) -> None:
        """
        Log the visitor's reaction to a popup.
        """
        self.records.append(
            {
                "event_type": "outcome",
                "event_ts": ts,
                "visitor_id": visitor_id,
                "popup_id": popup_id,
                "session_id": session_id,
                "page": page,
                "action": action,
                "response_time_ms": response_time_ms,
            }
        )

    def to_dataframe(self) -> pd.DataFrame:
        """
        Convert all logged events into a single DataFrame.
        """
        if not self.records:
            return pd.DataFrame(columns=COLUMNS)
        return pd.DataFrame(self.records, columns=COLUMNS)
