"""
Per-popup frequency rule registry.
"""

from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

from .data_models import FrequencyRule, as_utc, utc_now
from .errors import InvalidArgument, UnknownRule, require_id


class RuleKind(str, Enum):
    MAX_PER_HOUR = "max_per_hour"
    MAX_PER_DAY = "max_per_day"
    MAX_PER_WEEK = "max_per_week"
    MAX_PER_MONTH = "max_per_month"
    MIN_INTERVAL = "min_interval"  # seconds
    COOLDOWN_PERIOD = "cooldown_period"  # seconds

    @classmethod
    def parse(cls, kind: Any) -> "RuleKind":
        if isinstance(kind, cls):
            return kind
        try:
            return cls(str(kind).lower())
        except ValueError:
            pass
        try:
            return cls[str(kind).upper()]
        except KeyError:
            raise UnknownRule(f"unknown rule kind {kind!r}") from None


class RuleRegistry:
    """
    Stores one rule per (popup, kind). The last write wins; there is no merging.
    """

    def __init__(self) -> None:
        self._rules: Dict[str, Dict[RuleKind, FrequencyRule]] = {}
        self._lock = threading.Lock()

    def set_rule(
        self,
        popup_id: str,
        kind: Any,
        value: float,
        enabled: bool = True,
        priority: int = 1,
        conditions: Optional[Mapping[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ) -> FrequencyRule:
        require_id(popup_id, "popup_id")
        rule_kind = RuleKind.parse(kind)
        if isinstance(value, bool) or not isinstance(value, Real) or value < 0:
            raise InvalidArgument(
                f"rule value for {rule_kind.value} must be a non-negative number, got {value!r}"
            )
        if not isinstance(enabled, bool):
            raise InvalidArgument(f"rule enabled flag must be a bool, got {enabled!r}")
        if isinstance(priority, bool) or not isinstance(priority, int):
            raise InvalidArgument(f"rule priority must be an int, got {priority!r}")
        rule = FrequencyRule(
            popup_id=popup_id,
            kind=rule_kind.value,
            value=value,
            enabled=enabled,
            priority=priority,
            conditions=dict(conditions or {}),
            created_at=as_utc(created_at) if created_at else utc_now(),
        )
        with self._lock:
            self._rules.setdefault(popup_id, {})[rule_kind] = rule
        return rule

    def get_rules(self, popup_id: str) -> List[FrequencyRule]:
        with self._lock:
            rules = list(self._rules.get(popup_id, {}).values())
        return sorted(rules, key=lambda rule: rule.priority, reverse=True)

    def active_rule(self, popup_id: str, kind: RuleKind) -> Optional[FrequencyRule]:
        """
        Return the rule only when it exists and is enabled.
        """

        with self._lock:
            rule = self._rules.get(popup_id, {}).get(kind)
        if rule is None or not rule.enabled:
            return None
        return rule

    def remove_rule(self, popup_id: str, kind: Any) -> bool:
        rule_kind = RuleKind.parse(kind)
        with self._lock:
            rules = self._rules.get(popup_id)
            if not rules or rule_kind not in rules:
                return False
            del rules[rule_kind]
            if not rules:
                del self._rules[popup_id]
        return True

    def export(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        with self._lock:
            return {
                popup_id: {kind.value: rule.to_dict() for kind, rule in rules.items()}
                for popup_id, rules in self._rules.items()
            }

    def load(self, data: Mapping[str, Mapping[str, Mapping[str, Any]]]) -> None:
        """
        Replace every rule with the contents of an `export()` mapping.
        """

        staged = RuleRegistry()
        for popup_id, rules in data.items():
            for kind, fields in rules.items():
                if not isinstance(fields, Mapping) or "value" not in fields:
                    raise InvalidArgument(f"rule {popup_id}/{kind} has no value")
                staged.set_rule(
                    popup_id,
                    kind,
                    fields["value"],
                    enabled=fields.get("enabled", True),
                    priority=fields.get("priority", 1),
                    conditions=fields.get("conditions"),
                    created_at=_parse_created(fields.get("created_at")),
                )
        with self._lock:
            self._rules = staged._rules


def _parse_created(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        raise InvalidArgument(f"rule created_at must be an ISO timestamp, got {value!r}")
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise InvalidArgument(f"rule created_at is not an ISO timestamp: {value!r}") from None
