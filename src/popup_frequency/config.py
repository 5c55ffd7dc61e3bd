"""
Engine-wide configuration for popup frequency control.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import InvalidArgument


_DURATION_FIELDS = ("default_cooldown", "recommended_cooldown")


@dataclass(frozen=True)
class FrequencyConfig:
    """
    Defaults applied when neither a popup rule nor a visitor preference
    overrides them.

    `max_per_day` and `max_per_session` accept `None` for "no limit".
    """

    max_per_day: Optional[int] = 3
    max_per_session: Optional[int] = 1
    default_cooldown: timedelta = field(default_factory=lambda: timedelta(hours=1))
    adaptive_learning: bool = True
    respect_user_preferences: bool = True

    # Probabilistic throttling for behaviour-based suppression
    dismisser_admit_rate: float = 0.3
    converted_admit_rate: float = 0.1

    # Bounded sequences: once `*_limit` is exceeded keep the newest `*_keep`
    history_limit: int = 100
    history_keep: int = 50
    interaction_limit: int = 50
    interaction_keep: int = 25

    counter_retention_days: int = 35

    # Advisory values reported by analytics
    recommended_max_per_day: int = 3
    recommended_cooldown: timedelta = field(default_factory=lambda: timedelta(hours=1))
    dismissal_alert_rate: float = 0.5

    def __post_init__(self) -> None:
        for name in ("max_per_day", "max_per_session"):
            value = getattr(self, name)
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
                raise InvalidArgument(f"{name} must be a non-negative integer or None, got {value!r}")
        for name in ("dismisser_admit_rate", "converted_admit_rate", "dismissal_alert_rate"):
            value = getattr(self, name)
            if not 0.0 <= float(value) <= 1.0:
                raise InvalidArgument(f"{name} must lie in [0, 1], got {value!r}")
        if self.default_cooldown < timedelta(0):
            raise InvalidArgument("default_cooldown must not be negative")
        if not 0 < self.history_keep <= self.history_limit:
            raise InvalidArgument("history_keep must be positive and not exceed history_limit")
        if not 0 < self.interaction_keep <= self.interaction_limit:
            raise InvalidArgument("interaction_keep must be positive and not exceed interaction_limit")
        if self.counter_retention_days < 1:
            raise InvalidArgument("counter_retention_days must be at least 1")

    @classmethod
    def preset(cls, name: str, **overrides: Any) -> "FrequencyConfig":
        try:
            values = PRESETS[name.lower()]
        except KeyError:
            raise InvalidArgument(
                f"unknown preset {name!r}; expected one of {sorted(PRESETS)}"
            ) from None
        return replace(cls(**values), **overrides)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "FrequencyConfig":
        """
        Build a config from plain values, e.g. a parsed YAML or JSON document.

        Durations are given in seconds. A `preset` key selects the starting
        point that the remaining keys override.
        """

        values = dict(values)
        preset = values.pop("preset", None)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidArgument(f"unknown configuration keys: {unknown}")

        for name in _DURATION_FIELDS:
            if name in values and not isinstance(values[name], timedelta):
                values[name] = _seconds(values[name], name)

        if preset is not None:
            return cls.preset(preset, **values)
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "FrequencyConfig":
        """
        Read the `POPUP_*` variables from `environ` (or `os.environ`).
        """

        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}
        if env.get("POPUP_PRESET"):
            values["preset"] = env["POPUP_PRESET"]
        if "POPUP_MAX_PER_DAY" in env:
            values["max_per_day"] = _optional_int(env["POPUP_MAX_PER_DAY"], "POPUP_MAX_PER_DAY")
        if "POPUP_MAX_PER_SESSION" in env:
            values["max_per_session"] = _optional_int(
                env["POPUP_MAX_PER_SESSION"], "POPUP_MAX_PER_SESSION"
            )
        if "POPUP_DEFAULT_COOLDOWN_SECONDS" in env:
            values["default_cooldown"] = env["POPUP_DEFAULT_COOLDOWN_SECONDS"]
        if "POPUP_ADAPTIVE_LEARNING" in env:
            values["adaptive_learning"] = _flag(env["POPUP_ADAPTIVE_LEARNING"])
        return cls.from_mapping(values)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for name in _DURATION_FIELDS:
            data[name] = getattr(self, name).total_seconds()
        return data


PRESETS: Dict[str, Dict[str, Any]] = {
    "conservative": {
        "max_per_day": 1,
        "max_per_session": 1,
        "default_cooldown": timedelta(hours=24),
        "adaptive_learning": True,
    },
    "moderate": {
        "max_per_day": 3,
        "max_per_session": 2,
        "default_cooldown": timedelta(hours=4),
        "adaptive_learning": True,
    },
    "aggressive": {
        "max_per_day": 5,
        "max_per_session": 3,
        "default_cooldown": timedelta(hours=1),
        "adaptive_learning": True,
    },
    "minimal": {
        "max_per_day": 1,
        "max_per_session": 1,
        "default_cooldown": timedelta(days=7),
        "adaptive_learning": False,
    },
}


def load_config(path: str | Path) -> FrequencyConfig:
    """
    Load a config from a YAML file. An empty file yields the defaults.
    """

    with open(path, "r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise InvalidArgument(f"{path}: expected a mapping at the top level")
    # Allow the settings to live under a `frequency:` section
    if isinstance(data.get("frequency"), dict):
        data = data["frequency"]
    return FrequencyConfig.from_mapping(data)


def _seconds(value: Any, name: str) -> timedelta:
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"{name} must be a number of seconds, got {value!r}") from None
    return timedelta(seconds=seconds)


def _optional_int(raw: str, name: str) -> Optional[int]:
    if raw.strip().lower() in ("", "none", "unlimited"):
        return None
    try:
        return int(raw)
    except ValueError:
        raise InvalidArgument(f"{name} must be an integer, got {raw!r}") from None


def _flag(raw: str) -> bool:
    return raw.strip().lower() not in ("0", "false", "no", "off")
