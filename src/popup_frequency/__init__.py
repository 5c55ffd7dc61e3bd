"""
popup_frequency
===============

Popup admission and frequency control for on-site promotions.

The package decides whether a popup may be shown to a visitor right now,
classifies visitors by how they react to popups, adapts their personal
daily caps to avoid fatigue, and summarises display history for reporting.
"""

from . import (
    config,
    data_models,
    engine,
    errors,
    events,
    monitoring,
    rules,
    state_machine,
    stores,
)
from .config import FrequencyConfig, load_config
from .data_models import BehaviorProfile, Decision, FrequencyRule
from .engine import FrequencyEngine
from .errors import FrequencyError, InvalidArgument, StateCorruption, UnknownRule
from .rules import RuleKind
from .state_machine import InteractionAction, VisitorState, classify

__all__ = [
    "config",
    "data_models",
    "engine",
    "errors",
    "events",
    "monitoring",
    "rules",
    "state_machine",
    "stores",
    "BehaviorProfile",
    "Decision",
    "FrequencyConfig",
    "FrequencyEngine",
    "FrequencyError",
    "FrequencyRule",
    "InteractionAction",
    "InvalidArgument",
    "RuleKind",
    "StateCorruption",
    "UnknownRule",
    "VisitorState",
    "classify",
    "load_config",
]
