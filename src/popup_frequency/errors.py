"""
Exception types raised by the popup frequency engine.
"""

from __future__ import annotations


class FrequencyError(Exception):
    """
    Base class for every error the engine surfaces to its caller.
    """


class InvalidArgument(FrequencyError, ValueError):
    """
    A caller passed a missing identifier or a malformed value.
    """


class UnknownRule(FrequencyError, KeyError):
    """
    A rule kind outside the supported set was requested.
    """

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message instead.
        return str(self.args[0]) if self.args else ""


class StateCorruption(FrequencyError):
    """
    Stored or imported state cannot be repaired automatically.
    """


def require_id(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument(f"{name} must be a non-empty string, got {value!r}")
    return value
