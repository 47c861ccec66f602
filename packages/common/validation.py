"""Argument checks shared by the service layer.

These run before any store call so bad input never costs a round trip.
"""

from __future__ import annotations

import math

from packages.common.exceptions import AuthorizationError, ValidationError

# Placeholder strings that clients send when an id was never set.
_PLACEHOLDER_IDS = frozenset({"undefined", "null"})


def require_id(name: str, value: str | None) -> str:
    """Return ``value`` stripped, or raise ValidationError when it is empty or a placeholder."""
    if value is None or not isinstance(value, str):
        raise ValidationError(f"{name} is required", context={"field": name})
    stripped = value.strip()
    if not stripped or stripped in _PLACEHOLDER_IDS:
        raise ValidationError(f"{name} is required", context={"field": name})
    return stripped


def require_text(name: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{name} must not be empty", context={"field": name})
    return value.strip()


def check_requester(requester_id: str | None, user_id: str) -> None:
    """Reject callers acting on another user's data.

    ``requester_id`` is None for trusted internal callers (CLI, jobs).
    """
    if requester_id is not None and requester_id != user_id:
        raise AuthorizationError(
            "Not authorized to access another user's decks",
            context={"user_id": user_id},
        )


def check_range(name: str, value: int, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
        raise ValidationError(
            f"{name} must be between {low} and {high}",
            context={"field": name, "value": value},
        )
    return value


def check_fraction(name: str, value: float | None) -> float | None:
    """Optional number in [0, 1]."""
    if value is None:
        return None
    if isinstance(value, bool) or not math.isfinite(value) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be between 0 and 1", context={"field": name})
    return float(value)


def check_non_negative(name: str, value: float | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not math.isfinite(value) or value < 0:
        raise ValidationError(f"{name} must be a non-negative number", context={"field": name})
    return float(value)
