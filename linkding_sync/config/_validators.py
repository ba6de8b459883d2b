from __future__ import annotations

from typing import Any


def _parse_bounded_int(
    value: Any,
    *,
    default: int,
    name: str,
    minimum: int,
    maximum: int,
) -> int:
    try:
        parsed = int(str(value if value not in (None, "") else default))
    except ValueError as exc:
        msg = f"{name} must be a valid integer"
        raise ValueError(msg) from exc
    if parsed < minimum or parsed > maximum:
        msg = f"{name} must be between {minimum} and {maximum}"
        raise ValueError(msg)
    return parsed


def _parse_positive_float(value: Any, *, default: float, name: str, maximum: float) -> float:
    if value in (None, ""):
        return default
    try:
        parsed = float(str(value))
    except ValueError as exc:
        msg = f"{name} must be a valid number"
        raise ValueError(msg) from exc
    if parsed <= 0:
        msg = f"{name} must be positive"
        raise ValueError(msg)
    if parsed > maximum:
        msg = f"{name} must be {maximum:g} seconds or less"
        raise ValueError(msg)
    return parsed


def _ensure_token(value: str, *, name: str) -> str:
    token = value.strip()
    if len(token) > 500:
        msg = f"{name} token appears to be too long"
        raise ValueError(msg)
    if any(char in token for char in [" ", "\n", "\t"]):
        msg = f"{name} token contains invalid characters"
        raise ValueError(msg)
    return token
