from __future__ import annotations

from typing import Any

from .errors import ValidationError


def clean_str(value: Any, *, field: str, required: bool = False, max_len: int | None = None) -> str | None:
    """Strip a text input; blank becomes None (or an error when required)."""
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if max_len is not None and len(stripped) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return stripped


def to_int(value: Any, *, field: str, min_value: int | None = None) -> int:
    """
    Strict integer parsing.

    Rejects bools, floats, decimals ("12.5") and scientific notation ("1e3").
    """
    if value is None:
        raise ValidationError(f"{field} is required")
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if min_value is not None and result < min_value:
        raise ValidationError(f"{field} must be at least {min_value}")
    return result


def to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "1", "yes"):
            return True
        if lowered in ("false", "0", "no"):
            return False
    raise ValidationError(f"{field} must be a boolean")
