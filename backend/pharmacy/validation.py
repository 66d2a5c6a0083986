# Overview: Coercion of request arguments and JSON fields into typed values.

from __future__ import annotations

from datetime import datetime
from typing import Any

from .errors import ValidationError
from .time_utils import parse_iso_datetime


MAX_PAGE_SIZE = 200


def coerce_int(name: str, value: Any, *, default: int | None = None, minimum: int | None = None) -> int | None:
    """
    Strict integer coercion. Accepts ints and plain digit strings only;
    floats, booleans and scientific notation are rejected.
    """
    if value is None or value == "":
        return default

    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", details={name: value})
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{name} must be a plain integer", details={name: value})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", details={name: value})
    else:
        raise ValidationError(f"{name} must be an integer", details={name: value})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be at least {minimum}", details={name: value})
    return result


def coerce_bool(name: str, value: Any) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    raise ValidationError(f"{name} must be a boolean", details={name: value})


def coerce_datetime(name: str, value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be an ISO-8601 string", details={name: value})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 date or datetime", details={name: value})


def page_params(args, *, default_limit: int = 20) -> tuple[int, int]:
    limit = coerce_int("limit", args.get("limit"), default=default_limit, minimum=1)
    offset = coerce_int("offset", args.get("offset"), default=0, minimum=0)
    return min(limit, MAX_PAGE_SIZE), offset
