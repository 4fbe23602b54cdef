from __future__ import annotations

from datetime import date, datetime
from typing import Any

from flask import current_app

from .time_utils import parse_iso_datetime


# Maximum amount: $9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate voucher number)."""


def require_fields(data: Any, *fields: str) -> dict:
    """Body must be a JSON object carrying every field; returns it."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    missing = [f for f in fields if data.get(f) is None]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return data


def parse_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON payloads.

    Accepts ints and plain digit strings; rejects bools, floats,
    decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def parse_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    cents = parse_int(value, field, minimum=0)
    if not allow_zero and cents == 0:
        raise ValidationError(f"{field} must be > 0")
    if cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}")
    return cents


def parse_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return parse_int(value, field)


def parse_date(value: Any, field: str) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")


def parse_datetime(value: Any, field: str) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def parse_list_arg(value: str | None) -> list[str]:
    """Comma separated query-string filter -> list (empty when absent)."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def pagination_args(args) -> tuple[int, int]:
    """Read ?page=&page_size= honoring the configured bounds."""
    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    max_size = current_app.config.get("MAX_PAGE_SIZE", 200)

    page = parse_int(args.get("page", 1), "page", minimum=1)
    page_size = parse_int(args.get("page_size", default_size), "page_size", minimum=1)
    return page, min(page_size, max_size)


def paginate(query, page: int, page_size: int) -> dict:
    """Apply LIMIT/OFFSET and return the listing envelope used by every list endpoint."""
    total = query.order_by(None).count()
    rows = query.limit(page_size).offset((page - 1) * page_size).all()
    total_pages = (total + page_size - 1) // page_size if total else 0
    return {
        "items": rows,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": total_pages,
    }


def serialize_page(result: dict) -> dict:
    return {**result, "items": [row.to_dict() for row in result["items"]]}


def parse_document_fields(data: dict, allowed) -> dict:
    """
    Pick editable header fields from a payload, coercing by naming convention:
    *_date -> date, *_cents -> cents, *_id -> optional int.
    """
    fields = {}
    for key in allowed:
        if key not in data:
            continue
        value = data[key]
        if key.endswith("_date"):
            value = parse_date(value, key)
        elif key.endswith("_cents"):
            value = parse_cents(value, key)
        elif key.endswith("_id"):
            value = parse_optional_int(value, key)
        fields[key] = value
    return fields
