"""Shared request-parsing helpers used by the blueprints."""

from datetime import date, datetime, timezone
from urllib.parse import urlencode

from flask import current_app, request

MAX_PAGE_SIZE = 100


def parse_date(value):
    """Parse a date string (ISO or DD.MM.YYYY) to a date object.

    Returns None for empty input; raises ValueError on bad input so the
    caller can answer 400 with a field-level message.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d.%m.%Y").date()
    except (ValueError, TypeError) as exc:
        raise ValueError("Invalid date format. Use YYYY-MM-DD or DD.MM.YYYY.") from exc


def parse_datetime(value):
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Accepts a trailing ``Z``. Returns None for empty input, raises
    ValueError otherwise.
    """
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError("Invalid datetime format. Use ISO-8601.") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_int(value, field):
    """Coerce ``value`` to int or raise ValueError naming ``field``."""
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{field} must be an integer") from exc


def parse_id_list(value, field):
    """Accept a single id or a list of ids; return a list of ints."""
    if value in (None, ""):
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [parse_int(v, field) for v in value]


def parse_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def pagination_params():
    """Return (page, page_size) from the query string, or (None, None).

    Pagination is opt-in: without ``page`` or ``page_size`` the caller
    returns a plain list.
    """
    raw_page = request.args.get("page")
    raw_size = request.args.get("page_size")
    if raw_page is None and raw_size is None:
        return None, None

    default_size = current_app.config.get("DEFAULT_PAGE_SIZE", 20)
    page = parse_int(raw_page, "page") or 1
    page_size = parse_int(raw_size, "page_size") or default_size
    if page < 1:
        raise ValueError("page must be >= 1")
    page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    return page, page_size


def page_url(page, page_size):
    """Absolute URL of the current endpoint for another page."""
    args = request.args.to_dict()
    args["page"] = page
    args["page_size"] = page_size
    return f"{request.base_url}?{urlencode(args)}"
