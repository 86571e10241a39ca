"""
Shared helpers used across blueprints.

Request parsing, pagination, and snake_case -> camelCase view shaping.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any

from flask import request
from flask_login import current_user

_FILENAME_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")


def current_user_id() -> int | None:
    """Return the current authenticated user's ID, or None for anonymous callers."""
    if current_user.is_authenticated:
        return current_user.id
    return None


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def today_utc() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def json_body() -> dict:
    """Parsed JSON body, or {} when absent or malformed."""
    data = request.get_json(silent=True, force=True)
    return data if isinstance(data, dict) else {}


def form_or_json() -> dict:
    """Accept either a JSON body or a form post (login, simple clients)."""
    if request.is_json:
        return json_body()
    return request.form.to_dict()


def client_ip() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.remote_addr or ""


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def parse_int(value: Any, default: int | None = None) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_list(value: Any) -> list[str]:
    """Accept a list, a JSON array string, or a comma-separated string."""
    if value is None or value == "":
        return []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    text = str(value).strip()
    if text.startswith("["):
        try:
            loaded = json.loads(text)
            if isinstance(loaded, list):
                return [str(v).strip() for v in loaded if str(v).strip()]
        except ValueError:
            pass
    return [part.strip() for part in text.split(",") if part.strip()]


def slug_option(value: str) -> str:
    """'High School' -> 'high-school' for enum-like form fields."""
    return re.sub(r"\s+", "-", (value or "").strip().lower())


def sanitize_filename(name: str) -> str:
    return _FILENAME_UNSAFE.sub("_", name or "file")


def camelize(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def camel_dict(row: dict) -> dict:
    return {camelize(k): v for k, v in row.items()}


# ── Pagination ──────────────────────────────────────────────

def paginate_args(default_limit: int = 20, max_limit: int = 100) -> tuple[int, int]:
    """Extract page/limit from request.args. Returns (page, limit)."""
    try:
        page = max(1, int(request.args.get("page", 1)))
    except (ValueError, TypeError):
        page = 1
    try:
        limit = min(max_limit, max(1, int(request.args.get("limit", default_limit))))
    except (ValueError, TypeError):
        limit = default_limit
    return page, limit


def page_count(total: int, limit: int) -> int:
    return max(1, (total + limit - 1) // limit)


def paginated_response(items: list, total: int, page: int, limit: int) -> dict:
    """Standard pagination envelope."""
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": page_count(total, limit),
        },
    }
