"""Weekly timetable rules: entry validation, ordering and time conflicts."""

from __future__ import annotations

import re
from typing import Any

from errors import ValidationError
from helpers import parse_bool, parse_int

DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
ENTRY_TYPES = ("class", "study", "exam", "meeting", "other")
TIME_FORMATS = ("12h", "24h")

DEFAULT_SETTINGS = {
    "time_format": "12h",
    "start_hour": 7,
    "end_hour": 22,
    "show_weekends": True,
    "color_scheme": "default",
}

_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def to_minutes(value: str) -> int:
    match = _TIME_RE.match(value or "")
    if not match:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def normalize_day(value: str) -> str:
    for day in DAYS:
        if day.lower() == (value or "").strip().lower():
            return day
    raise ValidationError(f"Invalid day '{value}'")


def overlaps(start_a: str, end_a: str, start_b: str, end_b: str) -> bool:
    """Half-open interval overlap: touching entries do not conflict."""
    return to_minutes(start_a) < to_minutes(end_b) and to_minutes(end_a) > to_minutes(start_b)


def find_conflict(entry: dict, existing: list[dict], exclude_id: int | None = None) -> dict | None:
    for other in existing:
        if exclude_id is not None and other["id"] == exclude_id:
            continue
        if other["day"] != entry["day"]:
            continue
        if overlaps(entry["start_time"], entry["end_time"], other["start_time"], other["end_time"]):
            return other
    return None


def sort_key(entry: dict) -> tuple[int, int]:
    return DAYS.index(entry["day"]), to_minutes(entry["start_time"])


def validate_entry(data: dict, partial: bool = False, current: dict | None = None) -> dict:
    """Map a camelCase payload to column values, validating as it goes.

    With ``partial`` only supplied fields are returned; ``current`` provides
    the stored values for cross-field checks (end after start).
    """
    fields: dict[str, Any] = {}
    mapping = {
        "subject": "subject",
        "description": "description",
        "location": "location",
        "instructor": "instructor",
        "color": "color",
        "recurringPattern": "recurring_pattern",
        "endDate": "end_date",
    }
    for src, col in mapping.items():
        if src in data and data[src] is not None:
            fields[col] = str(data[src]).strip()

    if not partial or "day" in data:
        fields["day"] = normalize_day(data.get("day", ""))
    for src, col in (("startTime", "start_time"), ("endTime", "end_time")):
        if not partial or src in data:
            value = str(data.get(src) or "")
            to_minutes(value)
            fields[col] = value.zfill(5)
    if not partial or "type" in data:
        entry_type = data.get("type") or "class"
        if entry_type not in ENTRY_TYPES:
            raise ValidationError(f"Invalid type '{entry_type}'")
        fields["entry_type"] = entry_type
    if "credits" in data:
        fields["credits"] = parse_int(data.get("credits"))
    if "isRecurring" in data:
        fields["is_recurring"] = 1 if parse_bool(data.get("isRecurring"), True) else 0

    if not partial and not fields.get("subject"):
        raise ValidationError("Subject is required")
    if "subject" in fields and not fields["subject"]:
        raise ValidationError("Subject is required")

    merged = {**(current or {}), **fields}
    if "start_time" in merged and "end_time" in merged:
        if to_minutes(merged["end_time"]) <= to_minutes(merged["start_time"]):
            raise ValidationError("End time must be after start time")
    return fields


def validate_settings(data: dict) -> dict:
    fields: dict[str, Any] = {}
    if "timeFormat" in data:
        if data["timeFormat"] not in TIME_FORMATS:
            raise ValidationError("timeFormat must be '12h' or '24h'")
        fields["time_format"] = data["timeFormat"]
    for src, col in (("startHour", "start_hour"), ("endHour", "end_hour")):
        if src in data:
            hour = parse_int(data[src])
            if hour is None or not 0 <= hour <= 24:
                raise ValidationError(f"{src} must be between 0 and 24")
            fields[col] = hour
    if "showWeekends" in data:
        fields["show_weekends"] = 1 if parse_bool(data["showWeekends"], True) else 0
    if "colorScheme" in data:
        fields["color_scheme"] = str(data["colorScheme"])
    return fields


def entry_view(row: dict) -> dict:
    return {
        "id": row["id"],
        "subject": row["subject"],
        "description": row["description"],
        "day": row["day"],
        "startTime": row["start_time"],
        "endTime": row["end_time"],
        "location": row["location"],
        "instructor": row["instructor"],
        "color": row["color"],
        "type": row["entry_type"],
        "credits": row["credits"],
        "isRecurring": bool(row["is_recurring"]),
        "recurringPattern": row["recurring_pattern"],
        "endDate": row["end_date"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def settings_view(row: dict | None) -> dict:
    s = {**DEFAULT_SETTINGS, **(row or {})}
    return {
        "timeFormat": s["time_format"],
        "startHour": s["start_hour"],
        "endHour": s["end_hour"],
        "showWeekends": bool(s["show_weekends"]),
        "colorScheme": s["color_scheme"],
    }
