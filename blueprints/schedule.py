"""Weekly timetable: entries with conflict detection, settings, export and import."""

from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import login_required

from campus_timetable import fetch_timetable, to_schedule_entry
from db_stores import ScheduleStoreDB
from errors import ConflictError
from extensions import limiter
from helpers import current_user_id, form_or_json, json_body, parse_bool, utcnow
from timetable import (
    entry_view,
    find_conflict,
    normalize_day,
    settings_view,
    validate_entry,
    validate_settings,
)

bp = Blueprint("schedule", __name__)


def _store() -> ScheduleStoreDB:
    return ScheduleStoreDB(current_user_id())


def _check_conflict(fields: dict, existing: list[dict], exclude_id: int | None = None) -> None:
    conflict = find_conflict(fields, existing, exclude_id=exclude_id)
    if conflict:
        raise ConflictError("Schedule conflict detected", {"conflict": entry_view(conflict)})


@bp.route("/api/schedule")
@login_required
def api_schedule_list():
    day = request.args.get("day")
    entries = _store().entries(
        day=normalize_day(day) if day else None,
        entry_type=request.args.get("type") or None,
        subject=request.args.get("subject") or None,
    )
    return jsonify({"schedule": [entry_view(e) for e in entries], "total": len(entries)})


@bp.route("/api/schedule/day/<day>")
@login_required
def api_schedule_day(day):
    day = normalize_day(day)
    entries = _store().entries(day=day)
    return jsonify({"day": day, "schedule": [entry_view(e) for e in entries]})


@bp.route("/api/schedule", methods=["POST"])
@login_required
def api_schedule_create():
    data = json_body()
    fields = validate_entry(data)
    store = _store()
    if not parse_bool(data.get("force")):
        _check_conflict(fields, store.entries(day=fields["day"]))
    return jsonify({"success": True, "entry": entry_view(store.create(fields))}), 201


@bp.route("/api/schedule/<int:entry_id>", methods=["PUT"])
@login_required
def api_schedule_update(entry_id):
    store = _store()
    current = store.get(entry_id)
    if not current:
        return jsonify({"error": "Schedule entry not found"}), 404
    data = json_body()
    fields = validate_entry(data, partial=True, current=current)
    if not fields:
        return jsonify({"error": "No fields to update"}), 400
    merged = {**current, **fields}
    if not parse_bool(data.get("force")):
        _check_conflict(merged, store.entries(day=merged["day"]), exclude_id=entry_id)
    return jsonify({"success": True, "entry": entry_view(store.update(entry_id, fields))})


@bp.route("/api/schedule/<int:entry_id>", methods=["DELETE"])
@login_required
def api_schedule_delete(entry_id):
    if not _store().delete(entry_id):
        return jsonify({"error": "Schedule entry not found"}), 404
    return jsonify({"success": True})


@bp.route("/api/schedule", methods=["DELETE"])
@login_required
def api_schedule_clear():
    return jsonify({"success": True, "deleted": _store().clear()})


@bp.route("/api/schedule/<int:entry_id>/duplicate", methods=["POST"])
@login_required
def api_schedule_duplicate(entry_id):
    store = _store()
    source = store.get(entry_id)
    if not source:
        return jsonify({"error": "Schedule entry not found"}), 404
    skip = ("id", "user_id", "created_at", "updated_at")
    fields = {k: v for k, v in source.items() if k not in skip}
    fields["subject"] = f"{source['subject']} (Copy)"
    return jsonify({"success": True, "entry": entry_view(store.create(fields))}), 201


@bp.route("/api/schedule/settings")
@login_required
def api_schedule_settings():
    return jsonify({"settings": settings_view(_store().settings())})


@bp.route("/api/schedule/settings", methods=["PUT"])
@login_required
def api_schedule_settings_update():
    fields = validate_settings(json_body())
    return jsonify({"success": True, "settings": settings_view(_store().update_settings(fields))})


@bp.route("/api/schedule/export")
@login_required
def api_schedule_export():
    store = _store()
    return jsonify({
        "exportedAt": utcnow(),
        "settings": settings_view(store.settings()),
        "schedule": [entry_view(e) for e in store.entries()],
    })


@bp.route("/api/schedule/import", methods=["POST"])
@login_required
def api_schedule_import():
    """Import entries from an export; conflicting entries are skipped unless ``force``."""
    data = json_body()
    entries = data.get("schedule")
    if not isinstance(entries, list):
        return jsonify({"error": "schedule must be a list of entries"}), 400
    # validate everything before writing anything
    validated = [validate_entry(e if isinstance(e, dict) else {}) for e in entries]

    store = _store()
    if parse_bool(data.get("replace")):
        store.clear()
    force = parse_bool(data.get("force"))
    imported, skipped = 0, 0
    for fields in validated:
        if not force and find_conflict(fields, store.entries(day=fields["day"])):
            skipped += 1
            continue
        store.create(fields)
        imported += 1
    if isinstance(data.get("settings"), dict):
        store.update_settings(validate_settings(data["settings"]))
    return jsonify({"success": True, "imported": imported, "skipped": skipped})


@bp.route("/api/schedule/campus-timetable")
def api_campus_timetable_usage():
    return jsonify({
        "message": "Use POST with form data to look up university classes",
        "requiredFields": ["cam_name", "subj_code"],
        "optionalFields": ["fac_name", "semester"],
    }), 405


@bp.route("/api/schedule/campus-timetable", methods=["POST"])
@login_required
@limiter.limit("30 per hour")
def api_campus_timetable():
    """Look up classes on the university timetable service.

    ``entries`` holds the rows that map onto schedule entries, ready for
    ``/api/schedule/import``.
    """
    data = form_or_json()
    rows = fetch_timetable(
        str(data.get("cam_name") or "").strip(),
        str(data.get("subj_code") or "").strip().upper(),
        faculty=str(data.get("fac_name") or "").strip(),
        semester=str(data.get("semester") or "").strip(),
    )
    entries = [e for e in (to_schedule_entry(r) for r in rows) if e]
    return jsonify({"success": True, "data": rows, "entries": entries})
