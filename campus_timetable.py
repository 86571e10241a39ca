"""
University class timetable lookup.

Posts course filters to the UiTM student timetable service and parses the
HTML result table into class rows, which can then be turned into schedule
entries for ``/api/schedule/import``.
"""

from __future__ import annotations

import logging
import re

import requests
from bs4 import BeautifulSoup
from flask import current_app

from errors import UpstreamError, ValidationError
from timetable import DAYS

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                  "(KHTML, like Gecko) Chrome/124.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

_NO_RECORD_RE = re.compile(r"no\s+record\s+found", re.IGNORECASE)
_TIME_RANGE_RE = re.compile(
    r"(\d{1,2})[:.](\d{2})\s*([AaPp][Mm])?\s*-\s*(\d{1,2})[:.](\d{2})\s*([AaPp][Mm])?"
)


def fetch_timetable(campus: str, subject_code: str, faculty: str = "", semester: str = "") -> list[dict]:
    """Query the timetable service and return the parsed class rows."""
    if not campus or not subject_code:
        raise ValidationError("cam_name and subj_code are required")
    form = {
        "cam_name": campus,
        "subj_code": subject_code,
        "semester": semester or current_app.config["CAMPUS_TIMETABLE_SEMESTER"],
    }
    if faculty:
        form["fac_name"] = faculty

    url = current_app.config["CAMPUS_TIMETABLE_URL"]
    try:
        response = requests.post(
            url, data=form, headers=REQUEST_HEADERS,
            timeout=current_app.config.get("CAMPUS_TIMETABLE_TIMEOUT", 20),
        )
        response.raise_for_status()
    except requests.exceptions.RequestException as exc:
        logger.warning("Timetable service request failed for %s/%s: %s", campus, subject_code, exc)
        raise UpstreamError(
            "Failed to fetch data from the timetable service", {"success": False, "message": str(exc)},
        ) from exc

    rows = parse_timetable_html(response.text)
    logger.info("Timetable service returned %d rows for %s/%s", len(rows), campus, subject_code)
    return rows


def parse_timetable_html(html: str) -> list[dict]:
    """Extract class rows from every result table, skipping each table's header row.

    A row needs at least seven cells and both a course code and name.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    rows = []
    for table in soup.find_all("table"):
        for tr in table.find_all("tr")[1:]:
            cells = [td.get_text(" ", strip=True) for td in tr.find_all("td")]
            if len(cells) < 7:
                continue
            entry = {
                "courseCode": cells[0],
                "courseName": cells[1],
                "section": cells[2],
                "day": cells[3],
                "time": cells[4],
                "venue": cells[5],
                "lecturer": cells[6],
                "creditHours": _credit_hours(cells[7] if len(cells) > 7 else ""),
            }
            if entry["courseCode"] and entry["courseName"]:
                rows.append(entry)
    if not rows and _NO_RECORD_RE.search(soup.get_text(" ")):
        logger.debug("Timetable service reported no records")
    return rows


def _credit_hours(text: str) -> int:
    match = re.match(r"\s*(\d+)", text)
    return int(match.group(1)) if match else 0


def _to_24h(hour: int, minute: int, meridiem: str | None) -> str:
    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    return f"{hour:02d}:{minute:02d}"


def parse_time_range(text: str) -> tuple[str, str] | None:
    """``"08:00 AM - 10:00 AM"`` or ``"14.00-16.00"`` to 24-hour (start, end)."""
    match = _TIME_RANGE_RE.search(text or "")
    if not match:
        return None
    h1, m1, p1, h2, m2, p2 = match.groups()
    start = _to_24h(int(h1), int(m1), p1 or p2)
    end = _to_24h(int(h2), int(m2), p2)
    # "11:00-1:00 PM" starts in the morning
    if p2 and not p1 and start > end:
        start = _to_24h(int(h1), int(m1), "am")
    return start, end


def to_schedule_entry(row: dict) -> dict | None:
    """A camelCase schedule payload for a class row, or None when day or time is unusable."""
    day = next((d for d in DAYS if d.lower() == row.get("day", "").strip().lower()), None)
    times = parse_time_range(row.get("time", ""))
    if day is None or times is None:
        return None
    entry = {
        "subject": f"{row['courseCode']} - {row['courseName']}",
        "day": day,
        "startTime": times[0],
        "endTime": times[1],
        "location": row.get("venue", ""),
        "instructor": row.get("lecturer", ""),
        "type": "class",
        "isRecurring": True,
    }
    if row.get("section"):
        entry["description"] = f"Section {row['section']}"
    if row.get("creditHours"):
        entry["credits"] = row["creditHours"]
    return entry
