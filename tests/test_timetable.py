"""Unit tests for timetable validation and conflict detection."""

from __future__ import annotations

import pytest

from errors import ValidationError
from timetable import find_conflict, normalize_day, overlaps, sort_key, to_minutes, validate_entry


def _row(id, day, start, end):
    return {"id": id, "day": day, "start_time": start, "end_time": end}


class TestTimes:
    def test_to_minutes(self):
        assert to_minutes("00:00") == 0
        assert to_minutes("7:05") == 425
        assert to_minutes("23:59") == 1439

    @pytest.mark.parametrize("value", ["24:00", "12:60", "noon", ""])
    def test_invalid_times(self, value):
        with pytest.raises(ValidationError):
            to_minutes(value)

    def test_overlaps_half_open(self):
        assert overlaps("09:00", "10:00", "09:30", "10:30")
        assert overlaps("09:00", "12:00", "10:00", "11:00")
        assert not overlaps("09:00", "10:00", "10:00", "11:00")

    def test_normalize_day(self):
        assert normalize_day(" sunday ") == "Sunday"
        with pytest.raises(ValidationError):
            normalize_day("Caturday")


class TestConflicts:
    EXISTING = [_row(1, "Monday", "09:00", "10:00"), _row(2, "Tuesday", "09:00", "10:00")]

    def test_same_day_overlap(self):
        entry = {"day": "Monday", "start_time": "09:30", "end_time": "10:30"}
        assert find_conflict(entry, self.EXISTING)["id"] == 1

    def test_other_day_ignored(self):
        entry = {"day": "Wednesday", "start_time": "09:30", "end_time": "10:30"}
        assert find_conflict(entry, self.EXISTING) is None

    def test_excluded_entry(self):
        entry = {"day": "Monday", "start_time": "09:30", "end_time": "10:30"}
        assert find_conflict(entry, self.EXISTING, exclude_id=1) is None

    def test_sort_key_orders_week(self):
        rows = [_row(1, "Sunday", "08:00", "09:00"), _row(2, "Monday", "14:00", "15:00"),
                _row(3, "Monday", "08:00", "09:00")]
        assert [r["id"] for r in sorted(rows, key=sort_key)] == [3, 2, 1]


class TestValidateEntry:
    def test_full_entry_defaults_type(self):
        fields = validate_entry({"subject": "Art", "day": "friday", "startTime": "8:00", "endTime": "9:00"})
        assert fields == {
            "subject": "Art", "day": "Friday", "start_time": "08:00", "end_time": "09:00",
            "entry_type": "class",
        }

    def test_partial_uses_current_for_ordering(self):
        current = _row(1, "Monday", "09:00", "10:00")
        assert validate_entry({"endTime": "11:00"}, partial=True, current=current) == {"end_time": "11:00"}
        with pytest.raises(ValidationError, match="End time must be after start time"):
            validate_entry({"startTime": "10:00"}, partial=True, current=current)

    def test_partial_blank_subject(self):
        with pytest.raises(ValidationError, match="Subject is required"):
            validate_entry({"subject": "  "}, partial=True)

    def test_flags_and_credits(self):
        fields = validate_entry({
            "subject": "Art", "day": "Friday", "startTime": "08:00", "endTime": "09:00",
            "credits": "3", "isRecurring": "false",
        })
        assert fields["credits"] == 3
        assert fields["is_recurring"] == 0
