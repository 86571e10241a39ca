"""
DB-backed store classes for StudyPair.

Each class owns one area of the schema. Per-user stores take the user id in
their constructor; shared catalogs expose static methods. Rows come back as
plain dicts with JSON columns decoded.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from cache_backend import CONTRIBUTORS_KEY, LEADERBOARD_KEY, NOTES_STATS_KEY, get_cache
from catalog import EQUIP_FIELDS, POINTS_PER_LEVEL, STORE_CATEGORIES
from database import get_db
from errors import GoneError, NotFoundError, PermissionDeniedError, ValidationError
from extensions import socketio
from helpers import today_utc, utcnow
from timetable import sort_key

logger = logging.getLogger(__name__)

USERNAME_RE = re.compile(r"^[a-zA-Z0-9_]+$")

PROFILE_EDITABLE = (
    "full_name", "username", "email", "phone", "bio", "location", "university",
    "year_of_study", "major", "avatar_url", "header_image_url", "linkedin_url",
    "github_url", "instagram_url", "tiktok_url", "website_url",
)

AUTHOR_COLUMNS = "p.username AS author_username, p.full_name AS author_full_name, p.avatar_url AS author_avatar_url"


def level_for(total_points: int) -> tuple[int, int]:
    """(level, experience_points) for a point total."""
    total = max(0, total_points)
    return total // POINTS_PER_LEVEL + 1, total % POINTS_PER_LEVEL


def _decode(row, *json_cols: str) -> dict:
    result = dict(row)
    for col in json_cols:
        raw = result.get(col)
        if isinstance(raw, str):
            result[col] = json.loads(raw) if raw else []
    return result


def _pop_author(row: dict) -> dict:
    row["author"] = {
        "username": row.pop("author_username", None),
        "full_name": row.pop("author_full_name", None),
        "avatar_url": row.pop("author_avatar_url", None),
    }
    return row


# ── Profiles ─────────────────────────────────────────────────────────


class ProfileStoreDB:
    """Public profile rows keyed by user id."""

    @staticmethod
    def username_error(username: str) -> str | None:
        if not username or len(username) < 3 or len(username) > 30:
            return "Username must be between 3 and 30 characters"
        if not USERNAME_RE.match(username):
            return "Username can only contain letters, numbers, and underscores"
        return None

    @staticmethod
    def username_taken(username: str, exclude_user_id: int | None = None) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT id FROM profiles WHERE lower(username) = lower(?)", (username,)
        ).fetchone()
        return row is not None and row["id"] != exclude_user_id

    @staticmethod
    def create(user_id: int, email: str, username: str, full_name: str = "") -> dict:
        db = get_db()
        now = utcnow()
        db.execute(
            "INSERT INTO profiles (id, email, username, full_name, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, email, username, full_name, now, now),
        )
        db.commit()
        return ProfileStoreDB.get(user_id)

    @staticmethod
    def get(user_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM profiles WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def get_by_username(username: str) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT * FROM profiles WHERE lower(username) = lower(?)", (username,)
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def update(user_id: int, fields: dict) -> dict:
        updates = {k: v for k, v in fields.items() if k in PROFILE_EDITABLE}
        for required in ("full_name", "username", "email"):
            if required in updates and not str(updates[required] or "").strip():
                raise ValidationError("Full name, username, and email are required")
        if "username" in updates:
            error = ProfileStoreDB.username_error(updates["username"])
            if error:
                raise ValidationError(error)
            if ProfileStoreDB.username_taken(updates["username"], exclude_user_id=user_id):
                raise ValidationError("Username is already taken")
        if updates:
            updates["updated_at"] = utcnow()
            cols = ", ".join(f"{k} = ?" for k in updates)
            db = get_db()
            db.execute(f"UPDATE profiles SET {cols} WHERE id = ?", (*updates.values(), user_id))
            db.commit()
        profile = ProfileStoreDB.get(user_id)
        if profile and all(profile.get(k) for k in ("full_name", "bio", "university", "major", "avatar_url")):
            GamificationStoreDB(user_id).unlock("profile_complete")
        return profile

    @staticmethod
    def touch_last_seen(user_id: int) -> None:
        db = get_db()
        db.execute("UPDATE profiles SET last_seen_at = ? WHERE id = ?", (utcnow(), user_id))
        db.commit()

    @staticmethod
    def public_view(username: str) -> dict | None:
        """Profile page payload: profile plus achievements, activity and equipment."""
        profile = ProfileStoreDB.get_by_username(username)
        if not profile:
            return None
        user_id = profile["id"]
        profile.pop("email", None)
        profile.pop("phone", None)
        gam = GamificationStoreDB(user_id)
        db = get_db()
        recent_notes = db.execute(
            "SELECT id, title, subject, note_type, view_count, like_count, download_count, created_at "
            "FROM notes WHERE user_id = ? AND visibility = 'public' AND status = 'published' "
            "ORDER BY created_at DESC LIMIT 3",
            (user_id,),
        ).fetchall()
        return {
            "profile": profile,
            "achievements": [a for a in gam.achievements() if a["unlocked"]],
            "connectionsCount": ConnectionStoreDB.accepted_count(user_id),
            "recentPoints": gam.point_history(limit=5),
            "recentNotes": [dict(r) for r in recent_notes],
            "equippedItems": StoreItemStoreDB(user_id).equipped(),
        }


# ── Gamification ─────────────────────────────────────────────────────


class GamificationStoreDB:
    """Points, levels, streaks, achievements and daily challenges for one user."""

    PROFILE_COLUMNS = (
        "id", "username", "full_name", "avatar_url", "total_points", "level",
        "experience_points", "current_streak", "longest_streak", "last_activity_date",
    )

    def __init__(self, user_id: int):
        self.user_id = user_id

    def profile(self) -> dict:
        db = get_db()
        row = db.execute(
            f"SELECT {', '.join(self.PROFILE_COLUMNS)} FROM profiles WHERE id = ?",
            (self.user_id,),
        ).fetchone()
        if not row:
            raise NotFoundError("Profile not found")
        return dict(row)

    def add_points(self, points: int, source: str, source_id: Any = None,
                   description: str | None = None) -> dict:
        """Record a point transaction and recompute level; unlocks point achievements."""
        db = get_db()
        before = self.profile()
        total = max(0, before["total_points"] + points)
        level, xp = level_for(total)
        db.execute(
            "INSERT INTO point_transactions (user_id, points, source, source_id, description, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (self.user_id, points, source, None if source_id is None else str(source_id),
             description, utcnow()),
        )
        db.execute(
            "UPDATE profiles SET total_points = ?, level = ?, experience_points = ?, updated_at = ? "
            "WHERE id = ?",
            (total, level, xp, utcnow(), self.user_id),
        )
        db.commit()
        get_cache().delete(LEADERBOARD_KEY)

        result = {
            "points": points,
            "total_points": total,
            "level": level,
            "experience_points": xp,
            "new_achievements": self.check_point_achievements(),
        }
        if level > before["level"]:
            result["level_up"] = level
        return result

    def log_activity(self, activity_type: str, activity_data: dict | None = None,
                     points_earned: int = 0) -> dict:
        """Record an activity, extend the daily streak, and advance matching challenges."""
        db = get_db()
        today = today_utc()
        db.execute(
            "INSERT INTO activity_log (user_id, activity_type, activity_data, points_earned, "
            "activity_date, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (self.user_id, activity_type, json.dumps(activity_data or {}), points_earned,
             today, utcnow()),
        )
        db.commit()
        if points_earned:
            self.add_points(points_earned, activity_type, description=f"Activity: {activity_type}")
        streak = self._update_streak(today)
        completed = self._advance_challenges(activity_type, today)
        return {"current_streak": streak, "completed_challenges": completed}

    def _update_streak(self, today: str) -> int:
        profile = self.profile()
        last = profile["last_activity_date"]
        current = profile["current_streak"]
        if last == today:
            return current
        yesterday = (date.fromisoformat(today) - timedelta(days=1)).isoformat()
        current = current + 1 if last == yesterday else 1
        longest = max(profile["longest_streak"], current)
        db = get_db()
        db.execute(
            "UPDATE profiles SET current_streak = ?, longest_streak = ?, last_activity_date = ? "
            "WHERE id = ?",
            (current, longest, today, self.user_id),
        )
        db.commit()
        if current >= 7:
            self.unlock("daily_warrior")
        if current >= 30:
            self.unlock("study_mentor")
        return current

    def _advance_challenges(self, activity_type: str, today: str) -> list[str]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM daily_challenges WHERE challenge_type = ? AND is_active = 1",
            (activity_type,),
        ).fetchall()
        completed = []
        for challenge in rows:
            if self._bump_challenge(dict(challenge), today):
                completed.append(challenge["name"])
        return completed

    def _bump_challenge(self, challenge: dict, today: str) -> bool:
        """Add one unit of progress. Returns True when this call completed it."""
        db = get_db()
        db.execute(
            "INSERT OR IGNORE INTO user_daily_challenges (user_id, challenge_id, challenge_date) "
            "VALUES (?, ?, ?)",
            (self.user_id, challenge["id"], today),
        )
        row = db.execute(
            "SELECT progress, completed FROM user_daily_challenges "
            "WHERE user_id = ? AND challenge_id = ? AND challenge_date = ?",
            (self.user_id, challenge["id"], today),
        ).fetchone()
        if row["completed"]:
            db.commit()
            return False
        progress = row["progress"] + 1
        done = progress >= challenge["target_value"]
        db.execute(
            "UPDATE user_daily_challenges SET progress = ?, completed = ?, completed_at = ? "
            "WHERE user_id = ? AND challenge_id = ? AND challenge_date = ?",
            (progress, 1 if done else 0, utcnow() if done else "",
             self.user_id, challenge["id"], today),
        )
        db.commit()
        if done and challenge["points_reward"]:
            self.add_points(
                challenge["points_reward"], "daily_challenge", challenge["id"],
                f"Completed daily challenge: {challenge['description']}",
            )
        return done

    def complete_challenge(self, challenge_id: int) -> dict:
        db = get_db()
        row = db.execute(
            "SELECT * FROM daily_challenges WHERE id = ? AND is_active = 1", (challenge_id,)
        ).fetchone()
        if not row:
            raise NotFoundError("Challenge not found")
        today = today_utc()
        self._bump_challenge(dict(row), today)
        state = db.execute(
            "SELECT progress, completed FROM user_daily_challenges "
            "WHERE user_id = ? AND challenge_id = ? AND challenge_date = ?",
            (self.user_id, challenge_id, today),
        ).fetchone()
        return {"completed": bool(state["completed"]), "progress": state["progress"]}

    def has_achievement(self, name: str) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM user_achievements ua JOIN achievements a ON a.id = ua.achievement_id "
            "WHERE ua.user_id = ? AND a.name = ?",
            (self.user_id, name),
        ).fetchone()
        return row is not None

    def unlock(self, name: str) -> dict | None:
        """Unlock an achievement once. Returns it when newly unlocked."""
        db = get_db()
        achievement = db.execute(
            "SELECT * FROM achievements WHERE name = ? AND is_active = 1", (name,)
        ).fetchone()
        if not achievement:
            logger.warning("Unknown achievement %s", name)
            return None
        cur = db.execute(
            "INSERT OR IGNORE INTO user_achievements (user_id, achievement_id, unlocked_at) "
            "VALUES (?, ?, ?)",
            (self.user_id, achievement["id"], utcnow()),
        )
        db.commit()
        if cur.rowcount == 0:
            return None
        logger.info("User %s unlocked achievement %s", self.user_id, name)
        notify(
            self.user_id, "achievement", "Achievement unlocked!",
            f"You earned \"{achievement['title']}\": {achievement['description']}",
            metadata={"achievement": name},
        )
        return dict(achievement)

    def check_point_achievements(self) -> list[str]:
        db = get_db()
        rows = db.execute(
            "SELECT a.name FROM achievements a WHERE a.condition_type = 'points' AND a.is_active = 1 "
            "AND a.points_required <= (SELECT total_points FROM profiles WHERE id = ?) "
            "AND a.id NOT IN (SELECT achievement_id FROM user_achievements WHERE user_id = ?)",
            (self.user_id, self.user_id),
        ).fetchall()
        return [r["name"] for r in rows if self.unlock(r["name"])]

    def achievements(self) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT a.*, ua.unlocked_at FROM achievements a "
            "LEFT JOIN user_achievements ua ON ua.achievement_id = a.id AND ua.user_id = ? "
            "WHERE a.is_active = 1 ORDER BY a.points_required, a.id",
            (self.user_id,),
        ).fetchall()
        result = []
        for r in rows:
            entry = dict(r)
            entry["unlocked"] = entry["unlocked_at"] is not None
            result.append(entry)
        return result

    def daily_challenges(self) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT c.*, COALESCE(u.progress, 0) AS progress, COALESCE(u.completed, 0) AS completed "
            "FROM daily_challenges c LEFT JOIN user_daily_challenges u "
            "ON u.challenge_id = c.id AND u.user_id = ? AND u.challenge_date = ? "
            "WHERE c.is_active = 1 ORDER BY c.points_reward, c.id",
            (self.user_id, today_utc()),
        ).fetchall()
        result = []
        for r in rows:
            entry = dict(r)
            entry["completed"] = bool(entry["completed"])
            result.append(entry)
        return result

    def point_history(self, limit: int = 20) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT id, points, source, source_id, description, created_at FROM point_transactions "
            "WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (self.user_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def rank(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS ahead FROM profiles "
            "WHERE total_points > (SELECT total_points FROM profiles WHERE id = ?)",
            (self.user_id,),
        ).fetchone()
        return row["ahead"] + 1

    def stats(self) -> dict:
        db = get_db()
        achievements = db.execute(
            "SELECT COUNT(*) AS cnt FROM user_achievements WHERE user_id = ?", (self.user_id,)
        ).fetchone()["cnt"]
        challenges = db.execute(
            "SELECT COUNT(*) AS cnt FROM user_daily_challenges "
            "WHERE user_id = ? AND challenge_date = ? AND completed = 1",
            (self.user_id, today_utc()),
        ).fetchone()["cnt"]
        activities = db.execute(
            "SELECT COUNT(*) AS cnt FROM activity_log WHERE user_id = ?", (self.user_id,)
        ).fetchone()["cnt"]
        return {
            "profile": self.profile(),
            "rank": self.rank(),
            "achievements_count": achievements,
            "daily_challenges_completed_today": challenges,
            "total_activities": activities,
        }

    def has_claimed_today(self) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM daily_claims WHERE user_id = ? AND claim_date = ?",
            (self.user_id, today_utc()),
        ).fetchone()
        return row is not None

    def claim_daily(self, points: int) -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT OR IGNORE INTO daily_claims (user_id, claim_date, points, claimed_at) "
            "VALUES (?, ?, ?, ?)",
            (self.user_id, today_utc(), points, utcnow()),
        )
        db.commit()
        if cur.rowcount == 0:
            raise ValidationError("Daily points already claimed today")
        result = self.add_points(points, "daily_claim", description="Daily login bonus")
        self.log_activity("daily_claim", {"points": points})
        return result

    @staticmethod
    def leaderboard(limit: int = 10) -> list[dict]:
        """Top users by total points; the top 100 are cached briefly."""
        cache = get_cache()
        board = cache.get(LEADERBOARD_KEY)
        if board is None:
            db = get_db()
            rows = db.execute(
                "SELECT id AS user_id, username, full_name, avatar_url, total_points, level, "
                "current_streak FROM profiles ORDER BY total_points DESC, id LIMIT 100"
            ).fetchall()
            board = [{**dict(r), "rank": i} for i, r in enumerate(rows, 1)]
            cache.set(LEADERBOARD_KEY, board, ttl=60)
        return board[:limit]


# ── Notifications ────────────────────────────────────────────────────


NOTIFICATION_PRIORITIES = ("low", "medium", "high", "urgent")

# Notification type -> settings flag that must be on for it to be stored.
TYPE_SETTINGS = {
    "message": "enable_message_notifications",
    "achievement": "enable_achievement_notifications",
    "study_reminder": "enable_study_reminders",
    "connection_request": "enable_group_invites",
    "group_invite": "enable_group_invites",
    "exam_reminder": "enable_exam_reminders",
    "system": "enable_system_notifications",
    "schedule": "enable_schedule_notifications",
}

# camelCase request/response key -> settings column
SETTINGS_KEYS = {
    "enablePushNotifications": "enable_push_notifications",
    "enableEmailNotifications": "enable_email_notifications",
    "enableStudyReminders": "enable_study_reminders",
    "enableGroupInvites": "enable_group_invites",
    "enableExamReminders": "enable_exam_reminders",
    "enableAchievementNotifications": "enable_achievement_notifications",
    "enableMessageNotifications": "enable_message_notifications",
    "enableSystemNotifications": "enable_system_notifications",
    "enableScheduleNotifications": "enable_schedule_notifications",
    "notificationSound": "notification_sound",
    "enableNotificationGrouping": "enable_notification_grouping",
}

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def in_quiet_hours(start: str, end: str, now: datetime | None = None) -> bool:
    """True when ``now`` falls in [start, end), wrapping past midnight."""
    current = (now or datetime.now(timezone.utc)).strftime("%H:%M")
    if start <= end:
        return start <= current < end
    return current >= start or current < end


def notification_view(row: dict) -> dict:
    return {
        "id": row["id"],
        "type": row["type"],
        "title": row["title"],
        "message": row["message"],
        "priority": row["priority"],
        "isRead": bool(row["is_read"]),
        "actionable": bool(row["actionable"]),
        "link": row["link"] or None,
        "avatar": row["avatar"] or None,
        "metadata": json.loads(row["metadata"] or "{}"),
        "groupKey": row["group_key"] or None,
        "expiresAt": row["expires_at"] or None,
        "readAt": row["read_at"] or None,
        "createdAt": row["created_at"],
    }


class NotificationStoreDB:
    """A user's notification inbox and delivery preferences."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def _settings_row(self) -> dict:
        db = get_db()
        db.execute("INSERT OR IGNORE INTO notification_settings (user_id) VALUES (?)", (self.user_id,))
        db.commit()
        row = db.execute(
            "SELECT * FROM notification_settings WHERE user_id = ?", (self.user_id,)
        ).fetchone()
        return dict(row)

    def settings(self) -> dict:
        row = self._settings_row()
        view = {camel: bool(row[col]) for camel, col in SETTINGS_KEYS.items()}
        view["quietHours"] = {
            "enabled": bool(row["quiet_hours_enabled"]),
            "startTime": row["quiet_hours_start"],
            "endTime": row["quiet_hours_end"],
        }
        view["maxNotificationsPerHour"] = row["max_notifications_per_hour"]
        return view

    def update_settings(self, data: dict) -> dict:
        self._settings_row()
        updates: dict[str, Any] = {}
        for camel, col in SETTINGS_KEYS.items():
            if camel in data:
                updates[col] = 1 if data[camel] else 0
        quiet = data.get("quietHours")
        if isinstance(quiet, dict):
            if "enabled" in quiet:
                updates["quiet_hours_enabled"] = 1 if quiet["enabled"] else 0
            for key, col in (("startTime", "quiet_hours_start"), ("endTime", "quiet_hours_end")):
                if key in quiet:
                    if not _HHMM.match(str(quiet[key])):
                        raise ValidationError(f"quietHours.{key} must be HH:MM")
                    updates[col] = quiet[key]
        if "maxNotificationsPerHour" in data:
            try:
                cap = int(data["maxNotificationsPerHour"])
            except (TypeError, ValueError):
                raise ValidationError("maxNotificationsPerHour must be a number")
            if cap < 1 or cap > 100:
                raise ValidationError("maxNotificationsPerHour must be between 1 and 100")
            updates["max_notifications_per_hour"] = cap
        if updates:
            updates["updated_at"] = utcnow()
            cols = ", ".join(f"{k} = ?" for k in updates)
            db = get_db()
            db.execute(
                f"UPDATE notification_settings SET {cols} WHERE user_id = ?",
                (*updates.values(), self.user_id),
            )
            db.commit()
        return self.settings()

    def add(self, type: str, title: str, message: str, priority: str = "medium",
            actionable: bool = False, link: str = "", avatar: str = "",
            metadata: dict | None = None, group_key: str = "",
            expires_hours: Optional[float] = None) -> dict | None:
        """Store a notification unless the user's settings suppress it.

        Returns the stored notification view (with a ``silent`` flag when
        sound is off or quiet hours are active), or None when skipped.
        """
        if priority not in NOTIFICATION_PRIORITIES:
            raise ValidationError("Invalid priority")
        settings = self._settings_row()
        flag = TYPE_SETTINGS.get(type)
        if flag and not settings[flag]:
            logger.debug("Notification %s suppressed for user %s by settings", type, self.user_id)
            return None

        db = get_db()
        now = datetime.now(timezone.utc)
        if priority != "urgent":
            sent = db.execute(
                "SELECT COUNT(*) AS cnt FROM notifications WHERE user_id = ? AND priority != 'urgent' "
                "AND created_at >= ?",
                (self.user_id, (now - timedelta(hours=1)).isoformat()),
            ).fetchone()["cnt"]
            if sent >= settings["max_notifications_per_hour"]:
                logger.info("Hourly notification cap reached for user %s", self.user_id)
                return None

        expires_at = (now + timedelta(hours=expires_hours)).isoformat() if expires_hours else ""
        existing = None
        if group_key and settings["enable_notification_grouping"]:
            existing = db.execute(
                "SELECT * FROM notifications WHERE user_id = ? AND group_key = ? AND is_read = 0",
                (self.user_id, group_key),
            ).fetchone()

        if existing:
            meta = json.loads(existing["metadata"] or "{}")
            meta.update(metadata or {})
            meta["groupCount"] = meta.get("groupCount", 1) + 1
            db.execute(
                "UPDATE notifications SET title = ?, message = ?, priority = ?, metadata = ?, "
                "created_at = ?, expires_at = ? WHERE id = ?",
                (title, message, priority, json.dumps(meta), now.isoformat(), expires_at,
                 existing["id"]),
            )
            notif_id = existing["id"]
        else:
            cur = db.execute(
                "INSERT INTO notifications (user_id, type, title, message, priority, actionable, "
                "link, avatar, metadata, group_key, expires_at, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (self.user_id, type, title, message, priority, 1 if actionable else 0, link or "",
                 avatar or "", json.dumps(metadata or {}), group_key or "", expires_at,
                 now.isoformat()),
            )
            notif_id = cur.lastrowid
        db.commit()

        row = db.execute("SELECT * FROM notifications WHERE id = ?", (notif_id,)).fetchone()
        view = notification_view(dict(row))
        view["silent"] = not settings["notification_sound"] or (
            bool(settings["quiet_hours_enabled"])
            and in_quiet_hours(settings["quiet_hours_start"], settings["quiet_hours_end"], now)
        )
        socketio.emit("notification", view, to=f"user:{self.user_id}")
        return view

    def list(self, limit: int = 20, offset: int = 0, type: str | None = None,
             unread_only: bool = False) -> tuple[list[dict], int]:
        clauses = ["user_id = ?", "(expires_at = '' OR expires_at > ?)"]
        params: list[Any] = [self.user_id, utcnow()]
        if type:
            clauses.append("type = ?")
            params.append(type)
        if unread_only:
            clauses.append("is_read = 0")
        where = " AND ".join(clauses)
        db = get_db()
        total = db.execute(f"SELECT COUNT(*) AS cnt FROM notifications WHERE {where}", params).fetchone()["cnt"]
        rows = db.execute(
            f"SELECT * FROM notifications WHERE {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            (*params, limit, offset),
        ).fetchall()
        return [notification_view(dict(r)) for r in rows], total

    def unread_count(self) -> int:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS cnt FROM notifications WHERE user_id = ? AND is_read = 0 "
            "AND (expires_at = '' OR expires_at > ?)",
            (self.user_id, utcnow()),
        ).fetchone()
        return row["cnt"]

    def mark_read(self, ids: list[int]) -> int:
        if not ids:
            return 0
        marks = ", ".join("?" for _ in ids)
        db = get_db()
        cur = db.execute(
            f"UPDATE notifications SET is_read = 1, read_at = ? "
            f"WHERE user_id = ? AND is_read = 0 AND id IN ({marks})",
            (utcnow(), self.user_id, *ids),
        )
        db.commit()
        return cur.rowcount

    def mark_all_read(self) -> int:
        db = get_db()
        cur = db.execute(
            "UPDATE notifications SET is_read = 1, read_at = ? WHERE user_id = ? AND is_read = 0",
            (utcnow(), self.user_id),
        )
        db.commit()
        return cur.rowcount

    def delete(self, notif_id: int) -> int:
        db = get_db()
        cur = db.execute(
            "DELETE FROM notifications WHERE id = ? AND user_id = ?", (notif_id, self.user_id)
        )
        db.commit()
        return cur.rowcount

    def delete_all(self) -> int:
        db = get_db()
        cur = db.execute("DELETE FROM notifications WHERE user_id = ?", (self.user_id,))
        db.commit()
        return cur.rowcount


def notify(user_id: int, type: str, title: str, message: str, **kwargs) -> dict | None:
    """Deliver a notification to ``user_id`` subject to their preferences."""
    return NotificationStoreDB(user_id).add(type, title, message, **kwargs)


# ── Notes ────────────────────────────────────────────────────────────


NOTE_JSON_COLUMNS = ("tags", "target_audience", "prerequisites")
NOTE_SORTS = ("created_at", "title", "view_count", "download_count", "like_count")
NOTE_UPDATABLE = (
    "title", "description", "subject", "tags", "visibility", "difficulty_level",
    "language", "allow_download", "allow_comments", "text_content", "status",
)


def _note_row(row) -> dict:
    note = _decode(row, *NOTE_JSON_COLUMNS)
    note["allow_download"] = bool(note["allow_download"])
    note["allow_comments"] = bool(note["allow_comments"])
    if "author_username" in note:
        _pop_author(note)
    return note


def _invalidate_dashboard() -> None:
    get_cache().delete(NOTES_STATS_KEY, CONTRIBUTORS_KEY)


class NoteStoreDB:
    """Shared study notes with likes and download tracking."""

    @staticmethod
    def create(user_id: int, fields: dict) -> dict:
        db = get_db()
        now = utcnow()
        values = dict(fields)
        for col in NOTE_JSON_COLUMNS:
            values[col] = json.dumps(values.get(col) or [])
        for col in ("allow_download", "allow_comments"):
            values[col] = 1 if values.get(col, True) else 0
        values.update(user_id=user_id, created_at=now, updated_at=now)
        if values.get("status", "published") == "published":
            values["published_at"] = now
        cols = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        cur = db.execute(f"INSERT INTO notes ({cols}) VALUES ({marks})", tuple(values.values()))
        db.commit()
        _invalidate_dashboard()
        return NoteStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(note_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            f"SELECT n.*, {AUTHOR_COLUMNS} FROM notes n JOIN profiles p ON p.id = n.user_id "
            "WHERE n.id = ?",
            (note_id,),
        ).fetchone()
        return _note_row(row) if row else None

    @staticmethod
    def search(search: str = "", subject: str = "", academic_level: str = "",
               note_type: str = "", language: str = "", difficulty: str = "",
               sort_by: str = "created_at", sort_direction: str = "desc",
               page: int = 1, limit: int = 20) -> tuple[list[dict], int]:
        """Public published notes matching the filters, newest first by default."""
        clauses = ["n.visibility = 'public'", "n.status = 'published'"]
        params: list[Any] = []
        if search:
            like = f"%{search}%"
            clauses.append("(n.title LIKE ? OR n.description LIKE ? OR n.subject LIKE ? OR n.tags LIKE ?)")
            params.extend([like, like, like, like])
        for col, value in (("n.subject", subject), ("n.academic_level", academic_level),
                           ("n.note_type", note_type), ("n.language", language),
                           ("n.difficulty_level", difficulty)):
            if value:
                clauses.append(f"{col} = ?")
                params.append(value)
        order = sort_by if sort_by in NOTE_SORTS else "created_at"
        direction = "ASC" if str(sort_direction).lower() == "asc" else "DESC"
        where = " AND ".join(clauses)

        db = get_db()
        total = db.execute(f"SELECT COUNT(*) AS cnt FROM notes n WHERE {where}", params).fetchone()["cnt"]
        rows = db.execute(
            f"SELECT n.*, {AUTHOR_COLUMNS} FROM notes n JOIN profiles p ON p.id = n.user_id "
            f"WHERE {where} ORDER BY n.{order} {direction}, n.id {direction} LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
        return [_note_row(r) for r in rows], total

    @staticmethod
    def by_user(user_id: int, status: str | None = None, public_only: bool = False,
                page: int = 1, limit: int = 20) -> tuple[list[dict], int]:
        clauses = ["n.user_id = ?"]
        params: list[Any] = [user_id]
        if public_only:
            clauses.append("n.visibility = 'public' AND n.status = 'published'")
        elif status:
            clauses.append("n.status = ?")
            params.append(status)
        where = " AND ".join(clauses)
        db = get_db()
        total = db.execute(f"SELECT COUNT(*) AS cnt FROM notes n WHERE {where}", params).fetchone()["cnt"]
        rows = db.execute(
            f"SELECT n.*, {AUTHOR_COLUMNS} FROM notes n JOIN profiles p ON p.id = n.user_id "
            f"WHERE {where} ORDER BY n.created_at DESC, n.id DESC LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
        return [_note_row(r) for r in rows], total

    @staticmethod
    def count_by_user(user_id: int) -> int:
        db = get_db()
        return db.execute("SELECT COUNT(*) AS cnt FROM notes WHERE user_id = ?", (user_id,)).fetchone()["cnt"]

    @staticmethod
    def update(note_id: int, fields: dict) -> dict:
        updates = {k: v for k, v in fields.items() if k in NOTE_UPDATABLE}
        if "tags" in updates:
            updates["tags"] = json.dumps(updates["tags"] or [])
        for col in ("allow_download", "allow_comments"):
            if col in updates:
                updates[col] = 1 if updates[col] else 0
        if updates.get("status") == "published":
            current = NoteStoreDB.get(note_id)
            if current and not current["published_at"]:
                updates["published_at"] = utcnow()
        updates["updated_at"] = utcnow()
        cols = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        db.execute(f"UPDATE notes SET {cols} WHERE id = ?", (*updates.values(), note_id))
        db.commit()
        _invalidate_dashboard()
        return NoteStoreDB.get(note_id)

    @staticmethod
    def delete(note_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM notes WHERE id = ?", (note_id,))
        db.commit()
        _invalidate_dashboard()

    @staticmethod
    def increment_view(note_id: int) -> None:
        db = get_db()
        db.execute("UPDATE notes SET view_count = view_count + 1 WHERE id = ?", (note_id,))
        db.commit()

    @staticmethod
    def is_liked(note_id: int, user_id: int | None) -> bool:
        if user_id is None:
            return False
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM note_likes WHERE note_id = ? AND user_id = ?", (note_id, user_id)
        ).fetchone()
        return row is not None

    @staticmethod
    def toggle_like(note_id: int, user_id: int) -> tuple[bool, int]:
        """Like or unlike; returns (liked, like_count)."""
        db = get_db()
        if NoteStoreDB.is_liked(note_id, user_id):
            db.execute("DELETE FROM note_likes WHERE note_id = ? AND user_id = ?", (note_id, user_id))
            liked = False
        else:
            db.execute(
                "INSERT INTO note_likes (note_id, user_id, created_at) VALUES (?, ?, ?)",
                (note_id, user_id, utcnow()),
            )
            liked = True
        db.execute(
            "UPDATE notes SET like_count = (SELECT COUNT(*) FROM note_likes WHERE note_id = ?) WHERE id = ?",
            (note_id, note_id),
        )
        db.commit()
        _invalidate_dashboard()
        count = db.execute("SELECT like_count FROM notes WHERE id = ?", (note_id,)).fetchone()["like_count"]
        return liked, count

    @staticmethod
    def record_download(note_id: int, user_id: int | None, ip: str, user_agent: str) -> int:
        db = get_db()
        db.execute(
            "INSERT INTO note_downloads (note_id, user_id, ip_address, user_agent, downloaded_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (note_id, user_id, ip, user_agent, utcnow()),
        )
        db.execute("UPDATE notes SET download_count = download_count + 1 WHERE id = ?", (note_id,))
        db.commit()
        _invalidate_dashboard()
        row = db.execute(
            "SELECT n.download_count, n.user_id, "
            "(SELECT SUM(download_count) FROM notes WHERE user_id = n.user_id) AS author_downloads "
            "FROM notes n WHERE n.id = ?",
            (note_id,),
        ).fetchone()
        if row["author_downloads"] >= 50:
            GamificationStoreDB(row["user_id"]).unlock("helpful_student")
        return row["download_count"]


COMMENT_PROFILE_COLUMNS = (
    "p.id AS profile_id, p.username AS profile_username, "
    "p.full_name AS profile_full_name, p.avatar_url AS profile_avatar_url"
)
DELETED_COMMENT_TEXT = "[This comment has been deleted]"


def _comment_row(row) -> dict:
    comment = dict(row)
    comment["profile"] = {
        "id": comment.pop("profile_id"),
        "username": comment.pop("profile_username"),
        "full_name": comment.pop("profile_full_name"),
        "avatar_url": comment.pop("profile_avatar_url"),
    }
    return comment


class NoteCommentStoreDB:
    """Threaded comments on notes."""

    @staticmethod
    def _refresh_count(note_id: int) -> None:
        db = get_db()
        db.execute(
            "UPDATE notes SET comment_count = "
            "(SELECT COUNT(*) FROM note_comments WHERE note_id = ? AND status = 'active') WHERE id = ?",
            (note_id, note_id),
        )
        db.commit()

    @staticmethod
    def get(comment_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            f"SELECT c.*, {COMMENT_PROFILE_COLUMNS} FROM note_comments c "
            "JOIN profiles p ON p.id = c.user_id WHERE c.id = ?",
            (comment_id,),
        ).fetchone()
        return _comment_row(row) if row else None

    @staticmethod
    def thread(note_id: int) -> tuple[list[dict], int]:
        """Root comments with nested ``replies``; returns (roots, total)."""
        db = get_db()
        rows = db.execute(
            f"SELECT c.*, {COMMENT_PROFILE_COLUMNS} FROM note_comments c "
            "JOIN profiles p ON p.id = c.user_id "
            "WHERE c.note_id = ? AND c.status IN ('active', 'deleted') "
            "ORDER BY c.created_at ASC, c.id ASC",
            (note_id,),
        ).fetchall()
        comments = [_comment_row(r) for r in rows]
        by_id = {c["id"]: {**c, "replies": []} for c in comments}
        roots = []
        for c in comments:
            node = by_id[c["id"]]
            parent = by_id.get(c["parent_id"]) if c["parent_id"] else None
            if parent is not None:
                parent["replies"].append(node)
            else:
                roots.append(node)
        return roots, len(comments)

    @staticmethod
    def add(note_id: int, user_id: int, content: str, parent_id: int | None = None) -> dict:
        db = get_db()
        now = utcnow()
        cur = db.execute(
            "INSERT INTO note_comments (note_id, user_id, parent_id, content, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (note_id, user_id, parent_id, content, now, now),
        )
        db.commit()
        NoteCommentStoreDB._refresh_count(note_id)
        return NoteCommentStoreDB.get(cur.lastrowid)

    @staticmethod
    def update(comment_id: int, content: str) -> dict:
        db = get_db()
        db.execute(
            "UPDATE note_comments SET content = ?, updated_at = ? WHERE id = ?",
            (content, utcnow(), comment_id),
        )
        db.commit()
        return NoteCommentStoreDB.get(comment_id)

    @staticmethod
    def delete(comment_id: int) -> str:
        """Soft-delete when active replies exist, else remove. Returns 'soft' or 'hard'."""
        db = get_db()
        comment = db.execute("SELECT * FROM note_comments WHERE id = ?", (comment_id,)).fetchone()
        replies = db.execute(
            "SELECT COUNT(*) AS cnt FROM note_comments WHERE parent_id = ? AND status = 'active'",
            (comment_id,),
        ).fetchone()["cnt"]
        if replies:
            db.execute(
                "UPDATE note_comments SET content = ?, status = 'deleted', updated_at = ? WHERE id = ?",
                (DELETED_COMMENT_TEXT, utcnow(), comment_id),
            )
            mode = "soft"
        else:
            db.execute("DELETE FROM note_comments WHERE id = ?", (comment_id,))
            mode = "hard"
        db.commit()
        NoteCommentStoreDB._refresh_count(comment["note_id"])
        return mode


# ── Past papers ──────────────────────────────────────────────────────


PAPER_SORTS = ("created_at", "view_count", "like_count", "download_count", "year", "title")
PAPER_UPDATABLE = (
    "title", "description", "subject", "academic_level", "year", "paper_type",
    "exam_board", "institution", "visibility", "tags",
)


def _paper_row(row) -> dict:
    paper = _decode(row, "tags")
    paper["has_solution"] = bool(paper["has_solution"])
    if "author_username" in paper:
        _pop_author(paper)
    return paper


class PaperStoreDB:
    """Past exam papers with view, like and download tracking."""

    @staticmethod
    def create(user_id: int, fields: dict) -> dict:
        db = get_db()
        now = utcnow()
        values = dict(fields)
        values["tags"] = json.dumps(values.get("tags") or [])
        values["has_solution"] = 1 if values.get("solution_file_path") else 0
        values.update(user_id=user_id, created_at=now, updated_at=now)
        cols = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        cur = db.execute(f"INSERT INTO papers ({cols}) VALUES ({marks})", tuple(values.values()))
        db.commit()
        return PaperStoreDB.get(cur.lastrowid)

    @staticmethod
    def get(paper_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            f"SELECT x.*, {AUTHOR_COLUMNS} FROM papers x JOIN profiles p ON p.id = x.user_id "
            "WHERE x.id = ?",
            (paper_id,),
        ).fetchone()
        return _paper_row(row) if row else None

    @staticmethod
    def search(subject: str = "", year: int | None = None, academic_level: str = "",
               paper_type: str = "", search: str = "", has_solution: bool | None = None,
               sort_by: str = "created_at", sort_order: str = "desc",
               page: int = 1, limit: int = 12) -> tuple[list[dict], int]:
        clauses = ["x.visibility = 'public'"]
        params: list[Any] = []
        for col, value in (("x.subject", subject), ("x.academic_level", academic_level),
                           ("x.paper_type", paper_type)):
            if value:
                clauses.append(f"{col} = ?")
                params.append(value)
        if year is not None:
            clauses.append("x.year = ?")
            params.append(year)
        if has_solution is not None:
            clauses.append("x.has_solution = ?")
            params.append(1 if has_solution else 0)
        if search:
            like = f"%{search}%"
            clauses.append("(x.title LIKE ? OR x.description LIKE ? OR x.subject LIKE ? OR x.institution LIKE ?)")
            params.extend([like, like, like, like])
        order = sort_by if sort_by in PAPER_SORTS else "created_at"
        direction = "ASC" if str(sort_order).lower() == "asc" else "DESC"
        where = " AND ".join(clauses)

        db = get_db()
        total = db.execute(f"SELECT COUNT(*) AS cnt FROM papers x WHERE {where}", params).fetchone()["cnt"]
        rows = db.execute(
            f"SELECT x.*, {AUTHOR_COLUMNS} FROM papers x JOIN profiles p ON p.id = x.user_id "
            f"WHERE {where} ORDER BY x.{order} {direction}, x.id {direction} LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
        return [_paper_row(r) for r in rows], total

    @staticmethod
    def update(paper_id: int, fields: dict) -> dict:
        updates = {k: v for k, v in fields.items() if k in PAPER_UPDATABLE}
        if "tags" in updates:
            updates["tags"] = json.dumps(updates["tags"] or [])
        updates["updated_at"] = utcnow()
        cols = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        db.execute(f"UPDATE papers SET {cols} WHERE id = ?", (*updates.values(), paper_id))
        db.commit()
        return PaperStoreDB.get(paper_id)

    @staticmethod
    def delete(paper_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM papers WHERE id = ?", (paper_id,))
        db.commit()

    @staticmethod
    def record_view(paper_id: int, user_id: int | None) -> None:
        db = get_db()
        db.execute(
            "INSERT INTO paper_views (paper_id, user_id, viewed_at) VALUES (?, ?, ?)",
            (paper_id, user_id, utcnow()),
        )
        db.execute("UPDATE papers SET view_count = view_count + 1 WHERE id = ?", (paper_id,))
        db.commit()

    @staticmethod
    def like_state(paper_id: int, user_id: int | None) -> tuple[bool, int]:
        db = get_db()
        count = db.execute(
            "SELECT like_count FROM papers WHERE id = ?", (paper_id,)
        ).fetchone()["like_count"]
        if user_id is None:
            return False, count
        row = db.execute(
            "SELECT 1 FROM paper_likes WHERE paper_id = ? AND user_id = ?", (paper_id, user_id)
        ).fetchone()
        return row is not None, count

    @staticmethod
    def toggle_like(paper_id: int, user_id: int) -> tuple[bool, int]:
        db = get_db()
        liked, _ = PaperStoreDB.like_state(paper_id, user_id)
        if liked:
            db.execute("DELETE FROM paper_likes WHERE paper_id = ? AND user_id = ?", (paper_id, user_id))
        else:
            db.execute(
                "INSERT INTO paper_likes (paper_id, user_id, created_at) VALUES (?, ?, ?)",
                (paper_id, user_id, utcnow()),
            )
        db.execute(
            "UPDATE papers SET like_count = (SELECT COUNT(*) FROM paper_likes WHERE paper_id = ?) WHERE id = ?",
            (paper_id, paper_id),
        )
        db.commit()
        return PaperStoreDB.like_state(paper_id, user_id)

    @staticmethod
    def record_download(paper_id: int, user_id: int | None, file_type: str,
                        ip: str, user_agent: str) -> None:
        db = get_db()
        db.execute(
            "INSERT INTO paper_downloads (paper_id, user_id, file_type, ip_address, user_agent, downloaded_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (paper_id, user_id, file_type, ip, user_agent, utcnow()),
        )
        db.execute("UPDATE papers SET download_count = download_count + 1 WHERE id = ?", (paper_id,))
        db.commit()

    @staticmethod
    def comments(paper_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            f"SELECT c.*, {COMMENT_PROFILE_COLUMNS} FROM paper_comments c "
            "JOIN profiles p ON p.id = c.user_id WHERE c.paper_id = ? "
            "ORDER BY c.created_at DESC, c.id DESC",
            (paper_id,),
        ).fetchall()
        return [_comment_row(r) for r in rows]

    @staticmethod
    def add_comment(paper_id: int, user_id: int, content: str) -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO paper_comments (paper_id, user_id, content, created_at) VALUES (?, ?, ?, ?)",
            (paper_id, user_id, content, utcnow()),
        )
        db.execute(
            "UPDATE papers SET comment_count = comment_count + 1 WHERE id = ?", (paper_id,)
        )
        db.commit()
        row = db.execute(
            f"SELECT c.*, {COMMENT_PROFILE_COLUMNS} FROM paper_comments c "
            "JOIN profiles p ON p.id = c.user_id WHERE c.id = ?",
            (cur.lastrowid,),
        ).fetchone()
        return _comment_row(row)


# ── Quizzes ──────────────────────────────────────────────────────────


QUIZ_UPDATABLE = (
    "title", "description", "subject", "grade_level", "visibility",
    "time_limit_minutes", "shuffle", "tags",
)


def _question_row(row) -> dict:
    return _decode(row, "options", "correct", "tags")


class QuizStoreDB:
    """Quizzes and their ordered questions."""

    @staticmethod
    def _insert_questions(quiz_id: int, questions: list[dict]) -> None:
        db = get_db()
        for q in questions:
            db.execute(
                "INSERT INTO quiz_questions (quiz_id, text, kind, options, correct, explanation, "
                "tags, time_limit_seconds, order_index) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (quiz_id, q["text"], q["kind"], json.dumps(q["options"]), json.dumps(q["correct"]),
                 q["explanation"], json.dumps(q["tags"]), q["time_limit_seconds"], q["order_index"]),
            )

    @staticmethod
    def create(user_id: int, meta: dict, questions: list[dict]) -> int:
        db = get_db()
        now = utcnow()
        cur = db.execute(
            "INSERT INTO quizzes (user_id, title, description, subject, grade_level, visibility, "
            "time_limit_minutes, shuffle, tags, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, meta["title"], meta.get("description", ""), meta["subject"],
             meta.get("grade_level", ""), meta.get("visibility", "public"),
             meta.get("time_limit_minutes"), 1 if meta.get("shuffle") else 0,
             json.dumps(meta.get("tags") or []), now, now),
        )
        QuizStoreDB._insert_questions(cur.lastrowid, questions)
        db.commit()
        return cur.lastrowid

    @staticmethod
    def get(quiz_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            f"SELECT q.*, {AUTHOR_COLUMNS} FROM quizzes q JOIN profiles p ON p.id = q.user_id "
            "WHERE q.id = ?",
            (quiz_id,),
        ).fetchone()
        if not row:
            return None
        quiz = _pop_author(_decode(row, "tags"))
        quiz["shuffle"] = bool(quiz["shuffle"])
        quiz["questions"] = QuizStoreDB.questions(quiz_id)
        return quiz

    @staticmethod
    def questions(quiz_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM quiz_questions WHERE quiz_id = ? ORDER BY order_index, id", (quiz_id,)
        ).fetchall()
        return [_question_row(r) for r in rows]

    @staticmethod
    def list(viewer_id: int | None, subject: str = "", grade_level: str = "", search: str = "",
             created_by: int | None = None, page: int = 1, limit: int = 10) -> tuple[list[dict], int]:
        """Public quizzes plus the viewer's own, newest first."""
        if viewer_id is None:
            clauses = ["q.visibility = 'public'"]
            params: list[Any] = []
        else:
            clauses = ["(q.visibility = 'public' OR q.user_id = ?)"]
            params = [viewer_id]
        for col, value in (("q.subject", subject), ("q.grade_level", grade_level)):
            if value:
                clauses.append(f"{col} = ?")
                params.append(value)
        if created_by is not None:
            clauses.append("q.user_id = ?")
            params.append(created_by)
        if search:
            clauses.append("(q.title LIKE ? OR q.description LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        where = " AND ".join(clauses)
        db = get_db()
        total = db.execute(f"SELECT COUNT(*) AS cnt FROM quizzes q WHERE {where}", params).fetchone()["cnt"]
        rows = db.execute(
            f"SELECT q.*, {AUTHOR_COLUMNS}, "
            "(SELECT COUNT(*) FROM quiz_questions qq WHERE qq.quiz_id = q.id) AS question_count "
            f"FROM quizzes q JOIN profiles p ON p.id = q.user_id WHERE {where} "
            "ORDER BY q.created_at DESC, q.id DESC LIMIT ? OFFSET ?",
            (*params, limit, (page - 1) * limit),
        ).fetchall()
        result = []
        for r in rows:
            quiz = _pop_author(_decode(r, "tags"))
            quiz["shuffle"] = bool(quiz["shuffle"])
            result.append(quiz)
        return result, total

    @staticmethod
    def count_by_user(user_id: int) -> int:
        db = get_db()
        return db.execute("SELECT COUNT(*) AS cnt FROM quizzes WHERE user_id = ?", (user_id,)).fetchone()["cnt"]

    @staticmethod
    def update(quiz_id: int, meta: dict, questions: list[dict] | None = None) -> dict:
        updates = {k: v for k, v in meta.items() if k in QUIZ_UPDATABLE}
        if "tags" in updates:
            updates["tags"] = json.dumps(updates["tags"] or [])
        if "shuffle" in updates:
            updates["shuffle"] = 1 if updates["shuffle"] else 0
        updates["updated_at"] = utcnow()
        cols = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        db.execute(f"UPDATE quizzes SET {cols} WHERE id = ?", (*updates.values(), quiz_id))
        if questions is not None:
            db.execute("DELETE FROM quiz_questions WHERE quiz_id = ?", (quiz_id,))
            QuizStoreDB._insert_questions(quiz_id, questions)
        db.commit()
        return QuizStoreDB.get(quiz_id)

    @staticmethod
    def delete(quiz_id: int) -> None:
        db = get_db()
        db.execute("DELETE FROM quizzes WHERE id = ?", (quiz_id,))
        db.commit()

    @staticmethod
    def increment_play(quiz_id: int) -> None:
        db = get_db()
        db.execute("UPDATE quizzes SET play_count = play_count + 1 WHERE id = ?", (quiz_id,))
        db.commit()


class QuizAttemptStoreDB:
    """Completed quiz attempts."""

    @staticmethod
    def add(quiz_id: int, user_id: int, score: int, total_questions: int, percentage: float,
            time_taken: int, answers: Any = None, started_at: str = "",
            completed_at: str = "") -> dict:
        db = get_db()
        now = utcnow()
        cur = db.execute(
            "INSERT INTO quiz_attempts (quiz_id, user_id, score, total_questions, percentage, "
            "time_taken, answers, started_at, completed_at, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (quiz_id, user_id, score, total_questions, percentage, time_taken,
             json.dumps(answers if answers is not None else []), started_at or now,
             completed_at or now, now),
        )
        db.commit()
        return QuizAttemptStoreDB.get(cur.lastrowid)

    @staticmethod
    def set_points(attempt_id: int, points: int) -> None:
        db = get_db()
        db.execute("UPDATE quiz_attempts SET points_awarded = ? WHERE id = ?", (points, attempt_id))
        db.commit()

    @staticmethod
    def get(attempt_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM quiz_attempts WHERE id = ?", (attempt_id,)).fetchone()
        return _decode(row, "answers") if row else None

    @staticmethod
    def for_user(quiz_id: int, user_id: int) -> list[dict]:
        """Attempts ranked by percentage desc, then fastest time."""
        db = get_db()
        rows = db.execute(
            "SELECT * FROM quiz_attempts WHERE quiz_id = ? AND user_id = ? "
            "ORDER BY percentage DESC, time_taken ASC, id ASC",
            (quiz_id, user_id),
        ).fetchall()
        return [{**_decode(r, "answers"), "rank": i} for i, r in enumerate(rows, 1)]

    @staticmethod
    def chronological(quiz_id: int, user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM quiz_attempts WHERE quiz_id = ? AND user_id = ? ORDER BY created_at ASC, id ASC",
            (quiz_id, user_id),
        ).fetchall()
        return [_decode(r, "answers") for r in rows]

    @staticmethod
    def count_for_user(user_id: int) -> int:
        db = get_db()
        return db.execute(
            "SELECT COUNT(*) AS cnt FROM quiz_attempts WHERE user_id = ?", (user_id,)
        ).fetchone()["cnt"]

    @staticmethod
    def summary(quiz_id: int, user_id: int) -> dict:
        db = get_db()
        row = db.execute(
            "SELECT COUNT(*) AS attempts, MAX(percentage) AS best FROM quiz_attempts "
            "WHERE quiz_id = ? AND user_id = ?",
            (quiz_id, user_id),
        ).fetchone()
        return {"attemptsCount": row["attempts"], "bestScore": row["best"]}


class QuizSummaryStoreDB:
    """Stored AI performance summaries, one per (quiz, user)."""

    LIST_FIELDS = ("strengths", "weaknesses", "recommendations")

    @staticmethod
    def get(quiz_id: int, user_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT * FROM quiz_ai_summaries WHERE quiz_id = ? AND user_id = ?", (quiz_id, user_id)
        ).fetchone()
        if not row:
            return None
        summary = dict(row)
        for key in QuizSummaryStoreDB.LIST_FIELDS:
            summary[key] = [s for s in summary[key].split("|") if s]
        return summary

    @staticmethod
    def save(quiz_id: int, user_id: int, summary: dict, attempts_analyzed: int, model: str) -> dict:
        db = get_db()
        now = utcnow()
        lists = {k: "|".join(str(s).replace("|", "/") for s in summary.get(k) or [])
                 for k in QuizSummaryStoreDB.LIST_FIELDS}
        db.execute(
            "INSERT INTO quiz_ai_summaries (quiz_id, user_id, overall_performance, trend_analysis, "
            "strengths, weaknesses, recommendations, confidence_level, attempts_analyzed, model, "
            "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(quiz_id, user_id) DO UPDATE SET "
            "overall_performance = excluded.overall_performance, "
            "trend_analysis = excluded.trend_analysis, strengths = excluded.strengths, "
            "weaknesses = excluded.weaknesses, recommendations = excluded.recommendations, "
            "confidence_level = excluded.confidence_level, "
            "attempts_analyzed = excluded.attempts_analyzed, model = excluded.model, "
            "updated_at = excluded.updated_at",
            (quiz_id, user_id, summary.get("overall_performance", ""),
             summary.get("trend_analysis", ""), lists["strengths"], lists["weaknesses"],
             lists["recommendations"], summary.get("confidence_level", "medium"),
             attempts_analyzed, model, now, now),
        )
        db.commit()
        return QuizSummaryStoreDB.get(quiz_id, user_id)


# ── Peer connections ─────────────────────────────────────────────────


PEER_COLUMNS = "p.id, p.username, p.full_name, p.avatar_url, p.university, p.major, p.bio, p.level"


class ConnectionStoreDB:
    """Peer connection requests, accepted connections and blocks."""

    @staticmethod
    def get(connection_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM peer_connections WHERE id = ?", (connection_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def between(a: int, b: int) -> dict | None:
        """Any connection row linking two users, in either direction."""
        db = get_db()
        row = db.execute(
            "SELECT * FROM peer_connections WHERE (requester_id = ? AND addressee_id = ?) "
            "OR (requester_id = ? AND addressee_id = ?)",
            (a, b, b, a),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def are_connected(a: int, b: int) -> bool:
        conn = ConnectionStoreDB.between(a, b)
        return conn is not None and conn["status"] == "accepted"

    @staticmethod
    def is_blocked(a: int, b: int) -> bool:
        conn = ConnectionStoreDB.between(a, b)
        return conn is not None and conn["status"] == "blocked"

    @staticmethod
    def accepted_count(user_id: int) -> int:
        db = get_db()
        return db.execute(
            "SELECT COUNT(*) AS cnt FROM peer_connections WHERE status = 'accepted' "
            "AND (requester_id = ? OR addressee_id = ?)",
            (user_id, user_id),
        ).fetchone()["cnt"]

    @staticmethod
    def connect(requester_id: int, addressee_id: int, message: str = "") -> dict:
        if requester_id == addressee_id:
            raise ValidationError("Cannot connect with yourself")
        if not ProfileStoreDB.get(addressee_id):
            raise NotFoundError("User not found")
        existing = ConnectionStoreDB.between(requester_id, addressee_id)
        if existing:
            if existing["status"] == "blocked":
                raise ValidationError("Cannot connect with this user")
            raise ValidationError("Connection already exists")
        db = get_db()
        now = utcnow()
        cur = db.execute(
            "INSERT INTO peer_connections (requester_id, addressee_id, status, message, created_at, updated_at) "
            "VALUES (?, ?, 'pending', ?, ?, ?)",
            (requester_id, addressee_id, message or "", now, now),
        )
        db.commit()
        requester = ProfileStoreDB.get(requester_id)
        notify(
            addressee_id, "connection_request", "New connection request",
            f"{requester['full_name'] or requester['username']} wants to connect with you",
            actionable=True, link="/peers?tab=requests", avatar=requester["avatar_url"],
            metadata={"connectionId": cur.lastrowid, "requesterId": requester_id},
        )
        return ConnectionStoreDB.get(cur.lastrowid)

    @staticmethod
    def respond(connection_id: int, user_id: int, accept: bool) -> dict | None:
        """Accept or decline a pending request addressed to ``user_id``.

        Declined requests are removed so they can be sent again later.
        """
        conn = ConnectionStoreDB.get(connection_id)
        if not conn or conn["status"] != "pending":
            raise NotFoundError("Connection request not found")
        if conn["addressee_id"] != user_id:
            raise PermissionDeniedError("Only the recipient can respond to this request")
        db = get_db()
        if not accept:
            db.execute("DELETE FROM peer_connections WHERE id = ?", (connection_id,))
            db.commit()
            return None
        db.execute(
            "UPDATE peer_connections SET status = 'accepted', updated_at = ? WHERE id = ?",
            (utcnow(), connection_id),
        )
        db.commit()
        addressee = ProfileStoreDB.get(user_id)
        notify(
            conn["requester_id"], "connection_request", "Connection accepted",
            f"{addressee['full_name'] or addressee['username']} accepted your connection request",
            link=f"/profile/{addressee['username']}", avatar=addressee["avatar_url"],
        )
        for uid in (conn["requester_id"], user_id):
            if ConnectionStoreDB.accepted_count(uid) >= 5:
                GamificationStoreDB(uid).unlock("social_butterfly")
        return ConnectionStoreDB.get(connection_id)

    @staticmethod
    def block(user_id: int, target_id: int) -> dict:
        if user_id == target_id:
            raise ValidationError("Cannot block yourself")
        if not ProfileStoreDB.get(target_id):
            raise NotFoundError("User not found")
        db = get_db()
        now = utcnow()
        db.execute(
            "DELETE FROM peer_connections WHERE (requester_id = ? AND addressee_id = ?) "
            "OR (requester_id = ? AND addressee_id = ?)",
            (user_id, target_id, target_id, user_id),
        )
        cur = db.execute(
            "INSERT INTO peer_connections (requester_id, addressee_id, status, created_at, updated_at) "
            "VALUES (?, ?, 'blocked', ?, ?)",
            (user_id, target_id, now, now),
        )
        db.commit()
        return ConnectionStoreDB.get(cur.lastrowid)

    @staticmethod
    def unblock(user_id: int, target_id: int) -> int:
        db = get_db()
        cur = db.execute(
            "DELETE FROM peer_connections WHERE requester_id = ? AND addressee_id = ? AND status = 'blocked'",
            (user_id, target_id),
        )
        db.commit()
        return cur.rowcount

    @staticmethod
    def remove(user_id: int, target_id: int) -> int:
        db = get_db()
        cur = db.execute(
            "DELETE FROM peer_connections WHERE status != 'blocked' AND "
            "((requester_id = ? AND addressee_id = ?) OR (requester_id = ? AND addressee_id = ?))",
            (user_id, target_id, target_id, user_id),
        )
        db.commit()
        return cur.rowcount

    @staticmethod
    def _with_peer(rows) -> list[dict]:
        result = []
        for r in rows:
            entry = dict(r)
            entry["peer"] = {
                "id": entry.pop("peer_id"),
                "username": entry.pop("peer_username"),
                "full_name": entry.pop("peer_full_name"),
                "avatar_url": entry.pop("peer_avatar_url"),
                "university": entry.pop("peer_university"),
                "major": entry.pop("peer_major"),
            }
            result.append(entry)
        return result

    @staticmethod
    def _query(where: str, params: tuple, other: str) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT c.*, p.id AS peer_id, p.username AS peer_username, p.full_name AS peer_full_name, "
            "p.avatar_url AS peer_avatar_url, p.university AS peer_university, p.major AS peer_major "
            f"FROM peer_connections c JOIN profiles p ON p.id = {other} "
            f"WHERE {where} ORDER BY c.updated_at DESC, c.id DESC",
            params,
        ).fetchall()
        return ConnectionStoreDB._with_peer(rows)

    @staticmethod
    def connections(user_id: int, status: str = "accepted") -> list[dict]:
        # the join placeholder precedes the WHERE placeholders
        return ConnectionStoreDB._query(
            "c.status = ? AND (c.requester_id = ? OR c.addressee_id = ?)",
            (user_id, status, user_id, user_id),
            "(CASE WHEN c.requester_id = ? THEN c.addressee_id ELSE c.requester_id END)",
        )

    @staticmethod
    def requests(user_id: int) -> list[dict]:
        return ConnectionStoreDB._query(
            "c.status = 'pending' AND c.addressee_id = ?", (user_id,), "c.requester_id"
        )

    @staticmethod
    def sent(user_id: int) -> list[dict]:
        return ConnectionStoreDB._query(
            "c.status = 'pending' AND c.requester_id = ?", (user_id,), "c.addressee_id"
        )

    @staticmethod
    def blocked(user_id: int) -> list[dict]:
        return ConnectionStoreDB._query(
            "c.status = 'blocked' AND c.requester_id = ?", (user_id,), "c.addressee_id"
        )

    @staticmethod
    def search(user_id: int, q: str = "", discover: bool = False, limit: int = 20) -> list[dict]:
        clauses = ["p.id != ?"]
        params: list[Any] = [user_id]
        if q:
            like = f"%{q}%"
            clauses.append("(p.username LIKE ? OR p.full_name LIKE ? OR p.university LIKE ? OR p.major LIKE ?)")
            params.extend([like, like, like, like])
        if discover:
            clauses.append(
                "p.id NOT IN (SELECT addressee_id FROM peer_connections WHERE requester_id = ? "
                "UNION SELECT requester_id FROM peer_connections WHERE addressee_id = ?)"
            )
            params.extend([user_id, user_id])
        else:
            # users who blocked the caller stay hidden
            clauses.append(
                "p.id NOT IN (SELECT requester_id FROM peer_connections "
                "WHERE addressee_id = ? AND status = 'blocked')"
            )
            params.append(user_id)
        db = get_db()
        rows = db.execute(
            f"SELECT {PEER_COLUMNS} FROM profiles p WHERE {' AND '.join(clauses)} "
            "ORDER BY p.total_points DESC, p.id LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [dict(r) for r in rows]


# ── Points store ─────────────────────────────────────────────────────


class StoreItemStoreDB:
    """Cosmetic items bought with points, and what the user has equipped."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def _points(self) -> int:
        profile = ProfileStoreDB.get(self.user_id)
        return profile["total_points"] if profile else 0

    @staticmethod
    def get_item(item_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT * FROM store_items WHERE id = ? AND is_active = 1", (item_id,)
        ).fetchone()
        return dict(row) if row else None

    def owns(self, item_id: int) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM user_purchases WHERE user_id = ? AND item_id = ?", (self.user_id, item_id)
        ).fetchone()
        return row is not None

    def items(self, category: str | None = None) -> tuple[list[dict], int]:
        """Active items by ascending price, flagged owned/equipped/canAfford."""
        clauses = ["i.is_active = 1"]
        params: list[Any] = [self.user_id, self.user_id]
        if category:
            if category not in STORE_CATEGORIES:
                raise ValidationError("Invalid category")
            clauses.append("i.category = ?")
            params.append(category)
        db = get_db()
        rows = db.execute(
            "SELECT i.*, up.purchased_at, ue.item_id AS equipped_item FROM store_items i "
            "LEFT JOIN user_purchases up ON up.item_id = i.id AND up.user_id = ? "
            "LEFT JOIN user_equipped_items ue ON ue.item_id = i.id AND ue.user_id = ? "
            f"WHERE {' AND '.join(clauses)} ORDER BY i.price ASC, i.id ASC",
            params,
        ).fetchall()
        points = self._points()
        result = []
        for r in rows:
            item = dict(r)
            item["owned"] = item.pop("purchased_at") is not None
            item["equipped"] = item.pop("equipped_item") is not None
            item["canAfford"] = points >= item["price"]
            result.append(item)
        return result, points

    def equipped(self) -> dict:
        db = get_db()
        rows = db.execute(
            "SELECT ue.category, i.id, i.name, i.item_value, i.rarity FROM user_equipped_items ue "
            "JOIN store_items i ON i.id = ue.item_id WHERE ue.user_id = ?",
            (self.user_id,),
        ).fetchall()
        return {r["category"]: {k: r[k] for k in ("id", "name", "item_value", "rarity")} for r in rows}

    def purchase(self, item_id: int) -> dict:
        item = self.get_item(item_id)
        if not item:
            raise NotFoundError("Item not found")
        if self.owns(item_id):
            raise ValidationError("You already own this item")
        if self._points() < item["price"]:
            raise ValidationError("Insufficient points")
        db = get_db()
        db.execute(
            "INSERT INTO user_purchases (user_id, item_id, price_paid, purchased_at) VALUES (?, ?, ?, ?)",
            (self.user_id, item_id, item["price"], utcnow()),
        )
        db.commit()
        result = GamificationStoreDB(self.user_id).add_points(
            -item["price"], "store_purchase", item_id, f"Purchased {item['name']}",
        )
        logger.info("User %s purchased store item %s", self.user_id, item_id)
        return {"item": item, "remainingPoints": result["total_points"]}

    def equip(self, item_id: int) -> dict:
        item = self.get_item(item_id)
        if not item:
            raise NotFoundError("Item not found")
        if not self.owns(item_id):
            raise ValidationError("You don't own this item")
        column, _ = EQUIP_FIELDS[item["category"]]
        db = get_db()
        db.execute(
            "INSERT INTO user_equipped_items (user_id, category, item_id, equipped_at) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(user_id, category) DO UPDATE SET item_id = excluded.item_id, "
            "equipped_at = excluded.equipped_at",
            (self.user_id, item["category"], item_id, utcnow()),
        )
        db.execute(f"UPDATE profiles SET {column} = ? WHERE id = ?", (item["item_value"], self.user_id))
        db.commit()
        return item

    def unequip(self, item_id: int) -> dict:
        item = self.get_item(item_id)
        if not item:
            raise NotFoundError("Item not found")
        column, reset = EQUIP_FIELDS[item["category"]]
        db = get_db()
        cur = db.execute(
            "DELETE FROM user_equipped_items WHERE user_id = ? AND item_id = ?",
            (self.user_id, item_id),
        )
        if cur.rowcount == 0:
            raise ValidationError("This item is not equipped")
        db.execute(f"UPDATE profiles SET {column} = ? WHERE id = ?", (reset, self.user_id))
        db.commit()
        return item


# ── Login sessions ───────────────────────────────────────────────────


SESSION_LIFETIME_DAYS = 30

_TABLET_RE = re.compile(r"tablet|ipad|playbook|silk", re.I)
_MOBILE_RE = re.compile(
    r"mobile|iphone|ipod|android|blackberry|opera|mini|windows\sce|palm|smartphone|iemobile", re.I
)


def _browser(ua: str) -> str:
    for pattern, name in ((r"Edg(?:e)?/(\d+)", "Edge"), (r"Firefox/(\d+)", "Firefox"),
                          (r"Chrome/(\d+)", "Chrome")):
        match = re.search(pattern, ua)
        if match:
            return f"{name} {match.group(1)}"
    match = re.search(r"Version/(\d+)", ua)
    if match and "Safari" in ua:
        return f"Safari {match.group(1)}"
    return "Unknown Browser"


def _os(ua: str) -> str:
    if "Windows NT 10.0" in ua:
        return "Windows 10/11"
    if "Windows NT" in ua:
        return "Windows"
    match = re.search(r"iPhone OS (\d+)_(\d+)", ua) or re.search(r"CPU OS (\d+)_(\d+)", ua)
    if match:
        return f"iOS {match.group(1)}.{match.group(2)}"
    match = re.search(r"Mac OS X (\d+)[_.](\d+)", ua)
    if match:
        return f"macOS {match.group(1)}.{match.group(2)}"
    match = re.search(r"Android (\d+(?:\.\d+)?)", ua)
    if match:
        return f"Android {match.group(1)}"
    if "Linux" in ua:
        return "Linux"
    return "Unknown OS"


def parse_user_agent(ua: str) -> dict:
    """Device type, browser and OS labels for the session list."""
    ua = ua or ""
    if _TABLET_RE.search(ua):
        device = "tablet"
    elif _MOBILE_RE.search(ua):
        device = "mobile"
    else:
        device = "desktop"
    return {"device_type": device, "browser": _browser(ua), "os": _os(ua)}


class SessionStoreDB:
    """Devices a user is signed in on."""

    @staticmethod
    def create(user_id: int, token: str, user_agent: str, ip: str, location: str = "") -> dict:
        db = get_db()
        now = datetime.now(timezone.utc)
        parsed = parse_user_agent(user_agent)
        db.execute(
            "INSERT INTO user_sessions (user_id, session_token, device_type, browser, os, ip_address, "
            "location, user_agent, last_active, created_at, expires_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, token, parsed["device_type"], parsed["browser"], parsed["os"], ip, location,
             user_agent or "", now.isoformat(), now.isoformat(),
             (now + timedelta(days=SESSION_LIFETIME_DAYS)).isoformat()),
        )
        db.commit()
        return SessionStoreDB.get_by_token(token)

    @staticmethod
    def get_by_token(token: str) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM user_sessions WHERE session_token = ?", (token,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def list(user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM user_sessions WHERE user_id = ? ORDER BY last_active DESC, id DESC",
            (user_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def touch(token: str) -> None:
        db = get_db()
        db.execute("UPDATE user_sessions SET last_active = ? WHERE session_token = ?", (utcnow(), token))
        db.commit()

    @staticmethod
    def delete(user_id: int, session_id: int) -> int:
        db = get_db()
        cur = db.execute(
            "DELETE FROM user_sessions WHERE id = ? AND user_id = ?", (session_id, user_id)
        )
        db.commit()
        return cur.rowcount

    @staticmethod
    def delete_token(token: str) -> None:
        db = get_db()
        db.execute("DELETE FROM user_sessions WHERE session_token = ?", (token,))
        db.commit()

    @staticmethod
    def purge_stale(user_id: int) -> int:
        cutoff = (datetime.now(timezone.utc) - timedelta(days=SESSION_LIFETIME_DAYS)).isoformat()
        db = get_db()
        cur = db.execute(
            "DELETE FROM user_sessions WHERE user_id = ? AND last_active < ?", (user_id, cutoff)
        )
        db.commit()
        return cur.rowcount


# ── Feedback ─────────────────────────────────────────────────────────


class FeedbackStoreDB:

    @staticmethod
    def create(user_id: int | None, fields: dict) -> dict:
        db = get_db()
        cur = db.execute(
            "INSERT INTO feedback (user_id, feedback_type, subject, description, priority, "
            "user_agent, page_url, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (user_id, fields["feedback_type"], fields["subject"], fields["description"],
             fields.get("priority", "medium"), fields.get("user_agent", ""),
             fields.get("page_url", ""), utcnow()),
        )
        db.commit()
        row = db.execute("SELECT * FROM feedback WHERE id = ?", (cur.lastrowid,)).fetchone()
        return dict(row)

    @staticmethod
    def for_user(user_id: int) -> list[dict]:
        db = get_db()
        rows = db.execute(
            "SELECT * FROM feedback WHERE user_id = ? ORDER BY created_at DESC, id DESC", (user_id,)
        ).fetchall()
        return [dict(r) for r in rows]


# ── Timetable ────────────────────────────────────────────────────────


class ScheduleStoreDB:
    """A user's weekly timetable entries and display settings."""

    def __init__(self, user_id: int):
        self.user_id = user_id

    def entries(self, day: str | None = None, entry_type: str | None = None,
                subject: str | None = None) -> list[dict]:
        clauses = ["user_id = ?"]
        params: list[Any] = [self.user_id]
        if day:
            clauses.append("day = ?")
            params.append(day)
        if entry_type:
            clauses.append("entry_type = ?")
            params.append(entry_type)
        if subject:
            clauses.append("subject LIKE ?")
            params.append(f"%{subject}%")
        db = get_db()
        rows = db.execute(
            f"SELECT * FROM schedule_entries WHERE {' AND '.join(clauses)}", params
        ).fetchall()
        return sorted((dict(r) for r in rows), key=sort_key)

    def get(self, entry_id: int) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT * FROM schedule_entries WHERE id = ? AND user_id = ?", (entry_id, self.user_id)
        ).fetchone()
        return dict(row) if row else None

    def create(self, fields: dict) -> dict:
        db = get_db()
        now = utcnow()
        values = {**fields, "user_id": self.user_id, "created_at": now, "updated_at": now}
        cols = ", ".join(values)
        marks = ", ".join("?" for _ in values)
        cur = db.execute(
            f"INSERT INTO schedule_entries ({cols}) VALUES ({marks})", tuple(values.values())
        )
        db.commit()
        return self.get(cur.lastrowid)

    def update(self, entry_id: int, fields: dict) -> dict:
        updates = {**fields, "updated_at": utcnow()}
        cols = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        db.execute(
            f"UPDATE schedule_entries SET {cols} WHERE id = ? AND user_id = ?",
            (*updates.values(), entry_id, self.user_id),
        )
        db.commit()
        return self.get(entry_id)

    def delete(self, entry_id: int) -> int:
        db = get_db()
        cur = db.execute(
            "DELETE FROM schedule_entries WHERE id = ? AND user_id = ?", (entry_id, self.user_id)
        )
        db.commit()
        return cur.rowcount

    def clear(self) -> int:
        db = get_db()
        cur = db.execute("DELETE FROM schedule_entries WHERE user_id = ?", (self.user_id,))
        db.commit()
        return cur.rowcount

    def settings(self) -> dict | None:
        db = get_db()
        row = db.execute(
            "SELECT time_format, start_hour, end_hour, show_weekends, color_scheme "
            "FROM schedule_settings WHERE user_id = ?",
            (self.user_id,),
        ).fetchone()
        return dict(row) if row else None

    def update_settings(self, fields: dict) -> dict | None:
        db = get_db()
        db.execute("INSERT OR IGNORE INTO schedule_settings (user_id) VALUES (?)", (self.user_id,))
        if fields:
            cols = ", ".join(f"{k} = ?" for k in fields)
            db.execute(
                f"UPDATE schedule_settings SET {cols} WHERE user_id = ?",
                (*fields.values(), self.user_id),
            )
        db.commit()
        return self.settings()


# ── Direct messages ──────────────────────────────────────────────────


MAX_MESSAGE_LENGTH = 2000


class ChatStoreDB:
    """One-to-one conversations between users."""

    @staticmethod
    def conversation_between(a: int, b: int, create: bool = False) -> dict | None:
        one, two = sorted((a, b))
        db = get_db()
        row = db.execute(
            "SELECT * FROM conversations WHERE user_one_id = ? AND user_two_id = ?", (one, two)
        ).fetchone()
        if row or not create:
            return dict(row) if row else None
        now = utcnow()
        cur = db.execute(
            "INSERT INTO conversations (user_one_id, user_two_id, last_message_at, created_at) "
            "VALUES (?, ?, ?, ?)",
            (one, two, now, now),
        )
        db.commit()
        return dict(db.execute("SELECT * FROM conversations WHERE id = ?", (cur.lastrowid,)).fetchone())

    @staticmethod
    def get_conversation(conversation_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def is_participant(conversation_id: int, user_id: int) -> bool:
        conv = ChatStoreDB.get_conversation(conversation_id)
        return conv is not None and user_id in (conv["user_one_id"], conv["user_two_id"])

    @staticmethod
    def conversations(user_id: int) -> list[dict]:
        """Conversations with the other participant, last message and unread count."""
        db = get_db()
        rows = db.execute(
            "SELECT c.id, c.last_message_at, c.created_at, "
            "p.id AS other_id, p.username AS other_username, p.full_name AS other_full_name, "
            "p.avatar_url AS other_avatar_url, p.last_seen_at AS other_last_seen_at, "
            "(SELECT COUNT(*) FROM messages m WHERE m.conversation_id = c.id "
            " AND m.recipient_id = ? AND m.is_read = 0) AS unread_count "
            "FROM conversations c JOIN profiles p ON p.id = "
            "(CASE WHEN c.user_one_id = ? THEN c.user_two_id ELSE c.user_one_id END) "
            "WHERE c.user_one_id = ? OR c.user_two_id = ? "
            "ORDER BY c.last_message_at DESC, c.id DESC",
            (user_id, user_id, user_id, user_id),
        ).fetchall()
        result = []
        for r in rows:
            entry = dict(r)
            entry["other_user"] = {
                "id": entry.pop("other_id"),
                "username": entry.pop("other_username"),
                "full_name": entry.pop("other_full_name"),
                "avatar_url": entry.pop("other_avatar_url"),
                "last_seen_at": entry.pop("other_last_seen_at"),
            }
            last = db.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at DESC, id DESC LIMIT 1",
                (entry["id"],),
            ).fetchone()
            entry["last_message"] = dict(last) if last else None
            result.append(entry)
        return result

    @staticmethod
    def messages(conversation_id: int, limit: int = 50, before: int | None = None) -> list[dict]:
        """The newest ``limit`` messages (optionally older than id ``before``), oldest first."""
        clauses = ["conversation_id = ?"]
        params: list[Any] = [conversation_id]
        if before:
            clauses.append("id < ?")
            params.append(before)
        db = get_db()
        rows = db.execute(
            f"SELECT * FROM messages WHERE {' AND '.join(clauses)} ORDER BY id DESC LIMIT ?",
            (*params, limit),
        ).fetchall()
        return [dict(r) for r in reversed(rows)]

    @staticmethod
    def send(sender_id: int, recipient_id: int, content: str, message_type: str = "text") -> dict:
        conv = ChatStoreDB.conversation_between(sender_id, recipient_id, create=True)
        db = get_db()
        now = utcnow()
        cur = db.execute(
            "INSERT INTO messages (conversation_id, sender_id, recipient_id, content, message_type, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (conv["id"], sender_id, recipient_id, content, message_type, now),
        )
        db.execute("UPDATE conversations SET last_message_at = ? WHERE id = ?", (now, conv["id"]))
        db.commit()
        return dict(db.execute("SELECT * FROM messages WHERE id = ?", (cur.lastrowid,)).fetchone())

    @staticmethod
    def get_message(message_id: int) -> dict | None:
        db = get_db()
        row = db.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return dict(row) if row else None

    @staticmethod
    def mark_read(message_id: int) -> dict:
        db = get_db()
        db.execute(
            "UPDATE messages SET is_read = 1, read_at = ? WHERE id = ? AND is_read = 0",
            (utcnow(), message_id),
        )
        db.commit()
        return ChatStoreDB.get_message(message_id)

    @staticmethod
    def mark_conversation_read(conversation_id: int, user_id: int) -> int:
        db = get_db()
        cur = db.execute(
            "UPDATE messages SET is_read = 1, read_at = ? "
            "WHERE conversation_id = ? AND recipient_id = ? AND is_read = 0",
            (utcnow(), conversation_id, user_id),
        )
        db.commit()
        return cur.rowcount


# ── Video rooms ──────────────────────────────────────────────────────


# Room type -> participant cap
ROOM_TYPES = {"peer_to_peer": 2, "group": 8, "tutor_session": 20}
ROOM_STATUSES = ("waiting", "active", "ended")
ROOM_UPDATABLE = ("title", "description", "subject", "max_participants", "is_public", "scheduled_start")


def _new_room_id() -> str:
    stamp = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"room-{stamp}-{uuid.uuid4().hex[:6]}"


def _room_row(row) -> dict:
    room = dict(row)
    room["is_public"] = bool(room["is_public"])
    room["host"] = {
        "id": room["host_user_id"],
        "username": room.pop("host_username", None),
        "full_name": room.pop("host_full_name", None),
        "avatar_url": room.pop("host_avatar_url", None),
    }
    return room


class VideoRoomStoreDB:
    """Study video rooms and their participants. Media flows peer to peer."""

    SELECT = (
        "SELECT r.*, p.username AS host_username, p.full_name AS host_full_name, "
        "p.avatar_url AS host_avatar_url, "
        "(SELECT COUNT(*) FROM video_room_participants vp WHERE vp.room_id = r.room_id "
        " AND vp.connection_status = 'connected') AS participant_count "
        "FROM video_rooms r JOIN profiles p ON p.id = r.host_user_id"
    )

    @staticmethod
    def create(host_id: int, fields: dict) -> dict:
        room_type = fields.get("room_type") or "group"
        if room_type not in ROOM_TYPES:
            raise ValidationError("Invalid room type")
        max_participants = min(fields.get("max_participants") or 10, ROOM_TYPES[room_type])
        room_id = _new_room_id()
        db = get_db()
        now = utcnow()
        db.execute(
            "INSERT INTO video_rooms (room_id, host_user_id, room_type, status, title, description, "
            "subject, max_participants, is_public, scheduled_start, created_at, updated_at) "
            "VALUES (?, ?, ?, 'waiting', ?, ?, ?, ?, ?, ?, ?, ?)",
            (room_id, host_id, room_type, fields["title"], fields.get("description", ""),
             fields.get("subject", ""), max_participants, 1 if fields.get("is_public", True) else 0,
             fields.get("scheduled_start") or "", now, now),
        )
        db.execute(
            "INSERT INTO video_room_participants (room_id, user_id, is_host, connection_status, joined_at) "
            "VALUES (?, ?, 1, 'disconnected', ?)",
            (room_id, host_id, now),
        )
        db.commit()
        logger.info("User %s created video room %s", host_id, room_id)
        return VideoRoomStoreDB.get(room_id)

    @staticmethod
    def get(room_id: str) -> dict | None:
        db = get_db()
        row = db.execute(f"{VideoRoomStoreDB.SELECT} WHERE r.room_id = ?", (room_id,)).fetchone()
        return _room_row(row) if row else None

    @staticmethod
    def list(status: str = "", subject: str = "", search: str = "") -> list[dict]:
        clauses = ["r.is_public = 1"]
        params: list[Any] = []
        if status:
            clauses.append("r.status = ?")
            params.append(status)
        else:
            clauses.append("r.status != 'ended'")
        if subject:
            clauses.append("r.subject = ?")
            params.append(subject)
        if search:
            clauses.append("(r.title LIKE ? OR r.description LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        db = get_db()
        rows = db.execute(
            f"{VideoRoomStoreDB.SELECT} WHERE {' AND '.join(clauses)} ORDER BY r.created_at DESC, r.id DESC",
            params,
        ).fetchall()
        return [_room_row(r) for r in rows]

    @staticmethod
    def participants(room_id: str, connected_only: bool = False) -> list[dict]:
        where = "vp.room_id = ?" + (" AND vp.connection_status = 'connected'" if connected_only else "")
        db = get_db()
        rows = db.execute(
            "SELECT vp.*, p.username, p.full_name, p.avatar_url FROM video_room_participants vp "
            f"JOIN profiles p ON p.id = vp.user_id WHERE {where} ORDER BY vp.joined_at, vp.id",
            (room_id,),
        ).fetchall()
        result = []
        for r in rows:
            entry = dict(r)
            entry["is_host"] = bool(entry["is_host"])
            result.append(entry)
        return result

    @staticmethod
    def is_participant(room_id: str, user_id: int) -> bool:
        db = get_db()
        row = db.execute(
            "SELECT 1 FROM video_room_participants WHERE room_id = ? AND user_id = ?", (room_id, user_id)
        ).fetchone()
        return row is not None

    @staticmethod
    def update(room_id: str, fields: dict) -> dict:
        updates = {k: v for k, v in fields.items() if k in ROOM_UPDATABLE}
        if "is_public" in updates:
            updates["is_public"] = 1 if updates["is_public"] else 0
        if "max_participants" in updates:
            room = VideoRoomStoreDB.get(room_id)
            updates["max_participants"] = min(updates["max_participants"], ROOM_TYPES.get(room["room_type"], 50))
        updates["updated_at"] = utcnow()
        cols = ", ".join(f"{k} = ?" for k in updates)
        db = get_db()
        db.execute(f"UPDATE video_rooms SET {cols} WHERE room_id = ?", (*updates.values(), room_id))
        db.commit()
        return VideoRoomStoreDB.get(room_id)

    @staticmethod
    def delete(room_id: str) -> None:
        db = get_db()
        db.execute("DELETE FROM video_room_participants WHERE room_id = ?", (room_id,))
        db.execute("DELETE FROM video_rooms WHERE room_id = ?", (room_id,))
        db.commit()

    @staticmethod
    def join(room_id: str, user_id: int) -> dict:
        """Connect a user; the first join starts a waiting room."""
        room = VideoRoomStoreDB.get(room_id)
        if not room:
            raise NotFoundError("Room not found")
        if room["status"] == "ended":
            raise GoneError("This room has ended")
        already = VideoRoomStoreDB.is_participant(room_id, user_id)
        connected = [p["user_id"] for p in VideoRoomStoreDB.participants(room_id, connected_only=True)]
        if user_id not in connected and len(connected) >= room["max_participants"]:
            raise PermissionDeniedError("Room is full")
        db = get_db()
        now = utcnow()
        if room["status"] == "waiting":
            db.execute(
                "UPDATE video_rooms SET status = 'active', started_at = ?, updated_at = ? WHERE room_id = ?",
                (now, now, room_id),
            )
        if already:
            db.execute(
                "UPDATE video_room_participants SET connection_status = 'connected', joined_at = ?, "
                "left_at = '' WHERE room_id = ? AND user_id = ?",
                (now, room_id, user_id),
            )
        else:
            db.execute(
                "INSERT INTO video_room_participants (room_id, user_id, is_host, connection_status, joined_at) "
                "VALUES (?, ?, ?, 'connected', ?)",
                (room_id, user_id, 1 if user_id == room["host_user_id"] else 0, now),
            )
        db.commit()
        return VideoRoomStoreDB.get(room_id)

    @staticmethod
    def leave(room_id: str, user_id: int, left_at: str = "",
              connection_status: str = "disconnected") -> dict:
        """Mark a participant as gone; the room ends when the host leaves or it empties."""
        room = VideoRoomStoreDB.get(room_id)
        if not room:
            raise NotFoundError("Room not found")
        db = get_db()
        cur = db.execute(
            "UPDATE video_room_participants SET left_at = ?, connection_status = ? "
            "WHERE room_id = ? AND user_id = ?",
            (left_at or utcnow(), connection_status or "disconnected", room_id, user_id),
        )
        db.commit()
        if cur.rowcount == 0:
            raise NotFoundError("You are not in this room")
        remaining = VideoRoomStoreDB.participants(room_id, connected_only=True)
        ended = False
        if room["status"] == "active" and (user_id == room["host_user_id"] or not remaining):
            VideoRoomStoreDB.end(room_id)
            ended = True
        return {"room_ended": ended, "remaining": len(remaining)}

    @staticmethod
    def end(room_id: str) -> dict:
        db = get_db()
        now = utcnow()
        db.execute(
            "UPDATE video_rooms SET status = 'ended', ended_at = ?, updated_at = ? WHERE room_id = ?",
            (now, now, room_id),
        )
        db.execute(
            "UPDATE video_room_participants SET connection_status = 'disconnected', "
            "left_at = CASE WHEN left_at = '' THEN ? ELSE left_at END WHERE room_id = ?",
            (now, room_id),
        )
        db.commit()
        logger.info("Video room %s ended", room_id)
        return VideoRoomStoreDB.get(room_id)


# ── Dashboard statistics ─────────────────────────────────────────────


class DashboardStatsDB:
    """Community-wide figures for the dashboard, cached briefly."""

    @staticmethod
    def notes_stats() -> dict:
        cache = get_cache()
        stats = cache.get(NOTES_STATS_KEY)
        if stats is None:
            db = get_db()
            row = db.execute(
                "SELECT COUNT(*) AS total_notes, COALESCE(SUM(download_count), 0) AS total_downloads, "
                "COUNT(DISTINCT subject) AS total_subjects FROM notes WHERE status = 'published'"
            ).fetchone()
            users = db.execute("SELECT COUNT(*) AS cnt FROM profiles").fetchone()["cnt"]
            stats = {**dict(row), "active_users": users}
            cache.set(NOTES_STATS_KEY, stats, ttl=60)
        return stats

    @staticmethod
    def top_contributors(limit: int = 5) -> list[dict]:
        """Score = notes*10 + likes*2 + downloads + views*0.1 over public published notes."""
        cache = get_cache()
        board = cache.get(CONTRIBUTORS_KEY)
        if board is None:
            db = get_db()
            rows = db.execute(
                "SELECT p.id, p.username, p.full_name, p.avatar_url, p.university, "
                "COUNT(n.id) AS notes_count, SUM(n.like_count) AS total_likes, "
                "SUM(n.download_count) AS total_downloads, SUM(n.view_count) AS total_views "
                "FROM notes n JOIN profiles p ON p.id = n.user_id "
                "WHERE n.visibility = 'public' AND n.status = 'published' "
                "GROUP BY p.id HAVING COUNT(n.id) >= 1"
            ).fetchall()
            board = []
            for r in rows:
                entry = dict(r)
                entry["score"] = round(
                    entry["notes_count"] * 10 + entry["total_likes"] * 2
                    + entry["total_downloads"] + entry["total_views"] * 0.1, 1
                )
                board.append(entry)
            board.sort(key=lambda e: (-e["score"], e["id"]))
            cache.set(CONTRIBUTORS_KEY, board[:50], ttl=60)
        return board[:limit]


# ── Account export ───────────────────────────────────────────────────


def export_user_data(user_id: int) -> dict:
    """Everything the user owns, for the account data download."""
    db = get_db()

    def rows(sql: str, *params) -> list[dict]:
        return [dict(r) for r in db.execute(sql, params or (user_id,)).fetchall()]

    account = db.execute("SELECT id, email, created_at FROM users WHERE id = ?", (user_id,)).fetchone()
    return {
        "exportedAt": utcnow(),
        "account": dict(account) if account else None,
        "profile": ProfileStoreDB.get(user_id),
        "notes": rows("SELECT * FROM notes WHERE user_id = ?"),
        "noteComments": rows("SELECT * FROM note_comments WHERE user_id = ?"),
        "papers": rows("SELECT * FROM papers WHERE user_id = ?"),
        "quizzes": rows("SELECT * FROM quizzes WHERE user_id = ?"),
        "quizAttempts": rows("SELECT * FROM quiz_attempts WHERE user_id = ?"),
        "pointTransactions": rows("SELECT * FROM point_transactions WHERE user_id = ?"),
        "achievements": [a for a in GamificationStoreDB(user_id).achievements() if a["unlocked"]],
        "connections": rows(
            "SELECT * FROM peer_connections WHERE requester_id = ? OR addressee_id = ?", user_id, user_id
        ),
        "purchases": rows("SELECT * FROM user_purchases WHERE user_id = ?"),
        "schedule": rows("SELECT * FROM schedule_entries WHERE user_id = ?"),
        "feedback": rows("SELECT * FROM feedback WHERE user_id = ?"),
        "sessions": rows(
            "SELECT device_type, browser, os, ip_address, last_active, created_at "
            "FROM user_sessions WHERE user_id = ?"
        ),
    }
