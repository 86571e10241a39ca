"""
Audit logging: records security-relevant events.

Events are written to both the audit_log table and structured logging.
"""

from __future__ import annotations

import logging
import sqlite3

from flask import has_request_context, request

from database import get_db
from helpers import client_ip, utcnow

logger = logging.getLogger(__name__)


def log_event(action: str, user_id: int | None = None, detail: str = "") -> None:
    """Insert an audit log entry and emit a structured log line."""
    ip = client_ip() if has_request_context() else ""
    ua = request.headers.get("User-Agent", "") if has_request_context() else ""

    try:
        db = get_db()
        db.execute(
            "INSERT INTO audit_log (user_id, action, detail, ip_address, user_agent, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (user_id, action, detail, ip, ua, utcnow()),
        )
        db.commit()
    except sqlite3.Error:
        logger.exception("Could not write audit entry %s for user %s", action, user_id)

    logger.info("audit: %s user_id=%s detail=%s ip=%s", action, user_id, detail, ip)
