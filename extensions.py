"""
Shared extension singletons: rate limiter and Socket.IO server.

Created unbound here and attached to the app in create_app() so that
blueprints and realtime handlers can import them without circular imports.
"""

from __future__ import annotations

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_socketio import SocketIO

limiter = Limiter(key_func=get_remote_address, default_limits=["300 per hour"])

socketio = SocketIO()
