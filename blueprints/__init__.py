"""
Blueprint registration for StudyPair.

All blueprints are registered without URL prefixes; each declares its full
``/api/...`` paths.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.profiles import bp as profiles_bp
    from blueprints.notes import bp as notes_bp
    from blueprints.papers import bp as papers_bp
    from blueprints.quiz import bp as quiz_bp
    from blueprints.ai import bp as ai_bp
    from blueprints.gamification import bp as gamification_bp
    from blueprints.peer import bp as peer_bp
    from blueprints.notifications import bp as notifications_bp
    from blueprints.store import bp as store_bp
    from blueprints.dashboard import bp as dashboard_bp
    from blueprints.schedule import bp as schedule_bp
    from blueprints.chat import bp as chat_bp
    from blueprints.video import bp as video_bp

    app.register_blueprint(profiles_bp)
    app.register_blueprint(notes_bp)
    app.register_blueprint(papers_bp)
    app.register_blueprint(quiz_bp)
    app.register_blueprint(ai_bp)
    app.register_blueprint(gamification_bp)
    app.register_blueprint(peer_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(store_bp)
    app.register_blueprint(dashboard_bp)
    app.register_blueprint(schedule_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(video_bp)
