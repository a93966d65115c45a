"""
Blueprint registration for the Study Rank service.

All blueprints are registered without URL prefixes to keep existing URLs stable.
"""

from __future__ import annotations


def register_blueprints(app):
    from blueprints.core import bp as core_bp
    from blueprints.rank import bp as rank_bp
    from blueprints.notifications import bp as notifications_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(rank_bp)
    app.register_blueprint(notifications_bp)
