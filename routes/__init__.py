"""Flask blueprints."""

from __future__ import annotations

from flask import Flask


def register_blueprints(app: Flask) -> None:
    """Register all route blueprints on the app."""
    from routes.gallery import gallery_bp

    app.register_blueprint(gallery_bp)
