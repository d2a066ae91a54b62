# backend/retailpos/__init__.py
from __future__ import annotations

import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config["LOG_LEVEL"]).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.pos import pos_bp
    from .routes.promotions import promotions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(pos_bp)
    app.register_blueprint(promotions_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
