# backend/possync/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Must land before db.init_app: engines are created at init time
        app.config.update(test_config)

    app.logger.setLevel(str(app.config.get("LOG_LEVEL", "INFO")).upper())

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Per-app session registry for real-time fan-out
    from .services.broadcast import init_broadcast
    init_broadcast(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.entities import entities_bp
    from .routes.orders import orders_bp
    from .routes.sync import sync_bp
    from .routes.ledger import ledger_bp
    from .routes.events import events_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(entities_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(sync_bp)
    app.register_blueprint(ledger_bp)
    app.register_blueprint(events_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
