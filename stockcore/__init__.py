# stockcore/__init__.py
import logging

from flask import Flask, jsonify

from .config import Config
from .errors import LedgerError
from .extensions import db, migrate


def create_app(test_config=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app binds the engine
    if test_config:
        app.config.from_mapping(test_config)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.inventory import inventory_bp
    from .routes.orders import orders_bp
    from .routes.bundles import bundles_bp
    from .routes.events import events_bp

    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(bundles_bp)
    app.register_blueprint(events_bp)

    @app.errorhandler(LedgerError)
    def handle_ledger_error(e):
        return jsonify(e.to_dict()), e.http_status

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
