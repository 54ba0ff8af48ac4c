# backend/storefront/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app reads SQLALCHEMY_DATABASE_URI
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.checkout import checkout_bp
    from .routes.vouchers import vouchers_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(vouchers_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
