# backend/fulfillment/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def format_money(cents) -> str:
    """Integer minor units -> "$1,234.56" for printable receipts."""
    if cents is None:
        return "-"
    sign = "-" if cents < 0 else ""
    whole, fraction = divmod(abs(int(cents)), 100)
    return f"{sign}${whole:,}.{fraction:02d}"


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services import events, order_service
    events.init_app(app)
    order_service.register_packaging_listener()

    app.add_template_filter(format_money, "money")

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.orders import orders_bp
    from .routes.packaging import packaging_bp
    from .routes.logistics import logistics_bp
    from .routes.wallet import wallet_bp
    from .routes.messenger import messenger_bp
    from .routes.cartera import cartera_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(packaging_bp)
    app.register_blueprint(logistics_bp)
    app.register_blueprint(wallet_bp)
    app.register_blueprint(messenger_bp)
    app.register_blueprint(cartera_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
