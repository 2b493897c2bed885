# backend/nursery/__init__.py
import logging
import time

from flask import Flask, request, g, jsonify

from .config import Config
from .extensions import db, init_extensions


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    init_extensions(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.users import users_bp
    from .routes.products import products_bp
    from .routes.reviews import reviews_bp
    from .routes.content import content_bp
    from .routes.cart import cart_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.webhooks import webhooks_bp
    from .routes.admin_inventory import admin_inventory_bp
    from .routes.admin_orders import admin_orders_bp
    from .routes.admin_support import admin_support_bp
    from .routes.admin_content import admin_content_bp
    from .routes.superadmin import superadmin_bp, admin_accounts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(reviews_bp)
    app.register_blueprint(content_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(admin_inventory_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(admin_support_bp)
    app.register_blueprint(admin_content_bp)
    app.register_blueprint(superadmin_bp)
    app.register_blueprint(admin_accounts_bp)

    @app.before_request
    def start_timer():
        g.request_started_at = time.perf_counter()

    @app.after_request
    def log_request(response):
        started = g.get("request_started_at")
        duration_ms = (time.perf_counter() - started) * 1000 if started else 0.0
        app.logger.info(
            "%s %s -> %s (%.1f ms)",
            request.method, request.path, response.status_code, duration_ms,
        )
        return response

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
            response.headers["Access-Control-Allow-Credentials"] = "true"
        return response

    if app.config.get("NOTIFICATIONS_INLINE_DISPATCH"):
        from .services import notification_service

        @app.teardown_request
        def dispatch_notifications(exc):
            # Runs after the response is built; delivery errors never reach the client.
            if exc is not None:
                return
            try:
                notification_service.dispatch_pending(limit=20)
            except Exception:
                app.logger.exception("Inline notification dispatch failed")
                db.session.rollback()

    @app.errorhandler(404)
    def not_found(_exc):
        return jsonify({"success": False, "message": "Resource not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(_exc):
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(_exc):
        db.session.rollback()
        return jsonify({"success": False, "message": "Internal server error"}), 500

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
