# backend/bizdesk/__init__.py
import traceback

from flask import Flask, current_app, jsonify, request
from werkzeug.exceptions import HTTPException, NotFound

from .config import Config
from .extensions import db, migrate


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFound)
    def handle_not_found(e):
        return jsonify({"message": f"Not found - {request.path}"}), 404

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({"message": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        body = {"message": "Internal server error"}
        if current_app.config.get("EXPOSE_ERROR_DETAILS"):
            body["message"] = str(e) or body["message"]
            body["stack"] = traceback.format_exc()
        return jsonify(body), 500


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

    # Register blueprints
    from .routes.system import system_bp
    from .routes.users import users_bp
    from .routes.products import products_bp
    from .routes.clients import clients_bp
    from .routes.sales import sales_bp
    from .routes.employees import employees_bp
    from .routes.expenses import expenses_bp
    from .routes.bank import bank_bp
    from .routes.search import search_bp
    from .routes.notifications import notifications_bp
    from .routes.exports import exports_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(clients_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(employees_bp)
    app.register_blueprint(expenses_bp)
    app.register_blueprint(bank_bp)
    app.register_blueprint(search_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(exports_bp)

    @app.before_request
    def answer_preflight():
        if request.method == "OPTIONS":
            return app.make_default_options_response()
        return None

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ORIGINS") or [])
        if origin and ("*" in allowed_origins or origin in allowed_origins):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    _register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
