"""
Action Log Tracker
Flask application factory.

Usage:
    from actionlog import create_app
    app = create_app()           # APP_ENV, defaulting to "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from actionlog.config import config
from actionlog.models import db
from actionlog.middleware.jwt_auth import init_jwt_middleware
from actionlog.middleware.logging_config import configure_logging
from actionlog.middleware.rate_limiter import init_rate_limits
from actionlog.middleware.security_headers import init_security_headers
from actionlog.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: "development", "testing" or "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_obj = config[config_name]
    # ProductionConfig validates the environment when instantiated
    app.config.from_object(config_obj() if config_name == "production" else config_obj)

    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Middleware ───────────────────────────────────────────────────────
    init_security_headers(app)
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Models (registered on db.metadata for create_all / Alembic) ─────
    from actionlog.models import action_log as _action_log_models      # noqa: F401
    from actionlog.models import auth as _auth_models                  # noqa: F401
    from actionlog.models import delegation as _delegation_models      # noqa: F401
    from actionlog.models import notification as _notification_models  # noqa: F401

    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and \
            ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        try:
            db.create_all()
        except Exception as exc:
            app.logger.warning("db.create_all() failed: %s", exc)

    # ── Blueprints ───────────────────────────────────────────────────────
    from actionlog.blueprints.action_log_bp import action_log_bp
    from actionlog.blueprints.auth_bp import auth_bp
    from actionlog.blueprints.delegation_bp import delegation_bp
    from actionlog.blueprints.department_bp import department_bp
    from actionlog.blueprints.health_bp import health_bp
    from actionlog.blueprints.user_bp import user_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(action_log_bp)
    app.register_blueprint(delegation_bp)
    app.register_blueprint(delegation_bp, url_prefix="/api/v1/delegations", name="delegation_alias")
    app.register_blueprint(department_bp)
    app.register_blueprint(user_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-roles")
    def seed_roles_cmd():
        """Create the built-in roles with their default capability flags."""
        from actionlog.services.user_service import seed_roles
        count = seed_roles()
        click.echo(f"Seeded {count} new roles.")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_METHOD_NOT_ALLOWED"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large", "code": "ERR_TOO_LARGE"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED",
                "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    init_rate_limits(app, limiter)

    return app
