"""
Lean Future-State Studio
Flask Application Factory.

Usage:
    from leanflow import create_app
    app = create_app()           # defaults to APP_ENV, else "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from leanflow.auth import init_auth
from leanflow.config import config
from leanflow.middleware.logging_config import configure_logging
from leanflow.middleware.rate_limiter import init_rate_limits
from leanflow.middleware.timing import init_request_timing
from leanflow.models import db
from leanflow.utils.errors import E, api_error

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
    default_limits=[],                     # limits are applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to the APP_ENV env var, or "development".
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
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

    init_auth(app)
    init_request_timing(app)

    # ── Import all models so create_all / Alembic see them ───────────────
    from leanflow.models import ai as _ai_models                    # noqa: F401
    from leanflow.models import future_state as _future_state_models  # noqa: F401
    from leanflow.models import information_flow as _flow_models    # noqa: F401
    from leanflow.models import insight as _insight_models          # noqa: F401
    from leanflow.models import process as _process_models          # noqa: F401
    from leanflow.models import sequencing as _sequencing_models    # noqa: F401
    from leanflow.models import solution as _solution_models        # noqa: F401

    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from leanflow.blueprints.agent_bp import agent_bp
    from leanflow.blueprints.flow_bp import flow_bp
    from leanflow.blueprints.future_state_bp import future_state_bp
    from leanflow.blueprints.health_bp import health_bp
    from leanflow.blueprints.insight_bp import insight_bp
    from leanflow.blueprints.sequencing_bp import sequencing_bp
    from leanflow.blueprints.solution_bp import solution_bp

    app.register_blueprint(agent_bp)
    app.register_blueprint(future_state_bp)
    app.register_blueprint(sequencing_bp)
    app.register_blueprint(insight_bp)
    app.register_blueprint(solution_bp)
    app.register_blueprint(flow_bp)
    app.register_blueprint(health_bp)

    # ── App-level error handlers (outside any blueprint) ─────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"retry_after": e.description})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
