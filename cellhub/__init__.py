"""
CellHub: cell multiplication and readiness workflow engine.
Flask Application Factory.

Usage:
    from cellhub import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from cellhub.config import config
from cellhub.middleware.logging_config import configure_logging
from cellhub.middleware.rate_limiter import init_rate_limits
from cellhub.middleware.timing import init_request_timing
from cellhub.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],  # applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    cfg = config[config_name]
    app.config.from_object(cfg() if config_name == "production" else cfg)

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

    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from cellhub.models import cell as _cell_models                     # noqa: F401
    from cellhub.models import multiplication as _multiplication_models  # noqa: F401
    from cellhub.models import organization as _organization_models      # noqa: F401

    if config_name != "production":
        os.makedirs(app.instance_path, exist_ok=True)

    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed")

    # ── Blueprints ───────────────────────────────────────────────────────
    from cellhub.blueprints.health_bp import health_bp
    from cellhub.blueprints.multiplication_bp import multiplication_bp
    from cellhub.blueprints.readiness_bp import readiness_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(multiplication_bp)
    app.register_blueprint(readiness_bp)

    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "CellHub"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(415)
    def unsupported_media(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("evaluate-readiness")
    def evaluate_readiness_cmd():
        """Re-evaluate readiness for every active cell of every organization."""
        from sqlalchemy import select

        from cellhub.models.organization import Organization
        from cellhub.services.readiness_service import evaluate_readiness_batch

        for org_id in db.session.execute(select(Organization.id).order_by(Organization.id)).scalars().all():
            result = evaluate_readiness_batch(org_id)
            logger.info(
                "Readiness evaluated: org=%s updated=%s/%s",
                org_id, result["cells_updated"], result["cells_total"],
            )

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
