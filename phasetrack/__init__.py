"""
PhaseTrack
Flask Application Factory.

Usage:
    from phasetrack import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from phasetrack.config import config
from phasetrack.middleware.jwt_auth import init_jwt_middleware
from phasetrack.middleware.logging_config import configure_logging
from phasetrack.middleware.rate_limiter import init_rate_limits
from phasetrack.middleware.timing import init_request_timing
from phasetrack.models import db
from phasetrack.services.realtime import init_realtime
from phasetrack.utils.errors import register_error_handlers

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
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())
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

    # ── Real-time publisher (Redis pub/sub or in-memory recorder) ────────
    init_realtime(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware (sets g.current_user) ────────────────────────
    init_jwt_middleware(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from phasetrack.models import auth as _auth_models          # noqa: F401
    from phasetrack.models import project as _project_models    # noqa: F401
    from phasetrack.models import phase as _phase_models        # noqa: F401
    from phasetrack.models import work_log as _work_log_models  # noqa: F401
    from phasetrack.models import audit as _audit_models        # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from phasetrack.blueprints.activity_bp import activity_bp
    from phasetrack.blueprints.auth_bp import auth_bp
    from phasetrack.blueprints.health_bp import health_bp
    from phasetrack.blueprints.phase_bp import phase_bp
    from phasetrack.blueprints.profile_bp import profile_bp
    from phasetrack.blueprints.progress_bp import progress_bp
    from phasetrack.blueprints.project_bp import project_bp
    from phasetrack.blueprints.user_bp import user_bp
    from phasetrack.blueprints.work_log_bp import work_log_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(profile_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(phase_bp)
    app.register_blueprint(work_log_bp)
    app.register_blueprint(progress_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(health_bp)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-predefined-phases")
    def seed_predefined_phases_cmd():
        """Seed the standard phase catalogue (idempotent)."""
        from phasetrack.models.phase import seed_predefined_phases
        count = seed_predefined_phases()
        db.session.commit()
        logger.info("Seeded %s new predefined phases.", count)
        click.echo(f"Seeded {count} new predefined phases.")

    @app.cli.command("create-super-admin")
    @click.option("--email", prompt=True)
    @click.option("--name", prompt=True)
    @click.password_option()
    def create_super_admin_cmd(email, name, password):
        """Create the first super-admin supervisor account."""
        from phasetrack.services.user_service import create_super_admin
        user = create_super_admin(email, name, password)
        click.echo(f"Created super admin {user.email} (id={user.id})")

    return app
