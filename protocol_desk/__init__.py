"""
Protocol Desk
Flask Application Factory.

Usage:
    from protocol_desk import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os
from pathlib import Path

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from protocol_desk.config import config
from protocol_desk.core.exceptions import PersistenceError, ValidationError
from protocol_desk.identity import init_identity
from protocol_desk.models import db
from protocol_desk.middleware.logging_config import configure_logging
from protocol_desk.middleware.timing import init_request_timing
from protocol_desk.middleware.diagnostics import run_startup_diagnostics
from protocol_desk.middleware.security_headers import init_security_headers
from protocol_desk.middleware.rate_limiter import init_rate_limits
from protocol_desk.services.protocol_store import init_protocol_store

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


def create_app(config_name=None, backend=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        backend:     Optional persistence backend overriding PROTOCOL_BACKEND.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
             supports_credentials=True)
    else:
        CORS(app)

    # ── Acting user, security headers, request timing ────────────────────
    init_identity(app)
    init_security_headers(app)
    init_request_timing(app)

    # ── Import models so Alembic can detect them ─────────────────────────
    from protocol_desk.models import document as _document_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if (app.config.get("PROTOCOL_BACKEND") or "").lower() == "sql":
        with app.app_context():
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Protocol store ───────────────────────────────────────────────────
    init_protocol_store(app, backend)

    # ── Blueprints ───────────────────────────────────────────────────────
    from protocol_desk.blueprints.protocol_bp import protocol_bp
    from protocol_desk.blueprints.export_bp import export_bp
    from protocol_desk.blueprints.session_bp import session_bp
    from protocol_desk.blueprints.health_bp import health_bp

    app.register_blueprint(protocol_bp)
    app.register_blueprint(export_bp)
    app.register_blueprint(session_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("export-protocols")
    @click.option("--output", "-o", "output", required=True,
                  type=click.Path(dir_okay=False, writable=True),
                  help="File to write the report to.")
    @click.option("--format", "fmt", type=click.Choice(["excel", "csv"]), default="excel",
                  show_default=True)
    @click.option("--status", default=None, help="Only protocols in this status.")
    @click.option("--search", default=None, help="Match code, customer email or subject.")
    @click.option("--actor", default=None, help="Name written as 'Generated by'.")
    def export_protocols_cmd(output, fmt, status, search, actor):
        """Write the protocol report to a file."""
        from protocol_desk.services.export_service import (
            generate_protocols_csv,
            generate_protocols_excel,
        )
        from protocol_desk.services.protocol_store import get_store

        store = get_store()
        try:
            store.reload()
            protocols = store.list(status=status, search_text=search)
        except ValidationError as exc:
            raise click.BadParameter(str(exc), param_hint="--status") from exc
        except PersistenceError as exc:
            raise click.ClickException(str(exc)) from exc
        path = Path(output)
        if fmt == "csv":
            path.write_text(generate_protocols_csv(protocols), encoding="utf-8")
        else:
            path.write_bytes(generate_protocols_excel(protocols, generated_by=actor))
        logger.info("Exported %d protocols to %s", len(protocols), path)
        click.echo(f"Exported {len(protocols)} protocols to {path}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def payload_too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    # ── Startup diagnostics ──────────────────────────────────────────────
    run_startup_diagnostics(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
