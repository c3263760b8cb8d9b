"""Flask application factory for the complaint case service."""
import json
import os
from typing import Optional

import click
from flask import Flask, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv

from extensions import csrf, db, migrate, login_manager
from utils.engine import init_engine
from utils.errors import CaseEngineError
from utils.logger import init_logging
from utils.mail_sync import run_mail_sync_cycle, run_reply_check_cycle
from utils.security import apply_cors_headers, apply_security_headers, bearer_token, verify_owner_token


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CaseEngineError)
    def case_engine_error(error):
        if error.status_code >= 500:
            app.logger.error(
                "Case engine failure",
                extra={"path": request.path, "method": request.method, "error": error.message},
            )
        else:
            app.logger.warning(
                "Request rejected",
                extra={"path": request.path, "status": error.status_code, "error": error.message},
            )
        db.session.rollback()
        return jsonify({"error": error.message}), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        if error.code == 404:
            app.logger.warning("404 Not Found", extra={"path": request.path, "method": request.method})
        return jsonify({"error": error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error", extra={"path": request.path, "method": request.method})
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        # For SQLite just make sure the parent directory exists.
        if url.database:
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # Startup fails loudly on first query instead.
            pass
        finally:
            engine.dispose()


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    app.config.from_pyfile("config.py", silent=True)
    os.makedirs(app.instance_path, exist_ok=True)
    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    logger = init_logging(app)
    app.logger = logger

    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    @login_manager.request_loader
    def load_user_from_request(req):
        from models import User  # Local import to avoid circular dependency

        identity = verify_owner_token(bearer_token(req.headers.get("Authorization", "")))
        if not identity:
            return None
        return User.get_or_create(identity["subject_id"], identity["email"])

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Unauthorized"}), 401

    init_engine(app)

    from routes import admin_bp, cases_bp, main_bp, notifications_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(cases_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_bp)

    @app.cli.command("mail-sync")
    def mail_sync_command():
        """Match recent mailbox messages to cases (schedule this via cron)."""
        click.echo(json.dumps(run_mail_sync_cycle(app)))

    @app.cli.command("replies-check")
    def replies_check_command():
        """Move cases with new shop replies into review (schedule this via cron)."""
        result = run_reply_check_cycle(app)
        click.echo(json.dumps({k: result[k] for k in ("scanned", "matched", "updated", "errors")}))

    register_error_handlers(app)

    @app.before_request
    def _preflight():
        if request.method == "OPTIONS":
            return "", 204
        return None

    @app.after_request
    def _after_request(response):
        response = apply_cors_headers(response, app.config.get("CORS_ORIGINS", "*"))
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    # Ensure tables exist so first run creates the database structure automatically.
    with app.app_context():
        import models  # noqa: F401  Register models before create_all

        db.create_all()

    return app


# Expose the Flask application for WSGI servers (e.g., gunicorn app:app).
app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, use_reloader=False, threaded=True)
