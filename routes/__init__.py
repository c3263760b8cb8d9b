"""Blueprint registration, health check, and stored upload serving."""
from flask import Blueprint, jsonify, send_file
from sqlalchemy import text

from extensions import db
from utils.engine import get_engine
from utils.errors import NotFound
from .admin import admin_bp
from .cases import cases_bp
from .notifications import notifications_bp

main_bp = Blueprint("main", __name__)


@main_bp.route("/healthz", methods=["GET"])
def healthz():
    db.session.execute(text("SELECT 1"))
    return jsonify({"status": "ok"})


@main_bp.route("/uploads/<path:key>", methods=["GET"])
def serve_upload(key):
    resolve_path = getattr(get_engine().storage, "resolve_path", None)
    path = resolve_path(key) if resolve_path else None
    if not path:
        raise NotFound("File not found")
    return send_file(path, conditional=True)


__all__ = ["main_bp", "cases_bp", "notifications_bp", "admin_bp"]
