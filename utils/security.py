"""Security helpers for headers, CORS, and bearer-token identity."""
import hmac
from typing import Optional

import jwt
from flask import current_app, request

from utils.errors import ConfigurationError, Forbidden, Unauthorized

ADMIN_TOKEN_HEADER = "X-Admin-Token"


def apply_security_headers(response, force_https: bool = False):
    """Apply security headers suitable for a JSON API."""
    response.headers.setdefault("Content-Security-Policy", "default-src 'none'; frame-ancestors 'none'")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
    if force_https or request.is_secure:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
    return response


def apply_cors_headers(response, allowed_origins: str = "*"):
    origins = [o.strip() for o in (allowed_origins or "").split(",") if o.strip()]
    origin = request.headers.get("Origin")
    if "*" in origins:
        response.headers["Access-Control-Allow-Origin"] = "*"
    elif origin and origin in origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers.add("Vary", "Origin")
    else:
        return response
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = f"Content-Type, Authorization, {ADMIN_TOKEN_HEADER}"
    return response


def bearer_token(header_value: Optional[str] = None) -> Optional[str]:
    value = header_value if header_value is not None else request.headers.get("Authorization", "")
    scheme, _, token = (value or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_owner_token(token: Optional[str]) -> Optional[dict]:
    """Return ``{"subject_id", "email"}`` for a valid owner JWT, else ``None``."""
    secret = current_app.config.get("JWT_SECRET")
    if not token or not secret:
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.PyJWTError:
        return None
    subject_id = payload.get("userId") or payload.get("sub")
    if not subject_id:
        return None
    email = payload.get("email")
    return {
        "subject_id": str(subject_id),
        "email": email.strip().lower() if isinstance(email, str) and email.strip() else None,
    }


def verify_admin_credential() -> str:
    """Check the admin credential on the current request and return the acting admin email.

    Accepts the shared admin token (header or bearer) or a JWT signed with it
    whose ``email`` is the configured admin.
    """
    admin_email = current_app.config.get("ADMIN_EMAIL")
    secret = current_app.config.get("ADMIN_SECRET_TOKEN")
    if not admin_email or not secret:
        raise ConfigurationError("Admin access is not configured")

    credential = request.headers.get(ADMIN_TOKEN_HEADER) or bearer_token()
    if not credential:
        raise Unauthorized()
    if hmac.compare_digest(credential.encode("utf-8"), secret.encode("utf-8")):
        return admin_email
    try:
        payload = jwt.decode(credential, secret, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        raise Forbidden() from exc
    if str(payload.get("email") or "").strip().lower() != admin_email:
        raise Forbidden()
    return admin_email
