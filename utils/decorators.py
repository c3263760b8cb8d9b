"""Authorization decorators for owner and admin endpoints."""
from functools import wraps

from flask import current_app, g, request
from flask_login import current_user

from utils.errors import CaseEngineError, Unauthorized
from utils.security import verify_admin_credential


def owner_required(view_func):
    """JSON flavour of ``login_required``: identity comes from the bearer token request loader."""

    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if not current_user.is_authenticated:
            raise Unauthorized()
        return view_func(*args, **kwargs)

    return wrapped


def admin_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        try:
            g.admin_email = verify_admin_credential()
        except CaseEngineError as exc:
            current_app.logger.warning(
                "Admin access denied",
                extra={"path": request.path, "status": exc.status_code, "remote_addr": request.remote_addr},
            )
            raise
        return view_func(*args, **kwargs)

    return wrapped
