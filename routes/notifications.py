"""Owner notifications: unseen list, mark-seen, live stream, device registration."""
import json

from flask import Blueprint, Response, current_app, jsonify
from flask_login import current_user

from extensions import csrf
from utils.case_service import register_device_token
from utils.decorators import owner_required
from utils.engine import get_engine
from utils.notifications import channel_key, list_unseen_notifications, mark_seen, serialize_notification
from .cases import json_body

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api")
csrf.exempt(notifications_bp)


def _event_stream(subscription, keepalive_seconds: float):
    try:
        yield ": connected\n\n"
        while True:
            payload = subscription.get(timeout=keepalive_seconds)
            if payload is None:
                yield ": keepalive\n\n"
                continue
            yield f"event: notificationAdded\ndata: {json.dumps(payload)}\n\n"
    finally:
        subscription.close()


@notifications_bp.route("/notifications", methods=["GET"])
@owner_required
def unseen_notifications():
    limit = int(current_app.config.get("NOTIFICATION_PAGE_SIZE", 25))
    return jsonify({"items": list_unseen_notifications(current_user.id, limit=limit)})


@notifications_bp.route("/notifications/<string:notification_id>/seen", methods=["POST"])
@owner_required
def mark_notification_seen(notification_id):
    notification = mark_seen(notification_id, current_user.id)
    return jsonify(serialize_notification(notification, notification.case))


@notifications_bp.route("/notifications/stream", methods=["GET"])
@owner_required
def notification_stream():
    subscription = get_engine().broadcaster.subscribe(channel_key(current_user.id))
    keepalive = float(current_app.config.get("SSE_KEEPALIVE_SECONDS", 25))
    current_app.logger.info("Notification stream opened", extra={"user_id": current_user.id})
    response = Response(_event_stream(subscription, keepalive), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    response.call_on_close(subscription.close)
    return response


@notifications_bp.route("/devices", methods=["POST"])
@owner_required
def register_device():
    payload = json_body()
    register_device_token(current_user, payload.get("token"))
    return jsonify({"ok": True})
