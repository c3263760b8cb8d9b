"""Status-change notification fan-out: persist, publish live, then push."""
from __future__ import annotations

from typing import Dict, List, Optional

from flask import current_app

from extensions import db
from models import Case, Notification, User
from utils.errors import NotFound
from utils.pubsub import Broadcaster
from utils.push import PushSender

NOTIFICATION_CHANNEL = "notificationAdded"


def format_status_label(status: str) -> str:
    """``IN_REVIEW`` -> ``In Review``."""
    return " ".join(chunk.capitalize() for chunk in (status or "").lower().split("_") if chunk)


def channel_key(user_id: str) -> str:
    return f"{NOTIFICATION_CHANNEL}:{user_id}"


def serialize_notification(notification: Notification, case: Optional[Case] = None) -> Dict:
    created_at = notification.created_at.isoformat() if notification.created_at else None
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "case_id": notification.case_id,
        "old_status": notification.old_status,
        "new_status": notification.new_status,
        "seen": notification.seen,
        "created_at": created_at,
        "case": case.summary() if case is not None else None,
    }


class NotificationFanout:
    def __init__(self, broadcaster: Broadcaster, push_sender: PushSender) -> None:
        self.broadcaster = broadcaster
        self.push_sender = push_sender

    def on_status_changed(self, case: Case, old_status: Optional[str], new_status: str) -> Optional[Dict]:
        if not case.owner_id:
            return None

        notification = Notification(
            user_id=case.owner_id,
            case_id=case.id,
            old_status=old_status,
            new_status=new_status,
            seen=False,
        )
        db.session.add(notification)
        db.session.commit()

        payload = serialize_notification(notification, case)
        try:
            delivered = self.broadcaster.publish(channel_key(case.owner_id), payload)
        except Exception:
            current_app.logger.exception("Notification publish failed", extra={"case_id": case.id})
            delivered = 0
        current_app.logger.info(
            "Case status notification created",
            extra={"case_id": case.id, "new_status": new_status, "live_subscribers": delivered},
        )

        self._deliver_push(case, new_status)
        return payload

    def _deliver_push(self, case: Case, new_status: str) -> None:
        user = db.session.get(User, case.owner_id)
        if not user or not user.fcm_token:
            current_app.logger.warning("FCM token not available for user", extra={"user_id": case.owner_id})
            return

        case_label = case.product or case.description or case.store or case.id or "Case"
        body = f"{case_label} is now {format_status_label(new_status)}."
        try:
            self.push_sender.send(
                user.fcm_token,
                "Case status updated",
                body,
                data={"case_id": case.id, "status": new_status},
            )
        except Exception:
            # Push is best effort.
            current_app.logger.exception(
                "Failed to send FCM notification",
                extra={"case_id": case.id, "user_id": case.owner_id},
            )


def list_unseen_notifications(user_id: str, limit: int = 25) -> List[Dict]:
    notifications = (
        Notification.query.filter_by(user_id=user_id, seen=False)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
        .all()
    )
    return [serialize_notification(n, n.case) for n in notifications]


def mark_seen(notification_id: str, user_id: str) -> Notification:
    notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
    if not notification:
        raise NotFound("Notification not found or access denied.")
    if not notification.seen:
        notification.seen = True
        db.session.commit()
    return notification
