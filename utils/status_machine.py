"""Case status transitions with an append-only audit trail."""
from __future__ import annotations

from typing import Optional

from flask import current_app

from extensions import db
from models import CASE_STATUSES, Case, utcnow
from utils.errors import InvalidStatus, NotFound


class StatusMachine:
    """Permissive state machine: any known status may follow any other.

    A transition appends one history entry, persists it together with whatever
    else the caller staged on the session, and only then fans out.
    """

    def __init__(self, fanout) -> None:
        self.fanout = fanout

    @staticmethod
    def validate(new_status: Optional[str]) -> str:
        status = (new_status or "").strip().upper()
        if status not in CASE_STATUSES:
            raise InvalidStatus()
        return status

    @staticmethod
    def load_case(case_id: str, owner_id: Optional[str] = None) -> Case:
        """Fetch a case; when ``owner_id`` is given a case owned by someone else is not found."""
        case = db.session.get(Case, case_id) if case_id else None
        if not case or (owner_id is not None and case.owner_id != owner_id):
            raise NotFound("Case not found")
        return case

    def transition(self, case: Case, new_status: str, actor: str, note: Optional[str] = None) -> Case:
        status = self.validate(new_status)
        if status == case.status:
            # Still persist whatever the caller staged (an appended email, a response).
            db.session.commit()
            return case

        old_status = case.status
        now = utcnow()
        if case.status_history:
            last_at = case.status_history[-1].at
            if last_at and last_at > now:
                now = last_at

        case.status = status
        case.append_status_entry(status, actor, now, note)
        db.session.commit()

        current_app.logger.info(
            "Case status changed",
            extra={"case_id": case.id, "old_status": old_status, "new_status": status, "actor": actor},
        )
        self.fanout.on_status_changed(case, old_status, status)
        return case

    def transition_by_id(
        self,
        case_id: str,
        new_status: str,
        actor: str,
        note: Optional[str] = None,
        *,
        owner_id: Optional[str] = None,
    ) -> Case:
        status = self.validate(new_status)
        case = self.load_case(case_id, owner_id=owner_id)
        return self.transition(case, status, actor, note)
