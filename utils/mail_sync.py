"""Batch passes over the shared mailbox that keep cases in step with their mail."""
from __future__ import annotations

from typing import Any, Dict

from flask import current_app

from extensions import db
from models import Case
from utils.errors import TransportFailure
from utils.gmail_client import MailTransport
from utils.mail_headers import MailHeaderError, parse_message

MAX_BATCH = 500


class MailSyncBatchJob:
    def __init__(self, transport: MailTransport, correlator, batch_limit: int = MAX_BATCH) -> None:
        self.transport = transport
        self.correlator = correlator
        self.batch_limit = max(1, min(int(batch_limit or MAX_BATCH), MAX_BATCH))

    def sync_recent(self, window_days: int = 7) -> Dict[str, int]:
        """Match recent mailbox messages to cases. One bad message never aborts the run."""
        query = f"newer_than:{int(window_days)}d"
        stubs = self.transport.list_messages(query, limit=self.batch_limit)[: self.batch_limit]
        result = {"scanned": len(stubs), "matched": 0, "updated": 0, "errors": 0}

        for stub in stubs:
            message_id = stub.get("id") if isinstance(stub, dict) else None
            try:
                parsed = parse_message(self.transport.get_message(message_id))
                case = self.correlator.match_case(parsed)
                if not case:
                    continue
                result["matched"] += 1
                if self.correlator.record_inbound(case, parsed):
                    result["updated"] += 1
            except MailHeaderError as exc:
                result["errors"] += 1
                current_app.logger.warning(
                    "Mail sync skipped message with unusable headers",
                    extra={"message_id": message_id, "error": str(exc)},
                )
            except TransportFailure as exc:
                result["errors"] += 1
                current_app.logger.warning(
                    "Mail sync could not fetch message",
                    extra={"message_id": message_id, "error": str(exc)},
                )
            except Exception:
                result["errors"] += 1
                current_app.logger.exception("Mail sync failed for message", extra={"message_id": message_id})
                db.session.rollback()

        current_app.logger.info("Mail sync completed", extra=dict(result, query=query))
        return result

    def check_replies(self) -> Dict[str, Any]:
        """Advance cases whose thread has a new incoming reply."""
        cases = (
            Case.query.filter(Case.thread_id.isnot(None))
            .order_by(Case.updated_at.desc())
            .limit(self.batch_limit)
            .all()
        )
        result: Dict[str, Any] = {"scanned": len(cases), "matched": 0, "updated": 0, "errors": 0, "details": []}

        for case in cases:
            try:
                detail = self.correlator.check_thread_for_reply(case)
            except Exception:
                result["errors"] += 1
                current_app.logger.exception(
                    "Reply check failed for case", extra={"case_id": case.id, "thread_id": case.thread_id}
                )
                db.session.rollback()
                continue
            if detail["updated"]:
                result["matched"] += 1
                result["updated"] += 1
            result["details"].append(detail)

        current_app.logger.info(
            "Reply check completed",
            extra={k: result[k] for k in ("scanned", "matched", "updated", "errors")},
        )
        return result


def run_mail_sync_cycle(app) -> Dict[str, int]:
    with app.app_context():
        window = int(current_app.config.get("MAIL_SYNC_WINDOW_DAYS", 7))
        return app.extensions["case_engine"].mail_sync.sync_recent(window)


def run_reply_check_cycle(app) -> Dict[str, Any]:
    with app.app_context():
        return app.extensions["case_engine"].mail_sync.check_replies()
