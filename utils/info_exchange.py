"""The "we need more information" request/response sub-workflow."""
from __future__ import annotations

from typing import Dict, List, Optional

from flask import current_app

from extensions import db
from models import Case, InfoRequest, InfoResponse, generate_uuid, utcnow
from utils.errors import InvalidRequestId, NoPendingRequest, RecipientUnresolved, ValidationFailed
from utils.gmail_client import MailTransport
from utils.mail_headers import ensure_case_token
from utils.storage import ObjectStorage, UploadedFile

INFO_REQUEST_SUBJECT = "Need more information for your case"
INFO_REQUEST_NOTE = "Requested more info"
INFO_RESPONSE_NOTE = "user responded"


class InfoExchangeTracker:
    def __init__(self, transport: MailTransport, storage: ObjectStorage, status_machine) -> None:
        self.transport = transport
        self.storage = storage
        self.status_machine = status_machine

    def request_info(
        self,
        case: Case,
        message: str,
        *,
        requires_file: bool = False,
        requires_yes_no: bool = False,
        actor: str,
    ) -> InfoRequest:
        message = (message or "").strip()
        if not message:
            raise ValidationFailed("message required")
        if not case.owner_email:
            raise RecipientUnresolved("Case has no owner email")

        subject = ensure_case_token(INFO_REQUEST_SUBJECT, case.id)
        # The mail goes out first; a failed send leaves the case untouched.
        sent = self.transport.send(to=case.owner_email, subject=subject, body=message)

        for pending in case.pending_info_requests():
            pending.status = "SUPERSEDED"
        request = case.append_info_request(
            InfoRequest(
                id=generate_uuid(),
                message=message,
                requires_file=bool(requires_file),
                requires_yes_no=bool(requires_yes_no),
                requested_at=utcnow(),
                requested_by=actor,
                status="PENDING",
            )
        )
        # Owner-facing mail is logged but its thread stays separate from the shop thread.
        case.append_email(
            subject=subject,
            body=message,
            to_address=case.owner_email,
            from_address=self.transport.mailbox_address or "me",
            sent_at=utcnow(),
            direction="OUTBOUND",
            thread_id=sent.thread_id,
            message_id=sent.message_id,
        )
        db.session.flush()
        current_app.logger.info(
            "Info request issued",
            extra={"case_id": case.id, "request_id": request.id, "requires_file": request.requires_file},
        )
        self.status_machine.transition(case, "NEED_INFO", actor, INFO_REQUEST_NOTE)
        return request

    def _resolve_request(self, case: Case, request_id: Optional[str]) -> InfoRequest:
        if request_id:
            request = case.find_info_request(request_id)
            if not request:
                raise InvalidRequestId()
            return request
        pending = case.pending_info_requests()
        if not pending:
            raise NoPendingRequest()
        return max(pending, key=lambda r: (r.requested_at, r.seq or 0))

    def submit_response(
        self,
        case: Case,
        *,
        request_id: Optional[str] = None,
        answer: Optional[str] = None,
        upload: Optional[UploadedFile] = None,
        actor: str,
    ) -> InfoResponse:
        request = self._resolve_request(case, request_id)
        answer = (answer or "").strip() or None

        response_id = generate_uuid()
        file_url = file_name = file_type = None
        if upload is not None:
            stored = self.storage.put(
                upload.content,
                upload.filename,
                upload.content_type,
                folder=f"{case.owner_id}/info-responses/{response_id}",
            )
            file_url, file_name, file_type = stored.url, upload.filename, upload.content_type

        response = case.append_info_response(
            InfoResponse(
                id=response_id,
                request_id=request.id,
                answer=answer,
                file_url=file_url,
                file_name=file_name,
                file_type=file_type,
                submitted_at=utcnow(),
                submitted_by=actor,
            )
        )
        if request.status == "PENDING":
            request.status = "ANSWERED"
        db.session.flush()
        current_app.logger.info(
            "Info response submitted",
            extra={"case_id": case.id, "request_id": request.id, "has_file": bool(file_url)},
        )
        self.status_machine.transition(case, "IN_REVIEW", actor, INFO_RESPONSE_NOTE)
        return response


def list_pending_info_requests(case: Case) -> List[Dict]:
    answered_ids = {r.request_id for r in case.info_responses}
    pending = []
    for request in case.pending_info_requests():
        payload = request.to_dict()
        payload["has_response"] = request.id in answered_ids
        pending.append(payload)
    return pending
