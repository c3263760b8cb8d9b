"""Correlate mailbox messages with cases and derive threaded replies."""
from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests
from flask import current_app

from extensions import db
from models import Case, Store, utcnow
from utils.errors import RecipientUnresolved, TransportFailure, ValidationFailed
from utils.gmail_client import MailAttachment, MailTransport
from utils.mail_headers import (
    FALLBACK_REPLY_SUBJECT,
    MailHeaderError,
    ParsedMessage,
    ensure_case_token,
    extract_address,
    find_case_token,
    header_value,
    internal_timestamp,
    is_sent_by_mailbox,
    merge_references,
    message_headers,
    normalize_message_id,
    parse_references,
    reply_subject,
)
from utils.storage import ObjectStorage

SYSTEM_ACTOR = "system"
REPLY_RECEIVED_NOTE = "Reply received"


@dataclass
class ReplyTarget:
    to: str
    subject: str
    in_reply_to: Optional[str] = None
    references: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "to": self.to,
            "subject": self.subject,
            "in_reply_to": self.in_reply_to,
            "references": list(self.references),
        }


def _safe_headers(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    try:
        return message_headers(message)
    except MailHeaderError:
        return []


def _store_address(case: Case) -> Optional[str]:
    store = Store.find_for_case(case.store)
    if store and store.email:
        return store.email.strip().lower()
    return None


class ThreadCorrelator:
    def __init__(
        self,
        transport: MailTransport,
        status_machine,
        storage: Optional[ObjectStorage] = None,
        http_timeout: float = 15,
    ) -> None:
        self.transport = transport
        self.status_machine = status_machine
        self.storage = storage
        self.http_timeout = http_timeout

    @property
    def mailbox_address(self) -> str:
        return (getattr(self.transport, "mailbox_address", "") or "").strip().lower()

    # Inbound correlation

    def match_case(self, parsed: ParsedMessage) -> Optional[Case]:
        """Subject token first, then the sender's address against the owner email."""
        token = find_case_token(parsed.subject)
        if token:
            case = db.session.get(Case, token)
            if case:
                return case
        if not parsed.from_address:
            return None
        return (
            Case.query.filter_by(owner_email=parsed.from_address.lower())
            .order_by(Case.created_at.desc())
            .first()
        )

    def advance_on_reply(self, case: Case, message_id: Optional[str], received_at: Optional[datetime]) -> bool:
        """Move the dedup markers forward when this reply is newer and not already seen.

        Nothing is committed here; the caller persists the markers together with
        the status change.
        """
        if received_at is None:
            return False
        if case.last_email_reply_at is not None and received_at <= case.last_email_reply_at:
            return False
        if message_id and case.last_email_message_id == message_id:
            return False
        case.last_email_reply_at = received_at
        if message_id:
            case.last_email_message_id = message_id
        return True

    def record_inbound(self, case: Case, parsed: ParsedMessage) -> bool:
        """Log a mailbox message on its case; returns True when the case advanced to IN_REVIEW."""
        outgoing = "SENT" in parsed.label_ids or (
            bool(self.mailbox_address) and parsed.from_address == self.mailbox_address
        )
        if not case.has_logged_message(parsed.id):
            case.append_email(
                subject=parsed.subject,
                body="",
                to_address=parsed.to_address,
                from_address=parsed.from_address,
                sent_at=parsed.date or utcnow(),
                direction="OUTBOUND" if outgoing else "INBOUND",
                thread_id=parsed.thread_id,
                message_id=parsed.id,
            )
        if case.adopt_thread(parsed.thread_id):
            current_app.logger.info(
                "Case thread adopted from mailbox",
                extra={"case_id": case.id, "thread_id": parsed.thread_id},
            )

        advanced = False
        if not outgoing:
            advanced = self.advance_on_reply(case, parsed.id, parsed.internal_date or parsed.date)
        if advanced:
            self.status_machine.transition(case, "IN_REVIEW", SYSTEM_ACTOR, REPLY_RECEIVED_NOTE)
        else:
            db.session.commit()
        return advanced

    def check_thread_for_reply(self, case: Case) -> Dict[str, Any]:
        """Look at the latest incoming message on the case thread and advance the case if it is new."""
        messages = self.transport.fetch_thread(case.thread_id)
        latest_incoming = None
        for message in messages:
            if is_sent_by_mailbox(message, self.mailbox_address):
                continue
            latest_incoming = message

        detail: Dict[str, Any] = {"case_id": case.id, "thread_id": case.thread_id, "updated": False}
        if latest_incoming is None:
            return detail

        message_id = latest_incoming.get("id")
        detail["latest_message_id"] = message_id
        if self.advance_on_reply(case, message_id, internal_timestamp(latest_incoming)):
            self.status_machine.transition(case, "IN_REVIEW", SYSTEM_ACTOR, REPLY_RECEIVED_NOTE)
            detail["updated"] = True
        return detail

    # Reply derivation

    def fetch_thread(self, case: Case) -> List[Dict[str, Any]]:
        if not case.thread_id:
            raise ValidationFailed("Case has no threadId")
        return self.transport.fetch_thread(case.thread_id)

    def _target_from_thread(self, messages: List[Dict[str, Any]], subject: Optional[str]) -> Optional[ReplyTarget]:
        if not messages:
            return None
        mailbox = self.mailbox_address
        latest = messages[-1]
        latest_headers = _safe_headers(latest)

        target = latest
        for message in reversed(messages):
            sender = extract_address(header_value(_safe_headers(message), "From"))
            if sender and sender != mailbox and "SENT" not in (message.get("labelIds") or []):
                target = message
                break
        target_headers = _safe_headers(target)

        latest_from = extract_address(header_value(latest_headers, "From"))
        latest_to = extract_address(header_value(latest_headers, "To"))
        target_from = extract_address(header_value(target_headers, "From"))
        target_to = extract_address(header_value(target_headers, "To"))
        if is_sent_by_mailbox(latest, mailbox) or (mailbox and latest_from == mailbox):
            to = latest_to or target_to
        else:
            to = target_from or latest_from or target_to or latest_to
        if to and mailbox and to == mailbox:
            to = None

        in_reply_to = normalize_message_id(
            header_value(target_headers, "Message-Id") or header_value(target_headers, "Message-ID")
        )
        references = merge_references(parse_references(header_value(target_headers, "References")), in_reply_to)
        resolved_subject = (subject or "").strip() or reply_subject(header_value(latest_headers, "Subject"))
        return ReplyTarget(to=to or "", subject=resolved_subject, in_reply_to=in_reply_to, references=references)

    def derive_reply_target(self, case: Case, subject: Optional[str] = None, to: Optional[str] = None) -> ReplyTarget:
        """Resolve recipient, subject and threading headers for a reply on ``case``.

        An explicit ``to`` wins over the thread. Otherwise the last counterparty on the
        thread is used, which may be the case owner when the thread started from their
        mail. Without a usable thread the store's registered address is the fallback,
        never the consumer's.
        """
        target = None
        if case.thread_id:
            try:
                target = self._target_from_thread(self.transport.fetch_thread(case.thread_id), subject)
            except TransportFailure as exc:
                current_app.logger.warning(
                    "Reply derivation could not fetch thread",
                    extra={"case_id": case.id, "thread_id": case.thread_id, "error": str(exc)},
                )
        if target is None:
            target = ReplyTarget(to="", subject=(subject or "").strip() or FALLBACK_REPLY_SUBJECT)

        explicit = extract_address(to)
        if explicit:
            target.to = explicit
        if not target.to:
            target.to = _store_address(case) or ""
        if not target.to:
            current_app.logger.warning(
                "Reply recipient could not be resolved", extra={"case_id": case.id, "store": case.store}
            )
            raise RecipientUnresolved("Could not resolve store email for this case")
        return target

    # Outbound sends

    def _load_attachment(self, url: Optional[str], fallback_name: str) -> Optional[MailAttachment]:
        if not url:
            return None
        filename = posixpath.basename(urlparse(url).path) or fallback_name
        stored = self.storage.read_url(url) if self.storage else None
        if stored:
            content, content_type = stored
            return MailAttachment(filename=filename, content_type=content_type, content=content)
        try:
            response = requests.get(url, timeout=self.http_timeout)
        except requests.RequestException as exc:
            current_app.logger.warning("Attachment fetch error", extra={"url": url, "error": str(exc)})
            return None
        if response.status_code >= 400:
            current_app.logger.warning("Attachment fetch failed", extra={"url": url, "status": response.status_code})
            return None
        content_type = response.headers.get("content-type") or "application/octet-stream"
        return MailAttachment(filename=filename, content_type=content_type, content=response.content)

    def collect_attachments(self, case: Case, attach_product: bool, attach_receipt: bool) -> List[MailAttachment]:
        images = list(case.images or [])
        attachments: List[MailAttachment] = []
        if attach_product:
            url = case.product_image_url or (images[0] if images else None)
            attachment = self._load_attachment(url, "product.jpg")
            if attachment:
                attachments.append(attachment)
        if attach_receipt:
            url = case.receipt_image_url or (images[1] if len(images) > 1 else None)
            attachment = self._load_attachment(url, "receipt.jpg")
            if attachment:
                attachments.append(attachment)
        return attachments

    def _log_outbound(self, case: Case, *, subject: str, body: str, to: str, sent) -> None:
        thread_id = sent.thread_id or case.thread_id
        case.append_email(
            subject=subject,
            body=body,
            to_address=to,
            from_address=self.mailbox_address or "me",
            sent_at=utcnow(),
            direction="OUTBOUND",
            thread_id=thread_id,
            message_id=sent.message_id,
        )
        case.adopt_thread(sent.thread_id)
        db.session.commit()

    def send_case_email(
        self,
        case: Case,
        *,
        subject: str,
        body: str,
        to: Optional[str] = None,
        attach_product: bool = False,
        attach_receipt: bool = False,
    ) -> Case:
        """First-contact or manual email to the shop; the case token is embedded in the subject."""
        recipient = extract_address(to) or _store_address(case)
        if not recipient:
            current_app.logger.warning(
                "Case email recipient could not be resolved", extra={"case_id": case.id, "store": case.store}
            )
            raise RecipientUnresolved("Could not resolve store email for this case")

        subject = ensure_case_token(subject, case.id)
        attachments = self.collect_attachments(case, attach_product, attach_receipt)
        sent = self.transport.send(to=recipient, subject=subject, body=body, attachments=attachments or None)
        current_app.logger.info(
            "Case email sent",
            extra={"case_id": case.id, "message_id": sent.message_id, "thread_id": sent.thread_id},
        )
        self._log_outbound(case, subject=subject, body=body, to=recipient, sent=sent)
        return case

    def reply_to_case(
        self,
        case: Case,
        *,
        body: str,
        subject: Optional[str] = None,
        to: Optional[str] = None,
        attach_product: bool = False,
        attach_receipt: bool = False,
    ) -> Case:
        if not case.thread_id:
            raise ValidationFailed("Cannot reply: case has no threadId")
        target = self.derive_reply_target(case, subject=subject, to=to)
        attachments = self.collect_attachments(case, attach_product, attach_receipt)
        sent = self.transport.send(
            to=target.to,
            subject=target.subject,
            body=body,
            thread_id=case.thread_id,
            in_reply_to=target.in_reply_to,
            references=target.references or None,
            attachments=attachments or None,
        )
        current_app.logger.info(
            "Case reply sent",
            extra={"case_id": case.id, "message_id": sent.message_id, "thread_id": sent.thread_id},
        )
        self._log_outbound(case, subject=target.subject, body=body, to=target.to, sent=sent)
        return case
