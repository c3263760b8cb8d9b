"""Gmail API mail transport for the shared support mailbox."""
from __future__ import annotations

import base64
import threading
import time
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from typing import Any, Dict, List, Optional, Sequence

import requests

from utils.errors import TransportFailure
from utils.mail_headers import sort_by_internal_date

GMAIL_API_BASE = "https://gmail.googleapis.com/gmail/v1/users/me"
GMAIL_TOKEN_URL = "https://oauth2.googleapis.com/token"
METADATA_HEADERS = ("From", "To", "Subject", "Date", "Message-Id", "References", "In-Reply-To")


@dataclass
class MailAttachment:
    filename: str
    content_type: str
    content: bytes


@dataclass
class SentMessage:
    message_id: Optional[str]
    thread_id: Optional[str]


class MailTransport:
    """Interface the case engine depends on; ``GmailTransport`` is the production implementation."""

    mailbox_address: str = ""

    def send(
        self,
        *,
        to: str,
        subject: str,
        body: str,
        thread_id: Optional[str] = None,
        in_reply_to: Optional[str] = None,
        references: Optional[Sequence[str]] = None,
        attachments: Optional[Sequence[MailAttachment]] = None,
    ) -> SentMessage:
        raise NotImplementedError

    def fetch_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def list_messages(self, query: str, limit: int = 500) -> List[Dict[str, Any]]:
        """Message stubs (``id`` and ``threadId``) matching ``query``, newest first."""
        raise NotImplementedError

    def get_message(self, message_id: str) -> Dict[str, Any]:
        raise NotImplementedError


def build_mime_message(
    *,
    sender: str,
    to: str,
    subject: str,
    body: str,
    in_reply_to: Optional[str] = None,
    references: Optional[Sequence[str]] = None,
    attachments: Optional[Sequence[MailAttachment]] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["To"] = to
    msg["From"] = sender or "me"
    msg["Subject"] = subject
    msg["Date"] = formatdate(localtime=False)
    msg["Message-ID"] = make_msgid()
    if in_reply_to:
        msg["In-Reply-To"] = f"<{in_reply_to}>"
    if references:
        msg["References"] = " ".join(f"<{ref}>" for ref in references)
    msg.set_content(body)

    for attachment in attachments or []:
        mime_type = attachment.content_type or "application/octet-stream"
        maintype, subtype = (mime_type.split("/", 1) if "/" in mime_type else ("application", "octet-stream"))
        msg.add_attachment(attachment.content, maintype=maintype, subtype=subtype, filename=attachment.filename)
    return msg


class GmailTransport(MailTransport):
    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        mailbox_address: str,
        timeout: float = 20,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.mailbox_address = (mailbox_address or "").strip().lower()
        self.timeout = timeout
        self.session = session or requests.Session()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config) -> "GmailTransport":
        return cls(
            client_id=config.get("GOOGLE_CLIENT_ID", ""),
            client_secret=config.get("GOOGLE_CLIENT_SECRET", ""),
            refresh_token=config.get("GMAIL_REFRESH_TOKEN", ""),
            mailbox_address=config.get("GMAIL_USER", ""),
            timeout=float(config.get("GMAIL_HTTP_TIMEOUT", 20)),
        )

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.refresh_token)

    def _access_token(self) -> str:
        if not self.configured:
            raise TransportFailure("Gmail OAuth2 env vars are not fully configured.")
        with self._lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            try:
                response = self.session.post(
                    GMAIL_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": self.refresh_token,
                        "grant_type": "refresh_token",
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
                data = response.json()
            except (requests.RequestException, ValueError) as exc:
                raise TransportFailure(f"Gmail token refresh failed: {exc}") from exc
            self._token = data.get("access_token")
            if not self._token:
                raise TransportFailure("Gmail token refresh returned no access token")
            # Refresh a minute early.
            self._token_expires_at = time.monotonic() + max(int(data.get("expires_in", 3600)) - 60, 0)
            return self._token

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        try:
            response = self.session.request(
                method, f"{GMAIL_API_BASE}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise TransportFailure(f"Gmail API request failed: {exc}") from exc
        if response.status_code == 401:
            with self._lock:
                self._token = None
        if response.status_code >= 400:
            raise TransportFailure(f"Gmail API error: {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise TransportFailure("Gmail API returned invalid JSON") from exc

    def send(
        self,
        *,
        to: str,
        subject: str,
        body: str,
        thread_id: Optional[str] = None,
        in_reply_to: Optional[str] = None,
        references: Optional[Sequence[str]] = None,
        attachments: Optional[Sequence[MailAttachment]] = None,
    ) -> SentMessage:
        msg = build_mime_message(
            sender=self.mailbox_address,
            to=to,
            subject=subject,
            body=body,
            in_reply_to=in_reply_to,
            references=references,
            attachments=attachments,
        )
        payload: Dict[str, Any] = {"raw": base64.urlsafe_b64encode(msg.as_bytes()).decode().rstrip("=")}
        if thread_id:
            payload["threadId"] = thread_id
        data = self._request("POST", "/messages/send", json=payload)
        return SentMessage(message_id=data.get("id"), thread_id=data.get("threadId"))

    def fetch_thread(self, thread_id: str) -> List[Dict[str, Any]]:
        data = self._request(
            "GET",
            f"/threads/{thread_id}",
            params={"format": "metadata", "metadataHeaders": list(METADATA_HEADERS)},
        )
        return sort_by_internal_date(data.get("messages") or [])

    def list_messages(self, query: str, limit: int = 500) -> List[Dict[str, Any]]:
        stubs: List[Dict[str, Any]] = []
        page_token = None
        while len(stubs) < limit:
            params: Dict[str, Any] = {"q": query, "maxResults": min(limit - len(stubs), 500)}
            if page_token:
                params["pageToken"] = page_token
            data = self._request("GET", "/messages", params=params)
            stubs.extend(m for m in data.get("messages") or [] if m.get("id"))
            page_token = data.get("nextPageToken")
            if not page_token:
                break
        return stubs[:limit]

    def get_message(self, message_id: str) -> Dict[str, Any]:
        return self._request(
            "GET",
            f"/messages/{message_id}",
            params={"format": "metadata", "metadataHeaders": list(METADATA_HEADERS)},
        )
