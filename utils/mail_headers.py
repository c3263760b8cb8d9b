"""Pure helpers for reading Gmail API message resources and RFC 5322 headers.

Nothing in here touches the database or the network. Messages are the JSON
resources returned by ``users.messages.get`` / ``users.threads.get``::

    {"id": "...", "threadId": "...", "labelIds": [...], "internalDate": "1700000000000",
     "payload": {"headers": [{"name": "From", "value": "Shop <help@shop.test>"}, ...]}}
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional

CASE_TOKEN_RE = re.compile(r"CASE-([a-f0-9]{24})", re.IGNORECASE)
ANGLE_ADDR_RE = re.compile(r"<([^>]+)>")
REPLY_PREFIX_RE = re.compile(r"^(re\s*:\s*)+", re.IGNORECASE)
FALLBACK_REPLY_SUBJECT = "Re: case update"


class MailHeaderError(ValueError):
    """Raised when a message resource lacks the headers needed to correlate it."""


@dataclass
class ParsedMessage:
    id: Optional[str]
    thread_id: Optional[str]
    subject: str
    from_address: str
    to_address: str
    date: Optional[datetime]
    internal_date: Optional[datetime]
    message_id_header: Optional[str]
    references: List[str] = field(default_factory=list)
    label_ids: List[str] = field(default_factory=list)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def message_headers(message: Dict[str, Any]) -> List[Dict[str, Any]]:
    payload = message.get("payload") if isinstance(message, dict) else None
    headers = payload.get("headers") if isinstance(payload, dict) else None
    if not isinstance(headers, list):
        raise MailHeaderError("Message has no header list")
    return headers


def header_value(headers: Iterable[Dict[str, Any]], name: str) -> Optional[str]:
    wanted = name.lower()
    for item in headers or []:
        if not isinstance(item, dict):
            continue
        if str(item.get("name") or "").lower() == wanted:
            value = item.get("value")
            return str(value) if value is not None else None
    return None


def extract_address(value: Optional[str]) -> Optional[str]:
    """Bare lowercase address from ``Name <addr>`` or a raw ``addr``; first of a list."""
    if not value:
        return None
    match = ANGLE_ADDR_RE.search(value)
    candidate = match.group(1) if match else value.split(",", 1)[0]
    candidate = candidate.strip().strip('"').strip().lower()
    return candidate or None


def find_case_token(subject: Optional[str]) -> Optional[str]:
    if not subject:
        return None
    match = CASE_TOKEN_RE.search(subject)
    return match.group(1).lower() if match else None


def ensure_case_token(subject: str, case_id: str) -> str:
    token = f"CASE-{case_id}"
    if find_case_token(subject) == case_id.lower():
        return subject
    subject = (subject or "").strip()
    return f"{subject} [{token}]" if subject else f"[{token}]"


def strip_reply_prefixes(subject: Optional[str]) -> str:
    return REPLY_PREFIX_RE.sub("", (subject or "").strip()).strip()


def reply_subject(thread_subject: Optional[str], fallback: str = FALLBACK_REPLY_SUBJECT) -> str:
    base = strip_reply_prefixes(thread_subject)
    return f"Re: {base}" if base else fallback


def normalize_message_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.strip().replace("<", "").replace(">", "").strip()
    return cleaned or None


def parse_references(value: Optional[str]) -> List[str]:
    if not value:
        return []
    refs = []
    for chunk in value.split():
        ref = normalize_message_id(chunk)
        if ref:
            refs.append(ref)
    return refs


def merge_references(references: Iterable[str], message_id: Optional[str]) -> List[str]:
    merged: List[str] = []
    seen = set()
    for ref in list(references or []) + ([message_id] if message_id else []):
        if ref and ref not in seen:
            seen.add(ref)
            merged.append(ref)
    return merged


def parse_date_header(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    return _naive_utc(parsed)


def internal_timestamp(message: Dict[str, Any]) -> Optional[datetime]:
    raw = message.get("internalDate") if isinstance(message, dict) else None
    if raw in (None, ""):
        return None
    try:
        millis = int(raw)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).replace(tzinfo=None)


def sort_by_internal_date(messages: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    def _key(message):
        try:
            return int(message.get("internalDate") or 0)
        except (TypeError, ValueError):
            return 0

    return sorted((m for m in messages or [] if isinstance(m, dict)), key=_key)


def sender_address(message: Dict[str, Any]) -> Optional[str]:
    try:
        return extract_address(header_value(message_headers(message), "From"))
    except MailHeaderError:
        return None


def is_sent_by_mailbox(message: Dict[str, Any], mailbox_address: Optional[str]) -> bool:
    if "SENT" in (message.get("labelIds") or []):
        return True
    mailbox = (mailbox_address or "").strip().lower()
    return bool(mailbox) and sender_address(message) == mailbox


def parse_message(message: Dict[str, Any]) -> ParsedMessage:
    """Extract the correlation fields; missing From/To is a header error."""
    headers = message_headers(message)
    from_address = extract_address(header_value(headers, "From"))
    to_address = extract_address(header_value(headers, "To"))
    if not from_address or not to_address:
        raise MailHeaderError("Message is missing From/To headers")
    return ParsedMessage(
        id=message.get("id"),
        thread_id=message.get("threadId"),
        subject=header_value(headers, "Subject") or "",
        from_address=from_address,
        to_address=to_address,
        date=parse_date_header(header_value(headers, "Date")),
        internal_date=internal_timestamp(message),
        message_id_header=normalize_message_id(header_value(headers, "Message-Id")),
        references=parse_references(header_value(headers, "References")),
        label_ids=list(message.get("labelIds") or []),
    )
