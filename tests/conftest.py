"""
Test configuration and fixtures.

Provides:
- An app built from TestingConfig with a fresh in-memory schema per test
- In-memory fakes for the mail transport, object storage and push sender
- Owner JWT / admin token headers for the HTTP tests
"""
import io
import os
from email.utils import format_datetime
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Dict, List, Optional

os.environ["FLASK_CONFIG"] = "testing"

import jwt
import pytest
from flask import g
from PIL import Image

from app import create_app
from extensions import db as _db
from models import Store, User
from utils.case_service import create_case
from utils.engine import init_engine
from utils.errors import TransportFailure
from utils.gmail_client import MailTransport, SentMessage
from utils.mail_headers import sort_by_internal_date
from utils.push import PushSender
from utils.storage import ObjectStorage, StoredObject, compute_hash

MAILBOX = "support@claimy.test"
OWNER_ID = "user-1"
OWNER_EMAIL = "owner@example.com"


# =============================================================================
# Collaborator fakes
# =============================================================================

class FakeTransport(MailTransport):
    mailbox_address = MAILBOX

    def __init__(self) -> None:
        self.sent: List[Dict] = []
        self.threads: Dict[str, List[Dict]] = {}
        self.inbox: List[Dict] = []
        self.queries: List[str] = []
        self.fail_send = False
        self.fail_fetch = False
        self.missing: set = set()

    def send(self, *, to, subject, body, thread_id=None, in_reply_to=None, references=None, attachments=None):
        if self.fail_send:
            raise TransportFailure("Gmail API error: 503")
        n = len(self.sent) + 1
        self.sent.append(
            {
                "to": to,
                "subject": subject,
                "body": body,
                "thread_id": thread_id,
                "in_reply_to": in_reply_to,
                "references": list(references or []),
                "attachments": list(attachments or []),
            }
        )
        return SentMessage(message_id=f"sent-{n}", thread_id=thread_id or f"thread-new-{n}")

    def fetch_thread(self, thread_id):
        if self.fail_fetch or thread_id not in self.threads:
            raise TransportFailure("Gmail API error: 404")
        return sort_by_internal_date(self.threads[thread_id])

    def list_messages(self, query, limit=500):
        self.queries.append(query)
        return [{"id": m["id"], "threadId": m.get("threadId")} for m in self.inbox[:limit]]

    def get_message(self, message_id):
        if message_id in self.missing:
            raise TransportFailure("Gmail API error: 404")
        return next(m for m in self.inbox if m["id"] == message_id)


class FakeStorage(ObjectStorage):
    base_url = "https://files.claimy.test/uploads"

    def __init__(self) -> None:
        self.objects: Dict[str, tuple] = {}

    def put(self, content, filename, content_type, folder=""):
        key = f"{folder}/{filename}" if folder else filename
        self.objects[key] = (content, content_type)
        return StoredObject(url=f"{self.base_url}/{key}", key=key, sha256=compute_hash(content))

    def read_url(self, url):
        prefix = f"{self.base_url}/"
        if not url or not url.startswith(prefix):
            return None
        return self.objects.get(url[len(prefix):])


class FakePush(PushSender):
    def __init__(self) -> None:
        self.sent: List[Dict] = []
        self.fail = False

    def send(self, device_token, title, body, data=None):
        if self.fail:
            raise TransportFailure("FCM error: 500")
        self.sent.append({"token": device_token, "title": title, "body": body, "data": data})


# =============================================================================
# App / engine fixtures
# =============================================================================

@pytest.fixture
def app(tmp_path):
    app = create_app("testing")
    app.config["UPLOAD_FOLDER"] = str(tmp_path)
    with app.app_context():
        _db.drop_all()
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def fakes(app):
    transport, storage, push = FakeTransport(), FakeStorage(), FakePush()
    engine = init_engine(app, transport=transport, storage=storage, push_sender=push)
    return SimpleNamespace(transport=transport, storage=storage, push=push, engine=engine)


@pytest.fixture
def engine(fakes):
    return fakes.engine


@pytest.fixture
def client(app, fakes):
    # The app fixture keeps one app context open, which Flask reuses for every
    # client request; drop Flask-Login's cached user so each request re-runs
    # the bearer request loader.
    @app.teardown_request
    def _forget_login_user(exc):
        g.pop("_login_user", None)

    return app.test_client()


# =============================================================================
# Data helpers
# =============================================================================

@pytest.fixture
def owner(app):
    return User.get_or_create(OWNER_ID, OWNER_EMAIL)


@pytest.fixture
def make_case(app, owner):
    def _make(case_owner: Optional[User] = None, **overrides):
        fields = {"store": "Acme Market", "product": "Blender", "description": "Arrived with a cracked jar"}
        fields.update(overrides)
        return create_case(case_owner or owner, **fields)

    return _make


@pytest.fixture
def store(app):
    record = Store(store_id="acme-001", name="Acme Market", email="Help@Acme.test")
    _db.session.add(record)
    _db.session.commit()
    return record


@pytest.fixture
def make_message():
    """Gmail API message resource in ``format=metadata`` shape."""

    def _make(
        message_id: str,
        thread_id: str,
        *,
        sender: Optional[str],
        to: Optional[str],
        subject: str = "",
        internal_ms: int = 1_700_000_000_000,
        message_id_header: Optional[str] = None,
        references: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> Dict:
        headers = [{"name": "Subject", "value": subject}]
        if sender is not None:
            headers.append({"name": "From", "value": sender})
        if to is not None:
            headers.append({"name": "To", "value": to})
        sent_at = datetime.fromtimestamp(internal_ms / 1000, tz=timezone.utc)
        headers.append({"name": "Date", "value": format_datetime(sent_at)})
        if message_id_header:
            headers.append({"name": "Message-ID", "value": message_id_header})
        if references:
            headers.append({"name": "References", "value": references})
        return {
            "id": message_id,
            "threadId": thread_id,
            "labelIds": labels or ["INBOX"],
            "internalDate": str(internal_ms),
            "payload": {"headers": headers},
        }

    return _make


@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 10, 10)).save(buffer, format="PNG")
    return buffer.getvalue()


# =============================================================================
# Auth helpers
# =============================================================================

def mint_owner_token(app, user_id: str = OWNER_ID, email: str = OWNER_EMAIL) -> str:
    return jwt.encode({"userId": user_id, "email": email}, app.config["JWT_SECRET"], algorithm="HS256")


@pytest.fixture
def owner_headers(app):
    return {"Authorization": f"Bearer {mint_owner_token(app)}"}


@pytest.fixture
def other_owner_headers(app):
    return {"Authorization": f"Bearer {mint_owner_token(app, 'user-2', 'someone@example.com')}"}


@pytest.fixture
def admin_headers(app):
    return {"X-Admin-Token": app.config["ADMIN_SECRET_TOKEN"]}
