"""Core data models for complaint cases, their mail/info-exchange logs, and notifications."""
import secrets
import uuid
from datetime import datetime, timezone

from flask_login import UserMixin
from sqlalchemy import func

from extensions import db


def generate_uuid() -> str:
	return str(uuid.uuid4())


def generate_case_id() -> str:
	# 24 hex chars so that CASE-<id> subject tokens can be resolved directly.
	return secrets.token_hex(12)


def utcnow() -> datetime:
	"""Naive UTC timestamp; every DateTime column stores naive UTC."""
	return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value: datetime | None) -> str | None:
	return value.isoformat() if value else None


CASE_STATUSES: tuple[str, ...] = (
	"PENDING",
	"IN_REVIEW",
	"NEED_INFO",
	"APPROVED",
	"REJECTED",
)

INFO_REQUEST_STATUSES: tuple[str, ...] = (
	"PENDING",
	"ANSWERED",
	"SUPERSEDED",
)

EMAIL_DIRECTIONS: tuple[str, ...] = (
	"INBOUND",
	"OUTBOUND",
)


class User(UserMixin, db.Model):
	__tablename__ = "users"

	# External subject id issued by the auth provider.
	id = db.Column(db.String(128), primary_key=True)
	email = db.Column(db.String(255), nullable=True, index=True)
	fcm_token = db.Column(db.String(512), nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	@staticmethod
	def get_or_create(subject_id: str, email: str | None = None):
		normalized = (email or "").strip().lower() or None
		user = db.session.get(User, subject_id)
		if user:
			if normalized and user.email != normalized:
				user.email = normalized
				db.session.commit()
			return user
		user = User(id=subject_id, email=normalized)
		db.session.add(user)
		db.session.commit()
		return user


class Store(db.Model):
	__tablename__ = "stores"

	id = db.Column(db.Integer, primary_key=True)
	store_id = db.Column(db.String(64), unique=True, nullable=False, index=True)
	name = db.Column(db.String(150), nullable=False)
	email = db.Column(db.String(255), nullable=False)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

	@staticmethod
	def find_for_case(store_value: str | None):
		"""Resolve a case's free-text store by exact storeId, then case-insensitive exact name."""
		value = (store_value or "").strip()
		if not value:
			return None
		store = Store.query.filter_by(store_id=value).first()
		if store:
			return store
		return Store.query.filter(func.lower(Store.name) == value.lower()).first()


class Case(db.Model):
	__tablename__ = "cases"

	id = db.Column(db.String(24), primary_key=True, default=generate_case_id)
	owner_id = db.Column(db.String(128), nullable=False, index=True)
	owner_email = db.Column(db.String(255), nullable=True, index=True)
	store = db.Column(db.String(255), nullable=False)
	product = db.Column(db.String(255), nullable=False)
	description = db.Column(db.Text, nullable=False)
	images = db.Column(db.JSON, nullable=False, default=list)
	product_image_url = db.Column(db.String(1024), nullable=True)
	receipt_image_url = db.Column(db.String(1024), nullable=True)
	status = db.Column(db.String(20), nullable=False, default="PENDING", index=True)
	thread_id = db.Column(db.String(128), nullable=True, index=True)
	last_email_reply_at = db.Column(db.DateTime, nullable=True)
	last_email_message_id = db.Column(db.String(128), nullable=True)
	resolution = db.Column(db.JSON, nullable=True)
	manual_analysis = db.Column(db.JSON, nullable=True)
	created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
	updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

	__table_args__ = (
		db.CheckConstraint(
			"status IN ('PENDING','IN_REVIEW','NEED_INFO','APPROVED','REJECTED')",
			name="ck_case_status_valid",
		),
	)

	status_history = db.relationship(
		"CaseStatusHistory",
		back_populates="case",
		order_by="CaseStatusHistory.id",
		cascade="all, delete-orphan",
	)
	emails = db.relationship(
		"CaseEmail",
		back_populates="case",
		order_by="CaseEmail.id",
		cascade="all, delete-orphan",
	)
	info_requests = db.relationship(
		"InfoRequest",
		back_populates="case",
		order_by="InfoRequest.seq",
		cascade="all, delete-orphan",
	)
	info_responses = db.relationship(
		"InfoResponse",
		back_populates="case",
		order_by="InfoResponse.seq",
		cascade="all, delete-orphan",
	)
	notifications = db.relationship("Notification", back_populates="case", lazy="dynamic")

	@property
	def case_token(self) -> str:
		return f"CASE-{self.id}"

	def append_status_entry(self, status: str, actor: str, at: datetime, note: str | None = None):
		entry = CaseStatusHistory(status=status, actor=actor, at=at, note=note)
		self.status_history.append(entry)
		return entry

	def append_email(
		self,
		*,
		subject: str,
		body: str,
		to_address: str,
		from_address: str,
		sent_at: datetime,
		direction: str,
		thread_id: str | None = None,
		message_id: str | None = None,
	):
		entry = CaseEmail(
			subject=subject,
			body=body,
			to_address=to_address,
			from_address=from_address,
			sent_at=sent_at,
			direction=direction,
			thread_id=thread_id,
			message_id=message_id,
		)
		self.emails.append(entry)
		return entry

	def has_logged_message(self, message_id: str | None) -> bool:
		if not message_id:
			return False
		return any(e.message_id == message_id for e in self.emails)

	def adopt_thread(self, thread_id: str | None) -> bool:
		"""First writer wins: an existing thread id is never replaced."""
		if self.thread_id or not thread_id:
			return False
		self.thread_id = thread_id
		return True

	def append_info_request(self, request):
		self.info_requests.append(request)
		return request

	def append_info_response(self, response):
		self.info_responses.append(response)
		return response

	def pending_info_requests(self) -> list:
		return [r for r in self.info_requests if r.status == "PENDING"]

	def find_info_request(self, request_id: str | None):
		if not request_id:
			return None
		return next((r for r in self.info_requests if r.id == request_id), None)

	def summary(self) -> dict:
		return {
			"id": self.id,
			"product": self.product,
			"store": self.store,
			"description": self.description,
			"status": self.status,
		}

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"owner_id": self.owner_id,
			"owner_email": self.owner_email,
			"store": self.store,
			"product": self.product,
			"description": self.description,
			"images": list(self.images or []),
			"product_image_url": self.product_image_url,
			"receipt_image_url": self.receipt_image_url,
			"status": self.status,
			"status_history": [h.to_dict() for h in self.status_history],
			"thread_id": self.thread_id,
			"last_email_reply_at": _iso(self.last_email_reply_at),
			"last_email_message_id": self.last_email_message_id,
			"emails": [e.to_dict() for e in self.emails],
			"info_request_history": [r.to_dict() for r in self.info_requests],
			"info_response_history": [r.to_dict() for r in self.info_responses],
			"resolution": self.resolution,
			"manual_analysis": self.manual_analysis,
			"created_at": _iso(self.created_at),
			"updated_at": _iso(self.updated_at),
		}


class CaseStatusHistory(db.Model):
	__tablename__ = "case_status_history"

	id = db.Column(db.Integer, primary_key=True)
	case_id = db.Column(db.String(24), db.ForeignKey("cases.id"), nullable=False, index=True)
	status = db.Column(db.String(20), nullable=False)
	actor = db.Column(db.String(255), nullable=False)
	at = db.Column(db.DateTime, nullable=False, index=True)
	note = db.Column(db.String(500), nullable=True)

	__table_args__ = (
		db.CheckConstraint(
			"status IN ('PENDING','IN_REVIEW','NEED_INFO','APPROVED','REJECTED')",
			name="ck_case_status_history_valid",
		),
	)

	case = db.relationship("Case", back_populates="status_history")

	def to_dict(self) -> dict:
		return {"status": self.status, "by": self.actor, "at": _iso(self.at), "note": self.note}


class CaseEmail(db.Model):
	__tablename__ = "case_emails"

	id = db.Column(db.Integer, primary_key=True)
	case_id = db.Column(db.String(24), db.ForeignKey("cases.id"), nullable=False, index=True)
	subject = db.Column(db.String(998), nullable=False, default="")
	body = db.Column(db.Text, nullable=False, default="")
	to_address = db.Column(db.String(255), nullable=False, default="")
	from_address = db.Column(db.String(255), nullable=False, default="")
	sent_at = db.Column(db.DateTime, nullable=False)
	thread_id = db.Column(db.String(128), nullable=True, index=True)
	# Provider message id; guards against logging the same message twice.
	message_id = db.Column(db.String(128), nullable=True, index=True)
	direction = db.Column(db.String(10), nullable=False)

	__table_args__ = (
		db.CheckConstraint("direction IN ('INBOUND','OUTBOUND')", name="ck_case_email_direction"),
	)

	case = db.relationship("Case", back_populates="emails")

	def to_dict(self) -> dict:
		return {
			"subject": self.subject,
			"body": self.body,
			"to": self.to_address,
			"from": self.from_address,
			"sent_at": _iso(self.sent_at),
			"thread_id": self.thread_id,
			"message_id": self.message_id,
			"direction": self.direction,
		}


class InfoRequest(db.Model):
	__tablename__ = "info_requests"

	seq = db.Column(db.Integer, primary_key=True)
	id = db.Column(db.String(36), unique=True, nullable=False, default=generate_uuid)
	case_id = db.Column(db.String(24), db.ForeignKey("cases.id"), nullable=False, index=True)
	message = db.Column(db.Text, nullable=False)
	requires_file = db.Column(db.Boolean, nullable=False, default=False)
	requires_yes_no = db.Column(db.Boolean, nullable=False, default=False)
	requested_at = db.Column(db.DateTime, nullable=False, default=utcnow)
	requested_by = db.Column(db.String(255), nullable=False)
	status = db.Column(db.String(20), nullable=False, default="PENDING", index=True)

	__table_args__ = (
		db.CheckConstraint(
			"status IN ('PENDING','ANSWERED','SUPERSEDED')",
			name="ck_info_request_status_valid",
		),
	)

	case = db.relationship("Case", back_populates="info_requests")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"message": self.message,
			"requires_file": self.requires_file,
			"requires_yes_no": self.requires_yes_no,
			"requested_at": _iso(self.requested_at),
			"requested_by": self.requested_by,
			"status": self.status,
		}


class InfoResponse(db.Model):
	__tablename__ = "info_responses"

	seq = db.Column(db.Integer, primary_key=True)
	id = db.Column(db.String(36), unique=True, nullable=False, default=generate_uuid)
	case_id = db.Column(db.String(24), db.ForeignKey("cases.id"), nullable=False, index=True)
	request_id = db.Column(db.String(36), db.ForeignKey("info_requests.id"), nullable=False, index=True)
	answer = db.Column(db.Text, nullable=True)
	file_url = db.Column(db.String(1024), nullable=True)
	file_name = db.Column(db.String(255), nullable=True)
	file_type = db.Column(db.String(120), nullable=True)
	submitted_at = db.Column(db.DateTime, nullable=False, default=utcnow)
	submitted_by = db.Column(db.String(255), nullable=False)

	case = db.relationship("Case", back_populates="info_responses")

	def to_dict(self) -> dict:
		return {
			"id": self.id,
			"request_id": self.request_id,
			"answer": self.answer,
			"file_url": self.file_url,
			"file_name": self.file_name,
			"file_type": self.file_type,
			"submitted_at": _iso(self.submitted_at),
			"submitted_by": self.submitted_by,
		}


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.String(36), primary_key=True, default=generate_uuid)
	user_id = db.Column(db.String(128), nullable=False, index=True)
	case_id = db.Column(db.String(24), db.ForeignKey("cases.id"), nullable=False, index=True)
	old_status = db.Column(db.String(20), nullable=True)
	new_status = db.Column(db.String(20), nullable=False)
	seen = db.Column(db.Boolean, nullable=False, default=False, index=True)
	created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

	__table_args__ = (
		db.Index("ix_notification_user_seen_created", "user_id", "seen", "created_at"),
	)

	case = db.relationship("Case", back_populates="notifications")
