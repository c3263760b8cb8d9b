"""Case intake, listing and the admin-side case operations."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy import or_

from extensions import db
from models import CASE_STATUSES, Case, User, utcnow
from utils.errors import NotFound, ValidationFailed
from utils.storage import ObjectStorage, UploadedFile

MAX_OWNER_PAGE = 100
MAX_ADMIN_PAGE = 200
RESOLUTION_CODE_NOTE = "Resolution code attached"


def _required_text(value: Any, field: str) -> str:
    text = value.strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationFailed(f"{field} is required")
    return text


def _clamp(value: Any, default: int, ceiling: int, floor: int = 0) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = default
    return max(floor, min(number, ceiling))


def _parse_expiry(value: Any) -> Optional[str]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).isoformat()
    except ValueError as exc:
        raise ValidationFailed("expiryDate must be an ISO-8601 date") from exc


def create_case(
    owner: User,
    *,
    store: Any,
    product: Any,
    description: Any,
    images: Optional[Sequence[str]] = None,
    product_image: Optional[UploadedFile] = None,
    receipt_image: Optional[UploadedFile] = None,
    storage: Optional[ObjectStorage] = None,
) -> Case:
    store = _required_text(store, "store")
    product = _required_text(product, "product")
    description = _required_text(description, "description")
    image_urls = [u.strip() for u in (images or []) if isinstance(u, str) and u.strip()]

    case = Case(
        owner_id=owner.id,
        owner_email=(owner.email or "").strip().lower() or None,
        store=store,
        product=product,
        description=description,
        images=image_urls,
        status="PENDING",
    )

    uploads = [("product", product_image), ("receipt", receipt_image)]
    for kind, upload in uploads:
        if upload is None:
            continue
        if storage is None:
            raise ValidationFailed("File uploads are not available")
        stored = storage.put(upload.content, upload.filename, upload.content_type, folder=f"{owner.id}/{kind}")
        if kind == "product":
            case.product_image_url = stored.url
        else:
            case.receipt_image_url = stored.url

    case.append_status_entry("PENDING", case.owner_email or owner.id, utcnow())
    db.session.add(case)
    db.session.commit()
    current_app.logger.info("Case created", extra={"case_id": case.id, "owner_id": owner.id, "store": store})
    return case


def list_cases(owner_id: str, limit: Any = 20, offset: Any = 0) -> Tuple[List[Case], int]:
    query = Case.query.filter_by(owner_id=owner_id)
    total = query.count()
    cases = (
        query.order_by(Case.created_at.desc())
        .offset(_clamp(offset, 0, 10**9))
        .limit(_clamp(limit, 20, MAX_OWNER_PAGE, floor=1))
        .all()
    )
    return cases, total


def get_case(case_id: str) -> Case:
    case = db.session.get(Case, case_id) if case_id else None
    if not case:
        raise NotFound("Case not found")
    return case


def get_owned_case(case_id: str, owner_id: str) -> Case:
    case = get_case(case_id)
    if case.owner_id != owner_id:
        raise NotFound("Case not found")
    return case


def admin_list_cases(status: Optional[str] = None, search: Optional[str] = None, limit: Any = 50, skip: Any = 0) -> Tuple[List[Case], int]:
    query = Case.query
    if status:
        status = status.strip().upper()
        if status not in CASE_STATUSES:
            raise ValidationFailed("Invalid status filter")
        query = query.filter(Case.status == status)
    term = (search or "").strip()
    if term:
        like = f"%{term}%"
        query = query.filter(
            or_(
                Case.store.ilike(like),
                Case.product.ilike(like),
                Case.description.ilike(like),
                Case.owner_email.ilike(like),
            )
        )
    total = query.count()
    cases = (
        query.order_by(Case.created_at.desc())
        .offset(_clamp(skip, 0, 10**9))
        .limit(_clamp(limit, 50, MAX_ADMIN_PAGE, floor=1))
        .all()
    )
    return cases, total


def attach_resolution_code(case: Case, code: Any, actor: str, status_machine, expiry_date: Any = None) -> Case:
    code = _required_text(code, "code")
    case.resolution = {
        "code": code,
        "added_at": utcnow().isoformat(),
        "expiry_date": _parse_expiry(expiry_date),
        "used": False,
    }
    return status_machine.transition(case, "APPROVED", actor, RESOLUTION_CODE_NOTE)


def set_manual_analysis(case: Case, text: Any) -> Case:
    text = _required_text(text, "analysis")
    case.manual_analysis = {"text": text, "updated_at": utcnow().isoformat()}
    db.session.commit()
    return case


def register_device_token(user: User, token: Any) -> User:
    token = _required_text(token, "token")
    user.fcm_token = token
    db.session.commit()
    current_app.logger.info("Device token registered", extra={"user_id": user.id})
    return user


def case_page(cases: List[Case], total: int) -> Dict[str, Any]:
    return {"items": [c.to_dict() for c in cases], "total": total}
