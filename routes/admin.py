"""Admin case management, outbound mail and mailbox sync endpoints."""
from flask import Blueprint, current_app, g, jsonify, request

from extensions import csrf
from utils.case_service import (
    admin_list_cases,
    attach_resolution_code,
    case_page,
    get_case,
    set_manual_analysis,
)
from utils.decorators import admin_required
from utils.engine import get_engine
from utils.errors import ValidationFailed
from .cases import json_body

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")
csrf.exempt(admin_bp)


def _text(payload: dict, key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _flag(payload: dict, key: str) -> bool:
    value = payload.get(key)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@admin_bp.route("/cases", methods=["GET"])
@admin_required
def list_cases_admin():
    cases, total = admin_list_cases(
        status=request.args.get("status"),
        search=request.args.get("search") or request.args.get("q"),
        limit=request.args.get("limit", 50),
        skip=request.args.get("skip", 0),
    )
    return jsonify(case_page(cases, total))


@admin_bp.route("/cases/<string:case_id>", methods=["GET"])
@admin_required
def case_detail_admin(case_id):
    return jsonify(get_case(case_id).to_dict())


@admin_bp.route("/cases/<string:case_id>/thread", methods=["GET"])
@admin_required
def case_thread(case_id):
    case = get_case(case_id)
    messages = get_engine().correlator.fetch_thread(case)
    return jsonify({"case_id": case.id, "thread_id": case.thread_id, "messages": messages})


@admin_bp.route("/cases/<string:case_id>/status", methods=["POST"])
@admin_required
def transition_status_admin(case_id):
    payload = json_body()
    case = get_engine().status_machine.transition_by_id(
        case_id, payload.get("status"), g.admin_email, payload.get("note") or None
    )
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/approve", methods=["POST"])
@admin_required
def approve_case(case_id):
    case = get_engine().status_machine.transition_by_id(case_id, "APPROVED", g.admin_email)
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/reject", methods=["POST"])
@admin_required
def reject_case(case_id):
    note = _text(json_body(), "note") or None
    case = get_engine().status_machine.transition_by_id(case_id, "REJECTED", g.admin_email, note)
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/code", methods=["POST"])
@admin_required
def attach_code(case_id):
    payload = json_body()
    case = attach_resolution_code(
        get_case(case_id),
        payload.get("code"),
        g.admin_email,
        get_engine().status_machine,
        expiry_date=payload.get("expiry_date"),
    )
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/analysis", methods=["POST"])
@admin_required
def manual_analysis(case_id):
    case = set_manual_analysis(get_case(case_id), json_body().get("text"))
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/request-info", methods=["POST"])
@admin_required
def request_info(case_id):
    payload = json_body()
    case = get_case(case_id)
    info_request = get_engine().info_exchange.request_info(
        case,
        _text(payload, "message"),
        requires_file=_flag(payload, "requires_file"),
        requires_yes_no=_flag(payload, "requires_yes_no"),
        actor=g.admin_email,
    )
    return jsonify({"ok": True, "request": info_request.to_dict(), "case": case.to_dict()}), 201


@admin_bp.route("/cases/<string:case_id>/email/send", methods=["POST"])
@admin_required
def send_case_email(case_id):
    payload = json_body()
    subject, body = _text(payload, "subject"), _text(payload, "body")
    if not subject or not body:
        raise ValidationFailed("subject and body required")
    case = get_engine().correlator.send_case_email(
        get_case(case_id),
        subject=subject,
        body=body,
        to=_text(payload, "to") or None,
        attach_product=_flag(payload, "attach_product"),
        attach_receipt=_flag(payload, "attach_receipt"),
    )
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/reply", methods=["POST"])
@admin_required
def reply_to_case(case_id):
    payload = json_body()
    body = _text(payload, "body")
    if not body:
        raise ValidationFailed("body required")
    case = get_engine().correlator.reply_to_case(
        get_case(case_id),
        body=body,
        subject=_text(payload, "subject") or None,
        to=_text(payload, "to") or None,
        attach_product=_flag(payload, "attach_product"),
        attach_receipt=_flag(payload, "attach_receipt"),
    )
    return jsonify(case.to_dict())


@admin_bp.route("/cases/<string:case_id>/reply-target", methods=["GET"])
@admin_required
def reply_target(case_id):
    target = get_engine().correlator.derive_reply_target(
        get_case(case_id),
        subject=request.args.get("subject") or None,
        to=request.args.get("to") or None,
    )
    return jsonify(target.to_dict())


@admin_bp.route("/mail/sync", methods=["POST"])
@admin_required
def mail_sync():
    payload = json_body()
    window = payload.get("window_days") or current_app.config.get("MAIL_SYNC_WINDOW_DAYS", 7)
    try:
        window = int(window)
    except (TypeError, ValueError) as exc:
        raise ValidationFailed("window_days must be an integer") from exc
    if window < 1:
        raise ValidationFailed("window_days must be positive")
    result = get_engine().mail_sync.sync_recent(window)
    return jsonify(dict(result, ok=True))


@admin_bp.route("/mail/check-replies", methods=["POST"])
@admin_required
def check_replies():
    result = get_engine().mail_sync.check_replies()
    return jsonify(dict(result, ok=True))
