"""Owner-facing case intake, status and info-exchange endpoints."""
from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user
from flask_wtf import FlaskForm
from flask_wtf.file import FileAllowed, FileField
from wtforms import StringField, TextAreaField
from wtforms.validators import DataRequired, Length

from extensions import csrf
from utils.case_service import case_page, create_case, get_owned_case, list_cases
from utils.decorators import owner_required
from utils.engine import get_engine
from utils.errors import ValidationFailed
from utils.info_exchange import list_pending_info_requests
from utils.storage import ALLOWED_IMAGE_EXTENSIONS, read_upload, validate_image_upload

cases_bp = Blueprint("cases", __name__, url_prefix="/api")
csrf.exempt(cases_bp)


class CaseIntakeForm(FlaskForm):
    class Meta:
        # Bearer-token API; there is no session cookie to protect.
        csrf = False

    store = StringField("Store", validators=[DataRequired(message="store is required"), Length(max=255)])
    product = StringField("Product", validators=[DataRequired(message="product is required"), Length(max=255)])
    description = TextAreaField(
        "Description", validators=[DataRequired(message="description is required"), Length(max=5000)]
    )
    product_image = FileField("Product image", validators=[FileAllowed(list(ALLOWED_IMAGE_EXTENSIONS), "Images only")])
    receipt_image = FileField("Receipt image", validators=[FileAllowed(list(ALLOWED_IMAGE_EXTENSIONS), "Images only")])


def json_body() -> Dict[str, Any]:
    if not request.is_json:
        return {}
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON body")
    return payload


def request_fields() -> Dict[str, Any]:
    """JSON body, or the form fields of a multipart/urlencoded body."""
    if request.is_json:
        return json_body()
    return request.form.to_dict()


def first_form_error(form: FlaskForm) -> str:
    for errors in form.errors.values():
        if errors:
            return str(errors[0])
    return "Invalid request"


def _image_urls() -> List[str]:
    if request.is_json:
        images = json_body().get("images") or []
        if not isinstance(images, list):
            raise ValidationFailed("images must be a list of URLs")
        return images
    return request.form.getlist("images")


def _actor() -> str:
    return current_user.email or current_user.id


@cases_bp.route("/cases", methods=["POST"])
@owner_required
def create_case_route():
    form = CaseIntakeForm()
    if not form.validate():
        raise ValidationFailed(first_form_error(form))

    engine = get_engine()
    max_bytes = int(current_app.config.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024))
    case = create_case(
        current_user,
        store=form.store.data,
        product=form.product.data,
        description=form.description.data,
        images=_image_urls(),
        product_image=validate_image_upload(request.files.get("product_image"), max_bytes),
        receipt_image=validate_image_upload(request.files.get("receipt_image"), max_bytes),
        storage=engine.storage,
    )
    return jsonify(case.to_dict()), 201


@cases_bp.route("/cases", methods=["GET"])
@owner_required
def list_cases_route():
    cases, total = list_cases(current_user.id, request.args.get("limit", 20), request.args.get("offset", 0))
    return jsonify(case_page(cases, total))


@cases_bp.route("/cases/<string:case_id>", methods=["GET"])
@owner_required
def case_detail(case_id):
    return jsonify(get_owned_case(case_id, current_user.id).to_dict())


@cases_bp.route("/cases/<string:case_id>/status", methods=["POST"])
@owner_required
def transition_status_route(case_id):
    payload = json_body()
    case = get_engine().status_machine.transition_by_id(
        case_id,
        payload.get("status"),
        _actor(),
        payload.get("note"),
        owner_id=current_user.id,
    )
    return jsonify(case.to_dict())


@cases_bp.route("/cases/<string:case_id>/info-requests", methods=["GET"])
@owner_required
def pending_info_requests(case_id):
    case = get_owned_case(case_id, current_user.id)
    return jsonify({"case_id": case.id, "status": case.status, "requests": list_pending_info_requests(case)})


@cases_bp.route("/cases/<string:case_id>/info-response", methods=["POST"])
@owner_required
def submit_info_response(case_id):
    case = get_owned_case(case_id, current_user.id)
    fields = request_fields()
    upload = read_upload(
        request.files.get("attachment"),
        max_bytes=int(current_app.config.get("MAX_UPLOAD_BYTES", 10 * 1024 * 1024)),
    )
    answer = fields.get("answer")
    if answer is not None and not isinstance(answer, str):
        answer = str(answer)
    response = get_engine().info_exchange.submit_response(
        case,
        request_id=fields.get("request_id") or None,
        answer=answer,
        upload=upload,
        actor=_actor(),
    )
    return jsonify({"ok": True, "response": response.to_dict(), "case": case.to_dict()}), 201
