from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request, send_from_directory

from facilityflow.db import get_db
from facilityflow.domain.contracts import ExternalInvoiceInput, QuotationInput
from facilityflow.errors import (
    AppError,
    ConflictError,
    InviteTokenError,
    NotFoundError,
    UnauthenticatedError,
)
from facilityflow.observability import ensure_request_id
from facilityflow.routes.payloads import (
    json_payload,
    optional_text,
    parse_attachments,
    parse_line_items,
    parse_optional_float,
)
from facilityflow.ui_strings import error_message


external_bp = Blueprint("external", __name__)
uploads_bp = Blueprint("uploads", __name__)

EXTERNAL_LINK_INVALID = "external_link_invalid"
_MASKED_ERRORS = (InviteTokenError, UnauthenticatedError, NotFoundError, ConflictError)


def _external():
    return current_app.extensions["facilityflow"]["external"]


@external_bp.errorhandler(AppError)
def _handle_external_error(exc: AppError):
    request_id = ensure_request_id()
    current_app.logger.warning(
        "external_request_rejected",
        extra={
            "request_id": request_id,
            "error_code": exc.code,
            "http_status": exc.http_status,
            "details": exc.details,
            "http_method": request.method,
        },
    )
    if isinstance(exc, _MASKED_ERRORS):
        payload = {
            "error": EXTERNAL_LINK_INVALID,
            "message": error_message(EXTERNAL_LINK_INVALID, "This link is invalid or has expired."),
            "request_id": request_id,
        }
        return jsonify(payload), 410
    return jsonify(exc.to_response_payload(request_id)), exc.http_status


@external_bp.route("/api/external/<string:token>", methods=["GET"])
def external_context_api(token: str):
    return jsonify(_external().redeem_external_invite_context(get_db(), token))


@external_bp.route("/api/external/<string:token>/quotation", methods=["POST"])
def external_quotation_api(token: str):
    payload = json_payload()
    result = _external().submit_external_rfq_quotation(
        get_db(),
        token,
        QuotationInput(
            items=parse_line_items(payload.get("items")),
            tax=parse_optional_float(payload.get("tax")) or 0.0,
            notes=optional_text(payload, "notes"),
            attachments=parse_attachments(payload.get("attachments")),
        ),
    )
    return jsonify(result), 201


@external_bp.route("/api/external/<string:token>/accept", methods=["POST"])
def external_accept_api(token: str):
    return jsonify(_external().accept_external_order(get_db(), token))


@external_bp.route("/api/external/<string:token>/invoice", methods=["POST"])
def external_invoice_api(token: str):
    payload = json_payload()
    amount = parse_optional_float(payload.get("amount"))
    result = _external().submit_external_order_invoice(
        get_db(),
        token,
        ExternalInvoiceInput(
            amount=amount if amount is not None else 0.0,
            attachments=parse_attachments(payload.get("attachments")),
            description=optional_text(payload, "description"),
            notes=optional_text(payload, "notes"),
        ),
    )
    return jsonify(result), 201


@external_bp.route("/api/external/<string:token>/uploads", methods=["POST"])
def external_upload_url_api(token: str):
    payload = json_payload()
    result = _external().presign_submission_upload(
        get_db(),
        token,
        str(payload.get("file_name") or ""),
        optional_text(payload, "file_type"),
    )
    return jsonify(result), 201


@uploads_bp.route("/uploads/<string:signed>", methods=["PUT"])
def upload_put(signed: str):
    storage = current_app.extensions["facilityflow"]["storage"]
    stored = storage.save_upload(signed, request.get_data(cache=False))
    return jsonify({"key": stored["key"], "publicUrl": stored["publicUrl"]}), 201


@uploads_bp.route("/uploads/files/<path:key>", methods=["GET"])
def upload_get(key: str):
    storage = current_app.extensions["facilityflow"]["storage"]
    return send_from_directory(storage.upload_folder, key)
