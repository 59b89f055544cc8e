from __future__ import annotations

from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file

from facilityflow.auth import require_actor
from facilityflow.db import get_db
from facilityflow.domain.contracts import (
    InviteIssueInput,
    InvoiceInput,
    InvoiceStatusInput,
    OrderCreateInput,
    QuotationInput,
    RfqCreateInput,
    RfqStatusInput,
    SelectionInput,
)
from facilityflow.routes.payloads import (
    json_payload,
    optional_text,
    parse_attachments,
    parse_contacts,
    parse_int_list,
    parse_line_items,
    parse_optional_float,
    parse_optional_int,
    parse_required_int,
)
from facilityflow.ui_strings import status_keys_for_group, success_message


procurement_bp = Blueprint("procurement", __name__)

ALLOWED_RFQ_STATUSES = set(status_keys_for_group("rfq"))
ALLOWED_QUOTATION_STATUSES = set(status_keys_for_group("quotation"))
ALLOWED_ORDER_STATUSES = set(status_keys_for_group("order"))
ALLOWED_INVOICE_STATUSES = set(status_keys_for_group("invoice"))


def _services() -> dict:
    return current_app.extensions["facilityflow"]


def _engine():
    return _services()["engine"]


def _status_filter(allowed: set) -> str | None:
    status = str(request.args.get("status") or "").strip().upper()
    return status if status in allowed else None


def _quotation_input(payload: dict) -> QuotationInput:
    return QuotationInput(
        items=parse_line_items(payload.get("items")),
        tax=parse_optional_float(payload.get("tax")) or 0.0,
        notes=optional_text(payload, "notes"),
        attachments=parse_attachments(payload.get("attachments")),
    )


@procurement_bp.route("/api/me", methods=["GET"])
def me_api():
    actor = require_actor()
    return jsonify(
        {
            "id": actor.id,
            "role": actor.role,
            "email": actor.email,
            "company_affiliation": actor.company_affiliation,
            "display_name": actor.display_name,
        }
    )


@procurement_bp.route("/api/rfqs", methods=["GET", "POST"])
def rfqs_api():
    actor = require_actor()
    db = get_db()
    if request.method == "GET":
        items = _engine().list_rfqs(db, actor, status=_status_filter(ALLOWED_RFQ_STATUSES))
        return jsonify({"items": items})

    payload = json_payload()
    result = _engine().create_rfq(
        db,
        actor,
        RfqCreateInput(
            title=str(payload.get("title") or ""),
            scope_of_work=str(payload.get("scope_of_work") or ""),
            building_address=str(payload.get("building_address") or ""),
            urgency=str(payload.get("urgency") or "NORMAL"),
            description=optional_text(payload, "description"),
            building_name=optional_text(payload, "building_name"),
            estimated_budget=parse_optional_float(payload.get("estimated_budget")),
            notes=optional_text(payload, "notes"),
            contractor_ids=parse_int_list(payload.get("contractor_ids")),
            external_contacts=parse_contacts(payload.get("external_contacts")),
            attachments=parse_attachments(payload.get("attachments")),
        ),
    )
    return jsonify({"rfq": result, "message": success_message("rfq_created")}), 201


@procurement_bp.route("/api/rfqs/<int:rfq_id>", methods=["GET"])
def rfq_detail_api(rfq_id: int):
    actor = require_actor()
    return jsonify({"rfq": _engine().get_rfq(get_db(), actor, rfq_id)})


@procurement_bp.route("/api/rfqs/<int:rfq_id>/status", methods=["POST"])
def rfq_status_api(rfq_id: int):
    actor = require_actor()
    payload = json_payload()
    result = _engine().update_rfq_status(
        get_db(),
        actor,
        RfqStatusInput(
            rfq_id=rfq_id,
            action=str(payload.get("action") or ""),
            quotation_id=parse_optional_int(payload.get("quotation_id")),
            reason=optional_text(payload, "reason"),
        ),
    )
    return jsonify(result)


@procurement_bp.route("/api/rfqs/<int:rfq_id>/quotations", methods=["POST"])
def rfq_contractor_quotation_api(rfq_id: int):
    actor = require_actor()
    result = _engine().submit_contractor_quotation(get_db(), actor, rfq_id, _quotation_input(json_payload()))
    return jsonify({"quotation": result}), 201


@procurement_bp.route("/api/rfqs/<int:rfq_id>/admin-quotations", methods=["POST"])
def rfq_admin_quotation_api(rfq_id: int):
    actor = require_actor()
    result = _engine().record_admin_quotation(get_db(), actor, rfq_id, _quotation_input(json_payload()))
    return jsonify({"quotation": result}), 201


@procurement_bp.route("/api/rfqs/by-number/<string:rfq_number>/comparison", methods=["GET"])
def rfq_comparison_api(rfq_number: str):
    actor = require_actor()
    return jsonify(_engine().compare_quotations_for_rfq(get_db(), actor, rfq_number))


@procurement_bp.route("/api/rfqs/by-number/<string:rfq_number>/selection", methods=["POST"])
def rfq_selection_api(rfq_number: str):
    actor = require_actor()
    payload = json_payload()
    result = _engine().select_quotation_for_rfq(
        get_db(),
        actor,
        SelectionInput(rfq_number=rfq_number, quotation_id=parse_required_int(payload.get("quotation_id"), "quotation_id")),
    )
    result["message"] = success_message("quotation_selected")
    return jsonify(result)


@procurement_bp.route("/api/rfqs/by-number/<string:rfq_number>/pdf-copies/heal", methods=["POST"])
def rfq_pdf_heal_api(rfq_number: str):
    actor = require_actor()
    return jsonify(_engine().heal_quotation_pdf_copies(get_db(), actor, rfq_number))


@procurement_bp.route("/api/quotations", methods=["GET"])
def quotations_api():
    actor = require_actor()
    items = _engine().list_quotations(
        get_db(),
        actor,
        rfq_reference=str(request.args.get("rfq_reference") or "").strip() or None,
        status=_status_filter(ALLOWED_QUOTATION_STATUSES),
    )
    return jsonify({"items": items})


@procurement_bp.route("/api/quotation-pdf-copies", methods=["GET"])
def quotation_pdf_copies_api():
    actor = require_actor()
    rfq_number = str(request.args.get("rfq_number") or "").strip() or None
    return jsonify({"items": _engine().list_quotation_pdf_copies(get_db(), actor, rfq_number=rfq_number)})


@procurement_bp.route("/api/quotation-pdf-copies/<int:copy_id>/download", methods=["GET"])
def quotation_pdf_copy_download_api(copy_id: int):
    actor = require_actor()
    record = _engine().get_quotation_pdf_copy(get_db(), actor, copy_id)
    return send_file(
        BytesIO(record["pdf_data"]),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=record["filename"],
    )


@procurement_bp.route("/api/orders", methods=["GET", "POST"])
def orders_api():
    actor = require_actor()
    db = get_db()
    if request.method == "GET":
        return jsonify({"items": _engine().list_orders(db, actor, status=_status_filter(ALLOWED_ORDER_STATUSES))})

    payload = json_payload()
    total_amount = parse_optional_float(payload.get("total_amount"))
    result = _engine().create_order(
        db,
        actor,
        OrderCreateInput(
            title=str(payload.get("title") or ""),
            scope_of_work=str(payload.get("scope_of_work") or ""),
            total_amount=total_amount if total_amount is not None else -1,
            building_address=optional_text(payload, "building_address"),
            contractor_id=parse_optional_int(payload.get("contractor_id")),
            contractor_email=optional_text(payload, "contractor_email"),
            contractor_name=optional_text(payload, "contractor_name"),
            notes=optional_text(payload, "notes"),
        ),
    )
    return jsonify({"order": result, "message": success_message("order_created")}), 201


@procurement_bp.route("/api/orders/<int:order_id>", methods=["GET"])
def order_detail_api(order_id: int):
    actor = require_actor()
    return jsonify({"order": _engine().get_order(get_db(), actor, order_id)})


@procurement_bp.route("/api/orders/<int:order_id>/accept", methods=["POST"])
def order_accept_api(order_id: int):
    actor = require_actor()
    return jsonify({"order": _engine().accept_order(get_db(), actor, order_id)})


@procurement_bp.route("/api/orders/<int:order_id>/complete", methods=["POST"])
def order_complete_api(order_id: int):
    actor = require_actor()
    return jsonify({"order": _engine().complete_order(get_db(), actor, order_id)})


@procurement_bp.route("/api/orders/<int:order_id>/cancel", methods=["POST"])
def order_cancel_api(order_id: int):
    actor = require_actor()
    reason = optional_text(json_payload(), "reason")
    return jsonify({"order": _engine().cancel_order(get_db(), actor, order_id, reason=reason)})


@procurement_bp.route("/api/orders/<int:order_id>/invoices", methods=["POST"])
def order_invoice_api(order_id: int):
    actor = require_actor()
    payload = json_payload()
    result = _engine().create_invoice(
        get_db(),
        actor,
        order_id,
        InvoiceInput(
            items=parse_line_items(payload.get("items")),
            tax=parse_optional_float(payload.get("tax")) or 0.0,
            attachments=parse_attachments(payload.get("attachments")),
            notes=optional_text(payload, "notes"),
        ),
    )
    return jsonify({"invoice": result, "message": success_message("invoice_submitted")}), 201


@procurement_bp.route("/api/invoices", methods=["GET"])
def invoices_api():
    actor = require_actor()
    return jsonify({"items": _engine().list_invoices(get_db(), actor, status=_status_filter(ALLOWED_INVOICE_STATUSES))})


@procurement_bp.route("/api/invoices/<int:invoice_id>/status", methods=["POST"])
def invoice_status_api(invoice_id: int):
    actor = require_actor()
    payload = json_payload()
    result = _engine().update_invoice_status(
        get_db(),
        actor,
        InvoiceStatusInput(
            invoice_id=invoice_id,
            action=str(payload.get("action") or ""),
            reason=optional_text(payload, "reason"),
        ),
    )
    return jsonify({"invoice": result})


@procurement_bp.route("/api/invites", methods=["POST"])
def invites_api():
    actor = require_actor()
    payload = json_payload()
    invite_type = str(payload.get("type") or "").strip().upper()
    ttl_days = parse_optional_int(payload.get("ttl_days"))
    if ttl_days is None:
        ttl_key = "RFQ_INVITE_TTL_DAYS" if invite_type == "RFQ_QUOTE" else "ORDER_INVITE_TTL_DAYS"
        ttl_days = int(current_app.config.get(ttl_key, 14))
    invite = _services()["external"].issue_external_invite(
        get_db(),
        actor,
        InviteIssueInput(
            type=invite_type,
            email=str(payload.get("email") or ""),
            rfq_id=parse_optional_int(payload.get("rfq_id")),
            order_id=parse_optional_int(payload.get("order_id")),
            ttl_days=ttl_days,
            name=optional_text(payload, "name"),
        ),
    )
    return jsonify({"invite": invite}), 201


@procurement_bp.route("/api/notifications", methods=["GET"])
def notifications_api():
    actor = require_actor()
    limit = parse_optional_int(request.args.get("limit")) or 100
    items = _services()["notifications"].list_for_recipient(get_db(), int(actor.id), limit=max(1, min(limit, 300)))
    return jsonify({"items": items})


@procurement_bp.route("/api/settings/document-prefixes", methods=["GET"])
def document_prefixes_api():
    require_actor()
    return jsonify({"prefixes": _services()["settings"].document_prefixes(get_db())})


@procurement_bp.route("/api/settings/document-prefixes/<string:kind>", methods=["PUT"])
def document_prefix_update_api(kind: str):
    actor = require_actor()
    payload = json_payload()
    prefixes = _engine().update_document_prefix(get_db(), actor, kind, str(payload.get("prefix") or ""))
    return jsonify({"prefixes": prefixes})
