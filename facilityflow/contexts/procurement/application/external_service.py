from __future__ import annotations

import logging
from typing import Any, Dict

from facilityflow.contexts.procurement.application.invite_ledger import (
    INVITE_TARGETS,
    ORDER_ACCEPT,
    ORDER_INVOICE,
    RFQ_QUOTE,
    UPLOAD_INVITE_TYPES,
    InviteContext,
    InviteLedger,
)
from facilityflow.contexts.procurement.application.lifecycle_service import (
    LifecycleEngine,
    compute_totals,
    serialize,
)
from facilityflow.domain.contracts import Actor, ExternalInvoiceInput, InviteIssueInput, LineItem, QuotationInput
from facilityflow.errors import ForbiddenError, ValidationError
from facilityflow.notifications import NotificationOutbox
from facilityflow.policies import is_admin, is_property_manager
from facilityflow.services.storage import SignedUploadStorage


logger = logging.getLogger("facilityflow")

_RFQ_PUBLIC_FIELDS = (
    "rfq_number",
    "title",
    "description",
    "scope_of_work",
    "building_name",
    "building_address",
    "urgency",
    "status",
    "attachments",
)
_ORDER_PUBLIC_FIELDS = (
    "order_number",
    "title",
    "scope_of_work",
    "building_address",
    "total_amount",
    "status",
)


def _public(record: Dict[str, Any] | None, fields) -> Dict[str, Any] | None:
    if record is None:
        return None
    return {key: record.get(key) for key in fields}


class ExternalChannelService:
    """Operations reachable with an external submission token instead of a session."""

    def __init__(self, engine: LifecycleEngine, ledger: InviteLedger, storage: SignedUploadStorage) -> None:
        self.engine = engine
        self.ledger = ledger
        self.storage = storage

    def issue_external_invite(self, db, actor: Actor, data: InviteIssueInput) -> Dict[str, Any]:
        target = INVITE_TARGETS.get(str(data.type or ""))
        if target is None:
            raise ValidationError(
                code="invite_target_invalid", message_key="invite_target_invalid", http_status=400, critical=False
            )
        record = None
        if target == "rfq" and data.rfq_id is not None:
            record = self.engine.rfqs.get_by_id(db, int(data.rfq_id))
        elif target == "order" and data.order_id is not None:
            record = self.engine.orders.get_by_id(db, int(data.order_id))
        if record is not None and not is_admin(actor.role):
            if not is_property_manager(actor.role) or int(record["property_manager_id"]) != int(actor.id):
                raise ForbiddenError(
                    code="permission_denied",
                    message_key="permission_denied",
                    http_status=403,
                    critical=False,
                    details=f"{target} {record['id']} is not owned by user {actor.id}",
                )
        elif record is None and not (is_admin(actor.role) or is_property_manager(actor.role)):
            raise ForbiddenError(code="permission_denied", message_key="permission_denied", http_status=403, critical=False)

        outbox = NotificationOutbox()
        with db.transaction():
            invite = self.ledger.issue(
                db,
                invite_type=data.type,
                email=data.email,
                ttl_days=data.ttl_days,
                rfq_id=data.rfq_id if target == "rfq" else None,
                order_id=data.order_id if target == "order" else None,
                name=data.name,
            )
            if target == "rfq":
                self.engine.rfqs.add_target(
                    db, rfq_id=int(data.rfq_id), email=invite["email"], channel="EXTERNAL", contractor_user_id=None
                )
            outbox.email(
                invite["email"],
                "Your FacilityFlow submission link",
                f"<p>Use this link to continue: <a href=\"{invite['link']}\">{invite['link']}</a></p>"
                f"<p>It expires at {invite['expires_at']}.</p>",
                invite_type=invite["type"],
            )
        self.engine.deliver(db, outbox)
        return invite

    def redeem_external_invite_context(self, db, token: str) -> Dict[str, Any]:
        context = self.ledger.redeem(db, token)
        return self._context_payload(context)

    @staticmethod
    def _context_payload(context: InviteContext) -> Dict[str, Any]:
        return {
            "type": context.type,
            "email": context.email,
            "name": context.name,
            "expires_at": context.expires_at,
            "rfq": _public(context.rfq, _RFQ_PUBLIC_FIELDS),
            "order": _public(context.order, _ORDER_PUBLIC_FIELDS),
            "can_upload": context.type in UPLOAD_INVITE_TYPES,
        }

    def submit_external_rfq_quotation(self, db, token: str, data: QuotationInput) -> Dict[str, Any]:
        items, subtotal, tax, total = compute_totals(data.items, data.tax)
        outbox = NotificationOutbox()
        now = self.engine.now_iso()
        with db.transaction():
            context = self.ledger.redeem(db, token, expected_type=RFQ_QUOTE)
            rfq = context.rfq
            pm = self.engine.users.get_by_id(db, int(rfq["property_manager_id"])) or {}
            self.ledger.consume(db, context)
            quotation_id, quote_number = self.engine.create_quotation_for_rfq(
                db,
                rfq_id=int(rfq["id"]),
                source="EXTERNAL",
                created_by_id=None,
                submitted_by_email=context.email,
                customer_email=pm.get("email"),
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                notes=data.notes,
                attachments=[attachment.as_dict() for attachment in data.attachments],
                source_token_id=context.token_id,
                actor_id=None,
                now=now,
            )
            outbox.notify(
                rfq["property_manager_id"],
                pm.get("role") or "PROPERTY_MANAGER",
                f"New quotation {quote_number} from {context.email} for RFQ {rfq['rfq_number']}",
                "RFQ_QUOTED",
                int(rfq["id"]),
                "rfq",
            )
        logger.info(
            "quotation_submitted",
            extra={"rfq_id": rfq["id"], "quotation_id": quotation_id, "source": "EXTERNAL", "token_id": context.token_id},
        )
        self.engine.deliver(db, outbox)
        quotation = self.engine.quotations.get_by_id(db, quotation_id)
        return {
            "quote_number": quote_number,
            "status": quotation["status"],
            "total": quotation["total"],
            "rfq_number": rfq["rfq_number"],
        }

    def accept_external_order(self, db, token: str) -> Dict[str, Any]:
        outbox = NotificationOutbox()
        now = self.engine.now_iso()
        with db.transaction():
            context = self.ledger.redeem(db, token, expected_type=ORDER_ACCEPT)
            order = context.order
            self.ledger.consume(db, context)
            to_status = self.engine.transition_order(
                db, order, "accept_order", actor_id=None, now=now, reason=f"accepted by {context.email}"
            )
            pm = self.engine.users.get_by_id(db, int(order["property_manager_id"])) or {}
            message = f"Order {order['order_number']} was accepted by {context.email}"
            outbox.notify(
                order["property_manager_id"], pm.get("role") or "PROPERTY_MANAGER", message, "ORDER_ACCEPTED", int(order["id"]), "order"
            )
            outbox.notify_admins(message, "ORDER_ACCEPTED", int(order["id"]), "order")
        self.engine.deliver(db, outbox)
        return {"order_number": order["order_number"], "status": to_status}

    def submit_external_order_invoice(self, db, token: str, data: ExternalInvoiceInput) -> Dict[str, Any]:
        if not data.attachments:
            raise ValidationError(
                code="attachments_required", message_key="attachments_required", http_status=400, critical=False
            )
        try:
            amount = round(float(data.amount), 2)
        except (TypeError, ValueError):
            amount = 0.0
        if amount <= 0:
            raise ValidationError(code="amount_invalid", message_key="amount_invalid", http_status=400, critical=False)

        outbox = NotificationOutbox()
        now = self.engine.now_iso()
        with db.transaction():
            context = self.ledger.redeem(db, token, expected_type=ORDER_INVOICE)
            order = context.order
            self.ledger.consume(db, context)
            description = str(data.description or "").strip() or f"Invoice for PM Order {order['order_number']}: {order['title']}"
            items, subtotal, tax, total = compute_totals(
                [LineItem(description=description, quantity=1, unit_price=amount)], 0
            )
            invoice_id, invoice_number = self.engine.create_invoice_for_order(
                db,
                order,
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                attachments=[attachment.as_dict() for attachment in data.attachments],
                notes=data.notes,
                submitted_by_email=context.email,
                source_token_id=context.token_id,
                actor_id=None,
                now=now,
            )
            pm = self.engine.users.get_by_id(db, int(order["property_manager_id"])) or {}
            outbox.notify(
                order["property_manager_id"],
                pm.get("role") or "PROPERTY_MANAGER",
                f"Invoice {invoice_number} received for order {order['order_number']}",
                "INVOICE_CREATED",
                invoice_id,
                "invoice",
            )
        logger.info(
            "invoice_created",
            extra={"invoice_id": invoice_id, "order_id": order["id"], "source": "EXTERNAL", "token_id": context.token_id},
        )
        self.engine.deliver(db, outbox)
        invoice = serialize("invoice", self.engine.invoices.get_by_id(db, invoice_id))
        return {
            "invoice_number": invoice_number,
            "status": invoice["status"],
            "total": invoice["total"],
            "order_number": order["order_number"],
        }

    def presign_submission_upload(self, db, token: str, file_name: str, file_type: str | None) -> Dict[str, Any]:
        context = self.ledger.redeem(db, token)
        if context.type not in UPLOAD_INVITE_TYPES:
            raise ForbiddenError(
                code="upload_not_allowed",
                message_key="upload_not_allowed",
                http_status=403,
                critical=False,
                details=f"token {context.token_id} is {context.type}",
            )
        return self.storage.presign_upload(f"external-{context.token_id}", file_name, file_type)
