from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from facilityflow.contexts.procurement.application.invite_ledger import (
    ORDER_ACCEPT,
    ORDER_INVOICE,
    RFQ_QUOTE,
    InviteLedger,
    normalize_email,
)
from facilityflow.contexts.procurement.domain.visibility import VisibilityResolver, require_visible
from facilityflow.contexts.procurement.infrastructure.numbering import DocumentNumberAllocator
from facilityflow.contexts.procurement.infrastructure.repositories import (
    InvoiceRepository,
    OrderRepository,
    PdfCopyRepository,
    QuotationRepository,
    RfqRepository,
    StatusEventRepository,
    UserRepository,
)
from facilityflow.db import TRANSIENT_ERRORS
from facilityflow.domain.contracts import (
    Actor,
    InvoiceInput,
    InvoiceStatusInput,
    LineItem,
    OrderCreateInput,
    QuotationInput,
    RfqCreateInput,
    RfqStatusInput,
    SelectionInput,
)
from facilityflow.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
    status_conflict,
)
from facilityflow.notifications import NotificationFanout, NotificationOutbox
from facilityflow.policies import is_contractor, require_roles
from facilityflow.procurement.flow_policy import (
    COMPARABLE_RFQ_STATUSES,
    INVOICE_ACTIONS,
    QUOTABLE_RFQ_STATUSES,
    RFQ_ACTIONS,
    action_allowed,
    allowed_actions,
    flow_meta,
    target_status,
)
from facilityflow.services.quotation_pdf import quotation_pdf_filename
from facilityflow.settings import SettingsCache
from facilityflow.timeutils import Clock, to_iso, utc_now


NOT_SELECTED_REASON = "Not selected"
URGENCY_LEVELS = ("LOW", "NORMAL", "HIGH", "URGENT")

logger = logging.getLogger("facilityflow")


def _validation(code: str, details: str | None = None) -> ValidationError:
    return ValidationError(code=code, message_key=code, http_status=400, critical=False, details=details)


def _not_found(code: str) -> NotFoundError:
    return NotFoundError(code=code, message_key=code, http_status=404, critical=False)


def _conflict(code: str, details: str | None = None) -> ConflictError:
    return ConflictError(code=code, message_key=code, http_status=409, critical=False, details=details)


def _forbidden(details: str | None = None) -> ForbiddenError:
    return ForbiddenError(
        code="permission_denied", message_key="permission_denied", http_status=403, critical=False, details=details
    )


def _required_text(value: str | None, field: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise _validation("validation_error", f"{field} is required")
    return text


def compute_totals(items: Sequence[LineItem], tax: float | None) -> Tuple[List[dict], float, float, float]:
    if not items:
        raise _validation("items_required")
    normalized: List[dict] = []
    for item in items:
        if not str(item.description or "").strip():
            raise _validation("item_invalid", "description is required")
        if item.quantity is None or float(item.quantity) <= 0:
            raise _validation("item_invalid", "quantity must be positive")
        if item.unit_price is None or float(item.unit_price) < 0:
            raise _validation("item_invalid", "unit_price must not be negative")
        normalized.append(item.as_dict())
    tax_value = float(tax or 0)
    if tax_value < 0:
        raise _validation("amount_invalid", "tax must not be negative")
    subtotal = round(sum(entry["amount"] for entry in normalized), 2)
    tax_value = round(tax_value, 2)
    return normalized, subtotal, tax_value, round(subtotal + tax_value, 2)


def serialize(stage: str, record: Dict[str, Any] | None) -> Dict[str, Any] | None:
    if record is None:
        return None
    payload = {key: value for key, value in record.items() if key != "pdf_data"}
    payload.update(flow_meta(stage, record.get("status")))
    return payload


class LifecycleEngine:
    """Guarded transitions for RFQs, quotations, orders and invoices.

    Each operation runs its writes in one ``db.transaction()``; notifications
    are queued in a ``NotificationOutbox`` and handed to the fan-out only
    after the transaction commits.
    """

    def __init__(
        self,
        *,
        settings: SettingsCache,
        fanout: NotificationFanout,
        renderer,
        ledger: InviteLedger | None = None,
        clock: Clock = utc_now,
        rfq_invite_ttl_days: int = 14,
        order_invite_ttl_days: int = 7,
        users: UserRepository | None = None,
        rfqs: RfqRepository | None = None,
        quotations: QuotationRepository | None = None,
        orders: OrderRepository | None = None,
        invoices: InvoiceRepository | None = None,
        pdf_copies: PdfCopyRepository | None = None,
        status_events: StatusEventRepository | None = None,
    ) -> None:
        self.settings = settings
        self.fanout = fanout
        self.renderer = renderer
        self.clock = clock
        self.rfq_invite_ttl_days = int(rfq_invite_ttl_days)
        self.order_invite_ttl_days = int(order_invite_ttl_days)
        self.users = users or UserRepository()
        self.rfqs = rfqs or RfqRepository()
        self.quotations = quotations or QuotationRepository()
        self.orders = orders or OrderRepository()
        self.invoices = invoices or InvoiceRepository()
        self.pdf_copies = pdf_copies or PdfCopyRepository()
        self.status_events = status_events or StatusEventRepository()
        self.ledger = ledger or InviteLedger(rfqs=self.rfqs, orders=self.orders, clock=clock)
        self.numbers = DocumentNumberAllocator(
            settings,
            rfqs=self.rfqs,
            quotations=self.quotations,
            orders=self.orders,
            invoices=self.invoices,
        )
        self.visibility = VisibilityResolver(self.users)

    # -- shared helpers -------------------------------------------------

    def now_iso(self) -> str:
        return to_iso(self.clock())

    def deliver(self, db, outbox: NotificationOutbox) -> Dict[str, int]:
        if not len(outbox):
            return {"delivered": 0, "failed": 0}
        return self.fanout.deliver(db, outbox)

    def record_transition(
        self,
        db,
        *,
        entity: str,
        entity_id: int,
        from_status: str | None,
        to_status: str | None,
        reason: str | None,
        actor_id: int | None,
        now: str,
    ) -> None:
        self.status_events.add_event(
            db,
            entity=entity,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            actor_id=actor_id,
            now=now,
        )

    def _owned_rfq(self, db, actor: Actor, rfq: Dict[str, Any] | None) -> Dict[str, Any]:
        if rfq is None:
            raise _not_found("rfq_not_found")
        if int(rfq["property_manager_id"]) != int(actor.id):
            raise _forbidden(f"rfq {rfq['id']} is not owned by user {actor.id}")
        return rfq

    def _guard(self, stage: str, record: Dict[str, Any], action: str) -> None:
        if not action_allowed(stage, record.get("status"), action):
            raise status_conflict(stage, record.get("status"), action, allowed_actions(stage, record.get("status")))

    def _property_manager(self, db, user_id: int) -> Dict[str, Any]:
        return self.users.get_by_id(db, int(user_id)) or {"id": int(user_id), "email": None, "role": "PROPERTY_MANAGER"}

    def _repair_generated_order(self, db, rfq: Dict[str, Any]) -> Dict[str, Any]:
        if rfq.get("status") != "CONVERTED_TO_ORDER" or rfq.get("generated_order_id"):
            return rfq
        order = self.orders.find_by_source_rfq(db, int(rfq["id"]))
        if order is None:
            logger.warning("rfq_generated_order_missing", extra={"rfq_id": rfq["id"]})
            return rfq
        self.rfqs.link_generated_order(db, int(rfq["id"]), int(order["id"]))
        logger.info("rfq_generated_order_backfilled", extra={"rfq_id": rfq["id"], "order_id": order["id"]})
        rfq["generated_order_id"] = int(order["id"])
        return rfq

    def _issue_order_invites(self, db, order_id: int, email: str, name: str | None, outbox: NotificationOutbox) -> List[dict]:
        invites = []
        for invite_type in (ORDER_ACCEPT, ORDER_INVOICE):
            invites.append(
                self.ledger.issue(
                    db,
                    invite_type=invite_type,
                    email=email,
                    order_id=order_id,
                    ttl_days=self.order_invite_ttl_days,
                    name=name,
                )
            )
        accept_link, invoice_link = invites[0]["link"], invites[1]["link"]
        outbox.email(
            email,
            "New work order",
            f"<p>A work order was assigned to you.</p>"
            f"<p>Accept it: <a href=\"{accept_link}\">{accept_link}</a></p>"
            f"<p>Submit the invoice: <a href=\"{invoice_link}\">{invoice_link}</a></p>",
            order_id=order_id,
        )
        return [self._public_invite(invite) for invite in invites]

    @staticmethod
    def _public_invite(invite: Dict[str, Any]) -> Dict[str, Any]:
        return {key: invite[key] for key in ("id", "type", "email", "link", "expires_at", "rfq_id", "order_id")}

    # -- RFQ ------------------------------------------------------------

    def create_rfq(self, db, actor: Actor, data: RfqCreateInput) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        title = _required_text(data.title, "title")
        scope_of_work = _required_text(data.scope_of_work, "scope_of_work")
        building_address = _required_text(data.building_address, "building_address")
        urgency = str(data.urgency or "NORMAL").strip().upper()
        if urgency not in URGENCY_LEVELS:
            raise _validation("validation_error", f"urgency {data.urgency!r}")
        if data.estimated_budget is not None and float(data.estimated_budget) < 0:
            raise _validation("amount_invalid", "estimated_budget must not be negative")

        contractor_ids = sorted({int(value) for value in data.contractor_ids})
        contractors = self.users.list_by_ids(db, contractor_ids)
        if len(contractors) != len(contractor_ids) or not all(is_contractor(c["role"]) for c in contractors):
            raise _validation("contractors_not_found")
        external_contacts = []
        for contact in data.external_contacts:
            external_contacts.append(
                {"email": normalize_email(contact.get("email")), "name": (contact.get("name") or "").strip() or None}
            )

        outbox = NotificationOutbox()
        invites: List[dict] = []
        now = self.now_iso()
        with db.transaction():
            rfq_id, rfq_number = self.numbers.insert_numbered(
                db,
                "rfq",
                lambda number: self.rfqs.create(
                    db,
                    rfq_number=number,
                    property_manager_id=int(actor.id),
                    title=title,
                    scope_of_work=scope_of_work,
                    building_address=building_address,
                    urgency=urgency,
                    description=data.description,
                    building_name=data.building_name,
                    estimated_budget=data.estimated_budget,
                    notes=data.notes,
                    attachments=[attachment.as_dict() for attachment in data.attachments],
                    now=now,
                ),
            )
            self.record_transition(
                db,
                entity="rfq",
                entity_id=rfq_id,
                from_status=None,
                to_status="SUBMITTED",
                reason="created",
                actor_id=int(actor.id),
                now=now,
            )

            for contractor in contractors:
                portal = bool(contractor.get("portal_access_enabled")) and bool(contractor.get("is_active"))
                self.rfqs.add_target(
                    db,
                    rfq_id=rfq_id,
                    email=contractor["email"],
                    channel="PORTAL" if portal else "EXTERNAL",
                    contractor_user_id=int(contractor["id"]) if portal else None,
                )
                if portal:
                    outbox.notify(
                        contractor["id"],
                        contractor["role"],
                        f"New RFQ {rfq_number}: {title}",
                        "RFQ_CREATED",
                        rfq_id,
                        "rfq",
                    )
                    outbox.email(
                        contractor["email"],
                        f"New RFQ {rfq_number}",
                        f"<p>A property manager requested a quote: {title}.</p>",
                        rfq_number=rfq_number,
                    )
                else:
                    name = f"{contractor.get('first_name') or ''} {contractor.get('last_name') or ''}".strip()
                    invites.append(self._invite_for_rfq(db, rfq_id, rfq_number, title, contractor["email"], name, outbox))

            for contact in external_contacts:
                self.rfqs.add_target(
                    db,
                    rfq_id=rfq_id,
                    email=contact["email"],
                    channel="EXTERNAL",
                    contractor_user_id=None,
                )
                invites.append(
                    self._invite_for_rfq(db, rfq_id, rfq_number, title, contact["email"], contact["name"], outbox)
                )

            if not contractors and not external_contacts:
                outbox.notify_admins(f"New RFQ {rfq_number} needs a quotation: {title}", "RFQ_CREATED", rfq_id, "rfq")

        logger.info(
            "rfq_created",
            extra={"rfq_id": rfq_id, "rfq_number": rfq_number, "portal_targets": len(contractors), "invites": len(invites)},
        )
        self.deliver(db, outbox)
        payload = serialize("rfq", self.rfqs.get_by_id(db, rfq_id))
        payload["invites"] = invites
        return payload

    def _invite_for_rfq(
        self,
        db,
        rfq_id: int,
        rfq_number: str,
        title: str,
        email: str,
        name: str | None,
        outbox: NotificationOutbox,
    ) -> Dict[str, Any]:
        invite = self.ledger.issue(
            db,
            invite_type=RFQ_QUOTE,
            email=email,
            rfq_id=rfq_id,
            ttl_days=self.rfq_invite_ttl_days,
            name=name,
        )
        outbox.email(
            email,
            f"Request for quote {rfq_number}",
            f"<p>You were invited to quote: {title}.</p>"
            f"<p>Submit your quotation: <a href=\"{invite['link']}\">{invite['link']}</a></p>",
            rfq_number=rfq_number,
        )
        return self._public_invite(invite)

    def list_rfqs(self, db, actor: Actor, *, status: str | None = None) -> List[Dict[str, Any]]:
        scope = self.visibility.scope_for(db, actor)
        records = self.rfqs.list_visible(db, scope, status=status)
        return [serialize("rfq", self._repair_generated_order(db, record)) for record in records]

    def get_rfq(self, db, actor: Actor, rfq_id: int) -> Dict[str, Any]:
        scope = self.visibility.scope_for(db, actor)
        record = require_visible(scope, "rfq", self.rfqs.get_by_id(db, rfq_id), "rfq_not_found")
        payload = serialize("rfq", self._repair_generated_order(db, record))
        payload["history"] = self.status_events.list_for_entity(db, entity="rfq", entity_id=int(rfq_id))
        if int(record["property_manager_id"]) == int(actor.id):
            payload["invites"] = self.ledger.repository.list_for_target(db, rfq_id=int(rfq_id))
        return payload

    def update_rfq_status(self, db, actor: Actor, data: RfqStatusInput) -> Dict[str, Any]:
        action = str(data.action or "").strip().upper()
        if action not in RFQ_ACTIONS:
            raise _validation("action_invalid", f"rfq action {data.action!r}")
        if action == "START_REVIEW":
            return self.start_review(db, actor, data.rfq_id)
        if action == "APPROVE":
            return self.approve_rfq(db, actor, data.rfq_id, quotation_id=data.quotation_id)
        if action == "REJECT":
            return self.reject_rfq(db, actor, data.rfq_id, reason=data.reason)
        return self.convert_rfq_to_order(db, actor, data.rfq_id)

    def start_review(self, db, actor: Actor, rfq_id: int) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_id(db, rfq_id))
        self._guard("rfq", rfq, "start_review")
        now = self.now_iso()
        with db.transaction():
            moved = self.rfqs.transition(
                db,
                int(rfq_id),
                from_statuses={"RECEIVED"},
                to_status=target_status("rfq", "start_review"),
                now=now,
                fields={"review_started_at": now},
            )
            if moved != 1:
                current = self.rfqs.get_by_id(db, rfq_id) or rfq
                raise status_conflict("rfq", current.get("status"), "start_review")
            self.record_transition(
                db,
                entity="rfq",
                entity_id=int(rfq_id),
                from_status="RECEIVED",
                to_status="UNDER_REVIEW",
                reason="review_started",
                actor_id=int(actor.id),
                now=now,
            )
        return serialize("rfq", self.rfqs.get_by_id(db, rfq_id))

    # -- quotations -----------------------------------------------------

    def submit_contractor_quotation(self, db, actor: Actor, rfq_id: int, data: QuotationInput) -> Dict[str, Any]:
        require_roles(actor, "contractor")
        scope = self.visibility.scope_for(db, actor)
        rfq = require_visible(scope, "rfq", self.rfqs.get_by_id(db, rfq_id), "rfq_not_found")
        items, subtotal, tax, total = compute_totals(data.items, data.tax)
        pm = self._property_manager(db, rfq["property_manager_id"])

        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            quotation_id, quote_number = self._create_quotation_for_rfq(
                db,
                rfq_id=int(rfq_id),
                source="PORTAL",
                created_by_id=int(actor.id),
                submitted_by_email=actor.email,
                customer_email=pm.get("email"),
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                notes=data.notes,
                attachments=[attachment.as_dict() for attachment in data.attachments],
                source_token_id=None,
                actor_id=int(actor.id),
                now=now,
            )
            outbox.notify(
                rfq["property_manager_id"],
                pm.get("role") or "PROPERTY_MANAGER",
                f"New quotation {quote_number} received for RFQ {rfq['rfq_number']}",
                "RFQ_QUOTED",
                int(rfq_id),
                "rfq",
            )
        logger.info("quotation_submitted", extra={"rfq_id": rfq_id, "quotation_id": quotation_id, "source": "PORTAL"})
        self.deliver(db, outbox)
        return serialize("quotation", self.quotations.get_by_id(db, quotation_id))

    def create_quotation_for_rfq(self, db, **kwargs) -> Tuple[int, str]:
        """Insert a candidate quotation for an RFQ that is still open; caller owns the transaction."""
        return self._create_quotation_for_rfq(db, **kwargs)

    def _create_quotation_for_rfq(
        self,
        db,
        *,
        rfq_id: int,
        source: str,
        created_by_id: int | None,
        submitted_by_email: str | None,
        customer_email: str | None,
        items: List[dict],
        subtotal: float,
        tax: float,
        total: float,
        notes: str | None,
        attachments: List[dict],
        source_token_id: int | None,
        actor_id: int | None,
        now: str,
        rfq_status_after: str | None = None,
    ) -> Tuple[int, str]:
        if self.rfqs.lock_if_status(db, rfq_id, statuses=QUOTABLE_RFQ_STATUSES, now=now) != 1:
            current = self.rfqs.get_by_id(db, rfq_id)
            if current is None:
                raise _not_found("rfq_not_found")
            raise _conflict("rfq_closed_for_quotes", f"rfq {rfq_id} is {current['status']}")
        # Row lock held until commit; the status read below is stable.
        rfq = self.rfqs.get_by_id(db, rfq_id)

        quotation_id, quote_number = self.numbers.insert_numbered(
            db,
            "quotation",
            lambda number: self.quotations.create(
                db,
                quote_number=number,
                rfq_reference=rfq["rfq_number"],
                source=source,
                created_by_id=created_by_id,
                submitted_by_email=submitted_by_email,
                customer_email=customer_email,
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                status="SENT_TO_CUSTOMER",
                notes=notes,
                attachments=attachments,
                source_token_id=source_token_id,
                now=now,
            ),
        )
        self.record_transition(
            db,
            entity="quotation",
            entity_id=quotation_id,
            from_status=None,
            to_status="SENT_TO_CUSTOMER",
            reason=f"{source.lower()}_submission",
            actor_id=actor_id,
            now=now,
        )

        if rfq_status_after is not None:
            from_statuses = set(QUOTABLE_RFQ_STATUSES)
            fields = {"quoted_at": now}
        else:
            rfq_status_after = "RECEIVED"
            from_statuses = {"SUBMITTED"}
            fields = {"received_at": now}
        moved = self.rfqs.transition(
            db, rfq_id, from_statuses=from_statuses, to_status=rfq_status_after, now=now, fields=fields
        )
        if moved:
            self.record_transition(
                db,
                entity="rfq",
                entity_id=rfq_id,
                from_status=rfq["status"],
                to_status=rfq_status_after,
                reason="quotation_received",
                actor_id=actor_id,
                now=now,
            )
        return quotation_id, quote_number

    def record_admin_quotation(self, db, actor: Actor, rfq_id: int, data: QuotationInput) -> Dict[str, Any]:
        require_roles(actor, "admin")
        scope = self.visibility.scope_for(db, actor)
        rfq = require_visible(scope, "rfq", self.rfqs.get_by_id(db, rfq_id), "rfq_not_found")
        self._guard("rfq", rfq, "record_admin_quote")
        items, subtotal, tax, total = compute_totals(data.items, data.tax)
        pm = self._property_manager(db, rfq["property_manager_id"])

        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            quotation_id, quote_number = self._create_quotation_for_rfq(
                db,
                rfq_id=int(rfq_id),
                source="ADMIN",
                created_by_id=None,
                submitted_by_email=actor.email,
                customer_email=pm.get("email"),
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                notes=data.notes,
                attachments=[attachment.as_dict() for attachment in data.attachments],
                source_token_id=None,
                actor_id=int(actor.id),
                now=now,
                rfq_status_after="QUOTED",
            )
            outbox.notify(
                rfq["property_manager_id"],
                pm.get("role") or "PROPERTY_MANAGER",
                f"Your RFQ {rfq['rfq_number']} was quoted ({quote_number})",
                "RFQ_QUOTED",
                int(rfq_id),
                "rfq",
            )
        self.deliver(db, outbox)
        return serialize("quotation", self.quotations.get_by_id(db, quotation_id))

    def list_quotations(
        self,
        db,
        actor: Actor,
        *,
        rfq_reference: str | None = None,
        status: str | None = None,
    ) -> List[Dict[str, Any]]:
        scope = self.visibility.scope_for(db, actor)
        records = self.quotations.list_visible(db, scope, rfq_reference=rfq_reference, status=status)
        return [serialize("quotation", record) for record in records]

    def compare_quotations_for_rfq(self, db, actor: Actor, rfq_number: str) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_number(db, rfq_number))
        if rfq["status"] not in COMPARABLE_RFQ_STATUSES:
            raise status_conflict("rfq", rfq["status"], "compare_quotes", allowed_actions("rfq", rfq["status"]))
        candidates = self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"], order_by_total=True)
        return {
            "rfq": serialize("rfq", rfq),
            "quotations": [serialize("quotation", candidate) for candidate in candidates],
            "lowest_total": candidates[0]["total"] if candidates else None,
        }

    # -- selection ------------------------------------------------------

    def _render_snapshots(
        self, candidates: Iterable[Dict[str, Any]], winner_id: int
    ) -> Dict[Tuple[int, str], Tuple[str, bytes]]:
        rendered: Dict[Tuple[int, str], Tuple[str, bytes]] = {}
        for candidate in candidates:
            decision = "APPROVED" if int(candidate["id"]) == int(winner_id) else "REJECTED"
            snapshot = dict(candidate, status=decision)
            try:
                data = self.renderer.render_quotation_pdf(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "pdf_snapshot_render_failed", extra={"quotation_id": candidate["id"], "decision": decision}
                )
                continue
            rendered[(int(candidate["id"]), decision)] = (quotation_pdf_filename(candidate, decision), data)
        return rendered

    def _store_snapshot(self, db, **fields) -> bool:
        for attempt in (1, 2):
            try:
                with db.savepoint():
                    self.pdf_copies.upsert(db, **fields)
                return True
            except TRANSIENT_ERRORS:
                if attempt == 2:
                    logger.exception(
                        "pdf_snapshot_store_failed",
                        extra={"quotation_id": fields.get("quotation_id"), "decision": fields.get("decision")},
                    )
                    return False
                logger.warning(
                    "pdf_snapshot_store_retry",
                    extra={"quotation_id": fields.get("quotation_id"), "decision": fields.get("decision")},
                )
        return False

    def _apply_selection(
        self,
        db,
        actor: Actor,
        rfq: Dict[str, Any],
        winner_id: int,
        *,
        from_status: str,
        action: str,
        rendered: Dict[Tuple[int, str], Tuple[str, bytes]],
        outbox: NotificationOutbox,
        now: str,
    ) -> Dict[str, Any]:
        """Approve one candidate, reject the rest and close the RFQ. Runs inside the caller's transaction."""
        rfq_id = int(rfq["id"])
        moved = self.rfqs.transition(
            db, rfq_id, from_statuses={from_status}, to_status="APPROVED", now=now, fields={"approved_at": now}
        )
        if moved != 1:
            current = self.rfqs.get_by_id(db, rfq_id) or rfq
            raise status_conflict("rfq", current.get("status"), action, allowed_actions("rfq", current.get("status")))

        candidates = self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"])
        if not any(int(candidate["id"]) == int(winner_id) for candidate in candidates):
            raise _validation("quotation_not_candidate", f"quotation {winner_id}")

        self.quotations.reject_siblings(
            db, rfq_reference=rfq["rfq_number"], winner_id=int(winner_id), reason=NOT_SELECTED_REASON, now=now
        )
        if self.quotations.approve(db, int(winner_id), rfq_reference=rfq["rfq_number"], now=now) != 1:
            raise _conflict("status_conflict", f"quotation {winner_id} could not be approved")

        self.record_transition(
            db,
            entity="rfq",
            entity_id=rfq_id,
            from_status=from_status,
            to_status="APPROVED",
            reason=f"quotation {winner_id} selected",
            actor_id=int(actor.id),
            now=now,
        )

        snapshots = 0
        rejected: List[int] = []
        for candidate in candidates:
            candidate_id = int(candidate["id"])
            decision = "APPROVED" if candidate_id == int(winner_id) else "REJECTED"
            if decision == "REJECTED":
                rejected.append(candidate_id)
            if candidate["status"] != decision:
                self.record_transition(
                    db,
                    entity="quotation",
                    entity_id=candidate_id,
                    from_status=candidate["status"],
                    to_status=decision,
                    reason=None if decision == "APPROVED" else NOT_SELECTED_REASON,
                    actor_id=int(actor.id),
                    now=now,
                )
            snapshot = rendered.get((candidate_id, decision))
            if snapshot is None:
                logger.warning(
                    "pdf_snapshot_skipped", extra={"quotation_id": candidate_id, "decision": decision}
                )
            elif self._store_snapshot(
                db,
                property_manager_id=int(rfq["property_manager_id"]),
                rfq_id=rfq_id,
                rfq_number=rfq["rfq_number"],
                quotation_id=candidate_id,
                decision=decision,
                filename=snapshot[0],
                pdf_data=snapshot[1],
                now=now,
            ):
                snapshots += 1
            self._queue_decision_notice(outbox, rfq, candidate, decision)

        outbox.notify_admins(
            f"RFQ {rfq['rfq_number']} approved; quotation {winner_id} selected", "RFQ_APPROVED", rfq_id, "rfq"
        )
        return {"winner_id": int(winner_id), "rejected_ids": rejected, "snapshots": snapshots}

    def _queue_decision_notice(
        self, outbox: NotificationOutbox, rfq: Dict[str, Any], candidate: Dict[str, Any], decision: str
    ) -> None:
        if decision == "APPROVED":
            message = f"Your quotation {candidate['quote_number']} for RFQ {rfq['rfq_number']} was approved"
        else:
            message = f"Your quotation {candidate['quote_number']} for RFQ {rfq['rfq_number']} was not selected"
        if candidate.get("created_by_id") is not None:
            outbox.notify(
                candidate["created_by_id"],
                "CONTRACTOR",
                message,
                f"QUOTATION_{decision}",
                int(candidate["id"]),
                "quotation",
            )
        elif candidate.get("source") == "EXTERNAL" and candidate.get("submitted_by_email"):
            outbox.email(
                candidate["submitted_by_email"],
                f"Quotation {candidate['quote_number']}",
                f"<p>{message}.</p>",
                rfq_number=rfq["rfq_number"],
            )

    def select_quotation_for_rfq(self, db, actor: Actor, data: SelectionInput) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_number(db, data.rfq_number))
        if rfq.get("generated_order_id"):
            raise _conflict("rfq_already_converted", f"rfq {rfq['id']}")
        self._guard("rfq", rfq, "select_quote")

        candidates = self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"])
        if not candidates:
            raise _not_found("quotations_not_found")
        if not any(int(candidate["id"]) == int(data.quotation_id) for candidate in candidates):
            raise _validation("quotation_not_candidate", f"quotation {data.quotation_id}")

        rendered = self._render_snapshots(candidates, int(data.quotation_id))
        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            current = self.rfqs.get_by_id(db, int(rfq["id"]))
            if current.get("generated_order_id"):
                raise _conflict("rfq_already_converted", f"rfq {rfq['id']}")
            result = self._apply_selection(
                db,
                actor,
                current,
                int(data.quotation_id),
                from_status="UNDER_REVIEW",
                action="select_quote",
                rendered=rendered,
                outbox=outbox,
                now=now,
            )
        logger.info(
            "quotation_selected",
            extra={
                "rfq_id": rfq["id"],
                "quotation_id": data.quotation_id,
                "rejected": len(result["rejected_ids"]),
                "snapshots": result["snapshots"],
            },
        )
        self.deliver(db, outbox)
        return self._selection_payload(db, int(rfq["id"]), result)

    def _selection_payload(self, db, rfq_id: int, result: Dict[str, Any]) -> Dict[str, Any]:
        rfq = self.rfqs.get_by_id(db, rfq_id)
        candidates = self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"])
        return {
            "rfq": serialize("rfq", rfq),
            "approved": next(
                (serialize("quotation", c) for c in candidates if int(c["id"]) == result["winner_id"]), None
            ),
            "rejected": [serialize("quotation", c) for c in candidates if int(c["id"]) in result["rejected_ids"]],
            "snapshots": result["snapshots"],
        }

    def approve_rfq(self, db, actor: Actor, rfq_id: int, *, quotation_id: int | None = None) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_id(db, rfq_id))
        self._guard("rfq", rfq, "approve")
        candidates = self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"])
        if not candidates:
            raise _conflict("rfq_quote_required", f"rfq {rfq_id}")
        winner_id = self._pick_winner(candidates, quotation_id)

        rendered = self._render_snapshots(candidates, winner_id)
        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            result = self._apply_selection(
                db,
                actor,
                rfq,
                winner_id,
                from_status="QUOTED",
                action="approve",
                rendered=rendered,
                outbox=outbox,
                now=now,
            )
        logger.info("rfq_approved", extra={"rfq_id": rfq_id, "quotation_id": winner_id})
        self.deliver(db, outbox)
        return self._selection_payload(db, int(rfq_id), result)

    @staticmethod
    def _pick_winner(candidates: List[Dict[str, Any]], quotation_id: int | None) -> int:
        if quotation_id is not None:
            if not any(int(candidate["id"]) == int(quotation_id) for candidate in candidates):
                raise _validation("quotation_not_candidate", f"quotation {quotation_id}")
            return int(quotation_id)
        admin_quotes = [candidate for candidate in candidates if candidate.get("source") == "ADMIN"]
        if admin_quotes:
            return int(max(admin_quotes, key=lambda c: (str(c.get("created_at") or ""), int(c["id"])))["id"])
        if len(candidates) == 1:
            return int(candidates[0]["id"])
        raise _validation("quotation_selection_required")

    def reject_rfq(self, db, actor: Actor, rfq_id: int, *, reason: str | None) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_id(db, rfq_id))
        self._guard("rfq", rfq, "reject")
        reason_text = str(reason or "").strip()
        if not reason_text:
            raise _validation("reason_required")
        candidates = self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"])
        if not candidates:
            raise _conflict("rfq_quote_required", f"rfq {rfq_id}")

        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            moved = self.rfqs.transition(
                db,
                int(rfq_id),
                from_statuses={"QUOTED"},
                to_status="REJECTED",
                now=now,
                fields={"rejected_at": now, "rejection_reason": reason_text},
            )
            if moved != 1:
                current = self.rfqs.get_by_id(db, rfq_id) or rfq
                raise status_conflict("rfq", current.get("status"), "reject")
            self.quotations.reject_siblings(
                db, rfq_reference=rfq["rfq_number"], winner_id=None, reason=reason_text, now=now
            )
            self.record_transition(
                db,
                entity="rfq",
                entity_id=int(rfq_id),
                from_status="QUOTED",
                to_status="REJECTED",
                reason=reason_text,
                actor_id=int(actor.id),
                now=now,
            )
            for candidate in candidates:
                if candidate["status"] != "REJECTED":
                    self.record_transition(
                        db,
                        entity="quotation",
                        entity_id=int(candidate["id"]),
                        from_status=candidate["status"],
                        to_status="REJECTED",
                        reason=reason_text,
                        actor_id=int(actor.id),
                        now=now,
                    )
                self._queue_decision_notice(outbox, rfq, candidate, "REJECTED")
            outbox.notify_admins(
                f"RFQ {rfq['rfq_number']} was rejected: {reason_text}", "RFQ_REJECTED", int(rfq_id), "rfq"
            )
        logger.info("rfq_rejected", extra={"rfq_id": rfq_id})
        self.deliver(db, outbox)
        return serialize("rfq", self.rfqs.get_by_id(db, rfq_id))

    # -- orders ---------------------------------------------------------

    def convert_rfq_to_order(self, db, actor: Actor, rfq_id: int) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_id(db, rfq_id))
        if rfq.get("generated_order_id") or rfq["status"] == "CONVERTED_TO_ORDER":
            raise _conflict("rfq_already_converted", f"rfq {rfq_id}")
        self._guard("rfq", rfq, "convert_to_order")
        winner = self.quotations.find_approved_for_rfq(db, rfq["rfq_number"])
        if winner is None:
            raise _conflict("rfq_quote_required", f"rfq {rfq_id} has no approved quotation")

        contractor_id = winner.get("created_by_id")
        contractor_email = winner.get("created_by_email") or winner.get("submitted_by_email")
        if winner.get("source") == "ADMIN":
            contractor_email = None

        outbox = NotificationOutbox()
        invites: List[dict] = []
        now = self.now_iso()
        with db.transaction():
            if self.rfqs.mark_converted(db, int(rfq_id), now=now) != 1:
                current = self.rfqs.get_by_id(db, rfq_id) or rfq
                if current.get("generated_order_id") or current.get("status") == "CONVERTED_TO_ORDER":
                    raise _conflict("rfq_already_converted", f"rfq {rfq_id}")
                raise status_conflict("rfq", current.get("status"), "convert_to_order")
            order_id, order_number = self.numbers.insert_numbered(
                db,
                "order",
                lambda number: self.orders.create(
                    db,
                    order_number=number,
                    property_manager_id=int(rfq["property_manager_id"]),
                    contractor_id=contractor_id,
                    contractor_email=contractor_email,
                    source_rfq_id=int(rfq_id),
                    source_quotation_id=int(winner["id"]),
                    title=rfq["title"],
                    scope_of_work=rfq["scope_of_work"],
                    building_address=rfq.get("building_address"),
                    total_amount=float(winner.get("total") or 0),
                    notes=rfq.get("notes"),
                    now=now,
                ),
            )
            self.rfqs.link_generated_order(db, int(rfq_id), order_id)
            self.record_transition(
                db,
                entity="rfq",
                entity_id=int(rfq_id),
                from_status="APPROVED",
                to_status="CONVERTED_TO_ORDER",
                reason=f"order {order_number}",
                actor_id=int(actor.id),
                now=now,
            )
            self.record_transition(
                db,
                entity="order",
                entity_id=order_id,
                from_status=None,
                to_status="SUBMITTED",
                reason=f"converted from {rfq['rfq_number']}",
                actor_id=int(actor.id),
                now=now,
            )
            if contractor_id is not None:
                outbox.notify(
                    contractor_id, "CONTRACTOR", f"New order {order_number}: {rfq['title']}", "ORDER_CREATED", order_id, "order"
                )
            elif winner.get("source") == "EXTERNAL" and contractor_email:
                invites = self._issue_order_invites(db, order_id, contractor_email, None, outbox)
            else:
                outbox.notify_admins(f"New order {order_number}: {rfq['title']}", "ORDER_CREATED", order_id, "order")
        logger.info("rfq_converted_to_order", extra={"rfq_id": rfq_id, "order_id": order_id, "order_number": order_number})
        self.deliver(db, outbox)
        payload = serialize("order", self.orders.get_by_id(db, order_id))
        payload["invites"] = invites
        return payload

    def create_order(self, db, actor: Actor, data: OrderCreateInput) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        title = _required_text(data.title, "title")
        scope_of_work = _required_text(data.scope_of_work, "scope_of_work")
        if data.total_amount is None or float(data.total_amount) < 0:
            raise _validation("amount_invalid", "total_amount must not be negative")

        contractor = None
        contractor_email = None
        if data.contractor_id is not None:
            contractor = self.users.get_by_id(db, int(data.contractor_id))
            if contractor is None or not is_contractor(contractor["role"]):
                raise _validation("contractors_not_found")
            contractor_email = contractor["email"]
        elif data.contractor_email:
            contractor_email = normalize_email(data.contractor_email)
        portal = contractor is not None and bool(contractor.get("portal_access_enabled")) and bool(contractor.get("is_active"))

        outbox = NotificationOutbox()
        invites: List[dict] = []
        now = self.now_iso()
        with db.transaction():
            order_id, order_number = self.numbers.insert_numbered(
                db,
                "order",
                lambda number: self.orders.create(
                    db,
                    order_number=number,
                    property_manager_id=int(actor.id),
                    contractor_id=int(contractor["id"]) if contractor else None,
                    contractor_email=contractor_email,
                    source_rfq_id=None,
                    source_quotation_id=None,
                    title=title,
                    scope_of_work=scope_of_work,
                    building_address=data.building_address,
                    total_amount=round(float(data.total_amount), 2),
                    notes=data.notes,
                    now=now,
                ),
            )
            self.record_transition(
                db,
                entity="order",
                entity_id=order_id,
                from_status=None,
                to_status="SUBMITTED",
                reason="created",
                actor_id=int(actor.id),
                now=now,
            )
            if portal:
                outbox.notify(contractor["id"], contractor["role"], f"New order {order_number}: {title}", "ORDER_CREATED", order_id, "order")
            elif contractor_email:
                invites = self._issue_order_invites(db, order_id, contractor_email, data.contractor_name, outbox)
            outbox.notify_admins(f"New order {order_number}: {title}", "ORDER_CREATED", order_id, "order")
        logger.info("order_created", extra={"order_id": order_id, "order_number": order_number})
        self.deliver(db, outbox)
        payload = serialize("order", self.orders.get_by_id(db, order_id))
        payload["invites"] = invites
        return payload

    def list_orders(self, db, actor: Actor, *, status: str | None = None) -> List[Dict[str, Any]]:
        scope = self.visibility.scope_for(db, actor)
        return [serialize("order", record) for record in self.orders.list_visible(db, scope, status=status)]

    def get_order(self, db, actor: Actor, order_id: int) -> Dict[str, Any]:
        scope = self.visibility.scope_for(db, actor)
        record = require_visible(scope, "order", self.orders.get_by_id(db, order_id), "order_not_found")
        payload = serialize("order", record)
        payload["invoices"] = [
            serialize("invoice", invoice)
            for invoice in self.invoices.list_visible(db, scope, order_id=int(order_id))
        ]
        payload["history"] = self.status_events.list_for_entity(db, entity="order", entity_id=int(order_id))
        return payload

    def transition_order(
        self,
        db,
        order: Dict[str, Any],
        action: str,
        *,
        actor_id: int | None,
        now: str,
        reason: str,
    ) -> str:
        """Move an order along ``action``; caller owns the transaction."""
        self._guard("order", order, action)
        to_status = target_status("order", action)
        fields = {}
        if action == "accept_order":
            fields["accepted_at"] = now
        elif action == "complete_order":
            fields["completed_at"] = now
        moved = self.orders.transition(
            db, int(order["id"]), from_statuses={order["status"]}, to_status=to_status, now=now, fields=fields
        )
        if moved != 1:
            current = self.orders.get_by_id(db, int(order["id"])) or order
            raise status_conflict("order", current.get("status"), action, allowed_actions("order", current.get("status")))
        self.record_transition(
            db,
            entity="order",
            entity_id=int(order["id"]),
            from_status=order["status"],
            to_status=to_status,
            reason=reason,
            actor_id=actor_id,
            now=now,
        )
        return to_status

    def _contractor_order_action(self, db, actor: Actor, order_id: int, action: str, notice_type: str) -> Dict[str, Any]:
        require_roles(actor, "contractor")
        scope = self.visibility.scope_for(db, actor)
        order = require_visible(scope, "order", self.orders.get_by_id(db, order_id), "order_not_found")
        pm = self._property_manager(db, order["property_manager_id"])
        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            to_status = self.transition_order(db, order, action, actor_id=int(actor.id), now=now, reason=action)
            message = f"Order {order['order_number']} is now {to_status.replace('_', ' ').lower()}"
            outbox.notify(order["property_manager_id"], pm.get("role") or "PROPERTY_MANAGER", message, notice_type, int(order_id), "order")
            outbox.notify_admins(message, notice_type, int(order_id), "order")
        self.deliver(db, outbox)
        return serialize("order", self.orders.get_by_id(db, order_id))

    def accept_order(self, db, actor: Actor, order_id: int) -> Dict[str, Any]:
        return self._contractor_order_action(db, actor, order_id, "accept_order", "ORDER_ACCEPTED")

    def complete_order(self, db, actor: Actor, order_id: int) -> Dict[str, Any]:
        return self._contractor_order_action(db, actor, order_id, "complete_order", "ORDER_COMPLETED")

    def cancel_order(self, db, actor: Actor, order_id: int, *, reason: str | None = None) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        order = self.orders.get_by_id(db, order_id)
        if order is None:
            raise _not_found("order_not_found")
        if int(order["property_manager_id"]) != int(actor.id):
            raise _forbidden(f"order {order_id} is not owned by user {actor.id}")
        reason_text = str(reason or "").strip() or "cancelled_by_property_manager"

        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            self.transition_order(db, order, "cancel_order", actor_id=int(actor.id), now=now, reason=reason_text)
            message = f"Order {order['order_number']} was cancelled"
            if order.get("contractor_id"):
                contractor = self.users.get_by_id(db, int(order["contractor_id"])) or {}
                outbox.notify(
                    order["contractor_id"], contractor.get("role") or "CONTRACTOR", message, "ORDER_CANCELLED", int(order_id), "order"
                )
            outbox.notify_admins(message, "ORDER_CANCELLED", int(order_id), "order")
        logger.info("order_cancelled", extra={"order_id": order_id})
        self.deliver(db, outbox)
        return serialize("order", self.orders.get_by_id(db, order_id))

    # -- invoices -------------------------------------------------------

    def create_invoice_for_order(
        self,
        db,
        order: Dict[str, Any],
        *,
        items: List[dict],
        subtotal: float,
        tax: float,
        total: float,
        attachments: List[dict],
        notes: str | None,
        submitted_by_email: str | None,
        source_token_id: int | None,
        actor_id: int | None,
        now: str,
    ) -> Tuple[int, str]:
        """Insert a SENT_TO_PM invoice; caller owns the transaction."""
        if order["status"] == "CANCELLED":
            raise _conflict("order_cancelled", f"order {order['id']}")
        invoice_id, invoice_number = self.numbers.insert_numbered(
            db,
            "invoice",
            lambda number: self.invoices.create(
                db,
                invoice_number=number,
                order_id=int(order["id"]),
                property_manager_id=int(order["property_manager_id"]),
                contractor_id=order.get("contractor_id"),
                submitted_by_email=submitted_by_email,
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                status="SENT_TO_PM",
                attachments=attachments,
                notes=notes,
                source_token_id=source_token_id,
                now=now,
            ),
        )
        self.record_transition(
            db,
            entity="invoice",
            entity_id=invoice_id,
            from_status=None,
            to_status="SENT_TO_PM",
            reason="submitted",
            actor_id=actor_id,
            now=now,
        )
        return invoice_id, invoice_number

    def create_invoice(self, db, actor: Actor, order_id: int, data: InvoiceInput) -> Dict[str, Any]:
        require_roles(actor, "contractor")
        scope = self.visibility.scope_for(db, actor)
        order = require_visible(scope, "order", self.orders.get_by_id(db, order_id), "order_not_found")
        if order["status"] == "CANCELLED":
            raise _conflict("order_cancelled", f"order {order_id}")
        self._guard("order", order, "create_invoice")
        items, subtotal, tax, total = compute_totals(data.items, data.tax)
        pm = self._property_manager(db, order["property_manager_id"])

        outbox = NotificationOutbox()
        now = self.now_iso()
        with db.transaction():
            invoice_id, invoice_number = self.create_invoice_for_order(
                db,
                order,
                items=items,
                subtotal=subtotal,
                tax=tax,
                total=total,
                attachments=[attachment.as_dict() for attachment in data.attachments],
                notes=data.notes,
                submitted_by_email=actor.email,
                source_token_id=None,
                actor_id=int(actor.id),
                now=now,
            )
            outbox.notify(
                order["property_manager_id"],
                pm.get("role") or "PROPERTY_MANAGER",
                f"Invoice {invoice_number} received for order {order['order_number']}",
                "INVOICE_CREATED",
                invoice_id,
                "invoice",
            )
        logger.info("invoice_created", extra={"invoice_id": invoice_id, "order_id": order_id, "source": "PORTAL"})
        self.deliver(db, outbox)
        return serialize("invoice", self.invoices.get_by_id(db, invoice_id))

    def update_invoice_status(self, db, actor: Actor, data: InvoiceStatusInput) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        action_key = str(data.action or "").strip().upper()
        action = INVOICE_ACTIONS.get(action_key)
        if action is None:
            raise _validation("action_invalid", f"invoice action {data.action!r}")
        scope = self.visibility.scope_for(db, actor)
        invoice = require_visible(scope, "invoice", self.invoices.get_by_id(db, data.invoice_id), "invoice_not_found")
        self._guard("invoice", invoice, action)
        to_status = target_status("invoice", action)
        reason = str(data.reason or "").strip() or None

        outbox = NotificationOutbox()
        now = self.now_iso()
        fields: Dict[str, Any] = {}
        if action == "approve_invoice":
            fields["approved_at"] = now
        elif action == "mark_paid":
            fields["paid_at"] = now
        elif reason:
            fields["rejection_reason"] = reason
        with db.transaction():
            moved = self.invoices.transition(
                db,
                int(invoice["id"]),
                from_statuses={invoice["status"]},
                to_status=to_status,
                now=now,
                fields=fields,
            )
            if moved != 1:
                current = self.invoices.get_by_id(db, int(invoice["id"])) or invoice
                raise status_conflict("invoice", current.get("status"), action)
            self.record_transition(
                db,
                entity="invoice",
                entity_id=int(invoice["id"]),
                from_status=invoice["status"],
                to_status=to_status,
                reason=reason or action,
                actor_id=int(actor.id),
                now=now,
            )
            message = f"Invoice {invoice['invoice_number']} is now {to_status.replace('_', ' ').lower()}"
            if invoice.get("contractor_id") is not None:
                outbox.notify(invoice["contractor_id"], "CONTRACTOR", message, "INVOICE_STATUS_UPDATED", int(invoice["id"]), "invoice")
            elif invoice.get("submitted_by_email"):
                outbox.email(invoice["submitted_by_email"], f"Invoice {invoice['invoice_number']}", f"<p>{message}.</p>")
        self.deliver(db, outbox)
        return serialize("invoice", self.invoices.get_by_id(db, int(invoice["id"])))

    def list_invoices(self, db, actor: Actor, *, status: str | None = None) -> List[Dict[str, Any]]:
        scope = self.visibility.scope_for(db, actor)
        return [serialize("invoice", record) for record in self.invoices.list_visible(db, scope, status=status)]

    # -- decision snapshots ---------------------------------------------

    def list_quotation_pdf_copies(self, db, actor: Actor, *, rfq_number: str | None = None) -> List[Dict[str, Any]]:
        require_roles(actor, "property_manager")
        return self.pdf_copies.list_for_property_manager(db, int(actor.id), rfq_number=rfq_number)

    def get_quotation_pdf_copy(self, db, actor: Actor, copy_id: int) -> Dict[str, Any]:
        require_roles(actor, "property_manager")
        record = self.pdf_copies.get_with_data(db, copy_id)
        if record is None or int(record["property_manager_id"]) != int(actor.id):
            raise _not_found("not_found")
        return record

    def heal_quotation_pdf_copies(self, db, actor: Actor, rfq_number: str) -> Dict[str, Any]:
        """Regenerate decision snapshots missing for an already decided RFQ."""
        require_roles(actor, "property_manager")
        rfq = self._owned_rfq(db, actor, self.rfqs.get_by_number(db, rfq_number))
        decided = [
            candidate
            for candidate in self.quotations.list_candidates_for_rfq(db, rfq["rfq_number"])
            if candidate["status"] in {"APPROVED", "REJECTED"}
        ]
        existing = {
            (int(copy["quotation_id"]), copy["decision"])
            for copy in self.pdf_copies.list_for_property_manager(db, int(actor.id), rfq_number=rfq["rfq_number"])
        }
        missing = [candidate for candidate in decided if (int(candidate["id"]), candidate["status"]) not in existing]
        healed = 0
        now = self.now_iso()
        for candidate in missing:
            decision = candidate["status"]
            try:
                data = self.renderer.render_quotation_pdf(candidate)
            except Exception:  # noqa: BLE001
                logger.exception("pdf_snapshot_render_failed", extra={"quotation_id": candidate["id"], "decision": decision})
                continue
            with db.transaction():
                stored = self._store_snapshot(
                    db,
                    property_manager_id=int(actor.id),
                    rfq_id=int(rfq["id"]),
                    rfq_number=rfq["rfq_number"],
                    quotation_id=int(candidate["id"]),
                    decision=decision,
                    filename=quotation_pdf_filename(candidate, decision),
                    pdf_data=data,
                    now=now,
                )
            healed += 1 if stored else 0
        logger.info("pdf_snapshots_healed", extra={"rfq_id": rfq["id"], "healed": healed, "missing": len(missing)})
        return {"rfq_number": rfq["rfq_number"], "checked": len(decided), "healed": healed}

    # -- settings -------------------------------------------------------

    def update_document_prefix(self, db, actor: Actor, kind: str, prefix: str) -> Dict[str, str]:
        require_roles(actor, "admin")
        with db.transaction():
            self.settings.update_document_prefix(db, kind, prefix, now=self.now_iso())
        return self.settings.document_prefixes(db)
