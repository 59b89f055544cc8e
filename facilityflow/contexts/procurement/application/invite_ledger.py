"""Single-use, time-boxed submission tokens for counterparties without a portal account."""

from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict

from facilityflow.contexts.procurement.domain.visibility import ExternalScope
from facilityflow.contexts.procurement.infrastructure.repositories import (
    InviteRepository,
    OrderRepository,
    RfqRepository,
)
from facilityflow.errors import (
    InviteAlreadyUsedError,
    InviteExpiredError,
    InviteNotFoundError,
    InviteTypeMismatchError,
    NotFoundError,
    ValidationError,
)
from facilityflow.timeutils import Clock, parse_iso, to_iso, utc_now


RFQ_QUOTE = "RFQ_QUOTE"
ORDER_ACCEPT = "ORDER_ACCEPT"
ORDER_INVOICE = "ORDER_INVOICE"

# Which target each invite type is bound to.
INVITE_TARGETS: Dict[str, str] = {
    RFQ_QUOTE: "rfq",
    ORDER_ACCEPT: "order",
    ORDER_INVOICE: "order",
}

UPLOAD_INVITE_TYPES = frozenset({RFQ_QUOTE, ORDER_INVOICE})

MIN_TTL_DAYS = 1
MAX_TTL_DAYS = 90
TOKEN_BYTES = 32

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

logger = logging.getLogger("facilityflow")


def normalize_email(email: str | None) -> str:
    normalized = str(email or "").strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError(code="email_invalid", message_key="email_invalid", http_status=400, critical=False)
    return normalized


@dataclass(frozen=True)
class InviteContext:
    token_id: int
    token: str
    type: str
    email: str
    name: str | None
    expires_at: str
    rfq: Dict[str, Any] | None = None
    order: Dict[str, Any] | None = None

    @property
    def scope(self) -> ExternalScope:
        return ExternalScope(
            token_id=self.token_id,
            rfq_id=int(self.rfq["id"]) if self.rfq else None,
            order_id=int(self.order["id"]) if self.order else None,
        )


class InviteLedger:
    def __init__(
        self,
        repository: InviteRepository | None = None,
        rfqs: RfqRepository | None = None,
        orders: OrderRepository | None = None,
        clock: Clock = utc_now,
        public_base_url: str = "",
    ) -> None:
        self.repository = repository or InviteRepository()
        self.rfqs = rfqs or RfqRepository()
        self.orders = orders or OrderRepository()
        self.clock = clock
        self.public_base_url = str(public_base_url or "").rstrip("/")

    def build_link(self, token: str) -> str:
        return f"{self.public_base_url}/external/{token}"

    def issue(
        self,
        db,
        *,
        invite_type: str,
        email: str,
        ttl_days: int,
        rfq_id: int | None = None,
        order_id: int | None = None,
        name: str | None = None,
    ) -> Dict[str, Any]:
        target = INVITE_TARGETS.get(str(invite_type or ""))
        if target is None:
            raise ValidationError(
                code="invite_target_invalid", message_key="invite_target_invalid", http_status=400, critical=False
            )
        if (target == "rfq") != (rfq_id is not None) or (target == "order") != (order_id is not None):
            raise ValidationError(
                code="invite_target_invalid", message_key="invite_target_invalid", http_status=400, critical=False
            )
        if not isinstance(ttl_days, int) or not MIN_TTL_DAYS <= ttl_days <= MAX_TTL_DAYS:
            raise ValidationError(
                code="invite_ttl_invalid", message_key="invite_ttl_invalid", http_status=400, critical=False
            )
        bound_email = normalize_email(email)
        if target == "rfq" and self.rfqs.get_by_id(db, int(rfq_id)) is None:
            raise NotFoundError(code="rfq_not_found", message_key="rfq_not_found", http_status=404, critical=False)
        if target == "order" and self.orders.get_by_id(db, int(order_id)) is None:
            raise NotFoundError(code="order_not_found", message_key="order_not_found", http_status=404, critical=False)

        now = self.clock()
        expires_at = to_iso(now + timedelta(days=ttl_days))
        token = secrets.token_urlsafe(TOKEN_BYTES)
        token_id = self.repository.create(
            db,
            token=token,
            invite_type=invite_type,
            email=bound_email,
            name=(name or "").strip() or None,
            rfq_id=rfq_id,
            order_id=order_id,
            expires_at=expires_at,
            now=to_iso(now),
        )
        logger.info(
            "external_invite_issued",
            extra={"token_id": token_id, "invite_type": invite_type, "rfq_id": rfq_id, "order_id": order_id},
        )
        return {
            "id": token_id,
            "type": invite_type,
            "email": bound_email,
            "token": token,
            "link": self.build_link(token),
            "expires_at": expires_at,
            "rfq_id": rfq_id,
            "order_id": order_id,
        }

    def _load_valid(self, db, token: str) -> Dict[str, Any]:
        record = self.repository.get_by_token(db, token) if token else None
        if record is None:
            raise InviteNotFoundError(http_status=404, critical=False)
        expires_at = parse_iso(record.get("expires_at"))
        if expires_at is None or self._now() > expires_at:
            raise InviteExpiredError(http_status=409, critical=False, details=f"token {record['id']}")
        if record.get("used_at"):
            raise InviteAlreadyUsedError(http_status=409, critical=False, details=f"token {record['id']}")
        return record

    def _now(self) -> datetime:
        return self.clock()

    def redeem(self, db, token: str, *, expected_type: str | None = None) -> InviteContext:
        """Validate ``token`` and return what it is bound to. Does not consume it."""
        record = self._load_valid(db, str(token or "").strip())
        if expected_type is not None and record["type"] != expected_type:
            raise InviteTypeMismatchError(
                http_status=403,
                critical=False,
                details=f"token {record['id']} is {record['type']}, expected {expected_type}",
            )
        rfq = self.rfqs.get_by_id(db, int(record["rfq_id"])) if record.get("rfq_id") is not None else None
        order = self.orders.get_by_id(db, int(record["order_id"])) if record.get("order_id") is not None else None
        if rfq is None and order is None:
            raise InviteNotFoundError(http_status=404, critical=False, details=f"token {record['id']} target missing")
        return InviteContext(
            token_id=int(record["id"]),
            token=str(record["token"]),
            type=str(record["type"]),
            email=str(record["email"]),
            name=record.get("name"),
            expires_at=str(record["expires_at"]),
            rfq=rfq,
            order=order,
        )

    def consume(self, db, context: InviteContext) -> str:
        """Mark the token used; must run in the same transaction as the action it authorises."""
        used_at = to_iso(self.clock())
        if self.repository.mark_used(db, context.token_id, now=used_at) != 1:
            raise InviteAlreadyUsedError(http_status=409, critical=False, details=f"token {context.token_id}")
        logger.info("external_invite_consumed", extra={"token_id": context.token_id, "invite_type": context.type})
        return used_at
