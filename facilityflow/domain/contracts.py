from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    email: str
    company_affiliation: str | None = None
    display_name: str | None = None


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: float
    unit_price: float

    @property
    def amount(self) -> float:
        return round(self.quantity * self.unit_price, 2)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": self.unit_price,
            "amount": self.amount,
        }


@dataclass(frozen=True)
class Attachment:
    url: str
    name: str | None = None
    content_type: str | None = None

    def as_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "name": self.name, "content_type": self.content_type}


@dataclass(frozen=True)
class RfqCreateInput:
    title: str
    scope_of_work: str
    building_address: str
    urgency: str = "NORMAL"
    description: str | None = None
    building_name: str | None = None
    estimated_budget: float | None = None
    notes: str | None = None
    contractor_ids: List[int] = field(default_factory=list)
    external_contacts: List[Dict[str, str]] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class QuotationInput:
    items: List[LineItem]
    tax: float = 0.0
    notes: str | None = None
    attachments: List[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class RfqStatusInput:
    rfq_id: int
    action: str
    quotation_id: int | None = None
    reason: str | None = None


@dataclass(frozen=True)
class SelectionInput:
    rfq_number: str
    quotation_id: int


@dataclass(frozen=True)
class OrderCreateInput:
    title: str
    scope_of_work: str
    total_amount: float
    building_address: str | None = None
    contractor_id: int | None = None
    contractor_email: str | None = None
    contractor_name: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InvoiceInput:
    items: List[LineItem]
    tax: float = 0.0
    attachments: List[Attachment] = field(default_factory=list)
    notes: str | None = None


@dataclass(frozen=True)
class InvoiceStatusInput:
    invoice_id: int
    action: str
    reason: str | None = None


@dataclass(frozen=True)
class ExternalInvoiceInput:
    amount: float
    attachments: List[Attachment] = field(default_factory=list)
    description: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class InviteIssueInput:
    type: str
    email: str
    rfq_id: int | None = None
    order_id: int | None = None
    ttl_days: int = 14
    name: str | None = None
