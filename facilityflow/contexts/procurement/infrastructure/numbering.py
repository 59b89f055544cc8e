from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Tuple

from facilityflow.contexts.procurement.infrastructure.repositories import (
    InvoiceRepository,
    OrderRepository,
    QuotationRepository,
    RfqRepository,
)
from facilityflow.db import INTEGRITY_ERRORS
from facilityflow.errors import ConflictError, ValidationError
from facilityflow.settings import SettingsCache


NUMBER_WIDTH = 4
NUMBER_PATTERN = re.compile(r"^[A-Z][A-Z0-9-]{1,15}-\d{4,}$")

_NUMBER_COLUMNS: Dict[str, str] = {
    "rfq": "rfq_number",
    "quotation": "quote_number",
    "order": "order_number",
    "invoice": "invoice_number",
}

logger = logging.getLogger("facilityflow")


def format_document_number(prefix: str, sequence: int) -> str:
    return f"{prefix}-{int(sequence):0{NUMBER_WIDTH}d}"


def validate_document_number(number: str) -> str:
    if not NUMBER_PATTERN.match(str(number or "")):
        raise ValidationError(
            code="document_number_invalid",
            message_key="document_number_invalid",
            http_status=400,
            critical=False,
            details=f"document number {number!r}",
        )
    return number


def is_number_collision(exc: Exception, kind: str) -> bool:
    return _NUMBER_COLUMNS[kind] in str(exc)


class DocumentNumberAllocator:
    """Allocates ``PREFIX-0001`` style numbers from the rows already stored.

    The insert runs inside a savepoint; a unique violation on the number
    column rolls back just that insert, the number is recomputed and the
    insert is attempted once more before surfacing a conflict.
    """

    max_attempts = 2

    def __init__(
        self,
        settings: SettingsCache,
        *,
        rfqs: RfqRepository | None = None,
        quotations: QuotationRepository | None = None,
        orders: OrderRepository | None = None,
        invoices: InvoiceRepository | None = None,
    ) -> None:
        self.settings = settings
        self._counters = {
            "rfq": rfqs or RfqRepository(),
            "quotation": quotations or QuotationRepository(),
            "order": orders or OrderRepository(),
            "invoice": invoices or InvoiceRepository(),
        }

    def next_number(self, db, kind: str) -> str:
        prefix = self.settings.document_prefix(db, kind)
        existing = self._counters[kind].count_with_prefix(db, prefix)
        return validate_document_number(format_document_number(prefix, existing + 1))

    def insert_numbered(self, db, kind: str, insert: Callable[[str], int]) -> Tuple[int, str]:
        last_error: Exception | None = None
        for attempt in range(1, self.max_attempts + 1):
            number = self.next_number(db, kind)
            try:
                with db.savepoint():
                    return insert(number), number
            except INTEGRITY_ERRORS as exc:
                if not is_number_collision(exc, kind):
                    raise
                last_error = exc
                logger.warning(
                    "document_number_collision",
                    extra={"document_kind": kind, "document_number": number, "attempt": attempt},
                )
        raise ConflictError(
            code="duplicate_document_number",
            message_key="duplicate_document_number",
            http_status=409,
            critical=False,
            details=str(last_error),
        )
