from __future__ import annotations

from typing import List

from facilityflow.infrastructure.repositories.base import BaseRepository
from facilityflow.procurement.flow_policy import CANDIDATE_QUOTATION_STATUSES


_CANDIDATE_STATUSES = tuple(sorted(CANDIDATE_QUOTATION_STATUSES))

_SELECT = """
    SELECT q.*,
           r.id AS rfq_id,
           r.property_manager_id AS rfq_property_manager_id,
           u.email AS created_by_email,
           u.first_name AS created_by_first_name,
           u.last_name AS created_by_last_name,
           u.company_affiliation AS created_by_company
    FROM quotations q
    LEFT JOIN rfqs r ON r.rfq_number = q.rfq_reference
    LEFT JOIN users u ON u.id = q.created_by_id
"""


class QuotationRepository(BaseRepository):
    json_columns = ("items", "attachments")

    def count_with_prefix(self, db, prefix: str) -> int:
        return self.count_sequenced(db, "quotations", "quote_number", prefix)

    def create(
        self,
        db,
        *,
        quote_number: str,
        rfq_reference: str | None,
        source: str,
        created_by_id: int | None,
        submitted_by_email: str | None,
        customer_email: str | None,
        items: List[dict],
        subtotal: float,
        tax: float,
        total: float,
        status: str,
        notes: str | None,
        attachments: List[dict],
        source_token_id: int | None,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotations (
                quote_number, rfq_reference, source, created_by_id, submitted_by_email, customer_email,
                items, subtotal, tax, total, status, notes, attachments, source_token_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                quote_number,
                rfq_reference,
                source,
                created_by_id,
                submitted_by_email,
                customer_email,
                self.encode_json(items),
                subtotal,
                tax,
                total,
                status,
                notes,
                self.encode_json(attachments),
                source_token_id,
                now,
                now,
            ),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, quotation_id: int) -> dict | None:
        row = db.execute(f"{_SELECT} WHERE q.id = ? LIMIT 1", (quotation_id,)).fetchone()
        return self.decode_row(row)

    def list_candidates_for_rfq(self, db, rfq_number: str, *, order_by_total: bool = False) -> List[dict]:
        """Quotations answering ``rfq_number``.

        The link between a quotation and its RFQ is the RFQ business number, so
        every caller that needs "the quotes for this RFQ" goes through here.
        """
        order_by = "q.total ASC, q.id ASC" if order_by_total else "q.created_at ASC, q.id ASC"
        rows = db.execute(
            f"""
            {_SELECT}
            WHERE q.rfq_reference = ?
              AND q.status IN ({self.placeholders(_CANDIDATE_STATUSES)})
            ORDER BY {order_by}
            """,
            (str(rfq_number or "").strip(), *_CANDIDATE_STATUSES),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_visible(
        self,
        db,
        scope,
        *,
        rfq_reference: str | None = None,
        status: str | None = None,
        limit: int = 200,
    ) -> List[dict]:
        clause, params = scope.clause("quotation", "q")
        filters = [clause]
        if rfq_reference:
            filters.append("q.rfq_reference = ?")
            params = [*params, rfq_reference]
        if status:
            filters.append("q.status = ?")
            params = [*params, status]
        rows = db.execute(
            f"""
            {_SELECT}
            WHERE {" AND ".join(filters)}
            ORDER BY q.created_at DESC, q.id DESC
            LIMIT ?
            """,
            (*params, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def reject_siblings(self, db, *, rfq_reference: str, winner_id: int | None, reason: str, now: str) -> int:
        params: list = [reason, now, rfq_reference, *_CANDIDATE_STATUSES]
        winner_filter = ""
        if winner_id is not None:
            winner_filter = "AND id <> ?"
            params.append(winner_id)
        cursor = db.execute(
            f"""
            UPDATE quotations
            SET status = 'REJECTED', rejection_reason = ?, updated_at = ?
            WHERE rfq_reference = ?
              AND status IN ({self.placeholders(_CANDIDATE_STATUSES)})
              {winner_filter}
            """,
            params,
        )
        return int(cursor.rowcount or 0)

    def approve(self, db, quotation_id: int, *, rfq_reference: str, now: str) -> int:
        cursor = db.execute(
            f"""
            UPDATE quotations
            SET status = 'APPROVED', rejection_reason = NULL, updated_at = ?
            WHERE id = ? AND rfq_reference = ?
              AND status IN ({self.placeholders(_CANDIDATE_STATUSES)})
            """,
            (now, quotation_id, rfq_reference, *_CANDIDATE_STATUSES),
        )
        return int(cursor.rowcount or 0)

    def find_approved_for_rfq(self, db, rfq_number: str) -> dict | None:
        row = db.execute(
            f"{_SELECT} WHERE q.rfq_reference = ? AND q.status = 'APPROVED' LIMIT 1",
            (rfq_number,),
        ).fetchone()
        return self.decode_row(row)
