from __future__ import annotations

from typing import Any, Dict, Iterable, List

from facilityflow.infrastructure.repositories.base import BaseRepository


_TRANSITION_COLUMNS = {"approved_at", "paid_at", "rejection_reason"}


class InvoiceRepository(BaseRepository):
    json_columns = ("items", "attachments")

    def count_with_prefix(self, db, prefix: str) -> int:
        return self.count_sequenced(db, "invoices", "invoice_number", prefix)

    def create(
        self,
        db,
        *,
        invoice_number: str,
        order_id: int,
        property_manager_id: int,
        contractor_id: int | None,
        submitted_by_email: str | None,
        items: List[dict],
        subtotal: float,
        tax: float,
        total: float,
        status: str,
        attachments: List[dict],
        notes: str | None,
        source_token_id: int | None,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO invoices (
                invoice_number, order_id, property_manager_id, contractor_id, submitted_by_email, items,
                subtotal, tax, total, status, attachments, notes, sent_at, source_token_id, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                invoice_number,
                order_id,
                property_manager_id,
                contractor_id,
                submitted_by_email,
                self.encode_json(items),
                subtotal,
                tax,
                total,
                status,
                self.encode_json(attachments),
                notes,
                now if status == "SENT_TO_PM" else None,
                source_token_id,
                now,
                now,
            ),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, invoice_id: int) -> dict | None:
        row = db.execute("SELECT * FROM invoices WHERE id = ? LIMIT 1", (invoice_id,)).fetchone()
        return self.decode_row(row)

    def find_by_source_token(self, db, token_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM invoices WHERE source_token_id = ? LIMIT 1",
            (token_id,),
        ).fetchone()
        return self.decode_row(row)

    def list_for_order(self, db, order_id: int) -> List[dict]:
        rows = db.execute(
            "SELECT * FROM invoices WHERE order_id = ? ORDER BY id",
            (order_id,),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_visible(
        self,
        db,
        scope,
        *,
        status: str | None = None,
        order_id: int | None = None,
        limit: int = 200,
    ) -> List[dict]:
        clause, params = scope.clause("invoice", "i")
        filters = [clause]
        if status:
            filters.append("i.status = ?")
            params = [*params, status]
        if order_id:
            filters.append("i.order_id = ?")
            params = [*params, order_id]
        rows = db.execute(
            f"""
            SELECT i.*, o.order_number
            FROM invoices i
            JOIN orders o ON o.id = i.order_id
            WHERE {" AND ".join(filters)}
            ORDER BY i.created_at DESC, i.id DESC
            LIMIT ?
            """,
            (*params, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def transition(
        self,
        db,
        invoice_id: int,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        now: str,
        fields: Dict[str, Any] | None = None,
    ) -> int:
        expected = sorted(set(from_statuses))
        extra = dict(fields or {})
        unknown = set(extra) - _TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"unsupported invoice columns: {sorted(unknown)}")
        assignments = ["status = ?", "updated_at = ?", *[f"{column} = ?" for column in extra]]
        cursor = db.execute(
            f"""
            UPDATE invoices
            SET {", ".join(assignments)}
            WHERE id = ? AND status IN ({self.placeholders(expected)})
            """,
            (to_status, now, *extra.values(), invoice_id, *expected),
        )
        return int(cursor.rowcount or 0)
