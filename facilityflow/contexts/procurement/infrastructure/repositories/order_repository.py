from __future__ import annotations

from typing import Any, Dict, Iterable, List

from facilityflow.infrastructure.repositories.base import BaseRepository


_TRANSITION_COLUMNS = {"accepted_at", "completed_at"}


class OrderRepository(BaseRepository):
    def count_with_prefix(self, db, prefix: str) -> int:
        return self.count_sequenced(db, "orders", "order_number", prefix)

    def create(
        self,
        db,
        *,
        order_number: str,
        property_manager_id: int,
        contractor_id: int | None,
        contractor_email: str | None,
        source_rfq_id: int | None,
        source_quotation_id: int | None,
        title: str,
        scope_of_work: str,
        building_address: str | None,
        total_amount: float,
        notes: str | None,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO orders (
                order_number, property_manager_id, contractor_id, contractor_email, source_rfq_id,
                source_quotation_id, title, scope_of_work, building_address, total_amount, status, notes,
                submitted_at, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'SUBMITTED', ?, ?, ?, ?)
            RETURNING id
            """,
            (
                order_number,
                property_manager_id,
                contractor_id,
                contractor_email,
                source_rfq_id,
                source_quotation_id,
                title,
                scope_of_work,
                building_address,
                total_amount,
                notes,
                now,
                now,
                now,
            ),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, order_id: int) -> dict | None:
        row = db.execute("SELECT * FROM orders WHERE id = ? LIMIT 1", (order_id,)).fetchone()
        return self.decode_row(row)

    def get_by_number(self, db, order_number: str) -> dict | None:
        row = db.execute("SELECT * FROM orders WHERE order_number = ? LIMIT 1", (order_number,)).fetchone()
        return self.decode_row(row)

    def find_by_source_rfq(self, db, rfq_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM orders WHERE source_rfq_id = ? ORDER BY id LIMIT 1",
            (rfq_id,),
        ).fetchone()
        return self.decode_row(row)

    def list_visible(self, db, scope, *, status: str | None = None, limit: int = 200) -> List[dict]:
        clause, params = scope.clause("order", "o")
        filters = [clause]
        if status:
            filters.append("o.status = ?")
            params = [*params, status]
        rows = db.execute(
            f"""
            SELECT o.*
            FROM orders o
            WHERE {" AND ".join(filters)}
            ORDER BY o.created_at DESC, o.id DESC
            LIMIT ?
            """,
            (*params, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def transition(
        self,
        db,
        order_id: int,
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
            raise ValueError(f"unsupported order columns: {sorted(unknown)}")
        assignments = ["status = ?", "updated_at = ?", *[f"{column} = ?" for column in extra]]
        cursor = db.execute(
            f"""
            UPDATE orders
            SET {", ".join(assignments)}
            WHERE id = ? AND status IN ({self.placeholders(expected)})
            """,
            (to_status, now, *extra.values(), order_id, *expected),
        )
        return int(cursor.rowcount or 0)
