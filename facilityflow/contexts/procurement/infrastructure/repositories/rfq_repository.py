from __future__ import annotations

from typing import Any, Dict, Iterable, List

from facilityflow.infrastructure.repositories.base import BaseRepository


# Columns a transition may stamp; keeps dynamic SET clauses to known names.
_TRANSITION_COLUMNS = {
    "received_at",
    "review_started_at",
    "quoted_at",
    "approved_at",
    "rejected_at",
    "converted_at",
    "rejection_reason",
}


class RfqRepository(BaseRepository):
    json_columns = ("attachments",)

    def count_with_prefix(self, db, prefix: str) -> int:
        return self.count_sequenced(db, "rfqs", "rfq_number", prefix)

    def create(
        self,
        db,
        *,
        rfq_number: str,
        property_manager_id: int,
        title: str,
        scope_of_work: str,
        building_address: str,
        urgency: str,
        description: str | None,
        building_name: str | None,
        estimated_budget: float | None,
        notes: str | None,
        attachments: List[dict],
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO rfqs (
                rfq_number, property_manager_id, title, description, scope_of_work, building_name,
                building_address, urgency, estimated_budget, notes, attachments, status,
                submitted_at, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'SUBMITTED', ?, ?, ?)
            RETURNING id
            """,
            (
                rfq_number,
                property_manager_id,
                title,
                description,
                scope_of_work,
                building_name,
                building_address,
                urgency,
                estimated_budget,
                notes,
                self.encode_json(attachments),
                now,
                now,
                now,
            ),
        )
        return self.returned_id(cursor)

    def add_target(self, db, *, rfq_id: int, email: str, channel: str, contractor_user_id: int | None) -> None:
        db.execute(
            """
            INSERT INTO rfq_targets (rfq_id, contractor_user_id, email, channel)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (rfq_id, email) DO NOTHING
            """,
            (rfq_id, contractor_user_id, email.strip().lower(), channel),
        )

    def list_targets(self, db, rfq_ids: Iterable[int]) -> Dict[int, List[dict]]:
        ids = sorted({int(rfq_id) for rfq_id in rfq_ids})
        if not ids:
            return {}
        rows = db.execute(
            f"""
            SELECT rfq_id, contractor_user_id, email, channel
            FROM rfq_targets
            WHERE rfq_id IN ({self.placeholders(ids)})
            ORDER BY id
            """,
            ids,
        ).fetchall()
        grouped: Dict[int, List[dict]] = {rfq_id: [] for rfq_id in ids}
        for row in rows:
            grouped[int(row["rfq_id"])].append(dict(row))
        return grouped

    def _hydrate(self, db, records: List[dict]) -> List[dict]:
        targets = self.list_targets(db, [record["id"] for record in records])
        for record in records:
            record_targets = targets.get(int(record["id"]), [])
            record["targets"] = record_targets
            record["target_contractor_ids"] = [
                int(target["contractor_user_id"])
                for target in record_targets
                if target.get("contractor_user_id") is not None
            ]
        return records

    def get_by_id(self, db, rfq_id: int) -> dict | None:
        row = db.execute("SELECT * FROM rfqs WHERE id = ? LIMIT 1", (rfq_id,)).fetchone()
        record = self.decode_row(row)
        if record is None:
            return None
        return self._hydrate(db, [record])[0]

    def get_by_number(self, db, rfq_number: str) -> dict | None:
        row = db.execute(
            "SELECT * FROM rfqs WHERE rfq_number = ? LIMIT 1",
            (str(rfq_number or "").strip(),),
        ).fetchone()
        record = self.decode_row(row)
        if record is None:
            return None
        return self._hydrate(db, [record])[0]

    def list_visible(self, db, scope, *, status: str | None = None, limit: int = 200) -> List[dict]:
        clause, params = scope.clause("rfq", "r")
        filters = [clause]
        if status:
            filters.append("r.status = ?")
            params = [*params, status]
        rows = db.execute(
            f"""
            SELECT r.*
            FROM rfqs r
            WHERE {" AND ".join(filters)}
            ORDER BY r.created_at DESC, r.id DESC
            LIMIT ?
            """,
            (*params, int(limit)),
        ).fetchall()
        return self._hydrate(db, self.rows_to_dicts(rows))

    def transition(
        self,
        db,
        rfq_id: int,
        *,
        from_statuses: Iterable[str],
        to_status: str,
        now: str,
        fields: Dict[str, Any] | None = None,
    ) -> int:
        """Conditional status change; returns the number of rows moved (0 or 1)."""
        expected = sorted(set(from_statuses))
        extra = dict(fields or {})
        unknown = set(extra) - _TRANSITION_COLUMNS
        if unknown:
            raise ValueError(f"unsupported rfq columns: {sorted(unknown)}")
        assignments = ["status = ?", "updated_at = ?", *[f"{column} = ?" for column in extra]]
        cursor = db.execute(
            f"""
            UPDATE rfqs
            SET {", ".join(assignments)}
            WHERE id = ? AND status IN ({self.placeholders(expected)})
            """,
            (to_status, now, *extra.values(), rfq_id, *expected),
        )
        return int(cursor.rowcount or 0)

    def lock_if_status(self, db, rfq_id: int, *, statuses: Iterable[str], now: str) -> int:
        """Touch the row only while it is in one of ``statuses``; holds the row lock until commit."""
        expected = sorted(set(statuses))
        cursor = db.execute(
            f"UPDATE rfqs SET updated_at = ? WHERE id = ? AND status IN ({self.placeholders(expected)})",
            (now, rfq_id, *expected),
        )
        return int(cursor.rowcount or 0)

    def mark_converted(self, db, rfq_id: int, *, now: str) -> int:
        cursor = db.execute(
            """
            UPDATE rfqs
            SET status = 'CONVERTED_TO_ORDER', converted_at = ?, updated_at = ?
            WHERE id = ? AND status = 'APPROVED' AND generated_order_id IS NULL
            """,
            (now, now, rfq_id),
        )
        return int(cursor.rowcount or 0)

    def link_generated_order(self, db, rfq_id: int, order_id: int) -> int:
        cursor = db.execute(
            """
            UPDATE rfqs
            SET generated_order_id = ?
            WHERE id = ? AND generated_order_id IS NULL
            """,
            (order_id, rfq_id),
        )
        return int(cursor.rowcount or 0)
