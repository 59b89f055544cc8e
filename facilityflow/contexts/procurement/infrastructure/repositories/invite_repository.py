from __future__ import annotations

from typing import List

from facilityflow.infrastructure.repositories.base import BaseRepository


class InviteRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        token: str,
        invite_type: str,
        email: str,
        name: str | None,
        rfq_id: int | None,
        order_id: int | None,
        expires_at: str,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO external_submission_tokens (token, type, email, name, rfq_id, order_id, expires_at, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (token, invite_type, email, name, rfq_id, order_id, expires_at, now),
        )
        return self.returned_id(cursor)

    def get_by_token(self, db, token: str) -> dict | None:
        row = db.execute(
            """
            SELECT id, token, type, email, name, rfq_id, order_id, expires_at, used_at, created_at
            FROM external_submission_tokens
            WHERE token = ?
            LIMIT 1
            """,
            (str(token or "").strip(),),
        ).fetchone()
        return self.decode_row(row)

    def mark_used(self, db, token_id: int, *, now: str) -> int:
        cursor = db.execute(
            """
            UPDATE external_submission_tokens
            SET used_at = ?
            WHERE id = ? AND used_at IS NULL
            """,
            (now, token_id),
        )
        return int(cursor.rowcount or 0)

    def list_for_target(self, db, *, rfq_id: int | None = None, order_id: int | None = None) -> List[dict]:
        if rfq_id is not None:
            column, value = "rfq_id", rfq_id
        else:
            column, value = "order_id", order_id
        rows = db.execute(
            f"""
            SELECT id, type, email, name, rfq_id, order_id, expires_at, used_at, created_at
            FROM external_submission_tokens
            WHERE {column} = ?
            ORDER BY id
            """,
            (value,),
        ).fetchall()
        return self.rows_to_dicts(rows)
