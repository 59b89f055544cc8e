from __future__ import annotations

from typing import List

from facilityflow.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        recipient_id: int,
        recipient_role: str,
        message: str,
        notification_type: str,
        related_entity_id: int | None,
        related_entity_type: str | None,
        now: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (
                recipient_id, recipient_role, message, type, related_entity_id, related_entity_type, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (recipient_id, recipient_role, message, notification_type, related_entity_id, related_entity_type, now),
        )
        return self.returned_id(cursor)

    def list_for_recipient(self, db, recipient_id: int, *, limit: int = 100) -> List[dict]:
        rows = db.execute(
            """
            SELECT id, recipient_id, recipient_role, message, type, related_entity_id, related_entity_type,
                   is_read, created_at
            FROM notifications
            WHERE recipient_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (recipient_id, int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)
