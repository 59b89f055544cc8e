from __future__ import annotations

from typing import Dict

from facilityflow.infrastructure.repositories.base import BaseRepository


class SettingsRepository(BaseRepository):
    def load_all(self, db) -> Dict[str, str]:
        rows = db.execute("SELECT key, value FROM system_settings").fetchall()
        return {str(row["key"]): str(row["value"]) for row in rows if row["value"] is not None}

    def upsert(self, db, key: str, value: str, *, now: str) -> None:
        db.execute(
            """
            INSERT INTO system_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, now),
        )
