from __future__ import annotations

from typing import Iterable, List

from facilityflow.infrastructure.repositories.base import BaseRepository
from facilityflow.policies import ADMIN_ROLES, CONTRACTOR_ROLES


_USER_COLUMNS = "id, email, first_name, last_name, role, company_affiliation, portal_access_enabled, is_active"


class UserRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        email: str,
        role: str,
        first_name: str = "",
        last_name: str = "",
        company_affiliation: str | None = None,
        portal_access_enabled: bool = True,
        is_active: bool = True,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO users (email, first_name, last_name, role, company_affiliation, portal_access_enabled, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                email.strip().lower(),
                first_name,
                last_name,
                role,
                company_affiliation,
                1 if portal_access_enabled else 0,
                1 if is_active else 0,
            ),
        )
        return self.returned_id(cursor)

    def get_by_id(self, db, user_id: int) -> dict | None:
        row = db.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ? LIMIT 1",
            (user_id,),
        ).fetchone()
        return self.decode_row(row)

    def get_by_email(self, db, email: str) -> dict | None:
        row = db.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE email = ? LIMIT 1",
            (str(email or "").strip().lower(),),
        ).fetchone()
        return self.decode_row(row)

    def list_by_ids(self, db, user_ids: Iterable[int]) -> List[dict]:
        ids = sorted({int(user_id) for user_id in user_ids})
        if not ids:
            return []
        rows = db.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id IN ({self.placeholders(ids)}) ORDER BY id",
            ids,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def company_contractor_ids(self, db, company_affiliation: str) -> List[int]:
        roles = sorted(CONTRACTOR_ROLES)
        rows = db.execute(
            f"""
            SELECT id
            FROM users
            WHERE LOWER(TRIM(company_affiliation)) = ?
              AND role IN ({self.placeholders(roles)})
            ORDER BY id
            """,
            (str(company_affiliation).strip().lower(), *roles),
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def contractor_user_ids(self, db) -> List[int]:
        roles = sorted(CONTRACTOR_ROLES)
        rows = db.execute(
            f"SELECT id FROM users WHERE role IN ({self.placeholders(roles)}) ORDER BY id",
            roles,
        ).fetchall()
        return [int(row["id"]) for row in rows]

    def list_admins(self, db) -> List[dict]:
        roles = sorted(ADMIN_ROLES)
        rows = db.execute(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users
            WHERE role IN ({self.placeholders(roles)}) AND is_active = 1
            ORDER BY id
            """,
            roles,
        ).fetchall()
        return self.rows_to_dicts(rows)
