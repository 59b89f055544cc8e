from __future__ import annotations

from typing import List

from facilityflow.infrastructure.repositories.base import BaseRepository


class PdfCopyRepository(BaseRepository):
    def upsert(
        self,
        db,
        *,
        property_manager_id: int,
        rfq_id: int | None,
        rfq_number: str | None,
        quotation_id: int,
        decision: str,
        filename: str,
        pdf_data: bytes,
        now: str,
    ) -> None:
        db.execute(
            """
            INSERT INTO quotation_pdf_copies (
                property_manager_id, rfq_id, rfq_number, quotation_id, decision, filename, pdf_data,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (property_manager_id, quotation_id, decision) DO UPDATE SET
                rfq_id = excluded.rfq_id,
                rfq_number = excluded.rfq_number,
                filename = excluded.filename,
                pdf_data = excluded.pdf_data,
                updated_at = excluded.updated_at
            """,
            (
                property_manager_id,
                rfq_id,
                rfq_number,
                quotation_id,
                decision,
                filename,
                pdf_data,
                now,
                now,
            ),
        )

    def list_for_property_manager(self, db, property_manager_id: int, *, rfq_number: str | None = None) -> List[dict]:
        params: list = [property_manager_id]
        rfq_filter = ""
        if rfq_number:
            rfq_filter = "AND rfq_number = ?"
            params.append(rfq_number)
        rows = db.execute(
            f"""
            SELECT id, property_manager_id, rfq_id, rfq_number, quotation_id, decision, filename,
                   created_at, updated_at
            FROM quotation_pdf_copies
            WHERE property_manager_id = ? {rfq_filter}
            ORDER BY rfq_number, quotation_id, decision
            """,
            params,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def get_with_data(self, db, copy_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM quotation_pdf_copies WHERE id = ? LIMIT 1",
            (copy_id,),
        ).fetchone()
        record = self.decode_row(row)
        if record is not None and record.get("pdf_data") is not None:
            record["pdf_data"] = bytes(record["pdf_data"])
        return record
