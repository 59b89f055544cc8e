from __future__ import annotations

import json
import re
from typing import Any, Iterable, Sequence


class BaseRepository:
    json_columns: Sequence[str] = ()

    @staticmethod
    def returned_id(cursor) -> int:
        row = cursor.fetchone()
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def encode_json(value: Any) -> str:
        return json.dumps(value if value is not None else [], ensure_ascii=True, default=str)

    def decode_row(self, row) -> dict | None:
        if row is None:
            return None
        record = dict(row)
        for column in self.json_columns:
            raw = record.get(column)
            if isinstance(raw, str):
                try:
                    record[column] = json.loads(raw)
                except ValueError:
                    record[column] = []
            elif raw is None:
                record[column] = []
        return record

    def rows_to_dicts(self, rows: Iterable[Any]) -> list[dict]:
        return [self.decode_row(row) for row in rows]

    @staticmethod
    def placeholders(values: Sequence[Any]) -> str:
        return ",".join("?" for _ in values)

    @staticmethod
    def count_sequenced(db, table: str, column: str, prefix: str) -> int:
        """Count ``PREFIX-<digits>`` numbers only; ``PREFIX-A-0001`` belongs to prefix ``PREFIX-A``."""
        pattern = re.compile(rf"^{re.escape(prefix)}-\d+$")
        rows = db.execute(
            f"SELECT {column} AS number FROM {table} WHERE {column} LIKE ?",
            (f"{prefix}-%",),
        ).fetchall()
        return sum(1 for row in rows if pattern.match(str(row["number"] or "")))
