import contextlib
import sqlite3
from typing import Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


INTEGRITY_ERRORS: tuple = (sqlite3.IntegrityError,)
TRANSIENT_ERRORS: tuple = (sqlite3.OperationalError,)
if psycopg2 is not None:
    INTEGRITY_ERRORS = INTEGRITY_ERRORS + (psycopg2.IntegrityError,)
    TRANSIENT_ERRORS = TRANSIENT_ERRORS + (psycopg2.OperationalError,)


class Database:
    """Thin wrapper over a DB-API connection.

    Both backends run in autocommit mode; multi-statement work goes through
    ``transaction()``, which opens the outermost transaction and turns nested
    calls into savepoints.
    """

    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._depth = 0
        self._savepoint_seq = 0

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, tuple(params or ()))

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in _split_sql_statements(sql):
            if statement.strip():
                self.execute(statement)

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextlib.contextmanager
    def transaction(self):
        if self._depth > 0:
            with self.savepoint():
                yield self
            return

        self.execute("BEGIN IMMEDIATE" if self.backend == "sqlite" else "BEGIN")
        self._depth = 1
        try:
            yield self
        except BaseException:
            self._depth = 0
            self.execute("ROLLBACK")
            raise
        self._depth = 0
        self.execute("COMMIT")

    @contextlib.contextmanager
    def savepoint(self):
        if self._depth == 0:
            with self.transaction():
                yield self
            return

        self._savepoint_seq += 1
        name = f"sp_{self._savepoint_seq}"
        self.execute(f"SAVEPOINT {name}")
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            self.execute(f"ROLLBACK TO SAVEPOINT {name}")
            self.execute(f"RELEASE SAVEPOINT {name}")
            raise
        self._depth -= 1
        self.execute(f"RELEASE SAVEPOINT {name}")

    def commit(self):
        if self._depth == 0:
            self._conn.commit()

    def close(self):
        self._conn.close()


def _split_sql_statements(sql: str) -> List[str]:
    statements = []
    current = []
    in_single = False
    for ch in sql:
        if ch == "'":
            in_single = not in_single
        if ch == ";" and not in_single:
            statements.append("".join(current))
            current = []
            continue
        current.append(ch)
    if current:
        statements.append("".join(current))
    return statements


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db(db: Database | None = None):
    db = db or get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


def _init_db_sqlite(db) -> None:
    for statement in _schema_statements(pk="INTEGER PRIMARY KEY AUTOINCREMENT", money="REAL", blob="BLOB"):
        db.execute(statement)


def _init_db_postgres(db) -> None:
    for statement in _schema_statements(pk="BIGSERIAL PRIMARY KEY", money="DOUBLE PRECISION", blob="BYTEA"):
        db.execute(statement)


def _schema_statements(*, pk: str, money: str, blob: str) -> List[str]:
    return [
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id {pk},
            email TEXT NOT NULL UNIQUE,
            first_name TEXT NOT NULL DEFAULT '',
            last_name TEXT NOT NULL DEFAULT '',
            role TEXT NOT NULL CHECK (
                role IN ('PROPERTY_MANAGER','CONTRACTOR','CONTRACTOR_JUNIOR_MANAGER','CONTRACTOR_SENIOR_MANAGER',
                         'ADMIN','JUNIOR_ADMIN','SENIOR_ADMIN')
            ),
            company_affiliation TEXT,
            portal_access_enabled INTEGER NOT NULL DEFAULT 1,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_users_role ON users (role)",
        "CREATE INDEX IF NOT EXISTS ix_users_company ON users (company_affiliation)",
        """
        CREATE TABLE IF NOT EXISTS system_settings (
            key TEXT PRIMARY KEY,
            value TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS rfqs (
            id {pk},
            rfq_number TEXT NOT NULL UNIQUE,
            property_manager_id INTEGER NOT NULL REFERENCES users (id),
            title TEXT NOT NULL,
            description TEXT,
            scope_of_work TEXT NOT NULL,
            building_name TEXT,
            building_address TEXT NOT NULL,
            urgency TEXT NOT NULL DEFAULT 'NORMAL' CHECK (urgency IN ('LOW','NORMAL','HIGH','URGENT')),
            estimated_budget {money},
            notes TEXT,
            attachments TEXT NOT NULL DEFAULT '[]',
            status TEXT NOT NULL DEFAULT 'SUBMITTED' CHECK (
                status IN ('SUBMITTED','RECEIVED','UNDER_REVIEW','QUOTED','APPROVED','REJECTED','CONVERTED_TO_ORDER')
            ),
            rejection_reason TEXT,
            submitted_at TEXT,
            received_at TEXT,
            review_started_at TEXT,
            quoted_at TEXT,
            approved_at TEXT,
            rejected_at TEXT,
            converted_at TEXT,
            generated_order_id INTEGER,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_rfqs_pm ON rfqs (property_manager_id)",
        f"""
        CREATE TABLE IF NOT EXISTS rfq_targets (
            id {pk},
            rfq_id INTEGER NOT NULL REFERENCES rfqs (id),
            contractor_user_id INTEGER REFERENCES users (id),
            email TEXT NOT NULL,
            channel TEXT NOT NULL CHECK (channel IN ('PORTAL','EXTERNAL')),
            UNIQUE (rfq_id, email)
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_rfq_targets_contractor ON rfq_targets (contractor_user_id)",
        f"""
        CREATE TABLE IF NOT EXISTS quotations (
            id {pk},
            quote_number TEXT NOT NULL UNIQUE,
            rfq_reference TEXT,
            source TEXT NOT NULL CHECK (source IN ('PORTAL','EXTERNAL','ADMIN')),
            created_by_id INTEGER REFERENCES users (id),
            submitted_by_email TEXT,
            customer_email TEXT,
            items TEXT NOT NULL DEFAULT '[]',
            subtotal {money} NOT NULL DEFAULT 0,
            tax {money} NOT NULL DEFAULT 0,
            total {money} NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'DRAFT' CHECK (
                status IN ('DRAFT','IN_PROGRESS','SENT_TO_CUSTOMER','APPROVED','REJECTED')
            ),
            rejection_reason TEXT,
            notes TEXT,
            attachments TEXT NOT NULL DEFAULT '[]',
            source_token_id INTEGER UNIQUE,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_quotations_rfq_reference ON quotations (rfq_reference)",
        "CREATE INDEX IF NOT EXISTS ix_quotations_created_by ON quotations (created_by_id)",
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_quotations_single_approved
        ON quotations (rfq_reference)
        WHERE status = 'APPROVED' AND rfq_reference IS NOT NULL
        """,
        f"""
        CREATE TABLE IF NOT EXISTS orders (
            id {pk},
            order_number TEXT NOT NULL UNIQUE,
            property_manager_id INTEGER NOT NULL REFERENCES users (id),
            contractor_id INTEGER REFERENCES users (id),
            contractor_email TEXT,
            source_rfq_id INTEGER REFERENCES rfqs (id),
            source_quotation_id INTEGER REFERENCES quotations (id),
            title TEXT NOT NULL,
            scope_of_work TEXT NOT NULL,
            building_address TEXT,
            total_amount {money} NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'SUBMITTED' CHECK (
                status IN ('SUBMITTED','IN_PROGRESS','COMPLETED','CANCELLED')
            ),
            notes TEXT,
            submitted_at TEXT,
            accepted_at TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_orders_source_rfq
        ON orders (source_rfq_id)
        WHERE source_rfq_id IS NOT NULL
        """,
        "CREATE INDEX IF NOT EXISTS ix_orders_contractor ON orders (contractor_id)",
        f"""
        CREATE TABLE IF NOT EXISTS invoices (
            id {pk},
            invoice_number TEXT NOT NULL UNIQUE,
            order_id INTEGER NOT NULL REFERENCES orders (id),
            property_manager_id INTEGER NOT NULL REFERENCES users (id),
            contractor_id INTEGER REFERENCES users (id),
            submitted_by_email TEXT,
            items TEXT NOT NULL DEFAULT '[]',
            subtotal {money} NOT NULL DEFAULT 0,
            tax {money} NOT NULL DEFAULT 0,
            total {money} NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'DRAFT' CHECK (
                status IN ('DRAFT','SENT_TO_PM','PM_APPROVED','PM_REJECTED','PAID')
            ),
            attachments TEXT NOT NULL DEFAULT '[]',
            notes TEXT,
            rejection_reason TEXT,
            sent_at TEXT,
            approved_at TEXT,
            paid_at TEXT,
            source_token_id INTEGER UNIQUE,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_invoices_order ON invoices (order_id)",
        f"""
        CREATE TABLE IF NOT EXISTS external_submission_tokens (
            id {pk},
            token TEXT NOT NULL UNIQUE,
            type TEXT NOT NULL CHECK (type IN ('RFQ_QUOTE','ORDER_ACCEPT','ORDER_INVOICE')),
            email TEXT NOT NULL,
            name TEXT,
            rfq_id INTEGER REFERENCES rfqs (id),
            order_id INTEGER REFERENCES orders (id),
            expires_at TEXT NOT NULL,
            used_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            CHECK ((rfq_id IS NULL) <> (order_id IS NULL))
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS quotation_pdf_copies (
            id {pk},
            property_manager_id INTEGER NOT NULL REFERENCES users (id),
            rfq_id INTEGER REFERENCES rfqs (id),
            rfq_number TEXT,
            quotation_id INTEGER NOT NULL REFERENCES quotations (id),
            decision TEXT NOT NULL CHECK (decision IN ('APPROVED','REJECTED')),
            filename TEXT NOT NULL,
            pdf_data {blob} NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE (property_manager_id, quotation_id, decision)
        )
        """,
        f"""
        CREATE TABLE IF NOT EXISTS notifications (
            id {pk},
            recipient_id INTEGER NOT NULL,
            recipient_role TEXT NOT NULL,
            message TEXT NOT NULL,
            type TEXT NOT NULL,
            related_entity_id INTEGER,
            related_entity_type TEXT,
            is_read INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_notifications_recipient ON notifications (recipient_id)",
        f"""
        CREATE TABLE IF NOT EXISTS status_events (
            id {pk},
            entity TEXT NOT NULL,
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT,
            reason TEXT,
            actor_id INTEGER,
            occurred_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
        "CREATE INDEX IF NOT EXISTS ix_status_events_entity ON status_events (entity, entity_id)",
    ]


SCHEMA_TABLES = (
    "status_events",
    "notifications",
    "quotation_pdf_copies",
    "external_submission_tokens",
    "invoices",
    "orders",
    "quotations",
    "rfq_targets",
    "rfqs",
    "system_settings",
    "users",
)
