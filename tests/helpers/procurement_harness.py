from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from facilityflow import build_services
from facilityflow.domain.contracts import Actor, LineItem, QuotationInput, RfqCreateInput
from tests.helpers.temp_db import TempDbSandbox


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingEmailSink:
    def __init__(self) -> None:
        self.sent: List[Any] = []

    def send_email(self, message) -> None:
        self.sent.append(message)


class FailingNotificationSink:
    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, db, message) -> None:
        self.attempts += 1
        raise RuntimeError("notification store unavailable")

    def notify_admins(self, db, broadcast) -> None:
        self.attempts += 1
        raise RuntimeError("notification store unavailable")


class StubRenderer:
    def __init__(self, fail_for: set | None = None) -> None:
        self.rendered: List[tuple] = []
        self.fail_for = set(fail_for or ())

    def render_quotation_pdf(self, quotation: Dict[str, Any]) -> bytes:
        if quotation.get("quote_number") in self.fail_for:
            raise RuntimeError("renderer crashed")
        self.rendered.append((quotation.get("quote_number"), quotation.get("status")))
        return f"%PDF-stub {quotation.get('quote_number')} {quotation.get('status')}".encode()


class ProcurementHarness:
    """Services wired against a throwaway sqlite file, without Flask."""

    def __init__(self, prefix: str = "procurement", **service_overrides) -> None:
        self.sandbox = TempDbSandbox(prefix=prefix)
        self.clock = service_overrides.pop("clock", None) or FakeClock()
        self.email_sink = service_overrides.pop("email_sink", None) or RecordingEmailSink()
        self.renderer = service_overrides.pop("renderer", None) or StubRenderer()
        self.config = {
            "SECRET_KEY": "test-secret",
            "PUBLIC_BASE_URL": "https://portal.example.test",
            "UPLOAD_FOLDER": f"{self.sandbox.temp_dir}/uploads",
            "SETTINGS_CACHE_TTL_SECONDS": 30,
            "RFQ_INVITE_TTL_DAYS": 14,
            "ORDER_INVITE_TTL_DAYS": 7,
        }
        self.services = build_services(
            self.config,
            clock=self.clock,
            renderer=self.renderer,
            email_sink=self.email_sink,
            **service_overrides,
        )
        self.engine = self.services["engine"]
        self.external = self.services["external"]
        self.ledger = self.external.ledger
        self.db = self.sandbox.connect()
        self._extra_connections = []

    def connect(self):
        db = self.sandbox.connect(with_schema=False)
        self._extra_connections.append(db)
        return db

    def cleanup(self) -> None:
        for db in self._extra_connections:
            db.close()
        self.db.close()
        self.sandbox.cleanup()

    def add_user(
        self,
        email: str,
        role: str,
        *,
        company: str | None = None,
        portal: bool = True,
        first_name: str = "",
    ) -> Actor:
        user_id = self.engine.users.create(
            self.db,
            email=email,
            role=role,
            first_name=first_name,
            company_affiliation=company,
            portal_access_enabled=portal,
        )
        return Actor(id=user_id, role=role, email=email, company_affiliation=company)

    def create_rfq(self, pm: Actor, *, contractor_ids=(), external_contacts=(), title: str = "Roof leak") -> dict:
        return self.engine.create_rfq(
            self.db,
            pm,
            RfqCreateInput(
                title=title,
                scope_of_work="Inspect and repair",
                building_address="12 Harbour Street",
                contractor_ids=list(contractor_ids),
                external_contacts=list(external_contacts),
            ),
        )

    @staticmethod
    def quote(total: float, tax: float = 0.0) -> QuotationInput:
        return QuotationInput(items=[LineItem(description="Labour", quantity=1, unit_price=total)], tax=tax)

    def count(self, table: str, where: str = "1 = 1", params=()) -> int:
        row = self.db.execute(f"SELECT COUNT(*) AS total FROM {table} WHERE {where}", params).fetchone()
        return int(row["total"])
