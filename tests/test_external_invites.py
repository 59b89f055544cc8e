import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from facilityflow.domain.contracts import Attachment, ExternalInvoiceInput, InviteIssueInput, OrderCreateInput
from facilityflow.errors import (
    ConflictError,
    ForbiddenError,
    InviteAlreadyUsedError,
    InviteExpiredError,
    InviteNotFoundError,
    InviteTypeMismatchError,
    ValidationError,
)
from facilityflow.timeutils import parse_iso
from tests.helpers.procurement_harness import ProcurementHarness


def _token(invite: dict) -> str:
    return invite["link"].rsplit("/", 1)[-1]


def _invoice(amount=420.0, attachments=True) -> ExternalInvoiceInput:
    files = [Attachment(url="https://files.example.test/inv.pdf", name="inv.pdf")] if attachments else []
    return ExternalInvoiceInput(amount=amount, attachments=files)


class ExternalOrderInvoiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.h = ProcurementHarness(prefix="external_invoice")
        self.pm = self.h.add_user("pm@harbour.test", "PROPERTY_MANAGER")
        self.portal = self.h.add_user("crew@acme.test", "CONTRACTOR", company="Acme")

    def tearDown(self) -> None:
        self.h.cleanup()

    def _order(self, **overrides) -> dict:
        fields = {"title": "Gutter clean", "scope_of_work": "Clear all gutters", "total_amount": 420}
        fields.update(overrides)
        return self.h.engine.create_order(self.h.db, self.pm, OrderCreateInput(**fields))

    def _external_order(self) -> dict:
        self._order(contractor_id=self.portal.id)
        self._order(contractor_id=self.portal.id, title="Lobby paint")
        return self._order(contractor_email="Jobs@Outside.test", contractor_name="Outside Crew")

    def test_invoice_link_is_single_use(self) -> None:
        order = self._external_order()
        self.assertEqual(order["order_number"], "PMO-0003")
        by_type = {invite["type"]: invite for invite in order["invites"]}
        self.assertEqual(set(by_type), {"ORDER_ACCEPT", "ORDER_INVOICE"})
        self.assertNotIn("token", by_type["ORDER_INVOICE"])
        self.assertEqual(by_type["ORDER_INVOICE"]["email"], "jobs@outside.test")
        self.assertEqual(
            parse_iso(by_type["ORDER_INVOICE"]["expires_at"]) - self.h.clock(),
            timedelta(days=7),
        )
        token = _token(by_type["ORDER_INVOICE"])

        with self.assertRaises(ValidationError) as ctx:
            self.h.external.submit_external_order_invoice(self.h.db, token, _invoice(attachments=False))
        self.assertEqual(ctx.exception.code, "attachments_required")
        with self.assertRaises(ValidationError):
            self.h.external.submit_external_order_invoice(self.h.db, token, _invoice(amount=0))
        self.assertIsNone(self.h.ledger.repository.get_by_token(self.h.db, token)["used_at"])

        result = self.h.external.submit_external_order_invoice(self.h.db, token, _invoice())
        self.assertEqual(result["status"], "SENT_TO_PM")
        self.assertEqual(result["total"], 420)
        self.assertEqual(result["order_number"], "PMO-0003")
        self.assertIsNotNone(self.h.ledger.repository.get_by_token(self.h.db, token)["used_at"])

        stored = self.h.engine.invoices.list_for_order(self.h.db, order["id"])
        self.assertEqual(len(stored), 1)
        self.assertEqual(stored[0]["submitted_by_email"], "jobs@outside.test")
        self.assertEqual(stored[0]["items"][0]["description"], "Invoice for PM Order PMO-0003: Gutter clean")

        with self.assertRaises(InviteAlreadyUsedError):
            self.h.external.submit_external_order_invoice(self.h.db, token, _invoice())
        self.assertEqual(self.h.count("invoices", "order_id = ?", (order["id"],)), 1)

    def test_cancelled_order_refuses_invoice_and_keeps_link_unused(self) -> None:
        order = self._external_order()
        token = _token(next(i for i in order["invites"] if i["type"] == "ORDER_INVOICE"))
        self.h.engine.cancel_order(self.h.db, self.pm, order["id"], reason="Duplicate request")

        with self.assertRaises(ConflictError) as ctx:
            self.h.external.submit_external_order_invoice(self.h.db, token, _invoice())
        self.assertEqual(ctx.exception.code, "order_cancelled")
        self.assertIsNone(self.h.ledger.repository.get_by_token(self.h.db, token)["used_at"])
        self.assertEqual(self.h.count("invoices", "order_id = ?", (order["id"],)), 0)

    def test_concurrent_redemptions_create_one_invoice(self) -> None:
        order = self._external_order()
        token = _token(next(i for i in order["invites"] if i["type"] == "ORDER_INVOICE"))
        connections = [self.h.connect(), self.h.connect()]
        barrier = threading.Barrier(len(connections))

        def submit(db):
            barrier.wait(timeout=10)
            try:
                return self.h.external.submit_external_order_invoice(db, token, _invoice())
            except InviteAlreadyUsedError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=len(connections)) as pool:
            outcomes = list(pool.map(submit, connections))

        successes = [item for item in outcomes if isinstance(item, dict)]
        failures = [item for item in outcomes if isinstance(item, InviteAlreadyUsedError)]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertEqual(self.h.count("invoices", "order_id = ?", (order["id"],)), 1)

    def test_accept_link_moves_order_and_rejects_wrong_type(self) -> None:
        order = self._external_order()
        by_type = {invite["type"]: _token(invite) for invite in order["invites"]}

        with self.assertRaises(InviteTypeMismatchError):
            self.h.external.accept_external_order(self.h.db, by_type["ORDER_INVOICE"])

        accepted = self.h.external.accept_external_order(self.h.db, by_type["ORDER_ACCEPT"])
        self.assertEqual(accepted["status"], "IN_PROGRESS")
        self.assertEqual(self.h.engine.orders.get_by_id(self.h.db, order["id"])["status"], "IN_PROGRESS")

        with self.assertRaises(InviteAlreadyUsedError):
            self.h.external.accept_external_order(self.h.db, by_type["ORDER_ACCEPT"])

    def test_expired_link_is_refused(self) -> None:
        order = self._external_order()
        token = _token(next(i for i in order["invites"] if i["type"] == "ORDER_INVOICE"))

        self.h.clock.advance(days=7, seconds=1)
        with self.assertRaises(InviteExpiredError):
            self.h.external.redeem_external_invite_context(self.h.db, token)
        with self.assertRaises(InviteExpiredError):
            self.h.external.submit_external_order_invoice(self.h.db, token, _invoice())
        self.assertEqual(self.h.count("invoices"), 0)

    def test_unknown_token_is_not_found(self) -> None:
        with self.assertRaises(InviteNotFoundError):
            self.h.external.redeem_external_invite_context(self.h.db, "no-such-token")


class ExternalQuotationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.h = ProcurementHarness(prefix="external_quote")
        self.pm = self.h.add_user("pm@harbour.test", "PROPERTY_MANAGER")

    def tearDown(self) -> None:
        self.h.cleanup()

    def test_external_contact_quotes_once(self) -> None:
        rfq = self.h.create_rfq(self.pm, external_contacts=[{"email": "Bids@Outside.test", "name": "Outside"}])
        self.assertEqual(len(rfq["invites"]), 1)
        token = _token(rfq["invites"][0])
        self.assertEqual([message.to for message in self.h.email_sink.sent], ["bids@outside.test"])

        context = self.h.external.redeem_external_invite_context(self.h.db, token)
        self.assertEqual(context["type"], "RFQ_QUOTE")
        self.assertTrue(context["can_upload"])
        self.assertEqual(context["rfq"]["rfq_number"], rfq["rfq_number"])
        self.assertNotIn("property_manager_id", context["rfq"])

        result = self.h.external.submit_external_rfq_quotation(self.h.db, token, self.h.quote(780, tax=20))
        self.assertEqual(result["status"], "SENT_TO_CUSTOMER")
        self.assertEqual(result["total"], 800)
        self.assertEqual(self.h.engine.rfqs.get_by_id(self.h.db, rfq["id"])["status"], "RECEIVED")

        quotes = self.h.engine.list_quotations(self.h.db, self.pm, rfq_reference=rfq["rfq_number"])
        self.assertEqual([(q["source"], q["submitted_by_email"]) for q in quotes], [("EXTERNAL", "bids@outside.test")])

        with self.assertRaises(InviteAlreadyUsedError):
            self.h.external.submit_external_rfq_quotation(self.h.db, token, self.h.quote(700))
        self.assertEqual(self.h.count("quotations"), 1)

    def test_invalid_quotation_leaves_token_unused(self) -> None:
        from facilityflow.domain.contracts import QuotationInput

        rfq = self.h.create_rfq(self.pm, external_contacts=[{"email": "bids@outside.test"}])
        token = _token(rfq["invites"][0])
        with self.assertRaises(ValidationError):
            self.h.external.submit_external_rfq_quotation(self.h.db, token, QuotationInput(items=[]))
        self.assertIsNone(self.h.ledger.repository.get_by_token(self.h.db, token)["used_at"])

    def test_presigned_upload_only_for_submission_links(self) -> None:
        rfq = self.h.create_rfq(self.pm, external_contacts=[{"email": "bids@outside.test"}])
        upload = self.h.external.presign_submission_upload(
            self.h.db, _token(rfq["invites"][0]), "../site photo.jpg", "image/jpeg"
        )
        self.assertTrue(upload["uploadUrl"].startswith("https://portal.example.test/uploads/"))
        self.assertTrue(upload["key"].endswith("-site_photo.jpg"))
        self.assertEqual(upload["publicUrl"], f"https://portal.example.test/uploads/files/{upload['key']}")

        order = self.h.engine.create_order(
            self.h.db,
            self.pm,
            OrderCreateInput(title="Fence", scope_of_work="Repair", total_amount=100, contractor_email="f@fence.test"),
        )
        accept_token = _token(next(i for i in order["invites"] if i["type"] == "ORDER_ACCEPT"))
        with self.assertRaises(ForbiddenError) as ctx:
            self.h.external.presign_submission_upload(self.h.db, accept_token, "photo.jpg", "image/jpeg")
        self.assertEqual(ctx.exception.code, "upload_not_allowed")


class IssueInviteTest(unittest.TestCase):
    def setUp(self) -> None:
        self.h = ProcurementHarness(prefix="issue_invite")
        self.pm = self.h.add_user("pm@harbour.test", "PROPERTY_MANAGER")
        self.other_pm = self.h.add_user("other@harbour.test", "PROPERTY_MANAGER")
        self.admin = self.h.add_user("ops@facilityflow.test", "ADMIN")
        self.contractor = self.h.add_user("crew@acme.test", "CONTRACTOR", company="Acme")
        self.rfq = self.h.create_rfq(self.pm)

    def tearDown(self) -> None:
        self.h.cleanup()

    def test_owner_issues_invite_and_target_is_recorded(self) -> None:
        invite = self.h.external.issue_external_invite(
            self.h.db, self.pm, InviteIssueInput(type="RFQ_QUOTE", email="late@bidder.test", rfq_id=self.rfq["id"])
        )
        self.assertEqual(invite["rfq_id"], self.rfq["id"])
        self.assertIsNone(invite["order_id"])
        self.assertTrue(invite["link"].endswith(invite["token"]))
        self.assertEqual(
            self.h.count("rfq_targets", "rfq_id = ? AND email = ? AND channel = 'EXTERNAL'", (self.rfq["id"], "late@bidder.test")),
            1,
        )
        self.assertEqual(self.h.email_sink.sent[-1].to, "late@bidder.test")

    def test_admin_may_issue_for_any_rfq(self) -> None:
        invite = self.h.external.issue_external_invite(
            self.h.db, self.admin, InviteIssueInput(type="RFQ_QUOTE", email="a@b.test", rfq_id=self.rfq["id"], ttl_days=1)
        )
        self.assertEqual(parse_iso(invite["expires_at"]) - self.h.clock(), timedelta(days=1))

    def test_invalid_requests_are_refused(self) -> None:
        with self.assertRaises(ForbiddenError):
            self.h.external.issue_external_invite(
                self.h.db, self.other_pm, InviteIssueInput(type="RFQ_QUOTE", email="a@b.test", rfq_id=self.rfq["id"])
            )
        with self.assertRaises(ForbiddenError):
            self.h.external.issue_external_invite(
                self.h.db, self.contractor, InviteIssueInput(type="RFQ_QUOTE", email="a@b.test", rfq_id=self.rfq["id"])
            )
        for ttl in (0, 91):
            with self.assertRaises(ValidationError) as ctx:
                self.h.external.issue_external_invite(
                    self.h.db, self.pm, InviteIssueInput(type="RFQ_QUOTE", email="a@b.test", rfq_id=self.rfq["id"], ttl_days=ttl)
                )
            self.assertEqual(ctx.exception.code, "invite_ttl_invalid")
        with self.assertRaises(ValidationError) as ctx:
            self.h.external.issue_external_invite(
                self.h.db, self.pm, InviteIssueInput(type="ORDER_ACCEPT", email="a@b.test", rfq_id=self.rfq["id"])
            )
        self.assertEqual(ctx.exception.code, "invite_target_invalid")
        with self.assertRaises(ValidationError) as ctx:
            self.h.external.issue_external_invite(
                self.h.db, self.pm, InviteIssueInput(type="RFQ_QUOTE", email="not-an-email", rfq_id=self.rfq["id"])
            )
        self.assertEqual(ctx.exception.code, "email_invalid")
        self.assertEqual(self.h.count("external_submission_tokens"), 0)


if __name__ == "__main__":
    unittest.main()
