import unittest

from facilityflow.contexts.procurement.domain.visibility import (
    AdminScope,
    ContractorScope,
    ExternalScope,
    PropertyManagerScope,
    partition,
)
from facilityflow.domain.contracts import OrderCreateInput
from facilityflow.errors import NotFoundError
from tests.helpers.procurement_harness import ProcurementHarness


class PortalVisibilityTest(unittest.TestCase):
    def setUp(self) -> None:
        self.h = ProcurementHarness(prefix="visibility")
        self.pm = self.h.add_user("pm@harbour.test", "PROPERTY_MANAGER")
        self.other_pm = self.h.add_user("pm@elsewhere.test", "PROPERTY_MANAGER")
        self.acme = self.h.add_user("lead@acme.test", "CONTRACTOR", company="Acme")
        self.acme_senior = self.h.add_user("boss@acme.test", "CONTRACTOR_SENIOR_MANAGER", company="Acme")
        self.bolt = self.h.add_user("lead@bolt.test", "CONTRACTOR", company="Bolt")
        self.offline = self.h.add_user("paper@mail.test", "CONTRACTOR", company="Paper", portal=False)
        self.admin = self.h.add_user("ops@facilityflow.test", "ADMIN")

    def tearDown(self) -> None:
        self.h.cleanup()

    def _numbers(self, actor) -> set:
        return {rfq["rfq_number"] for rfq in self.h.engine.list_rfqs(self.h.db, actor)}

    def test_rfq_lists_follow_ownership_targets_and_company(self) -> None:
        targeted = self.h.create_rfq(self.pm, contractor_ids=[self.acme.id], title="Targeted")
        open_rfq = self.h.create_rfq(self.pm, title="Untargeted")
        offline = self.h.create_rfq(self.pm, contractor_ids=[self.offline.id], title="Offline")
        foreign = self.h.create_rfq(self.other_pm, title="Foreign")

        self.assertEqual(self._numbers(self.pm), {targeted["rfq_number"], open_rfq["rfq_number"], offline["rfq_number"]})
        self.assertEqual(self._numbers(self.other_pm), {foreign["rfq_number"]})
        self.assertEqual(self._numbers(self.acme), {targeted["rfq_number"]})
        self.assertEqual(self._numbers(self.acme_senior), {targeted["rfq_number"]})
        self.assertEqual(self._numbers(self.bolt), set())
        self.assertEqual(
            self._numbers(self.admin),
            {open_rfq["rfq_number"], offline["rfq_number"], foreign["rfq_number"]},
        )
        self.assertEqual(len(offline["invites"]), 1)

    def test_detail_lookups_agree_with_lists(self) -> None:
        targeted = self.h.create_rfq(self.pm, contractor_ids=[self.acme.id])

        self.assertEqual(self.h.engine.get_rfq(self.h.db, self.acme_senior, targeted["id"])["id"], targeted["id"])
        for outsider in (self.bolt, self.admin, self.other_pm):
            with self.assertRaises(NotFoundError):
                self.h.engine.get_rfq(self.h.db, outsider, targeted["id"])

        owner_view = self.h.engine.get_rfq(self.h.db, self.pm, targeted["id"])
        self.assertIn("invites", owner_view)
        self.assertNotIn("invites", self.h.engine.get_rfq(self.h.db, self.acme, targeted["id"]))

    def test_quotation_lists(self) -> None:
        rfq = self.h.create_rfq(self.pm, contractor_ids=[self.acme.id, self.bolt.id])
        acme_quote = self.h.engine.submit_contractor_quotation(self.h.db, self.acme, rfq["id"], self.h.quote(100))
        bolt_quote = self.h.engine.submit_contractor_quotation(self.h.db, self.bolt, rfq["id"], self.h.quote(120))
        admin_rfq = self.h.create_rfq(self.pm)
        admin_quote = self.h.engine.record_admin_quotation(self.h.db, self.admin, admin_rfq["id"], self.h.quote(90))

        def ids(actor):
            return {quote["id"] for quote in self.h.engine.list_quotations(self.h.db, actor)}

        self.assertEqual(ids(self.pm), {acme_quote["id"], bolt_quote["id"], admin_quote["id"]})
        self.assertEqual(ids(self.acme), {acme_quote["id"]})
        self.assertEqual(ids(self.acme_senior), {acme_quote["id"]})
        self.assertEqual(ids(self.bolt), {bolt_quote["id"]})
        self.assertEqual(ids(self.other_pm), set())
        self.assertEqual(ids(self.admin), {admin_quote["id"]})

    def test_orders_and_invoices(self) -> None:
        acme_order = self.h.engine.create_order(
            self.h.db, self.pm, OrderCreateInput(title="Pump", scope_of_work="Replace", total_amount=500, contractor_id=self.acme.id)
        )
        unassigned = self.h.engine.create_order(
            self.h.db, self.pm, OrderCreateInput(title="Survey", scope_of_work="Walkthrough", total_amount=50)
        )

        def ids(actor):
            return {order["id"] for order in self.h.engine.list_orders(self.h.db, actor)}

        self.assertEqual(ids(self.pm), {acme_order["id"], unassigned["id"]})
        self.assertEqual(ids(self.acme_senior), {acme_order["id"]})
        self.assertEqual(ids(self.bolt), set())
        self.assertEqual(ids(self.admin), {unassigned["id"]})
        with self.assertRaises(NotFoundError):
            self.h.engine.get_order(self.h.db, self.bolt, acme_order["id"])
        with self.assertRaises(NotFoundError):
            self.h.engine.accept_order(self.h.db, self.bolt, acme_order["id"])


class ScopeRuleTest(unittest.TestCase):
    def test_property_manager_scope(self) -> None:
        scope = PropertyManagerScope(actor_id=3, email="pm@harbour.test")
        self.assertTrue(scope.allows("rfq", {"property_manager_id": 3}))
        self.assertFalse(scope.allows("order", {"property_manager_id": 4}))
        self.assertTrue(scope.allows("quotation", {"status": "SENT_TO_CUSTOMER", "rfq_property_manager_id": 3}))
        self.assertTrue(scope.allows("quotation", {"status": "APPROVED", "customer_email": "PM@harbour.test"}))
        self.assertFalse(scope.allows("quotation", {"status": "DRAFT", "rfq_property_manager_id": 3}))
        sql, params = scope.clause("order", "o")
        self.assertEqual((sql, params), ("o.property_manager_id = ?", [3]))

    def test_contractor_scope_covers_company(self) -> None:
        scope = ContractorScope(actor_id=5, company_user_ids=frozenset({5, 6}))
        self.assertTrue(scope.allows("rfq", {"target_contractor_ids": [6]}))
        self.assertFalse(scope.allows("rfq", {"target_contractor_ids": [7]}))
        self.assertTrue(scope.allows("invoice", {"contractor_id": 5}))
        self.assertFalse(scope.allows("quotation", {"created_by_id": None}))

    def test_admin_scope_excludes_contractor_work(self) -> None:
        scope = AdminScope(excluded_user_ids=frozenset({5}))
        self.assertFalse(scope.allows("rfq", {"target_contractor_ids": [5]}))
        self.assertTrue(scope.allows("rfq", {"target_contractor_ids": []}))
        self.assertTrue(scope.allows("order", {"contractor_id": None}))
        self.assertEqual(AdminScope(excluded_user_ids=frozenset()).clause("rfq", "r"), ("1 = 1", []))

    def test_external_scope_sees_only_its_target(self) -> None:
        scope = ExternalScope(token_id=1, rfq_id=10)
        self.assertEqual(scope.clause("rfq", "r"), ("1 = 0", []))
        self.assertTrue(scope.allows("rfq", {"id": 10}))
        self.assertFalse(scope.allows("rfq", {"id": 11}))
        self.assertFalse(scope.allows("order", {"id": 10}))
        self.assertEqual(partition(scope, "rfq", [{"id": 10}, {"id": 12}]), [{"id": 10}])

    def test_unknown_entity_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ExternalScope(token_id=1).allows("user", {})


if __name__ == "__main__":
    unittest.main()
