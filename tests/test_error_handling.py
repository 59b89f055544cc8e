import unittest
from unittest.mock import patch

from facilityflow import create_app
from facilityflow.config import Config
from facilityflow.contexts.procurement.infrastructure.repositories import UserRepository
from facilityflow.db import close_db, connect_database
from facilityflow.errors import ConflictError, InviteExpiredError, SystemError, ValidationError, status_conflict
from facilityflow.ui_strings import error_message
from tests.helpers.temp_db import TempDbSandbox


def _build_temp_app(temp_db: TempDbSandbox, **overrides):
    attrs = {"PROPAGATE_EXCEPTIONS": False, "RATE_LIMIT_ENABLED": False}
    attrs.update(overrides)
    return create_app(temp_db.make_config(Config, **attrs))


class ErrorPayloadTest(unittest.TestCase):
    def test_user_message_comes_from_message_key(self) -> None:
        error = ValidationError(code="items_required", message_key="items_required", details="no items")
        payload = error.to_response_payload("req-1")
        self.assertEqual(payload, {"error": "items_required", "message": error_message("items_required"), "request_id": "req-1"})
        self.assertEqual(error.http_status, 400)
        self.assertFalse(error.critical)

    def test_status_conflict_carries_allowed_actions(self) -> None:
        error = status_conflict("order", "SUBMITTED", "complete_order", ["accept_order"])
        self.assertIsInstance(error, ConflictError)
        payload = error.to_response_payload("req-2")
        self.assertEqual(payload["allowed_actions"], ["accept_order"])
        self.assertEqual(payload["status"], "SUBMITTED")
        self.assertEqual(error.http_status, 409)

    def test_invite_errors_default_to_their_codes(self) -> None:
        error = InviteExpiredError(http_status=409, critical=False)
        self.assertEqual(error.code, "invite_expired")
        self.assertIsInstance(error, ConflictError)
        self.assertTrue(SystemError().critical)


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = _build_temp_app(self._temp_db, TESTING=True)
        self.client = self.app.test_client()
        db = connect_database(self._temp_db.db_path)
        try:
            pm_id = UserRepository().create(db, email="pm@harbour.test", role="PROPERTY_MANAGER")
        finally:
            db.close()
        token = self.app.extensions["facilityflow"]["identity"].issue_credential(pm_id)
        self.headers = {"Authorization": f"Bearer {token}"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()

    def test_permission_error_for_unauthenticated_api(self) -> None:
        response = self.client.get("/api/orders")
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unauthenticated")
        self.assertEqual(payload.get("message"), error_message("unauthenticated"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_validation_error_for_bad_payload(self) -> None:
        response = self.client.post("/api/orders", json=["not", "an", "object"], headers=self.headers)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.get_json().get("error"), "validation_error")

    def test_stack_trace_not_exposed_for_unhandled_error(self) -> None:
        engine = self.app.extensions["facilityflow"]["engine"]
        with patch.object(engine, "list_rfqs", side_effect=RuntimeError("stack_secret_token")):
            response = self.client.get("/api/rfqs", headers=self.headers)

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload.get("error"), "unexpected_error")
        self.assertEqual(payload.get("message"), error_message("unexpected_error"))
        body = response.get_data(as_text=True)
        self.assertNotIn("Traceback", body)
        self.assertNotIn("stack_secret_token", body)

    def test_unknown_route_keeps_http_status(self) -> None:
        response = self.client.get("/api/does-not-exist", headers=self.headers)
        self.assertEqual(response.status_code, 404)


if __name__ == "__main__":
    unittest.main()
