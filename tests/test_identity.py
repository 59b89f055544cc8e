import unittest
from unittest.mock import patch

from itsdangerous import TimestampSigner, URLSafeTimedSerializer

from facilityflow.auth import IdentityService
from facilityflow.contexts.procurement.infrastructure.repositories import UserRepository
from facilityflow.errors import UnauthenticatedError
from tests.helpers.temp_db import TempDbSandbox


class IdentityServiceTest(unittest.TestCase):
    def setUp(self) -> None:
        self.sandbox = TempDbSandbox(prefix="identity")
        self.db = self.sandbox.connect()
        self.users = UserRepository()
        self.identity = IdentityService("identity-secret", max_age_seconds=60, users=self.users)

    def tearDown(self) -> None:
        self.db.close()
        self.sandbox.cleanup()

    def _user(self, email: str, role: str, **fields) -> int:
        return self.users.create(self.db, email=email, role=role, **fields)

    def test_round_trip_resolves_actor(self) -> None:
        user_id = self._user("Lead@Acme.test", "CONTRACTOR_SENIOR_MANAGER", first_name="Ada", last_name="Lee", company_affiliation="Acme")
        actor = self.identity.verify(self.db, self.identity.issue_credential(user_id))
        self.assertEqual(actor.id, user_id)
        self.assertEqual(actor.role, "CONTRACTOR_SENIOR_MANAGER")
        self.assertEqual(actor.email, "lead@acme.test")
        self.assertEqual(actor.company_affiliation, "Acme")
        self.assertEqual(actor.display_name, "Ada Lee")

    def test_missing_and_forged_credentials(self) -> None:
        for credential in (None, "", "   ", "garbage"):
            with self.assertRaises(UnauthenticatedError):
                self.identity.verify(self.db, credential)

        user_id = self._user("pm@harbour.test", "PROPERTY_MANAGER")
        foreign = URLSafeTimedSerializer("other-secret", salt="facilityflow-access").dumps({"uid": user_id})
        with self.assertRaises(UnauthenticatedError):
            self.identity.verify(self.db, foreign)

        malformed = URLSafeTimedSerializer("identity-secret", salt="facilityflow-access").dumps({"uid": "abc"})
        with self.assertRaises(UnauthenticatedError):
            self.identity.verify(self.db, malformed)

    def test_expired_credential(self) -> None:
        user_id = self._user("pm@harbour.test", "PROPERTY_MANAGER")
        with patch.object(TimestampSigner, "get_timestamp", return_value=1_000_000):
            credential = self.identity.issue_credential(user_id)
        with patch.object(TimestampSigner, "get_timestamp", return_value=1_000_061):
            with self.assertRaises(UnauthenticatedError) as ctx:
                self.identity.verify(self.db, credential)
        self.assertEqual(ctx.exception.details, "credential expired")

    def test_inactive_unknown_and_offline_users(self) -> None:
        inactive = self._user("gone@harbour.test", "PROPERTY_MANAGER", is_active=False)
        offline = self._user("paper@mail.test", "CONTRACTOR", portal_access_enabled=False)
        offline_admin = self._user("ops@facilityflow.test", "ADMIN", portal_access_enabled=False)

        for user_id in (inactive, offline, 9999):
            with self.assertRaises(UnauthenticatedError):
                self.identity.verify(self.db, self.identity.issue_credential(user_id))
        self.assertEqual(self.identity.verify(self.db, self.identity.issue_credential(offline_admin)).role, "ADMIN")


if __name__ == "__main__":
    unittest.main()
