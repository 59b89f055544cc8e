import json
import logging
import unittest

from flask import Flask, g

from facilityflow.domain.contracts import Actor
from facilityflow.observability import JsonLogFormatter, current_request_id, ensure_request_id, redact_path


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("facilityflow.test", logging.WARNING, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class JsonLoggingTest(unittest.TestCase):
    def setUp(self) -> None:
        self.app = Flask(__name__)
        self.formatter = JsonLogFormatter()

    def test_external_tokens_are_redacted(self) -> None:
        self.assertEqual(redact_path("/api/external/abc123/invoice"), "/api/external/<token>/invoice")
        self.assertEqual(redact_path("/api/rfqs/4"), "/api/rfqs/4")

    def test_request_context_adds_actor_and_redacted_path(self) -> None:
        with self.app.test_request_context("/api/external/secret-token", headers={"X-Request-Id": "req-9"}):
            ensure_request_id()
            g.actor = Actor(id=7, role="PROPERTY_MANAGER", email="pm@harbour.test")
            line = json.loads(self.formatter.format(_record("rfq_created", rfq_id=3)))

        self.assertEqual(line["request_id"], "req-9")
        self.assertEqual(line["path"], "/api/external/<token>")
        self.assertEqual((line["actor_id"], line["actor_role"]), (7, "PROPERTY_MANAGER"))
        self.assertEqual(line["rfq_id"], 3)
        self.assertNotIn("secret-token", json.dumps(line))

    def test_unusable_incoming_request_id_is_replaced(self) -> None:
        with self.app.test_request_context("/health", headers={"X-Request-Id": "bad id\nwith newline"}):
            request_id = ensure_request_id()
            self.assertNotIn(" ", request_id)
            self.assertEqual(current_request_id(), request_id)

    def test_background_record_uses_explicit_request_id(self) -> None:
        line = json.loads(self.formatter.format(_record("pdf_snapshot_healed", request_id="job-1")))
        self.assertEqual(line["request_id"], "job-1")
        self.assertEqual(line["service"], "facilityflow")


if __name__ == "__main__":
    unittest.main()
