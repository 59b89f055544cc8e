import os
import sqlite3
import unittest

from facilityflow import create_app
from facilityflow.config import Config
from facilityflow.db import SCHEMA_TABLES, close_db
from facilityflow.db_migrations import schema_state, to_sqlalchemy_url
from tests.helpers.temp_db import TempDbSandbox


def _table_exists(db_path: str, table_name: str) -> bool:
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        ).fetchone()
        return row is not None
    finally:
        conn.close()


class DbMigrationsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.sandbox = TempDbSandbox(prefix="migrations")
        self._saved_env = {key: os.environ.pop(key, None) for key in ("FLASK_ENV", "DATABASE_URL", "DB_PATH")}
        os.environ["FLASK_ENV"] = "development"

    def tearDown(self) -> None:
        for key, value in self._saved_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        self.sandbox.cleanup()

    def _build_app(self, *, testing: bool, db_auto_init: bool):
        return create_app(self.sandbox.make_config(Config, TESTING=testing, DB_AUTO_INIT=db_auto_init))

    def test_schema_not_created_by_default(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        with app.app_context():
            close_db()

        self.assertFalse(_table_exists(self.sandbox.db_path, "rfqs"))

    def test_schema_created_with_explicit_dev_flag(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        with app.app_context():
            close_db()

        for table in SCHEMA_TABLES:
            self.assertTrue(_table_exists(self.sandbox.db_path, table), table)

    def test_flask_db_upgrade_and_downgrade(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        runner = app.test_cli_runner()

        upgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(upgrade_result.exit_code, 0, msg=upgrade_result.output)
        self.assertTrue(_table_exists(self.sandbox.db_path, "external_submission_tokens"))

        downgrade_result = runner.invoke(args=["db", "downgrade", "base"])
        self.assertEqual(downgrade_result.exit_code, 0, msg=downgrade_result.output)
        self.assertFalse(_table_exists(self.sandbox.db_path, "rfqs"))

        reupgrade_result = runner.invoke(args=["db", "upgrade"])
        self.assertEqual(reupgrade_result.exit_code, 0, msg=reupgrade_result.output)
        self.assertTrue(_table_exists(self.sandbox.db_path, "rfqs"))

    def test_bootstrap_stamps_auto_initialised_schema(self) -> None:
        app = self._build_app(testing=False, db_auto_init=True)
        self.assertEqual(schema_state(self.sandbox.db_path), "unversioned")

        result = app.test_cli_runner().invoke(args=["db", "bootstrap"])
        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertIn("stamped", result.output)
        self.assertEqual(schema_state(self.sandbox.db_path), "versioned")

    def test_bootstrap_upgrades_empty_database(self) -> None:
        app = self._build_app(testing=False, db_auto_init=False)
        self.assertEqual(schema_state(self.sandbox.db_path), "empty")

        result = app.test_cli_runner().invoke(args=["db", "bootstrap"])
        self.assertEqual(result.exit_code, 0, msg=result.output)
        self.assertTrue(_table_exists(self.sandbox.db_path, "quotation_pdf_copies"))
        self.assertEqual(schema_state(self.sandbox.db_path), "versioned")

    def test_sqlalchemy_url_mapping(self) -> None:
        self.assertEqual(to_sqlalchemy_url("postgres://u:p@db/ff"), "postgresql://u:p@db/ff")
        self.assertEqual(to_sqlalchemy_url("sqlite:///x.db"), "sqlite:///x.db")
        self.assertTrue(to_sqlalchemy_url(self.sandbox.db_path).startswith("sqlite:///"))
        with self.assertRaises(RuntimeError):
            to_sqlalchemy_url("  ")


class DatabaseTransactionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.sandbox = TempDbSandbox(prefix="transactions")
        self.db = self.sandbox.connect()

    def tearDown(self) -> None:
        self.db.close()
        self.sandbox.cleanup()

    def _settings_count(self) -> int:
        return int(self.db.execute("SELECT COUNT(*) AS total FROM system_settings").fetchone()["total"])

    def test_transaction_rolls_back_on_error(self) -> None:
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                self.db.execute("INSERT INTO system_settings (key, value) VALUES ('a', '1')")
                raise RuntimeError("boom")
        self.assertEqual(self._settings_count(), 0)
        self.assertFalse(self.db.in_transaction)

    def test_savepoint_failure_keeps_outer_work(self) -> None:
        with self.db.transaction():
            self.db.execute("INSERT INTO system_settings (key, value) VALUES ('a', '1')")
            with self.assertRaises(sqlite3.IntegrityError):
                with self.db.savepoint():
                    self.db.execute("INSERT INTO system_settings (key, value) VALUES ('b', '2')")
                    self.db.execute("INSERT INTO system_settings (key, value) VALUES ('a', '3')")
            self.assertTrue(self.db.in_transaction)
        rows = self.db.execute("SELECT key, value FROM system_settings ORDER BY key").fetchall()
        self.assertEqual([(row["key"], row["value"]) for row in rows], [("a", "1")])

    def test_nested_transaction_becomes_savepoint(self) -> None:
        with self.db.transaction():
            with self.db.transaction():
                self.db.execute("INSERT INTO system_settings (key, value) VALUES ('x', '1')")
        self.assertEqual(self._settings_count(), 1)


if __name__ == "__main__":
    unittest.main()
