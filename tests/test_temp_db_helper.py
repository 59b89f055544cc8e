import os
import tempfile
import unittest
from pathlib import Path

from facilityflow.db import SCHEMA_TABLES
from tests.helpers.temp_db import TempDbSandbox, assert_safe_temp_db_path, open_sqlite_temp_connection


class TempDbHelperTest(unittest.TestCase):
    def test_sandbox_lives_under_temp_and_cleans_up(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_sanity")
        db_path, temp_dir = sandbox.db_path, sandbox.temp_dir
        self.assertTrue(Path(db_path).resolve().is_relative_to(Path(tempfile.gettempdir()).resolve()))

        conn = open_sqlite_temp_connection(db_path)
        try:
            conn.execute("CREATE TABLE sanity (id INTEGER PRIMARY KEY)")
        finally:
            conn.close()
        Path(db_path + "-journal").write_bytes(b"")

        sandbox.cleanup()
        self.assertFalse(os.path.exists(db_path + "-journal"))
        self.assertFalse(os.path.exists(temp_dir))

    def test_connect_builds_schema_on_request(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_schema")
        try:
            bare = sandbox.connect(with_schema=False)
            self.assertEqual(bare.execute("SELECT COUNT(*) AS n FROM sqlite_master").fetchone()["n"], 0)
            bare.close()

            db = sandbox.connect()
            names = {row["name"] for row in db.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
            db.close()
            self.assertTrue(set(SCHEMA_TABLES) <= names)
        finally:
            sandbox.cleanup()

    def test_config_points_at_sandbox(self) -> None:
        sandbox = TempDbSandbox(prefix="temp_db_config")
        try:
            config = sandbox.make_config(object, TESTING=True)
            self.assertEqual(config.DB_PATH, sandbox.db_path)
            self.assertTrue(config.UPLOAD_FOLDER.startswith(sandbox.temp_dir))
            self.assertFalse(config.LOG_JSON)
        finally:
            sandbox.cleanup()

    def test_disallow_workspace_and_reserved_paths(self) -> None:
        unsafe = [
            os.path.join(os.getcwd(), "facilityflow_test.db"),
            os.path.join(tempfile.gettempdir(), ".tmp_run", "facilityflow_test.db"),
            os.path.join(tempfile.gettempdir(), "ff_shared", "facilityflow_test.db"),
        ]
        for path in unsafe:
            with self.assertRaises(ValueError, msg=path):
                assert_safe_temp_db_path(path)


if __name__ == "__main__":
    unittest.main()
