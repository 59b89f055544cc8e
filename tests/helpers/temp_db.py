from __future__ import annotations

import os
import shutil
import sqlite3
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path

from facilityflow.db import Database, connect_database, init_db


_REPO_ROOT = Path(__file__).resolve().parents[2]
_TEMP_ROOT = Path(tempfile.gettempdir()).resolve()
_SQLITE_SIDE_FILES = ("", "-journal", "-wal", "-shm")
_RESERVED_FOLDERS = (".tmp_run",)
_RESERVED_FOLDER_PREFIXES = ("ff_",)


def assert_safe_temp_db_path(db_path: str) -> None:
    """Refuse any path that could clobber a real database."""
    resolved = Path(db_path).resolve()
    if not resolved.is_relative_to(_TEMP_ROOT):
        raise ValueError(f"Temporary DB must live under TEMP: {resolved}")
    if resolved.is_relative_to(_REPO_ROOT):
        raise ValueError(f"Temporary DB cannot live inside repository: {resolved}")
    for part in (p.lower() for p in resolved.parts):
        if part in _RESERVED_FOLDERS or part.startswith(_RESERVED_FOLDER_PREFIXES):
            raise ValueError(f"Temporary DB cannot live under reserved folder {part!r}: {resolved}")


def open_sqlite_temp_connection(db_path: str) -> sqlite3.Connection:
    assert_safe_temp_db_path(db_path)
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.execute("PRAGMA journal_mode=DELETE")
    return conn


def _retrying(action, attempts: int = 8, base_delay: float = 0.05) -> None:
    # Windows keeps sqlite files locked for a moment after close.
    for attempt in range(attempts):
        try:
            action()
            return
        except FileNotFoundError:
            return
        except OSError:
            if attempt == attempts - 1:
                raise
            time.sleep(base_delay * (2**attempt))


def remove_tree_with_retry(path: str) -> None:
    root = Path(path)

    def _remove() -> None:
        for current, dirnames, filenames in os.walk(root, topdown=False):
            for name in [*filenames, *dirnames]:
                os.chmod(Path(current) / name, 0o700)
        shutil.rmtree(root)

    if root.exists():
        _retrying(_remove)


@dataclass
class TempDbSandbox:
    """Throwaway sqlite file under the system temp dir, one per test case."""

    prefix: str = "facilityflow_tests"
    db_name: str = "facilityflow_test.db"
    temp_dir: str = field(init=False)
    db_path: str = field(init=False)

    def __post_init__(self) -> None:
        folder = _TEMP_ROOT / f"{self.prefix}_{uuid.uuid4().hex}"
        folder.mkdir(parents=True, exist_ok=False)
        self.temp_dir = str(folder)
        self.db_path = str(folder / self.db_name)
        open_sqlite_temp_connection(self.db_path).close()

    def connect(self, *, with_schema: bool = True) -> Database:
        db = connect_database(self.db_path)
        if with_schema:
            init_db(db)
        return db

    def make_config(self, base_config, **overrides):
        attrs = {
            "DATABASE_DIR": self.temp_dir,
            "DB_PATH": self.db_path,
            "UPLOAD_FOLDER": str(Path(self.temp_dir) / "uploads"),
            "LOG_JSON": False,
        }
        attrs.update(overrides)
        return type("TempConfig", (base_config,), attrs)

    def cleanup(self) -> None:
        for suffix in _SQLITE_SIDE_FILES:
            side_file = Path(self.db_path + suffix)
            _retrying(lambda: side_file.unlink(missing_ok=True))
        remove_tree_with_retry(self.temp_dir)
