import os
import sqlite3

from enclave.core.config import ENCLAVE_DB_PATH


def get_conn(db_path: str | None = None) -> sqlite3.Connection:
    """Return a new SQLite connection with Row factory and FK enforcement."""
    path = db_path or ENCLAVE_DB_PATH
    if path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    conn = sqlite3.connect(path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
