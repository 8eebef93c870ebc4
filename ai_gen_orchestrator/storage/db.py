"""
Database connection management.

Provides SQLite connections for the ledger, job history and settings.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "ai_gen_orchestrator.db"


def get_connection(db_path: str = DEFAULT_DB_PATH, timeout: float = 30.0) -> sqlite3.Connection:
    """Create and return a SQLite database connection with foreign keys enabled.

    Concurrent writers wait on SQLite's lock for up to `timeout` seconds.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a locked database

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn
