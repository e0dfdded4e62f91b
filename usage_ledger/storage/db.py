"""
Database connection management.

Provides SQLite connections and write transactions for the usage ledger.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

DEFAULT_DB_PATH = "usage_ledger.db"
DEFAULT_BUSY_TIMEOUT = 30.0


def get_connection(
    db_path: str = DEFAULT_DB_PATH,
    timeout: float = DEFAULT_BUSY_TIMEOUT
) -> sqlite3.Connection:
    """Create and return a SQLite connection in autocommit mode.

    Transactions are opened explicitly with write_transaction() so that the
    write lock is taken before any statement runs.

    Args:
        db_path: Path to SQLite database file
        timeout: Seconds to wait for a competing writer before failing

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(str(path), timeout=timeout, isolation_level=None)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def write_transaction(
    db_path: str = DEFAULT_DB_PATH,
    timeout: float = DEFAULT_BUSY_TIMEOUT
) -> Iterator[sqlite3.Connection]:
    """Yield a connection holding the database write lock.

    BEGIN IMMEDIATE serializes writers on the same file, across threads and
    processes. The transaction commits when the block exits normally and
    rolls back on any exception, including KeyboardInterrupt.
    """
    conn = get_connection(db_path, timeout)
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BaseException:
        if conn.in_transaction:
            conn.rollback()
        raise
    finally:
        conn.close()
