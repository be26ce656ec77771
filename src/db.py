"""Shared SQLite helpers: WAL mode, busy timeout, immediate transactions."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

BUSY_TIMEOUT_MS = 5000


def wal_connect(
    db_path: str | Path,
    row_factory: bool = False,
    autocommit: bool = False,
) -> sqlite3.Connection:
    """Open SQLite connection with WAL journal mode.

    Args:
        db_path: Path to database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        autocommit: If True, disable the implicit transaction handling so
            callers can issue BEGIN/COMMIT themselves.
    """
    conn = sqlite3.connect(
        str(db_path),
        timeout=BUSY_TIMEOUT_MS / 1000,
        isolation_level=None if autocommit else "",
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def transaction(db_path: str | Path) -> Iterator[sqlite3.Connection]:
    """Run a block inside BEGIN IMMEDIATE; commit on success, roll back on error.

    The write lock is taken up front so two writers never interleave a
    read-modify-write sequence.
    """
    conn = wal_connect(db_path, row_factory=True, autocommit=True)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()
