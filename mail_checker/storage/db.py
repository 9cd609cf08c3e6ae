"""
SQLite database connection and schema management.

This module provides a simple, synchronous interface for SQLite database
operations with connection management and schema initialization. Only
preferences and encrypted credentials are persisted; cookies never are.
"""
import sqlite3
from typing import Any, List, Optional, Tuple

from mail_checker import config


def get_connection() -> sqlite3.Connection:
    """
    Get a SQLite database connection.

    Returns:
        A sqlite3.Connection with row_factory set to sqlite3.Row.

    Note:
        The connection should be closed by the caller when done.
    """
    db_path = config.SQLITE_DB_PATH
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    # WAL allows the UI to read while a check thread writes
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


def init_db() -> None:
    """
    Initialize the database schema.

    Creates all required tables if they don't exist. Safe to call on
    every start.
    """
    conn = get_connection()
    try:
        cursor = conn.cursor()

        # Settings table (key-value store, one JSON object per account)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # Credentials table (Fernet-encrypted secrets per login realm)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS credentials (
                username TEXT NOT NULL,
                realm TEXT NOT NULL,
                encrypted_secret TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (username, realm)
            )
        """)

        conn.commit()
    finally:
        conn.close()


def execute(query: str, params: Tuple[Any, ...] = ()) -> int:
    """
    Execute a modifying SQL statement.

    Args:
        query: SQL query string.
        params: Query parameters.

    Returns:
        The number of affected rows.
    """
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(query, params)
        conn.commit()
        return cursor.rowcount
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def fetchall(query: str, params: Tuple[Any, ...] = ()) -> List[sqlite3.Row]:
    """
    Execute a SELECT query and return all rows.

    Example:
        >>> rows = fetchall("SELECT username FROM credentials WHERE realm = ?", (realm,))
    """
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return cursor.fetchall()
    finally:
        conn.close()


def fetchone(query: str, params: Tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
    """Execute a SELECT query and return the first row, or None."""
    conn = get_connection()
    try:
        cursor = conn.cursor()
        cursor.execute(query, params)
        return cursor.fetchone()
    finally:
        conn.close()
