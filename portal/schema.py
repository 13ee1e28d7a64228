"""
Centralized SQLite Schema Initialization.

Defines the canonical schema for the SchoolGate local database and
provides a single entry-point -- :func:`initialize_schema` -- that creates
all required tables idempotently.  A single-row ``schema_version`` table
records which layout the file was created with.

Tables
~~~~~~
- ``principals``: one row per authenticable account (all three roles).
- ``role_profiles``: 1:1 display enrichment for a principal.
- ``persisted_sessions``: one encrypted slot per portal
  (``adminAuth``, ``teacherAuth``, ``studentAuth``).
- ``session_slot_versions``: last write stamp handed out per slot.

Every statement is ``CREATE ... IF NOT EXISTS``, so a file stamped with an
older version is brought up to date by re-applying them.

Usage::

    from portal.logger import StructuredLogger
    from portal.schema import initialize_schema

    initialize_schema(db.sqlite, StructuredLogger(name="schema"))
"""

from __future__ import annotations

import sqlite3

from portal.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

# ---------------------------------------------------------------------------
# Schema version -- bump this whenever the DDL below changes.
# ---------------------------------------------------------------------------
CURRENT_SCHEMA_VERSION: int = 1

# ---------------------------------------------------------------------------
# DDL statements for every table in the local database.
# ---------------------------------------------------------------------------
_TABLE_DEFINITIONS: list[str] = [
    # -- single-row version tracker -------------------------------------------
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- principals (credential store) ----------------------------------------
    """
    CREATE TABLE IF NOT EXISTS principals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        external_id TEXT NOT NULL UNIQUE,
        role TEXT NOT NULL
             CHECK (role IN ('admin', 'teacher', 'student')),
        password_hash TEXT NOT NULL,
        temporary_password TEXT,
        must_rotate_password INTEGER NOT NULL DEFAULT 1,
        is_active INTEGER NOT NULL DEFAULT 1,
        last_login_at TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        CHECK (temporary_password IS NULL OR must_rotate_password = 1)
    )
    """,
    # -- role_profiles (display enrichment) -----------------------------------
    """
    CREATE TABLE IF NOT EXISTS role_profiles (
        principal_id INTEGER PRIMARY KEY,
        display_name TEXT NOT NULL,
        department TEXT,
        class_name TEXT,
        subjects TEXT NOT NULL DEFAULT '[]',
        classes TEXT NOT NULL DEFAULT '[]',
        FOREIGN KEY (principal_id) REFERENCES principals(id) ON DELETE CASCADE
    )
    """,
    # -- persisted_sessions (one encrypted slot per portal) -------------------
    """
    CREATE TABLE IF NOT EXISTS persisted_sessions (
        slot TEXT PRIMARY KEY,
        encrypted_payload BLOB NOT NULL,
        nonce BLOB NOT NULL,
        tag BLOB NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # -- session_slot_versions (monotonic write stamp, survives slot deletes) -
    """
    CREATE TABLE IF NOT EXISTS session_slot_versions (
        slot TEXT PRIMARY KEY,
        version INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_principals_role ON principals(role)",
]


def _get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the stamped schema version, or ``0`` for a fresh file."""
    conn.execute(_TABLE_DEFINITIONS[0])
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return row[0] if row is not None else 0


def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Create any missing table and stamp :data:`CURRENT_SCHEMA_VERSION`.

    Runs in one transaction; on failure nothing is stamped and the next
    startup retries.  Safe to call on every startup.
    """
    current = _get_schema_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Schema is up to date (version %d).", current)
        return

    try:
        for ddl in _TABLE_DEFINITIONS:
            conn.execute(ddl)
        conn.execute(
            """
            INSERT INTO schema_version (id, version) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                          applied_at = CURRENT_TIMESTAMP
            """,
            (CURRENT_SCHEMA_VERSION,),
        )
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error("Schema initialisation failed; version %d kept.", current)
        raise

    logger.info("Schema initialised at version %d.", CURRENT_SCHEMA_VERSION)
