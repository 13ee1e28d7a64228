"""
Database Abstraction Layer.

Owns the two connections the credential core can talk to:

- **SQLite (local)**: always present.  Holds the principals, role profiles
  and the per-portal persisted-session slots.  When no remote store is
  configured it is the credential store.

- **Supabase (cloud PostgreSQL)**: optional authoritative store for
  ``principals`` and ``role_profiles``.  Writes land there first and are
  mirrored into SQLite; reads fall back to SQLite when it is unreachable.

Data access is performed through the Repository pattern.  This module only
manages the raw database *connections*; it contains no query logic.

Usage (dependency injection at app startup)::

    from portal.database import DatabaseManager
    from portal.logger import StructuredLogger

    db = DatabaseManager(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_ANON_KEY.get_secret_value(),
        sqlite_path=Path(settings.SQLITE_PATH),
        logger=StructuredLogger(name="database"),
    )
"""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from supabase import create_client, Client as SupabaseClient

from portal.logger import StructuredLogger


class DatabaseManager:
    """Manages connections to the local SQLite database and cloud Supabase instance.

    Fully configured at construction time via dependency injection.

    When ``supabase_url`` or ``supabase_key`` is empty the Supabase client
    is **not** created and the local database is the only store.  The
    ``RuntimeError`` raised by the ``supabase`` property in that case is
    caught by the repository read paths.

    Parameters
    ----------
    supabase_url:
        The Supabase project URL.  May be empty.
    supabase_key:
        The Supabase key.  May be empty.
    sqlite_path:
        Filesystem path for the local SQLite database file.  ``":memory:"``
        is accepted for throwaway stores.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        supabase_url: str,
        supabase_key: str,
        sqlite_path: Path,
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        # Thread ident of the open batch_write() context, if any.
        self._batch_owner: Optional[int] = None
        self._closed: bool = False

        # --- Supabase (optional) ---
        self._supabase: Optional[SupabaseClient] = None
        if supabase_url and supabase_key:
            try:
                self._supabase = create_client(supabase_url, supabase_key)
                self._logger.info("Supabase client initialized.")
            except (ValueError, TypeError) as exc:
                self._logger.warning(
                    "Supabase credential format error: %s. Using the local store only.",
                    exc,
                )
            except Exception as exc:
                self._logger.error(
                    "Unexpected Supabase initialization failure: %s. "
                    "Using the local store only.",
                    exc,
                    exc_info=True,
                )
        else:
            self._logger.info(
                "Supabase credentials not configured; using the local store only."
            )

        # --- SQLite (always required) ---
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def supabase(self) -> SupabaseClient:
        """Return the initialised Supabase client.

        Raises
        ------
        RuntimeError
            If the Supabase client was not initialised.
        """
        if self._supabase is None:
            raise RuntimeError(
                "Supabase client is not initialised. "
                "The local store is the only credential store."
            )
        return self._supabase

    @property
    def is_online(self) -> bool:
        """``True`` when the Supabase client is available."""
        return self._supabase is not None

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Return the write lock for thread-safe SQLite operations.

        All code that performs SQLite writes should acquire this lock
        first::

            with db.write_lock:
                db.sqlite.execute("UPDATE ...")
                db.sqlite.commit()
        """
        return self._write_lock

    @property
    def in_batch(self) -> bool:
        """``True`` when the calling thread has a :meth:`batch_write` open."""
        return self._batch_owner == threading.get_ident()

    @contextmanager
    def batch_write(self) -> Generator[None, None, None]:
        """Context manager that groups several writes into one transaction.

        The write lock is held for the whole context, so other threads wait
        for it to finish.  For the owning thread :pyattr:`in_batch` is
        ``True`` and repository ``_commit()`` calls become no-ops.  On
        normal exit a single ``commit()`` is issued.  On exception the transaction
        is rolled back and the error re-raised.

        The credential issuer uses it so a principal never exists without
        its role profile::

            with db.batch_write():
                principal_id = repo.insert_principal(...)
                repo.insert_role_profile(...)
        """
        with self._write_lock:
            if self._batch_owner == threading.get_ident():
                # Re-entrant: the outer batch commits.
                yield
                return

            self._batch_owner = threading.get_ident()
            try:
                yield
                self._sqlite_conn.commit()
                self._logger.debug("Batch write committed.")
            except Exception:
                self._sqlite_conn.rollback()
                self._logger.error(
                    "Batch write rolled back due to exception.", exc_info=True,
                )
                raise
            finally:
                self._batch_owner = None

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the local SQLite connection.

        Safe to call multiple times; subsequent calls are no-ops.
        """
        with self._write_lock:
            if self._closed:
                return
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                pass
            self._closed = True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Path) -> sqlite3.Connection:
        """Open (or create) the SQLite database.

        Store calls run on a worker thread (see ``SessionManager``), so
        the connection is opened with ``check_same_thread=False`` and
        writes are serialised through :pyattr:`write_lock`.

        Raises
        ------
        PermissionError
            If the OS denies access to the database file or its directory.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            if str(path) != ":memory:":
                conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA foreign_keys = ON;")
            self._logger.info("SQLite database opened at %s", path)
            return conn
        except PermissionError as exc:
            msg = (
                f"Cannot open the local database at '{path}'. "
                "The file or its directory may be read-only or locked by "
                "another process.  Please check file permissions and try again."
            )
            self._logger.error(msg)
            raise PermissionError(msg) from exc
