"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference (Supabase + SQLite)
- Logger reference
- Convenience properties for accessing clients
- Read fallback and strict write helpers
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Optional, TypeVar

from supabase import Client as SupabaseClient

from portal.database import DatabaseManager
from portal.errors import DuplicateIdentifierError, PersistenceFailure
from portal.logger import StructuredLogger

T = TypeVar("T")

# PostgREST error code for a unique-constraint violation.
_PG_UNIQUE_VIOLATION = "23505"


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__."""

    TABLE: str = ""

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    @property
    def supabase(self) -> SupabaseClient:
        """Returns the Supabase client for cloud operations."""
        return self._db.supabase

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Returns the SQLite connection for local operations."""
        return self._db.sqlite

    def _execute_with_fallback(
        self,
        supabase_op: Callable[[], Optional[T]],
        sqlite_op: Callable[[], Optional[T]],
        default_factory: Callable[[], T],
        *,
        operation_name: str,
        on_supabase_success: Optional[Callable[[T], None]] = None,
    ) -> T:
        """Execute a read with Supabase-first, SQLite-fallback semantics.

        Execution order:
        1. When online, call ``supabase_op()``.  A non-``None`` result is
           passed to ``on_supabase_success`` (cache warming) and returned.
        2. Call ``sqlite_op()``.  A non-``None`` result is returned.
        3. Return ``default_factory()``.

        NOT intended for write paths; see :meth:`_execute_write`.
        """
        if self._db.is_online:
            try:
                result = supabase_op()
                if result is not None:
                    if on_supabase_success is not None:
                        try:
                            on_supabase_success(result)
                        except Exception as cache_exc:
                            self._logger.warning(
                                "Post-Supabase callback failed for %s: %s",
                                operation_name,
                                cache_exc,
                            )
                    return result
            except Exception as exc:
                self._logger.warning(
                    "Supabase unavailable for %s: %s", operation_name, exc
                )

        try:
            result = sqlite_op()
            if result is not None:
                return result
        except sqlite3.Error as sqlite_exc:
            self._logger.error(
                "SQLite read failed for %s: %s",
                operation_name,
                sqlite_exc,
            )
            raise PersistenceFailure(
                f"Credential store unavailable for {operation_name}.",
                original_error=sqlite_exc,
            ) from sqlite_exc

        return default_factory()

    def _execute_write(
        self,
        supabase_op: Callable[[], Optional[dict[str, Any]]],
        sqlite_op: Callable[[Optional[dict[str, Any]]], T],
        *,
        operation_name: str,
        duplicate_message: Optional[str] = None,
    ) -> T:
        """Write to Supabase (when online) and mirror the result into SQLite.

        ``sqlite_op`` receives the row Supabase returned (``None`` when
        offline) so server-assigned ids can be mirrored locally.

        Credential writes are never queued for later: any failure is
        raised as :class:`PersistenceFailure` so the caller can keep its
        state unchanged.  When ``duplicate_message`` is given, a unique-key
        collision raises :class:`DuplicateIdentifierError` instead.
        SQLite changes are rolled back on error unless an outer
        :meth:`DatabaseManager.batch_write` owns the transaction.
        """
        remote_row: Optional[dict[str, Any]] = None
        if self._db.is_online:
            try:
                remote_row = supabase_op()
            except Exception as exc:
                if duplicate_message and getattr(exc, "code", None) == _PG_UNIQUE_VIOLATION:
                    raise DuplicateIdentifierError(
                        duplicate_message, original_error=exc,
                    ) from exc
                self._logger.error(
                    "Supabase write failed for %s: %s", operation_name, exc,
                )
                raise PersistenceFailure(
                    f"Credential store rejected {operation_name}.",
                    original_error=exc,
                ) from exc

        with self._db.write_lock:
            try:
                result = sqlite_op(remote_row)
                self._commit()
                return result
            except sqlite3.Error as exc:
                if not self._db.in_batch:
                    self.sqlite.rollback()
                if duplicate_message and isinstance(exc, sqlite3.IntegrityError):
                    raise DuplicateIdentifierError(
                        duplicate_message, original_error=exc,
                    ) from exc
                self._logger.error(
                    "SQLite write failed for %s: %s", operation_name, exc,
                )
                raise PersistenceFailure(
                    f"Local store rejected {operation_name}.",
                    original_error=exc,
                ) from exc

    def _commit(self) -> None:
        """Commit the SQLite transaction unless a batch is active.

        All repository code should call ``self._commit()`` instead of
        ``self.sqlite.commit()`` so that batch writes work transparently.
        """
        if not self._db.in_batch:
            self.sqlite.commit()
