"""
Principal Repository.

The credential store: principals and their role profiles, read from
Supabase (primary, when configured) with SQLite as the local copy.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from typing import Any, Optional

from portal.database import DatabaseManager
from portal.logger import StructuredLogger
from portal.models.enums import PortalRole
from portal.models.principal import Principal, RoleProfile
from portal.repositories.base_repository import BaseRepository


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_list(value: Any) -> list[str]:
    """Role profile lists are JSON text locally and arrays remotely."""
    if value is None:
        return []
    if isinstance(value, str):
        return list(json.loads(value))
    return list(value)


class PrincipalRepository(BaseRepository):
    """Data access layer for Principal and RoleProfile entities.

    **No ``delete()`` method.**  Principals are deactivated with
    :meth:`set_active`; their rows and identifiers stay reserved forever so
    an external identifier is never reissued.
    """

    TABLE = "principals"
    PROFILE_TABLE = "role_profiles"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, principal_id: int) -> Optional[Principal]:
        """Fetch a principal by primary key. Tries Supabase first, falls back to SQLite."""
        def _supabase() -> Optional[Principal]:
            response = (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("id", principal_id)
                .maybe_single()
                .execute()
            )
            return Principal(**response.data) if response and response.data else None

        def _sqlite() -> Optional[Principal]:
            row = self.sqlite.execute(
                f"SELECT * FROM {self.TABLE} WHERE id = ?", (principal_id,)
            ).fetchone()
            return Principal(**dict(row)) if row else None

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=lambda: None,
            operation_name="get_by_id (principals)",
            on_supabase_success=self._cache_principal,
        )

    def find_by_external_id(self, external_id: str) -> Optional[Principal]:
        """Fetch a principal by its issued identifier (e.g. ``TEA2025001``).

        Inactive principals are returned too; the caller decides what an
        inactive account means.
        """
        def _supabase() -> Optional[Principal]:
            response = (
                self.supabase.table(self.TABLE)
                .select("*")
                .eq("external_id", external_id)
                .maybe_single()
                .execute()
            )
            return Principal(**response.data) if response and response.data else None

        def _sqlite() -> Optional[Principal]:
            row = self.sqlite.execute(
                f"SELECT * FROM {self.TABLE} WHERE external_id = ?", (external_id,)
            ).fetchone()
            return Principal(**dict(row)) if row else None

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=lambda: None,
            operation_name="find_by_external_id (principals)",
            on_supabase_success=self._cache_principal,
        )

    def find_role_profile(self, principal_id: int) -> Optional[RoleProfile]:
        """Fetch the 1:1 role profile of a principal."""
        def _supabase() -> Optional[RoleProfile]:
            response = (
                self.supabase.table(self.PROFILE_TABLE)
                .select("*")
                .eq("principal_id", principal_id)
                .maybe_single()
                .execute()
            )
            return self._row_to_profile(response.data) if response and response.data else None

        def _sqlite() -> Optional[RoleProfile]:
            row = self.sqlite.execute(
                f"SELECT * FROM {self.PROFILE_TABLE} WHERE principal_id = ?",
                (principal_id,),
            ).fetchone()
            return self._row_to_profile(dict(row)) if row else None

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=lambda: None,
            operation_name="find_role_profile (role_profiles)",
            on_supabase_success=self._cache_profile,
        )

    def external_id_exists(self, external_id: str) -> bool:
        """``True`` when any principal, active or not, holds *external_id*."""
        def _supabase() -> Optional[bool]:
            response = (
                self.supabase.table(self.TABLE)
                .select("id")
                .eq("external_id", external_id)
                .execute()
            )
            return bool(response.data)

        def _sqlite() -> Optional[bool]:
            row = self.sqlite.execute(
                f"SELECT 1 FROM {self.TABLE} WHERE external_id = ?", (external_id,)
            ).fetchone()
            return row is not None

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=lambda: False,
            operation_name="external_id_exists (principals)",
        )

    def count_with_prefix(self, prefix: str) -> int:
        """Count principals whose identifier starts with *prefix* (e.g. ``TEA2025``)."""
        def _supabase() -> Optional[int]:
            response = (
                self.supabase.table(self.TABLE)
                .select("id", count="exact")
                .like("external_id", f"{prefix}%")
                .execute()
            )
            return response.count if response.count is not None else len(response.data)

        def _sqlite() -> Optional[int]:
            row = self.sqlite.execute(
                f"SELECT COUNT(*) FROM {self.TABLE} WHERE external_id LIKE ?",
                (f"{prefix}%",),
            ).fetchone()
            return int(row[0])

        return self._execute_with_fallback(
            supabase_op=_supabase,
            sqlite_op=_sqlite,
            default_factory=lambda: 0,
            operation_name="count_with_prefix (principals)",
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_principal(
        self,
        external_id: str,
        role: PortalRole,
        password_hash: str,
        temporary_password: Optional[str],
        must_rotate_password: bool = True,
    ) -> Principal:
        """Create a principal row.

        Raises:
            DuplicateIdentifierError: *external_id* is already taken.
            PersistenceFailure: The store refused the write.
        """
        now = _utc_now_iso()
        data: dict[str, Any] = {
            "external_id": external_id,
            "role": str(role),
            "password_hash": password_hash,
            "temporary_password": temporary_password,
            "must_rotate_password": must_rotate_password,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }

        def _supabase() -> Optional[dict[str, Any]]:
            response = self.supabase.table(self.TABLE).insert(data).execute()
            return response.data[0] if response.data else None

        def _sqlite(remote: Optional[dict[str, Any]]) -> Principal:
            cursor = self.sqlite.execute(
                f"""
                INSERT INTO {self.TABLE}
                    (id, external_id, role, password_hash, temporary_password,
                     must_rotate_password, is_active, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    remote["id"] if remote else None,
                    external_id,
                    str(role),
                    password_hash,
                    temporary_password,
                    int(must_rotate_password),
                    now,
                    now,
                ),
            )
            return Principal(
                id=remote["id"] if remote else cursor.lastrowid,
                external_id=external_id,
                role=role,
                password_hash=password_hash,
                temporary_password=temporary_password,
                must_rotate_password=must_rotate_password,
                is_active=True,
                created_at=now,
                updated_at=now,
            )

        principal = self._execute_write(
            _supabase,
            _sqlite,
            operation_name="insert_principal",
            duplicate_message=f"Identifier {external_id} is already taken.",
        )
        self._logger.info("Principal inserted: %s", external_id)
        return principal

    def insert_role_profile(self, profile: RoleProfile) -> RoleProfile:
        """Create the role profile of a freshly inserted principal."""
        data: dict[str, Any] = profile.model_dump()

        def _supabase() -> Optional[dict[str, Any]]:
            response = self.supabase.table(self.PROFILE_TABLE).insert(data).execute()
            return response.data[0] if response.data else None

        def _sqlite(_remote: Optional[dict[str, Any]]) -> RoleProfile:
            self._write_profile_row(profile)
            return profile

        return self._execute_write(
            _supabase, _sqlite, operation_name="insert_role_profile",
        )

    def update_password_hash(
        self,
        principal_id: int,
        password_hash: str,
        *,
        clear_temp: bool,
        clear_must_rotate: bool,
    ) -> Optional[Principal]:
        """Replace the password hash and optionally clear the rotation flags.

        Clearing ``must_rotate_password`` while keeping the temporary
        password would break the principal invariant, so it is refused.

        Returns:
            The updated principal, or ``None`` if *principal_id* does not exist.
        """
        if clear_must_rotate and not clear_temp:
            raise ValueError(
                "must_rotate_password cannot be cleared while a temporary "
                "password is kept"
            )

        now = _utc_now_iso()
        changes: dict[str, Any] = {"password_hash": password_hash, "updated_at": now}
        if clear_temp:
            changes["temporary_password"] = None
        if clear_must_rotate:
            changes["must_rotate_password"] = False

        def _supabase() -> Optional[dict[str, Any]]:
            response = (
                self.supabase.table(self.TABLE)
                .update(changes)
                .eq("id", principal_id)
                .execute()
            )
            return response.data[0] if response.data else None

        def _sqlite(_remote: Optional[dict[str, Any]]) -> int:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            values = [
                int(value) if isinstance(value, bool) else value
                for value in changes.values()
            ]
            cursor = self.sqlite.execute(
                f"UPDATE {self.TABLE} SET {assignments} WHERE id = ?",
                (*values, principal_id),
            )
            return cursor.rowcount

        updated = self._execute_write(
            _supabase, _sqlite, operation_name="update_password_hash",
        )
        if not updated:
            self._logger.warning(
                "Cannot update password for principal %s: not found.", principal_id,
            )
            return None
        return self.get_by_id(principal_id)

    def set_active(self, principal_id: int, active: bool) -> Optional[Principal]:
        """Activate or deactivate a principal.

        Returns:
            The updated principal, or ``None`` if *principal_id* does not exist.
        """
        now = _utc_now_iso()

        def _supabase() -> Optional[dict[str, Any]]:
            response = (
                self.supabase.table(self.TABLE)
                .update({"is_active": active, "updated_at": now})
                .eq("id", principal_id)
                .execute()
            )
            return response.data[0] if response.data else None

        def _sqlite(_remote: Optional[dict[str, Any]]) -> int:
            cursor = self.sqlite.execute(
                f"UPDATE {self.TABLE} SET is_active = ?, updated_at = ? WHERE id = ?",
                (int(active), now, principal_id),
            )
            return cursor.rowcount

        updated = self._execute_write(
            _supabase, _sqlite, operation_name="set_active",
        )
        if not updated:
            self._logger.warning(
                "Cannot change activation of principal %s: not found.", principal_id,
            )
            return None
        return self.get_by_id(principal_id)

    def record_login(self, principal_id: int, at: Optional[datetime] = None) -> None:
        """Stamp ``last_login_at`` after a successful authentication."""
        stamp = (at or datetime.now(timezone.utc)).isoformat()

        def _supabase() -> Optional[dict[str, Any]]:
            response = (
                self.supabase.table(self.TABLE)
                .update({"last_login_at": stamp})
                .eq("id", principal_id)
                .execute()
            )
            return response.data[0] if response.data else None

        def _sqlite(_remote: Optional[dict[str, Any]]) -> None:
            self.sqlite.execute(
                f"UPDATE {self.TABLE} SET last_login_at = ? WHERE id = ?",
                (stamp, principal_id),
            )

        self._execute_write(_supabase, _sqlite, operation_name="record_login")

    # ------------------------------------------------------------------
    # Local copy helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_profile(row: dict[str, Any]) -> RoleProfile:
        data = dict(row)
        data["subjects"] = _decode_list(data.get("subjects"))
        data["classes"] = _decode_list(data.get("classes"))
        return RoleProfile(**data)

    def _write_profile_row(self, profile: RoleProfile) -> None:
        self.sqlite.execute(
            f"""
            INSERT INTO {self.PROFILE_TABLE}
                (principal_id, display_name, department, class_name, subjects, classes)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(principal_id) DO UPDATE SET
                display_name = excluded.display_name,
                department   = excluded.department,
                class_name   = excluded.class_name,
                subjects     = excluded.subjects,
                classes      = excluded.classes
            """,
            (
                profile.principal_id,
                profile.display_name,
                profile.department,
                profile.class_name,
                json.dumps(profile.subjects),
                json.dumps(profile.classes),
            ),
        )

    def _cache_principal(self, principal: Principal) -> None:
        """Mirror a principal read from Supabase into SQLite.

        Exceptions are logged but not raised so that a local cache
        failure never masks a successful Supabase read.
        """
        try:
            with self._db.write_lock:
                self.sqlite.execute(
                    f"""
                    INSERT INTO {self.TABLE}
                        (id, external_id, role, password_hash, temporary_password,
                         must_rotate_password, is_active, last_login_at,
                         created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?,
                            COALESCE(?, CURRENT_TIMESTAMP),
                            COALESCE(?, CURRENT_TIMESTAMP))
                    ON CONFLICT(id) DO UPDATE SET
                        external_id          = excluded.external_id,
                        role                 = excluded.role,
                        password_hash        = excluded.password_hash,
                        temporary_password   = excluded.temporary_password,
                        must_rotate_password = excluded.must_rotate_password,
                        is_active            = excluded.is_active,
                        last_login_at        = excluded.last_login_at,
                        updated_at           = excluded.updated_at
                    """,
                    (
                        principal.id,
                        principal.external_id,
                        str(principal.role),
                        principal.password_hash,
                        principal.temporary_password,
                        int(principal.must_rotate_password),
                        int(principal.is_active),
                        principal.last_login_at.isoformat() if principal.last_login_at else None,
                        principal.created_at.isoformat() if principal.created_at else None,
                        principal.updated_at.isoformat() if principal.updated_at else None,
                    ),
                )
                self._commit()
        except sqlite3.Error as exc:
            self._logger.warning(
                "Failed to cache principal %s to SQLite (non-fatal): %s",
                principal.external_id,
                exc,
            )

    def _cache_profile(self, profile: RoleProfile) -> None:
        try:
            with self._db.write_lock:
                self._write_profile_row(profile)
                self._commit()
        except sqlite3.Error as exc:
            self._logger.warning(
                "Failed to cache role profile %s to SQLite (non-fatal): %s",
                profile.principal_id,
                exc,
            )
