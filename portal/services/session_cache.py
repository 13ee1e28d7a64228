"""
Encrypted Persisted-Session Service.

Stores one Session per portal slot (``adminAuth``, ``teacherAuth``,
``studentAuth``) in the local SQLite ``persisted_sessions`` table so a
portal restart can resume without a new login.

Security model
--------------
- The encryption key is derived at runtime from machine-specific
  characteristics (hostname + OS username) via PBKDF2-HMAC-SHA256 with
  a per-machine random salt.  The key is **never** persisted to disk.
- Payloads are encrypted with AES-256-GCM, providing both confidentiality
  and integrity (authenticated encryption).
- A slot is only accepted while ``now - timestamp`` is below the portal's
  maximum age.  Expired, undecryptable or malformed slots are deleted.

Storage layout (one row per slot)::

    persisted_sessions
    ├── slot              TEXT PRIMARY KEY
    ├── encrypted_payload BLOB
    ├── nonce             BLOB
    ├── tag               BLOB
    └── version           INTEGER

The decrypted payload is ``{"<portal>Data": <Session>, "timestamp": <ms>}``.
"""

from __future__ import annotations

import getpass
import json
import os
import socket
import stat
import threading
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from portal.database import DatabaseManager
from portal.errors import PersistenceFailure
from portal.logger import StructuredLogger
from portal.models.auth_models import PersistedSessionRecord, Session


class SessionCacheService:
    """Manages encrypted per-portal session persistence.

    This service accesses SQLite directly rather than through a
    Repository, because a persisted session is client state, not
    credential-store data.

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager`` providing access to the local
        SQLite database.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    salt_path:
        Where the per-machine salt lives.  Defaults to
        ``~/.schoolgate_session_salt``.
    pbkdf2_iterations:
        Key-derivation work factor.
    """

    _PBKDF2_ITERATIONS: int = 600_000
    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Optional[Path] = None,
        pbkdf2_iterations: Optional[int] = None,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = salt_path or Path.home() / ".schoolgate_session_salt"
        self._iterations: int = pbkdf2_iterations or self._PBKDF2_ITERATIONS
        self._key: Optional[bytes] = None
        self._key_lock: threading.Lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def save(self, slot: str, field: str, session: Session) -> int:
        """Encrypt and persist *session* into *slot*.

        Returns
        -------
        int
            The slot's new version.  Versions only ever grow, including
            across deletions, so a sign-out can tell whether the slot was
            rewritten after it last looked.

        Raises
        ------
        PersistenceFailure
            Encryption or the database write failed.
        """
        payload = {
            field: session.model_dump(mode="json"),
            "timestamp": session.issued_at,
        }
        plaintext: bytes = json.dumps(payload, ensure_ascii=False).encode("utf-8")
        version = self._write(slot, plaintext)
        self._logger.info(
            "Session persisted in %s for %s (version %d).",
            slot,
            session.principal.external_id,
            version,
        )
        return version

    def load(
        self,
        slot: str,
        field: str,
        max_age_ms: Optional[int],
        now_ms: int,
    ) -> Optional[PersistedSessionRecord]:
        """Load, decrypt and validate the session held in *slot*.

        ``max_age_ms`` of ``None`` disables expiry.

        Returns
        -------
        PersistedSessionRecord or None
            ``None`` when the slot is empty, or when it was expired or
            corrupt (the slot is deleted in those two cases).

        Raises
        ------
        PersistenceFailure
            The database could not be read.
        """
        try:
            row = self._db.sqlite.execute(
                "SELECT encrypted_payload, nonce, tag, version "
                "FROM persisted_sessions WHERE slot = ?",
                (slot,),
            ).fetchone()
        except Exception as exc:
            self._logger.warning("Failed to read %s: %s", slot, exc)
            raise PersistenceFailure(f"Cannot read {slot}.", original_error=exc) from exc

        if row is None:
            self._logger.debug("No persisted session in %s.", slot)
            return None

        version: int = row["version"]

        # --- Decrypt ---
        try:
            key: bytes = self._derive_key()
        except OSError as exc:
            raise PersistenceFailure(
                "Session key material is unavailable.", original_error=exc,
            ) from exc
        try:
            cipher = AES.new(key, AES.MODE_GCM, nonce=row["nonce"])
            plaintext: bytes = cipher.decrypt_and_verify(row["encrypted_payload"], row["tag"])
        except (ValueError, KeyError) as exc:
            self._logger.warning(
                "Decryption of %s failed (corrupted data or machine identity "
                "changed): %s",
                slot,
                exc,
            )
            self.clear(slot, up_to_version=version)
            return None

        # --- Deserialize ---
        try:
            data = json.loads(plaintext.decode("utf-8"))
            session = Session.model_validate(data[field])
            timestamp = int(data["timestamp"])
        except (ValueError, KeyError, TypeError) as exc:
            self._logger.warning("Persisted session in %s is malformed: %s", slot, exc)
            self.clear(slot, up_to_version=version)
            return None

        # --- Expiry check ---
        if max_age_ms is not None and now_ms - timestamp >= max_age_ms:
            self._logger.info(
                "Persisted session in %s has expired (age %d ms, max %d ms).",
                slot,
                now_ms - timestamp,
                max_age_ms,
            )
            self.clear(slot, up_to_version=version)
            return None

        return PersistedSessionRecord(session=session, timestamp=timestamp, version=version)

    def clear(self, slot: str, up_to_version: Optional[int] = None) -> bool:
        """Delete *slot*.

        With ``up_to_version`` only a slot whose version is not newer than
        it is deleted; a later write survives.  Safe to call on an empty
        slot.

        Returns
        -------
        bool
            ``True`` if a row was deleted.

        Raises
        ------
        PersistenceFailure
            The delete failed.
        """
        if up_to_version is None:
            sql, params = "DELETE FROM persisted_sessions WHERE slot = ?", (slot,)
        else:
            sql = "DELETE FROM persisted_sessions WHERE slot = ? AND version <= ?"
            params = (slot, up_to_version)

        with self._db.write_lock:
            try:
                cursor = self._db.sqlite.execute(sql, params)
                self._db.sqlite.commit()
            except Exception as exc:
                self._db.sqlite.rollback()
                self._logger.error("Failed to clear %s: %s", slot, exc)
                raise PersistenceFailure(f"Cannot clear {slot}.", original_error=exc) from exc
        deleted = cursor.rowcount > 0
        if deleted:
            self._logger.info("Persisted session %s cleared.", slot)
        return deleted

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _write(self, slot: str, plaintext: bytes) -> int:
        """Encrypt *plaintext* and upsert it into *slot*.  Returns the version."""
        try:
            cipher = AES.new(self._derive_key(), AES.MODE_GCM)
            ciphertext, tag = cipher.encrypt_and_digest(plaintext)
            nonce: bytes = cipher.nonce
        except Exception as exc:
            self._logger.warning("Failed to encrypt session payload: %s", exc)
            raise PersistenceFailure(
                "Cannot encrypt the session.", original_error=exc,
            ) from exc

        with self._db.write_lock:
            try:
                self._db.sqlite.execute(
                    """
                    INSERT INTO session_slot_versions (slot, version) VALUES (?, 1)
                    ON CONFLICT(slot) DO UPDATE SET version = version + 1
                    """,
                    (slot,),
                )
                version: int = self._db.sqlite.execute(
                    "SELECT version FROM session_slot_versions WHERE slot = ?",
                    (slot,),
                ).fetchone()["version"]
                self._db.sqlite.execute(
                    """
                    INSERT INTO persisted_sessions
                        (slot, encrypted_payload, nonce, tag, version)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(slot) DO UPDATE SET
                        encrypted_payload = excluded.encrypted_payload,
                        nonce             = excluded.nonce,
                        tag               = excluded.tag,
                        version           = excluded.version,
                        updated_at        = CURRENT_TIMESTAMP
                    """,
                    (slot, ciphertext, nonce, tag, version),
                )
                self._db.sqlite.commit()
            except Exception as exc:
                self._db.sqlite.rollback()
                self._logger.warning("Failed to write %s: %s", slot, exc)
                raise PersistenceFailure(
                    f"Cannot write {slot}.", original_error=exc,
                ) from exc
        return version

    def _derive_key(self) -> bytes:
        """Derive a 256-bit AES key from machine identity via PBKDF2-HMAC-SHA256.

        The key is deterministic for a given (hostname, OS username,
        salt) triple and is **never** stored on disk.  If the machine
        identity changes, previously persisted sessions become
        undecryptable and are treated as corrupted.  Derived once per
        service instance.

        Raises
        ------
        OSError
            If the per-machine salt file cannot be created or read.
        """
        with self._key_lock:
            if self._key is None:
                password: str = f"{socket.gethostname()}:{getpass.getuser()}"
                self._key = PBKDF2(
                    password=password,
                    salt=self._get_or_create_salt(),
                    dkLen=self._KEY_LENGTH,
                    count=self._iterations,
                    hmac_hash_module=SHA256,
                )
            return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            # Corrupt or wrong-length -- regenerate
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.", len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.write_bytes(salt)
        self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 0o600
        self._logger.info("Per-machine session salt created at %s.", self._salt_path)
        return salt
