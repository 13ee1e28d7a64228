"""
Authentication & Session State.

Provides an injectable ``SessionManager`` per portal.  Each instance holds
the Session of one portal (admin, teacher or student), persists it in that
portal's slot and drives the lifecycle::

    UNINITIALIZED -> RESTORING -> UNAUTHENTICATED
                               -> ROTATION_REQUIRED -> AUTHENTICATED
                               -> AUTHENTICATED
    any state -- sign_out() --> UNAUTHENTICATED

Usage::

    from portal.auth import SessionManager
    from portal.models import PortalRole

    teacher_session = SessionManager(
        portal=PortalRole.TEACHER,
        authenticator=authenticator,
        rotation=rotation_service,
        cache=session_cache,
        logger=StructuredLogger(name="teacher_portal"),
        max_age_ms=config.session_max_age_ms(is_admin=False),
    )
    teacher_session.restore()
    teacher_session.login("TEA2025001", "K7Q2M9XA")
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextlib import contextmanager
from typing import Callable, Generator, Optional, TypeVar

from portal.config import AppConfig
from portal.errors import (
    AuthFailure,
    InvalidCredentialsError,
    PersistenceFailure,
    SessionStateError,
    StoreTimeout,
)
from portal.logger import StructuredLogger, get_logger
from portal.models.auth_models import Session, SessionState
from portal.models.enums import PortalRole, SessionStateKind
from portal.services import ServiceContainer
from portal.services.authenticator import Authenticator
from portal.services.rotation import PasswordRotationService
from portal.services.session_cache import SessionCacheService

T = TypeVar("T")


def epoch_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class SessionManager:
    """Injectable session holder and state machine for one portal.

    Each instance maintains its own session state, eliminating the
    need for module-level globals.  The three portals never share an
    instance, so signing in or out of one leaves the others alone.

    Operations that reach the credential store run on a worker thread,
    bounded by ``store_timeout_s``; ``session_state().loading`` is raised
    meanwhile.  Only one such operation may run at a time; an overlapping
    call is refused with ``SessionStateError``.
    """

    def __init__(
        self,
        portal: PortalRole,
        authenticator: Authenticator,
        rotation: PasswordRotationService,
        cache: SessionCacheService,
        logger: StructuredLogger,
        max_age_ms: Optional[int] = 24 * 60 * 60 * 1000,
        revalidate_on_restore: bool = True,
        store_timeout_s: float = 10.0,
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self._portal: PortalRole = portal
        self._authenticator = authenticator
        self._rotation = rotation
        self._cache = cache
        self._logger = logger
        self._max_age_ms = max_age_ms
        self._revalidate_on_restore = revalidate_on_restore
        self._store_timeout_s = store_timeout_s
        self._clock = clock

        self._lock: threading.RLock = threading.RLock()
        self._flight: threading.Lock = threading.Lock()
        self._executor: ThreadPoolExecutor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"{portal}-session",
        )

        self._kind: SessionStateKind = SessionStateKind.UNINITIALIZED
        self._session: Optional[Session] = None
        self._loading: bool = False
        # Version of the slot row this manager last wrote or read.
        self._known_version: Optional[int] = None
        # Bumped by sign_out() so an in-flight call can tell it was cancelled.
        self._generation: int = 0
        # A timed-out rotation may still commit on the worker.
        self._rotation_unsettled: bool = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def portal(self) -> PortalRole:
        return self._portal

    @property
    def current_session(self) -> Optional[Session]:
        """The held Session, or ``None`` when nobody is signed in."""
        with self._lock:
            return self._session

    @property
    def is_authenticated(self) -> bool:
        """``True`` only in ``AUTHENTICATED``; a pending rotation does not count."""
        with self._lock:
            return self._kind == SessionStateKind.AUTHENTICATED

    def session_state(self) -> SessionState:
        """Snapshot of the current state for the portal shell."""
        with self._lock:
            return SessionState(
                kind=self._kind,
                principal=self._session.principal if self._session else None,
                profile=self._session.profile if self._session else None,
                loading=self._loading,
            )

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def restore(self) -> SessionState:
        """Resume the session persisted in this portal's slot.

        Only acts from ``UNINITIALIZED``; later calls return the current
        state unchanged.  An empty, expired or corrupt slot leaves the
        manager ``UNAUTHENTICATED``.
        """
        with self._single_flight():
            with self._lock:
                if self._kind != SessionStateKind.UNINITIALIZED:
                    return self.session_state()
                self._kind = SessionStateKind.RESTORING

            try:
                record = self._call_store(
                    self._cache.load,
                    self._portal.slot_name,
                    self._portal.profile_field,
                    self._max_age_ms,
                    self._clock(),
                )
            except PersistenceFailure as exc:
                self._logger.warning(
                    "Could not read %s: %s", self._portal.slot_name, exc,
                )
                record = None

            if record is not None and record.session.principal.role != self._portal:
                self._logger.warning(
                    "%s holds a %s session; discarding it.",
                    self._portal.slot_name,
                    record.session.principal.role,
                )
                self._clear_slot(record.version)
                record = None

            with self._lock:
                if record is None:
                    self._kind = SessionStateKind.UNAUTHENTICATED
                    return self.session_state()
                self._adopt(record.session, record.version)

            self._logger.info(
                "Session restored for %s.",
                record.session.principal.external_id,
                extra={"event": "RESTORE", "portal": str(self._portal)},
            )
            if self._revalidate_on_restore:
                self._revalidate()
            return self.session_state()

    def revalidate(self) -> SessionState:
        """Re-check the held principal against the credential store.

        A principal that disappeared, changed role or was deactivated
        signs the session out.  A rotation flag changed by an
        administrator moves the state between ``ROTATION_REQUIRED`` and
        ``AUTHENTICATED``.  An unreachable store keeps the session as is.
        """
        with self._single_flight():
            if self._revalidate():
                self._rotation_unsettled = False
            return self.session_state()

    def login(self, external_id: str, password: str) -> SessionState:
        """Sign in to this portal.

        Raises:
            InvalidCredentialsError: The credentials were refused, for
                whatever reason.
            ValidationError: The identifier or password is blank.
            SessionStateError: A password change is pending, someone is
                already signed in, or another call is in flight.
            PersistenceFailure: The store or the slot could not be reached.
        """
        with self._single_flight():
            with self._lock:
                if self._kind == SessionStateKind.ROTATION_REQUIRED:
                    raise SessionStateError(
                        "Change your temporary password before signing in again."
                    )
                if self._kind == SessionStateKind.AUTHENTICATED:
                    raise SessionStateError("Already signed in. Sign out first.")
                generation = self._generation

            try:
                result = self._call_store(
                    self._authenticator.authenticate, external_id, password, self._portal,
                )
            except AuthFailure as exc:
                self._mark_unauthenticated()
                raise InvalidCredentialsError() from exc
            except Exception:
                self._mark_unauthenticated()
                raise

            session = Session(
                principal=result.principal.to_session_principal(),
                profile=result.profile,
                issued_at=self._clock(),
            )
            try:
                version = self._call_store(
                    self._cache.save,
                    self._portal.slot_name,
                    self._portal.profile_field,
                    session,
                )
            except PersistenceFailure:
                self._mark_unauthenticated()
                raise

            with self._lock:
                if self._generation != generation:
                    self._clear_slot(version)
                    raise SessionStateError("Signed out while signing in.")
                self._adopt(session, version)
            return self.session_state()

    def rotate(
        self, new_password: str, confirm_password: Optional[str] = None,
    ) -> SessionState:
        """Replace the temporary password and finish signing in.

        If the previous attempt timed out, the stored principal is
        re-read first.  When that attempt committed after all, the
        session moves on to ``AUTHENTICATED`` and the password chosen in
        that attempt is the one in force; *new_password* is not applied.

        Raises:
            SessionStateError: No password change is pending, or another
                call is in flight.
            ValidationError: The new password breaks the policy.
            PersistenceFailure: The store refused the update or timed out
                (``StoreTimeout``).  The state stays ``ROTATION_REQUIRED``.
        """
        with self._single_flight():
            with self._lock:
                if self._kind != SessionStateKind.ROTATION_REQUIRED or self._session is None:
                    raise SessionStateError("No password change is pending.")

            if self._rotation_unsettled:
                if self._revalidate():
                    self._rotation_unsettled = False
                with self._lock:
                    if self._kind != SessionStateKind.ROTATION_REQUIRED:
                        return self.session_state()

            with self._lock:
                session = self._session
                generation = self._generation
            if session is None:
                raise SessionStateError("No password change is pending.")

            try:
                updated = self._call_store(
                    self._rotation.rotate, session.principal, new_password, confirm_password,
                )
            except StoreTimeout:
                self._rotation_unsettled = True
                raise
            rotated = session.model_copy(update={"principal": updated})

            with self._lock:
                if self._generation != generation:
                    return self.session_state()
                self._adopt(rotated, self._known_version)
            self._persist(rotated)
            return self.session_state()

    def sign_out(self) -> SessionState:
        """End the session of this portal.  Safe to call repeatedly.

        Only slot versions this manager has seen are deleted, so a newer
        login written by another process survives.
        """
        with self._lock:
            self._generation += 1
            self._rotation_unsettled = False
            had_session = self._session is not None
            version = self._known_version
            external_id = self._session.principal.external_id if self._session else None
            self._session = None
            self._known_version = None
            self._kind = SessionStateKind.UNAUTHENTICATED

        if version is not None:
            self._clear_slot(version)
        if had_session:
            self._logger.info(
                "Signed out %s.",
                external_id,
                extra={"event": "SIGN_OUT", "portal": str(self._portal)},
            )
        return self.session_state()

    def close(self) -> None:
        """Stop the worker thread."""
        self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _single_flight(self) -> Generator[None, None, None]:
        if not self._flight.acquire(blocking=False):
            raise SessionStateError(
                f"Another {self._portal} session operation is in progress."
            )
        try:
            yield
        finally:
            self._flight.release()

    def _call_store(self, func: Callable[..., T], *args: object) -> T:
        """Run *func* on the worker thread with the store timeout."""
        with self._lock:
            self._loading = True
        try:
            future = self._executor.submit(func, *args)
            try:
                return future.result(timeout=self._store_timeout_s)
            except FutureTimeoutError as exc:
                self._logger.error(
                    "%s timed out after %.1fs.",
                    getattr(func, "__name__", "Store call"),
                    self._store_timeout_s,
                )
                raise StoreTimeout(
                    "The credential store did not answer in time.", original_error=exc,
                ) from exc
        finally:
            with self._lock:
                self._loading = False

    def _adopt(self, session: Session, version: Optional[int]) -> None:
        self._session = session
        self._known_version = version
        self._kind = (
            SessionStateKind.ROTATION_REQUIRED
            if session.principal.must_rotate_password
            else SessionStateKind.AUTHENTICATED
        )

    def _mark_unauthenticated(self) -> None:
        with self._lock:
            if self._session is None:
                self._kind = SessionStateKind.UNAUTHENTICATED

    def _revalidate(self) -> bool:
        """Re-check the held principal.  ``False`` when the store did not answer."""
        with self._lock:
            session = self._session
        if session is None:
            return True

        try:
            stored = self._call_store(self._authenticator.recheck, session.principal)
        except AuthFailure as exc:
            self._logger.info(
                "Restored session for %s is no longer valid (%s).",
                session.principal.external_id,
                exc.kind,
                extra={"event": "REVALIDATE", "portal": str(self._portal)},
            )
            self.sign_out()
            return True
        except PersistenceFailure as exc:
            self._logger.warning(
                "Could not revalidate %s; keeping the restored session: %s",
                session.principal.external_id,
                exc,
            )
            return False

        if stored.must_rotate_password == session.principal.must_rotate_password:
            return True
        refreshed = session.model_copy(update={"principal": stored.to_session_principal()})
        with self._lock:
            if self._session is not session:
                return True
            self._adopt(refreshed, self._known_version)
        self._persist(refreshed)
        return True

    def _persist(self, session: Session) -> None:
        """Rewrite the slot after the held session changed.

        The store already holds the new state, so a failed slot write only
        costs a revalidation at the next restore.
        """
        try:
            version = self._call_store(
                self._cache.save,
                self._portal.slot_name,
                self._portal.profile_field,
                session,
            )
        except PersistenceFailure as exc:
            self._logger.warning(
                "Could not rewrite %s: %s", self._portal.slot_name, exc,
            )
            return
        with self._lock:
            if self._session is session:
                self._known_version = version
                return
        # Signed out while the slot was being written.
        self._clear_slot(version)

    def _clear_slot(self, version: int) -> None:
        try:
            self._cache.clear(self._portal.slot_name, up_to_version=version)
        except PersistenceFailure as exc:
            self._logger.error(
                "Could not clear %s: %s", self._portal.slot_name, exc,
            )


def create_session_managers(
    services: ServiceContainer,
    config: AppConfig,
    clock: Callable[[], int] = epoch_ms,
) -> dict[PortalRole, SessionManager]:
    """Build one independent ``SessionManager`` per portal."""
    return {
        role: SessionManager(
            portal=role,
            authenticator=services["authenticator"],
            rotation=services["rotation_service"],
            cache=services["session_cache"],
            logger=get_logger(f"{role}_portal"),
            max_age_ms=config.session_max_age_ms(is_admin=role == PortalRole.ADMIN),
            revalidate_on_restore=config.REVALIDATE_ON_RESTORE,
            store_timeout_s=config.STORE_TIMEOUT_S,
            clock=clock,
        )
        for role in PortalRole
    }
