"""
Portal Shell.

Thin router over the three ``SessionManager`` instances.  It decides which
view each portal shows and turns session outcomes into user notices.  It
holds no session state of its own and never decides whether someone may
sign in.

The one presentation policy with security weight lives here:
:func:`login_failure_message` gives the same text for an unknown
identifier, a wrong password and a deactivated account.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional

from pydantic import BaseModel

from portal.auth import SessionManager
from portal.errors import (
    InvalidCredentialsError,
    PersistenceFailure,
    SessionStateError,
    ValidationError,
)
from portal.guards import require_session
from portal.logger import StructuredLogger
from portal.models.auth_models import IssuedCredentials, SessionState
from portal.models.enums import PortalRole, SessionStateKind
from portal.models.principal import Principal, ProfileSeed, SessionPrincipal
from portal.services.accounts import AccountService

_STORE_UNAVAILABLE = "Unable to reach the server. Please try again."


class PortalView(StrEnum):
    """What a portal shows for its current session state."""

    LOADING = "LOADING"
    LOGIN = "LOGIN"
    PASSWORD_ROTATION = "PASSWORD_ROTATION"
    HOME = "HOME"


class NoticeLevel(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


class Notice(BaseModel):
    """A toast-style message for the user."""

    level: NoticeLevel
    message: str


class ShellResponse(BaseModel):
    """Outcome of a user action in one portal."""

    view: PortalView
    state: SessionState
    notice: Optional[Notice] = None


def login_failure_message(role: PortalRole) -> str:
    """Text shown for every refused login in *role*'s portal.

    Deliberately identical for every refusal reason so a caller cannot
    learn which identifiers exist or are deactivated.
    """
    return f"Invalid {role.value.capitalize()} ID or password"


def view_for_state(state: SessionState) -> PortalView:
    if state.loading or state.kind in (
        SessionStateKind.UNINITIALIZED,
        SessionStateKind.RESTORING,
    ):
        return PortalView.LOADING
    if state.kind == SessionStateKind.ROTATION_REQUIRED:
        return PortalView.PASSWORD_ROTATION
    if state.kind == SessionStateKind.AUTHENTICATED:
        return PortalView.HOME
    return PortalView.LOGIN


class PortalShell:
    """Routes each portal between its login, rotation and home views."""

    def __init__(
        self,
        managers: dict[PortalRole, SessionManager],
        accounts: AccountService,
        logger: StructuredLogger,
    ) -> None:
        missing = [role for role in PortalRole if role not in managers]
        if missing:
            raise ValueError(f"No session manager for: {', '.join(missing)}")
        self._managers = managers
        self._accounts = accounts
        self._logger = logger
        self._admin_guard = require_session(managers[PortalRole.ADMIN])

    def manager(self, role: PortalRole) -> SessionManager:
        return self._managers[role]

    def start(self) -> dict[PortalRole, PortalView]:
        """Restore every portal from its own slot."""
        return {role: view_for_state(self._managers[role].restore()) for role in PortalRole}

    def view_for(self, role: PortalRole) -> PortalView:
        return view_for_state(self._managers[role].session_state())

    def submit_login(
        self, role: PortalRole, external_id: str, password: str,
    ) -> ShellResponse:
        manager = self._managers[role]
        try:
            state = manager.login(external_id, password)
        except InvalidCredentialsError:
            return self._respond(role, NoticeLevel.ERROR, login_failure_message(role))
        except (ValidationError, SessionStateError) as exc:
            return self._respond(role, NoticeLevel.ERROR, exc.message)
        except PersistenceFailure:
            return self._respond(role, NoticeLevel.ERROR, _STORE_UNAVAILABLE)

        if state.kind == SessionStateKind.ROTATION_REQUIRED:
            return self._respond(
                role, NoticeLevel.INFO, "Please change your temporary password to continue.",
            )
        name = state.profile.display_name if state.profile else ""
        return self._respond(role, NoticeLevel.SUCCESS, f"Welcome back, {name}!")

    def submit_rotation(
        self,
        role: PortalRole,
        new_password: str,
        confirm_password: Optional[str] = None,
    ) -> ShellResponse:
        manager = self._managers[role]
        try:
            state = manager.rotate(new_password, confirm_password)
        except (ValidationError, SessionStateError) as exc:
            return self._respond(role, NoticeLevel.ERROR, exc.message)
        except PersistenceFailure:
            return self._respond(role, NoticeLevel.ERROR, _STORE_UNAVAILABLE)

        name = state.profile.display_name if state.profile else ""
        return self._respond(
            role, NoticeLevel.SUCCESS, f"Password updated. Welcome, {name}!",
        )

    def sign_out(self, role: PortalRole) -> ShellResponse:
        self._managers[role].sign_out()
        return self._respond(role, NoticeLevel.SUCCESS, "Successfully signed out")

    # ------------------------------------------------------------------
    # Admin portal actions
    # ------------------------------------------------------------------

    def issue_credentials(self, role: PortalRole, seed: ProfileSeed) -> IssuedCredentials:
        """Register an account as the signed-in administrator."""
        return self._admin_guard(self._accounts.issue_credentials)(
            self._admin_actor(), role, seed,
        )

    def deactivate(self, external_id: str) -> Principal:
        return self._admin_guard(self._accounts.deactivate)(self._admin_actor(), external_id)

    def reactivate(self, external_id: str) -> Principal:
        return self._admin_guard(self._accounts.reactivate)(self._admin_actor(), external_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _admin_actor(self) -> Optional[SessionPrincipal]:
        session = self._managers[PortalRole.ADMIN].current_session
        return session.principal if session else None

    def _respond(self, role: PortalRole, level: NoticeLevel, message: str) -> ShellResponse:
        state = self._managers[role].session_state()
        view = view_for_state(state)
        self._logger.debug("%s portal shows %s.", role, view)
        return ShellResponse(
            view=view,
            state=state,
            notice=Notice(level=level, message=message),
        )
