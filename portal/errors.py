"""
Error Taxonomy.

Every failure the credential core can produce.  Services raise these;
the ``SessionManager`` boundary decides which ones reach the caller
verbatim and which are collapsed into ``InvalidCredentialsError``.
"""

from __future__ import annotations

from typing import Optional

from portal.models.enums import AuthFailureKind


class PortalError(Exception):
    """Base class for all credential/session errors."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class AuthFailure(PortalError):
    """Authentication was refused.

    ``kind`` tells *why*.  It is for logs and tests only; callers above
    the session boundary only ever see ``InvalidCredentialsError``.
    """

    def __init__(self, kind: AuthFailureKind, external_id: str) -> None:
        self.kind: AuthFailureKind = kind
        self.external_id: str = external_id
        super().__init__(f"Authentication failed for {external_id}: {kind}")


class InvalidCredentialsError(PortalError):
    """Generic login failure surfaced to the portal shell."""

    def __init__(self) -> None:
        super().__init__("Invalid credentials.")


class ValidationError(PortalError):
    """Input broke a policy (password rules, missing profile fields).

    The message is user-facing and is shown verbatim.
    """


class DuplicateIdentifierError(PortalError):
    """An external identifier collided with an existing principal."""


class PersistenceFailure(PortalError):
    """The credential store or session slot was unreachable or refused a write."""


class SessionStateError(PortalError):
    """The requested operation is not allowed in the current session state."""


class AuthenticationRequiredError(PortalError):
    """A guarded operation was called without an authenticated session."""


class PermissionDeniedError(PortalError):
    """The acting principal's role does not allow the operation."""


class StoreTimeout(PersistenceFailure):
    """The store did not answer in time.

    The call keeps running on the worker thread and may still commit.
    """
