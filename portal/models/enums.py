"""
Shared Enumerations for SchoolGate Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if role == 'teacher'`` keeps working.
"""

from __future__ import annotations
from enum import StrEnum


class PortalRole(StrEnum):
    """The three principal kinds.  Each one owns exactly one portal."""

    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"

    @property
    def id_prefix(self) -> str:
        """Three-letter prefix of issued external identifiers."""
        return _ID_PREFIXES[self]

    @property
    def slot_name(self) -> str:
        """Name of the persisted-session slot for this portal."""
        return f"{self.value}Auth"

    @property
    def profile_field(self) -> str:
        """Key under which the Session is stored inside the slot payload."""
        return f"{self.value}Data"


_ID_PREFIXES: dict[PortalRole, str] = {
    PortalRole.ADMIN: "ADM",
    PortalRole.TEACHER: "TEA",
    PortalRole.STUDENT: "STU",
}


class SessionStateKind(StrEnum):
    """Session Manager lifecycle states."""

    UNINITIALIZED = "UNINITIALIZED"
    RESTORING = "RESTORING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    ROTATION_REQUIRED = "ROTATION_REQUIRED"
    AUTHENTICATED = "AUTHENTICATED"


class AuthFailureKind(StrEnum):
    """Why the Authenticator refused a login.

    Never shown to the user; see ``portal.shell.login_failure_message``.
    """

    NOT_FOUND = "NOT_FOUND"
    BAD_PASSWORD = "BAD_PASSWORD"
    DEACTIVATED = "DEACTIVATED"
