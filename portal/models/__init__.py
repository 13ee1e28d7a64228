"""
Data Models Package.

Re-exports all Pydantic models for short imports:
    from portal.models import Principal, RoleProfile, Session
    from portal.models import PortalRole, SessionStateKind, AuthFailureKind
"""

from portal.models.enums import AuthFailureKind, PortalRole, SessionStateKind
from portal.models.principal import (
    Principal,
    ProfileSeed,
    RoleProfile,
    SessionPrincipal,
)
from portal.models.auth_models import (
    AuthenticatedPrincipal,
    IssuedCredentials,
    PersistedSessionRecord,
    Session,
    SessionState,
    ValidationResult,
)

__all__ = [
    "AuthFailureKind",
    "PortalRole",
    "SessionStateKind",
    "Principal",
    "ProfileSeed",
    "RoleProfile",
    "SessionPrincipal",
    "AuthenticatedPrincipal",
    "IssuedCredentials",
    "PersistedSessionRecord",
    "Session",
    "SessionState",
    "ValidationResult",
]
