"""
Authentication Pipeline Models.

Pydantic models for the contracts between the credential services, the
per-portal ``SessionManager`` and the portal shell.  Every operation
returns one of these rather than raw dicts.
"""

from __future__ import annotations

from typing import Optional

from portal.models.enums import PortalRole, SessionStateKind
from portal.models.principal import Principal, RoleProfile, SessionPrincipal

from pydantic import BaseModel


# ---------------------------------------------------------------------------
# Validation result
# ---------------------------------------------------------------------------

class ValidationResult(BaseModel):
    """Result of a single policy check.

    Attributes
    ----------
    is_valid:
        ``True`` when the value passes the rule.
    error_message:
        Human-readable description of the failure, or ``None`` on success.
    """

    is_valid: bool
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


# ---------------------------------------------------------------------------
# Service results
# ---------------------------------------------------------------------------

class AuthenticatedPrincipal(BaseModel):
    """What the Authenticator hands back on success."""

    principal: Principal
    profile: RoleProfile


class IssuedCredentials(BaseModel):
    """Login details produced for a freshly registered account.

    ``temporary_password`` is shown once to the administrator, who passes
    it on to the account holder.
    """

    principal_id: int
    external_id: str
    role: PortalRole
    temporary_password: str


# ---------------------------------------------------------------------------
# Session models
# ---------------------------------------------------------------------------

class Session(BaseModel):
    """Client-held record of an authenticated principal for one portal.

    Attributes
    ----------
    principal:
        Secret-free copy of the principal.
    profile:
        Role profile fetched once at login.
    issued_at:
        Epoch milliseconds of the login that created the session.
    """

    principal: SessionPrincipal
    profile: RoleProfile
    issued_at: int

    model_config = {"from_attributes": True}


class PersistedSessionRecord(BaseModel):
    """A decrypted, parsed and unexpired persisted-session slot.

    The on-disk JSON is ``{<profile field>: Session, "timestamp": issued_at}``;
    ``version`` is the slot's monotonic write stamp.
    """

    session: Session
    timestamp: int
    version: int


class SessionState(BaseModel):
    """Snapshot of a SessionManager exposed to the portal shell."""

    kind: SessionStateKind
    principal: Optional[SessionPrincipal] = None
    profile: Optional[RoleProfile] = None
    loading: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.kind == SessionStateKind.AUTHENTICATED
