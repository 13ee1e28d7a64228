"""
Principal Models.

Pydantic models for authenticable accounts and their role profiles, as
stored in the ``principals`` and ``role_profiles`` tables.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from portal.models.enums import PortalRole


class Principal(BaseModel):
    """Represents a stored account, secrets included.

    ``temporary_password`` mirrors the issued plaintext so an administrator
    can hand it over.  It only exists while ``must_rotate_password`` is set.
    """

    id: int
    external_id: str
    role: PortalRole
    password_hash: str
    temporary_password: Optional[str] = None
    must_rotate_password: bool = True
    is_active: bool = True
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @model_validator(mode="after")
    def _temporary_password_needs_rotation(self) -> "Principal":
        if self.temporary_password is not None and not self.must_rotate_password:
            raise ValueError(
                "temporary_password may only be set while must_rotate_password is true"
            )
        return self

    def to_session_principal(self) -> "SessionPrincipal":
        """Return the secret-free copy that a Session may hold."""
        return SessionPrincipal(
            id=self.id,
            external_id=self.external_id,
            role=self.role,
            must_rotate_password=self.must_rotate_password,
            is_active=self.is_active,
        )


class SessionPrincipal(BaseModel):
    """The Principal as held client-side.  Carries no password material."""

    id: int
    external_id: str
    role: PortalRole
    must_rotate_password: bool
    is_active: bool = True

    model_config = {"from_attributes": True}


class RoleProfile(BaseModel):
    """Role-specific enrichment attached to a Session after login."""

    principal_id: int
    display_name: str
    department: Optional[str] = None
    class_name: Optional[str] = None
    subjects: list[str] = Field(default_factory=list)
    classes: list[str] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class ProfileSeed(BaseModel):
    """Registration data handed to the Credential Issuer.

    Teachers and students need ``surname`` and ``other_names``; an
    administrator needs ``display_name``.  ``year`` overrides the
    calendar year embedded in the issued identifier.
    """

    surname: Optional[str] = None
    other_names: Optional[str] = None
    display_name: Optional[str] = None
    department: Optional[str] = None
    class_name: Optional[str] = None
    subjects: list[str] = Field(default_factory=list)
    classes: list[str] = Field(default_factory=list)
    year: Optional[int] = None

    def resolved_display_name(self) -> str:
        """``"Surname, Other Names"`` unless an explicit display name is given."""
        if self.display_name and self.display_name.strip():
            return self.display_name.strip()
        return f"{(self.surname or '').strip()}, {(self.other_names or '').strip()}"
