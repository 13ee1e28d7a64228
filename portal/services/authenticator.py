"""
Authenticator.

Verifies an (identifier, password) pair for one portal and loads the
principal's role profile.  Every refusal is an ``AuthFailure`` whose
``kind`` says why; the ``SessionManager`` collapses them before anything
reaches the user.
"""

from __future__ import annotations

from portal.errors import AuthFailure, PersistenceFailure, ValidationError
from portal.logger import StructuredLogger
from portal.models.auth_models import AuthenticatedPrincipal
from portal.models.enums import AuthFailureKind, PortalRole
from portal.models.principal import Principal, RoleProfile, SessionPrincipal
from portal.repositories.principal_repository import PrincipalRepository
from portal.services.base_service import BaseService
from portal.services.passwords import PasswordHasher

ADMIN_FALLBACK_DISPLAY_NAME: str = "Administrator"


class Authenticator(BaseService):
    """Checks credentials against the principal repository.

    No attempt counting or lockout is done here; repeated failures are
    only visible in the log.
    """

    def __init__(
        self,
        repo: PrincipalRepository,
        hasher: PasswordHasher,
        logger: StructuredLogger,
        legacy_admin_email: str = "",
        legacy_admin_id: str = "",
    ) -> None:
        super().__init__(logger)
        self._repo = repo
        self._hasher = hasher
        self._legacy_admin_email = legacy_admin_email.strip().lower()
        self._legacy_admin_id = legacy_admin_id

    def resolve_identifier(self, external_id: str) -> str:
        """Trim *external_id* and map the legacy admin email to its identifier."""
        identifier = external_id.strip()
        if self._legacy_admin_email and identifier.lower() == self._legacy_admin_email:
            return self._legacy_admin_id
        return identifier

    def authenticate(
        self, external_id: str, password: str, portal: PortalRole,
    ) -> AuthenticatedPrincipal:
        """Authenticate a principal for *portal*.

        Checks run in this order: the principal exists with the portal's
        role, it is active, the password matches.  A principal of another
        role is refused exactly like an unknown identifier, and an
        inactive principal is refused before its password is looked at.

        Raises:
            ValidationError: The identifier or password is blank.
            AuthFailure: The credentials were refused.
            PersistenceFailure: The credential store could not be read.
        """
        if not external_id.strip() or not password:
            raise ValidationError("Please fill in all fields")

        identifier = self.resolve_identifier(external_id)
        principal = self._repo.find_by_external_id(identifier)

        if principal is None or principal.role != portal:
            raise self._refuse(AuthFailureKind.NOT_FOUND, identifier, portal)
        if not principal.is_active:
            raise self._refuse(AuthFailureKind.DEACTIVATED, identifier, portal)
        if not self._hasher.verify(password, principal.password_hash):
            raise self._refuse(AuthFailureKind.BAD_PASSWORD, identifier, portal)

        profile = self._repo.find_role_profile(principal.id)
        if profile is None:
            if portal != PortalRole.ADMIN:
                self._logger.warning(
                    "Principal %s has no role profile.", identifier,
                )
                raise self._refuse(AuthFailureKind.NOT_FOUND, identifier, portal)
            profile = RoleProfile(
                principal_id=principal.id, display_name=ADMIN_FALLBACK_DISPLAY_NAME,
            )

        try:
            self._repo.record_login(principal.id)
        except PersistenceFailure as exc:
            self._logger.warning(
                "Could not record last login for %s: %s", identifier, exc,
            )

        self._logger.info(
            "Principal %s authenticated.",
            identifier,
            extra={"event": "LOGIN", "portal": str(portal)},
        )
        return AuthenticatedPrincipal(principal=principal, profile=profile)

    def recheck(self, principal: SessionPrincipal) -> Principal:
        """Re-read a principal held by a restored session.

        Raises:
            AuthFailure: The principal is gone, changed role or was
                deactivated since the session was written.
            PersistenceFailure: The credential store could not be read.
        """
        stored = self._repo.get_by_id(principal.id)
        if (
            stored is None
            or stored.external_id != principal.external_id
            or stored.role != principal.role
        ):
            raise self._refuse(AuthFailureKind.NOT_FOUND, principal.external_id, principal.role)
        if not stored.is_active:
            raise self._refuse(AuthFailureKind.DEACTIVATED, principal.external_id, principal.role)
        return stored

    def _refuse(
        self, kind: AuthFailureKind, identifier: str, portal: PortalRole,
    ) -> AuthFailure:
        self._logger.info(
            "Authentication refused for %s (%s).",
            identifier,
            kind,
            extra={"event": "LOGIN_REFUSED", "portal": str(portal)},
        )
        return AuthFailure(kind, identifier)
