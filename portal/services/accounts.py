"""
Account Administration Service.

Administrative operations on principals: issuing credentials,
deactivation and reactivation, and provisioning the first administrator.

Only an administrator may call the operations that take an ``actor``.
A deactivated principal keeps its row and identifier; it simply cannot
authenticate, and a session it already holds is dropped at the next
revalidation.
"""

from __future__ import annotations

from typing import Optional

from portal.errors import PermissionDeniedError, ValidationError
from portal.logger import StructuredLogger
from portal.models.auth_models import IssuedCredentials
from portal.models.enums import PortalRole
from portal.models.principal import Principal, ProfileSeed, SessionPrincipal
from portal.repositories.principal_repository import PrincipalRepository
from portal.services.base_service import BaseService
from portal.services.credential_issuer import CredentialIssuer


class AccountService(BaseService):
    """Service layer for admin account management operations."""

    def __init__(
        self,
        repo: PrincipalRepository,
        issuer: CredentialIssuer,
        logger: StructuredLogger,
        admin_id: str = "ADMIN001",
    ) -> None:
        super().__init__(logger)
        self._repo = repo
        self._issuer = issuer
        self._admin_id = admin_id

    def issue_credentials(
        self, actor: SessionPrincipal, role: PortalRole, seed: ProfileSeed,
    ) -> IssuedCredentials:
        """Register a teacher, student or administrator on behalf of *actor*."""
        self._require_admin(actor, "issue credentials")
        return self._issuer.issue(role, seed)

    def deactivate(self, actor: SessionPrincipal, external_id: str) -> Principal:
        """Stop *external_id* from signing in.  Idempotent."""
        self._require_admin(actor, "deactivate accounts")
        principal = self._get_existing(external_id)
        if principal.id == actor.id:
            raise ValidationError("You cannot deactivate your own account.")
        return self._set_active(principal, False)

    def reactivate(self, actor: SessionPrincipal, external_id: str) -> Principal:
        """Allow *external_id* to sign in again.  Idempotent."""
        self._require_admin(actor, "reactivate accounts")
        return self._set_active(self._get_existing(external_id), True)

    def bootstrap_admin(self, display_name: str = "Administrator") -> Optional[IssuedCredentials]:
        """Create the first administrator account if it does not exist yet.

        Returns:
            The issued credentials, or ``None`` when the administrator is
            already provisioned (no new temporary password is minted).
        """
        if self._repo.external_id_exists(self._admin_id):
            self._logger.info("Administrator %s already exists.", self._admin_id)
            return None
        issued = self._issuer.provision(
            PortalRole.ADMIN, self._admin_id, ProfileSeed(display_name=display_name),
        )
        self._logger.info(
            "Administrator %s provisioned.",
            self._admin_id,
            extra={"event": "BOOTSTRAP_ADMIN"},
        )
        return issued

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_admin(self, actor: SessionPrincipal, action: str) -> None:
        """Refuse unless *actor* is, right now, an active administrator.

        The session copy is only a hint; the stored row decides, so an
        administrator deactivated mid-session loses these rights at once.
        """
        stored = self._repo.get_by_id(actor.id) if actor.role == PortalRole.ADMIN else None
        if (
            stored is None
            or stored.external_id != actor.external_id
            or stored.role != PortalRole.ADMIN
            or not stored.is_active
        ):
            self._logger.warning(
                "%s (%s) tried to %s.", actor.external_id, actor.role, action,
            )
            raise PermissionDeniedError(f"Only administrators can {action}.")

    def _get_existing(self, external_id: str) -> Principal:
        principal = self._repo.find_by_external_id(external_id.strip())
        if principal is None:
            raise ValidationError(f"No account found for {external_id.strip()}.")
        return principal

    def _set_active(self, principal: Principal, active: bool) -> Principal:
        if principal.is_active == active:
            return principal
        updated = self._repo.set_active(principal.id, active)
        if updated is None:
            raise ValidationError(f"No account found for {principal.external_id}.")
        self._logger.info(
            "Account %s %s.",
            principal.external_id,
            "reactivated" if active else "deactivated",
            extra={"event": "REACTIVATE" if active else "DEACTIVATE"},
        )
        return updated
