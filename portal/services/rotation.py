"""
Password Rotation Service.

Replaces a temporary password with one chosen by the principal and
clears the rotation flags in the same store write.
"""

from __future__ import annotations

from typing import Optional

from portal.errors import PersistenceFailure, ValidationError
from portal.logger import StructuredLogger
from portal.models.principal import SessionPrincipal
from portal.repositories.principal_repository import PrincipalRepository
from portal.services.base_service import BaseService
from portal.services.passwords import PasswordHasher, PasswordPolicy

_SAME_AS_CURRENT = "Must be different from your temporary password"


class PasswordRotationService(BaseService):
    """Validates and stores a replacement password."""

    def __init__(
        self,
        repo: PrincipalRepository,
        hasher: PasswordHasher,
        policy: PasswordPolicy,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._repo = repo
        self._hasher = hasher
        self._policy = policy

    def rotate(
        self,
        principal: SessionPrincipal,
        new_password: str,
        confirm_password: Optional[str] = None,
    ) -> SessionPrincipal:
        """Store *new_password* for *principal*.

        On success the stored hash is replaced and both
        ``temporary_password`` and ``must_rotate_password`` are cleared.
        On any failure the stored principal is left untouched.

        Returns:
            The refreshed secret-free principal.

        Raises:
            ValidationError: The password breaks the policy.  The message
                is meant for the user.
            PersistenceFailure: The principal could not be read or updated.
        """
        stored = self._repo.get_by_id(principal.id)
        if stored is None:
            raise PersistenceFailure(f"Principal {principal.external_id} no longer exists.")

        result = self._policy.validate(
            new_password,
            confirm_password=confirm_password,
            temporary_password=stored.temporary_password,
        )
        if not result.is_valid:
            raise ValidationError(result.error_message or "Invalid password")
        if self._hasher.verify(new_password, stored.password_hash):
            raise ValidationError(_SAME_AS_CURRENT)

        updated = self._repo.update_password_hash(
            stored.id,
            self._hasher.hash(new_password),
            clear_temp=True,
            clear_must_rotate=True,
        )
        if updated is None:
            raise PersistenceFailure(f"Principal {principal.external_id} no longer exists.")

        self._logger.info(
            "Password rotated for %s.",
            principal.external_id,
            extra={"event": "ROTATE", "role": str(principal.role)},
        )
        return updated.to_session_principal()
