"""
Credential Issuer.

Mints external identifiers and temporary passwords for new principals.

Identifiers are ``<prefix><year><sequence>``: ``ADM``, ``TEA`` or ``STU``,
the four-digit year, then a sequence zero-padded to at least three digits
(``TEA2025001``, ``STU20251042``).  Identifiers are never reused, so a
deactivated principal keeps its identifier reserved.
"""

from __future__ import annotations

from datetime import date
from typing import Callable, Optional

from portal.database import DatabaseManager
from portal.errors import DuplicateIdentifierError, PersistenceFailure, ValidationError
from portal.logger import StructuredLogger
from portal.models.auth_models import IssuedCredentials
from portal.models.enums import PortalRole
from portal.models.principal import Principal, ProfileSeed, RoleProfile
from portal.repositories.principal_repository import PrincipalRepository
from portal.services.base_service import BaseService
from portal.services.passwords import PasswordHasher, generate_temporary_password


class CredentialIssuer(BaseService):
    """Creates principals with a temporary password that must be rotated."""

    def __init__(
        self,
        repo: PrincipalRepository,
        db: DatabaseManager,
        hasher: PasswordHasher,
        logger: StructuredLogger,
        temp_password_length: int = 8,
        max_attempts: int = 1000,
        today: Callable[[], date] = date.today,
    ) -> None:
        super().__init__(logger)
        self._repo = repo
        self._db = db
        self._hasher = hasher
        self._temp_password_length = temp_password_length
        self._max_attempts = max_attempts
        self._today = today

    def issue(self, role: PortalRole, seed: ProfileSeed) -> IssuedCredentials:
        """Register a new principal of *role* and return its login details.

        The sequence starts after the number of identifiers already issued
        for the role and year, and skips any candidate that is taken.

        Raises:
            ValidationError: A required profile field is missing.
            PersistenceFailure: The store refused the write, or no free
                identifier was found within the attempt budget.
        """
        self._validate_seed(role, seed)
        year = seed.year or self._today().year
        prefix = f"{role.id_prefix}{year}"
        sequence = self._repo.count_with_prefix(prefix) + 1

        for _ in range(self._max_attempts):
            external_id = f"{prefix}{sequence:03d}"
            sequence += 1
            if self._repo.external_id_exists(external_id):
                continue
            try:
                return self._create(role, external_id, seed)
            except DuplicateIdentifierError:
                self._logger.info(
                    "Identifier %s was taken concurrently; trying the next one.",
                    external_id,
                )

        self._logger.error(
            "No free identifier for prefix %s after %d attempts.",
            prefix,
            self._max_attempts,
        )
        raise PersistenceFailure(f"Could not allocate an identifier for {prefix}.")

    def provision(
        self, role: PortalRole, external_id: str, seed: ProfileSeed,
    ) -> IssuedCredentials:
        """Register a principal under a fixed identifier (e.g. ``ADMIN001``).

        Raises:
            ValidationError: A required profile field is missing.
            DuplicateIdentifierError: *external_id* already exists.
            PersistenceFailure: The store refused the write.
        """
        self._validate_seed(role, seed)
        return self._create(role, external_id, seed)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _create(
        self, role: PortalRole, external_id: str, seed: ProfileSeed,
    ) -> IssuedCredentials:
        temporary_password = generate_temporary_password(self._temp_password_length)
        password_hash = self._hasher.hash(temporary_password)

        with self._db.batch_write():
            principal: Principal = self._repo.insert_principal(
                external_id=external_id,
                role=role,
                password_hash=password_hash,
                temporary_password=temporary_password,
            )
            self._repo.insert_role_profile(
                RoleProfile(
                    principal_id=principal.id,
                    display_name=seed.resolved_display_name(),
                    department=seed.department or _default_department(role),
                    class_name=seed.class_name,
                    subjects=seed.subjects,
                    classes=seed.classes,
                )
            )

        self._logger.info(
            "Credentials issued for %s.",
            external_id,
            extra={"event": "ISSUE", "role": str(role)},
        )
        return IssuedCredentials(
            principal_id=principal.id,
            external_id=external_id,
            role=role,
            temporary_password=temporary_password,
        )

    @staticmethod
    def _validate_seed(role: PortalRole, seed: ProfileSeed) -> None:
        if role == PortalRole.ADMIN:
            if not (seed.display_name and seed.display_name.strip()):
                raise ValidationError("Display name is required.")
            return
        if not (seed.surname and seed.surname.strip()):
            raise ValidationError("Surname is required.")
        if not (seed.other_names and seed.other_names.strip()):
            raise ValidationError("Other names are required.")


def _default_department(role: PortalRole) -> Optional[str]:
    return "Not assigned" if role == PortalRole.TEACHER else None
