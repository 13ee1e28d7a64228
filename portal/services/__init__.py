"""
Business Logic Services Package.

Credential issuance, authentication, password rotation, persisted
sessions and account administration.  Services depend on the Repository
layer for data access.

The ``create_services()`` factory wires every repository and service together,
returning a typed dict that the application layer (session managers, the
portal shell, the CLI) can consume without knowing the internal
dependency graph.
"""

from __future__ import annotations

from typing import TypedDict

from portal.config import AppConfig
from portal.database import DatabaseManager
from portal.logger import get_logger
from portal.repositories.principal_repository import PrincipalRepository
from portal.services.accounts import AccountService
from portal.services.authenticator import Authenticator
from portal.services.credential_issuer import CredentialIssuer
from portal.services.passwords import PasswordHasher, PasswordPolicy
from portal.services.rotation import PasswordRotationService
from portal.services.session_cache import SessionCacheService


class ServiceContainer(TypedDict):
    """Typed container for all application services."""

    principal_repository: PrincipalRepository
    authenticator: Authenticator
    credential_issuer: CredentialIssuer
    rotation_service: PasswordRotationService
    account_service: AccountService
    session_cache: SessionCacheService


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    session_cache: SessionCacheService,
) -> ServiceContainer:
    """
    Wire all repositories and services together.

    This is the single composition root for the service layer.  The
    application entry-point calls this once at startup and passes the
    returned dict to the session managers and the shell.

    Args:
        db: Initialised DatabaseManager with the schema in place.
        config: Application configuration (injected into services that need it).
        session_cache: The persisted-session store shared by all portals.

    Returns:
        ServiceContainer mapping service names to fully-wired instances.
    """
    logger = get_logger("services")

    # ------------------------------------------------------------------
    # 1. Repositories (data-access layer)
    # ------------------------------------------------------------------
    principal_repo = PrincipalRepository(db=db, logger=logger)

    # ------------------------------------------------------------------
    # 2. Leaf services (no service dependencies)
    # ------------------------------------------------------------------
    hasher = PasswordHasher(rounds=config.BCRYPT_ROUNDS)
    policy = PasswordPolicy(min_length=config.MIN_PASSWORD_LENGTH)

    authenticator = Authenticator(
        repo=principal_repo,
        hasher=hasher,
        logger=logger,
        legacy_admin_email=config.LEGACY_ADMIN_EMAIL,
        legacy_admin_id=config.LEGACY_ADMIN_ID,
    )
    credential_issuer = CredentialIssuer(
        repo=principal_repo,
        db=db,
        hasher=hasher,
        logger=logger,
        temp_password_length=config.TEMP_PASSWORD_LENGTH,
        max_attempts=config.ISSUE_MAX_ATTEMPTS,
    )
    rotation_service = PasswordRotationService(
        repo=principal_repo,
        hasher=hasher,
        policy=policy,
        logger=logger,
    )

    # ------------------------------------------------------------------
    # 3. Composite services
    # ------------------------------------------------------------------
    account_service = AccountService(
        repo=principal_repo,
        issuer=credential_issuer,
        logger=logger,
        admin_id=config.LEGACY_ADMIN_ID,
    )

    return ServiceContainer(
        principal_repository=principal_repo,
        authenticator=authenticator,
        credential_issuer=credential_issuer,
        rotation_service=rotation_service,
        account_service=account_service,
        session_cache=session_cache,
    )
