"""
SchoolGate - Test Configuration and Fixtures

Every test gets its own SQLite file under ``tmp_path`` with Supabase
disabled, a low bcrypt cost and a controllable clock.
"""
import logging
from pathlib import Path
from typing import Callable, Generator, Optional

import pytest

from portal.auth import SessionManager, create_session_managers
from portal.config import AppConfig
from portal.database import DatabaseManager
from portal.logger import StructuredLogger
from portal.models.auth_models import IssuedCredentials
from portal.models.enums import PortalRole
from portal.models.principal import ProfileSeed
from portal.schema import initialize_schema
from portal.services import ServiceContainer, create_services
from portal.services.session_cache import SessionCacheService
from portal.shell import PortalShell

# 2025-06-15T12:00:00Z
START_MS = 1_749_988_800_000
HOUR_MS = 60 * 60 * 1000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now_ms: int = START_MS) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Offline configuration with a cheap bcrypt cost"""
    return AppConfig(
        SUPABASE_URL="",
        SUPABASE_ANON_KEY="",
        SQLITE_PATH=str(tmp_path / "portal.db"),
        BCRYPT_ROUNDS=4,
        STORE_TIMEOUT_S=5.0,
    )


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(name="tests", level=logging.DEBUG)


@pytest.fixture
def db(config: AppConfig, logger: StructuredLogger) -> Generator[DatabaseManager, None, None]:
    """Fresh local store with the schema applied"""
    manager = DatabaseManager(
        supabase_url="",
        supabase_key="",
        sqlite_path=Path(config.SQLITE_PATH),
        logger=logger,
    )
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture
def session_cache(
    db: DatabaseManager, logger: StructuredLogger, tmp_path: Path,
) -> SessionCacheService:
    return SessionCacheService(
        db=db,
        logger=logger,
        salt_path=tmp_path / "session_salt",
        pbkdf2_iterations=1_000,
    )


@pytest.fixture
def services(
    db: DatabaseManager, config: AppConfig, session_cache: SessionCacheService,
) -> ServiceContainer:
    return create_services(db=db, config=config, session_cache=session_cache)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_managers(
    services: ServiceContainer, config: AppConfig, clock: FakeClock,
) -> Generator[Callable[..., dict[PortalRole, SessionManager]], None, None]:
    """Factory for a fresh set of portal managers, as after a restart"""
    created: list[SessionManager] = []

    def _make(app_config: Optional[AppConfig] = None) -> dict[PortalRole, SessionManager]:
        managers = create_session_managers(services, app_config or config, clock=clock)
        created.extend(managers.values())
        return managers

    yield _make
    for manager in created:
        manager.close()


@pytest.fixture
def managers(
    make_managers: Callable[..., dict[PortalRole, SessionManager]],
) -> dict[PortalRole, SessionManager]:
    return make_managers()


@pytest.fixture
def shell(
    managers: dict[PortalRole, SessionManager],
    services: ServiceContainer,
    logger: StructuredLogger,
) -> PortalShell:
    return PortalShell(
        managers=managers, accounts=services["account_service"], logger=logger,
    )


@pytest.fixture
def issue(services: ServiceContainer) -> Callable[..., IssuedCredentials]:
    """Issue credentials directly through the issuer"""

    def _issue(
        role: PortalRole = PortalRole.TEACHER,
        surname: str = "Mensah",
        other_names: str = "Ama Serwaa",
        **seed_fields: object,
    ) -> IssuedCredentials:
        if role == PortalRole.ADMIN:
            seed_fields.setdefault("display_name", "Deputy Head")
        seed = ProfileSeed(surname=surname, other_names=other_names, **seed_fields)
        return services["credential_issuer"].issue(role, seed)

    return _issue


@pytest.fixture
def signed_in() -> Callable[[SessionManager, IssuedCredentials, str], None]:
    """Log in with the temporary password and rotate it"""

    def _signed_in(
        manager: SessionManager, issued: IssuedCredentials, new_password: str = "newpass1",
    ) -> None:
        manager.restore()
        manager.login(issued.external_id, issued.temporary_password)
        manager.rotate(new_password, new_password)

    return _signed_in
