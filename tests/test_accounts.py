"""
Account administration service
"""
import pytest

from portal.errors import PermissionDeniedError, ValidationError
from portal.models.enums import PortalRole
from portal.models.principal import ProfileSeed


@pytest.fixture
def accounts(services):
    return services["account_service"]


@pytest.fixture
def admin(accounts, services):
    issued = accounts.bootstrap_admin()
    repo = services["principal_repository"]
    return repo.find_by_external_id(issued.external_id).to_session_principal()


class TestBootstrap:
    """First administrator provisioning"""

    def test_creates_admin_with_fixed_identifier(self, accounts, services):
        issued = accounts.bootstrap_admin()

        assert issued.external_id == "ADMIN001"
        stored = services["principal_repository"].find_by_external_id("ADMIN001")
        assert stored.role == PortalRole.ADMIN
        assert stored.must_rotate_password is True

    def test_second_bootstrap_is_a_no_op(self, accounts, services):
        first = accounts.bootstrap_admin()
        assert accounts.bootstrap_admin() is None

        stored = services["principal_repository"].find_by_external_id("ADMIN001")
        assert stored.temporary_password == first.temporary_password

    def test_admin_profile_uses_display_name(self, accounts, services):
        issued = accounts.bootstrap_admin(display_name="Headmaster")
        profile = services["principal_repository"].find_role_profile(issued.principal_id)
        assert profile.display_name == "Headmaster"


class TestIssueCredentials:
    """Only administrators issue credentials"""

    def test_admin_can_issue(self, accounts, admin):
        issued = accounts.issue_credentials(
            admin, PortalRole.TEACHER, ProfileSeed(surname="Boateng", other_names="Yaw"),
        )
        assert issued.external_id.startswith("TEA")

    def test_non_admin_is_refused(self, accounts, issue, services):
        teacher = issue()
        actor = services["principal_repository"].get_by_id(teacher.principal_id)

        with pytest.raises(PermissionDeniedError, match="Only administrators"):
            accounts.issue_credentials(
                actor.to_session_principal(),
                PortalRole.STUDENT,
                ProfileSeed(surname="Owusu", other_names="Kofi"),
            )


    def test_stale_admin_copy_is_refused(self, accounts, admin, issue, services):
        deputy = issue(PortalRole.ADMIN, display_name="Deputy Head")
        repo = services["principal_repository"]
        held = repo.get_by_id(deputy.principal_id).to_session_principal()
        accounts.deactivate(admin, deputy.external_id)

        assert held.is_active is True
        with pytest.raises(PermissionDeniedError):
            accounts.issue_credentials(
                held, PortalRole.TEACHER, ProfileSeed(surname="Boateng", other_names="Yaw"),
            )


class TestActivation:
    """Deactivation and reactivation"""

    def test_deactivate_and_reactivate(self, accounts, admin, issue, services):
        issued = issue()
        repo = services["principal_repository"]

        assert accounts.deactivate(admin, issued.external_id).is_active is False
        assert repo.get_by_id(issued.principal_id).is_active is False
        assert accounts.reactivate(admin, issued.external_id).is_active is True
        assert repo.get_by_id(issued.principal_id).is_active is True

    def test_deactivation_is_idempotent(self, accounts, admin, issue):
        issued = issue()
        accounts.deactivate(admin, issued.external_id)
        assert accounts.deactivate(admin, issued.external_id).is_active is False

    def test_deactivation_keeps_identifier_reserved(self, accounts, admin, issue, services):
        issued = issue()
        accounts.deactivate(admin, issued.external_id)
        assert services["principal_repository"].external_id_exists(issued.external_id)

    def test_unknown_account(self, accounts, admin):
        with pytest.raises(ValidationError, match="No account found for TEA2025999"):
            accounts.deactivate(admin, " TEA2025999 ")

    def test_admin_cannot_deactivate_self(self, accounts, admin):
        with pytest.raises(ValidationError):
            accounts.deactivate(admin, admin.external_id)
