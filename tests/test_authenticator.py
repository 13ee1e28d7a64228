"""
Authenticator: lookup order, role isolation and deactivation
"""
import pytest

from portal.errors import AuthFailure, ValidationError
from portal.models.enums import AuthFailureKind, PortalRole
from portal.models.principal import ProfileSeed


@pytest.fixture
def authenticator(services):
    return services["authenticator"]


@pytest.fixture
def repo(services):
    return services["principal_repository"]


def failure_kind(authenticator, external_id, password, portal):
    with pytest.raises(AuthFailure) as excinfo:
        authenticator.authenticate(external_id, password, portal)
    return excinfo.value.kind


class TestAuthenticate:
    """Successful and refused logins"""

    def test_valid_temporary_credentials(self, authenticator, issue):
        issued = issue(PortalRole.STUDENT, surname="Owusu", other_names="Kofi")

        result = authenticator.authenticate(
            issued.external_id, issued.temporary_password, PortalRole.STUDENT,
        )

        assert result.principal.external_id == issued.external_id
        assert result.principal.must_rotate_password is True
        assert result.profile.display_name == "Owusu, Kofi"

    def test_identifier_is_trimmed(self, authenticator, issue):
        issued = issue()
        result = authenticator.authenticate(
            f"  {issued.external_id} ", issued.temporary_password, PortalRole.TEACHER,
        )
        assert result.principal.id == issued.principal_id

    def test_unknown_identifier(self, authenticator):
        kind = failure_kind(authenticator, "TEA2025999", "whatever", PortalRole.TEACHER)
        assert kind == AuthFailureKind.NOT_FOUND

    def test_wrong_password(self, authenticator, issue):
        issued = issue()
        kind = failure_kind(authenticator, issued.external_id, "WRONG123", PortalRole.TEACHER)
        assert kind == AuthFailureKind.BAD_PASSWORD

    def test_blank_fields_are_rejected(self, authenticator):
        with pytest.raises(ValidationError, match="Please fill in all fields"):
            authenticator.authenticate("  ", "secret", PortalRole.TEACHER)
        with pytest.raises(ValidationError):
            authenticator.authenticate("TEA2025001", "", PortalRole.TEACHER)

    def test_successful_login_records_last_login(self, authenticator, repo, issue):
        issued = issue()
        assert repo.get_by_id(issued.principal_id).last_login_at is None

        authenticator.authenticate(issued.external_id, issued.temporary_password, PortalRole.TEACHER)

        assert repo.get_by_id(issued.principal_id).last_login_at is not None


class TestRoleIsolation:
    """A principal only authenticates against its own portal"""

    @pytest.mark.parametrize("role", list(PortalRole))
    def test_other_portals_report_not_found(self, authenticator, issue, role):
        issued = issue(role)
        for portal in PortalRole:
            if portal == role:
                continue
            kind = failure_kind(authenticator, issued.external_id, issued.temporary_password, portal)
            assert kind == AuthFailureKind.NOT_FOUND

    @pytest.mark.parametrize("deactivate", [False, True])
    @pytest.mark.parametrize("use_correct_password", [False, True])
    def test_wrong_portal_never_reveals_account_state(
        self, authenticator, repo, issue, deactivate, use_correct_password,
    ):
        issued = issue(PortalRole.STUDENT, surname="Owusu", other_names="Kofi")
        if deactivate:
            repo.set_active(issued.principal_id, False)
        password = issued.temporary_password if use_correct_password else "WRONG123"

        kind = failure_kind(authenticator, issued.external_id, password, PortalRole.TEACHER)
        assert kind == AuthFailureKind.NOT_FOUND


class TestDeactivation:
    """Deactivated principals cannot authenticate"""

    def test_correct_password_is_refused_while_inactive(self, authenticator, repo, issue):
        issued = issue()
        repo.set_active(issued.principal_id, False)

        kind = failure_kind(
            authenticator, issued.external_id, issued.temporary_password, PortalRole.TEACHER,
        )
        assert kind == AuthFailureKind.DEACTIVATED

    def test_deactivation_is_checked_before_password(self, authenticator, repo, issue):
        issued = issue()
        repo.set_active(issued.principal_id, False)

        kind = failure_kind(authenticator, issued.external_id, "WRONG123", PortalRole.TEACHER)
        assert kind == AuthFailureKind.DEACTIVATED

    def test_reactivation_restores_access_with_same_hash(self, authenticator, repo, issue):
        issued = issue()
        before = repo.get_by_id(issued.principal_id).password_hash
        repo.set_active(issued.principal_id, False)
        repo.set_active(issued.principal_id, True)

        result = authenticator.authenticate(
            issued.external_id, issued.temporary_password, PortalRole.TEACHER,
        )
        assert result.principal.password_hash == before


class TestProfiles:
    """Role profile enrichment"""

    def test_teacher_without_profile_is_not_found(self, authenticator, repo, issue):
        issued = issue()
        repo.sqlite.execute(
            "DELETE FROM role_profiles WHERE principal_id = ?", (issued.principal_id,),
        )
        repo.sqlite.commit()

        kind = failure_kind(
            authenticator, issued.external_id, issued.temporary_password, PortalRole.TEACHER,
        )
        assert kind == AuthFailureKind.NOT_FOUND

    def test_admin_without_profile_gets_default_name(self, authenticator, repo, issue):
        issued = issue(PortalRole.ADMIN)
        repo.sqlite.execute(
            "DELETE FROM role_profiles WHERE principal_id = ?", (issued.principal_id,),
        )
        repo.sqlite.commit()

        result = authenticator.authenticate(
            issued.external_id, issued.temporary_password, PortalRole.ADMIN,
        )
        assert result.profile.display_name == "Administrator"


class TestLegacyAdminAlias:
    """The old admin email still reaches the admin account"""

    def test_email_maps_to_admin_identifier(self, authenticator, services):
        issued = services["credential_issuer"].provision(
            PortalRole.ADMIN, "ADMIN001", ProfileSeed(display_name="Administrator"),
        )

        result = authenticator.authenticate(
            "Admin@ASASHS.edu.gh", issued.temporary_password, PortalRole.ADMIN,
        )
        assert result.principal.external_id == "ADMIN001"

    def test_other_emails_are_not_mapped(self, authenticator):
        assert authenticator.resolve_identifier("someone@asashs.edu.gh") == "someone@asashs.edu.gh"


class TestRecheck:
    """Re-reading a principal held by a restored session"""

    def test_recheck_returns_current_row(self, authenticator, repo, issue):
        issued = issue()
        held = repo.get_by_id(issued.principal_id).to_session_principal()

        assert authenticator.recheck(held).id == issued.principal_id

    def test_recheck_refuses_deactivated(self, authenticator, repo, issue):
        issued = issue()
        held = repo.get_by_id(issued.principal_id).to_session_principal()
        repo.set_active(issued.principal_id, False)

        with pytest.raises(AuthFailure) as excinfo:
            authenticator.recheck(held)
        assert excinfo.value.kind == AuthFailureKind.DEACTIVATED
