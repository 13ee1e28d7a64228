"""
Encrypted persisted-session slots
"""
import json

import pytest

from portal.models.auth_models import Session
from portal.models.enums import PortalRole
from portal.models.principal import RoleProfile, SessionPrincipal

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_749_988_800_000


def make_session(role=PortalRole.STUDENT, issued_at=NOW_MS, must_rotate=False):
    return Session(
        principal=SessionPrincipal(
            id=7, external_id="STU2025007", role=role, must_rotate_password=must_rotate,
        ),
        profile=RoleProfile(principal_id=7, display_name="Owusu, Kofi", class_name="2A"),
        issued_at=issued_at,
    )


def slot_count(db, slot):
    return db.sqlite.execute(
        "SELECT COUNT(*) FROM persisted_sessions WHERE slot = ?", (slot,),
    ).fetchone()[0]


def stored_version(db, slot):
    row = db.sqlite.execute(
        "SELECT version FROM persisted_sessions WHERE slot = ?", (slot,),
    ).fetchone()
    return row["version"] if row else None


class TestSaveAndLoad:
    """Round trip through the encrypted slot"""

    def test_saved_session_loads_back(self, session_cache):
        session = make_session()
        version = session_cache.save("studentAuth", "studentData", session)

        record = session_cache.load("studentAuth", "studentData", DAY_MS, NOW_MS + 1000)

        assert record.session == session
        assert record.timestamp == NOW_MS
        assert record.version == version

    def test_empty_slot_loads_nothing(self, session_cache):
        assert session_cache.load("teacherAuth", "teacherData", DAY_MS, NOW_MS) is None

    def test_payload_is_encrypted_at_rest(self, session_cache, db):
        session_cache.save("studentAuth", "studentData", make_session())
        stored = db.sqlite.execute(
            "SELECT encrypted_payload FROM persisted_sessions WHERE slot = 'studentAuth'"
        ).fetchone()[0]
        assert b"STU2025007" not in stored

    def test_slots_are_independent(self, session_cache):
        session_cache.save("studentAuth", "studentData", make_session())
        session_cache.clear("teacherAuth")

        assert session_cache.load("studentAuth", "studentData", DAY_MS, NOW_MS) is not None
        assert session_cache.load("teacherAuth", "teacherData", DAY_MS, NOW_MS) is None

    def test_salt_file_is_reused(self, session_cache, db, logger, tmp_path):
        from portal.services.session_cache import SessionCacheService

        session_cache.save("studentAuth", "studentData", make_session())
        reopened = SessionCacheService(
            db=db, logger=logger, salt_path=tmp_path / "session_salt", pbkdf2_iterations=1_000,
        )
        assert reopened.load("studentAuth", "studentData", DAY_MS, NOW_MS) is not None


class TestExpiry:
    """A slot is valid while its age is below the maximum"""

    def test_one_millisecond_before_limit_is_accepted(self, session_cache):
        session_cache.save("studentAuth", "studentData", make_session())
        now = NOW_MS + DAY_MS - 1
        assert session_cache.load("studentAuth", "studentData", DAY_MS, now) is not None

    def test_exactly_at_limit_is_rejected_and_deleted(self, session_cache, db):
        session_cache.save("studentAuth", "studentData", make_session())

        assert session_cache.load("studentAuth", "studentData", DAY_MS, NOW_MS + DAY_MS) is None
        assert slot_count(db, "studentAuth") == 0

    def test_no_max_age_never_expires(self, session_cache):
        session_cache.save("adminAuth", "adminData", make_session(role=PortalRole.ADMIN))
        later = NOW_MS + 365 * DAY_MS
        assert session_cache.load("adminAuth", "adminData", None, later) is not None


class TestCorruption:
    """Unreadable slots are treated as absent and removed"""

    def test_malformed_json_is_deleted(self, session_cache, db):
        session_cache._write("teacherAuth", b"{not json")

        assert session_cache.load("teacherAuth", "teacherData", DAY_MS, NOW_MS) is None
        assert slot_count(db, "teacherAuth") == 0

    def test_missing_profile_field_is_deleted(self, session_cache, db):
        payload = {"studentData": make_session().model_dump(mode="json"), "timestamp": NOW_MS}
        session_cache._write("teacherAuth", json.dumps(payload).encode("utf-8"))

        assert session_cache.load("teacherAuth", "teacherData", DAY_MS, NOW_MS) is None
        assert slot_count(db, "teacherAuth") == 0

    def test_invalid_session_shape_is_deleted(self, session_cache, db):
        payload = {"studentData": {"principal": {"id": "x"}}, "timestamp": NOW_MS}
        session_cache._write("studentAuth", json.dumps(payload).encode("utf-8"))

        assert session_cache.load("studentAuth", "studentData", DAY_MS, NOW_MS) is None
        assert slot_count(db, "studentAuth") == 0

    def test_tampered_ciphertext_is_deleted(self, session_cache, db):
        session_cache.save("studentAuth", "studentData", make_session())
        db.sqlite.execute(
            "UPDATE persisted_sessions SET encrypted_payload = ? WHERE slot = 'studentAuth'",
            (b"\x00" * 64,),
        )
        db.sqlite.commit()

        assert session_cache.load("studentAuth", "studentData", DAY_MS, NOW_MS) is None
        assert slot_count(db, "studentAuth") == 0


class TestVersions:
    """Monotonic write stamps guard deletes"""

    def test_versions_grow_across_deletes(self, session_cache):
        first = session_cache.save("studentAuth", "studentData", make_session())
        session_cache.clear("studentAuth")
        second = session_cache.save("studentAuth", "studentData", make_session())

        assert second > first

    def test_clear_keeps_newer_write(self, session_cache, db):
        seen = session_cache.save("studentAuth", "studentData", make_session())
        newer = session_cache.save("studentAuth", "studentData", make_session())

        assert session_cache.clear("studentAuth", up_to_version=seen) is False
        assert stored_version(db, "studentAuth") == newer

    def test_clear_removes_seen_write(self, session_cache, db):
        seen = session_cache.save("studentAuth", "studentData", make_session())

        assert session_cache.clear("studentAuth", up_to_version=seen) is True
        assert stored_version(db, "studentAuth") is None

    def test_clear_on_empty_slot_is_harmless(self, session_cache):
        assert session_cache.clear("adminAuth") is False


@pytest.mark.parametrize("role", list(PortalRole))
def test_slot_names_follow_portal(role):
    assert role.slot_name == f"{role.value}Auth"
    assert role.profile_field == f"{role.value}Data"
