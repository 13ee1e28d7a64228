"""
Password hashing, temporary passwords and the rotation policy
"""
from portal.services.passwords import (
    TEMP_PASSWORD_ALPHABET,
    PasswordHasher,
    PasswordPolicy,
    generate_temporary_password,
)


class TestPasswordHasher:
    """bcrypt hashing"""

    def test_hash_verifies_only_the_original_password(self):
        hasher = PasswordHasher(rounds=4)
        stored = hasher.hash("K7Q2M9XA")

        assert stored.startswith("$2")
        assert stored != "K7Q2M9XA"
        assert hasher.verify("K7Q2M9XA", stored)
        assert not hasher.verify("k7q2m9xa", stored)

    def test_same_password_gets_distinct_hashes(self):
        hasher = PasswordHasher(rounds=4)
        assert hasher.hash("newpass1") != hasher.hash("newpass1")

    def test_malformed_stored_hash_does_not_verify(self):
        assert not PasswordHasher.verify("anything", "not-a-bcrypt-hash")

    def test_cost_factor_is_embedded_in_hash(self):
        assert PasswordHasher(rounds=5).hash("secret1").startswith("$2b$05$")


class TestTemporaryPassword:
    """Issued temporary passwords"""

    def test_default_length_and_alphabet(self):
        password = generate_temporary_password()
        assert len(password) == 8
        assert set(password) <= set(TEMP_PASSWORD_ALPHABET)

    def test_custom_length(self):
        assert len(generate_temporary_password(12)) == 12

    def test_passwords_are_not_repeated(self):
        assert len({generate_temporary_password() for _ in range(50)}) == 50


class TestPasswordPolicy:
    """Rules for a replacement password"""

    def test_accepts_minimum_length(self):
        assert PasswordPolicy(min_length=6).validate("abcdef").is_valid

    def test_rejects_short_password(self):
        result = PasswordPolicy(min_length=6).validate("abc12")
        assert not result.is_valid
        assert result.error_message == "Password must be at least 6 characters long"

    def test_rejects_mismatched_confirmation(self):
        result = PasswordPolicy().validate("newpass1", confirm_password="newpass2")
        assert not result.is_valid
        assert result.error_message == "Passwords do not match"

    def test_rejects_reuse_of_temporary_password(self):
        result = PasswordPolicy().validate("K7Q2M9XA", temporary_password="K7Q2M9XA")
        assert not result.is_valid
        assert result.error_message == "Must be different from your temporary password"

    def test_confirmation_is_optional(self):
        assert PasswordPolicy().validate("newpass1", confirm_password=None).is_valid
