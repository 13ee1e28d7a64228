"""
Password Hashing and Policy.

bcrypt hashing for stored credentials, the temporary-password generator
used at issuance, and the rotation policy checks.
"""

from __future__ import annotations

import secrets
import string
from typing import Optional

import bcrypt

from portal.models.auth_models import ValidationResult

# bcrypt only looks at the first 72 bytes of a password.
_BCRYPT_MAX_BYTES: int = 72

TEMP_PASSWORD_ALPHABET: str = string.ascii_uppercase + string.digits


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:_BCRYPT_MAX_BYTES]


class PasswordHasher:
    """bcrypt wrapper with a configurable cost factor."""

    def __init__(self, rounds: int = 10) -> None:
        self._rounds: int = rounds

    def hash(self, password: str) -> str:
        """Return the bcrypt hash of *password* as text."""
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")

    @staticmethod
    def verify(password: str, password_hash: str) -> bool:
        """Check *password* against a stored bcrypt hash.

        A malformed stored hash verifies as ``False``.
        """
        try:
            return bcrypt.checkpw(_password_bytes(password), password_hash.encode("utf-8"))
        except ValueError:
            return False


def generate_temporary_password(length: int = 8) -> str:
    """Random password of uppercase letters and digits, drawn with ``secrets``."""
    return "".join(secrets.choice(TEMP_PASSWORD_ALPHABET) for _ in range(length))


class PasswordPolicy:
    """Rules a replacement password must satisfy."""

    def __init__(self, min_length: int = 6) -> None:
        self._min_length: int = min_length

    @property
    def min_length(self) -> int:
        return self._min_length

    def validate(
        self,
        new_password: str,
        confirm_password: Optional[str] = None,
        temporary_password: Optional[str] = None,
    ) -> ValidationResult:
        """Check a proposed password.

        Parameters
        ----------
        new_password:
            The password the user typed.
        confirm_password:
            The confirmation field, when the form has one.
        temporary_password:
            The issued temporary password, which may not be reused.

        Returns
        -------
        ValidationResult
            ``is_valid=False`` carries the message to show the user.
        """
        if len(new_password) < self._min_length:
            return ValidationResult(
                is_valid=False,
                error_message=(
                    f"Password must be at least {self._min_length} characters long"
                ),
            )
        if confirm_password is not None and confirm_password != new_password:
            return ValidationResult(
                is_valid=False, error_message="Passwords do not match",
            )
        if temporary_password is not None and new_password == temporary_password:
            return ValidationResult(
                is_valid=False,
                error_message="Must be different from your temporary password",
            )
        return ValidationResult(is_valid=True)
