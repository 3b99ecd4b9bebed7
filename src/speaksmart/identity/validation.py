"""Input checks shared by the auth and password flows."""

import re

from speaksmart.errors import UserInputError

MIN_PASSWORD_LENGTH = 6

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(email: str) -> str:
    return email.strip().lower()


def require_fields(*values: str | None) -> None:
    if any(not (v or "").strip() for v in values):
        raise UserInputError("Please fill in all fields")


def validate_email(email: str) -> str:
    if not (email or "").strip():
        raise UserInputError("Please enter your email address")
    email = normalize_email(email)
    if not _EMAIL.match(email):
        raise UserInputError("Please enter a valid email address")
    return email


def validate_new_password(password: str, confirm: str | None = None) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise UserInputError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    if confirm is not None and password != confirm:
        raise UserInputError("Passwords do not match")
