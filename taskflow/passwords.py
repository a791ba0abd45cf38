"""
Password rules shared by sign-up and password change.
"""

from __future__ import annotations

import re

from shared.constants import MIN_PASSWORD_LENGTH
from taskflow.errors import InvalidArgumentError

_SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>_\-+=\[\]\\;'/`~]")

STRENGTH_LABELS = {
    0: "Very weak",
    1: "Weak",
    2: "Weak",
    3: "Medium",
    4: "Strong",
    5: "Very strong",
    6: "Very strong",
}

MAX_STRENGTH = 4


def raw_strength(password: str) -> int:
    """Scores a password from 0 to 6, one point per satisfied rule."""
    score = 0
    if len(password) >= 6:
        score += 1
    if len(password) >= 10:
        score += 1
    if re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"[a-z]", password):
        score += 1
    if re.search(r"[0-9]", password):
        score += 1
    if _SPECIAL_CHARACTERS.search(password):
        score += 1
    return score


def password_strength(password: str) -> int:
    """Strength on the 0-4 scale used by the strength meter."""
    return min(raw_strength(password), MAX_STRENGTH)


def strength_label(password: str) -> str:
    return STRENGTH_LABELS[raw_strength(password)]


def validate_new_password(password: str, confirmation: str | None = None) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidArgumentError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )
    if confirmation is not None and confirmation != password:
        raise InvalidArgumentError("Passwords do not match.")
