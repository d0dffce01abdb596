"""Input shape checks applied before any persistence lookup."""

from __future__ import annotations

import re

NAME_PATTERN = re.compile(r"[A-Za-z0-9_]{3,16}")
PASSWORD_PATTERN = re.compile(r"(?=.*\d)(?=.*[a-z])(?=.*[A-Z]).{8,32}")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9.!#$%&’*+=?^_`{|}~-]+@[a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)*")


def is_valid_name(name: str) -> bool:
    return NAME_PATTERN.fullmatch(name) is not None


def is_valid_password(password: str) -> bool:
    """8 to 32 characters with at least one digit, one lowercase and one uppercase letter."""
    return PASSWORD_PATTERN.fullmatch(password) is not None


def is_valid_email(email: str) -> bool:
    return EMAIL_PATTERN.fullmatch(email) is not None
