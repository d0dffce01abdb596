"""Account-related DTOs shared across services."""

from __future__ import annotations

from pydantic import BaseModel


class Account(BaseModel):
    """Public projection of an account; never carries credentials or tokens."""

    account_id: str
    name: str
    email: str
    verified: bool = False
