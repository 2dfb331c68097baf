"""
Identity assertion DTO - what an external identity provider tells us.

Produced by the OAuth provider strategies (infrastructure/oauth_clients.py)
and consumed by IdentityResolver. Fields are taken as already authenticated
by the provider.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class IdentityAssertion(BaseModel):
    """A verified (provider_id, email) pair plus optional profile hints."""

    model_config = ConfigDict(frozen=True)

    provider: str = "google"
    provider_id: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
