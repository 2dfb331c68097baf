"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Long-lived handles (Mongo database, Redis
client, token signer, email provider, OAuth clients) live on app.state and
are created once in the lifespan; repositories and services are cheap
wrappers built per request around them, so no mutable state is shared
between requests.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends, Request

from config import AppSettings
from infrastructure.cache.cooldown import ResendCooldown
from infrastructure.email.protocol import EmailProvider
from infrastructure.tokens import TokenSigner
from repositories.account_repository import AccountRepository
from repositories.challenge_repository import ChallengeRepository
from schemas.models.account import AccountDoc
from services.auth_service import AuthService
from services.handle_allocator import HandleAllocator
from services.identity_resolver import IdentityResolver
from services.otp_service import OtpService


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


async def get_db(request: Request):
    """Return the async MongoDB database from app.state."""
    return request.app.state.db


async def get_redis(request: Request):
    """Return the async Redis client from app.state (may be None if not configured)."""
    return request.app.state.redis


def get_token_signer(request: Request) -> TokenSigner:
    return request.app.state.token_signer


def get_email_provider(request: Request) -> EmailProvider:
    return request.app.state.email_provider


def get_oauth_providers(request: Request) -> dict[str, Any]:
    """Registered Authlib clients keyed by provider name ({} when none)."""
    return getattr(request.app.state, "oauth_providers", {}) or {}


# ── Repositories ──────────────────────────────────────────────────────────────


async def get_account_repo(db=Depends(get_db)) -> AccountRepository:
    return AccountRepository(db)


async def get_challenge_repo(db=Depends(get_db)) -> ChallengeRepository:
    return ChallengeRepository(db)


# ── Services ──────────────────────────────────────────────────────────────────


async def get_handle_allocator(
    accounts: AccountRepository = Depends(get_account_repo),
    settings: AppSettings = Depends(get_settings),
) -> HandleAllocator:
    return HandleAllocator(accounts, settings.handles)


async def get_identity_resolver(
    accounts: AccountRepository = Depends(get_account_repo),
    allocator: HandleAllocator = Depends(get_handle_allocator),
    settings: AppSettings = Depends(get_settings),
) -> IdentityResolver:
    return IdentityResolver(
        accounts, allocator, allow_email_linking=settings.oauth.allow_email_linking
    )


async def get_otp_service(
    challenges: ChallengeRepository = Depends(get_challenge_repo),
    accounts: AccountRepository = Depends(get_account_repo),
    email_provider: EmailProvider = Depends(get_email_provider),
    redis=Depends(get_redis),
    settings: AppSettings = Depends(get_settings),
) -> OtpService:
    cooldown = ResendCooldown(redis, settings.otp.otp_resend_cooldown_seconds)
    return OtpService(challenges, accounts, email_provider, cooldown, settings.otp)


async def get_auth_service(
    accounts: AccountRepository = Depends(get_account_repo),
    otp: OtpService = Depends(get_otp_service),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    allocator: HandleAllocator = Depends(get_handle_allocator),
    signer: TokenSigner = Depends(get_token_signer),
) -> AuthService:
    return AuthService(accounts, otp, resolver, allocator, signer)


# ── Auth ──────────────────────────────────────────────────────────────────────


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_account(
    request: Request,
    auth: AuthService = Depends(get_auth_service),
) -> AccountDoc:
    """Account for the request's bearer token. 401 if absent or invalid."""
    result = await auth.authenticate(_bearer_token(request))
    return result.unwrap()
