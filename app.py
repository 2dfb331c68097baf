"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient
from starlette.middleware.sessions import SessionMiddleware

from config import AppSettings
from errors import register_error_handlers
from infrastructure.cache.redis_client import create_redis_client
from infrastructure.email.zeptomail import ZeptoMailProvider
from infrastructure.http_client import HttpClient
from infrastructure.oauth_clients import init_oauth
from infrastructure.tokens import TokenSigner
from repositories.account_repository import AccountRepository
from repositories.challenge_repository import ChallengeRepository
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from shared.generators import generate_secure_token
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.logging)

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            environment=settings.env,
        )

    # Fails fast when neither RS256 keys nor JWT_SECRET are configured
    token_signer = TokenSigner(settings.jwt)
    oauth, oauth_providers = init_oauth(settings.oauth)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri, tz_aware=True
        )
        app.state.mongo_client = mongo_client
        app.state.db = mongo_client[settings.db.db_name]
        app.state.settings = settings

        # Redis is optional; the resend cooldown falls back to MongoDB
        app.state.redis = await create_redis_client(settings.redis.redis_uri)

        await AccountRepository(app.state.db).ensure_indexes()
        await ChallengeRepository(app.state.db).ensure_indexes()

        http_client = HttpClient(timeout=10.0)
        app.state.http_client = http_client
        app.state.email_provider = ZeptoMailProvider(
            settings.email,
            http_client,
            app_url=settings.oauth.frontend_url,
            code_ttl_minutes=max(1, settings.otp.otp_ttl_seconds // 60),
        )
        app.state.token_signer = token_signer
        app.state.oauth = oauth
        app.state.oauth_providers = oauth_providers

        log.info(
            "app_started",
            env=settings.env,
            db_name=settings.db.db_name,
            redis=app.state.redis is not None,
            oauth_providers=sorted(oauth_providers),
        )

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        await http_client.aclose()
        await mongo_client.close()
        if app.state.redis is not None:
            await app.state.redis.aclose()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Authlib keeps the OAuth state/nonce in the signed session cookie
    session_secret = settings.secret_key
    if not session_secret:
        log.warning("secret_key_not_configured", fallback="per_process_random")
        session_secret = generate_secure_token()
    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        same_site="lax",
        https_only=settings.is_production,
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)

    return app
