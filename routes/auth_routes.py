"""
Authentication routes - /auth/*.

POST /auth/register         - password sign-up, sends the first code (201)
POST /auth/login            - password login
POST /auth/send-otp         - send an email-verification code
POST /auth/resend-otp       - same, subject to the resend cooldown
POST /auth/verify-otp       - confirm the code, returns a fresh token
POST /auth/forgot-password  - send a password-reset code (never reveals if the email exists)
POST /auth/reset-password   - confirm the reset code and set a new password
GET  /auth/me               - current account (bearer token)
POST /auth/logout           - mark the account offline (bearer token)
GET  /auth/google           - start Google sign-in
GET  /auth/google/callback  - finish Google sign-in, redirect to the frontend with a token
GET  /auth/google/status    - whether Google sign-in is configured

Handlers stay thin: call the service, ``unwrap()`` the result (an Err raises
its AppError for the global handler), shape the response.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

import httpx
from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse

from config import AppSettings
from dependencies import (
    get_auth_service,
    get_current_account,
    get_oauth_providers,
    get_settings,
)
from errors import ProviderNotConfiguredError
from infrastructure.oauth_clients import GOOGLE, PROVIDER_STRATEGIES, get_oauth_redirect_url
from schemas.dto.requests.auth import (
    EmailRequest,
    LoginRequest,
    RegisterRequest,
    ResetPasswordRequest,
    VerifyOtpRequest,
)
from schemas.dto.responses.auth import (
    AuthResponse,
    GoogleStatusResponse,
    MeResponse,
    OtpSentResponse,
    UserProfileResponse,
)
from schemas.dto.responses.common import ErrorResponse, MessageResponse
from schemas.models.account import AccountDoc
from services.auth_service import AuthService, AuthSession
from services.otp_service import IssuedChallenge
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in (400, 401, 404, 409, 429)
}

router = APIRouter(prefix="/auth", tags=["auth"], responses=_ERROR_RESPONSES)


def _auth_response(session: AuthSession, message: str | None = None) -> AuthResponse:
    return AuthResponse(
        token=session.token,
        user=UserProfileResponse.from_account(session.account),
        requires_verification=session.requires_verification,
        verification_sent=session.verification_sent if session.requires_verification else None,
        message=message,
    )


def _otp_sent(issued: IssuedChallenge, message: str) -> OtpSentResponse:
    return OtpSentResponse(
        success=True,
        message=message,
        email=issued.email,
        expires_in=issued.expires_in,
        delivered=issued.delivered,
    )


# ── Password accounts ─────────────────────────────────────────────────────────


@router.post(
    "/register",
    response_model=AuthResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    body: RegisterRequest, auth: AuthService = Depends(get_auth_service)
) -> AuthResponse:
    session = (await auth.register(body.email, body.password, body.user_name)).unwrap()
    return _auth_response(
        session, "Account created. Check your email for a verification code."
    )


@router.post("/login", response_model=AuthResponse, response_model_exclude_none=True)
async def login(
    body: LoginRequest, auth: AuthService = Depends(get_auth_service)
) -> AuthResponse:
    session = (await auth.login(body.email, body.password)).unwrap()
    return _auth_response(session)


# ── Email verification ────────────────────────────────────────────────────────


@router.post("/send-otp", response_model=OtpSentResponse)
async def send_otp(
    body: EmailRequest, auth: AuthService = Depends(get_auth_service)
) -> OtpSentResponse:
    issued = (await auth.send_verification(body.email)).unwrap()
    return _otp_sent(issued, "A verification code has been sent to your email")


@router.post("/resend-otp", response_model=OtpSentResponse)
async def resend_otp(
    body: EmailRequest, auth: AuthService = Depends(get_auth_service)
) -> OtpSentResponse:
    issued = (await auth.resend_verification(body.email)).unwrap()
    return _otp_sent(issued, "A new verification code has been sent")


@router.post("/verify-otp", response_model=AuthResponse, response_model_exclude_none=True)
async def verify_otp(
    body: VerifyOtpRequest, auth: AuthService = Depends(get_auth_service)
) -> AuthResponse:
    session = (await auth.verify_email(body.email, body.code)).unwrap()
    return _auth_response(session, "Email verified successfully")


# ── Password reset ────────────────────────────────────────────────────────────


@router.post("/forgot-password", response_model=OtpSentResponse, response_model_exclude_none=True)
async def forgot_password(
    body: EmailRequest,
    auth: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> OtpSentResponse:
    (await auth.request_password_reset(body.email)).unwrap()
    # identical response whether or not the account exists
    return OtpSentResponse(
        success=True,
        message="If the email exists, a reset code has been sent",
        email=normalize_email(body.email),
        expires_in=settings.otp.otp_ttl_seconds,
    )


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    body: ResetPasswordRequest, auth: AuthService = Depends(get_auth_service)
) -> MessageResponse:
    (await auth.reset_password(body.email, body.code, body.password)).unwrap()
    return MessageResponse(success=True, message="Password reset successfully")


# ── Session ───────────────────────────────────────────────────────────────────


@router.get("/me", response_model=MeResponse)
async def me(account: AccountDoc = Depends(get_current_account)) -> MeResponse:
    return MeResponse(user=UserProfileResponse.from_account(account))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    account: AccountDoc = Depends(get_current_account),
    auth: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    (await auth.logout(account.id)).unwrap()
    return MessageResponse(success=True, message="Logged out successfully")


# ── Google sign-in ────────────────────────────────────────────────────────────


def _frontend_redirect(settings: AppSettings, path: str, **params: str) -> RedirectResponse:
    url = f"{settings.oauth.frontend_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.get("/google")
async def google_login(
    request: Request,
    providers: dict[str, Any] = Depends(get_oauth_providers),
    settings: AppSettings = Depends(get_settings),
):
    client = providers.get(GOOGLE)
    if client is None:
        raise ProviderNotConfiguredError("Google sign-in is not configured")
    redirect_uri = get_oauth_redirect_url(GOOGLE, settings.oauth) or str(
        request.url_for("google_callback")
    )
    # Authlib stores the state in the session and checks it on the callback
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/google/callback", name="google_callback")
async def google_callback(
    request: Request,
    providers: dict[str, Any] = Depends(get_oauth_providers),
    settings: AppSettings = Depends(get_settings),
    auth: AuthService = Depends(get_auth_service),
) -> RedirectResponse:
    client = providers.get(GOOGLE)
    if client is None:
        return _frontend_redirect(settings, "/login", error="google_not_configured")

    provider_error = request.query_params.get("error")
    if provider_error:
        log.warning("oauth_provider_error", provider=GOOGLE, error=provider_error)
        return _frontend_redirect(settings, "/login", error="google_auth_failed")

    try:
        token = await client.authorize_access_token(request)
        assertion = await PROVIDER_STRATEGIES[GOOGLE].fetch_identity(client, token)
    except (OAuthError, httpx.HTTPError) as e:
        log.warning(
            "oauth_callback_failed",
            provider=GOOGLE,
            error=str(e),
            error_type=type(e).__name__,
        )
        return _frontend_redirect(settings, "/login", error="google_auth_failed")

    result = await auth.complete_provider_login(assertion)
    if not result.ok:
        log.warning(
            "oauth_login_rejected", provider=GOOGLE, reason=result.error.error_code
        )
        return _frontend_redirect(settings, "/login", error=result.error.error_code)

    return _frontend_redirect(settings, "/auth/callback", token=result.value.token)


@router.get("/google/status", response_model=GoogleStatusResponse)
async def google_status(
    providers: dict[str, Any] = Depends(get_oauth_providers),
) -> GoogleStatusResponse:
    enabled = GOOGLE in providers
    return GoogleStatusResponse(
        enabled=enabled,
        message="Google sign-in is configured"
        if enabled
        else "Google sign-in is not configured",
    )
