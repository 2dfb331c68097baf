"""
Account flows - password registration and login, email verification,
password reset, Google sign-in completion, presence.

Composes the handle allocator, identity resolver and OTP challenge manager
with token issuance. Every public operation returns a ``Result``; route
handlers unwrap it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from errors import (
    AppError,
    AuthenticationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from infrastructure.tokens import TokenSigner
from repositories.protocols import AccountStore
from schemas.dto.identity import IdentityAssertion
from schemas.models.account import AccountDoc
from schemas.models.challenge import ChallengePurpose
from services.handle_allocator import HandleAllocator
from services.identity_resolver import IdentityResolver
from services.otp_service import IssuedChallenge, OtpService
from shared.crypto import hash_password, verify_password
from shared.datetime_utils import utcnow
from shared.logging import get_logger
from shared.result import Err, Ok, Result
from shared.validators import (
    MIN_PASSWORD_LENGTH,
    is_usable_email,
    normalize_email,
    validate_handle,
    validate_password,
)

log = get_logger(__name__)

AUTH_METHOD_PASSWORD = "pwd"
AUTH_METHOD_OTP = "otp"
AUTH_METHOD_GOOGLE = "google"


@dataclass(frozen=True)
class AuthSession:
    token: str
    account: AccountDoc
    requires_verification: bool = False
    verification_sent: bool = False


class AuthService:
    def __init__(
        self,
        accounts: AccountStore,
        otp: OtpService,
        resolver: IdentityResolver,
        allocator: HandleAllocator,
        signer: TokenSigner,
    ) -> None:
        self._accounts = accounts
        self._otp = otp
        self._resolver = resolver
        self._allocator = allocator
        self._signer = signer

    # ── password accounts ─────────────────────────────────────────────────────

    async def register(
        self, email: str, password: str, user_name: Optional[str] = None
    ) -> Result[AuthSession]:
        """Create an unverified password account and send its first code."""
        email = normalize_email(email)
        if not is_usable_email(email):
            return Err(ValidationError("A valid email address is required", field="email"))
        if not validate_password(password or ""):
            return Err(
                ValidationError(
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                    field="password",
                )
            )

        user_name = (user_name or "").strip() or None
        if user_name is not None and not validate_handle(user_name):
            return Err(
                ValidationError(
                    "Username must be 3-30 letters, digits, '_' or '.'",
                    field="user_name",
                )
            )

        if await self._accounts.find_by_email(email) is not None:
            log.warning("registration_failed", reason="email_exists")
            return Err(ConflictError("Email or username already exists", field="email"))
        if user_name is not None and await self._accounts.find_by_handle(user_name):
            log.warning("registration_failed", reason="user_name_exists")
            return Err(ConflictError("Email or username already exists", field="user_name"))
        allocated = user_name is None
        password_hash = hash_password(password)
        # an allocated handle can lose the unique-index race; allocate again once
        for attempt in range(2 if allocated else 1):
            if allocated:
                user_name = await self._allocator.allocate(email.split("@", 1)[0])
            try:
                account = await self._accounts.insert(
                    AccountDoc(
                        email=email,
                        user_name=user_name,
                        is_verified=False,
                        password_hash=password_hash,
                        last_seen=utcnow(),
                    )
                )
                break
            except AppError as e:
                if allocated and e.field == "user_name" and attempt == 0:
                    log.info("registration_handle_retry", user_name=user_name)
                    continue
                log.warning("registration_failed", reason="write_conflict", field=e.field)
                return Err(e)

        log.info("user_registered", account_id=account.id_str, auth_method="password")
        sent = await self._send_code(account, ChallengePurpose.EMAIL_VERIFICATION)
        return Ok(
            AuthSession(
                token=self._signer.issue(account.id_str, AUTH_METHOD_PASSWORD),
                account=account,
                requires_verification=True,
                verification_sent=sent,
            )
        )

    async def login(self, email: str, password: str) -> Result[AuthSession]:
        """Check a password and open a session.

        Unverified accounts still get a token, plus a fresh verification code
        and ``requires_verification`` so the client routes them to the code
        entry screen.
        """
        email = normalize_email(email)
        account = await self._accounts.find_by_email(email)
        if account is None:
            log.warning("login_failed", reason="unknown_email")
            return Err(AuthenticationError("Invalid credentials"))
        if not account.has_password:
            log.warning("login_failed", reason="no_password", account_id=account.id_str)
            return Err(AuthenticationError("This account uses Google sign-in"))
        if not verify_password(password or "", account.password_hash):
            log.warning("login_failed", reason="invalid_password", account_id=account.id_str)
            return Err(AuthenticationError("Invalid credentials"))

        account = await self._accounts.update(account.id, {"last_seen": utcnow()}) or account
        token = self._signer.issue(account.id_str, AUTH_METHOD_PASSWORD)
        log.info("login_success", account_id=account.id_str, auth_method="password")

        if account.is_verified:
            return Ok(AuthSession(token=token, account=account))
        sent = await self._send_code(account, ChallengePurpose.EMAIL_VERIFICATION)
        return Ok(
            AuthSession(
                token=token,
                account=account,
                requires_verification=True,
                verification_sent=sent,
            )
        )

    async def _send_code(self, account: AccountDoc, purpose: ChallengePurpose) -> bool:
        # Used where a code is a side effect; the caller's flow succeeds regardless.
        result = await self._otp.issue(
            account.email, purpose, account_id=account.id, user_name=account.user_name
        )
        if not result.ok:
            log.warning(
                "verification_code_not_sent",
                account_id=account.id_str,
                reason=result.error.error_code,
            )
            return False
        return result.value.delivered

    # ── email verification ────────────────────────────────────────────────────

    async def _unverified_account(self, email: str) -> Result[AccountDoc]:
        account = await self._accounts.find_by_email(normalize_email(email))
        if account is None:
            return Err(NotFoundError("No account found for this email", field="email"))
        if account.is_verified:
            return Err(ValidationError("Email is already verified", field="email"))
        return Ok(account)

    async def send_verification(self, email: str) -> Result[IssuedChallenge]:
        found = await self._unverified_account(email)
        if not found.ok:
            return found
        account = found.value
        return await self._otp.issue(
            account.email,
            ChallengePurpose.EMAIL_VERIFICATION,
            account_id=account.id,
            user_name=account.user_name,
        )

    async def resend_verification(self, email: str) -> Result[IssuedChallenge]:
        found = await self._unverified_account(email)
        if not found.ok:
            return found
        account = found.value
        return await self._otp.resend(
            account.email,
            ChallengePurpose.EMAIL_VERIFICATION,
            account_id=account.id,
            user_name=account.user_name,
        )

    async def verify_email(self, email: str, code: str) -> Result[AuthSession]:
        """Confirm the emailed code; the account comes back verified with a new token."""
        validated = await self._otp.validate(email, ChallengePurpose.EMAIL_VERIFICATION, code)
        if not validated.ok:
            return validated
        account = validated.value.account
        if account is None:
            return Err(NotFoundError("User not found"))
        log.info("email_verified", account_id=account.id_str)
        return Ok(
            AuthSession(
                token=self._signer.issue(account.id_str, AUTH_METHOD_OTP),
                account=account,
            )
        )

    # ── password reset ────────────────────────────────────────────────────────

    async def request_password_reset(self, email: str) -> Result[Optional[IssuedChallenge]]:
        """Send a reset code if the account exists.

        Unknown emails and throttled requests both come back as Ok(None) so
        the response never tells a caller whether an address is registered.
        """
        email = normalize_email(email)
        account = await self._accounts.find_by_email(email)
        if account is None:
            log.warning("password_reset_requested_unknown", email=email)
            return Ok(None)

        result = await self._otp.issue(
            account.email,
            ChallengePurpose.PASSWORD_RESET,
            account_id=account.id,
            user_name=account.user_name,
        )
        if not result.ok:
            log.warning(
                "password_reset_not_sent",
                account_id=account.id_str,
                reason=result.error.error_code,
            )
            return Ok(None)
        return result

    async def reset_password(
        self, email: str, code: str, new_password: str
    ) -> Result[AccountDoc]:
        # checked first so a weak password does not burn an attempt
        if not validate_password(new_password or ""):
            return Err(
                ValidationError(
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
                    field="password",
                )
            )

        validated = await self._otp.validate(email, ChallengePurpose.PASSWORD_RESET, code)
        if not validated.ok:
            return validated
        account = validated.value.account
        if account is None:
            return Err(NotFoundError("User not found"))

        updated = await self._accounts.update(
            account.id, {"password_hash": hash_password(new_password)}
        )
        if updated is None:
            return Err(NotFoundError("User not found"))
        log.info("password_reset_success", account_id=updated.id_str)
        return Ok(updated)

    # ── Google sign-in ────────────────────────────────────────────────────────

    async def complete_provider_login(self, assertion: IdentityAssertion) -> Result[AuthSession]:
        resolved = await self._resolver.resolve(assertion)
        if not resolved.ok:
            return resolved
        account = resolved.value.account
        account = (
            await self._accounts.update(account.id, {"is_online": True, "last_seen": utcnow()})
            or account
        )
        log.info(
            "login_success",
            account_id=account.id_str,
            auth_method=assertion.provider,
            action=resolved.value.action,
        )
        return Ok(
            AuthSession(
                token=self._signer.issue(account.id_str, AUTH_METHOD_GOOGLE),
                account=account,
            )
        )

    # ── sessions ──────────────────────────────────────────────────────────────

    async def authenticate(self, token: Optional[str]) -> Result[AccountDoc]:
        """Resolve a bearer token to its account."""
        try:
            claims = self._signer.verify(token)
        except AuthenticationError as e:
            return Err(e)
        account = await self._accounts.find_by_id(claims.get("sub"))
        if account is None:
            return Err(AuthenticationError("User not found"))
        return Ok(account)

    async def current_user(self, account_id: Any) -> Result[AccountDoc]:
        account = await self._accounts.find_by_id(account_id)
        if account is None:
            return Err(NotFoundError("User not found"))
        return Ok(account)

    async def logout(self, account_id: Any) -> Result[None]:
        await self._accounts.update(account_id, {"is_online": False, "last_seen": utcnow()})
        log.info("logout", account_id=str(account_id))
        return Ok(None)
