"""
OTP challenge manager - issue, resend and validate one-time codes.

Per (email, purpose) a challenge moves absent → active → consumed |
expired | exhausted, and a new issue from any state supersedes whatever was
active. Codes are stored as SHA-256 digests; the plaintext only ever goes
to the email provider.

Limits (all from OtpSettings):
- TTL: a code is accepted until ``expires_at`` inclusive; expiry is detected
  lazily on the next validate and recorded on the challenge.
- Attempts: each wrong submission burns one attempt through an atomic
  decrement; the submission that takes the count to zero exhausts the
  challenge, and the correct code is refused afterwards.
- Resend cooldown: a resend inside the cooldown window after the previous
  issue/resend is refused with the seconds left.
- Hourly cap: at most ``otp_max_issues_per_hour`` challenges per pair.

validate is not idempotent on mismatch: every call burns an attempt, so
callers must not retry it without new user input.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from config import OtpSettings
from errors import (
    AppError,
    ChallengeExhaustedError,
    ChallengeExpiredError,
    ChallengeMismatchError,
    ChallengeNotFoundError,
    ResendThrottledError,
)
from infrastructure.cache.cooldown import ResendCooldown
from infrastructure.email.protocol import EmailProvider
from repositories.protocols import AccountStore, ChallengeStore
from schemas.models.account import AccountDoc
from schemas.models.challenge import ChallengeDoc, ChallengePurpose, ChallengeStatus
from shared.crypto import code_matches, hash_code
from shared.datetime_utils import ensure_utc, seconds_until, utcnow
from shared.generators import generate_otp_code
from shared.logging import get_logger
from shared.result import Err, Ok, Result
from shared.validators import is_well_formed_code, normalize_email

log = get_logger(__name__)

_HOUR = timedelta(hours=1)


@dataclass(frozen=True)
class IssuedChallenge:
    email: str
    purpose: ChallengePurpose
    expires_at: datetime
    expires_in: int
    attempts_allowed: int
    delivered: bool


@dataclass(frozen=True)
class ValidatedChallenge:
    email: str
    purpose: ChallengePurpose
    # verified account (email_verification) or the account whose password
    # may now be changed (password_reset); None if it no longer exists
    account: Optional[AccountDoc]


class OtpService:
    def __init__(
        self,
        challenges: ChallengeStore,
        accounts: AccountStore,
        email_provider: EmailProvider,
        cooldown: ResendCooldown,
        settings: Optional[OtpSettings] = None,
        *,
        clock: Callable[[], datetime] = utcnow,
        code_generator: Callable[[int], str] = generate_otp_code,
    ) -> None:
        self._challenges = challenges
        self._accounts = accounts
        self._email = email_provider
        self._cooldown = cooldown
        self._settings = settings or OtpSettings()
        self._clock = clock
        self._generate = code_generator

    # ── issue / resend ────────────────────────────────────────────────────────

    async def issue(
        self,
        email: str,
        purpose: ChallengePurpose,
        *,
        account_id: Any = None,
        user_name: Optional[str] = None,
    ) -> Result[IssuedChallenge]:
        """Create a fresh active challenge and email its code.

        Supersedes any active challenge for the pair and restarts the resend
        cooldown. Only the hourly cap can refuse an issue.
        """
        email = normalize_email(email)
        capped = await self._hourly_cap_error(email, purpose)
        if capped is not None:
            return Err(capped)

        await self._cooldown.start(email, purpose.value)
        return await self._create_and_send(email, purpose, account_id, user_name)

    async def resend(
        self,
        email: str,
        purpose: ChallengePurpose,
        *,
        account_id: Any = None,
        user_name: Optional[str] = None,
    ) -> Result[IssuedChallenge]:
        """Like ``issue`` but refused inside the cooldown window.

        A successful resend is a brand new challenge: new code, new TTL,
        full attempt budget, and the previous code stops working.
        """
        email = normalize_email(email)

        retry_after = await self._cooldown.acquire(email, purpose.value)
        if retry_after is None:
            retry_after = await self._cooldown_from_store(email, purpose)
        if retry_after > 0:
            log.info(
                "otp_resend_throttled",
                email=email,
                purpose=purpose.value,
                retry_after=retry_after,
            )
            return Err(
                ResendThrottledError(
                    "Please wait before requesting a new code",
                    retry_after=retry_after,
                )
            )

        capped = await self._hourly_cap_error(email, purpose)
        if capped is not None:
            await self._cooldown.release(email, purpose.value)
            return Err(capped)

        return await self._create_and_send(email, purpose, account_id, user_name)

    async def _cooldown_from_store(self, email: str, purpose: ChallengePurpose) -> int:
        cooldown = self._settings.otp_resend_cooldown_seconds
        if cooldown <= 0:
            return 0
        latest = await self._challenges.latest(email, purpose)
        if latest is None:
            return 0
        window_ends = ensure_utc(latest.created_at) + timedelta(seconds=cooldown)
        return seconds_until(window_ends, self._clock())

    async def _hourly_cap_error(
        self, email: str, purpose: ChallengePurpose
    ) -> Optional[ResendThrottledError]:
        since = self._clock() - _HOUR
        recent = await self._challenges.count_since(email, purpose, since)
        if recent < self._settings.otp_max_issues_per_hour:
            return None
        log.warning(
            "otp_hourly_cap_reached",
            email=email,
            purpose=purpose.value,
            count=recent,
        )
        return ResendThrottledError(
            "Too many codes requested. Please try again in an hour.",
            retry_after=int(_HOUR.total_seconds()),
        )

    async def _create_and_send(
        self,
        email: str,
        purpose: ChallengePurpose,
        account_id: Any,
        user_name: Optional[str],
    ) -> Result[IssuedChallenge]:
        now = self._clock()
        code = self._generate(self._settings.otp_length)
        challenge = ChallengeDoc(
            email=email,
            purpose=purpose,
            account_id=account_id,
            code_hash=hash_code(code),
            created_at=now,
            expires_at=now + timedelta(seconds=self._settings.otp_ttl_seconds),
            attempts_remaining=self._settings.otp_max_attempts,
        )
        try:
            stored = await self._challenges.store(challenge)
        except AppError as e:
            return Err(e)

        delivered = await self._deliver(email, user_name, code, purpose)
        log.info(
            "otp_issued",
            email=email,
            purpose=purpose.value,
            challenge_id=stored.id_str,
            delivered=delivered,
        )
        return Ok(
            IssuedChallenge(
                email=email,
                purpose=purpose,
                expires_at=stored.expires_at,
                expires_in=self._settings.otp_ttl_seconds,
                attempts_allowed=self._settings.otp_max_attempts,
                delivered=delivered,
            )
        )

    async def _deliver(
        self, email: str, user_name: Optional[str], code: str, purpose: ChallengePurpose
    ) -> bool:
        # The challenge exists regardless; a failed delivery is recoverable by resend.
        try:
            delivered = await self._email.send_code(email, user_name, code, purpose.value)
        except Exception as e:
            log.error(
                "otp_delivery_error",
                email=email,
                purpose=purpose.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        if not delivered:
            log.warning("otp_delivery_failed", email=email, purpose=purpose.value)
        return bool(delivered)

    # ── validate ──────────────────────────────────────────────────────────────

    async def validate(
        self, email: str, purpose: ChallengePurpose, code: str
    ) -> Result[ValidatedChallenge]:
        """Check *code* against the active challenge for (email, purpose).

        Returns:
            Ok(ValidatedChallenge) on a match, otherwise Err carrying
            ChallengeNotFoundError, ChallengeExpiredError,
            ChallengeExhaustedError or ChallengeMismatchError.
        """
        email = normalize_email(email)
        challenge = await self._challenges.load_active(email, purpose)
        if challenge is None:
            return Err(await self._inactive_error(email, purpose))

        if challenge.attempts_remaining <= 0:
            self._log_failure(email, purpose, "exhausted")
            return Err(ChallengeExhaustedError("Too many incorrect attempts. Request a new code."))

        if self._clock() > ensure_utc(challenge.expires_at):
            await self._challenges.mark_terminal(challenge.id, ChallengeStatus.EXPIRED)
            self._log_failure(email, purpose, "expired")
            return Err(ChallengeExpiredError("This code has expired. Request a new one."))

        code = (code or "").strip()
        if not (
            is_well_formed_code(code, self._settings.otp_length)
            and code_matches(code, challenge.code_hash)
        ):
            return Err(await self._record_mismatch(challenge))

        if not await self._challenges.mark_terminal(challenge.id, ChallengeStatus.CONSUMED):
            # lost a race with a parallel submission
            self._log_failure(email, purpose, "consumed_concurrently")
            return Err(await self._inactive_error(email, purpose))

        account = await self._apply_success(challenge)
        log.info(
            "otp_validated",
            email=email,
            purpose=purpose.value,
            challenge_id=challenge.id_str,
            account_id=account.id_str if account else None,
        )
        return Ok(ValidatedChallenge(email=email, purpose=purpose, account=account))

    async def _record_mismatch(self, challenge: ChallengeDoc) -> AppError:
        purpose = ChallengePurpose(challenge.purpose)
        updated = await self._challenges.decrement_attempt(challenge.id)
        if updated is None:
            self._log_failure(challenge.email, purpose, "inactive_on_decrement")
            return await self._inactive_error(challenge.email, purpose)

        remaining = updated.attempts_remaining
        if remaining <= 0:
            # the decrement itself moved the challenge to exhausted
            self._log_failure(challenge.email, purpose, "exhausted")
            return ChallengeExhaustedError(
                "Too many incorrect attempts. Request a new code."
            )

        self._log_failure(challenge.email, purpose, "mismatch", remaining_attempts=remaining)
        return ChallengeMismatchError(
            f"Incorrect code. {remaining} attempt{'s' if remaining != 1 else ''} left.",
            remaining_attempts=remaining,
        )

    async def _inactive_error(self, email: str, purpose: ChallengePurpose) -> AppError:
        """Explain why no active challenge exists for the pair.

        Exhausted and expired challenges keep reporting their own kind until a
        new one is issued; everything else is "not found".
        """
        latest = await self._challenges.latest(email, purpose)
        status = latest.status if latest is not None else None
        spent = status == ChallengeStatus.ACTIVE and latest.attempts_remaining <= 0
        if status == ChallengeStatus.EXHAUSTED or spent:
            self._log_failure(email, purpose, "exhausted")
            return ChallengeExhaustedError("Too many incorrect attempts. Request a new code.")
        if status == ChallengeStatus.EXPIRED:
            self._log_failure(email, purpose, "expired")
            return ChallengeExpiredError("This code has expired. Request a new one.")
        self._log_failure(email, purpose, "not_found")
        return ChallengeNotFoundError("No active code for this email. Request a new one.")

    async def _apply_success(self, challenge: ChallengeDoc) -> Optional[AccountDoc]:
        account_id = challenge.account_id
        if account_id is None:
            account = await self._accounts.find_by_email(challenge.email)
            if account is None:
                return None
            account_id = account.id
        else:
            account = None

        if challenge.purpose == ChallengePurpose.EMAIL_VERIFICATION:
            # only ever set to True; verification is never revoked here
            return await self._accounts.update(account_id, {"is_verified": True})
        return account or await self._accounts.find_by_id(account_id)

    @staticmethod
    def _log_failure(email: str, purpose: ChallengePurpose, reason: str, **extra: Any) -> None:
        log.info(
            "otp_validation_failed",
            email=email,
            purpose=ChallengePurpose(purpose).value,
            reason=reason,
            **extra,
        )
