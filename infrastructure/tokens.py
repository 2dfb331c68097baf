"""Bearer token issuance and verification (PyJWT).

RS256 when both PEM keys are configured, HS256 with ``JWT_SECRET``
otherwise. Keys supplied through env vars may carry literal ``\\n``
sequences; they are expanded before use.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

import jwt

from config import JWTSettings
from errors import AuthenticationError
from shared.datetime_utils import utcnow


class TokenSigner:
    def __init__(self, settings: JWTSettings) -> None:
        self._settings = settings
        if settings.use_rs256:
            self._algorithm = "RS256"
            self._signing_key: Any = settings.jwt_private_key.replace("\\n", "\n")
            self._verify_key: Any = settings.jwt_public_key.replace("\\n", "\n")
        else:
            if not settings.jwt_secret:
                raise RuntimeError(
                    "JWT_SECRET must be set when RS256 keys are not provided"
                )
            self._algorithm = "HS256"
            self._signing_key = self._verify_key = settings.jwt_secret

    @property
    def ttl_seconds(self) -> int:
        return self._settings.access_token_ttl_seconds

    def issue(self, account_id: str, auth_method: str = "pwd") -> str:
        """Sign an access token for *account_id*.

        ``auth_method`` lands in the ``amr`` claim: ``pwd``, ``otp`` or
        ``google``.
        """
        now = utcnow()
        claims = {
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "sub": str(account_id),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=self.ttl_seconds)).timestamp()),
            "amr": [auth_method],
        }
        return jwt.encode(claims, self._signing_key, algorithm=self._algorithm)

    def verify(self, token: Optional[str]) -> dict:
        """Decode *token* and return its claims.

        Raises:
            AuthenticationError: missing, expired or otherwise invalid token.
        """
        if not token:
            raise AuthenticationError("Authentication required")
        try:
            return jwt.decode(
                token,
                self._verify_key,
                algorithms=[self._algorithm],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("Session expired, please sign in again") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid authentication token") from e
