"""OAuth provider strategies and Authlib client initialisation.

Google is the only identity provider wired up. The strategy ABC keeps the
provider-specific bits (how to fetch and read the user-info document) in one
place so another provider is a new subclass plus a registration block.

The OAuth ``state`` round-trip is handled by Authlib through the Starlette
session (SessionMiddleware in app.py).
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from authlib.integrations.starlette_client import OAuth

from config import OAuthProviderSettings
from schemas.dto.identity import IdentityAssertion
from shared.logging import get_logger
from shared.validators import normalize_email

log = get_logger(__name__)

GOOGLE = "google"


# ── Provider strategies ───────────────────────────────────────────────────────


class OAuthProviderStrategy(ABC):
    """Encapsulates everything that differs between OAuth providers."""

    @property
    @abstractmethod
    def key(self) -> str: ...

    @abstractmethod
    async def fetch_identity(self, client: Any, token: Any) -> IdentityAssertion: ...


class GoogleStrategy(OAuthProviderStrategy):
    key = GOOGLE

    async def fetch_identity(self, client: Any, token: Any) -> IdentityAssertion:
        userinfo = token.get("userinfo")
        if userinfo is None:
            resp = await client.get("userinfo", token=token)
            resp.raise_for_status()
            userinfo = resp.json()
        return extract_identity_from_google(userinfo)


PROVIDER_STRATEGIES: dict[str, OAuthProviderStrategy] = {
    s.key: s() for s in [GoogleStrategy]
}


# ── Authlib init ─────────────────────────────────────────────────────────────


def init_oauth(settings: OAuthProviderSettings) -> Tuple[Optional[OAuth], Dict[str, Any]]:
    """Initialise Authlib OAuth clients for FastAPI/Starlette.

    Returns (oauth, providers_dict) - stored on app.state in create_app().
    Returns (None, {}) if no providers are configured.
    """
    oauth = OAuth()
    providers: Dict[str, Any] = {}

    if settings.google_enabled:
        try:
            google = oauth.register(
                name=GOOGLE,
                client_id=settings.google_oauth_client_id,
                client_secret=settings.google_oauth_client_secret,
                server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
                client_kwargs={
                    "scope": "openid email profile",
                    "prompt": "select_account",
                },
            )
            providers[GOOGLE] = google
            log.info("oauth_provider_initialized", provider=GOOGLE)
        except Exception as e:
            log.error("oauth_provider_init_failed", provider=GOOGLE, error=str(e))

    if not providers:
        log.warning("oauth_no_providers_configured")
        return None, {}

    return oauth, providers


def get_oauth_redirect_url(provider: str, settings: OAuthProviderSettings) -> str:
    """Return the configured redirect URI for *provider*, or "" if unset.

    Route handlers fall back to building the callback URL from the request.
    """
    return getattr(settings, f"{provider}_oauth_redirect_uri", "") or ""


# ── User-info extractors ──────────────────────────────────────────────────────


def extract_identity_from_google(userinfo: Dict[str, Any]) -> IdentityAssertion:
    """Map a Google OpenID userinfo document onto an IdentityAssertion.

    An address Google itself marks unverified is dropped, which makes the
    assertion unusable for account lookup.
    """
    email = normalize_email(userinfo.get("email"))
    if userinfo.get("email_verified") is False:
        log.warning("oauth_email_unverified", provider=GOOGLE, email=email)
        email = ""
    return IdentityAssertion(
        provider=GOOGLE,
        provider_id=str(userinfo.get("sub", "")),
        email=email or None,
        display_name=userinfo.get("name") or userinfo.get("given_name") or None,
        avatar_url=userinfo.get("picture") or None,
    )
