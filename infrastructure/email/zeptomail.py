"""ZeptoMail implementation of EmailProvider.

Sends one-time codes for email verification and password reset through the
ZeptoMail HTTP API. Delivery failures are logged and reported as False;
nothing here raises, because a lost email must never fail the challenge
that produced it (the user can ask for a resend).
"""

import os
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import EmailSettings
from infrastructure.http_client import HttpClient
from shared.logging import get_logger

log = get_logger(__name__)

_ZEPTO_API_URL = "https://api.zeptomail.com/v1.1/email"
_DEFAULT_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "templates",
    "emails",
)

# purpose -> (subject, heading, intro line)
_CODE_COPY = {
    "email_verification": (
        "Verify your email - QuickPing",
        "Verify your email",
        "Use the code below to finish setting up your QuickPing account.",
    ),
    "password_reset": (
        "Reset your password - QuickPing",
        "Reset your password",
        "Use the code below to choose a new password for your QuickPing account.",
    ),
}


class ZeptoMailProvider:
    def __init__(
        self,
        settings: EmailSettings,
        http_client: HttpClient,
        app_url: str = "http://localhost:3000",
        code_ttl_minutes: int = 10,
        template_dir: str = _DEFAULT_TEMPLATE_DIR,
    ) -> None:
        self._settings = settings
        self._http = http_client
        self._app_url = app_url
        self._code_ttl_minutes = code_ttl_minutes
        self._jinja = Environment(
            loader=FileSystemLoader(template_dir),
            autoescape=select_autoescape(["html", "xml"]),
        )

    async def _send(
        self,
        to_email: str,
        to_name: Optional[str],
        subject: str,
        html_body: str,
        text_body: Optional[str] = None,
    ) -> bool:
        if not self._settings.zepto_api_token:
            log.error("email_send_failed", reason="token_not_configured", to_email=to_email)
            return False

        payload: dict = {
            "from": {
                "address": self._settings.zepto_from_email,
                "name": self._settings.zepto_from_name,
            },
            "to": [
                {
                    "email_address": {
                        "address": to_email,
                        "name": to_name or to_email,
                    }
                }
            ],
            "subject": subject,
            "htmlbody": html_body,
        }
        if text_body:
            payload["textbody"] = text_body

        auth_header = self._settings.zepto_api_token
        if not auth_header.startswith("Zoho-enczapikey "):
            auth_header = f"Zoho-enczapikey {auth_header}"

        try:
            response = await self._http.post(
                _ZEPTO_API_URL, json=payload, headers={"Authorization": auth_header}
            )
        except Exception as e:
            log.error(
                "email_send_error",
                to_email=to_email,
                subject=subject,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if response.status_code in (200, 201, 202):
            log.info("email_sent", to_email=to_email, subject=subject)
            return True
        log.error(
            "email_send_failed",
            to_email=to_email,
            subject=subject,
            status_code=response.status_code,
            response=response.text[:200],
        )
        return False

    async def send_code(
        self, email: str, user_name: Optional[str], code: str, purpose: str
    ) -> bool:
        subject, heading, intro = _CODE_COPY.get(
            purpose, _CODE_COPY["email_verification"]
        )
        template = self._jinja.get_template("otp_code.html")
        html_body = template.render(
            heading=heading,
            intro=intro,
            otp_code=code,
            user_name=user_name,
            expires_minutes=self._code_ttl_minutes,
            app_url=self._app_url,
        )
        text_body = (
            f"{heading} - QuickPing\n\n"
            f"Hello{f' {user_name}' if user_name else ''},\n\n"
            f"{intro}\n\n"
            f"Your code is: {code}\n\n"
            f"This code expires in {self._code_ttl_minutes} minutes. "
            f"If you did not request it, you can ignore this email."
        )
        return await self._send(email, user_name, subject, html_body, text_body)
