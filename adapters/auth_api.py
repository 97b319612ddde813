"""
Clients for the auth endpoints: reset-token verification and email codes.

POST /api/auth/verify with {"token": ...}; the server answers
{"ok": true, "email": ...} or {"ok": false, "error": reason}.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from adapters.base import ApiAdapter
from config import api_config

logger = logging.getLogger(__name__)

VERIFY_PATH = "/api/auth/verify"


@dataclass
class VerifyResult:
    ok: bool
    email: Optional[str] = None
    error: Optional[str] = None
    status: int = 0


class TokenVerifier:
    """Checks reset tokens against the backend."""

    def __init__(self, adapter: Optional[ApiAdapter] = None):
        self.adapter = adapter or ApiAdapter()

    def verify(self, token: str) -> VerifyResult:
        """
        Args:
            token: Token from the reset link

        Returns:
            VerifyResult; ok is True only when the server vouched for an email
        """
        token = (token or "").strip()
        if not token:
            return VerifyResult(ok=False, error="missing_token")

        result = self.adapter.post_json(VERIFY_PATH, {"token": token})
        email = result.get("email")
        if result["ok"] and email:
            return VerifyResult(ok=True, email=email, status=result["status"])

        error = result.get("error") or f"http_{result['status']}"
        logger.info(f"Token rejected: {error}")
        return VerifyResult(ok=False, error=error, status=result["status"])


class EmailCodeClient:
    """
    One-time email codes for sign-up verification and password reset.

    The code service lives on its own host, so requests go to full URLs
    built from email_base_url rather than the API base.
    """

    def __init__(self, email_base_url: Optional[str] = None, adapter: Optional[ApiAdapter] = None):
        base = email_base_url if email_base_url is not None else api_config.email_base_url
        self.email_base_url = base.rstrip("/")
        self.adapter = adapter or ApiAdapter()

    def send_code(self, email: str, reason: str = "verify") -> dict:
        return self.adapter.post_json(
            f"{self.email_base_url}/start-email-code",
            {"email": email, "reason": reason},
        )

    def confirm_code(self, email: str, code: str, reason: str = "verify") -> dict:
        return self.adapter.post_json(
            f"{self.email_base_url}/confirm-email-code",
            {"email": email, "code": code, "reason": reason},
        )
