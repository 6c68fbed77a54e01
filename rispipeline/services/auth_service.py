"""AuthService — admin bearer tokens and the cron shared secret."""

import hmac
import os
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from rispipeline.core.config import ENV_CRON_SECRET, env_list
from rispipeline.services import (
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
)

_ALGORITHM = "HS256"
_ACCESS_TOKEN_EXPIRE = timedelta(minutes=30)

_ENV_JWT_SECRET = "RIS_JWT_SECRET"
_ENV_ADMIN_EMAILS = "RIS_ADMIN_EMAILS"


def _get_secret() -> str:
    """Read JWT secret from environment. Raises if not set."""
    secret = os.environ.get(_ENV_JWT_SECRET)
    if not secret:
        raise ConfigurationError(f"{_ENV_JWT_SECRET} environment variable is required")
    return secret


def is_admin(email: str | None) -> bool:
    """True if *email* is listed in ``RIS_ADMIN_EMAILS`` (case-insensitive)."""
    if not email:
        return False
    admins = {e.lower() for e in env_list(_ENV_ADMIN_EMAILS)}
    return email.lower() in admins


class AuthService:
    """Stateless token checks used by the API dependencies and the CLI."""

    def create_access_token(self, email: str, *, expires_in: timedelta = _ACCESS_TOKEN_EXPIRE) -> str:
        now = datetime.now(timezone.utc)
        return jwt.encode(
            {"sub": email, "email": email, "type": "access", "exp": now + expires_in},
            _get_secret(),
            algorithm=_ALGORITHM,
        )

    def decode_email(self, token: str) -> str:
        """Return the email carried by an access token.

        Raises :class:`AuthenticationError` on an invalid or expired token.
        """
        try:
            payload = jwt.decode(token, _get_secret(), algorithms=[_ALGORITHM])
        except JWTError:
            raise AuthenticationError("invalid or expired token")

        if payload.get("type", "access") != "access":
            raise AuthenticationError("invalid token type")
        email = payload.get("email") or payload.get("sub")
        if not email:
            raise AuthenticationError("invalid token payload")
        return email

    def require_admin(self, token: str) -> str:
        email = self.decode_email(token)
        if not is_admin(email):
            raise PermissionDeniedError("admin access required")
        return email

    def verify_cron_secret(self, provided: str | None) -> None:
        """Check a ``Bearer <CRON_SECRET>`` credential in constant time."""
        expected = os.environ.get(ENV_CRON_SECRET, "")
        if not expected:
            raise ConfigurationError(f"{ENV_CRON_SECRET} is not configured")
        if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
            raise AuthenticationError("invalid cron secret")
