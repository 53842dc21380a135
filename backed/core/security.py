"""Verification of identity-provider access tokens.

The identity provider owns accounts, sessions and OAuth. The core only
verifies the signed bearer token it issues and trusts its subject.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from backed.core.config import settings


def create_access_token(user_id: UUID, role: str, expires_hours: int = 4) -> str:
    """
    Mint a token in the identity provider's format.

    Used by tests and local tooling; production tokens come from the provider.
    """
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=expires_hours),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_access_token(token: str) -> dict:
    """
    Decode and verify an access token.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    audience = settings.JWT_AUDIENCE or None
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(
                token, secret, algorithms=["HS256"], audience=audience, options=options
            )
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore
