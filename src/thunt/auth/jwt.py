"""
Bearer token verification.

Tokens are issued by the marketplace auth service; this service only
verifies them. RS* algorithms use the public key from disk, HS* use the
shared secret.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from thunt.config import get_settings

_verify_key: str | None = None


def _load_verify_key() -> str:
    """Load the verification key (cached after first call)."""
    global _verify_key  # noqa: PLW0603
    if _verify_key is None:
        settings = get_settings()
        if settings.jwt_algorithm.upper().startswith("HS"):
            _verify_key = settings.jwt_secret
        else:
            _verify_key = Path(settings.jwt_public_key_path).read_text()
    return _verify_key


def reset_keys() -> None:
    """Reset the cached key (useful for testing)."""
    global _verify_key  # noqa: PLW0603
    _verify_key = None


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify and decode an access token.

    Args:
        token: The encoded JWT string.

    Returns:
        Decoded payload dictionary with at least a ``sub`` claim.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            _load_verify_key(),
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    sub = payload.get("sub")
    if sub is None or not str(sub).isdigit():
        msg = "Token has no valid subject"
        raise jwt.InvalidTokenError(msg)

    return payload
