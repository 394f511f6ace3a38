"""
Pre-issued bearer tokens.

Instead of registering fresh players, a run can replay a file of tokens
issued ahead of time (one per line).  Each token already names its
player, so the participant reads the identity out of the JWT claims and
skips the registration and login calls.

The swarm never verifies these tokens -- it does not hold the backend's
signing key and does not need to.  Claims are decoded with signature
verification disabled purely to learn which player a token belongs to;
the backend still validates every request.

Key Concepts Demonstrated:
- Unverified JWT inspection with ``PyJWT``
- Tolerant line-oriented file parsing (blank lines and ``#`` comments)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import jwt

from .errors import ProtocolError
from .models import Identity

# Claim names, in lookup order, that carry the player id.  ASP.NET Core
# emits either the short ``nameid`` or the full WS-Federation URI.
IDENTITY_CLAIMS = (
    "nameid",
    "http://schemas.xmlsoap.org/ws/2005/05/identity/claims/nameidentifier",
    "user_id",
    "id",
    "sub",
)


def load_tokens(path: str | Path) -> list[str]:
    """
    Read bearer tokens from *path*, one per line.

    Blank lines and lines starting with ``#`` are skipped, and an
    optional ``Bearer `` prefix is stripped.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the file holds no tokens.
    """
    tokens: list[str] = []
    with Path(path).open("r", encoding="utf-8") as handle:
        for line in handle:
            text = line.strip()
            if not text or text.startswith("#"):
                continue
            if text.lower().startswith("bearer "):
                text = text[7:].strip()
            tokens.append(text)
    if not tokens:
        raise ValueError(f"Token file {path} contains no tokens")
    return tokens


def read_claims(token: str) -> dict[str, Any]:
    """
    Decode the JWT payload without verifying its signature.

    Raises:
        ProtocolError: If *token* is not a decodable JWT.
    """
    try:
        claims = jwt.decode(
            token,
            options={"verify_signature": False, "verify_exp": False},
            algorithms=["HS256", "RS256"],
        )
    except jwt.InvalidTokenError as exc:
        raise ProtocolError(f"Token is not a valid JWT: {exc}") from exc
    return claims


def identity_from_token(token: str) -> Identity:
    """
    Build the :class:`Identity` a pre-issued token belongs to.

    Raises:
        ProtocolError: If no identity claim is present.
    """
    claims = read_claims(token)
    for claim in IDENTITY_CLAIMS:
        value = claims.get(claim)
        if value not in (None, ""):
            return Identity(user_id=value)
    raise ProtocolError("Token carries no identity claim")
