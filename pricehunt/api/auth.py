"""Authentication dependencies for the PriceHunt API.

When PRICEHUNT_API_TOKEN is set every request needs a matching bearer
token. When it is not set, authentication is disabled (development mode).
"""

from __future__ import annotations

import os
import secrets

from fastapi import Depends, Header, HTTPException


def _get_api_token() -> str:
    """Read the API token at call time (supports test overrides)."""
    return os.getenv("PRICEHUNT_API_TOKEN", "")


def _get_bearer_token(authorization: str = Header(default="")) -> str:
    """Extract bearer token from Authorization header."""
    if authorization.startswith("Bearer "):
        return authorization[7:]
    return ""


def token_is_valid(token: str) -> bool:
    api_token = _get_api_token()
    if not api_token:
        return True
    return secrets.compare_digest(token, api_token)


async def require_api_auth(token: str = Depends(_get_bearer_token)) -> str:
    """Dependency that enforces API token authentication."""
    if not token_is_valid(token):
        raise HTTPException(status_code=401, detail="Invalid or missing API token")
    return token
