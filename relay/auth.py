"""
Bearer credential verification.

SupabaseAuthVerifier asks Supabase Auth who the token belongs to.
StaticTokenVerifier serves local development and tests.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

import aiohttp

from logging_setup import get_logger, Component
from .errors import AuthError
from .supabase import SupabaseRest, read_json

logger = get_logger(Component.AUTH)


@dataclass(frozen=True)
class CallerIdentity:
    user_id: str
    email: Optional[str] = None


class AuthVerifier(Protocol):
    async def verify(self, token: Optional[str]) -> CallerIdentity: ...

    async def aclose(self) -> None: ...


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an "Authorization: Bearer <token>" header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class StaticTokenVerifier:
    """Verifies tokens against a fixed token -> user_id mapping."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens = dict(tokens)

    async def verify(self, token: Optional[str]) -> CallerIdentity:
        if not token:
            raise AuthError("Missing authorization")
        user_id = self._tokens.get(token)
        if user_id is None:
            raise AuthError("Invalid token")
        return CallerIdentity(user_id=user_id)

    async def aclose(self) -> None:
        return None


class SupabaseAuthVerifier:
    """Resolves a user JWT through GET /auth/v1/user."""

    def __init__(self, rest: SupabaseRest):
        self.rest = rest

    async def verify(self, token: Optional[str]) -> CallerIdentity:
        if not token:
            raise AuthError("Missing authorization")

        try:
            async with self.rest.http().get(
                self.rest.auth_url("user"),
                headers=self.rest.headers(bearer=token),
            ) as resp:
                if resp.status != 200:
                    logger.info("Token rejected by auth service", status=resp.status)
                    raise AuthError("Invalid token")
                body = await read_json(resp)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("Auth service request failed", error=str(e), error_type=type(e).__name__)
            raise AuthError("Invalid token") from e

        user_id = body.get("id") if isinstance(body, dict) else None
        if not user_id:
            raise AuthError("Invalid token")
        return CallerIdentity(user_id=str(user_id), email=body.get("email"))

    async def aclose(self) -> None:
        await self.rest.aclose()
