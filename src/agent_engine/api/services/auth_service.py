from __future__ import annotations

from typing import Any

import asyncpg

from jose import JWTError, jwt

from agent_engine.core.constants import Settings, get_settings
from agent_engine.models.api_models import UserInfo


class AuthService:
    """Resolves caller identity from a JWT issued by the web app."""

    def __init__(self, pool: asyncpg.Pool, settings: Settings | None = None):
        self.pool = pool
        self.settings = settings or get_settings()

    def decode_token(self, token: str) -> dict[str, Any]:
        """Decode and validate a token. Raises ValueError when it is unusable."""
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
            )
        except JWTError as exc:
            raise ValueError("Invalid token") from exc

        if not payload.get("sub"):
            raise ValueError("Token has no subject")
        return payload

    async def get_user_by_id(self, user_id: str) -> asyncpg.Record | None:
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(
                "SELECT id, email, name FROM users WHERE id::text = $1",
                user_id,
            )

    async def resolve_user(self, token: str) -> UserInfo | None:
        """Identity for ``token``, or None when the token or user is unknown."""
        try:
            payload = self.decode_token(token)
        except ValueError:
            return None

        user = await self.get_user_by_id(str(payload["sub"]))
        if not user:
            return None
        return UserInfo(**self.user_payload(user))

    def user_payload(self, user: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": str(user["id"]),
            "email": user["email"],
            "name": user["name"],
        }
