from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass

from supabase import AsyncClient, acreate_client


@dataclass(slots=True)
class UserInfo:
    id: str
    email: str | None


def supabase_disabled() -> bool:
    return os.getenv("SUPABASE_DISABLED", "0") == "1"


class SupabaseAuthAdapter:
    """Small wrapper to validate Supabase access tokens.

    When SUPABASE_DISABLED=1 (or no client is configured), this returns a fake
    user derived from the token, so each distinct token is a distinct identity.
    """

    def __init__(self, client: AsyncClient | None) -> None:
        self.disabled = supabase_disabled()
        self._client = client

    async def validate_token(self, token: str) -> UserInfo:
        if not token:
            raise ValueError("Missing access token")
        if self.disabled or not self._client:
            digest = hashlib.sha256(token.encode("utf-8")).hexdigest()[:10]
            return UserInfo(id=f"fake-{digest}", email=None)
        # Real validation via Supabase Auth API
        try:  # pragma: no cover - network path
            res = await self._client.auth.get_user(token)
        except Exception as exc:  # pragma: no cover - network path
            raise ValueError(f"Invalid access token: {exc}") from exc
        user = res.user if res else None  # pragma: no cover
        if not user:  # pragma: no cover
            raise ValueError("Invalid access token")
        return UserInfo(id=user.id, email=user.email)  # pragma: no cover


async def create_supabase_client() -> AsyncClient | None:
    """Build the process-wide async client, or None when Supabase is off."""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_ANON_KEY")
    if supabase_disabled() or not url or not key:
        return None
    return await acreate_client(url, key)
