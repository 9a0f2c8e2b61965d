from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime


@dataclass(frozen=True)
class ProfileEntity:
    """Account record keyed by the auth provider's user id."""

    id: str
    email: str | None = None
    display_name: str | None = None
    created_at: datetime | None = None

    @classmethod
    def new(cls, user_id: str, email: str | None = None) -> ProfileEntity:
        return cls(id=user_id, email=email, created_at=datetime.now(UTC))

    def merged_email(self, email: str | None) -> ProfileEntity:
        # a token without an email never erases the stored one
        return replace(self, email=email or self.email)

    def renamed(self, display_name: str) -> ProfileEntity:
        return replace(self, display_name=display_name)
