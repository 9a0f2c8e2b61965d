from __future__ import annotations

from datetime import datetime

from supabase import AsyncClient

from src.domain.entities.profile import ProfileEntity
from src.domain.errors import StorageFailure
from src.infrastructure.database.postgres_client import PostgresClient
from src.infrastructure.database.supabase_client import supabase_disabled


class ProfileRepository:
    def __init__(self, client: AsyncClient | None, pg_client: PostgresClient | None = None) -> None:
        self.client = client
        self.disabled = supabase_disabled()
        self.pg_client = pg_client if pg_client is not None and pg_client.enabled else None
        self._mem: dict[str, ProfileEntity] = {}

    @property
    def _in_memory(self) -> bool:
        return self.pg_client is None and (self.disabled or self.client is None)

    def _row_to_entity(self, row: dict) -> ProfileEntity:
        """Convert database row to ProfileEntity."""
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)

        return ProfileEntity(
            id=row["id"],
            email=row.get("email"),
            created_at=created_at,
            display_name=row.get("display_name"),
        )

    async def get(self, user_id: str) -> ProfileEntity | None:
        # PostgreSQL mode
        if self.pg_client:
            try:
                row = await self.pg_client.aexecute_one("SELECT * FROM profiles WHERE id = %s", (user_id,))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL get profile failed: {exc}") from exc
            return self._row_to_entity(row) if row else None

        # In-memory mode
        if self._in_memory:
            return self._mem.get(user_id)

        # Supabase mode
        try:  # pragma: no cover - network
            res = await self.client.table("profiles").select("*").eq("id", user_id).limit(1).execute()
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB get profile failed: {exc}") from exc
        rows = res.data or []  # pragma: no cover
        return self._row_to_entity(rows[0]) if rows else None  # pragma: no cover

    async def upsert(self, user_id: str, email: str | None) -> ProfileEntity:
        # PostgreSQL mode
        if self.pg_client:
            query = """
                INSERT INTO profiles (id, email, created_at)
                VALUES (%s, %s, CURRENT_TIMESTAMP)
                ON CONFLICT (id) DO UPDATE SET email = COALESCE(EXCLUDED.email, profiles.email)
                RETURNING *
            """
            try:
                row = await self.pg_client.aexecute_insert(query, (user_id, email))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL upsert profile failed: {exc}") from exc
            return self._row_to_entity(row)

        # In-memory mode
        if self._in_memory:
            current = self._mem.get(user_id)
            entity = ProfileEntity.new(user_id, email) if current is None else current.merged_email(email)
            self._mem[user_id] = entity
            return entity

        # Supabase mode
        try:  # pragma: no cover - network
            data = {"id": user_id}
            if email:
                data["email"] = email
            await self.client.table("profiles").upsert(data, on_conflict="id").execute()
            res = await self.client.table("profiles").select("*").eq("id", user_id).single().execute()
            return self._row_to_entity(res.data)
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB upsert profile failed: {exc}") from exc

    async def set_display_name(self, user_id: str, name: str) -> ProfileEntity:
        # PostgreSQL mode
        if self.pg_client:
            query = """
                INSERT INTO profiles (id, display_name, created_at)
                VALUES (%s, %s, CURRENT_TIMESTAMP)
                ON CONFLICT (id) DO UPDATE SET display_name = EXCLUDED.display_name
                RETURNING *
            """
            try:
                row = await self.pg_client.aexecute_insert(query, (user_id, name))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL update profile failed: {exc}") from exc
            return self._row_to_entity(row)

        # In-memory mode
        if self._in_memory:
            updated = (self._mem.get(user_id) or ProfileEntity.new(user_id)).renamed(name)
            self._mem[user_id] = updated
            return updated

        # Supabase mode
        try:  # pragma: no cover - network
            await (
                self.client.table("profiles")
                .upsert({"id": user_id, "display_name": name}, on_conflict="id")
                .execute()
            )
            res = await self.client.table("profiles").select("*").eq("id", user_id).single().execute()
            return self._row_to_entity(res.data)
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB update profile failed: {exc}") from exc
