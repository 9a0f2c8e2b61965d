from __future__ import annotations

import os
import uuid
from collections import Counter
from dataclasses import replace
from datetime import UTC, datetime

from supabase import AsyncClient

from src.domain.entities.image import ImageEntity, Visibility
from src.domain.errors import StorageFailure
from src.domain.services.image_query_builder import ImageQuery
from src.infrastructure.database.filters import (
    apply_postgrest,
    compile_sql,
    matches,
    sql_order,
)
from src.infrastructure.database.postgres_client import PostgresClient
from src.infrastructure.database.supabase_client import supabase_disabled

TABLE = "images"
# upper bound for open-ended PostgREST ranges
MAX_ROWS = 1_000_000


def _sort_value(value):
    # None sorts first ascending, like NULLS FIRST
    return (value is not None, value)


class ImageRepository:
    def __init__(self, client: AsyncClient | None, pg_client: PostgresClient | None = None) -> None:
        self.client = client
        self.disabled = supabase_disabled()
        self.pg_client = pg_client if pg_client is not None and pg_client.enabled else None
        # in-memory fallback
        self._mem: dict[str, ImageEntity] = {}

    @property
    def _in_memory(self) -> bool:
        return self.pg_client is None and (self.disabled or self.client is None)

    def _row_to_entity(self, row: dict) -> ImageEntity:
        """Convert database row to ImageEntity."""
        # PostgreSQL returns datetime objects, Supabase returns ISO strings
        created_at = row["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        updated_at = row.get("updated_at") or created_at
        if isinstance(updated_at, str):
            updated_at = datetime.fromisoformat(updated_at)

        return ImageEntity(
            id=str(row["id"]),
            owner_id=row["owner_id"],
            visibility=Visibility(row.get("visibility", Visibility.PRIVATE.value)),
            title=row["title"],
            format=row["format"],
            size=row.get("size") or 0,
            width=row.get("width") or 0,
            height=row.get("height") or 0,
            created_at=created_at,
            updated_at=updated_at,
            description=row.get("description"),
            tags=tuple(row.get("tags") or ()),
            path=row.get("storage_path"),
            original_filename=row.get("original_filename"),
        )

    def _mem_find(self, query: ImageQuery) -> list[ImageEntity]:
        found = [img for img in self._mem.values() if matches(img.to_document(), query.filter)]
        field, direction = query.sort
        found.sort(key=lambda img: img.id)
        found.sort(key=lambda img: _sort_value(img.to_document().get(field)), reverse=direction < 0)
        return found

    async def create(
        self,
        owner_id: str,
        title: str,
        format: str,
        size: int,
        width: int,
        height: int,
        visibility: Visibility = Visibility.PRIVATE,
        description: str | None = None,
        tags: tuple[str, ...] = (),
        path: str | None = None,
        original_filename: str | None = None,
    ) -> ImageEntity:
        now = datetime.now(UTC)

        # PostgreSQL mode
        if self.pg_client:
            query = """
                INSERT INTO images (
                    owner_id, visibility, title, description, tags, format, size,
                    width, height, storage_path, original_filename, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
            """
            try:
                row = await self.pg_client.aexecute_insert(
                    query,
                    (
                        owner_id, visibility.value, title, description, list(tags), format, size,
                        width, height, path, original_filename, now, now,
                    ),
                )
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL insert image failed: {exc}") from exc
            return self._row_to_entity(row)

        # In-memory mode
        if self._in_memory:
            entity = ImageEntity(
                id=f"img_{uuid.uuid4().hex[:12]}",
                owner_id=owner_id,
                visibility=visibility,
                title=title,
                format=format,
                size=size,
                width=width,
                height=height,
                created_at=now,
                updated_at=now,
                description=description,
                tags=tuple(tags),
                path=path,
                original_filename=original_filename,
            )
            self._mem[entity.id] = entity
            return entity

        # Supabase mode
        data = {
            "owner_id": owner_id,
            "visibility": visibility.value,
            "title": title,
            "description": description,
            "tags": list(tags),
            "format": format,
            "size": size,
            "width": width,
            "height": height,
            "storage_path": path,
            "original_filename": original_filename,
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        try:  # pragma: no cover - network
            res = await self.client.table(TABLE).insert(data).execute()
            return self._row_to_entity(res.data[0])
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB insert image failed: {exc}") from exc

    async def get(self, image_id: str) -> ImageEntity | None:
        # PostgreSQL mode
        if self.pg_client:
            try:
                row = await self.pg_client.aexecute_one("SELECT * FROM images WHERE id = %s", (image_id,))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL get image failed: {exc}") from exc
            return self._row_to_entity(row) if row else None

        # In-memory mode
        if self._in_memory:
            return self._mem.get(image_id)

        # Supabase mode
        try:  # pragma: no cover - network
            res = await self.client.table(TABLE).select("*").eq("id", image_id).limit(1).execute()
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB get image failed: {exc}") from exc
        rows = res.data or []  # pragma: no cover
        return self._row_to_entity(rows[0]) if rows else None  # pragma: no cover

    async def find(self, query: ImageQuery, offset: int = 0, limit: int | None = 20) -> list[ImageEntity]:
        """Matching images in sort order; ``limit=None`` returns all of them."""
        # PostgreSQL mode
        if self.pg_client:
            clause, params = compile_sql(query.filter)
            sql = f"SELECT * FROM images WHERE {clause} ORDER BY {sql_order(query.sort)} LIMIT %s OFFSET %s"
            try:
                rows = await self.pg_client.aexecute_many(sql, (*params, limit, offset))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL find images failed: {exc}") from exc
            return [self._row_to_entity(row) for row in rows]

        # In-memory mode
        if self._in_memory:
            end = None if limit is None else offset + limit
            return self._mem_find(query)[offset:end]

        # Supabase mode
        field, direction = query.sort
        request = apply_postgrest(self.client.table(TABLE).select("*"), query.filter)
        request = request.order(field, desc=direction < 0).order("id")
        if limit is not None:
            request = request.range(offset, offset + limit - 1)
        elif offset:
            request = request.range(offset, MAX_ROWS)
        try:  # pragma: no cover - network
            res = await request.execute()
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB find images failed: {exc}") from exc
        return [self._row_to_entity(row) for row in res.data or []]  # pragma: no cover

    async def count(self, query: ImageQuery) -> int:
        # PostgreSQL mode
        if self.pg_client:
            clause, params = compile_sql(query.filter)
            try:
                row = await self.pg_client.aexecute_one(
                    f"SELECT count(*) AS total FROM images WHERE {clause}", params
                )
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL count images failed: {exc}") from exc
            return int(row["total"]) if row else 0

        # In-memory mode
        if self._in_memory:
            return len(self._mem_find(query))

        # Supabase mode
        request = apply_postgrest(self.client.table(TABLE).select("id", count="exact"), query.filter)
        try:  # pragma: no cover - network
            res = await request.limit(1).execute()
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB count images failed: {exc}") from exc
        return res.count or 0  # pragma: no cover

    async def tag_counts(
        self, query: ImageQuery, text: str | None = None, limit: int = 50
    ) -> list[tuple[str, int]]:
        """Distinct tags over the images matching ``query``, most used first."""
        needle = (text or "").strip().lower()

        # PostgreSQL mode
        if self.pg_client:
            clause, params = compile_sql(query.filter)
            tag_clause = ""
            if needle:
                tag_clause = " AND tag ILIKE %s"
                params = (*params, f"%{needle}%")
            sql = f"""
                SELECT tag, count(*) AS count
                FROM images, unnest(images.tags) AS tag
                WHERE {clause}{tag_clause}
                GROUP BY tag
                ORDER BY count DESC, tag ASC
                LIMIT %s
            """
            try:
                rows = await self.pg_client.aexecute_many(sql, (*params, limit))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL tag aggregation failed: {exc}") from exc
            return [(row["tag"], int(row["count"])) for row in rows]

        # In-memory mode
        if self._in_memory:
            tag_lists = [img.tags for img in self._mem_find(query)]
        else:
            # Supabase mode: PostgREST cannot unnest, aggregate client-side
            request = apply_postgrest(self.client.table(TABLE).select("tags"), query.filter)
            try:  # pragma: no cover - network
                res = await request.execute()
            except Exception as exc:  # pragma: no cover - network
                raise StorageFailure(f"DB tag aggregation failed: {exc}") from exc
            tag_lists = [row.get("tags") or () for row in res.data or []]  # pragma: no cover

        counter = Counter(tag for tags in tag_lists for tag in tags if needle in tag.lower())
        ranked = sorted(counter.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    async def set_visibility(self, image_ids: list[str], owner_id: str, visibility: Visibility) -> int:
        """Change visibility of the owner's images among ``image_ids``; returns how many matched."""
        now = datetime.now(UTC)

        # PostgreSQL mode
        if self.pg_client:
            query = """
                UPDATE images SET visibility = %s, updated_at = %s
                WHERE id = ANY(%s) AND owner_id = %s
            """
            try:
                return await self.pg_client.aexecute_update(
                    query, (visibility.value, now, list(image_ids), owner_id)
                )
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL update visibility failed: {exc}") from exc

        # In-memory mode
        if self._in_memory:
            updated = 0
            for image_id in image_ids:
                current = self._mem.get(image_id)
                if current is None or current.owner_id != owner_id:
                    continue
                self._mem[image_id] = replace(current, visibility=visibility, updated_at=now)
                updated += 1
            return updated

        # Supabase mode
        try:  # pragma: no cover - network
            res = await (
                self.client.table(TABLE)
                .update({"visibility": visibility.value, "updated_at": now.isoformat()})
                .in_("id", list(image_ids))
                .eq("owner_id", owner_id)
                .execute()
            )
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB update visibility failed: {exc}") from exc
        return len(res.data or [])  # pragma: no cover

    def get_public_url(self, storage_path: str | None) -> str:
        if not storage_path:
            return ""
        # Local mode (both PostgreSQL and in-memory use local storage)
        if self.pg_client or self._in_memory:
            return f"/local-storage/{storage_path}"

        # Supabase mode
        bucket = os.getenv("SUPABASE_STORAGE_BUCKET", "images")  # pragma: no cover - network
        return self.client.storage.from_(bucket).get_public_url(storage_path)  # pragma: no cover

    async def delete(self, image_id: str) -> bool:
        # PostgreSQL mode
        if self.pg_client:
            try:
                affected = await self.pg_client.aexecute_update("DELETE FROM images WHERE id = %s", (image_id,))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL delete image failed: {exc}") from exc
            return affected > 0

        # In-memory mode
        if self._in_memory:
            return self._mem.pop(image_id, None) is not None

        # Supabase mode
        try:  # pragma: no cover - network
            res = await self.client.table(TABLE).delete().eq("id", image_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB delete image failed: {exc}") from exc
        return bool(res.data)  # pragma: no cover
