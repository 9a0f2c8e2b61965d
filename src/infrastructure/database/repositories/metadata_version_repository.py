from __future__ import annotations

import itertools
import json
import uuid
from dataclasses import replace
from datetime import UTC, datetime

from supabase import AsyncClient

from src.domain.entities.metadata_bundle import MetadataBundle
from src.domain.entities.metadata_version import ChangeType, MetadataVersionEntity
from src.domain.errors import StorageFailure
from src.infrastructure.database.postgres_client import PostgresClient, as_json
from src.infrastructure.database.supabase_client import supabase_disabled


TABLE = "metadata_versions"


class MetadataVersionRepository:
    """Append-only, per-image log of metadata bundles.

    The current version is whichever has the greatest ``created_at``; ties are
    broken by the insertion sequence. Nothing here updates or deletes a single
    version; ``delete_by_image`` exists only for the image-delete cascade.
    """

    def __init__(self, client: AsyncClient | None, pg_client: PostgresClient | None = None) -> None:
        self.client = client
        self.disabled = supabase_disabled()
        self.pg_client = pg_client if pg_client is not None and pg_client.enabled else None
        # in-memory fallback
        self._mem: dict[str, MetadataVersionEntity] = {}
        self._seq = itertools.count(1)

    @property
    def _in_memory(self) -> bool:
        return self.pg_client is None and (self.disabled or self.client is None)

    def _row_to_entity(self, row: dict) -> MetadataVersionEntity:
        """Convert database row to MetadataVersionEntity."""
        created_at = row["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)

        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)

        return MetadataVersionEntity(
            id=str(row["id"]),
            image_id=str(row["image_id"]),
            created_at=created_at,
            change_type=ChangeType(row["change_type"]),
            metadata=MetadataBundle.from_dict(metadata),
            sequence=int(row["seq"]),
            author=row.get("author"),
            description=row.get("description"),
        )

    @staticmethod
    def _detached(entity: MetadataVersionEntity) -> MetadataVersionEntity:
        return replace(entity, metadata=entity.metadata.copy())

    def _mem_versions(self, image_id: str) -> list[MetadataVersionEntity]:
        versions = [v for v in self._mem.values() if v.image_id == image_id]
        versions.sort(key=lambda v: v.order_key, reverse=True)
        return versions

    async def append(
        self,
        image_id: str,
        bundle: MetadataBundle,
        change_type: ChangeType,
        author: str | None = None,
        description: str | None = None,
    ) -> MetadataVersionEntity:
        now = datetime.now(UTC)

        # PostgreSQL mode
        if self.pg_client:
            query = f"""
                INSERT INTO {TABLE} (image_id, created_at, author, change_type, metadata, description)
                VALUES (
                    %s,
                    GREATEST(%s, COALESCE((SELECT max(created_at) FROM {TABLE} WHERE image_id = %s), %s)),
                    %s, %s, %s, %s
                )
                RETURNING *
            """
            try:
                row = await self.pg_client.aexecute_insert(
                    query,
                    (
                        image_id, now, image_id, now,
                        author, change_type.value, as_json(bundle.to_dict()), description,
                    ),
                )
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL insert metadata version failed: {exc}") from exc
            return self._row_to_entity(row)

        # In-memory mode
        if self._in_memory:
            current = self._mem_versions(image_id)
            created_at = max(now, current[0].created_at) if current else now
            entity = MetadataVersionEntity(
                id=str(uuid.uuid4()),
                image_id=image_id,
                created_at=created_at,
                change_type=change_type,
                metadata=bundle.copy(),
                sequence=next(self._seq),
                author=author,
                description=description,
            )
            self._mem[entity.id] = entity
            return self._detached(entity)

        # Supabase mode
        current = await self.latest(image_id)
        created_at = max(now, current.created_at) if current else now
        data = {
            "image_id": image_id,
            "created_at": created_at.isoformat(),
            "change_type": change_type.value,
            "metadata": bundle.to_dict(),
        }
        if author:
            data["author"] = author
        if description:
            data["description"] = description
        try:  # pragma: no cover - network
            res = await self.client.table(TABLE).insert(data).execute()
            return self._row_to_entity(res.data[0])
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB insert metadata version failed: {exc}") from exc

    async def append_initial(
        self, image_id: str, bundle: MetadataBundle, description: str | None = None
    ) -> tuple[MetadataVersionEntity, bool]:
        """Append the image's ``initial`` version unless one exists.

        Returns the initial version and whether this call created it. At most
        one initial version per image, also under concurrent first reads.
        """
        # PostgreSQL mode
        if self.pg_client:
            now = datetime.now(UTC)
            insert = f"""
                INSERT INTO {TABLE} (image_id, created_at, change_type, metadata, description)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (image_id) WHERE change_type = 'initial' DO NOTHING
                RETURNING *
            """
            try:
                row = await self.pg_client.aexecute_one(
                    insert,
                    (image_id, now, ChangeType.INITIAL.value, as_json(bundle.to_dict()), description),
                )
                if row:
                    return self._row_to_entity(row), True
                row = await self.pg_client.aexecute_one(
                    f"SELECT * FROM {TABLE} WHERE image_id = %s AND change_type = %s",
                    (image_id, ChangeType.INITIAL.value),
                )
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL insert initial metadata version failed: {exc}") from exc
            if row is None:
                raise StorageFailure(f"Initial metadata version of image {image_id} vanished")
            return self._row_to_entity(row), False

        # In-memory mode
        if self._in_memory:
            existing = self._mem_initial(image_id)
            if existing is not None:
                return self._detached(existing), False
            return await self.append(image_id, bundle, ChangeType.INITIAL, description=description), True

        # Supabase mode: the unique index rejects a racing second insert
        existing = await self._supabase_initial(image_id)  # pragma: no cover - network
        if existing is not None:  # pragma: no cover
            return existing, False
        try:  # pragma: no cover - network
            return await self.append(image_id, bundle, ChangeType.INITIAL, description=description), True
        except StorageFailure:  # pragma: no cover - network
            existing = await self._supabase_initial(image_id)
            if existing is None:
                raise
            return existing, False

    def _mem_initial(self, image_id: str) -> MetadataVersionEntity | None:
        for version in self._mem_versions(image_id):
            if version.change_type == ChangeType.INITIAL:
                return version
        return None

    async def _supabase_initial(self, image_id: str) -> MetadataVersionEntity | None:  # pragma: no cover - network
        try:
            res = await (
                self.client.table(TABLE)
                .select("*")
                .eq("image_id", image_id)
                .eq("change_type", ChangeType.INITIAL.value)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            raise StorageFailure(f"DB get initial metadata version failed: {exc}") from exc
        rows = res.data or []
        return self._row_to_entity(rows[0]) if rows else None

    async def latest(self, image_id: str) -> MetadataVersionEntity | None:
        # PostgreSQL mode
        if self.pg_client:
            query = f"""
                SELECT * FROM {TABLE}
                WHERE image_id = %s
                ORDER BY created_at DESC, seq DESC
                LIMIT 1
            """
            try:
                row = await self.pg_client.aexecute_one(query, (image_id,))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL latest metadata version failed: {exc}") from exc
            return self._row_to_entity(row) if row else None

        # In-memory mode
        if self._in_memory:
            versions = self._mem_versions(image_id)
            return self._detached(versions[0]) if versions else None

        # Supabase mode
        try:  # pragma: no cover - network
            res = await (
                self.client.table(TABLE)
                .select("*")
                .eq("image_id", image_id)
                .order("created_at", desc=True)
                .order("seq", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB latest metadata version failed: {exc}") from exc
        rows = res.data or []  # pragma: no cover
        return self._row_to_entity(rows[0]) if rows else None  # pragma: no cover

    async def current_for_images(self, image_ids: list[str]) -> dict[str, MetadataVersionEntity]:
        """Newest version of each image that has a history, keyed by image id."""
        if not image_ids:
            return {}

        # PostgreSQL mode
        if self.pg_client:
            query = f"""
                SELECT DISTINCT ON (image_id) * FROM {TABLE}
                WHERE image_id = ANY(%s)
                ORDER BY image_id, created_at DESC, seq DESC
            """
            try:
                rows = await self.pg_client.aexecute_many(query, (list(image_ids),))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL current metadata versions failed: {exc}") from exc
            return {row["image_id"]: self._row_to_entity(row) for row in rows}

        # In-memory mode
        if self._in_memory:
            current = {}
            for image_id in image_ids:
                versions = self._mem_versions(image_id)
                if versions:
                    current[image_id] = self._detached(versions[0])
            return current

        # Supabase mode
        try:  # pragma: no cover - network
            res = await (
                self.client.table(TABLE)
                .select("*")
                .in_("image_id", list(image_ids))
                .order("created_at", desc=True)
                .order("seq", desc=True)
                .execute()
            )
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB current metadata versions failed: {exc}") from exc
        current = {}  # pragma: no cover
        for row in res.data or []:  # pragma: no cover
            current.setdefault(row["image_id"], self._row_to_entity(row))
        return current  # pragma: no cover

    async def get(self, image_id: str, version_id: str) -> MetadataVersionEntity | None:
        # PostgreSQL mode
        if self.pg_client:
            query = f"SELECT * FROM {TABLE} WHERE id = %s AND image_id = %s"
            try:
                row = await self.pg_client.aexecute_one(query, (version_id, image_id))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL get metadata version failed: {exc}") from exc
            return self._row_to_entity(row) if row else None

        # In-memory mode
        if self._in_memory:
            entity = self._mem.get(version_id)
            if entity is None or entity.image_id != image_id:
                return None
            return self._detached(entity)

        # Supabase mode
        try:  # pragma: no cover - network
            res = await (
                self.client.table(TABLE)
                .select("*")
                .eq("id", version_id)
                .eq("image_id", image_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB get metadata version failed: {exc}") from exc
        rows = res.data or []  # pragma: no cover
        return self._row_to_entity(rows[0]) if rows else None  # pragma: no cover

    async def list_by_image(self, image_id: str) -> list[MetadataVersionEntity]:
        """All versions of an image, newest first."""
        # PostgreSQL mode
        if self.pg_client:
            query = f"""
                SELECT * FROM {TABLE}
                WHERE image_id = %s
                ORDER BY created_at DESC, seq DESC
            """
            try:
                rows = await self.pg_client.aexecute_many(query, (image_id,))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL list metadata versions failed: {exc}") from exc
            return [self._row_to_entity(row) for row in rows]

        # In-memory mode
        if self._in_memory:
            return [self._detached(v) for v in self._mem_versions(image_id)]

        # Supabase mode
        try:  # pragma: no cover - network
            res = await (
                self.client.table(TABLE)
                .select("*")
                .eq("image_id", image_id)
                .order("created_at", desc=True)
                .order("seq", desc=True)
                .execute()
            )
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB list metadata versions failed: {exc}") from exc
        return [self._row_to_entity(row) for row in res.data or []]  # pragma: no cover

    async def delete_by_image(self, image_id: str) -> int:
        # PostgreSQL mode
        if self.pg_client:
            query = f"DELETE FROM {TABLE} WHERE image_id = %s"
            try:
                return await self.pg_client.aexecute_update(query, (image_id,))
            except Exception as exc:
                raise StorageFailure(f"PostgreSQL delete metadata versions failed: {exc}") from exc

        # In-memory mode
        if self._in_memory:
            ids = [k for k, v in self._mem.items() if v.image_id == image_id]
            for k in ids:
                self._mem.pop(k, None)
            return len(ids)

        # Supabase mode
        try:  # pragma: no cover - network
            res = await self.client.table(TABLE).delete().eq("image_id", image_id).execute()
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"DB delete metadata versions failed: {exc}") from exc
        return len(res.data or [])  # pragma: no cover
