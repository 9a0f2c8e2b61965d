from __future__ import annotations

import asyncio
import os
import uuid
from dataclasses import dataclass
from pathlib import Path

from supabase import AsyncClient

from src.domain.errors import StorageFailure
from src.infrastructure.database.supabase_client import supabase_disabled

CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "tiff": "image/tiff",
}


@dataclass
class StorageResult:
    path: str
    content_type: str
    size: int


class SupabaseStorage:
    """Storage adapter for Supabase Storage with a local directory fallback."""

    def __init__(self, client: AsyncClient | None) -> None:
        self.client = client
        self.bucket = os.getenv("SUPABASE_STORAGE_BUCKET", "images")
        self.disabled = supabase_disabled()
        self.local_dir = Path(os.getenv("SUPABASE_STORAGE_LOCAL_DIR", ".local_storage"))
        if self._local:
            self.local_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _local(self) -> bool:
        return self.disabled or self.client is None

    def _write_local(self, storage_path: str, data: bytes) -> None:
        full_path = self.local_dir / storage_path
        full_path.parent.mkdir(parents=True, exist_ok=True)
        full_path.write_bytes(data)

    def _remove_local(self, storage_path: str) -> None:
        full_path = self.local_dir / storage_path
        if full_path.exists():
            full_path.unlink()

    async def upload_bytes(
        self, owner_id: str, data: bytes, ext: str, content_type: str | None = None
    ) -> StorageResult:
        ext = ext.lower().lstrip(".")
        content_type = content_type or CONTENT_TYPES.get(ext, "application/octet-stream")
        storage_path = f"{owner_id}/{uuid.uuid4()}.{ext}"
        if self._local:
            try:
                await asyncio.to_thread(self._write_local, storage_path, data)
            except OSError as exc:
                raise StorageFailure(f"Local storage write failed: {exc}") from exc
            return StorageResult(path=storage_path, content_type=content_type, size=len(data))
        # real upload
        try:  # pragma: no cover - network
            await self.client.storage.from_(self.bucket).upload(
                path=storage_path,
                file=data,
                file_options={"content-type": content_type, "upsert": "false"},
            )
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"Storage upload failed: {exc}") from exc
        return StorageResult(path=storage_path, content_type=content_type, size=len(data))  # pragma: no cover

    async def delete(self, path: str) -> None:
        if self._local:
            try:
                await asyncio.to_thread(self._remove_local, path)
            except OSError as exc:
                raise StorageFailure(f"Local storage delete failed: {exc}") from exc
            return
        try:  # pragma: no cover - network
            await self.client.storage.from_(self.bucket).remove([path])
        except Exception as exc:  # pragma: no cover - network
            raise StorageFailure(f"Storage delete failed: {exc}") from exc
