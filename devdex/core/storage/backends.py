"""Storage backend implementations.

- InMemoryStorage: process-local dict, for tests and throwaway runs
- LocalFileStorage: files under a root directory, one folder per bucket
- SupabaseStorage: Supabase Storage REST API over httpx
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Optional, Tuple
from urllib.parse import quote

import httpx

from ..exceptions import StorageError
from .base import StorageBackend

logger = logging.getLogger(__name__)


class InMemoryStorage(StorageBackend):
    name = "memory"

    def __init__(self):
        self._blobs: Dict[Tuple[str, str], bytes] = {}

    async def put(self, bucket: str, path: str, data: bytes) -> None:
        key = (bucket, path)
        if key in self._blobs:
            raise StorageError(f"Object already exists: {bucket}/{path}")
        self._blobs[key] = bytes(data)

    async def get(self, bucket: str, path: str) -> bytes:
        try:
            return self._blobs[(bucket, path)]
        except KeyError:
            raise StorageError(f"Object not found: {bucket}/{path}") from None


class LocalFileStorage(StorageBackend):
    """Stores blobs at ``<root_dir>/<bucket>/<path>``."""

    name = "local"

    def __init__(self, root_dir: str):
        self.root = Path(root_dir).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, bucket: str, path: str) -> Path:
        target = (self.root / bucket / path).resolve()
        if self.root not in target.parents:
            raise StorageError(f"Path escapes storage root: {bucket}/{path}")
        return target

    def _write(self, target: Path, data: bytes):
        target.parent.mkdir(parents=True, exist_ok=True)
        # 'xb' refuses to overwrite an existing object
        with open(target, "xb") as f:
            f.write(data)

    async def put(self, bucket: str, path: str, data: bytes) -> None:
        target = self._resolve(bucket, path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except FileExistsError:
            raise StorageError(f"Object already exists: {bucket}/{path}") from None
        except OSError as e:
            raise StorageError(f"Failed to write {bucket}/{path}: {e}") from e

    async def get(self, bucket: str, path: str) -> bytes:
        target = self._resolve(bucket, path)
        try:
            return await asyncio.to_thread(target.read_bytes)
        except FileNotFoundError:
            raise StorageError(f"Object not found: {bucket}/{path}") from None
        except OSError as e:
            raise StorageError(f"Failed to read {bucket}/{path}: {e}") from e


class SupabaseStorage(StorageBackend):
    """Supabase Storage (``/storage/v1/object``) with a service-role key."""

    name = "supabase"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base = base_url.rstrip("/") + "/storage/v1/object"
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}", "apikey": api_key},
        )

    def _url(self, bucket: str, path: str) -> str:
        return f"{self._base}/{quote(bucket)}/{quote(path)}"

    async def put(self, bucket: str, path: str, data: bytes) -> None:
        try:
            response = await self._client.post(
                self._url(bucket, path),
                content=data,
                headers={
                    "Content-Type": "application/octet-stream",
                    "cache-control": "3600",
                    "x-upsert": "false",
                },
            )
        except httpx.HTTPError as e:
            raise StorageError(f"Storage unreachable for {bucket}/{path}: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"Upload of {bucket}/{path} failed ({response.status_code}): {response.text[:200]}"
            )

    async def get(self, bucket: str, path: str) -> bytes:
        try:
            response = await self._client.get(self._url(bucket, path))
        except httpx.HTTPError as e:
            raise StorageError(f"Storage unreachable for {bucket}/{path}: {e}") from e

        if response.status_code >= 400:
            raise StorageError(
                f"Download of {bucket}/{path} failed ({response.status_code})"
            )
        return response.content

    async def close(self) -> None:
        await self._client.aclose()


def create_storage(storage_settings) -> StorageBackend:
    """Build the configured backend from StorageSettings."""
    backend = storage_settings.backend
    if backend == "memory":
        return InMemoryStorage()
    if backend == "local":
        return LocalFileStorage(storage_settings.root_dir)
    if backend == "supabase":
        if not storage_settings.supabase_url or not storage_settings.supabase_key:
            raise ValueError("Supabase storage requires SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY")
        return SupabaseStorage(
            storage_settings.supabase_url,
            storage_settings.supabase_key,
            timeout=storage_settings.request_timeout,
        )
    raise ValueError(f"Unknown storage backend: {backend}")
