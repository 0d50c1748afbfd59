"""Remote store backed by a local directory (staging dry runs, mirrors)"""

import uuid
from pathlib import Path
from typing import List
import logging

import aiofiles
import aiofiles.os

from .client import RemoteObjectNotFound, RemoteStoreClient, RemoteStoreError

logger = logging.getLogger(__name__)


class LocalDirectoryStore(RemoteStoreClient):
    """Maps each key onto {root}/{key}"""

    def __init__(self, root: Path):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise RemoteStoreError(f"Key escapes store root: {key}")
        return path

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.isfile(self._path(key))

    async def put_object(self, key: str, data: bytes) -> None:
        path = self._path(key)
        await aiofiles.os.makedirs(path.parent, exist_ok=True)

        # Readers never see a half-written object; each writer has its own temp file
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp, 'wb') as f:
                await f.write(data)
            await aiofiles.os.replace(tmp, path)
        finally:
            if await aiofiles.os.path.exists(tmp):
                await aiofiles.os.remove(tmp)

        logger.debug(f"Wrote {key} ({len(data)} bytes)")

    async def get_object(self, key: str) -> bytes:
        try:
            async with aiofiles.open(self._path(key), 'rb') as f:
                return await f.read()
        except FileNotFoundError:
            raise RemoteObjectNotFound(key)

    async def list_common_prefixes(self, prefix: str, delimiter: str = "/") -> List[str]:
        if delimiter != "/":
            raise RemoteStoreError("LocalDirectoryStore only supports '/' as delimiter")

        directory = self._path(prefix) if prefix else self.root
        if not await aiofiles.os.path.isdir(directory):
            return []

        entries = await aiofiles.os.listdir(directory)
        return sorted(
            f"{prefix}{name}/" for name in entries
            if (directory / name).is_dir()
        )

    def describe(self) -> str:
        return f"local:{self.root}"
