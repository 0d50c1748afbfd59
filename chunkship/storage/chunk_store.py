"""Content-addressed chunk store on local disk"""

import asyncio
import hashlib
import os
import uuid
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence
import logging

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

RECONSTRUCT_BATCH_SIZE = 50
PROGRESS_EVERY = 100


class ChunkStoreError(Exception):
    """Base error for local chunk storage"""


class ChunkIntegrityError(ChunkStoreError):
    """Stored bytes do not hash to the requested digest"""

    def __init__(self, chunk_hash: str, actual_hash: str):
        super().__init__(f"Chunk hash mismatch for {chunk_hash} (got {actual_hash})")
        self.chunk_hash = chunk_hash
        self.actual_hash = actual_hash


class ChunkNotFoundError(ChunkStoreError):
    """A chunk needed for reconstruction is not in the store"""

    def __init__(self, chunk_hash: str):
        super().__init__(f"Missing chunk: {chunk_hash}")
        self.chunk_hash = chunk_hash


class ChunkStore:
    """
    Chunk cache keyed by SHA-256 hex digest
    Layout: {root}/{hash[0:2]}/{hash}
    Writes are idempotent, so concurrent writers of the same chunk are safe
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    async def initialize(self):
        """Create the cache directory"""
        await aiofiles.os.makedirs(self.root, exist_ok=True)

    def chunk_path(self, chunk_hash: str) -> Path:
        """Get chunk file path from hash"""
        # First two hex chars bound per-directory fanout
        return self.root / chunk_hash[:2] / chunk_hash

    async def exists(self, chunk_hash: str) -> bool:
        """Check if a chunk exists locally"""
        return await aiofiles.os.path.isfile(self.chunk_path(chunk_hash))

    async def put(self, chunk_hash: str, data: bytes) -> bool:
        """
        Store a chunk
        Returns False when the chunk was already present
        """
        path = self.chunk_path(chunk_hash)
        if await aiofiles.os.path.isfile(path):
            return False

        await aiofiles.os.makedirs(path.parent, exist_ok=True)

        # One temp file per writer; racing writers of a hash hold identical bytes
        tmp = path.with_name(f"{chunk_hash}.{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(tmp, 'wb') as f:
                await f.write(data)

            if await aiofiles.os.path.isfile(path):
                return False
            await aiofiles.os.replace(tmp, path)
        finally:
            if await aiofiles.os.path.exists(tmp):
                await aiofiles.os.remove(tmp)

        logger.debug(f"Stored chunk {chunk_hash[:16]}... ({len(data)} bytes)")
        return True

    async def _read(self, chunk_hash: str) -> Optional[bytes]:
        try:
            async with aiofiles.open(self.chunk_path(chunk_hash), 'rb') as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def get(self, chunk_hash: str) -> Optional[bytes]:
        """
        Retrieve a chunk, verifying its digest
        Returns None if the chunk is not stored
        """
        data = await self._read(chunk_hash)
        if data is None:
            return None

        actual = hashlib.sha256(data).hexdigest()
        if actual != chunk_hash:
            raise ChunkIntegrityError(chunk_hash, actual)
        return data

    def list_hashes(self) -> List[str]:
        """List every stored chunk hash"""
        if not self.root.exists():
            return []

        hashes = []
        for shard in sorted(self.root.iterdir()):
            if not shard.is_dir() or len(shard.name) != 2:
                continue
            for path in sorted(shard.iterdir()):
                if path.is_file() and not path.name.endswith('.tmp'):
                    hashes.append(path.name)
        return hashes

    async def reconstruct(self, chunks: Sequence, destination,
                          on_progress: Optional[Callable[[Dict], None]] = None) -> int:
        """
        Reassemble a file from chunk references (anything with hash/size/offset)
        Reads run in parallel batches, writes stay sequential in offset order.
        Chunks were verified when stored, so they are not re-hashed here.
        Returns the number of bytes written.
        """
        ordered = sorted(chunks, key=lambda c: c.offset or 0)
        total_size = sum(c.size for c in ordered)

        if isinstance(destination, (str, os.PathLike)):
            async with aiofiles.open(destination, 'wb') as f:
                return await self._write_batches(ordered, total_size, f.write, None, on_progress)

        drain = getattr(destination, 'drain', None)
        return await self._write_batches(ordered, total_size, destination.write, drain, on_progress)

    async def _write_batches(self, ordered: List, total_size: int, write, drain,
                             on_progress) -> int:
        written = 0
        index = 0

        while index < len(ordered):
            batch = ordered[index:index + RECONSTRUCT_BATCH_SIZE]
            payloads = await asyncio.gather(*(self._read(c.hash) for c in batch))

            for chunk, data in zip(batch, payloads):
                if data is None:
                    raise ChunkNotFoundError(chunk.hash)

                result = write(data)
                if asyncio.iscoroutine(result):
                    await result
                if drain is not None:
                    # Wait while the sink's buffer is above its high-water mark
                    await drain()
                written += len(data)

            index += len(batch)

            if on_progress and (index % PROGRESS_EVERY == 0 or index == len(ordered)):
                on_progress({
                    'chunks_processed': index,
                    'total_chunks': len(ordered),
                    'bytes_written': written,
                    'total_bytes': total_size,
                    'progress': (written / total_size) * 100 if total_size else 100.0
                })

        return written

    @staticmethod
    def compare_chunks(local_hashes: Iterable[str], remote_chunks: Sequence) -> Dict:
        """Split remote chunk references into those missing / present locally"""
        local = set(local_hashes)
        missing = [c for c in remote_chunks if c.hash not in local]
        existing = [c for c in remote_chunks if c.hash in local]

        return {
            'missing_chunks': missing,
            'existing_chunks': existing,
            'total_chunks': len(remote_chunks),
            'missing_count': len(missing),
            'existing_count': len(existing)
        }

    async def cleanup(self, keep_hashes: Iterable[str]) -> int:
        """
        Cache eviction hook
        Nothing is evicted yet; returns the number of chunks removed (0)
        """
        return 0
