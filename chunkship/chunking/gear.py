"""
chunking/gear.py - Content-Defined Chunking with a Gear rolling hash
Boundaries depend on local content, so an edit only disturbs nearby chunks
"""

import hashlib
import math
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Iterator, List, Optional, Tuple
import logging

import aiofiles

logger = logging.getLogger(__name__)

MiB = 1024 * 1024

DEFAULT_MIN_SIZE = 5 * MiB
DEFAULT_AVG_SIZE = 10 * MiB
DEFAULT_MAX_SIZE = 20 * MiB

READ_BUFFER_SIZE = 64 * 1024  # 64KB

HASH_BITS = 64
HASH_MASK = (1 << HASH_BITS) - 1

GEAR_SEED = b"chunkship-gear-v1"


def _build_gear_table() -> Tuple[int, ...]:
    """256 deterministic pseudo-random 64-bit values"""
    return tuple(
        int.from_bytes(hashlib.sha256(GEAR_SEED + bytes([i])).digest()[:8], 'big')
        for i in range(256)
    )


GEAR_TABLE = _build_gear_table()


def calculate_mask(avg_size: int) -> int:
    """Mask giving an expected boundary spacing of roughly avg_size"""
    bits = int(math.floor(math.log2(avg_size)))
    return (1 << bits) - 1


@dataclass(frozen=True)
class ChunkData:
    """A chunk emitted by the chunker, carrying its bytes"""
    hash: str
    size: int
    offset: int
    data: bytes


class GearChunker:
    """
    FastCDC-style chunker
    hash = (hash << 1) + gear[byte], cut when the masked hash is zero
    """

    def __init__(self, min_size: int = DEFAULT_MIN_SIZE,
                 avg_size: int = DEFAULT_AVG_SIZE,
                 max_size: int = DEFAULT_MAX_SIZE):
        if min_size <= 0 or avg_size <= 0 or max_size <= 0:
            raise ValueError("Chunk sizes must be positive")
        if not min_size <= avg_size <= max_size:
            raise ValueError(
                f"Chunk sizes must satisfy min <= avg <= max "
                f"(got {min_size}, {avg_size}, {max_size})"
            )

        self.min_size = min_size
        self.avg_size = avg_size
        self.max_size = max_size
        self.mask = calculate_mask(avg_size)
        self.gear = GEAR_TABLE

        # Only the last 64 bytes reach the low bits of a 64-bit shift hash,
        # so hashing can start this many bytes into a chunk.
        self._skip = max(0, min_size - HASH_BITS)

    def _scan(self, data, start: int, length: int, h: int) -> Tuple[Optional[int], int, int]:
        """
        Continue a chunk that is already `length` bytes long through data[start:]
        Returns (index just past the boundary or None, new length, new hash)
        """
        end = len(data)
        i = start

        if length < self._skip:
            step = min(self._skip - length, end - i)
            i += step
            length += step

        gear = self.gear
        mask = self.mask
        min_size = self.min_size
        max_size = self.max_size

        while i < end:
            h = ((h << 1) + gear[data[i]]) & HASH_MASK
            i += 1
            length += 1
            if length >= max_size:
                return i, length, h
            if length >= min_size and not h & mask:
                return i, length, h

        return None, length, h

    @staticmethod
    def _make_chunk(data: bytes, offset: int) -> ChunkData:
        return ChunkData(
            hash=hashlib.sha256(data).hexdigest(),
            size=len(data),
            offset=offset,
            data=data
        )

    def _feed(self, state: dict, block: bytes) -> List[ChunkData]:
        """Push one block through the scanner, collecting finished chunks"""
        chunks = []
        pos = 0

        while pos < len(block):
            cut, state['length'], state['hash'] = self._scan(
                block, pos, state['length'], state['hash']
            )
            if cut is None:
                state['pending'] += block[pos:]
                break

            state['pending'] += block[pos:cut]
            data = bytes(state['pending'])
            chunks.append(self._make_chunk(data, state['offset']))

            state['offset'] += len(data)
            state['pending'] = bytearray()
            state['length'] = 0
            state['hash'] = 0
            pos = cut

        return chunks

    def _flush(self, state: dict) -> Optional[ChunkData]:
        """Emit whatever is left at end of stream"""
        if not state['pending']:
            return None
        return self._make_chunk(bytes(state['pending']), state['offset'])

    @staticmethod
    def _new_state() -> dict:
        return {'pending': bytearray(), 'length': 0, 'hash': 0, 'offset': 0}

    def iter_chunks(self, stream: BinaryIO,
                    buffer_size: int = READ_BUFFER_SIZE) -> Iterator[ChunkData]:
        """Lazily chunk a binary stream"""
        state = self._new_state()

        while True:
            block = stream.read(buffer_size)
            if not block:
                break
            yield from self._feed(state, block)

        last = self._flush(state)
        if last is not None:
            yield last

    def chunk_bytes(self, data: bytes) -> List[ChunkData]:
        """Chunk an in-memory buffer"""
        state = self._new_state()
        chunks = self._feed(state, data)
        last = self._flush(state)
        if last is not None:
            chunks.append(last)
        return chunks

    async def chunk_file(self, path: Path,
                         buffer_size: int = READ_BUFFER_SIZE) -> AsyncIterator[ChunkData]:
        """Lazily chunk a file on disk"""
        state = self._new_state()

        async with aiofiles.open(path, 'rb') as f:
            while True:
                block = await f.read(buffer_size)
                if not block:
                    break
                for chunk in self._feed(state, block):
                    yield chunk

        last = self._flush(state)
        if last is not None:
            yield last

        logger.debug(f"Chunked {path} ({state['offset'] + len(state['pending'])} bytes)")
