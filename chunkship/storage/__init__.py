from .chunk_store import (
    ChunkStore,
    ChunkStoreError,
    ChunkIntegrityError,
    ChunkNotFoundError,
    RECONSTRUCT_BATCH_SIZE
)

__all__ = [
    'ChunkStore',
    'ChunkStoreError',
    'ChunkIntegrityError',
    'ChunkNotFoundError',
    'RECONSTRUCT_BATCH_SIZE'
]
