from .gear import (
    GearChunker,
    ChunkData,
    GEAR_TABLE,
    DEFAULT_MIN_SIZE,
    DEFAULT_AVG_SIZE,
    DEFAULT_MAX_SIZE,
    calculate_mask
)

__all__ = [
    'GearChunker',
    'ChunkData',
    'GEAR_TABLE',
    'DEFAULT_MIN_SIZE',
    'DEFAULT_AVG_SIZE',
    'DEFAULT_MAX_SIZE',
    'calculate_mask'
]
