from .benchmark import ChunkingBenchmarker, BenchmarkResult, SIZE_PROFILES

__all__ = [
    'ChunkingBenchmarker',
    'BenchmarkResult',
    'SIZE_PROFILES'
]
