import asyncio
import json
import random
import time
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List
import logging

import psutil

from ..chunking.gear import GearChunker
from ..config import ChunkingConfig

logger = logging.getLogger(__name__)

KiB = 1024
MiB = 1024 * KiB

# name -> (min, avg, max)
SIZE_PROFILES: Dict[str, tuple] = {
    'small': (16 * KiB, 64 * KiB, 256 * KiB),
    'medium': (256 * KiB, 1 * MiB, 4 * MiB),
    'default': (5 * MiB, 10 * MiB, 20 * MiB),
}


@dataclass
class BenchmarkResult:
    """Single chunking benchmark result"""
    profile: str
    min_size: int
    avg_size: int
    max_size: int
    payload_bytes: int
    iterations: int
    avg_seconds: float
    throughput_mb_s: float
    chunk_count: int
    mean_chunk_size: float
    smallest_chunk: int
    largest_chunk: int
    cpu_usage_avg: float
    memory_mb_max: float
    timestamp: float


def make_payload(size: int, seed: int = 1234) -> bytes:
    """Deterministic pseudo-random bytes"""
    return random.Random(seed).randbytes(size)


class ChunkingBenchmarker:
    """
    Chunker throughput and chunk-size distribution
    Resource usage is sampled with psutil around each run
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.results: List[BenchmarkResult] = []

        self.process = psutil.Process()

    async def test_profile(self, name: str, config: ChunkingConfig,
                           payload: bytes, iterations: int = 3) -> BenchmarkResult:
        """Benchmark one size profile"""
        logger.info(f"Benchmarking profile {name} ({config.min_size}/{config.avg_size}/{config.max_size})")

        chunker = GearChunker(config.min_size, config.avg_size, config.max_size)
        durations = []
        cpu_usages = []
        memory_usages = []
        chunks = []

        self.process.cpu_percent()
        for _ in range(iterations):
            start = time.perf_counter()
            chunks = chunker.chunk_bytes(payload)
            durations.append(time.perf_counter() - start)

            cpu_usages.append(self.process.cpu_percent())
            memory_usages.append(self.process.memory_info().rss / MiB)

            # Let other tasks run between iterations
            await asyncio.sleep(0)

        sizes = [c.size for c in chunks]
        avg_seconds = sum(durations) / len(durations)

        result = BenchmarkResult(
            profile=name,
            min_size=config.min_size,
            avg_size=config.avg_size,
            max_size=config.max_size,
            payload_bytes=len(payload),
            iterations=iterations,
            avg_seconds=avg_seconds,
            throughput_mb_s=(len(payload) / MiB) / avg_seconds if avg_seconds else 0.0,
            chunk_count=len(sizes),
            mean_chunk_size=sum(sizes) / len(sizes) if sizes else 0.0,
            smallest_chunk=min(sizes) if sizes else 0,
            largest_chunk=max(sizes) if sizes else 0,
            cpu_usage_avg=sum(cpu_usages) / len(cpu_usages),
            memory_mb_max=max(memory_usages),
            timestamp=time.time()
        )

        self.results.append(result)
        return result

    async def test_all_profiles(self, payload_size: int = 64 * MiB, iterations: int = 3):
        """Run every built-in size profile against one payload"""
        payload = make_payload(payload_size)

        for count, (name, (lo, avg, hi)) in enumerate(SIZE_PROFILES.items(), start=1):
            logger.info(f"Progress: {count}/{len(SIZE_PROFILES)}")
            await self.test_profile(name, ChunkingConfig(lo, avg, hi), payload, iterations)

        logger.info(f"Completed {len(self.results)} benchmarks")

    def save_results(self) -> Path:
        """Save results as JSON"""
        timestamp = int(time.time())
        output_file = self.output_dir / f"chunking_benchmark_{timestamp}.json"

        with open(output_file, 'w') as f:
            json.dump([asdict(r) for r in self.results], f, indent=2)

        logger.info(f"Saved results to {output_file}")
        return output_file

    def generate_report(self):
        """Plot throughput and chunk sizes (needs the benchmark extra)"""
        if not self.results:
            logger.warning("No results to generate report")
            return

        try:
            import matplotlib.pyplot as plt
            import pandas as pd
        except ImportError:
            logger.warning("matplotlib/pandas not installed, skipping visualization")
            return

        df = pd.DataFrame([asdict(r) for r in self.results])

        fig, axes = plt.subplots(1, 3, figsize=(18, 6))
        fig.suptitle('Gear-hash chunking benchmarks', fontsize=16, fontweight='bold')

        ax = axes[0]
        df.plot(x='profile', y='throughput_mb_s', kind='bar', ax=ax, legend=False)
        ax.set_title('Throughput')
        ax.set_ylabel('MB/s')

        ax = axes[1]
        df.plot(x='profile', y=['smallest_chunk', 'mean_chunk_size', 'largest_chunk'], kind='bar', ax=ax)
        ax.set_title('Chunk sizes')
        ax.set_ylabel('Bytes')

        ax = axes[2]
        df.plot(x='profile', y='memory_mb_max', kind='bar', ax=ax, legend=False, color='green')
        ax.set_title('Peak RSS')
        ax.set_ylabel('Memory (MB)')

        plt.tight_layout()

        plot_file = self.output_dir / f"chunking_benchmark_{int(time.time())}.png"
        plt.savefig(plot_file, dpi=150, bbox_inches='tight')
        plt.close()
        logger.info(f"Saved plot to {plot_file}")
