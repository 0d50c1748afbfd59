"""
packaging/pipeline.py - Package preparation
Walks a build directory, chunks every file into the local chunk store and
writes a chunk-based manifest plus version.json
"""

import json
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Tuple
import logging

import aiofiles
import psutil

from ..chunking.gear import GearChunker
from ..config import ChunkingConfig, PackagingFilters
from ..manifest.model import (
    BuildType,
    ChunkManifest,
    ChunkRef,
    FileEntry,
    create_chunk_manifest,
    save_manifest,
    version_descriptor
)
from ..storage.chunk_store import ChunkStore
from ..upload.progress import ProgressEvent, ProgressReporter

logger = logging.getLogger(__name__)

# Artifacts of earlier runs and launcher files; never packaged
ALWAYS_EXCLUDED_NAMES = {
    'version.json',
    'roleplayai_manifest.json',
    'roleplayai_launcher.exe',
    'roleplayai.txt',
}


class PackagingError(Exception):
    """Package preparation cannot proceed"""


@dataclass
class PackageOptions:
    source_dir: Path
    output_dir: Path
    version: str
    build_type: BuildType = BuildType.PRODUCTION
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    filters: PackagingFilters = field(default_factory=PackagingFilters)


@dataclass
class PackageStats:
    files_processed: int = 0
    total_chunks: int = 0
    unique_chunks: int = 0
    total_size: int = 0

    @property
    def deduplication_ratio(self) -> float:
        """Unique chunks over referenced chunks (1.0 means no sharing)"""
        if not self.total_chunks:
            return 0.0
        return round(self.unique_chunks / self.total_chunks, 2)


@dataclass
class PackageResult:
    manifest: ChunkManifest
    manifest_path: Path
    version_path: Path
    chunks_dir: Path
    stats: PackageStats


def manifest_filename(build_type: BuildType, version: str) -> str:
    return f"manifest_{build_type.value}_{version}.json"


def should_include_file(relative_path: str, filters: Optional[PackagingFilters] = None) -> bool:
    """Filter out non-essential files"""
    filters = filters or PackagingFilters()
    normalized = relative_path.replace('\\', '/')
    name = PurePosixPath(normalized).name.lower()
    lowered = f"/{normalized.lower()}"

    if filters.exclude_saved and '/saved/' in lowered:
        return False

    if filters.exclude_pdb and name.endswith('.pdb'):
        return False

    is_manifest = name.startswith('manifest_') and (name.endswith('.txt') or name.endswith('.json'))
    return not (is_manifest or name in ALWAYS_EXCLUDED_NAMES)


def collect_files(source_dir: Path) -> List[Tuple[Path, str]]:
    """Every regular file under source_dir as (full path, slash-normalised relative path)"""
    files = []
    for path in sorted(source_dir.rglob('*')):
        if path.is_file():
            files.append((path, path.relative_to(source_dir).as_posix()))
    return files


def _check_disk_space(output_dir: Path, needed: int):
    usage = psutil.disk_usage(str(output_dir))
    if usage.free < needed:
        logger.warning(
            f"Only {usage.free / 1024 / 1024:.0f} MB free on {output_dir}; "
            f"source is {needed / 1024 / 1024:.0f} MB before deduplication"
        )


async def generate_manifest(options: PackageOptions,
                            on_progress: Optional[Callable[[ProgressEvent], None]] = None) -> PackageResult:
    """Chunk a build directory and write its manifest"""
    if not options.version:
        raise PackagingError("Missing required option: version")

    source_dir = Path(options.source_dir)
    output_dir = Path(options.output_dir)
    build_type = BuildType.parse(options.build_type)
    options.chunking.validate()

    if not source_dir.is_dir():
        raise PackagingError(f"Source directory not found: {source_dir}")

    output_dir.mkdir(parents=True, exist_ok=True)
    chunks_dir = output_dir / 'chunks'
    store = ChunkStore(chunks_dir)
    await store.initialize()

    chunker = GearChunker(
        min_size=options.chunking.min_size,
        avg_size=options.chunking.avg_size,
        max_size=options.chunking.max_size
    )

    reporter = ProgressReporter(on_progress)
    reporter.report(0, "Scanning files...")

    output_resolved = output_dir.resolve()
    candidates = [
        (full, rel) for full, rel in collect_files(source_dir)
        # Output may live inside the source tree
        if output_resolved not in full.resolve().parents
        and should_include_file(rel, options.filters)
    ]

    if not candidates:
        raise PackagingError(f"No files found to process in {source_dir}")

    source_size = sum(full.stat().st_size for full, _ in candidates)
    _check_disk_space(output_dir, source_size)

    reporter.report(5, f"Found {len(candidates)} files to process")
    logger.info(f"Packaging {len(candidates)} files ({source_size} bytes) as {build_type.value} {options.version}")

    stats = PackageStats()
    seen_chunks = set()
    entries: List[FileEntry] = []

    for i, (full_path, relative_path) in enumerate(candidates):
        file_size = full_path.stat().st_size
        reporter.report(
            5 + (i / len(candidates)) * 85,
            f"Processing {relative_path} ({file_size / 1024 / 1024:.2f} MB)"
        )

        chunks = []
        async for chunk in chunker.chunk_file(full_path):
            if chunk.hash not in seen_chunks:
                await store.put(chunk.hash, chunk.data)
                seen_chunks.add(chunk.hash)
            chunks.append(ChunkRef(hash=chunk.hash, size=chunk.size, offset=chunk.offset))

        entries.append(FileEntry(
            filename=relative_path,
            total_size=sum(c.size for c in chunks),
            chunks=chunks
        ))

        stats.files_processed += 1
        stats.total_chunks += len(chunks)
        stats.total_size += entries[-1].total_size

    stats.unique_chunks = len(seen_chunks)

    reporter.report(90, "Creating manifest...")
    manifest = create_chunk_manifest(options.version, build_type, entries)

    manifest_path = output_dir / manifest_filename(build_type, options.version)
    await save_manifest(manifest, manifest_path)

    version_path = output_dir / 'version.json'
    async with aiofiles.open(version_path, 'w', encoding='utf-8') as f:
        await f.write(json.dumps(version_descriptor(options.version), indent=2))

    reporter.report(100, "Manifest generation complete!")
    logger.info(
        f"Wrote {manifest_path}: {stats.files_processed} files, "
        f"{stats.total_chunks} chunks ({stats.unique_chunks} unique)"
    )

    return PackageResult(
        manifest=manifest,
        manifest_path=manifest_path,
        version_path=version_path,
        chunks_dir=chunks_dir,
        stats=stats
    )
