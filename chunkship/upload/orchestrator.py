"""
upload/orchestrator.py - Upload, verification and promotion
Drives chunk uploads against a remote store, publishes the manifest and
moves the per-track "latest" pointer once a version is complete
"""

import asyncio
import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union
import logging

from ..manifest.delta import DeltaResult, detect_delta
from ..manifest.model import (
    BuildType,
    ChunkManifest,
    ChunkRef,
    Manifest,
    parse_manifest,
    require_chunk_based,
    version_descriptor
)
from ..remote.client import RemoteObjectNotFound, RemoteStoreClient
from ..remote.keys import (
    build_type_prefix,
    chunk_key,
    latest_manifest_key,
    manifest_key,
    version_key
)
from ..storage.chunk_store import ChunkNotFoundError, ChunkStore
from .progress import ProgressCallback, ProgressReporter

logger = logging.getLogger(__name__)


class UploadMode(Enum):
    """Which chunks travel"""
    FULL = "full"
    DELTA = "delta"


class SessionState(Enum):
    """Upload session lifecycle"""
    IDLE = "idle"
    UPLOADING = "uploading"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = (SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED)


class UploadError(Exception):
    """Base error for upload orchestration"""


class ManifestPublishError(UploadError):
    """Manifest or version file could not be published"""


class UploadCancelledError(UploadError):
    """Session was cancelled before it finished"""


class PromotionError(UploadError):
    """Version cannot become the latest for its track"""

    def __init__(self, message: str, missing_count: int = 0):
        super().__init__(message)
        self.missing_count = missing_count


@dataclass
class UploadPlan:
    """Worklist chosen for one upload"""
    mode: UploadMode
    worklist: List[ChunkRef]
    files_to_upload: int
    delta: Optional[DeltaResult] = None

    @property
    def upload_size(self) -> int:
        return sum(c.size for c in self.worklist)


@dataclass
class UploadStats:
    """Outcome of an upload session; failed > 0 means incomplete"""
    total_chunks: int = 0
    uploaded_chunks: int = 0
    skipped_chunks: int = 0
    failed_chunks: int = 0
    skipped_details: List[Dict] = field(default_factory=list)
    failed_details: List[Dict] = field(default_factory=list)
    files_processed: int = 0
    manifest_key: Optional[str] = None
    latest_key: Optional[str] = None

    @property
    def complete(self) -> bool:
        return self.failed_chunks == 0


@dataclass
class VerificationResult:
    """Remote existence of every chunk in a manifest"""
    total_chunks: int = 0
    existing_chunks: List[Dict] = field(default_factory=list)
    missing_chunks: List[Dict] = field(default_factory=list)
    total_size: int = 0
    existing_size: int = 0
    missing_size: int = 0

    @property
    def all_exist(self) -> bool:
        return not self.missing_chunks


@dataclass
class PromotionResult:
    version: str
    build_type: BuildType
    latest_key: str
    verification: VerificationResult


@dataclass
class VersionListing:
    versions: List[str]
    current_version: Optional[str]


def _natural_key(version: str):
    return [int(part) if part.isdecimal() else part for part in re.split(r'(\d+)', version)]


class UploadSession:
    """
    One upload invocation, owned by the caller
    pause()/resume()/cancel() may be called from other tasks on the same loop.
    Only one session should run per orchestrator at a time; that is the
    caller's responsibility and is not enforced here.
    """

    def __init__(self, orchestrator: "UploadOrchestrator", manifest: ChunkManifest,
                 worklist: Sequence[ChunkRef], files_processed: int = 0):
        self.orchestrator = orchestrator
        self.manifest = manifest
        self.worklist = list(worklist)
        self.cursor = 0

        self.stats = UploadStats(
            total_chunks=len(self.worklist),
            files_processed=files_processed
        )

        self._state = SessionState.IDLE
        self._paused = False
        self._cancelled = False
        self._resume = asyncio.Event()
        self._resume.set()

    @property
    def state(self) -> SessionState:
        if self._paused and self._state in (SessionState.IDLE, SessionState.UPLOADING):
            return SessionState.PAUSED
        return self._state

    @property
    def is_paused(self) -> bool:
        return self.state is SessionState.PAUSED

    def pause(self):
        """Suspend before the next chunk"""
        if self._state in TERMINAL_STATES or self._paused:
            return
        self._paused = True
        self._resume.clear()
        logger.info(f"Upload paused at chunk {self.cursor}/{len(self.worklist)}")

    def resume(self):
        """Continue from the same chunk index; no-op unless paused"""
        if not self._paused:
            return
        self._paused = False
        self._resume.set()
        logger.info(f"Upload resumed at chunk {self.cursor}/{len(self.worklist)}")

    def cancel(self):
        """Stop before the next chunk; the manifest is not published"""
        if self._state in TERMINAL_STATES:
            return
        self._cancelled = True
        self._paused = False
        self._resume.set()

    async def _checkpoint(self):
        await self._resume.wait()
        if self._cancelled:
            raise UploadCancelledError(
                f"Upload cancelled at chunk {self.cursor}/{len(self.worklist)}"
            )

    async def run(self) -> UploadStats:
        """Upload the worklist, then publish manifest and version file"""
        if self._state is not SessionState.IDLE:
            raise RuntimeError(f"Upload session already {self._state.value}")

        self._state = SessionState.UPLOADING
        reporter = self.orchestrator.reporter
        reporter.reset()

        try:
            total = len(self.worklist)
            reporter.report(5, f"Uploading {total} chunks")

            while self.cursor < total:
                await self._checkpoint()
                await self._process(self.worklist[self.cursor])
                self.cursor += 1

                suffix = " (Paused)" if self._paused else ""
                reporter.report(
                    5 + (self.cursor / total) * 80,
                    f"Uploading chunks: {self.cursor}/{total} "
                    f"({self.stats.uploaded_chunks} uploaded, "
                    f"{self.stats.skipped_chunks} skipped){suffix}"
                )

            await self._checkpoint()
            await self._publish()

        except UploadCancelledError:
            self._state = SessionState.CANCELLED
            logger.warning(f"Upload of {self.manifest.version} cancelled")
            raise
        except Exception:
            self._state = SessionState.FAILED
            raise

        self._state = SessionState.COMPLETED
        reporter.report(100, "Upload complete!")

        if self.stats.failed_chunks:
            logger.warning(
                f"Upload of {self.manifest.version} finished with "
                f"{self.stats.failed_chunks} failed chunks"
            )
        else:
            logger.info(
                f"Upload of {self.manifest.version} complete: "
                f"{self.stats.uploaded_chunks} uploaded, {self.stats.skipped_chunks} skipped"
            )

        return self.stats

    async def _process(self, chunk: ChunkRef):
        """Upload one chunk; failures are counted, never raised"""
        store = self.orchestrator.chunk_store
        remote = self.orchestrator.remote
        reporter = self.orchestrator.reporter
        key = chunk_key(self.manifest.build_type.value, self.manifest.version, chunk.hash)

        try:
            if not await store.exists(chunk.hash):
                raise ChunkNotFoundError(chunk.hash)

            # A previous partial upload may already have placed it
            if await remote.exists(key):
                self.stats.skipped_chunks += 1
                self.stats.skipped_details.append({
                    'hash': chunk.hash,
                    'reason': 'already_exists',
                    'key': key
                })
                logger.debug(f"Skipped chunk {chunk.hash[:16]}... - already exists at {key}")
                return

            data = await store.get(chunk.hash)
            if data is None:
                raise ChunkNotFoundError(chunk.hash)

            await remote.put_object(key, data)
            self.stats.uploaded_chunks += 1

        except Exception as e:
            self.stats.failed_chunks += 1
            self.stats.failed_details.append({
                'hash': chunk.hash,
                'key': key,
                'error': str(e)
            })
            logger.error(f"Failed to upload chunk {chunk.hash}: {e}")
            reporter.report(
                reporter.last_percentage,
                f"Error uploading chunk {chunk.hash[:8]}...: {e}",
                chunk_status='failed',
                error=True
            )

    async def _publish(self):
        """A package without its manifest is unusable, so failures here are fatal"""
        remote = self.orchestrator.remote
        reporter = self.orchestrator.reporter
        build_type = self.manifest.build_type.value
        version = self.manifest.version

        self.manifest.assign_remote_urls()
        payload = self.manifest.to_json().encode('utf-8')

        pinned_key = manifest_key(build_type, version)
        latest_key = latest_manifest_key(build_type)
        descriptor_key = version_key(build_type, version)

        try:
            reporter.report(85, "Uploading manifest...")
            await remote.put_object(pinned_key, payload)
            await remote.put_object(latest_key, payload)

            reporter.report(90, "Uploading version file...")
            descriptor = json.dumps(version_descriptor(version), indent=2).encode('utf-8')
            await remote.put_object(descriptor_key, descriptor)
        except Exception as e:
            raise ManifestPublishError(f"Failed to publish manifest for {version}: {e}") from e

        self.stats.manifest_key = pinned_key
        self.stats.latest_key = latest_key


class UploadOrchestrator:
    """Sequences chunk upload, manifest upload and version promotion"""

    def __init__(self, remote: RemoteStoreClient, chunk_store: ChunkStore,
                 on_progress: Optional[ProgressCallback] = None):
        self.remote = remote
        self.chunk_store = chunk_store
        self.reporter = ProgressReporter(on_progress)

    def plan(self, new: Manifest, old: Optional[Manifest] = None,
             mode: Union[UploadMode, str] = UploadMode.DELTA) -> UploadPlan:
        """Choose the chunk worklist for a full or delta upload"""
        mode = UploadMode(mode)
        new = require_chunk_based(new, "Chunked upload")

        if mode is UploadMode.DELTA and old is not None:
            delta = detect_delta(old, new)
            return UploadPlan(
                mode=mode,
                worklist=list(delta.chunks_to_upload_details),
                files_to_upload=len(delta.new_files) + len(delta.changed_files),
                delta=delta
            )

        if mode is UploadMode.DELTA:
            logger.info("No previous manifest given, falling back to full upload")

        return UploadPlan(
            mode=UploadMode.FULL,
            worklist=new.unique_chunks(),
            files_to_upload=len(new.files)
        )

    def new_session(self, manifest: Manifest, worklist: Sequence[ChunkRef],
                    files_processed: Optional[int] = None) -> UploadSession:
        """Create a session; the caller owns it and may pause/resume/cancel it"""
        manifest = require_chunk_based(manifest, "Chunked upload")
        if files_processed is None:
            files_processed = len(manifest.files)
        return UploadSession(self, manifest, worklist, files_processed)

    async def upload(self, manifest: Manifest, worklist: Sequence[ChunkRef]) -> UploadStats:
        """Create and run a session in one step"""
        return await self.new_session(manifest, worklist).run()

    async def verify(self, manifest: Manifest) -> VerificationResult:
        """Check every chunk's remote existence without uploading anything"""
        self.reporter.reset()
        return await self._verify(manifest, 0, 100)

    async def _verify(self, manifest: Manifest, base: float, span: float) -> VerificationResult:
        manifest = require_chunk_based(manifest, "Verification")
        build_type = manifest.build_type.value
        chunks = manifest.unique_chunks()
        result = VerificationResult(total_chunks=len(chunks))

        logger.info(
            f"Verifying {len(chunks)} chunks for version {manifest.version}, "
            f"buildType {build_type} on {self.remote.describe()}"
        )
        self.reporter.report(base, f"Starting verification of {len(chunks)} chunks...")

        for i, chunk in enumerate(chunks):
            key = chunk_key(build_type, manifest.version, chunk.hash)
            exists = await self.remote.exists(key)
            entry = {'hash': chunk.hash, 'size': chunk.size, 'key': key}
            result.total_size += chunk.size

            if exists:
                result.existing_chunks.append(entry)
                result.existing_size += chunk.size
                status = 'exists'
                message = f"Chunk {i + 1}/{len(chunks)} exists"
            else:
                result.missing_chunks.append(entry)
                result.missing_size += chunk.size
                status = 'missing'
                message = f"Chunk {i + 1}/{len(chunks)} missing: {chunk.hash[:16]}..."

            self.reporter.report(base + ((i + 1) / len(chunks)) * span, message, chunk_status=status)

        self.reporter.report(
            base + span,
            f"Verification complete! {len(result.existing_chunks)} found, "
            f"{len(result.missing_chunks)} missing"
        )
        return result

    async def promote(self, version: str, build_type: Union[str, BuildType],
                      local_manifest: Optional[Manifest] = None) -> PromotionResult:
        """
        Make `version` the latest for its track
        Refuses when any chunk is missing remotely. Only the latest pointer is
        rewritten; the version-pinned manifest stays as uploaded. Concurrent
        promotions are last-writer-wins at the object store.
        """
        build_type = BuildType.parse(build_type)
        self.reporter.reset()
        self.reporter.report(0, f"Promoting {build_type.value} {version}...")

        if local_manifest is not None:
            manifest = require_chunk_based(local_manifest, "Promotion")
            if manifest.version != version or manifest.build_type is not build_type:
                raise PromotionError(
                    f"Local manifest is {manifest.build_type.value} {manifest.version}, "
                    f"expected {build_type.value} {version}"
                )
        else:
            key = manifest_key(build_type.value, version)
            try:
                data = await self.remote.get_object(key)
            except RemoteObjectNotFound:
                raise PromotionError(f"Version {version} has no manifest at {key}")
            manifest = require_chunk_based(parse_manifest(data), "Promotion")

        verification = await self._verify(manifest, 5, 85)

        if not verification.all_exist:
            missing = len(verification.missing_chunks)
            raise PromotionError(
                f"Cannot promote {version}: {missing} of "
                f"{verification.total_chunks} chunks are missing",
                missing_count=missing
            )

        manifest.assign_remote_urls(version, build_type)
        latest_key = latest_manifest_key(build_type.value)
        await self.remote.put_object(latest_key, manifest.to_json().encode('utf-8'))

        self.reporter.report(100, f"Version {version} is now latest for {build_type.value}")
        logger.info(f"Promoted {build_type.value} {version} to {latest_key}")

        return PromotionResult(
            version=version,
            build_type=build_type,
            latest_key=latest_key,
            verification=verification
        )

    async def list_versions(self, build_type: Union[str, BuildType]) -> VersionListing:
        """Published versions of a track plus the one currently promoted"""
        build_type = BuildType.parse(build_type)
        prefix = build_type_prefix(build_type.value)

        prefixes = await self.remote.list_common_prefixes(prefix)
        versions = sorted(
            (p[len(prefix):].rstrip('/') for p in prefixes if p.startswith(prefix)),
            key=_natural_key
        )

        current = None
        try:
            data = await self.remote.get_object(latest_manifest_key(build_type.value))
            current = parse_manifest(data).version
        except RemoteObjectNotFound:
            logger.info(f"No latest manifest for {build_type.value} yet")

        return VersionListing(versions=[v for v in versions if v], current_version=current)
