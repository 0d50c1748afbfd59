"""Delta detection between two manifest versions"""

from dataclasses import dataclass, field
from typing import Dict, List
import logging

from .model import ChunkRef, FileEntry, Manifest, ManifestError, require_chunk_based

logger = logging.getLogger(__name__)


class BuildTypeMismatchError(ManifestError):
    """Manifests from different tracks cannot be compared"""


@dataclass
class DeltaResult:
    """Changeset between an old and a new manifest"""
    new_files: List[FileEntry] = field(default_factory=list)
    changed_files: List[FileEntry] = field(default_factory=list)
    deleted_files: List[FileEntry] = field(default_factory=list)
    chunks_to_upload: List[str] = field(default_factory=list)
    chunks_to_upload_details: List[ChunkRef] = field(default_factory=list)
    total_files: int = 0
    total_chunks_in_new: int = 0

    @property
    def stats(self) -> Dict[str, int]:
        """Derived counts for reporting"""
        return {
            'total_files': self.total_files,
            'new_files_count': len(self.new_files),
            'changed_files_count': len(self.changed_files),
            'deleted_files_count': len(self.deleted_files),
            'chunks_to_upload_count': len(self.chunks_to_upload),
            'total_chunks_in_new': self.total_chunks_in_new
        }


def has_file_changed(old_file: FileEntry, new_file: FileEntry) -> bool:
    """Content comparison by chunk hashes; metadata alone never counts"""
    if old_file.total_size != new_file.total_size:
        return True

    if len(old_file.chunks) != len(new_file.chunks):
        return True

    return old_file.chunk_hashes != new_file.chunk_hashes


def detect_delta(old: Manifest, new: Manifest) -> DeltaResult:
    """
    Compare two chunk-based manifests of the same build type
    Chunks already present anywhere in `old` are never uploaded again,
    even when they move to another file.
    """
    old = require_chunk_based(old, "Delta detection")
    new = require_chunk_based(new, "Delta detection")

    if old.build_type is not new.build_type:
        raise BuildTypeMismatchError(
            f"Cannot compare manifests: old manifest is {old.build_type.value} "
            f"but new manifest is {new.build_type.value}. "
            f"Delta comparison only works within the same build type."
        )

    old_files = {f.filename: f for f in old.files}
    new_files = {f.filename: f for f in new.files}

    result = DeltaResult(
        total_files=len(new.files),
        total_chunks_in_new=len(new.all_chunks())
    )

    for new_file in new.files:
        old_file = old_files.get(new_file.filename)
        if old_file is None:
            result.new_files.append(new_file)
        elif has_file_changed(old_file, new_file):
            result.changed_files.append(new_file)

    # Reported only; remote chunks are never garbage-collected
    result.deleted_files = [f for f in old.files if f.filename not in new_files]

    old_hashes = {c.hash for c in old.all_chunks()}
    seen = set()

    for entry in result.new_files + result.changed_files:
        for chunk in entry.chunks:
            if chunk.hash in old_hashes or chunk.hash in seen:
                continue
            seen.add(chunk.hash)
            result.chunks_to_upload.append(chunk.hash)
            result.chunks_to_upload_details.append(chunk)

    logger.info(
        f"Delta {old.version} -> {new.version}: "
        f"{len(result.new_files)} new, {len(result.changed_files)} changed, "
        f"{len(result.deleted_files)} deleted, "
        f"{len(result.chunks_to_upload)} chunks to upload"
    )

    return result


def files_to_upload(delta: DeltaResult) -> List[FileEntry]:
    """New and changed files"""
    return delta.new_files + delta.changed_files


def calculate_upload_size(delta: DeltaResult) -> int:
    """Bytes of chunk data the delta will transfer (manifests excluded)"""
    return sum(c.size for c in delta.chunks_to_upload_details)
