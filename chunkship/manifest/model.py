"""
manifest/model.py - Versioned package manifests
A manifest is either chunk-based or a legacy flat file list; the variant is
fixed once at parse time
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

import aiofiles

from ..remote.keys import chunk_key

logger = logging.getLogger(__name__)


class ManifestType(Enum):
    """Manifest format discriminator"""
    CHUNK_BASED = "chunk-based"
    FILE_BASED = "file-based"


class BuildType(Enum):
    """Deployment tracks; each one owns a remote namespace"""
    PRODUCTION = "production"
    STAGING = "staging"

    @classmethod
    def parse(cls, value: Union[str, "BuildType"]) -> "BuildType":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            choices = ', '.join(b.value for b in cls)
            raise ValueError(f"Invalid buildType {value!r}. Must be one of: {choices}")


class ManifestError(ValueError):
    """Base error for malformed or unusable manifests"""


class ManifestValidationError(ManifestError):
    """Structural validation failure, naming the first offending field"""

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field = field_name


class ManifestTypeError(ManifestError):
    """Operation requires a different manifest type"""


@dataclass
class ChunkRef:
    """Reference to a content-addressed chunk inside a file"""
    hash: str
    size: int
    offset: int
    url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'hash': self.hash, 'size': self.size, 'offset': self.offset}
        if self.url is not None:
            data['url'] = self.url
        return data


@dataclass
class FileEntry:
    """One file of a package version"""
    filename: str
    total_size: int
    chunks: List[ChunkRef] = field(default_factory=list)

    @property
    def chunk_hashes(self) -> List[str]:
        return [c.hash for c in self.chunks]

    @property
    def computed_size(self) -> int:
        return sum(c.size for c in self.chunks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'filename': self.filename,
            'totalSize': self.total_size,
            'chunks': [c.to_dict() for c in self.chunks]
        }


@dataclass
class ChunkManifest:
    """Chunk-based manifest for one package version"""
    version: str
    build_type: BuildType
    files: List[FileEntry] = field(default_factory=list)
    manifest_type: ManifestType = ManifestType.CHUNK_BASED

    def all_chunks(self) -> List[ChunkRef]:
        """Every chunk reference across every file, in file order"""
        return [chunk for f in self.files for chunk in f.chunks]

    def unique_chunks(self) -> List[ChunkRef]:
        """One reference per distinct hash, first occurrence wins"""
        seen = set()
        unique = []
        for chunk in self.all_chunks():
            if chunk.hash not in seen:
                seen.add(chunk.hash)
                unique.append(chunk)
        return unique

    @property
    def total_size(self) -> int:
        return sum(f.total_size for f in self.files)

    def file(self, filename: str) -> Optional[FileEntry]:
        """Get a file entry by name"""
        for entry in self.files:
            if entry.filename == filename:
                return entry
        return None

    def assign_remote_urls(self, version: Optional[str] = None,
                           build_type: Optional[BuildType] = None):
        """Point every chunk url at its deterministic remote key"""
        version = version or self.version
        build_type = build_type or self.build_type
        for chunk in self.all_chunks():
            chunk.url = chunk_key(build_type.value, version, chunk.hash)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'version': self.version,
            'buildType': self.build_type.value,
            'manifestType': self.manifest_type.value,
            'files': [f.to_dict() for f in self.files]
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass
class LegacyFileEntry:
    """Whole-file entry of the legacy flat format"""
    path: str
    url: str
    size: Optional[int] = None
    hash: Optional[str] = None


@dataclass
class LegacyFileManifest:
    """Legacy flat file-based manifest; accepted for reading only"""
    version: str
    build_type: BuildType
    files: List[LegacyFileEntry] = field(default_factory=list)
    manifest_type: ManifestType = ManifestType.FILE_BASED

    def to_dict(self) -> Dict[str, Any]:
        files = []
        for f in self.files:
            entry = {'path': f.path, 'url': f.url}
            if f.size is not None:
                entry['size'] = f.size
            if f.hash is not None:
                entry['hash'] = f.hash
            files.append(entry)
        return {
            'version': self.version,
            'buildType': self.build_type.value,
            'manifestType': self.manifest_type.value,
            'files': files
        }


Manifest = Union[ChunkManifest, LegacyFileManifest]


def _is_number(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _resolve_type(raw: Dict[str, Any]) -> ManifestType:
    """Decide the manifest variant from its tag, or from an unambiguous shape"""
    tag = raw.get('manifestType')
    if tag is not None:
        try:
            return ManifestType(tag)
        except ValueError:
            raise ManifestValidationError(f"Unknown manifestType {tag!r}", 'manifestType')

    files = raw['files']
    if not files:
        raise ManifestValidationError(
            "Cannot determine manifest type: no manifestType and no files", 'manifestType'
        )

    has_chunks = [isinstance(f, dict) and 'chunks' in f for f in files]
    if all(has_chunks):
        return ManifestType.CHUNK_BASED

    has_path = [isinstance(f, dict) and 'path' in f for f in files]
    if not any(has_chunks) and all(has_path):
        return ManifestType.FILE_BASED

    raise ManifestValidationError(
        "Cannot determine manifest type: files mix chunk-based and file-based entries",
        'manifestType'
    )


def _parse_chunk_files(files: List[Any], require_urls: bool) -> List[FileEntry]:
    entries = []
    seen = set()

    for i, raw_file in enumerate(files):
        where = f"files[{i}]"
        if not isinstance(raw_file, dict):
            raise ManifestValidationError(f"{where} is not an object", where)

        filename = raw_file.get('filename')
        if not filename or not isinstance(filename, str):
            raise ManifestValidationError("File missing filename", f"{where}.filename")

        filename = filename.replace('\\', '/')
        if filename in seen:
            raise ManifestValidationError(
                f"Duplicate filename {filename}", f"{where}.filename"
            )
        seen.add(filename)

        raw_chunks = raw_file.get('chunks')
        if not isinstance(raw_chunks, list):
            raise ManifestValidationError(
                f"File {filename} missing chunks array", f"{where}.chunks"
            )

        chunks = []
        for j, raw_chunk in enumerate(raw_chunks):
            cwhere = f"{where}.chunks[{j}]"
            if not isinstance(raw_chunk, dict):
                raise ManifestValidationError(f"{cwhere} is not an object", cwhere)
            if not raw_chunk.get('hash'):
                raise ManifestValidationError(
                    f"Chunk missing hash in file {filename}", f"{cwhere}.hash"
                )
            if not _is_number(raw_chunk.get('size')):
                raise ManifestValidationError(
                    f"Chunk missing size in file {filename}", f"{cwhere}.size"
                )
            if not _is_number(raw_chunk.get('offset')):
                raise ManifestValidationError(
                    f"Chunk missing offset in file {filename}", f"{cwhere}.offset"
                )
            if require_urls and not raw_chunk.get('url'):
                raise ManifestValidationError(
                    f"Chunk missing url in file {filename}", f"{cwhere}.url"
                )

            chunks.append(ChunkRef(
                hash=raw_chunk['hash'],
                size=raw_chunk['size'],
                offset=raw_chunk['offset'],
                url=raw_chunk.get('url')
            ))

        calculated = sum(c.size for c in chunks)
        total_size = raw_file.get('totalSize')
        if not _is_number(total_size):
            total_size = calculated
        elif total_size != calculated:
            # Legacy manifests carry stale totals; tolerated
            logger.warning(
                f"File {filename}: totalSize ({total_size}) doesn't match "
                f"sum of chunks ({calculated})"
            )

        entries.append(FileEntry(filename=filename, total_size=total_size, chunks=chunks))

    return entries


def _parse_legacy_files(files: List[Any]) -> List[LegacyFileEntry]:
    entries = []

    for i, raw_file in enumerate(files):
        where = f"files[{i}]"
        if not isinstance(raw_file, dict):
            raise ManifestValidationError(f"{where} is not an object", where)
        if not raw_file.get('path'):
            raise ManifestValidationError("File missing path", f"{where}.path")
        if not raw_file.get('url'):
            raise ManifestValidationError(
                f"File {raw_file['path']} missing url", f"{where}.url"
            )

        entries.append(LegacyFileEntry(
            path=raw_file['path'],
            url=raw_file['url'],
            size=raw_file.get('size'),
            hash=raw_file.get('hash')
        ))

    return entries


def parse_manifest(data: Union[str, bytes, Dict[str, Any]],
                   require_urls: bool = False) -> Manifest:
    """
    Parse and validate a manifest
    require_urls=False is the lenient mode for freshly generated local
    manifests; strict mode expects every chunk to carry its remote url.
    Stops at the first structural error.
    """
    if isinstance(data, (str, bytes)):
        try:
            raw = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ManifestValidationError(f"Manifest is not valid JSON: {e}")
    else:
        raw = data

    if not isinstance(raw, dict):
        raise ManifestValidationError("Manifest must be a JSON object")

    version = raw.get('version')
    if not version:
        raise ManifestValidationError("Manifest missing version", 'version')

    if not isinstance(raw.get('files'), list):
        raise ManifestValidationError("Manifest missing files array", 'files')

    try:
        build_type = BuildType.parse(raw.get('buildType') or BuildType.PRODUCTION.value)
    except ValueError as e:
        raise ManifestValidationError(str(e), 'buildType')

    manifest_type = _resolve_type(raw)

    if manifest_type is ManifestType.CHUNK_BASED:
        return ChunkManifest(
            version=str(version),
            build_type=build_type,
            files=_parse_chunk_files(raw['files'], require_urls)
        )

    return LegacyFileManifest(
        version=str(version),
        build_type=build_type,
        files=_parse_legacy_files(raw['files'])
    )


def require_chunk_based(manifest: Manifest, operation: str) -> ChunkManifest:
    """Reject legacy manifests for chunk-only operations"""
    if not isinstance(manifest, ChunkManifest):
        raise ManifestTypeError(
            f"{operation} requires a chunk-based manifest, "
            f"got {manifest.manifest_type.value} (version {manifest.version})"
        )
    return manifest


def create_chunk_manifest(version: str, build_type: Union[str, BuildType],
                          files: List[FileEntry]) -> ChunkManifest:
    """Create a chunk-based manifest from chunked files"""
    return ChunkManifest(
        version=version,
        build_type=BuildType.parse(build_type),
        files=[
            FileEntry(
                filename=f.filename.replace('\\', '/'),
                total_size=f.total_size if f.total_size else f.computed_size,
                chunks=[ChunkRef(c.hash, c.size, c.offset, c.url) for c in f.chunks]
            )
            for f in files
        ]
    )


def version_descriptor(version: str) -> Dict[str, str]:
    """Contents of version.json"""
    return {'version': version}


async def load_manifest(path: Path, require_urls: bool = False) -> Manifest:
    """Read and parse a manifest file"""
    async with aiofiles.open(path, 'rb') as f:
        data = await f.read()
    return parse_manifest(data, require_urls=require_urls)


async def save_manifest(manifest: Manifest, path: Path):
    """Write a manifest as indented JSON"""
    async with aiofiles.open(path, 'w', encoding='utf-8') as f:
        await f.write(json.dumps(manifest.to_dict(), indent=2))
