from .model import (
    BuildType,
    ManifestType,
    ChunkRef,
    FileEntry,
    ChunkManifest,
    LegacyFileEntry,
    LegacyFileManifest,
    Manifest,
    ManifestError,
    ManifestValidationError,
    ManifestTypeError,
    parse_manifest,
    require_chunk_based,
    create_chunk_manifest,
    version_descriptor,
    load_manifest,
    save_manifest
)
from .delta import (
    DeltaResult,
    BuildTypeMismatchError,
    detect_delta,
    has_file_changed,
    files_to_upload,
    calculate_upload_size
)

__all__ = [
    'BuildType',
    'ManifestType',
    'ChunkRef',
    'FileEntry',
    'ChunkManifest',
    'LegacyFileEntry',
    'LegacyFileManifest',
    'Manifest',
    'ManifestError',
    'ManifestValidationError',
    'ManifestTypeError',
    'parse_manifest',
    'require_chunk_based',
    'create_chunk_manifest',
    'version_descriptor',
    'load_manifest',
    'save_manifest',
    'DeltaResult',
    'BuildTypeMismatchError',
    'detect_delta',
    'has_file_changed',
    'files_to_upload',
    'calculate_upload_size'
]
