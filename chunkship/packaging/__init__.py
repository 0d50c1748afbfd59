from .pipeline import (
    PackageOptions,
    PackageResult,
    PackageStats,
    PackagingError,
    generate_manifest,
    should_include_file,
    collect_files,
    manifest_filename
)

__all__ = [
    'PackageOptions',
    'PackageResult',
    'PackageStats',
    'PackagingError',
    'generate_manifest',
    'should_include_file',
    'collect_files',
    'manifest_filename'
]
