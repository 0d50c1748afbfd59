"""
Remote key layout
Other tooling (launchers, mirrors) reads these paths, so they must not change:

    {buildType}/roleplayai_manifest.json
    {buildType}/{version}/manifest.json
    {buildType}/{version}/version.json
    {buildType}/{version}/chunks/{hash[0:2]}/{hash}
"""

LATEST_MANIFEST_NAME = "roleplayai_manifest.json"
MANIFEST_NAME = "manifest.json"
VERSION_NAME = "version.json"
CHUNKS_DIR = "chunks"


def chunk_key(build_type: str, version: str, chunk_hash: str) -> str:
    return f"{build_type}/{version}/{CHUNKS_DIR}/{chunk_hash[:2]}/{chunk_hash}"


def manifest_key(build_type: str, version: str) -> str:
    return f"{build_type}/{version}/{MANIFEST_NAME}"


def version_key(build_type: str, version: str) -> str:
    return f"{build_type}/{version}/{VERSION_NAME}"


def latest_manifest_key(build_type: str) -> str:
    return f"{build_type}/{LATEST_MANIFEST_NAME}"


def build_type_prefix(build_type: str) -> str:
    """Prefix under which every version of a track lives"""
    return f"{build_type}/"
