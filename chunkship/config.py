"""Configuration: dataclasses loaded from an optional YAML file"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import yaml

from .chunking.gear import DEFAULT_AVG_SIZE, DEFAULT_MAX_SIZE, DEFAULT_MIN_SIZE
from .remote.client import RemoteStoreClient
from .remote.local import LocalDirectoryStore
from .remote.s3 import S3RemoteStore

logger = logging.getLogger(__name__)

ENV_ACCESS_KEY_ID = "CHUNKSHIP_ACCESS_KEY_ID"
ENV_SECRET_ACCESS_KEY = "CHUNKSHIP_SECRET_ACCESS_KEY"

BACKENDS = ("s3", "local")


class ConfigError(ValueError):
    """Invalid configuration value"""


@dataclass
class ChunkingConfig:
    """Chunk size bounds in bytes"""
    min_size: int = DEFAULT_MIN_SIZE
    avg_size: int = DEFAULT_AVG_SIZE
    max_size: int = DEFAULT_MAX_SIZE

    def validate(self):
        if min(self.min_size, self.avg_size, self.max_size) <= 0:
            raise ConfigError("Chunk sizes must be positive")
        if not self.min_size <= self.avg_size <= self.max_size:
            raise ConfigError(
                f"Chunk sizes must satisfy min <= avg <= max "
                f"(got {self.min_size}, {self.avg_size}, {self.max_size})"
            )


@dataclass
class PackagingFilters:
    """Optional exclusions applied while packaging"""
    exclude_pdb: bool = True
    exclude_saved: bool = True


@dataclass
class RemoteConfig:
    """Remote object store settings"""
    backend: str = "s3"
    bucket: Optional[str] = None
    endpoint: Optional[str] = None
    region: str = "auto"
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    root: Optional[str] = None  # local backend only
    per_build_type_bucket: bool = True

    def validate(self):
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown remote backend {self.backend!r}, expected one of {BACKENDS}")
        if self.backend == "s3" and not self.bucket:
            raise ConfigError("remote.bucket is required for the s3 backend")
        if self.backend == "local" and not self.root:
            raise ConfigError("remote.root is required for the local backend")


@dataclass
class AppConfig:
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    filters: PackagingFilters = field(default_factory=PackagingFilters)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    cache_dir: str = "./chunks"


def _section(raw: Dict[str, Any], name: str, cls):
    """Build a dataclass from one YAML mapping, rejecting unknown keys"""
    data = raw.get(name) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")

    known = cls.__dataclass_fields__.keys()
    unknown = set(data) - set(known)
    if unknown:
        raise ConfigError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")
    return cls(**data)


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from YAML (if given) and the environment
    Credentials in the environment win over the file
    """
    raw: Dict[str, Any] = {}

    if path is not None:
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        with open(path, 'r') as f:
            try:
                raw = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}")
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        logger.info(f"Loaded configuration from {path}")

    try:
        config = AppConfig(
            chunking=_section(raw, 'chunking', ChunkingConfig),
            filters=_section(raw, 'filters', PackagingFilters),
            remote=_section(raw, 'remote', RemoteConfig),
            cache_dir=raw.get('cache_dir', "./chunks")
        )
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}")

    config.remote.access_key_id = os.environ.get(ENV_ACCESS_KEY_ID, config.remote.access_key_id)
    config.remote.secret_access_key = os.environ.get(
        ENV_SECRET_ACCESS_KEY, config.remote.secret_access_key
    )

    config.chunking.validate()
    return config


def derive_bucket_name(base_bucket_name: str, build_type: str) -> str:
    """Per-track bucket: append -prod / -staging unless already suffixed"""
    if base_bucket_name.endswith('-prod') or base_bucket_name.endswith('-staging'):
        return base_bucket_name
    suffix = 'prod' if build_type == 'production' else 'staging'
    return f"{base_bucket_name}-{suffix}"


def create_remote_store(config: RemoteConfig, build_type: Optional[str] = None) -> RemoteStoreClient:
    """
    Instantiate the configured remote backend
    With a build type, the s3 bucket is the per-track bucket from derive_bucket_name
    """
    config.validate()

    if config.backend == "local":
        return LocalDirectoryStore(Path(config.root))

    bucket = config.bucket
    if build_type and config.per_build_type_bucket:
        bucket = derive_bucket_name(bucket, build_type)

    return S3RemoteStore(
        bucket=bucket,
        endpoint=config.endpoint,
        access_key_id=config.access_key_id,
        secret_access_key=config.secret_access_key,
        region=config.region
    )
