"""
Configuration classes for the S3 folder watcher.

Configuration is built once at startup and is immutable afterwards; every
component receives the same WatchConfig instance.
"""
import os
from dataclasses import dataclass, field, replace
from typing import FrozenSet, List, Optional

from ..exceptions import ConfigurationError
from .data_models import OperationKind

MIB = 1024 * 1024

DEFAULT_SIZE_THRESHOLD = 50 * MIB
DEFAULT_PART_SIZE = 50 * MIB
DEFAULT_MULTIPART_CONCURRENCY = 5
DEFAULT_CONFIRM_TIMEOUT = 60

# Store-imposed ceilings (AWS S3 limits); override for other S3-compatible stores.
SINGLE_PUT_MAX_SIZE = 5 * 1024 ** 3
MULTIPART_MAX_SIZE = 5 * 1024 ** 4

# Only writes are interesting: a freshly created file has no content yet.
DEFAULT_ALLOWED_OPERATIONS = frozenset({OperationKind.WRITE})


def _env_number(name: str, default, convert):
    value = os.getenv(name)
    if value is None or value.strip() == '':
        return default
    try:
        return convert(value)
    except ValueError:
        raise ConfigurationError([f"Invalid {name}: expected a number, got '{value}'"]) from None


def _env_int(name: str, default: int) -> int:
    return _env_number(name, default, int)


def _env_float(name: str, default: float) -> float:
    return _env_number(name, default, float)


@dataclass(frozen=True)
class S3Config:
    """Configuration for S3 service connection."""
    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'S3Config':
        """Create S3Config from environment variables."""
        return cls(
            bucket=os.getenv('S3_BUCKET_NAME', ''),
            region=os.getenv('AWS_REGION') or os.getenv('AWS_DEFAULT_REGION'),
            endpoint=os.getenv('S3_ENDPOINT') or None,
            access_key=os.getenv('AWS_ACCESS_KEY_ID') or None,
            secret_key=os.getenv('AWS_SECRET_ACCESS_KEY') or None
        )


@dataclass(frozen=True)
class WatchConfig:
    """Main configuration for a watch session."""
    watch_directory: str
    s3: S3Config
    key_prefix: str = ''
    size_threshold: int = DEFAULT_SIZE_THRESHOLD
    part_size: int = DEFAULT_PART_SIZE
    multipart_concurrency: int = DEFAULT_MULTIPART_CONCURRENCY
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    max_retries: int = 3
    retry_backoff: float = 1.0
    channel_size: int = 1024
    allowed_operations: FrozenSet[OperationKind] = field(default=DEFAULT_ALLOWED_OPERATIONS)
    single_put_max_size: int = SINGLE_PUT_MAX_SIZE
    multipart_max_size: int = MULTIPART_MAX_SIZE
    recursive: bool = False
    max_watch_restarts: int = 3
    watch_restart_delay: float = 1.0

    @property
    def bucket(self) -> str:
        return self.s3.bucket

    @classmethod
    def from_env(cls) -> 'WatchConfig':
        """Create WatchConfig from environment variables."""
        return cls(
            watch_directory=os.getenv('WATCH_DIR', ''),
            s3=S3Config.from_env(),
            key_prefix=os.getenv('S3_BUCKET_PREFIX', ''),
            size_threshold=_env_int('SIZE_THRESHOLD', DEFAULT_SIZE_THRESHOLD),
            part_size=_env_int('PART_SIZE', DEFAULT_PART_SIZE),
            multipart_concurrency=_env_int('MULTIPART_CONCURRENCY', DEFAULT_MULTIPART_CONCURRENCY),
            confirm_timeout=_env_float('CONFIRM_TIMEOUT', DEFAULT_CONFIRM_TIMEOUT),
            max_retries=_env_int('MAX_RETRIES', 3)
        )

    def with_overrides(self, source: Optional[str] = None, bucket: Optional[str] = None,
                       prefix: Optional[str] = None, region: Optional[str] = None,
                       endpoint: Optional[str] = None,
                       threshold: Optional[int] = None) -> 'WatchConfig':
        """
        Return a copy with command line values applied on top.

        Empty or missing values leave the environment value in place.
        """
        s3_changes = {}
        if bucket:
            s3_changes['bucket'] = bucket
        if region:
            s3_changes['region'] = region
        if endpoint:
            s3_changes['endpoint'] = endpoint

        changes = {}
        if s3_changes:
            changes['s3'] = replace(self.s3, **s3_changes)
        if source:
            changes['watch_directory'] = source
        if prefix:
            changes['key_prefix'] = prefix
        if threshold is not None:
            changes['size_threshold'] = threshold
        return replace(self, **changes) if changes else self

    def validate(self) -> List[str]:
        """
        Check the configuration values.

        Returns:
            List of problems, empty when the configuration is valid
        """
        problems = []

        if not self.watch_directory or not os.path.isdir(self.watch_directory):
            problems.append("Invalid source directory. Please provide a valid directory path. "
                            "Example: /path/to/source")

        if not self.s3.bucket:
            problems.append("Invalid S3 bucket name. Please provide a valid bucket name. "
                            "Example: my-s3-bucket")

        # An empty prefix is valid

        if not self.s3.region:
            problems.append("Invalid AWS region. Please provide a valid AWS region. "
                            "Example: us-west-2")

        for name in ('size_threshold', 'part_size', 'multipart_concurrency'):
            if getattr(self, name) <= 0:
                problems.append(f"Invalid {name}: must be a positive integer")

        if self.confirm_timeout < 0:
            problems.append("Invalid confirm_timeout: must not be negative")

        if self.max_retries < 0:
            problems.append("Invalid max_retries: must not be negative")

        return problems
