"""
Core data models for the S3 folder watcher.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Any, List, Optional, Tuple


class OperationKind(str, Enum):
    """Kind of filesystem change reported by the event source."""
    CREATE = "create"
    WRITE = "write"
    REMOVE = "remove"
    RENAME = "rename"


class UploadStrategy(str, Enum):
    """How a file is transferred to the store."""
    SINGLE = "single"
    MULTIPART = "multipart"


@dataclass(frozen=True)
class ChangeEvent:
    """A single filesystem notification."""
    operation_kind: OperationKind
    path: str


@dataclass(frozen=True)
class UploadTask:
    """A classified upload, owned by the thread that executes it."""
    source_path: str
    destination_key: str
    size_bytes: int
    strategy: UploadStrategy


@dataclass
class UploadOutcome:
    """Result of one upload task."""
    source_path: str
    destination_key: str = ""
    strategy: Optional[UploadStrategy] = None
    success: bool = False
    skipped: bool = False
    confirmed: bool = False
    error_kind: Optional[str] = None
    error_message: str = ""
    attempts: int = 0
    warnings: List[str] = field(default_factory=list)

    @property
    def error_detail(self) -> Optional[Tuple[str, str]]:
        """Return (kind, message) for failed outcomes, None otherwise."""
        if self.error_kind is None:
            return None
        return self.error_kind, self.error_message

    @classmethod
    def failed(cls, source_path: str, error: Exception, **kwargs) -> 'UploadOutcome':
        """Build a failed outcome from a task-local error."""
        return cls(
            source_path=source_path,
            success=False,
            error_kind=getattr(error, 'kind', type(error).__name__),
            error_message=str(error),
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            'source_path': self.source_path,
            'destination_key': self.destination_key,
            'strategy': self.strategy.value if self.strategy else None,
            'success': self.success,
            'skipped': self.skipped,
            'confirmed': self.confirmed,
            'error_kind': self.error_kind,
            'error_message': self.error_message,
            'attempts': self.attempts,
            'warnings': list(self.warnings)
        }
