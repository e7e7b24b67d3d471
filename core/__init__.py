from .errors import (
    StoreError,
    DocumentNotFoundError,
    CorruptedJsonError,
    FileReadError,
    FileWriteError,
    LockTimeoutError,
    LockReentryError,
    TaskNotFoundError,
    TagNotFoundError,
    TagExistsError,
    InvalidTaskIdError,
    InvalidTagError,
    InvalidStatusError,
    UnsupportedOperationError,
)
from .models import (
    DEFAULT_TAG,
    ENRICHMENT_FIELDS,
    METADATA_VERSION,
    LoadTasksOptions,
    StorageStats,
    Subtask,
    TagStats,
    Task,
    TaskComplexity,
    TaskMetadata,
    UpdateStatusResult,
    current_timestamp,
)
from .status import (
    DEFAULT_STATUS,
    TASK_STATUSES,
    TaskStatus,
    derive_parent_status,
    is_done_like,
    normalize_task_status,
)

__all__ = [
    # Errors
    "StoreError",
    "DocumentNotFoundError",
    "CorruptedJsonError",
    "FileReadError",
    "FileWriteError",
    "LockTimeoutError",
    "LockReentryError",
    "TaskNotFoundError",
    "TagNotFoundError",
    "TagExistsError",
    "InvalidTaskIdError",
    "InvalidTagError",
    "InvalidStatusError",
    "UnsupportedOperationError",
    # Models
    "DEFAULT_TAG",
    "ENRICHMENT_FIELDS",
    "METADATA_VERSION",
    "LoadTasksOptions",
    "StorageStats",
    "Subtask",
    "TagStats",
    "Task",
    "TaskComplexity",
    "TaskMetadata",
    "UpdateStatusResult",
    "current_timestamp",
    # Status
    "DEFAULT_STATUS",
    "TASK_STATUSES",
    "TaskStatus",
    "derive_parent_status",
    "is_done_like",
    "normalize_task_status",
]
