"""Errors raised by the task store.

Every error that can cross the storage boundary derives from StoreError and
carries a stable ``code`` so callers can branch on it without caring which
storage engine produced it.
"""

from typing import Any, Dict, Optional


class StoreError(RuntimeError):
    code = "STORAGE_ERROR"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details: Dict[str, Any] = dict(details or {})


class DocumentNotFoundError(StoreError):
    code = "FILE_NOT_FOUND"

    def __init__(self, path: Any) -> None:
        super().__init__(f"File not found: {path}", details={"path": str(path)})
        self.path = str(path)


class CorruptedJsonError(StoreError):
    code = "JSON_PARSE_ERROR"

    def __init__(self, path: Any, reason: str) -> None:
        super().__init__(f"Corrupted JSON in {path}: {reason}", details={"path": str(path)})
        self.path = str(path)


class FileReadError(StoreError):
    code = "FILE_READ_ERROR"


class FileWriteError(StoreError):
    code = "FILE_WRITE_ERROR"


class LockTimeoutError(StoreError):
    code = "LOCK_TIMEOUT"


class LockReentryError(StoreError):
    code = "LOCK_REENTRY"


class TaskNotFoundError(StoreError):
    code = "TASK_NOT_FOUND"

    def __init__(self, operation: str, task_id: str, *, tag: Optional[str] = None, detail: str = "") -> None:
        message = f"{operation}: task {task_id} not found"
        if detail:
            message = f"{operation}: {detail}"
        if tag:
            message += f" (tag '{tag}')"
        super().__init__(message, details={"operation": operation, "task_id": task_id, "tag": tag})
        self.task_id = task_id


class TagNotFoundError(StoreError):
    code = "TAG_NOT_FOUND"

    def __init__(self, operation: str, tag: str, detail: str = "") -> None:
        message = f"{operation}: tag '{tag}' not found"
        if detail:
            message += f" - {detail}"
        super().__init__(message, details={"operation": operation, "tag": tag})
        self.tag = tag


class TagExistsError(StoreError):
    code = "TAG_EXISTS"

    def __init__(self, operation: str, tag: str) -> None:
        super().__init__(f"{operation}: tag '{tag}' already exists", details={"operation": operation, "tag": tag})
        self.tag = tag


class InvalidTaskIdError(StoreError):
    code = "INVALID_INPUT"


class InvalidTagError(StoreError):
    code = "INVALID_INPUT"

    def __init__(self, operation: str, tag: str, reason: str) -> None:
        super().__init__(
            f"{operation}: invalid tag name '{tag}' - {reason}", details={"operation": operation, "tag": tag}
        )
        self.tag = tag


class InvalidStatusError(StoreError):
    code = "TASK_STATUS_ERROR"


class UnsupportedOperationError(StoreError):
    code = "NOT_IMPLEMENTED"


__all__ = [
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
]
