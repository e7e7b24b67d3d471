from typing import Any, Final, Iterable, List, Literal, Mapping, Optional

from .errors import InvalidStatusError


TaskStatus = Literal["pending", "in-progress", "done", "deferred", "cancelled", "blocked", "review"]

TASK_STATUSES: Final[tuple[str, ...]] = (
    "pending",
    "in-progress",
    "done",
    "deferred",
    "cancelled",
    "blocked",
    "review",
)

# "completed" is still found in older documents and counts as done.
_ACCEPTED_STATUSES: Final[frozenset[str]] = frozenset(TASK_STATUSES) | {"completed"}
_DONE_LIKE: Final[frozenset[str]] = frozenset({"done", "completed"})

DEFAULT_STATUS: Final[str] = "pending"


def normalize_task_status(value: str) -> str:
    """Normalize status input to the stored token.

    Accepts any casing and underscores/spaces in place of hyphens
    ("In Progress", "in_progress" -> "in-progress").
    """
    token = (value or "").strip().lower().replace("_", "-").replace(" ", "-")
    if token not in _ACCEPTED_STATUSES:
        raise InvalidStatusError(
            f"Invalid task status: {value!r}. Expected one of: {', '.join(TASK_STATUSES)}",
            details={"status": value},
        )
    return token


def is_done_like(status: Any) -> bool:
    return (status or DEFAULT_STATUS) in _DONE_LIKE


def derive_parent_status(subtasks: Iterable[Mapping[str, Any]], current: Optional[str]) -> Optional[str]:
    """Return the parent status implied by its subtasks.

    all done/completed -> done; any in-progress or any done -> in-progress;
    all pending -> pending; anything else keeps ``current``.
    """
    statuses: List[str] = [sub.get("status") or DEFAULT_STATUS for sub in subtasks]
    if not statuses:
        return current
    if all(s in _DONE_LIKE for s in statuses):
        return "done"
    if any(s == "in-progress" or s in _DONE_LIKE for s in statuses):
        return "in-progress"
    if all(s == "pending" for s in statuses):
        return "pending"
    return current


__all__ = [
    "TaskStatus",
    "TASK_STATUSES",
    "DEFAULT_STATUS",
    "normalize_task_status",
    "is_done_like",
    "derive_parent_status",
]
