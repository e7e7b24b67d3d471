"""Task shapes and result types shared by the storage layers.

Tasks travel through the store as plain JSON dicts; the TypedDicts below only
document the keys the store itself reads or writes. Unknown keys are kept.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypedDict, Union


DEFAULT_TAG = "master"
METADATA_VERSION = "1.0.0"

# Read-time enrichment keys sourced from the complexity report.
ENRICHMENT_FIELDS = ("complexity", "recommendedSubtasks", "expansionPrompt", "complexityReasoning")


class Subtask(TypedDict, total=False):
    id: int
    title: str
    description: str
    status: str
    dependencies: List[Union[int, str]]
    parentId: str
    details: str
    testStrategy: str
    createdAt: str
    updatedAt: str


class Task(TypedDict, total=False):
    id: str
    title: str
    description: str
    status: str
    priority: str
    dependencies: List[str]
    details: str
    testStrategy: str
    subtasks: List[Subtask]
    tags: List[str]
    assignee: str
    createdAt: str
    updatedAt: str
    complexity: Any
    recommendedSubtasks: int
    expansionPrompt: str
    complexityReasoning: str


class TaskMetadata(TypedDict, total=False):
    version: str
    lastModified: str
    taskCount: int
    completedCount: int
    tags: List[str]


def current_timestamp() -> str:
    """ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class LoadTasksOptions:
    status: Optional[str] = None
    exclude_subtasks: bool = False


@dataclass
class UpdateStatusResult:
    success: bool
    old_status: str
    new_status: str
    task_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "oldStatus": self.old_status,
            "newStatus": self.new_status,
            "taskId": self.task_id,
        }


@dataclass
class TagStats:
    tag: str
    task_count: int
    last_modified: str

    def to_dict(self) -> Dict[str, Any]:
        return {"tag": self.tag, "taskCount": self.task_count, "lastModified": self.last_modified}


@dataclass
class StorageStats:
    total_tasks: int = 0
    total_tags: int = 0
    storage_size: int = 0
    last_modified: str = field(default_factory=current_timestamp)
    tag_stats: List[TagStats] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalTasks": self.total_tasks,
            "totalTags": self.total_tags,
            "storageSize": self.storage_size,
            "lastModified": self.last_modified,
            "tagStats": [t.to_dict() for t in self.tag_stats],
        }


@dataclass(frozen=True)
class TaskComplexity:
    """Complexity analysis for one task, as read from a complexity report."""

    complexity_score: Any
    recommended_subtasks: Optional[int] = None
    expansion_prompt: str = ""
    complexity_reasoning: str = ""

    def as_task_fields(self) -> Dict[str, Any]:
        return {
            "complexity": self.complexity_score,
            "recommendedSubtasks": self.recommended_subtasks,
            "expansionPrompt": self.expansion_prompt,
            "complexityReasoning": self.complexity_reasoning,
        }
