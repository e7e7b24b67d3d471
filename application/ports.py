from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Protocol

from core import LoadTasksOptions, StorageStats, TaskComplexity, UpdateStatusResult


class ComplexityProvider(Protocol):
    def get_complexity_for_tasks(self, task_ids: Iterable[Any], tag: Optional[str] = None) -> Mapping[str, TaskComplexity]:
        ...


class TaskStorage(Protocol):
    """Storage contract shared by the file engine and the remote API engine.

    Errors crossing this boundary are StoreError subclasses (see core.errors).
    """

    def initialize(self) -> None:
        ...

    def close(self) -> None:
        ...

    def load_tasks(self, tag: Optional[str] = None, options: Optional[LoadTasksOptions] = None) -> List[Dict[str, Any]]:
        ...

    def load_task(self, task_id: str, tag: Optional[str] = None) -> Optional[Dict[str, Any]]:
        ...

    def save_tasks(self, tasks: List[Dict[str, Any]], tag: Optional[str] = None) -> None:
        ...

    def append_tasks(self, tasks: List[Dict[str, Any]], tag: Optional[str] = None) -> None:
        ...

    def update_task(self, task_id: str, updates: Mapping[str, Any], tag: Optional[str] = None) -> None:
        ...

    def update_task_with_prompt(
        self,
        task_id: str,
        prompt: str,
        tag: Optional[str] = None,
        *,
        use_research: bool = False,
        mode: Literal["append", "update", "rewrite"] = "update",
    ) -> None:
        ...

    def update_task_status(self, task_id: str, new_status: str, tag: Optional[str] = None) -> UpdateStatusResult:
        ...

    def delete_task(self, task_id: str, tag: Optional[str] = None) -> None:
        ...

    def exists(self, tag: Optional[str] = None) -> bool:
        ...

    def load_metadata(self, tag: Optional[str] = None) -> Optional[Dict[str, Any]]:
        ...

    def save_metadata(self, metadata: Mapping[str, Any], tag: Optional[str] = None) -> None:
        ...

    def get_all_tags(self) -> List[str]:
        ...

    def delete_tag(self, tag: str) -> None:
        ...

    def rename_tag(self, old_tag: str, new_tag: str) -> None:
        ...

    def copy_tag(self, source_tag: str, target_tag: str) -> None:
        ...

    def get_stats(self) -> StorageStats:
        ...

    def get_storage_type(self) -> Literal["file", "api"]:
        ...

    def get_current_brief_name(self) -> Optional[str]:
        ...
