"""File-backed implementation of the TaskStorage contract.

All tags of a project live in one ``.taskmaster/tasks/tasks.json``. Reads are
unlocked; every mutation is a single ``FileOperations.modify_json`` critical
section, so the document is re-read under the lock and merged, never written
from a stale in-memory copy.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple, Union

from core import (
    DEFAULT_STATUS,
    DEFAULT_TAG,
    ENRICHMENT_FIELDS,
    DocumentNotFoundError,
    InvalidTagError,
    InvalidTaskIdError,
    LoadTasksOptions,
    StorageStats,
    TagExistsError,
    TagNotFoundError,
    TagStats,
    TaskNotFoundError,
    UnsupportedOperationError,
    UpdateStatusResult,
    current_timestamp,
    derive_parent_status,
    normalize_task_status,
)
from application.ports import ComplexityProvider, TaskStorage
from infrastructure.complexity_reports import ComplexityReportManager
from infrastructure.file_operations import FileOperations, WriteAction
from infrastructure.format_handler import (
    RESERVED_TAG_NAMES,
    Document,
    FormatHandler,
    LegacyDocument,
    StandardDocument,
)
from infrastructure.path_resolver import PathResolver, resolve_project_root

logger = logging.getLogger("task_store.storage")

# Recomputed on every write; caller-supplied values are ignored.
COMPUTED_METADATA_KEYS = frozenset({"version", "lastModified", "taskCount", "completedCount", "tags"})

MutationResult = Union[Document, WriteAction]


def _strip_enrichment(task: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in task.items() if key not in ENRICHMENT_FIELDS}


def _index_of(tasks: List[Dict[str, Any]], task_id: str) -> Optional[int]:
    for idx, task in enumerate(tasks):
        if str(task.get("id")) == task_id:
            return idx
    return None


def _split_subtask_id(task_id: str) -> Tuple[str, str]:
    parent_id, _, sub_id = task_id.partition(".")
    parent_id, sub_id = parent_id.strip(), sub_id.strip()
    if not parent_id or not sub_id.isdigit():
        raise InvalidTaskIdError(
            f"Invalid subtask id: {task_id}. Expected format: parentId.subtaskId",
            details={"task_id": task_id},
        )
    return parent_id, str(int(sub_id))


def _check_tag_name(operation: str, tag: str) -> None:
    if tag in RESERVED_TAG_NAMES:
        raise InvalidTagError(operation, tag, "reserved by the tasks file format")


class FileStorage(TaskStorage):
    def __init__(
        self,
        project_path: Path | str | None = None,
        *,
        file_ops: Optional[FileOperations] = None,
        complexity_provider: Optional[ComplexityProvider] = None,
    ) -> None:
        root = Path(project_path) if project_path is not None else resolve_project_root()
        self.paths = PathResolver(root)
        self.format_handler = FormatHandler()
        self.file_ops = file_ops or FileOperations()
        self.complexity_provider = (
            complexity_provider if complexity_provider is not None else ComplexityReportManager(root)
        )

    @property
    def tasks_path(self) -> Path:
        return self.paths.tasks_path

    # -- lifecycle ---------------------------------------------------------

    def initialize(self) -> None:
        self.file_ops.ensure_dir(self.paths.tasks_dir)

    def close(self) -> None:
        self.file_ops.cleanup()
        clear_cache = getattr(self.complexity_provider, "clear_cache", None)
        if callable(clear_cache):
            clear_cache()

    def get_storage_type(self) -> Literal["file"]:
        return "file"

    def get_current_brief_name(self) -> None:
        return None

    # -- internals ---------------------------------------------------------

    def _read_document(self) -> Optional[Document]:
        try:
            raw = self.file_ops.read_json(self.tasks_path)
        except DocumentNotFoundError:
            return None
        return self.format_handler.parse(raw)

    def _mutate(self, operation: str, mutate: Callable[[Document], MutationResult]) -> None:
        """Run ``mutate`` against the freshly read document under the lock."""

        def modifier(raw: Any) -> Any:
            result = mutate(self.format_handler.parse(raw))
            if isinstance(result, WriteAction):
                return result
            return self.format_handler.to_raw(result)

        self.file_ops.modify_json(self.tasks_path, modifier)
        logger.debug("%s committed to %s", operation, self.tasks_path)

    def _collection_tasks(self, document: Document, tag: str) -> List[Dict[str, Any]]:
        # A standard document only holds master.
        if isinstance(document, StandardDocument) and tag != DEFAULT_TAG:
            return []
        return self.format_handler.extract_tasks(document, tag)

    def _existing_metadata(self, document: Document, tag: str) -> Optional[Dict[str, Any]]:
        if not self.format_handler.has_tag(document, tag):
            return None
        return self.format_handler.extract_metadata(document, tag)

    def _merge_tasks(
        self,
        document: Document,
        tasks: List[Dict[str, Any]],
        tag: str,
        metadata_overrides: Optional[Mapping[str, Any]] = None,
    ) -> Document:
        cleaned = [_strip_enrichment(task) for task in tasks]
        base = dict(self._existing_metadata(document, tag) or {})
        base.update(metadata_overrides or {})
        metadata = self.format_handler.generate_metadata(cleaned, tag, base=base)
        return self.format_handler.convert_to_save_format(cleaned, metadata, document, tag)

    def _mutate_collection(
        self,
        operation: str,
        tag: Optional[str],
        apply: Callable[[List[Dict[str, Any]], str], Optional[WriteAction]],
    ) -> None:
        """Edit one collection's task list in place; WriteAction.SKIP skips the write."""
        requested = tag or DEFAULT_TAG
        _check_tag_name(operation, requested)

        def mutate(document: Document) -> MutationResult:
            name = self.format_handler.effective_tag(document, requested)
            tasks = list(self._collection_tasks(document, name))
            if apply(tasks, name) is WriteAction.SKIP:
                return WriteAction.SKIP
            return self._merge_tasks(document, tasks, name)

        self._mutate(operation, mutate)

    def _enrich_with_complexity(self, tasks: List[Dict[str, Any]], tag: str) -> List[Dict[str, Any]]:
        if not tasks:
            return tasks
        complexity = self.complexity_provider.get_complexity_for_tasks([t.get("id") for t in tasks], tag) or {}
        if not complexity:
            return tasks
        enriched = []
        for task in tasks:
            found = complexity.get(str(task.get("id")))
            enriched.append({**task, **found.as_task_fields()} if found is not None else task)
        return enriched

    # -- reads -------------------------------------------------------------

    def exists(self, tag: Optional[str] = None) -> bool:
        if tag is None:
            return self.file_ops.exists(self.tasks_path)
        document = self._read_document()
        return document is not None and self.format_handler.has_tag(document, tag)

    def load_tasks(self, tag: Optional[str] = None, options: Optional[LoadTasksOptions] = None) -> List[Dict[str, Any]]:
        resolved = tag or DEFAULT_TAG
        document = self._read_document()
        if document is None:
            return []
        tasks = [dict(task) for task in self._collection_tasks(document, resolved)]
        if options is not None:
            if options.status:
                tasks = [task for task in tasks if task.get("status") == options.status]
            if options.exclude_subtasks:
                tasks = [{**task, "subtasks": []} for task in tasks]
        return self._enrich_with_complexity(tasks, resolved)

    def load_task(self, task_id: Any, tag: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Find one task; ``"<parent>.<n>"`` returns a subtask viewed as a task."""
        task_id = str(task_id).strip()
        tasks = self.load_tasks(tag)
        if "." not in task_id:
            idx = _index_of(tasks, task_id)
            return tasks[idx] if idx is not None else None

        parent_id, _, sub_id = task_id.partition(".")
        idx = _index_of(tasks, parent_id)
        if idx is None:
            return None
        parent = tasks[idx]
        for subtask in parent.get("subtasks") or []:
            if str(subtask.get("id")) == sub_id:
                return self._subtask_view(task_id, sub_id, parent, subtask)
        return None

    def _subtask_view(
        self, task_id: str, sub_id: str, parent: Dict[str, Any], subtask: Dict[str, Any]
    ) -> Dict[str, Any]:
        parent_id = str(parent.get("id"))
        dependencies = [
            str(dep) if "." in str(dep) else f"{parent_id}.{dep}" for dep in subtask.get("dependencies") or []
        ]
        return {
            **subtask,
            "id": task_id,
            "title": subtask.get("title") or f"Subtask {sub_id}",
            "description": subtask.get("description") or "",
            "status": subtask.get("status") or DEFAULT_STATUS,
            "priority": subtask.get("priority") or parent.get("priority") or "medium",
            "dependencies": dependencies,
            "details": subtask.get("details") or "",
            "testStrategy": subtask.get("testStrategy") or "",
            "subtasks": [],
            "tags": subtask.get("tags") or parent.get("tags") or [],
            "assignee": subtask.get("assignee") or parent.get("assignee"),
            "complexity": subtask.get("complexity") or parent.get("complexity"),
            "createdAt": subtask.get("createdAt") or parent.get("createdAt"),
            "updatedAt": subtask.get("updatedAt") or parent.get("updatedAt"),
            "parentTask": {"id": parent_id, "title": parent.get("title"), "status": parent.get("status")},
            "isSubtask": True,
        }

    def get_all_tags(self) -> List[str]:
        document = self._read_document()
        return self.format_handler.extract_tags(document) if document is not None else []

    def load_metadata(self, tag: Optional[str] = None) -> Optional[Dict[str, Any]]:
        document = self._read_document()
        resolved = tag or DEFAULT_TAG
        if document is None or (isinstance(document, StandardDocument) and resolved != DEFAULT_TAG):
            return None
        return self.format_handler.extract_metadata(document, resolved)

    def get_stats(self) -> StorageStats:
        try:
            stat = self.file_ops.get_stats(self.tasks_path)
            raw = self.file_ops.read_json(self.tasks_path)
        except DocumentNotFoundError:
            return StorageStats()
        document = self.format_handler.parse(raw)
        file_modified = (
            datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc).isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

        tag_stats = []
        for tag in self.format_handler.extract_tags(document):
            metadata = self.format_handler.extract_metadata(document, tag) or {}
            tag_stats.append(
                TagStats(
                    tag=tag,
                    task_count=len(self.format_handler.extract_tasks(document, tag)),
                    last_modified=metadata.get("lastModified") or file_modified,
                )
            )
        return StorageStats(
            total_tasks=sum(item.task_count for item in tag_stats),
            total_tags=len(tag_stats),
            storage_size=stat.st_size,
            last_modified=file_modified,
            tag_stats=tag_stats,
        )

    # -- task mutations ----------------------------------------------------

    def save_tasks(self, tasks: List[Dict[str, Any]], tag: Optional[str] = None) -> None:
        snapshot = [dict(task) for task in tasks]

        def apply(current: List[Dict[str, Any]], name: str) -> None:
            current[:] = snapshot

        self._mutate_collection("save_tasks", tag, apply)

    def append_tasks(self, tasks: List[Dict[str, Any]], tag: Optional[str] = None) -> None:
        additions = [dict(task) for task in tasks]

        def apply(current: List[Dict[str, Any]], name: str) -> Optional[WriteAction]:
            if not additions:
                return WriteAction.SKIP
            current.extend(additions)
            return None

        self._mutate_collection("append_tasks", tag, apply)

    def update_task(self, task_id: Any, updates: Mapping[str, Any], tag: Optional[str] = None) -> None:
        task_id = str(task_id).strip()
        changes = dict(updates)

        def apply(current: List[Dict[str, Any]], name: str) -> None:
            idx = _index_of(current, task_id)
            if idx is None:
                raise TaskNotFoundError("update_task", task_id, tag=name)
            current[idx] = {**current[idx], **changes, "id": task_id}

        self._mutate_collection("update_task", tag, apply)

    def update_task_with_prompt(
        self,
        task_id: Any,
        prompt: str,
        tag: Optional[str] = None,
        *,
        use_research: bool = False,
        mode: Literal["append", "update", "rewrite"] = "update",
    ) -> None:
        raise UnsupportedOperationError(
            "File storage does not support update_task_with_prompt; process the prompt "
            "client-side and call update_task() with the resulting fields",
            details={"task_id": str(task_id), "operation": "update_task_with_prompt", "mode": mode},
        )

    def update_task_status(self, task_id: Any, new_status: str, tag: Optional[str] = None) -> UpdateStatusResult:
        status = normalize_task_status(new_status)
        task_id = str(task_id).strip()
        subtask_ref = _split_subtask_id(task_id) if "." in task_id else None
        outcome: Dict[str, UpdateStatusResult] = {}

        def apply(current: List[Dict[str, Any]], name: str) -> Optional[WriteAction]:
            if subtask_ref is None:
                result = self._apply_task_status(current, task_id, status, name)
            else:
                result = self._apply_subtask_status(current, task_id, subtask_ref, status, name)
            outcome["result"] = result
            if result.old_status == result.new_status:
                return WriteAction.SKIP
            return None

        self._mutate_collection("update_task_status", tag, apply)
        result = outcome["result"]
        if result.old_status != result.new_status:
            logger.debug("Task %s status %s -> %s", task_id, result.old_status, result.new_status)
        return result

    def _apply_task_status(
        self, tasks: List[Dict[str, Any]], task_id: str, status: str, tag: str
    ) -> UpdateStatusResult:
        idx = _index_of(tasks, task_id)
        if idx is None:
            raise TaskNotFoundError("update_task_status", task_id, tag=tag)
        old_status = tasks[idx].get("status") or DEFAULT_STATUS
        if old_status != status:
            tasks[idx] = {**tasks[idx], "status": status, "updatedAt": current_timestamp()}
        return UpdateStatusResult(success=True, old_status=old_status, new_status=status, task_id=task_id)

    def _apply_subtask_status(
        self,
        tasks: List[Dict[str, Any]],
        task_id: str,
        subtask_ref: Tuple[str, str],
        status: str,
        tag: str,
    ) -> UpdateStatusResult:
        parent_id, sub_id = subtask_ref
        pidx = _index_of(tasks, parent_id)
        if pidx is None:
            raise TaskNotFoundError("update_task_status", task_id, tag=tag, detail=f"parent task {parent_id} not found")
        parent = dict(tasks[pidx])
        subtasks = [dict(sub) for sub in parent.get("subtasks") or []]
        sidx = next((i for i, sub in enumerate(subtasks) if str(sub.get("id")) == sub_id), None)
        if sidx is None:
            raise TaskNotFoundError(
                "update_task_status", task_id, tag=tag, detail=f"subtask {task_id} not found in task {parent_id}"
            )

        old_status = subtasks[sidx].get("status") or DEFAULT_STATUS
        result = UpdateStatusResult(success=True, old_status=old_status, new_status=status, task_id=task_id)
        if old_status == status:
            return result

        now = current_timestamp()
        subtasks[sidx] = {**subtasks[sidx], "status": status, "updatedAt": now}
        parent["subtasks"] = subtasks
        current_parent_status = parent.get("status")
        derived = derive_parent_status(subtasks, current_parent_status)
        if derived != current_parent_status:
            parent["status"] = derived
        parent["updatedAt"] = now
        tasks[pidx] = parent
        return result

    def delete_task(self, task_id: Any, tag: Optional[str] = None) -> None:
        task_id = str(task_id).strip()

        def apply(current: List[Dict[str, Any]], name: str) -> None:
            idx = _index_of(current, task_id)
            if idx is None:
                raise TaskNotFoundError("delete_task", task_id, tag=name)
            del current[idx]

        self._mutate_collection("delete_task", tag, apply)

    # -- metadata ----------------------------------------------------------

    def save_metadata(self, metadata: Mapping[str, Any], tag: Optional[str] = None) -> None:
        requested = tag or DEFAULT_TAG
        _check_tag_name("save_metadata", requested)
        overrides = {key: value for key, value in metadata.items() if key not in COMPUTED_METADATA_KEYS}

        def mutate(document: Document) -> MutationResult:
            name = self.format_handler.effective_tag(document, requested)
            tasks = list(self._collection_tasks(document, name))
            return self._merge_tasks(document, tasks, name, metadata_overrides=overrides)

        self._mutate("save_metadata", mutate)

    # -- tag lifecycle -----------------------------------------------------

    def delete_tag(self, tag: str) -> None:
        def mutate(document: Document) -> MutationResult:
            if isinstance(document, LegacyDocument):
                if tag not in document.collections:
                    raise TagNotFoundError("delete_tag", tag)
                remaining = {name: block for name, block in document.collections.items() if name != tag}
                if not remaining:
                    return WriteAction.DELETE
                return LegacyDocument(collections=remaining, stray=dict(document.stray))
            if not document.present:
                raise TagNotFoundError("delete_tag", tag, "tasks file does not exist")
            if tag != DEFAULT_TAG:
                raise TagNotFoundError("delete_tag", tag, f"document only has '{DEFAULT_TAG}'")
            return WriteAction.DELETE

        self._mutate("delete_tag", mutate)
        logger.debug("Deleted tag '%s'", tag)

    def rename_tag(self, old_tag: str, new_tag: str) -> None:
        _check_tag_name("rename_tag", new_tag)

        def mutate(document: Document) -> MutationResult:
            if not self.format_handler.has_tag(document, old_tag):
                raise TagNotFoundError("rename_tag", old_tag)
            if old_tag == new_tag:
                return WriteAction.SKIP
            if self.format_handler.has_tag(document, new_tag):
                raise TagExistsError("rename_tag", new_tag)

            if isinstance(document, LegacyDocument):
                collections: Dict[str, Any] = {}
                for name, block in document.collections.items():
                    if name == old_tag:
                        block = dict(block) if isinstance(block, dict) else {"tasks": []}
                        if isinstance(block.get("metadata"), dict):
                            block["metadata"] = {**block["metadata"], "tags": [new_tag]}
                        name = new_tag
                    collections[name] = block
                return LegacyDocument(collections=collections, stray=dict(document.stray))

            metadata = document.metadata or self.format_handler.generate_metadata(document.tasks, new_tag)
            block = {"tasks": document.tasks, "metadata": {**metadata, "tags": [new_tag]}}
            return LegacyDocument(collections={new_tag: block})

        self._mutate("rename_tag", mutate)

    def copy_tag(self, source_tag: str, target_tag: str) -> None:
        _check_tag_name("copy_tag", target_tag)

        def mutate(document: Document) -> MutationResult:
            if not self.format_handler.has_tag(document, source_tag):
                raise TagNotFoundError("copy_tag", source_tag)
            if self.format_handler.has_tag(document, target_tag):
                raise TagExistsError("copy_tag", target_tag)
            tasks = copy.deepcopy(self.format_handler.extract_tasks(document, source_tag))
            source_metadata = self.format_handler.extract_metadata(document, source_tag) or {}
            overrides = {key: value for key, value in source_metadata.items() if key not in COMPUTED_METADATA_KEYS}
            return self._merge_tasks(document, tasks, target_tag, metadata_overrides=overrides)

        self._mutate("copy_tag", mutate)


__all__ = ["FileStorage", "COMPUTED_METADATA_KEYS"]
