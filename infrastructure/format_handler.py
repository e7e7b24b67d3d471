"""Shape handling for the tasks document.

Two on-disk shapes exist:

- standard: ``{"tasks": [...], "metadata": {...}}``, one implicit ``master`` tag;
- legacy: ``{"<tag>": {"tasks": [...], "metadata": {...}}, ...}``.

Raw JSON is parsed once into a tagged variant (StandardDocument or
LegacyDocument) and every later decision branches on that variant. No I/O here.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from core import (
    DEFAULT_TAG,
    METADATA_VERSION,
    CorruptedJsonError,
    InvalidTaskIdError,
    current_timestamp,
)

_STANDARD_KEYS = frozenset({"tasks", "metadata"})

# Top-level keys of the standard shape; a collection with one of these names
# would be indistinguishable from it.
RESERVED_TAG_NAMES = _STANDARD_KEYS


class DocumentFormat(str, Enum):
    STANDARD = "standard"
    LEGACY = "legacy"


@dataclass
class StandardDocument:
    tasks: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None
    present: bool = True  # False for an empty/absent document

    @property
    def format(self) -> DocumentFormat:
        return DocumentFormat.STANDARD


@dataclass
class LegacyDocument:
    collections: Dict[str, Any] = field(default_factory=dict)
    # top-level "tasks"/"metadata" keys found next to tag keys; kept verbatim
    stray: Dict[str, Any] = field(default_factory=dict)

    @property
    def format(self) -> DocumentFormat:
        return DocumentFormat.LEGACY


Document = Union[StandardDocument, LegacyDocument]


def _block_tasks(block: Any) -> List[Dict[str, Any]]:
    if isinstance(block, dict) and isinstance(block.get("tasks"), list):
        return block["tasks"]
    return []


def coerce_subtask_id(value: Any) -> int:
    """Subtask ids are integers; "3" and "5.3" both become 3."""
    if isinstance(value, bool):
        raise InvalidTaskIdError(f"Invalid subtask id {value!r}: must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    token = str(value if value is not None else "").strip()
    if "." in token:
        token = token.rsplit(".", 1)[1]
    if token.isdigit():
        return int(token)
    raise InvalidTaskIdError(f"Invalid subtask id {value!r}: must be an integer", details={"subtask_id": value})


def coerce_task_id(value: Any) -> str:
    if value is None or isinstance(value, bool) or str(value).strip() == "":
        raise InvalidTaskIdError(f"Invalid task id {value!r}", details={"task_id": value})
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


class FormatHandler:
    def parse(self, data: Any) -> Document:
        if isinstance(data, (StandardDocument, LegacyDocument)):
            return data
        if data is None:
            return StandardDocument(tasks=[], metadata=None, present=False)
        if not isinstance(data, dict):
            raise CorruptedJsonError(
                "tasks document", f"top-level value must be an object, got {type(data).__name__}"
            )
        if any(key not in _STANDARD_KEYS for key in data):
            collections = {k: v for k, v in data.items() if k not in _STANDARD_KEYS}
            stray = {k: v for k, v in data.items() if k in _STANDARD_KEYS}
            return LegacyDocument(collections=collections, stray=stray)
        tasks = data.get("tasks")
        metadata = data.get("metadata")
        return StandardDocument(
            tasks=tasks if isinstance(tasks, list) else [],
            metadata=metadata if isinstance(metadata, dict) else None,
            present=bool(data),
        )

    def to_raw(self, document: Document) -> Dict[str, Any]:
        if isinstance(document, LegacyDocument):
            raw: Dict[str, Any] = dict(document.collections)
            for key, value in document.stray.items():
                raw.setdefault(key, value)
            return raw
        return {"tasks": list(document.tasks), "metadata": dict(document.metadata or {})}

    def detect_format(self, data: Any) -> DocumentFormat:
        return self.parse(data).format

    def _resolve_tag(self, document: LegacyDocument, tag: str) -> Optional[str]:
        if tag in document.collections:
            return tag
        # Heuristic: documents created under another default tag name still
        # answer "master" reads with their first collection.
        if tag == DEFAULT_TAG and document.collections:
            return next(iter(document.collections))
        return None

    def effective_tag(self, data: Any, tag: Optional[str] = None) -> str:
        """Name of the collection a read of ``tag`` would actually use."""
        document = self.parse(data)
        requested = tag or DEFAULT_TAG
        if isinstance(document, LegacyDocument):
            return self._resolve_tag(document, requested) or requested
        return requested

    def extract_tasks(self, data: Any, tag: str = DEFAULT_TAG) -> List[Dict[str, Any]]:
        document = self.parse(data)
        if isinstance(document, LegacyDocument):
            name = self._resolve_tag(document, tag or DEFAULT_TAG)
            return _block_tasks(document.collections[name]) if name is not None else []
        return document.tasks

    def extract_metadata(self, data: Any, tag: str = DEFAULT_TAG) -> Optional[Dict[str, Any]]:
        document = self.parse(data)
        if isinstance(document, LegacyDocument):
            name = self._resolve_tag(document, tag or DEFAULT_TAG)
            if name is None:
                return None
            block = document.collections[name]
            if not isinstance(block, dict):
                return None
            if not isinstance(block.get("metadata"), dict) and isinstance(block.get("tasks"), list):
                return self.generate_metadata(block["tasks"], name)
            return block.get("metadata")
        return document.metadata

    def extract_tags(self, data: Any) -> List[str]:
        document = self.parse(data)
        if isinstance(document, LegacyDocument):
            return list(document.collections)
        return [DEFAULT_TAG] if document.present else []

    def has_tag(self, data: Any, tag: str) -> bool:
        """Exact existence check, without the master fallback."""
        document = self.parse(data)
        if isinstance(document, LegacyDocument):
            return tag in document.collections
        return tag == DEFAULT_TAG and document.present

    def convert_to_save_format(
        self,
        tasks: List[Dict[str, Any]],
        metadata: Dict[str, Any],
        existing: Any,
        tag: str = DEFAULT_TAG,
    ) -> Document:
        """Merge one tag's tasks into ``existing`` keeping its shape.

        A standard document written under a tag other than master is promoted
        to legacy, with the previous master content kept under "master".
        """
        resolved = tag or DEFAULT_TAG
        normalized = self.normalize_tasks(tasks)
        block_metadata = {**(metadata or {}), "tags": [resolved]}
        document = self.parse(existing)

        if isinstance(document, LegacyDocument):
            collections = dict(document.collections)
            previous = collections.get(resolved)
            block = dict(previous) if isinstance(previous, dict) else {}
            block["tasks"] = normalized
            block["metadata"] = block_metadata
            collections[resolved] = block
            return LegacyDocument(collections=collections, stray=dict(document.stray))

        if resolved == DEFAULT_TAG:
            return StandardDocument(tasks=normalized, metadata=block_metadata, present=True)

        collections: Dict[str, Any] = {}
        if document.present:
            master_metadata = document.metadata
            if master_metadata is None:
                master_metadata = self.generate_metadata(document.tasks, DEFAULT_TAG)
            collections[DEFAULT_TAG] = {"tasks": document.tasks, "metadata": master_metadata}
        collections[resolved] = {"tasks": normalized, "metadata": block_metadata}
        return LegacyDocument(collections=collections)

    def normalize_tasks(self, tasks: Optional[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
        """Task ids/dependencies become strings, subtask ids integers.

        Returns new dicts; the input list is left untouched.
        """
        normalized: List[Dict[str, Any]] = []
        for task in tasks or []:
            item = dict(task)
            task_id = coerce_task_id(item.get("id"))
            item["id"] = task_id
            item["dependencies"] = [str(dep) for dep in item.get("dependencies") or []]
            subtasks = []
            for subtask in item.get("subtasks") or []:
                sub = dict(subtask)
                sub["id"] = coerce_subtask_id(sub.get("id"))
                sub["parentId"] = task_id
                subtasks.append(sub)
            item["subtasks"] = subtasks
            normalized.append(item)
        return normalized

    def generate_metadata(
        self,
        tasks: List[Dict[str, Any]],
        tag: str,
        base: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        metadata = dict(base or {})
        metadata.update(
            {
                "version": METADATA_VERSION,
                "lastModified": current_timestamp(),
                "taskCount": len(tasks),
                "completedCount": sum(1 for t in tasks if t.get("status") == "done"),
                "tags": [tag],
            }
        )
        return metadata


__all__ = [
    "Document",
    "DocumentFormat",
    "FormatHandler",
    "LegacyDocument",
    "RESERVED_TAG_NAMES",
    "StandardDocument",
    "coerce_subtask_id",
    "coerce_task_id",
]
