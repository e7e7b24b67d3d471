import pytest

from core import CorruptedJsonError, InvalidTaskIdError
from infrastructure.format_handler import (
    DocumentFormat,
    FormatHandler,
    LegacyDocument,
    StandardDocument,
    coerce_subtask_id,
)


@pytest.fixture
def handler() -> FormatHandler:
    return FormatHandler()


def test_detect_format(handler: FormatHandler):
    assert handler.detect_format({"tasks": [], "metadata": {}}) == DocumentFormat.STANDARD
    assert handler.detect_format({}) == DocumentFormat.STANDARD
    assert handler.detect_format({"master": {"tasks": []}}) == DocumentFormat.LEGACY
    # A stray top-level key next to tag keys is still legacy.
    assert handler.detect_format({"tasks": [], "feature": {"tasks": []}}) == DocumentFormat.LEGACY


def test_parse_rejects_non_object_documents(handler: FormatHandler):
    with pytest.raises(CorruptedJsonError):
        handler.parse([1, 2, 3])


def test_empty_standard_document_has_no_tags(handler: FormatHandler):
    empty = handler.parse({})
    assert isinstance(empty, StandardDocument)
    assert empty.present is False
    assert handler.extract_tags(empty) == []
    assert handler.has_tag(empty, "master") is False
    assert handler.extract_tags({"tasks": []}) == ["master"]


def test_master_read_falls_back_to_first_collection(handler: FormatHandler):
    data = {"feature": {"tasks": [{"id": "1"}]}, "other": {"tasks": [{"id": "2"}]}}

    assert handler.extract_tasks(data, "master") == [{"id": "1"}]
    assert handler.effective_tag(data, "master") == "feature"
    assert handler.has_tag(data, "master") is False
    assert handler.extract_tasks(data, "missing") == []
    assert handler.effective_tag(data, "missing") == "missing"


def test_legacy_block_without_metadata_gets_generated_metadata(handler: FormatHandler):
    data = {"feature": {"tasks": [{"id": "1", "status": "done"}, {"id": "2"}]}}

    metadata = handler.extract_metadata(data, "feature")
    assert metadata["taskCount"] == 2
    assert metadata["completedCount"] == 1
    assert metadata["tags"] == ["feature"]
    assert handler.extract_metadata(data, "nope") is None


def test_save_to_master_keeps_standard(handler: FormatHandler):
    existing = {"tasks": [{"id": "1"}], "metadata": {"version": "1.0.0"}}
    document = handler.convert_to_save_format([{"id": 2}], {"taskCount": 1}, existing, "master")

    assert isinstance(document, StandardDocument)
    raw = handler.to_raw(document)
    assert set(raw) == {"tasks", "metadata"}
    assert raw["tasks"][0]["id"] == "2"
    assert raw["metadata"]["tags"] == ["master"]


def test_save_to_other_tag_promotes_standard_to_legacy(handler: FormatHandler):
    existing = {"tasks": [{"id": "1", "title": "kept"}], "metadata": {"version": "1.0.0", "note": "x"}}
    document = handler.convert_to_save_format([{"id": 5}], {}, existing, "feature")

    assert isinstance(document, LegacyDocument)
    raw = handler.to_raw(document)
    assert list(raw) == ["master", "feature"]
    assert raw["master"] == {"tasks": [{"id": "1", "title": "kept"}], "metadata": {"version": "1.0.0", "note": "x"}}
    assert raw["feature"]["tasks"][0]["id"] == "5"
    assert raw["feature"]["metadata"]["tags"] == ["feature"]


def test_promoting_an_empty_document_does_not_invent_master(handler: FormatHandler):
    raw = handler.to_raw(handler.convert_to_save_format([{"id": 1}], {}, {}, "feature"))
    assert list(raw) == ["feature"]


def test_legacy_save_replaces_only_its_block(handler: FormatHandler):
    existing = {
        "master": {"tasks": [{"id": "1"}], "metadata": {"tags": ["master"]}},
        "feature": {"tasks": [], "metadata": {}, "extra": "kept"},
    }
    raw = handler.to_raw(handler.convert_to_save_format([{"id": 9}], {"taskCount": 1}, existing, "feature"))

    assert raw["master"] == existing["master"]
    assert raw["feature"]["extra"] == "kept"
    assert raw["feature"]["tasks"][0]["id"] == "9"


def test_normalize_tasks_coerces_ids(handler: FormatHandler):
    tasks = [{"id": 1, "dependencies": [2, "3"], "subtasks": [{"id": "2"}, {"id": "1.3", "parentId": 7}]}]

    normalized = handler.normalize_tasks(tasks)

    assert normalized == [
        {
            "id": "1",
            "dependencies": ["2", "3"],
            "subtasks": [{"id": 2, "parentId": "1"}, {"id": 3, "parentId": "1"}],
        }
    ]
    # Input untouched.
    assert tasks[0]["id"] == 1
    assert tasks[0]["subtasks"][1] == {"id": "1.3", "parentId": 7}


def test_normalize_rejects_non_numeric_subtask_ids(handler: FormatHandler):
    with pytest.raises(InvalidTaskIdError):
        handler.normalize_tasks([{"id": "1", "subtasks": [{"id": "abc"}]}])
    with pytest.raises(InvalidTaskIdError):
        handler.normalize_tasks([{"title": "no id"}])


def test_coerce_subtask_id():
    assert coerce_subtask_id(4) == 4
    assert coerce_subtask_id(" 7 ") == 7
    assert coerce_subtask_id("12.3") == 3
    with pytest.raises(InvalidTaskIdError):
        coerce_subtask_id(True)


def test_generate_metadata_carries_base_keys(handler: FormatHandler):
    metadata = handler.generate_metadata(
        [{"status": "done"}, {"status": "pending"}], "feature", base={"description": "d", "taskCount": 99}
    )
    assert metadata["description"] == "d"
    assert metadata["taskCount"] == 2
    assert metadata["completedCount"] == 1
    assert metadata["tags"] == ["feature"]
    assert metadata["version"] == "1.0.0"
    assert metadata["lastModified"].endswith("Z")
