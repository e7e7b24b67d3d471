from pathlib import Path

import pytest

from config import LockSettings
from infrastructure.file_operations import FileOperations

LOCK_ENV_VARS = (
    "TASKMASTER_LOCK_TIMEOUT",
    "TASKMASTER_LOCK_STALE_AFTER",
    "TASKMASTER_LOCK_RETRY_DELAY",
    "TASKMASTER_LOCK_MAX_RETRY_DELAY",
)

FAST_LOCKS = LockSettings(timeout=30.0, stale_after=30.0, retry_delay=0.005, max_retry_delay=0.05)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    # Keep the user's ~/.taskmaster_store.yaml and shell env out of every test.
    config_path = tmp_path / "store-config.yaml"
    monkeypatch.setenv("TASKMASTER_STORE_CONFIG", str(config_path))
    for name in LOCK_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return config_path


@pytest.fixture
def lock_settings() -> LockSettings:
    return FAST_LOCKS


@pytest.fixture
def file_ops(lock_settings: LockSettings) -> FileOperations:
    return FileOperations(lock_settings)
