from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

USER_CONFIG_PATH = Path.home() / ".taskmaster_store.yaml"

DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_LOCK_STALE_AFTER = 10.0
DEFAULT_LOCK_RETRY_DELAY = 0.05
DEFAULT_LOCK_MAX_RETRY_DELAY = 1.0

_ENV_OVERRIDES = {
    "lock_timeout": "TASKMASTER_LOCK_TIMEOUT",
    "lock_stale_after": "TASKMASTER_LOCK_STALE_AFTER",
    "lock_retry_delay": "TASKMASTER_LOCK_RETRY_DELAY",
    "lock_max_retry_delay": "TASKMASTER_LOCK_MAX_RETRY_DELAY",
}


@dataclass(frozen=True)
class LockSettings:
    timeout: float = DEFAULT_LOCK_TIMEOUT
    stale_after: float = DEFAULT_LOCK_STALE_AFTER
    retry_delay: float = DEFAULT_LOCK_RETRY_DELAY
    max_retry_delay: float = DEFAULT_LOCK_MAX_RETRY_DELAY


def _config_path() -> Path:
    override = os.environ.get("TASKMASTER_STORE_CONFIG")
    if override:
        return Path(override).expanduser()
    return USER_CONFIG_PATH


def _load_config() -> Dict[str, Any]:
    path = _config_path()
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError):
        return {}
    return data if isinstance(data, dict) else {}


def _save_config(data: Dict[str, Any]) -> None:
    path = _config_path()
    if not data:
        if path.exists():
            path.unlink()
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, allow_unicode=True), encoding="utf-8")


def get_config_value(key: str, default: Any = None) -> Any:
    return _load_config().get(key, default)


def set_config_value(key: str, value: Any) -> None:
    data = _load_config()
    if value is None or (isinstance(value, str) and not value.strip()):
        data.pop(key, None)
    else:
        data[key] = value
    _save_config(data)


def _positive_float(key: str, default: float) -> float:
    """Env var beats config file beats default; junk values fall back."""
    raw: Any = os.environ.get(_ENV_OVERRIDES[key])
    if raw is None or str(raw).strip() == "":
        raw = get_config_value(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def get_lock_timeout_seconds() -> float:
    return _positive_float("lock_timeout", DEFAULT_LOCK_TIMEOUT)


def get_lock_stale_seconds() -> float:
    return _positive_float("lock_stale_after", DEFAULT_LOCK_STALE_AFTER)


def get_lock_retry_delay_seconds() -> float:
    return _positive_float("lock_retry_delay", DEFAULT_LOCK_RETRY_DELAY)


def get_lock_max_retry_delay_seconds() -> float:
    return _positive_float("lock_max_retry_delay", DEFAULT_LOCK_MAX_RETRY_DELAY)


def load_lock_settings() -> LockSettings:
    return LockSettings(
        timeout=get_lock_timeout_seconds(),
        stale_after=get_lock_stale_seconds(),
        retry_delay=get_lock_retry_delay_seconds(),
        max_retry_delay=get_lock_max_retry_delay_seconds(),
    )
