"""JSON file primitives: atomic replace and the locked read-modify-write.

``modify_json`` is the only way the store mutates a document:

    in-process path lock -> FileLock -> re-read -> modifier -> ownership check
    -> atomic write -> release both locks (also when the modifier raises)

``modify_json_async`` runs the same critical section in a worker thread for
callers already inside an event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from config import LockSettings, load_lock_settings
from core import (
    CorruptedJsonError,
    DocumentNotFoundError,
    FileReadError,
    FileWriteError,
    LockTimeoutError,
    UnsupportedOperationError,
)
from infrastructure.file_lock import FileLock, LockHandle, holds_lock

logger = logging.getLogger("task_store.file_ops")


class WriteAction(Enum):
    """Non-document results a modify_json modifier may return."""

    SKIP = "skip"  # leave the file exactly as it is
    DELETE = "delete"  # remove the file


Modifier = Callable[[Any], Any]

_Held = Tuple[threading.Lock, FileLock, LockHandle]


async def _as_coroutine(value: Any) -> Any:
    return await value


def _resolve_awaitable(value: Any) -> Any:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        pass
    else:
        if inspect.iscoroutine(value):
            value.close()
        raise UnsupportedOperationError(
            "modify_json cannot await an async modifier from inside a running event loop; "
            "use modify_json_async"
        )

    return asyncio.run(_as_coroutine(value))


def _serialize(path: Path, data: Any) -> str:
    try:
        content = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        raise FileWriteError(f"Failed to serialize data for {path}: {exc}", details={"path": str(path)}) from exc
    try:
        content.encode("utf-8")
    except UnicodeEncodeError:
        # Lone surrogates cannot be written as UTF-8; \u escapes round-trip them.
        content = json.dumps(data, indent=2, ensure_ascii=True)
    return content


class FileOperations:
    def __init__(self, lock_settings: Optional[LockSettings] = None) -> None:
        self.lock_settings = lock_settings or load_lock_settings()
        self._path_locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _path_lock(self, path: Path) -> threading.Lock:
        key = os.path.abspath(path)
        with self._registry_lock:
            lock = self._path_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._path_locks[key] = lock
            return lock

    # -- reading -----------------------------------------------------------

    def read_json(self, path: Path | str) -> Any:
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise DocumentNotFoundError(path) from None
        except (OSError, UnicodeDecodeError) as exc:
            raise FileReadError(f"Failed to read file {path}: {exc}", details={"path": str(path)}) from exc
        if not content.strip():
            return {}
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise CorruptedJsonError(path, str(exc)) from exc

    def _read_or_empty(self, path: Path) -> Any:
        try:
            return self.read_json(path)
        except DocumentNotFoundError:
            return {}

    # -- writing -----------------------------------------------------------

    def _atomic_write(self, path: Path, data: Any) -> None:
        content = _serialize(path, data)

        tmp_path: Optional[Path] = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                mode="w",
                encoding="utf-8",
                delete=False,
                dir=str(path.parent),
                prefix=f".{path.name}.",
                suffix=".tmp",
            ) as tmp:
                tmp_path = Path(tmp.name)
                tmp.write(content)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except (OSError, UnicodeError) as exc:
            raise FileWriteError(f"Failed to write file {path}: {exc}", details={"path": str(path)}) from exc
        finally:
            if tmp_path is not None:
                try:
                    tmp_path.unlink(missing_ok=True)
                except OSError:
                    logger.warning("Could not remove temp file %s", tmp_path)

    def write_json(self, path: Path | str, data: Any) -> None:
        """Replace ``path`` atomically. Serialized against in-process writers."""
        path = Path(path)
        lock = self._path_lock(path)
        if not lock.acquire(timeout=self.lock_settings.timeout):
            raise LockTimeoutError(f"Timed out waiting for in-process lock on {path}", details={"path": str(path)})
        try:
            self._atomic_write(path, data)
        finally:
            lock.release()

    # -- critical section --------------------------------------------------

    def _acquire(self, path: Path) -> _Held:
        thread_lock = self._path_lock(path)
        if not thread_lock.acquire(timeout=self.lock_settings.timeout):
            raise LockTimeoutError(
                f"Timed out after {self.lock_settings.timeout:.2f}s waiting for in-process lock on {path}",
                details={"path": str(path)},
            )
        try:
            file_lock = FileLock(
                path,
                timeout=self.lock_settings.timeout,
                stale_after=self.lock_settings.stale_after,
                retry_delay=self.lock_settings.retry_delay,
                max_retry_delay=self.lock_settings.max_retry_delay,
            )
            handle = file_lock.acquire()
        except BaseException:
            thread_lock.release()
            raise
        return thread_lock, file_lock, handle

    def _release(self, held: _Held) -> None:
        thread_lock, file_lock, handle = held
        try:
            file_lock.release(handle)
        finally:
            thread_lock.release()

    @contextmanager
    def locked(self, path: Path | str) -> Iterator[LockHandle]:
        """Hold the in-process and cross-process locks for ``path``."""
        held = self._acquire(Path(path))
        try:
            yield held[2]
        finally:
            self._release(held)

    def _commit(self, path: Path, handle: LockHandle, result: Any) -> Any:
        if result is WriteAction.SKIP:
            logger.debug("modify_json(%s): no changes", path)
            return None
        if result is None:
            raise FileWriteError(
                f"Modifier for {path} returned None; return the new document or WriteAction.SKIP",
                details={"path": str(path)},
            )
        if not holds_lock(handle):
            raise LockTimeoutError(
                f"Lock on {path} was taken over while the modifier ran; result discarded",
                details={"path": str(path), "lock": str(handle.lock_path)},
            )
        if result is WriteAction.DELETE:
            self.delete_file(path)
            logger.debug("modify_json(%s): file removed", path)
            return None
        self._atomic_write(path, result)
        return result

    def modify_json(self, path: Path | str, modifier: Modifier) -> Any:
        """Locked read-modify-write of one JSON file.

        The file is re-read after the lock is taken; a missing or empty file
        reads as ``{}``. The modifier may return a new value, an awaitable
        resolving to one, or a WriteAction. If it raises, the file is left
        untouched and the error propagates once the lock is released. Nothing
        is written if the lock stopped being ours in the meantime.
        """
        path = Path(path)
        self.ensure_dir(path.parent)
        with self.locked(path) as handle:
            current = self._read_or_empty(path)
            result = modifier(current)
            if inspect.isawaitable(result):
                result = _resolve_awaitable(result)
            return self._commit(path, handle, result)

    async def modify_json_async(self, path: Path | str, modifier: Modifier) -> Any:
        """``modify_json`` for code running inside an event loop.

        The critical section runs in a worker thread, so waiting for the lock
        never blocks the loop. An async modifier is awaited back on the
        calling loop.
        """
        loop = asyncio.get_running_loop()

        def bridged(current: Any) -> Any:
            result = modifier(current)
            if inspect.isawaitable(result):
                return asyncio.run_coroutine_threadsafe(_as_coroutine(result), loop).result()
            return result

        return await asyncio.to_thread(self.modify_json, path, bridged)

    # -- filesystem helpers ------------------------------------------------

    def ensure_dir(self, path: Path | str) -> None:
        try:
            Path(path).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise FileWriteError(f"Failed to create directory {path}: {exc}", details={"path": str(path)}) from exc

    def exists(self, path: Path | str) -> bool:
        return Path(path).exists()

    def get_stats(self, path: Path | str) -> os.stat_result:
        try:
            return os.stat(path)
        except FileNotFoundError:
            raise DocumentNotFoundError(path) from None

    def read_dir(self, path: Path | str) -> List[str]:
        try:
            return sorted(os.listdir(path))
        except FileNotFoundError:
            raise DocumentNotFoundError(path) from None

    def delete_file(self, path: Path | str) -> None:
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise FileWriteError(f"Failed to delete file {path}: {exc}", details={"path": str(path)}) from exc

    def move_file(self, old_path: Path | str, new_path: Path | str) -> None:
        try:
            os.replace(old_path, new_path)
        except OSError as exc:
            raise FileWriteError(f"Failed to move file from {old_path} to {new_path}: {exc}") from exc

    def copy_file(self, src_path: Path | str, dest_path: Path | str) -> None:
        try:
            shutil.copy2(src_path, dest_path)
        except OSError as exc:
            raise FileWriteError(f"Failed to copy file from {src_path} to {dest_path}: {exc}") from exc

    def cleanup(self) -> None:
        """Drop cached per-path locks that nobody is holding."""
        with self._registry_lock:
            for key in [k for k, lock in self._path_locks.items() if not lock.locked()]:
                del self._path_locks[key]


__all__ = ["FileOperations", "WriteAction", "Modifier"]
