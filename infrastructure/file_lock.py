"""Cross-process advisory lock backed by a sibling ``<file>.lock`` file.

The lock file is created with O_EXCL and records the owner (pid, host, a random
token, timestamp). A lock file whose mtime is older than ``stale_after`` seconds
belongs to a crashed holder and is reclaimed. Waiting is bounded by
``timeout``; exceeding it raises LockTimeoutError. While held, a heartbeat
thread keeps touching the lock file so a long critical section is never
mistaken for a crashed one.
"""

from __future__ import annotations

import json
import logging
import os
import random
import socket
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Set, Tuple

from config import (
    DEFAULT_LOCK_MAX_RETRY_DELAY,
    DEFAULT_LOCK_RETRY_DELAY,
    DEFAULT_LOCK_STALE_AFTER,
    DEFAULT_LOCK_TIMEOUT,
)
from core import LockReentryError, LockTimeoutError

logger = logging.getLogger("task_store.lock")

LOCK_SUFFIX = ".lock"

# (absolute lock path, thread id) pairs currently held in this process
_HELD: Set[Tuple[str, int]] = set()
_HELD_LOCK = threading.Lock()


def lock_path_for(target: Path | str) -> Path:
    target = Path(target)
    return target.with_name(target.name + LOCK_SUFFIX)


def _read_lock_info(path: Path) -> Optional[Dict[str, Any]]:
    """None when the file is gone, {} when it is unreadable or half-written."""
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


@dataclass
class LockHandle:
    target: Path
    lock_path: Path
    token: str
    pid: int
    acquired_at: float
    held_key: Tuple[str, int]
    released: bool = False
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)
    _heartbeat: Optional[threading.Thread] = field(default=None, repr=False)


def holds_lock(handle: LockHandle) -> bool:
    """True while the lock file on disk still carries this handle's token."""
    if handle.released:
        return False
    info = _read_lock_info(handle.lock_path)
    return bool(info) and info.get("token") == handle.token


class FileLock:
    def __init__(
        self,
        target: Path | str,
        *,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        stale_after: float = DEFAULT_LOCK_STALE_AFTER,
        retry_delay: float = DEFAULT_LOCK_RETRY_DELAY,
        max_retry_delay: float = DEFAULT_LOCK_MAX_RETRY_DELAY,
    ) -> None:
        self.target = Path(target)
        self.lock_path = lock_path_for(self.target)
        self.timeout = timeout
        self.stale_after = stale_after
        self.retry_delay = retry_delay
        self.max_retry_delay = max(max_retry_delay, retry_delay)
        self._handle: Optional[LockHandle] = None

    def _held_key(self) -> Tuple[str, int]:
        return os.path.abspath(self.lock_path), threading.get_ident()

    def acquire(self) -> LockHandle:
        key = self._held_key()
        with _HELD_LOCK:
            if key in _HELD:
                raise LockReentryError(
                    f"Lock {self.lock_path} is already held by this thread; nested acquisition would deadlock",
                    details={"path": str(self.lock_path)},
                )

        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex
        deadline = time.monotonic() + self.timeout
        delay = self.retry_delay
        attempts = 0
        while True:
            attempts += 1
            if self._try_create(token):
                break
            if self._reclaim_if_stale():
                continue
            now = time.monotonic()
            if now >= deadline:
                holder = _read_lock_info(self.lock_path) or {}
                message = f"Timed out after {self.timeout:.2f}s waiting for lock {self.lock_path}"
                if holder.get("pid"):
                    message += f" (held by pid {holder.get('pid')} on {holder.get('host', '?')})"
                raise LockTimeoutError(
                    message,
                    details={"path": str(self.lock_path), "timeout": self.timeout, "attempts": attempts, "holder": holder},
                )
            time.sleep(min(delay + random.uniform(0, delay), deadline - now))
            delay = min(delay * 2, self.max_retry_delay)

        handle = LockHandle(
            target=self.target,
            lock_path=self.lock_path,
            token=token,
            pid=os.getpid(),
            acquired_at=time.time(),
            held_key=key,
        )
        with _HELD_LOCK:
            _HELD.add(key)
        self._start_heartbeat(handle)
        logger.debug("Acquired lock %s after %d attempt(s)", self.lock_path, attempts)
        return handle

    def _start_heartbeat(self, handle: LockHandle) -> None:
        interval = max(self.stale_after / 3, 0.01)
        thread = threading.Thread(
            target=self._refresh_loop,
            args=(handle, interval),
            name=f"lock-heartbeat:{self.lock_path.name}",
            daemon=True,
        )
        handle._heartbeat = thread
        thread.start()

    def _refresh_loop(self, handle: LockHandle, interval: float) -> None:
        while not handle._stop.wait(interval):
            if not holds_lock(handle):
                logger.warning("Lost lock %s while holding it; heartbeat stopped", handle.lock_path)
                return
            try:
                os.utime(handle.lock_path)
            except FileNotFoundError:
                return
            except OSError as exc:
                logger.warning("Could not refresh lock %s: %s", handle.lock_path, exc)

    def _try_create(self, token: str) -> bool:
        payload = json.dumps(
            {"pid": os.getpid(), "host": socket.gethostname(), "token": token, "timestamp": time.time()}
        ).encode("utf-8")
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        try:
            os.write(fd, payload)
        except OSError:
            os.close(fd)
            self.lock_path.unlink(missing_ok=True)
            raise
        os.close(fd)
        return True

    def _reclaim_if_stale(self) -> bool:
        """Remove an expired lock file. True means "retry immediately"."""
        try:
            age = time.time() - os.stat(self.lock_path).st_mtime
        except FileNotFoundError:
            return True
        if age <= self.stale_after:
            return False

        judged = _read_lock_info(self.lock_path)
        if judged is None:
            return True
        stale_path = self.lock_path.with_name(f"{self.lock_path.name}.stale.{os.getpid()}.{uuid.uuid4().hex[:8]}")
        try:
            os.rename(self.lock_path, stale_path)
        except FileNotFoundError:
            return True
        except OSError:
            return False

        moved = _read_lock_info(stale_path) or {}
        if judged.get("token") and moved.get("token") != judged.get("token"):
            # Another waiter reclaimed first and took a fresh lock in between;
            # put that lock back instead of stealing it.
            try:
                os.link(stale_path, self.lock_path)
            except OSError:
                logger.warning("Could not restore lock %s taken by pid %s", self.lock_path, moved.get("pid"))
            stale_path.unlink(missing_ok=True)
            return False

        stale_path.unlink(missing_ok=True)
        logger.warning(
            "Reclaimed stale lock %s (age %.1fs, pid %s on %s)",
            self.lock_path,
            age,
            judged.get("pid", "?"),
            judged.get("host", "?"),
        )
        return True

    def release(self, handle: LockHandle) -> None:
        if handle.released:
            return
        handle._stop.set()
        if handle._heartbeat is not None and handle._heartbeat is not threading.current_thread():
            handle._heartbeat.join()
        try:
            holder = _read_lock_info(handle.lock_path)
            if holder is None:
                logger.warning("Lock %s disappeared before release", handle.lock_path)
            elif holder.get("token") == handle.token:
                handle.lock_path.unlink(missing_ok=True)
                logger.debug("Released lock %s", handle.lock_path)
            else:
                logger.warning(
                    "Lock %s was reclaimed by pid %s while held; leaving it in place",
                    handle.lock_path,
                    holder.get("pid", "?"),
                )
        finally:
            handle.released = True
            with _HELD_LOCK:
                _HELD.discard(handle.held_key)

    def __enter__(self) -> LockHandle:
        self._handle = self.acquire()
        return self._handle

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._handle is not None:
            handle, self._handle = self._handle, None
            self.release(handle)


@contextmanager
def locked(target: Path | str, **kwargs: Any) -> Iterator[LockHandle]:
    lock = FileLock(target, **kwargs)
    handle = lock.acquire()
    try:
        yield handle
    finally:
        lock.release(handle)


__all__ = ["FileLock", "LockHandle", "LOCK_SUFFIX", "holds_lock", "lock_path_for", "locked"]
