"""Small persistent JSON store helpers for client-local state.

Provides ``load_json`` / ``save_json`` helpers storing files under the
configured state directory (``NEIGHBORSYNC_STATE_DIR``, default ``./var``).
Writes go through a temp file and ``os.replace`` under an advisory lockfile,
so a crash never leaves a half-written store behind.
"""
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict

logger = logging.getLogger(__name__)


def default_state_dir() -> str:
    return os.getenv("NEIGHBORSYNC_STATE_DIR", os.path.join(os.getcwd(), "var"))


def _path(name: str, state_dir: str | None = None) -> str:
    directory = state_dir or default_state_dir()
    os.makedirs(directory, exist_ok=True)
    return os.path.join(directory, name)


class FileLock:
    """Advisory lock based on atomic creation of a ``.lock`` file.

    Suitable for single-writer or low-contention use on one device; retries
    until ``timeout`` seconds have passed.
    """

    def __init__(self, lock_path: str, timeout: float = 5.0, retry: float = 0.05) -> None:
        self.lock_path = lock_path
        self.timeout = float(timeout)
        self.retry = float(retry)
        self._acquired = False

    def acquire(self) -> bool:
        start = time.time()
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.close(fd)
                self._acquired = True
                return True
            except FileExistsError:
                if (time.time() - start) >= self.timeout:
                    return False
                time.sleep(self.retry)

    def release(self) -> None:
        try:
            if self._acquired and os.path.exists(self.lock_path):
                os.unlink(self.lock_path)
        finally:
            self._acquired = False

    def __enter__(self):
        if not self.acquire():
            raise TimeoutError(f"Failed to acquire file lock: {self.lock_path}")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()


def load_json(name: str, state_dir: str | None = None) -> Dict[str, Any]:
    """Load store ``name``; a missing or unreadable file yields ``{}``."""
    path = _path(name, state_dir)
    try:
        if not os.path.exists(path):
            return {}
        with FileLock(path + ".lock"):
            with open(path, "r", encoding="utf-8") as fh:
                return json.load(fh) or {}
    except (OSError, ValueError, TimeoutError) as e:
        logger.warning("Failed to load JSON store %s: %s", name, e)
        return {}


def save_json(name: str, data: Dict[str, Any], state_dir: str | None = None) -> None:
    """Atomically replace store ``name``. Errors propagate to the caller."""
    path = _path(name, state_dir)
    with FileLock(path + ".lock"):
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(data, fh, sort_keys=True)
        os.replace(tmp, path)
