"""
Concurrency utilities.

``synchronized`` serialises a method on a lock stored on the instance.
"""

from __future__ import annotations

from functools import wraps
from typing import Callable


def synchronized(func: Callable | None = None, *, lock_attr: str = "_lock") -> Callable:
    """Decorator acquiring ``getattr(self, lock_attr)`` around the call.

    Usable bare (``@synchronized``) or with a lock name
    (``@synchronized(lock_attr="_state_lock")``). Use an ``RLock`` when
    synchronized methods call each other. Without the attribute the method
    runs unlocked.
    """

    def decorate(method: Callable) -> Callable:
        @wraps(method)
        def _wrapped(self, *args, **kwargs):
            lock = getattr(self, lock_attr, None)
            if lock is None:
                return method(self, *args, **kwargs)
            with lock:
                return method(self, *args, **kwargs)

        return _wrapped

    if func is not None:
        return decorate(func)
    return decorate
