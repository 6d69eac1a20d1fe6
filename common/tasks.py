"""Fire-and-forget execution for post-commit side effects.

Notifications and cart-clear retries must never block or fail a request that
already committed its orders. With ``BACKGROUND_TASKS_ASYNC`` enabled they run
on a small thread pool; otherwise (tests, management commands) they run
inline. Either way exceptions are logged, never raised to the caller.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional

from django.conf import settings
from django.db import connections

logger = logging.getLogger("marketplace.tasks")

_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=getattr(settings, "BACKGROUND_TASKS_MAX_WORKERS", 4),
                thread_name_prefix="marketplace-bg",
            )
        return _executor


def _run_logged(name: str, fn: Callable, args, kwargs, close_connections: bool) -> None:
    try:
        fn(*args, **kwargs)
    except Exception:
        logger.exception("task.failed", extra={"event": "task.failed", "task": name})
    finally:
        # Worker threads get their own DB connections; release them per task
        if close_connections:
            connections.close_all()


def run_in_background(fn: Callable, *args, name: Optional[str] = None, **kwargs) -> Optional[Future]:
    """Run ``fn(*args, **kwargs)`` without letting it affect the caller.

    Returns the Future when dispatched to the pool, ``None`` when run inline.
    """

    task_name = name or getattr(fn, "__qualname__", repr(fn))
    if not getattr(settings, "BACKGROUND_TASKS_ASYNC", True):
        _run_logged(task_name, fn, args, kwargs, close_connections=False)
        return None
    return _get_executor().submit(_run_logged, task_name, fn, args, kwargs, True)
