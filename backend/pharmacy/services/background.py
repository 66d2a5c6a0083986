# Overview: Bounded worker pool for best-effort side effects (scan logs, audit rows).

"""
Background task queue.

Work submitted here must never fail the caller. Each task runs inside its
own application context, so it gets its own db.session. Failures are logged
and kept in a bounded list that /health exposes.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor

from flask import Flask, current_app

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


logger = logging.getLogger(__name__)

EXTENSION_KEY = "background_tasks"
MAX_RECORDED_FAILURES = 50


class BackgroundTasks:
    def __init__(self, app: Flask | None = None):
        self._app: Flask | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._inline = False
        self._lock = threading.Lock()
        self._failures: deque = deque(maxlen=MAX_RECORDED_FAILURES)
        self.failure_count = 0
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        self._app = app
        self._inline = bool(app.config.get("BACKGROUND_TASKS_INLINE", False))
        if not self._inline:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get("BACKGROUND_WORKERS", 4),
                thread_name_prefix="pharmacy-bg",
            )
        app.extensions[EXTENSION_KEY] = self

    def submit(self, name: str, func, *args, **kwargs) -> None:
        """Queue func(*args, **kwargs). Returns immediately unless running inline."""
        if self._inline or self._executor is None:
            self._run(name, func, args, kwargs)
            return
        self._executor.submit(self._run, name, func, args, kwargs)

    def _run(self, name: str, func, args, kwargs) -> None:
        with self._app.app_context():
            try:
                func(*args, **kwargs)
            except Exception as exc:
                db.session.rollback()
                logger.exception("Background task %s failed", name)
                self._record_failure(name, exc)

    def _record_failure(self, name: str, exc: Exception) -> None:
        with self._lock:
            self.failure_count += 1
            self._failures.append({
                "task": name,
                "error": type(exc).__name__,
                "at": to_utc_z(utcnow()),
            })

    def recent_failures(self) -> list[dict]:
        with self._lock:
            return list(self._failures)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None


def get_background_tasks() -> BackgroundTasks:
    return current_app.extensions[EXTENSION_KEY]
