"""Snapshot lifecycle: startup restore, periodic flush and shutdown flush."""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Any, Callable, Optional

from datastore.backends import SnapshotBackend
from services.errors import PersistenceFailure
from storage.sensor_store import SensorStore

logger = logging.getLogger(__name__)


class SnapshotScheduler:
    """Mirrors the store into its backend on a fixed interval.

    A failed save is logged and retried on the next cycle. Saves never run
    concurrently with each other, and each one serializes a copy taken under
    the store lock.
    """

    def __init__(
        self,
        store: SensorStore,
        backend: SnapshotBackend,
        interval_seconds: float = 5.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self.store = store
        self.backend = backend
        self.interval_seconds = interval_seconds
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def restore(self) -> bool:
        """Load persisted state into the store; fall back to empty on failure."""
        try:
            snapshot = self.backend.load()
        except PersistenceFailure as exc:
            self.last_error = str(exc)
            logger.warning(
                "Snapshot load failed, starting with empty state",
                extra={"backend": self.backend.name, "reason": str(exc)},
            )
            return False
        self.store.restore(snapshot)
        logger.info(
            "Restored sensor state",
            extra={"backend": self.backend.name, "entry_count": len(snapshot.state)},
        )
        return True

    def start(self) -> None:
        if not self.backend.persistent or self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="snapshot-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(
            "Snapshot scheduler started",
            extra={"backend": self.backend.name, "status": f"every {self.interval_seconds}s"},
        )

    def stop(self) -> bool:
        """Stop the timer thread and write one final snapshot synchronously."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self.interval_seconds + 5.0)
            self._thread = None
        return self.flush()

    def flush(self) -> bool:
        if not self.backend.persistent:
            return True
        with self._flush_lock:
            snapshot = self.store.snapshot()
            try:
                self.backend.save(snapshot)
            except PersistenceFailure as exc:
                self.last_error = str(exc)
                logger.error(
                    "Snapshot save failed, will retry next cycle",
                    extra={"backend": self.backend.name, "reason": str(exc)},
                )
                return False
            self.last_error = None
            logger.debug(
                "Snapshot saved",
                extra={"backend": self.backend.name, "entry_count": len(snapshot.state)},
            )
            return True

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            self.flush()


def install_crash_flush(
    scheduler: SnapshotScheduler,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Callable[[], None]:
    """Flush a snapshot before the process reports an uncaught fault.

    Wraps ``sys.excepthook``, ``threading.excepthook`` and, when ``loop`` is
    given, the loop's exception handler. Returns a callable restoring them.
    """
    previous_sys_hook = sys.excepthook
    previous_thread_hook = threading.excepthook
    previous_loop_handler = loop.get_exception_handler() if loop is not None else None

    def _best_effort_flush(source: str) -> None:
        logger.critical("Uncaught fault, flushing snapshot", extra={"reason": source})
        try:
            scheduler.flush()
        except Exception:  # noqa: BLE001
            logger.exception("Emergency snapshot flush failed")

    def sys_hook(exc_type, exc_value, exc_traceback) -> None:
        _best_effort_flush(exc_type.__name__)
        previous_sys_hook(exc_type, exc_value, exc_traceback)

    def thread_hook(args: threading.ExceptHookArgs) -> None:
        _best_effort_flush(args.exc_type.__name__)
        previous_thread_hook(args)

    def loop_handler(event_loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        _best_effort_flush(type(exc).__name__ if exc is not None else "asyncio")
        if previous_loop_handler is not None:
            previous_loop_handler(event_loop, context)
        else:
            event_loop.default_exception_handler(context)

    sys.excepthook = sys_hook
    threading.excepthook = thread_hook
    if loop is not None:
        loop.set_exception_handler(loop_handler)

    def uninstall() -> None:
        sys.excepthook = previous_sys_hook
        threading.excepthook = previous_thread_hook
        if loop is not None:
            loop.set_exception_handler(previous_loop_handler)

    return uninstall
