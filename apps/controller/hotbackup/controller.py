"""Event-driven loop feeding HotBackup identities to the reconciler.

Watch events are reduced to identity keys and put on a work queue that holds
each key at most once. Worker threads pull keys and call ``reconcile``; since
reconcile re-reads the resource, a key queued several times only needs to be
processed once.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any

from kubernetes import client

from common.resource_watch import ResourceWatcher

from .config import ControllerConfig
from .errors import HotBackupError
from .models import API_GROUP, API_VERSION, HOTBACKUP_PLURAL, NamespacedName
from .reconciler import HotBackupReconciler

logger = logging.getLogger(__name__)

WATCHED_EVENTS = ("ADDED", "MODIFIED", "DELETED")


class HotBackupController:
    def __init__(
        self,
        reconciler: HotBackupReconciler,
        custom_api: client.CustomObjectsApi | None = None,
        namespace: str = "",
        workers: int = 2,
        watch_timeout: int = 60,
    ):
        self.reconciler = reconciler
        self.workers = max(1, workers)
        self.watcher = None
        if custom_api is not None:
            self.watcher = ResourceWatcher(
                custom_api,
                API_GROUP,
                API_VERSION,
                HOTBACKUP_PLURAL,
                self.handle_event,
                namespace=namespace or None,
                timeout_seconds=watch_timeout,
            )

        self._queue: queue.Queue[NamespacedName | None] = queue.Queue()
        self._queued: set[NamespacedName] = set()
        self._queued_lock = threading.Lock()
        self._threads: list[threading.Thread] = []

    def handle_event(self, event_type: str, obj: dict[str, Any]) -> None:
        if event_type not in WATCHED_EVENTS:
            return
        key = NamespacedName.of(obj)
        if not key.namespace or not key.name:
            logger.debug(f"Ignoring {event_type} event without identity")
            return
        self.enqueue(key)

    def enqueue(self, key: NamespacedName) -> bool:
        """Queue ``key`` unless it is already waiting.

        Returns:
            True if the key was added
        """
        with self._queued_lock:
            if key in self._queued:
                return False
            self._queued.add(key)
        self._queue.put(key)
        return True

    def pending(self) -> int:
        with self._queued_lock:
            return len(self._queued)

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile one queued key.

        Returns:
            False when the queue was empty or a stop sentinel was received
        """
        try:
            key = self._queue.get(timeout=timeout)
        except queue.Empty:
            return False
        try:
            if key is None:
                return False
            with self._queued_lock:
                self._queued.discard(key)
            self._reconcile(key)
            return True
        finally:
            self._queue.task_done()

    def _reconcile(self, key: NamespacedName) -> None:
        try:
            self.reconciler.reconcile(key)
        except HotBackupError as exc:
            logger.warning(f"⚠️  [{key}] Reconcile ended with error: {exc}")
        except Exception as exc:
            logger.error(f"❌ [{key}] Reconcile failed: {exc}", exc_info=True)

    def _worker(self) -> None:
        while self.process_next():
            pass

    def start(self) -> None:
        for index in range(self.workers):
            thread = threading.Thread(target=self._worker, name=f"reconcile-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)
        if self.watcher:
            self.watcher.start()
        logger.info(f"🚀 Controller started with {self.workers} worker(s)")

    def stop(self, timeout: float = 5.0) -> None:
        if self.watcher:
            self.watcher.stop(timeout=timeout)
        for _ in self._threads:
            self._queue.put(None)
        for thread in self._threads:
            thread.join(timeout=timeout)
        self._threads.clear()
        logger.info("🛑 Controller stopped")

    def run_until(self, stop_event: threading.Event) -> None:
        """Start, block until ``stop_event`` is set, then stop."""
        self.start()
        try:
            stop_event.wait()
        finally:
            self.stop()


def setup_with_manager(
    reconciler: HotBackupReconciler,
    custom_api: client.CustomObjectsApi,
    config: ControllerConfig,
) -> HotBackupController:
    """Wire the reconciler to a watch of HotBackup resources."""
    return HotBackupController(
        reconciler,
        custom_api,
        namespace=config.namespace,
        workers=config.workers,
        watch_timeout=config.watch_timeout,
    )
