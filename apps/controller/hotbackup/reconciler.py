"""Level-triggered reconciliation of HotBackup resources.

``reconcile`` looks at the persisted HotBackup and decides, from scratch on
every call, whether anything needs to happen:

1. resource gone                      -> nothing to do
2. deletion requested                 -> drop schedule + run guard, remove finalizer
3. finalizer missing                  -> add it, wait for the next event
4. run in flight                      -> nothing to do
5. already finished                   -> nothing to do (unless a schedule changed or was dropped)
6. spec already applied               -> nothing to do
7. target cluster missing / not ready -> Failure
8. record the spec as applied
9. scheduled -> install trigger, otherwise launch a run in the background

Runs are executed by ``run_backup`` on the reconciler's own thread pool; the
reconcile call returns as soon as the run is submitted.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable

from kubernetes.client.rest import ApiException

from .backup import ClusterBackupSession
from .errors import BackupCancelled, BackupStartError, PreconditionFailed, ScheduleError
from .guard import RunGuard
from .models import (
    FINALIZER,
    BackupState,
    HazelcastCluster,
    HotBackup,
    NamespacedName,
    UploadConfig,
)
from .orchestrator import monitor_member, run_member_tasks
from .resources import ResourceStore, is_not_found
from .scheduler import RecurrenceScheduler
from .status import StatusStore
from .upload import UploadClient

logger = logging.getLogger(__name__)

SessionFactory = Callable[[HazelcastCluster], ClusterBackupSession]
UploadFactory = Callable[[UploadConfig], UploadClient]


class HotBackupReconciler:
    def __init__(
        self,
        store: ResourceStore,
        session_factory: SessionFactory,
        upload_factory: UploadFactory,
        *,
        scheduler: RecurrenceScheduler | None = None,
        guard: RunGuard | None = None,
        status: StatusStore | None = None,
        max_runs: int | None = None,
    ):
        """Initialize the reconciler.

        Args:
            store: Access to HotBackup and Hazelcast custom objects
            session_factory: Builds a ClusterBackupSession for a live cluster
            upload_factory: Builds an upload client for one member
            scheduler: Recurring trigger registry (created if omitted)
            guard: Direct-run exclusivity set (created if omitted)
            status: Status persistence (created over ``store`` if omitted)
            max_runs: Upper bound on concurrently executing direct runs
        """
        self.store = store
        self.session_factory = session_factory
        self.upload_factory = upload_factory
        self.scheduler = scheduler if scheduler is not None else RecurrenceScheduler()
        self.guard = guard if guard is not None else RunGuard()
        self.status = status if status is not None else StatusStore(store)

        self._runs = ThreadPoolExecutor(max_workers=max_runs, thread_name_prefix="hotbackup-run")
        self._key_locks: dict[NamespacedName, threading.Lock] = {}
        self._key_locks_guard = threading.Lock()
        self._scopes: set[threading.Event] = set()
        self._scopes_lock = threading.Lock()
        self._stopping = threading.Event()

    def reconcile(self, key: NamespacedName) -> Future | None:
        """React to one notification for ``key``.

        Returns:
            Future of the launched run for direct backups, None otherwise

        Raises:
            PreconditionFailed: Target cluster missing or not ready
            ScheduleError: Schedule string rejected
            ApiException: Unexpected API errors, and conflicts that outlived
                the retry budget
        """
        with self._key_lock(key):
            return self._reconcile(key)

    def _reconcile(self, key: NamespacedName) -> Future | None:
        try:
            obj = self.store.get_hot_backup(key)
        except ApiException as exc:
            if is_not_found(exc):
                logger.info(f"[{key}] HotBackup resource not found. Ignoring since object must be deleted")
                return None
            raise
        hot_backup = HotBackup.from_dict(obj)

        if hot_backup.deleting:
            self._finalize(key, obj)
            return None

        if not hot_backup.has_finalizer:
            self._add_finalizer(key, obj)
            return None

        if hot_backup.state.is_running() or key in self.guard:
            logger.info(f"[{key}] HotBackup is already running (state {hot_backup.state.value or 'Unset'})")
            return None

        applied = self.status.is_applied(hot_backup)
        if hot_backup.state.is_finished() and (applied or not hot_backup.spec.schedule):
            if not applied and self.scheduler.remove(key):
                # schedule dropped after a scheduled run finished
                self.status.record_applied_spec(key)
            logger.info(f"[{key}] HotBackup already finished (state {hot_backup.state.value})")
            return None
        if applied:
            logger.info(f"[{key}] HotBackup was already applied")
            return None

        hazelcast_key = NamespacedName(key.namespace, hot_backup.spec.hazelcast_resource_name)
        self._require_ready_cluster(key, hazelcast_key)

        self.status.record_applied_spec(key)
        logger.info(f"[{key}] Ready to start backup")

        if hot_backup.spec.schedule:
            self._schedule(key, hazelcast_key, hot_backup.spec.schedule)
            return None

        self.status.update_status(key, BackupState.PENDING)
        self.scheduler.remove(key)
        if not self.guard.try_acquire(key):
            return None
        return self._launch(key, hazelcast_key)

    def _key_lock(self, key: NamespacedName) -> threading.Lock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def _add_finalizer(self, key: NamespacedName, obj: dict) -> None:
        metadata = obj.setdefault("metadata", {})
        metadata["finalizers"] = [*(metadata.get("finalizers") or []), FINALIZER]
        self.store.replace_hot_backup(obj)
        logger.debug(f"[{key}] Finalizer added into custom resource successfully")

    def _finalize(self, key: NamespacedName, obj: dict) -> None:
        metadata = obj.setdefault("metadata", {})
        finalizers = metadata.get("finalizers") or []
        if FINALIZER not in finalizers:
            return
        self.guard.release(key)
        self.scheduler.remove(key)
        metadata["finalizers"] = [f for f in finalizers if f != FINALIZER]
        self.store.replace_hot_backup(obj)
        with self._key_locks_guard:
            self._key_locks.pop(key, None)
        logger.info(f"🗑️  [{key}] Finalizer removed, deletion can proceed")

    def _require_ready_cluster(self, key: NamespacedName, hazelcast_key: NamespacedName) -> None:
        if not hazelcast_key.name:
            self.status.fail(key, PreconditionFailed("could not trigger Hot Backup: hazelcastResourceName is not set"))
        try:
            cluster = HazelcastCluster.from_dict(self.store.get_hazelcast(hazelcast_key))
        except ApiException as exc:
            if not is_not_found(exc):
                raise
            self.status.fail(key, PreconditionFailed(
                f"could not trigger Hot Backup: Hazelcast resource {hazelcast_key} not found"
            ))
        if not cluster.is_running:
            self.status.fail(key, PreconditionFailed(
                f"Hazelcast CR {hazelcast_key} is not ready (phase '{cluster.phase or 'Unknown'}')"
            ))

    def _schedule(self, key: NamespacedName, hazelcast_key: NamespacedName, schedule: str) -> None:
        run_body = partial(self.run_backup, key, hazelcast_key, direct=False)
        try:
            self.scheduler.install(key, schedule, run_body)
        except ScheduleError as exc:
            logger.error(f"❌ [{key}] Error creating new schedule: {exc}")
            self.status.fail(key, exc)

    def _launch(self, key: NamespacedName, hazelcast_key: NamespacedName) -> Future:
        try:
            future = self._runs.submit(self.run_backup, key, hazelcast_key, direct=True)
        except RuntimeError:
            self.guard.release(key)
            raise
        future.add_done_callback(partial(_log_run_result, key))
        return future

    def run_backup(self, key: NamespacedName, hazelcast_key: NamespacedName, direct: bool = False) -> None:
        """Execute one backup attempt and persist its terminal status.

        Re-reads everything it needs, since scheduled runs fire long after the
        reconcile that installed them.

        Raises:
            Exception: The error behind a Failure status
        """
        logger.info(f"🚀 [{key}] Starting {'direct' if direct else 'scheduled'} backup")
        scope = self._open_scope()
        try:
            self._run(key, hazelcast_key, scope)
        finally:
            self._close_scope(scope)
            if direct:
                self.guard.release(key)
            logger.info(f"[{key}] Finished backup")

    def _run(self, key: NamespacedName, hazelcast_key: NamespacedName, scope: threading.Event) -> None:
        if scope.is_set():
            self.status.fail(key, BackupCancelled("controller is shutting down"))

        try:
            self.status.update_status(key, BackupState.IN_PROGRESS)
        except ApiException as exc:
            # setting status failed so this most likely will fail too
            self.status.fail(key, exc)

        try:
            # latest version, this may be running from a schedule
            cluster = HazelcastCluster.from_dict(self.store.get_hazelcast(hazelcast_key))
            session = self.session_factory(cluster)
            if not session.members:
                raise BackupStartError(f"Hazelcast CR {hazelcast_key} reports no members")
            session.start()

            tasks = {
                f"{member.uuid}@{member.address}": partial(
                    monitor_member,
                    member,
                    session=session,
                    cluster=cluster,
                    load_request=partial(self._load_hot_backup, key),
                    new_upload=self.upload_factory,
                )
                for member in session.members
            }
            logger.info(f"[{key}] Waiting for {len(tasks)} member(s)")
            run_member_tasks(tasks, scope)
        except Exception as exc:
            logger.error(f"❌ [{key}] Backup failed: {exc}")
            self.status.fail(key, exc)

        logger.info(f"✅ [{key}] All members finished with no errors")
        self.status.update_status(key, BackupState.SUCCESS)

    def _load_hot_backup(self, key: NamespacedName) -> HotBackup:
        return HotBackup.from_dict(self.store.get_hot_backup(key))

    def _open_scope(self) -> threading.Event:
        scope = threading.Event()
        with self._scopes_lock:
            if self._stopping.is_set():
                scope.set()
            self._scopes.add(scope)
        return scope

    def _close_scope(self, scope: threading.Event) -> None:
        with self._scopes_lock:
            self._scopes.discard(scope)

    def shutdown(self, wait: bool = True) -> None:
        """Cancel in-flight runs and stop scheduling new ones."""
        with self._scopes_lock:
            self._stopping.set()
            for scope in self._scopes:
                scope.set()
        self.scheduler.shutdown(wait=False)
        self._runs.shutdown(wait=wait)


def _log_run_result(key: NamespacedName, future: Future) -> None:
    if future.cancelled():
        logger.warning(f"⚠️  [{key}] Backup run was cancelled before it started")
        return
    exc = future.exception()
    if exc is not None:
        logger.warning(f"⚠️  [{key}] Backup run ended with failure: {exc}")
