from __future__ import annotations

import copy
import threading
from collections import defaultdict
from typing import Any

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from kubernetes.client import ApiException

from hotbackup.backup import ClusterBackupSession
from hotbackup.errors import BackupCancelled, MemberBackupError, UploadError
from hotbackup.models import FINALIZER, HazelcastCluster, NamespacedName, UploadConfig
from hotbackup.reconciler import HotBackupReconciler
from hotbackup.scheduler import RecurrenceScheduler
from hotbackup.status import StatusStore


class FakeResourceStore:
    """In-memory stand-in for ResourceStore with API server write semantics.

    Replace calls are rejected with 409 when the resourceVersion is stale or
    while ``conflicts`` is positive. The main replace never touches status and
    the status replace never touches anything else.
    """

    def __init__(self) -> None:
        self.hot_backups: dict[NamespacedName, dict[str, Any]] = {}
        self.hazelcasts: dict[NamespacedName, dict[str, Any]] = {}
        self.status_history: dict[NamespacedName, list[str]] = defaultdict(list)
        self.conflicts = 0
        self.replace_calls = 0
        self._version = 0
        self._lock = threading.Lock()

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def add_hot_backup(
        self,
        name: str,
        spec: dict[str, Any],
        *,
        namespace: str = "ns",
        finalizers: list[str] | None = None,
        status: dict[str, Any] | None = None,
    ) -> NamespacedName:
        key = NamespacedName(namespace, name)
        obj = {
            "apiVersion": "hazelcast.com/v1alpha1",
            "kind": "HotBackup",
            "metadata": {
                "name": name,
                "namespace": namespace,
                "resourceVersion": self._next_version(),
                "finalizers": list(finalizers) if finalizers is not None else [FINALIZER],
            },
            "spec": dict(spec),
        }
        if status is not None:
            obj["status"] = dict(status)
        self.hot_backups[key] = obj
        return key

    def add_hazelcast(
        self,
        name: str,
        *,
        namespace: str = "ns",
        phase: str = "Running",
        members: int = 3,
        backup_type: str = "External",
    ) -> NamespacedName:
        key = NamespacedName(namespace, name)
        self.hazelcasts[key] = {
            "metadata": {"name": name, "namespace": namespace},
            "spec": {
                "clusterName": "dev",
                "persistence": {"baseDir": "/data/hot-restart", "backupType": backup_type},
            },
            "status": {
                "phase": phase,
                "members": [
                    {"uid": f"member-{i}", "ip": f"10.0.0.{i}", "podName": f"{name}-{i - 1}"}
                    for i in range(1, members + 1)
                ],
            },
        }
        return key

    def edit_spec(self, key: NamespacedName, **changes: Any) -> None:
        with self._lock:
            obj = self.hot_backups[key]
            obj["spec"].update(changes)
            obj["metadata"]["resourceVersion"] = self._next_version()

    def mark_deleted(self, key: NamespacedName) -> None:
        with self._lock:
            obj = self.hot_backups[key]
            obj["metadata"]["deletionTimestamp"] = "2026-10-17T10:00:00Z"
            obj["metadata"]["resourceVersion"] = self._next_version()

    def state(self, key: NamespacedName) -> str:
        return (self.hot_backups[key].get("status") or {}).get("state", "")

    def message(self, key: NamespacedName) -> str:
        return (self.hot_backups[key].get("status") or {}).get("message", "")

    def get_hot_backup(self, key: NamespacedName) -> dict[str, Any]:
        with self._lock:
            if key not in self.hot_backups:
                raise ApiException(status=404, reason="Not Found")
            return copy.deepcopy(self.hot_backups[key])

    def get_hazelcast(self, key: NamespacedName) -> dict[str, Any]:
        with self._lock:
            if key not in self.hazelcasts:
                raise ApiException(status=404, reason="Not Found")
            return copy.deepcopy(self.hazelcasts[key])

    def _check_write(self, obj: dict[str, Any]) -> tuple[NamespacedName, dict[str, Any]]:
        self.replace_calls += 1
        key = NamespacedName.of(obj)
        if key not in self.hot_backups:
            raise ApiException(status=404, reason="Not Found")
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ApiException(status=409, reason="Conflict")
        current = self.hot_backups[key]
        if obj["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise ApiException(status=409, reason="Conflict")
        return key, current

    def replace_hot_backup(self, obj: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            key, current = self._check_write(obj)
            stored = copy.deepcopy(obj)
            if "status" in current:
                stored["status"] = copy.deepcopy(current["status"])
            else:
                stored.pop("status", None)
            stored["metadata"]["resourceVersion"] = self._next_version()
            if stored["metadata"].get("deletionTimestamp") and not stored["metadata"].get("finalizers"):
                del self.hot_backups[key]
            else:
                self.hot_backups[key] = stored
            return copy.deepcopy(stored)

    def replace_hot_backup_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            key, current = self._check_write(obj)
            current["status"] = copy.deepcopy(obj.get("status") or {})
            current["metadata"]["resourceVersion"] = self._next_version()
            self.status_history[key].append(current["status"].get("state", ""))
            return copy.deepcopy(current)


class FakeMember:
    """Member agent whose backup succeeds, fails, or blocks until cancelled."""

    def __init__(self, uuid: str, address: str, outcome: str = "success", fail_start: bool = False):
        self.uuid = uuid
        self.address = address
        self.outcome = outcome
        self.fail_start = fail_start
        self.started = False
        self.waiting = threading.Event()
        self.cancel_calls = 0
        self.observed_cancel = False

    def start(self) -> None:
        if self.fail_start:
            raise RuntimeError("agent unavailable")
        self.started = True

    def wait(self, cancel_event: threading.Event) -> None:
        self.waiting.set()
        if self.outcome == "fail":
            raise MemberBackupError(member_uuid=self.uuid, reason="disk full")
        if self.outcome == "block":
            if cancel_event.wait(5):
                self.observed_cancel = True
                raise BackupCancelled(f"member {self.uuid} wait cancelled")
            raise AssertionError("blocked member was never cancelled")

    def cancel(self) -> None:
        self.cancel_calls += 1


class FakeUpload:
    def __init__(self, config: UploadConfig, outcome: str = "success"):
        self.config = config
        self.outcome = outcome
        self.started = False
        self.waited = False
        self.cancel_calls = 0

    def start(self) -> None:
        self.started = True

    def wait(self, cancel_event: threading.Event) -> None:
        self.waited = True
        if self.outcome == "fail":
            raise UploadError("upload failed: bucket not reachable")

    def cancel(self) -> None:
        self.cancel_calls += 1


class Backends:
    """Factories handed to the reconciler, recording what they built."""

    def __init__(self) -> None:
        self.outcomes: dict[str, str] = {}
        self.fail_start: set[str] = set()
        self.upload_outcome = "success"
        self.sessions: list[ClusterBackupSession] = []
        self.members: list[FakeMember] = []
        self.uploads: list[FakeUpload] = []
        self._lock = threading.Lock()

    def session_factory(self, cluster: HazelcastCluster) -> ClusterBackupSession:
        members = [
            FakeMember(
                m.uuid,
                m.address,
                outcome=self.outcomes.get(m.uuid, "success"),
                fail_start=m.uuid in self.fail_start,
            )
            for m in cluster.members
        ]
        session = ClusterBackupSession(cluster, members)
        with self._lock:
            self.members.extend(members)
            self.sessions.append(session)
        return session

    def upload_factory(self, config: UploadConfig) -> FakeUpload:
        upload = FakeUpload(config, outcome=self.upload_outcome)
        with self._lock:
            self.uploads.append(upload)
        return upload


@pytest.fixture
def store() -> FakeResourceStore:
    return FakeResourceStore()


@pytest.fixture
def backends() -> Backends:
    return Backends()


@pytest.fixture
def paused_scheduler():
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.start(paused=True)
    yield scheduler
    if scheduler.running:
        scheduler.shutdown(wait=False)


@pytest.fixture
def reconciler(store: FakeResourceStore, backends: Backends, paused_scheduler):
    reconciler = HotBackupReconciler(
        store,
        backends.session_factory,
        backends.upload_factory,
        scheduler=RecurrenceScheduler(paused_scheduler),
        status=StatusStore(store, sleep=lambda _: None),
    )
    yield reconciler
    reconciler.shutdown(wait=True)
