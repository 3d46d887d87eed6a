"""Cluster-wide hot backup session and per-member backup agent client.

Each Hazelcast member runs a backup agent sidecar. The agent exposes the
member's local backup over HTTP:

- ``POST   /backup``  start the local backup
- ``GET    /backup``  ``{"state": "IN_PROGRESS" | "SUCCESS" | "FAILURE" | "CANCELED", "message": ...}``
- ``DELETE /backup``  cancel the local backup

A session interrupts the whole cluster through the Hazelcast REST API.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol, Sequence

import requests

from .errors import BackupCancelled, BackupStartError, MemberBackupError
from .models import HazelcastCluster, MemberInfo

logger = logging.getLogger(__name__)

STATE_IN_PROGRESS = "IN_PROGRESS"
STATE_SUCCESS = "SUCCESS"
STATE_FAILURE = "FAILURE"
STATE_CANCELED = "CANCELED"

INTERRUPT_PATH = "/hazelcast/rest/management/cluster/hotBackupInterrupt"


class MemberAgent(Protocol):
    uuid: str
    address: str

    def start(self) -> None: ...

    def wait(self, cancel_event: threading.Event) -> None: ...

    def cancel(self) -> None: ...


class MemberBackup:
    """Backup agent client for one cluster member."""

    def __init__(
        self,
        member: MemberInfo,
        http: requests.Session,
        agent_port: int = 8080,
        poll_interval: float = 5.0,
        timeout: float = 10.0,
    ):
        self.uuid = member.uuid
        self.address = member.address
        self.base_url = f"http://{member.address}:{agent_port}"
        self.http = http
        self.poll_interval = poll_interval
        self.timeout = timeout

    def start(self) -> None:
        response = self.http.post(f"{self.base_url}/backup", timeout=self.timeout)
        response.raise_for_status()

    def state(self) -> tuple[str, str]:
        response = self.http.get(f"{self.base_url}/backup", timeout=self.timeout)
        response.raise_for_status()
        body = response.json() or {}
        return body.get("state", STATE_IN_PROGRESS), body.get("message", "")

    def wait(self, cancel_event: threading.Event) -> None:
        """Block until the member's backup finishes.

        Raises:
            MemberBackupError: Agent reported FAILURE or could not be queried
            BackupCancelled: ``cancel_event`` was set or the agent reported CANCELED
        """
        while True:
            if cancel_event.is_set():
                raise BackupCancelled(f"member {self.uuid} wait cancelled")
            try:
                state, message = self.state()
            except requests.RequestException as exc:
                raise MemberBackupError(member_uuid=self.uuid, reason=str(exc)) from exc

            if state == STATE_SUCCESS:
                return
            if state == STATE_FAILURE:
                raise MemberBackupError(member_uuid=self.uuid, reason=message)
            if state == STATE_CANCELED:
                raise BackupCancelled(f"member {self.uuid} backup was canceled")

            if cancel_event.wait(self.poll_interval):
                raise BackupCancelled(f"member {self.uuid} wait cancelled")

    def cancel(self) -> None:
        response = self.http.delete(f"{self.base_url}/backup", timeout=self.timeout)
        response.raise_for_status()


class ClusterBackupSession:
    """One backup attempt against a live cluster.

    Created fresh for every run and never persisted.
    """

    def __init__(
        self,
        cluster: HazelcastCluster,
        members: Sequence[MemberAgent],
        http: requests.Session | None = None,
        rest_port: int = 5701,
        timeout: float = 10.0,
    ):
        self.cluster = cluster
        self.members = list(members)
        self.http = http
        self.rest_url = (
            f"http://{cluster.key.name}.{cluster.key.namespace}.svc.cluster.local:{rest_port}"
        )
        self.timeout = timeout
        self._cancel_lock = threading.Lock()
        self._cancelled = False

    def start(self) -> None:
        """Start the local backup on every member.

        Raises:
            BackupStartError: If any member refuses; the cluster is
                interrupted first
        """
        for member in self.members:
            try:
                member.start()
            except Exception as exc:
                logger.error(f"❌ [{self.cluster.key}] Member {member.uuid} failed to start backup: {exc}")
                self.cancel()
                raise BackupStartError(f"member {member.uuid} failed to start backup: {exc}") from exc
        logger.info(f"✅ [{self.cluster.key}] Backup started on {len(self.members)} member(s)")

    @property
    def cancelled(self) -> bool:
        with self._cancel_lock:
            return self._cancelled

    def cancel(self) -> None:
        """Interrupt the cluster backup. Only the first call does anything."""
        with self._cancel_lock:
            if self._cancelled:
                return
            self._cancelled = True

        logger.info(f"🛑 [{self.cluster.key}] Interrupting cluster backup")
        if self.http is None:
            return
        try:
            response = self.http.post(
                f"{self.rest_url}{INTERRUPT_PATH}",
                data=f"{self.cluster.cluster_name}&",
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning(f"⚠️  [{self.cluster.key}] Cluster backup interrupt failed: {exc}")


def new_cluster_backup(
    cluster: HazelcastCluster,
    http: requests.Session,
    agent_port: int = 8080,
    rest_port: int = 5701,
    poll_interval: float = 5.0,
    timeout: float = 10.0,
) -> ClusterBackupSession:
    """Build a session with one agent client per cluster member."""
    members = [
        MemberBackup(m, http, agent_port=agent_port, poll_interval=poll_interval, timeout=timeout)
        for m in cluster.members
    ]
    return ClusterBackupSession(cluster, members, http=http, rest_port=rest_port, timeout=timeout)
