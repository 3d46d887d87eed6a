"""Typed views over the HotBackup and Hazelcast custom objects.

The Kubernetes API hands custom objects back as plain dicts. Everything the
reconciler reads goes through the parsers here; writes are done on the raw
dicts so unknown fields survive a round trip.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

API_GROUP = "hazelcast.com"
API_VERSION = "v1alpha1"
HOTBACKUP_PLURAL = "hotbackups"
HAZELCAST_PLURAL = "hazelcasts"

FINALIZER = "hazelcast.com/finalizer"
LAST_SUCCESSFUL_SPEC_ANNOTATION = "hazelcast.com/last-successful-spec"

HAZELCAST_RUNNING_PHASE = "Running"
EXTERNAL_BACKUP_TYPE = "External"


class BackupState(str, Enum):
    UNSET = ""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCESS = "Success"
    FAILURE = "Failure"

    @classmethod
    def parse(cls, value: str | None) -> BackupState:
        try:
            return cls(value or "")
        except ValueError:
            return cls.UNSET

    def is_running(self) -> bool:
        return self in (BackupState.PENDING, BackupState.IN_PROGRESS)

    def is_finished(self) -> bool:
        return self in (BackupState.SUCCESS, BackupState.FAILURE)


@dataclass(frozen=True, order=True)
class NamespacedName:
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> NamespacedName:
        """Parse ``namespace/name``.

        Raises:
            ValueError: If either part is missing
        """
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name:
            raise ValueError(f"Invalid identity '{value}', expected 'namespace/name'")
        return cls(namespace=namespace, name=name)

    @classmethod
    def of(cls, obj: dict[str, Any]) -> NamespacedName:
        metadata = obj.get("metadata", {})
        return cls(namespace=metadata.get("namespace", ""), name=metadata.get("name", ""))


@dataclass(frozen=True)
class HotBackupSpec:
    hazelcast_resource_name: str
    schedule: str = ""
    bucket_uri: str = ""
    secret: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> HotBackupSpec:
        data = data or {}
        return cls(
            hazelcast_resource_name=data.get("hazelcastResourceName", ""),
            schedule=(data.get("schedule") or "").strip(),
            bucket_uri=data.get("bucketURI", "") or "",
            secret=data.get("secret", "") or "",
        )


def spec_hash(spec: dict[str, Any] | None) -> str:
    """Content hash of a raw spec mapping.

    Canonical JSON (sorted keys, no whitespace) so that key order and
    formatting differences never change the hash.
    """
    canonical = json.dumps(spec or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class HotBackup:
    key: NamespacedName
    spec: HotBackupSpec
    spec_hash: str
    state: BackupState = BackupState.UNSET
    message: str = ""
    annotations: dict[str, str] = field(default_factory=dict)
    finalizers: tuple[str, ...] = ()
    deleting: bool = False

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> HotBackup:
        metadata = obj.get("metadata", {})
        status = obj.get("status") or {}
        return cls(
            key=NamespacedName.of(obj),
            spec=HotBackupSpec.from_dict(obj.get("spec")),
            spec_hash=spec_hash(obj.get("spec")),
            state=BackupState.parse(status.get("state")),
            message=status.get("message", "") or "",
            annotations=dict(metadata.get("annotations") or {}),
            finalizers=tuple(metadata.get("finalizers") or ()),
            deleting=metadata.get("deletionTimestamp") is not None,
        )

    @property
    def applied_spec_hash(self) -> str | None:
        return self.annotations.get(LAST_SUCCESSFUL_SPEC_ANNOTATION)

    @property
    def has_finalizer(self) -> bool:
        return FINALIZER in self.finalizers


@dataclass(frozen=True)
class MemberInfo:
    uuid: str
    address: str
    pod_name: str = ""


@dataclass(frozen=True)
class HazelcastCluster:
    key: NamespacedName
    phase: str
    cluster_name: str = "dev"
    base_dir: str = ""
    backup_type: str = ""
    members: tuple[MemberInfo, ...] = ()

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> HazelcastCluster:
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        persistence = spec.get("persistence") or {}
        members = tuple(
            MemberInfo(
                uuid=m.get("uid", ""),
                address=m.get("ip", ""),
                pod_name=m.get("podName", ""),
            )
            for m in status.get("members") or []
            if m.get("ip")
        )
        return cls(
            key=NamespacedName.of(obj),
            phase=status.get("phase", ""),
            cluster_name=spec.get("clusterName") or "dev",
            base_dir=persistence.get("baseDir", ""),
            backup_type=persistence.get("backupType", ""),
            members=members,
        )

    @property
    def is_running(self) -> bool:
        return self.phase == HAZELCAST_RUNNING_PHASE

    @property
    def persistence_is_external(self) -> bool:
        return self.backup_type == EXTERNAL_BACKUP_TYPE


@dataclass(frozen=True)
class UploadConfig:
    member_address: str
    bucket_uri: str
    backup_path: str
    hazelcast_name: str
    secret_name: str
