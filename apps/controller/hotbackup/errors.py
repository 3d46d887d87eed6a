"""Error types raised by the hot backup controller.

Kubernetes API failures are not wrapped: they surface as
``kubernetes.client.ApiException`` and are classified with the helpers in
``hotbackup.resources``.
"""

from __future__ import annotations


class HotBackupError(Exception):
    """Base class for controller errors that end up in a HotBackup status."""


class PreconditionFailed(HotBackupError):
    """Target Hazelcast cluster is missing or not ready."""


class BackupStartError(HotBackupError):
    """Cluster backup could not be started."""


class MemberBackupError(HotBackupError):
    def __init__(self, *, member_uuid: str, reason: str) -> None:
        normalized_reason = reason.strip() or "unknown error"
        super().__init__(f"member {member_uuid} backup failed: {normalized_reason}")
        self.member_uuid = member_uuid


class BackupCancelled(HotBackupError):
    """Raised by a wait that observed cancellation."""


class UploadError(HotBackupError):
    """Member backup upload to object storage failed."""


class ScheduleError(HotBackupError, ValueError):
    """Schedule string could not be parsed."""


class ConfigError(HotBackupError):
    """Controller configuration is missing or invalid."""
