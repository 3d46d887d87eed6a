"""Kubernetes controller for Hazelcast hot backups."""

__version__ = "0.1.0"

from .errors import (
    BackupCancelled,
    BackupStartError,
    ConfigError,
    HotBackupError,
    MemberBackupError,
    PreconditionFailed,
    ScheduleError,
    UploadError,
)
from .models import BackupState, HotBackup, NamespacedName
from .reconciler import HotBackupReconciler

__all__ = [
    'BackupCancelled',
    'BackupStartError',
    'BackupState',
    'ConfigError',
    'HotBackup',
    'HotBackupError',
    'HotBackupReconciler',
    'MemberBackupError',
    'NamespacedName',
    'PreconditionFailed',
    'ScheduleError',
    'UploadError',
]
