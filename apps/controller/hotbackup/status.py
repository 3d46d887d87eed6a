"""HotBackup status persistence under optimistic concurrency.

Every write starts from a fresh read of the resource and is retried when the
API server reports a conflict (HTTP 409). No locks are taken: other workers
and users editing the resource are expected, and losing a race just means
reading again.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, NoReturn, TypeVar

from kubernetes.client.rest import ApiException

from .models import (
    LAST_SUCCESSFUL_SPEC_ANNOTATION,
    BackupState,
    HotBackup,
    NamespacedName,
    spec_hash,
)
from .resources import ResourceStore, is_conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff for conflict retries.

    Defaults match the Kubernetes client's DefaultRetry: five attempts, 10ms
    apart, 10% jitter.
    """
    steps: int = 5
    duration: float = 0.01
    factor: float = 1.0
    jitter: float = 0.1

    @classmethod
    def from_dict(cls, data: dict | None) -> RetryPolicy:
        data = data or {}
        default = cls()
        return cls(
            steps=int(data.get("steps", default.steps)),
            duration=float(data.get("duration", default.duration)),
            factor=float(data.get("factor", default.factor)),
            jitter=float(data.get("jitter", default.jitter)),
        )


DEFAULT_RETRY = RetryPolicy()


def retry_on_conflict(
    fn: Callable[[], T],
    policy: RetryPolicy = DEFAULT_RETRY,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it stops failing with a conflict.

    Args:
        fn: Read-modify-write operation; must re-read on every call
        policy: Attempt budget and backoff
        sleep: Sleep function (replaced in tests)

    Returns:
        Whatever ``fn`` returns

    Raises:
        ApiException: Non-conflict errors immediately, the last conflict
            once the budget is exhausted
    """
    delay = policy.duration
    attempts = max(1, policy.steps)
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except ApiException as exc:
            if not is_conflict(exc) or attempt == attempts:
                raise
            logger.debug(f"Conflict on attempt {attempt}/{attempts}, retrying")
            sleep(delay * (1 + random.random() * policy.jitter))
            delay *= policy.factor
    raise AssertionError("unreachable")


class StatusStore:
    def __init__(self, store: ResourceStore, retry: RetryPolicy = DEFAULT_RETRY,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.retry = retry
        self._sleep = sleep

    def update_status(self, key: NamespacedName, state: BackupState, message: str = "") -> None:
        """Persist state and message, leaving every other field untouched."""
        def _write() -> None:
            obj = self.store.get_hot_backup(key)
            status = obj.get("status") or {}
            status["state"] = state.value
            status["message"] = message
            obj["status"] = status
            self.store.replace_hot_backup_status(obj)

        retry_on_conflict(_write, self.retry, self._sleep)
        logger.info(f"[{key}] Status set to {state.value or 'Unset'}" + (f": {message}" if message else ""))

    def fail(self, key: NamespacedName, error: BaseException) -> NoReturn:
        """Persist Failure for ``error`` and raise ``error``.

        The status write happening does not make the failure handled: the
        caller always gets the same error back.
        """
        try:
            self.update_status(key, BackupState.FAILURE, str(error))
        except ApiException as exc:
            logger.error(f"[{key}] Could not persist failure status: {exc.reason or exc}")
        raise error

    def record_applied_spec(self, key: NamespacedName) -> str:
        """Store the hash of the latest spec as the last applied one.

        Returns:
            The recorded hash
        """
        def _write() -> str:
            obj = self.store.get_hot_backup(key)
            digest = spec_hash(obj.get("spec"))
            metadata = obj.setdefault("metadata", {})
            annotations = metadata.get("annotations") or {}
            annotations[LAST_SUCCESSFUL_SPEC_ANNOTATION] = digest
            metadata["annotations"] = annotations
            self.store.replace_hot_backup(obj)
            return digest

        return retry_on_conflict(_write, self.retry, self._sleep)

    @staticmethod
    def is_applied(hot_backup: HotBackup) -> bool:
        return hot_backup.applied_spec_hash == hot_backup.spec_hash
