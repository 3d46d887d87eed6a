"""Fan-out of member monitoring tasks with shared cancellation.

Every member of a run gets its own thread. All threads share one
``threading.Event``: the first task to fail records its error and sets the
event, every sibling sees it on its next wait and cancels only its own
operation. The group joins all threads before reporting the first error.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from typing import Callable, Mapping

from .backup import ClusterBackupSession, MemberAgent
from .errors import BackupCancelled
from .models import HazelcastCluster, HotBackup, UploadConfig
from .upload import UploadClient

logger = logging.getLogger(__name__)

MemberTask = Callable[[threading.Event], None]


def run_member_tasks(tasks: Mapping[str, MemberTask], cancel_event: threading.Event) -> None:
    """Run all tasks in parallel and wait for every one of them.

    Args:
        tasks: Task per member uuid; each receives the shared cancel event
        cancel_event: Cancellation scope shared by the whole run

    Raises:
        Exception: The first error any task raised
    """
    if not tasks:
        return

    errors: list[BaseException] = []
    errors_lock = threading.Lock()

    def _run(member_uuid: str, task: MemberTask) -> None:
        try:
            task(cancel_event)
        except Exception as exc:
            # Record before signalling so siblings' cancellations sort after the cause.
            with errors_lock:
                errors.append(exc)
            cancel_event.set()
            logger.debug(f"[{member_uuid}] Task failed: {exc}")

    with ThreadPoolExecutor(max_workers=len(tasks), thread_name_prefix="member") as executor:
        futures = [executor.submit(_run, member_uuid, task) for member_uuid, task in tasks.items()]
        wait(futures)

    if errors:
        raise errors[0]


def monitor_member(
    member: MemberAgent,
    cancel_event: threading.Event,
    *,
    session: ClusterBackupSession,
    cluster: HazelcastCluster,
    load_request: Callable[[], HotBackup],
    new_upload: Callable[[UploadConfig], UploadClient],
) -> None:
    """Wait for one member's backup and upload it when storage is external.

    Any member failure interrupts the whole cluster session. A cancellation
    seen while uploading cancels this member's upload and counts as success,
    since the failure that caused it is already reported by another task. No
    upload is started once the run is cancelled.
    """
    prefix = f"[{cluster.key}] [{member.uuid}]"
    logger.info(f"{prefix} Member status monitor started")
    try:
        logger.info(f"{prefix} Wait for member backup to finish")
        try:
            member.wait(cancel_event)
        except BackupCancelled:
            logger.info(f"{prefix} Member backup cancelled")
            _best_effort(f"{prefix} cancel member backup", member.cancel)
            session.cancel()
            raise
        except Exception as exc:
            logger.error(f"❌ {prefix} Member backup failed: {exc}")
            session.cancel()
            raise

        if not cluster.persistence_is_external:
            logger.info(f"✅ {prefix} Local backup complete, no upload configured")
            return

        if cancel_event.is_set():
            logger.info(f"{prefix} Run cancelled, skipping upload")
            raise BackupCancelled(f"member {member.uuid} upload skipped, run cancelled")

        try:
            request = load_request()
            upload = new_upload(UploadConfig(
                member_address=member.address,
                bucket_uri=request.spec.bucket_uri,
                backup_path=cluster.base_dir,
                hazelcast_name=request.spec.hazelcast_resource_name,
                secret_name=request.spec.secret,
            ))
            logger.info(f"{prefix} Start and wait for member backup upload")
            upload.start()
        except Exception as exc:
            logger.error(f"❌ {prefix} Upload could not be started: {exc}")
            session.cancel()
            raise

        try:
            upload.wait(cancel_event)
        except BackupCancelled:
            if not cancel_event.is_set():
                # Canceled by the agent, not by a sibling: this member failed.
                logger.error(f"❌ {prefix} Upload canceled by agent")
                session.cancel()
                raise
            logger.info(f"{prefix} Cancel upload")
            _best_effort(f"{prefix} cancel upload", upload.cancel)
            return
        except Exception as exc:
            logger.error(f"❌ {prefix} Upload failed: {exc}")
            session.cancel()
            raise

        logger.info(f"✅ {prefix} Member backup uploaded")
    finally:
        logger.info(f"{prefix} Member status monitor finished")


def _best_effort(what: str, fn: Callable[[], None]) -> None:
    try:
        fn()
    except Exception as exc:
        logger.warning(f"⚠️  {what} failed: {exc}")
