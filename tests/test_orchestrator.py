from __future__ import annotations

import threading
from types import SimpleNamespace
from unittest.mock import Mock

import pytest

from hotbackup.errors import BackupCancelled, MemberBackupError, UploadError
from hotbackup.models import HazelcastCluster, HotBackup, NamespacedName, UploadConfig
from hotbackup.orchestrator import monitor_member, run_member_tasks


def _cluster(backup_type: str = "External") -> HazelcastCluster:
    return HazelcastCluster(
        key=NamespacedName("ns", "hz"),
        phase="Running",
        base_dir="/data/hot-restart",
        backup_type=backup_type,
    )


def _request() -> HotBackup:
    return HotBackup.from_dict({
        "metadata": {"name": "hb", "namespace": "ns"},
        "spec": {"hazelcastResourceName": "hz", "bucketURI": "gs://bucket/path", "secret": "gcs"},
    })


def _member(**kwargs) -> Mock:
    member = Mock(**kwargs)
    member.uuid = "m-1"
    member.address = "10.0.0.1"
    return member


def test_run_member_tasks_with_no_tasks_returns() -> None:
    run_member_tasks({}, threading.Event())


def test_run_member_tasks_waits_for_all_tasks() -> None:
    seen = []
    lock = threading.Lock()

    def task(name):
        def _run(cancel_event):
            with lock:
                seen.append(name)
        return _run

    run_member_tasks({n: task(n) for n in ("a", "b", "c")}, threading.Event())

    assert sorted(seen) == ["a", "b", "c"]


def test_first_failure_cancels_siblings_and_is_reported() -> None:
    cancel_event = threading.Event()
    observed = []

    def failing(_event):
        raise MemberBackupError(member_uuid="b", reason="disk full")

    def blocking(event):
        if event.wait(5):
            observed.append(True)
            raise BackupCancelled("cancelled")

    with pytest.raises(MemberBackupError):
        run_member_tasks({"a": blocking, "b": failing, "c": blocking}, cancel_event)

    assert cancel_event.is_set()
    assert observed == [True, True]


def test_monitor_member_uploads_when_external() -> None:
    member = _member()
    session = Mock()
    upload = Mock()
    new_upload = Mock(return_value=upload)

    monitor_member(
        member, threading.Event(),
        session=session, cluster=_cluster(), load_request=_request, new_upload=new_upload,
    )

    new_upload.assert_called_once_with(UploadConfig(
        member_address="10.0.0.1",
        bucket_uri="gs://bucket/path",
        backup_path="/data/hot-restart",
        hazelcast_name="hz",
        secret_name="gcs",
    ))
    upload.start.assert_called_once_with()
    upload.wait.assert_called_once()
    session.cancel.assert_not_called()


def test_monitor_member_skips_upload_for_local_persistence() -> None:
    new_upload = Mock()
    load_request = Mock()

    monitor_member(
        _member(), threading.Event(),
        session=Mock(), cluster=_cluster("Local"), load_request=load_request, new_upload=new_upload,
    )

    new_upload.assert_not_called()
    load_request.assert_not_called()


def test_monitor_member_failure_interrupts_session() -> None:
    member = _member(wait=Mock(side_effect=MemberBackupError(member_uuid="m-1", reason="boom")))
    session = Mock()

    with pytest.raises(MemberBackupError):
        monitor_member(
            member, threading.Event(),
            session=session, cluster=_cluster(), load_request=_request, new_upload=Mock(),
        )

    session.cancel.assert_called_once_with()
    member.cancel.assert_not_called()


def test_monitor_member_cancellation_cancels_member_once() -> None:
    member = _member(wait=Mock(side_effect=BackupCancelled("cancelled")))
    member.cancel.side_effect = RuntimeError("agent gone")
    session = Mock()

    with pytest.raises(BackupCancelled):
        monitor_member(
            member, threading.Event(),
            session=session, cluster=_cluster(), load_request=_request, new_upload=Mock(),
        )

    member.cancel.assert_called_once_with()
    session.cancel.assert_called_once_with()


def test_monitor_member_upload_cancelled_by_sibling_counts_as_done() -> None:
    cancel_event = threading.Event()

    def _sibling_fails_during_upload(event):
        event.set()
        raise BackupCancelled("cancelled")

    upload = SimpleNamespace(
        start=Mock(),
        wait=Mock(side_effect=_sibling_fails_during_upload),
        cancel=Mock(),
    )
    session = Mock()

    monitor_member(
        _member(), cancel_event,
        session=session, cluster=_cluster(), load_request=_request, new_upload=Mock(return_value=upload),
    )

    upload.cancel.assert_called_once_with()
    session.cancel.assert_not_called()


def test_monitor_member_upload_canceled_by_agent_is_a_failure() -> None:
    upload = Mock()
    upload.wait.side_effect = BackupCancelled("upload was canceled")
    session = Mock()

    with pytest.raises(BackupCancelled):
        monitor_member(
            _member(), threading.Event(),
            session=session, cluster=_cluster(), load_request=_request, new_upload=Mock(return_value=upload),
        )

    session.cancel.assert_called_once_with()
    upload.cancel.assert_not_called()


def test_monitor_member_upload_start_failure_interrupts_session() -> None:
    upload = Mock()
    upload.start.side_effect = UploadError("no ID")
    session = Mock()

    with pytest.raises(UploadError):
        monitor_member(
            _member(), threading.Event(),
            session=session, cluster=_cluster(), load_request=_request, new_upload=Mock(return_value=upload),
        )

    session.cancel.assert_called_once_with()
    upload.wait.assert_not_called()


def test_monitor_member_starts_no_upload_once_run_is_cancelled() -> None:
    cancel_event = threading.Event()
    cancel_event.set()
    member = _member()
    new_upload = Mock()
    load_request = Mock()

    with pytest.raises(BackupCancelled):
        monitor_member(
            member, cancel_event,
            session=Mock(), cluster=_cluster(), load_request=load_request, new_upload=new_upload,
        )

    new_upload.assert_not_called()
    load_request.assert_not_called()
    member.cancel.assert_not_called()
