"""Upload of a member's finished backup to object storage.

The member's backup agent does the transfer; this client only starts,
polls and cancels it.
"""

from __future__ import annotations

import logging
import threading
from typing import Protocol

import requests

from .errors import BackupCancelled, UploadError
from .models import UploadConfig

logger = logging.getLogger(__name__)

UPLOAD_IN_PROGRESS = "IN_PROGRESS"
UPLOAD_SUCCESS = "SUCCESS"
UPLOAD_FAILURE = "FAILURE"
UPLOAD_CANCELED = "CANCELED"


class UploadClient(Protocol):
    def start(self) -> None: ...

    def wait(self, cancel_event: threading.Event) -> None: ...

    def cancel(self) -> None: ...


class Upload:
    def __init__(
        self,
        config: UploadConfig,
        http: requests.Session,
        agent_port: int = 8080,
        poll_interval: float = 5.0,
        timeout: float = 10.0,
    ):
        self.config = config
        self.base_url = f"http://{config.member_address}:{agent_port}"
        self.http = http
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.upload_id: str | None = None

    def start(self) -> None:
        """Ask the agent to export the backup folder to the bucket.

        Raises:
            UploadError: Agent rejected the request or returned no ID
        """
        body = {
            "bucket_url": self.config.bucket_uri,
            "backup_folder": self.config.backup_path,
            "hazelcast_crname": self.config.hazelcast_name,
            "secret_name": self.config.secret_name,
        }
        try:
            response = self.http.post(f"{self.base_url}/upload", json=body, timeout=self.timeout)
            response.raise_for_status()
            upload_id = (response.json() or {}).get("ID")
        except requests.RequestException as exc:
            raise UploadError(f"upload from {self.config.member_address} failed to start: {exc}") from exc
        if not upload_id:
            raise UploadError(f"agent at {self.config.member_address} returned no upload ID")
        self.upload_id = upload_id
        logger.info(f"📤 Upload {upload_id} started from {self.config.member_address} to {self.config.bucket_uri}")

    def wait(self, cancel_event: threading.Event) -> None:
        """Block until the upload finishes.

        Raises:
            UploadError: Agent reported FAILURE or could not be queried
            BackupCancelled: ``cancel_event`` was set or the agent reported CANCELED
        """
        if self.upload_id is None:
            raise UploadError("upload was not started")
        while True:
            if cancel_event.is_set():
                raise BackupCancelled(f"upload {self.upload_id} wait cancelled")
            try:
                response = self.http.get(f"{self.base_url}/upload/{self.upload_id}", timeout=self.timeout)
                response.raise_for_status()
                body = response.json() or {}
            except requests.RequestException as exc:
                raise UploadError(f"upload {self.upload_id} status unavailable: {exc}") from exc

            status = body.get("Status", UPLOAD_IN_PROGRESS)
            if status == UPLOAD_SUCCESS:
                return
            if status == UPLOAD_FAILURE:
                message = body.get("Message")
                reason = f"upload {self.upload_id} failed" + (f": {message}" if message else "")
                raise UploadError(reason)
            if status == UPLOAD_CANCELED:
                raise BackupCancelled(f"upload {self.upload_id} was canceled")

            if cancel_event.wait(self.poll_interval):
                raise BackupCancelled(f"upload {self.upload_id} wait cancelled")

    def cancel(self) -> None:
        if self.upload_id is None:
            return
        response = self.http.delete(f"{self.base_url}/upload/{self.upload_id}", timeout=self.timeout)
        response.raise_for_status()
