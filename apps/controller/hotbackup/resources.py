"""Kubernetes access for HotBackup and Hazelcast custom objects."""

from __future__ import annotations

from typing import Any

from kubernetes import client
from kubernetes.client.rest import ApiException

from .models import (
    API_GROUP,
    API_VERSION,
    HAZELCAST_PLURAL,
    HOTBACKUP_PLURAL,
    NamespacedName,
)


def is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 404


def is_conflict(exc: BaseException) -> bool:
    return isinstance(exc, ApiException) and exc.status == 409


class ResourceStore:
    """Get/replace operations on the custom objects the controller owns.

    Replace calls send the object's ``metadata.resourceVersion`` back to the
    API server, which rejects stale writes with HTTP 409.
    """

    def __init__(self, custom_api: client.CustomObjectsApi):
        self.custom_api = custom_api

    def get_hot_backup(self, key: NamespacedName) -> dict[str, Any]:
        return self.custom_api.get_namespaced_custom_object(
            API_GROUP, API_VERSION, key.namespace, HOTBACKUP_PLURAL, key.name
        )

    def replace_hot_backup(self, obj: dict[str, Any]) -> dict[str, Any]:
        key = NamespacedName.of(obj)
        return self.custom_api.replace_namespaced_custom_object(
            API_GROUP, API_VERSION, key.namespace, HOTBACKUP_PLURAL, key.name, obj
        )

    def replace_hot_backup_status(self, obj: dict[str, Any]) -> dict[str, Any]:
        key = NamespacedName.of(obj)
        return self.custom_api.replace_namespaced_custom_object_status(
            API_GROUP, API_VERSION, key.namespace, HOTBACKUP_PLURAL, key.name, obj
        )

    def get_hazelcast(self, key: NamespacedName) -> dict[str, Any]:
        return self.custom_api.get_namespaced_custom_object(
            API_GROUP, API_VERSION, key.namespace, HAZELCAST_PLURAL, key.name
        )
