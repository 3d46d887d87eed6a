"""Background watch of a Kubernetes custom resource.

Provides thread-based streaming of custom object events with:
- Resume from the last seen list resourceVersion on reconnect
- Reset on 410 (resource version too old)
- Graceful shutdown via threading.Event
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from kubernetes import client, watch
from kubernetes.client.exceptions import ApiException

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, dict[str, Any]], None]


class ResourceWatcher:
    """Watch one custom resource type and hand every event to a callback.

    Usage:
        watcher = ResourceWatcher(custom_api, "hazelcast.com", "v1alpha1", "hotbackups", handler)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        custom_api: client.CustomObjectsApi,
        group: str,
        version: str,
        plural: str,
        handler: EventHandler,
        namespace: str | None = None,
        timeout_seconds: int = 60,
    ):
        """Initialize resource watcher.

        Args:
            custom_api: Kubernetes CustomObjectsApi client
            group: API group of the resource
            version: API version of the resource
            plural: Plural resource name
            handler: Called with (event type, object) for every event
            namespace: Namespace to watch, None for all namespaces
            timeout_seconds: Server-side watch timeout before reconnect
        """
        self.custom_api = custom_api
        self.group = group
        self.version = version
        self.plural = plural
        self.handler = handler
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self.stop_event = threading.Event()
        self.thread: threading.Thread | None = None
        self._watch: watch.Watch | None = None

    def start(self) -> None:
        self.thread = threading.Thread(
            target=self._stream_events,
            name=f"watch-{self.plural}",
            daemon=True
        )
        self.thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the watch thread.

        Args:
            timeout: Max seconds to wait for the thread to finish
        """
        self.stop_event.set()
        if self._watch:
            self._watch.stop()
        if self.thread:
            self.thread.join(timeout=timeout)

    def _list_kwargs(self, resource_version: str | None) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"timeout_seconds": self.timeout_seconds}
        if resource_version:
            kwargs["resource_version"] = resource_version
        return kwargs

    def _stream_events(self) -> None:
        """Stream events until stop_event is set, reconnecting on watch timeout."""
        latest_resource_version: str | None = None

        while not self.stop_event.is_set():
            w = watch.Watch()
            self._watch = w
            try:
                if self.namespace:
                    stream = w.stream(
                        self.custom_api.list_namespaced_custom_object,
                        self.group, self.version, self.namespace, self.plural,
                        **self._list_kwargs(latest_resource_version),
                    )
                else:
                    stream = w.stream(
                        self.custom_api.list_cluster_custom_object,
                        self.group, self.version, self.plural,
                        **self._list_kwargs(latest_resource_version),
                    )

                for event in stream:
                    if self.stop_event.is_set():
                        break
                    obj = event.get("object")
                    if isinstance(obj, dict):
                        metadata = obj.get("metadata", {})
                        latest_resource_version = metadata.get("resourceVersion") or latest_resource_version
                        try:
                            self.handler(event.get("type", ""), obj)
                        except Exception as exc:
                            logger.error(f"⚠️  Handler failed for {self.plural} event: {exc}", exc_info=True)

            except ApiException as exc:
                # 410: our resourceVersion is too old, start over from a fresh list
                if exc.status == 410:
                    latest_resource_version = None
                    self.stop_event.wait(1)
                    continue

                if not self.stop_event.is_set():
                    logger.warning(f"⚠️  Watch on {self.plural} interrupted: {exc.reason or exc}")
            except Exception as exc:
                if not self.stop_event.is_set():
                    logger.warning(f"⚠️  Watch on {self.plural} failed: {exc}")
            finally:
                w.stop()

            # Brief pause before reconnect
            self.stop_event.wait(1)
