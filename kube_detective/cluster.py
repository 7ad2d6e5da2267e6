# /*
# Copyright 2026 The kube-detective Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Cluster API access and the watch-backed local cache."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from kubernetes import client, config, watch
from kubernetes.client import (
    V1Endpoints,
    V1Namespace,
    V1Node,
    V1Pod,
    V1Service,
    V1ServiceAccount,
)
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

from kube_detective import logger
from kube_detective.constants import WATCH_LIST_FAILURE_LIMIT, WATCH_RESTART_DELAY_SECONDS, WATCH_TIMEOUT_SECONDS
from kube_detective.errors import SetupError

HTTP_NOT_FOUND = 404
HTTP_GONE = 410


# ============================================================================
# Client
# ============================================================================

class ClusterClient:
    """Thin create/read/delete layer over the core/v1 API.

    Args:
        core_v1: Configured core/v1 API client.
    """

    def __init__(self, core_v1: client.CoreV1Api) -> None:
        self.core_v1 = core_v1

    @classmethod
    def from_environment(cls, context: str | None = None) -> ClusterClient:
        """Load in-cluster credentials, falling back to the local kubeconfig.

        Args:
            context: kubeconfig context to use, or None for the current one.

        Returns:
            A ready-to-use client.
        """
        try:
            config.load_incluster_config()
            logger.debug("Using in-cluster configuration")
        except ConfigException:
            config.load_kube_config(context=context)
            logger.debug("Using kubeconfig context %s", context or "(current)")
        return cls(client.CoreV1Api())

    def create_namespace(self, body: V1Namespace) -> V1Namespace:
        return self.core_v1.create_namespace(body)

    def delete_namespace(self, name: str) -> bool:
        """Delete a namespace and everything in it.

        Returns:
            False if the namespace did not exist, True otherwise.
        """
        try:
            self.core_v1.delete_namespace(name)
        except ApiException as err:
            if err.status == HTTP_NOT_FOUND:
                return False
            raise
        return True

    def read_service_account(self, namespace: str, name: str) -> V1ServiceAccount | None:
        try:
            return self.core_v1.read_namespaced_service_account(name, namespace)
        except ApiException as err:
            if err.status == HTTP_NOT_FOUND:
                return None
            raise

    def create_pod(self, namespace: str, body: V1Pod) -> V1Pod:
        return self.core_v1.create_namespaced_pod(namespace, body)

    def create_service(self, namespace: str, body: V1Service) -> V1Service:
        return self.core_v1.create_namespaced_service(namespace, body)

    def observer(self, namespace: str, stop: threading.Event) -> ClusterObserver:
        """Build a cache of nodes plus the pods, services and endpoints of *namespace*."""
        return ClusterObserver(self.core_v1, namespace, stop)


# ============================================================================
# Watch-backed cache
# ============================================================================

class _Reflector:
    """Mirrors one resource kind into a local dict via list + watch."""

    def __init__(
        self,
        kind: str,
        list_fn: Callable[..., Any],
        stop: threading.Event,
        **list_kwargs: Any,
    ) -> None:
        self.kind = kind
        self._list_fn = list_fn
        self._list_kwargs = list_kwargs
        self._stop = stop
        self._items: dict[str, Any] = {}
        self._lock = threading.Lock()
        self.synced = threading.Event()
        self.error: SetupError | None = None
        self._failures = 0
        self._thread = threading.Thread(target=self._run, name=f"watch-{kind}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def items(self) -> list[Any]:
        with self._lock:
            return [self._items[name] for name in sorted(self._items)]

    def get(self, name: str) -> Any | None:
        with self._lock:
            return self._items.get(name)

    def _relist(self) -> str:
        result = self._list_fn(**self._list_kwargs)
        with self._lock:
            self._items = {item.metadata.name: item for item in result.items}
        self.synced.set()
        self._failures = 0
        logger.debug("Listed %d %s", len(result.items), self.kind)
        return result.metadata.resource_version

    def _apply(self, event_type: str, obj: Any) -> None:
        name = obj.metadata.name
        with self._lock:
            if event_type == "DELETED":
                self._items.pop(name, None)
            else:
                self._items[name] = obj

    def _watch(self, resource_version: str) -> str:
        w = watch.Watch()
        try:
            for event in w.stream(
                self._list_fn,
                resource_version=resource_version,
                timeout_seconds=WATCH_TIMEOUT_SECONDS,
                **self._list_kwargs,
            ):
                if self._stop.is_set():
                    break
                obj = event["object"]
                self._apply(event["type"], obj)
                resource_version = obj.metadata.resource_version or resource_version
        finally:
            w.stop()
        return resource_version

    def _run(self) -> None:
        resource_version: str | None = None
        while not self._stop.is_set():
            try:
                if resource_version is None:
                    resource_version = self._relist()
                resource_version = self._watch(resource_version)
            except ApiException as err:
                resource_version = None
                if err.status == HTTP_GONE:
                    continue
                if not self._failed(err.reason):
                    break
            except Exception as err:
                resource_version = None
                if not self._failed(err):
                    break
        logger.debug("Stopped watching %s", self.kind)

    def _failed(self, detail: Any) -> bool:
        """Record a failed list or watch and back off.

        Returns:
            False once the initial list has failed too often to keep trying.
        """
        self._failures += 1
        if not self.synced.is_set() and self._failures >= WATCH_LIST_FAILURE_LIMIT:
            self.error = SetupError(f"Could not list {self.kind} after {self._failures} attempts: {detail}")
            logger.error("%s", self.error)
            return False
        log = logger.error if self._failures >= WATCH_LIST_FAILURE_LIMIT else logger.warning
        log("Watch on %s failed: %s", self.kind, detail)
        self._stop.wait(WATCH_RESTART_DELAY_SECONDS)
        return True


class ClusterObserver:
    """Eventually consistent, locally cached view of the probe topology.

    Nodes are watched cluster-wide; pods, services and endpoints only in the
    test namespace. Reads never hit the API server. Watches replace cached
    objects rather than mutate them, and callers must not modify them either.

    Args:
        core_v1: Configured core/v1 API client.
        namespace: Namespace holding the probe workloads.
        stop: Event that ends every watch once set.
    """

    def __init__(self, core_v1: client.CoreV1Api, namespace: str, stop: threading.Event) -> None:
        self.namespace = namespace
        self._stop = stop
        self._nodes = _Reflector("nodes", core_v1.list_node, stop)
        self._pods = _Reflector("pods", core_v1.list_namespaced_pod, stop, namespace=namespace)
        self._services = _Reflector("services", core_v1.list_namespaced_service, stop, namespace=namespace)
        self._endpoints = _Reflector("endpoints", core_v1.list_namespaced_endpoints, stop, namespace=namespace)
        self._reflectors = (self._nodes, self._pods, self._services, self._endpoints)

    def start(self) -> None:
        for reflector in self._reflectors:
            reflector.start()

    def wait_for_sync(self, poll_interval: float = 0.1) -> bool:
        """Block until every kind has been listed once.

        Returns:
            True when all caches are synced, False if the stop event fired first.

        Raises:
            SetupError: If a kind could not be listed at all.
        """
        for reflector in self._reflectors:
            while not reflector.synced.wait(poll_interval):
                if reflector.error is not None:
                    raise reflector.error
                if self._stop.is_set():
                    return False
        return True

    def list_nodes(self) -> list[V1Node]:
        return self._nodes.items()

    def list_pods(self) -> list[V1Pod]:
        return self._pods.items()

    def list_services(self) -> list[V1Service]:
        return self._services.items()

    def get_endpoints(self, name: str) -> V1Endpoints | None:
        return self._endpoints.get(name)
