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

"""In-memory stand-ins for the cluster API and the remote command executor."""

from __future__ import annotations

import os
import threading
from collections.abc import Callable

import pytest
from kubernetes.client import (
    V1EndpointAddress,
    V1Endpoints,
    V1EndpointSubset,
    V1Namespace,
    V1Node,
    V1NodeCondition,
    V1NodeSpec,
    V1NodeStatus,
    V1ObjectMeta,
    V1Pod,
    V1PodStatus,
    V1Service,
    V1ServiceAccount,
)
from kubernetes.client.exceptions import ApiException

from kube_detective.errors import RemoteCommandError


def make_node(name: str, ready: str | None = "True", unschedulable: bool = False, conditions: bool = True) -> V1Node:
    node_conditions = []
    if conditions:
        node_conditions.append(V1NodeCondition(type="MemoryPressure", status="False"))
        if ready is not None:
            node_conditions.append(V1NodeCondition(type="Ready", status=ready))
    return V1Node(
        metadata=V1ObjectMeta(name=name),
        spec=V1NodeSpec(unschedulable=unschedulable),
        status=V1NodeStatus(conditions=node_conditions),
    )


class FakeObserver:
    """Reads straight from the fake cluster's state."""

    def __init__(self, cluster: FakeCluster, namespace: str) -> None:
        self.cluster = cluster
        self.namespace = namespace
        self.started = False

    def start(self) -> None:
        self.started = True

    def wait_for_sync(self, poll_interval: float = 0.1) -> bool:
        return True

    def list_nodes(self) -> list[V1Node]:
        return sorted(self.cluster.nodes, key=lambda n: n.metadata.name)

    def list_pods(self) -> list[V1Pod]:
        with self.cluster.lock:
            return [self.cluster.pods[name] for name in sorted(self.cluster.pods)]

    def list_services(self) -> list[V1Service]:
        with self.cluster.lock:
            return [self.cluster.services[name] for name in sorted(self.cluster.services)]

    def get_endpoints(self, name: str) -> V1Endpoints | None:
        with self.cluster.lock:
            return self.cluster.endpoints.get(name)


class FakeCluster:
    """Cluster client whose pods start Running with an IP as soon as they are created.

    Args:
        nodes: Nodes visible through the observer.
        pod_phase: Phase given to every created pod.
        delete_error: Status code the namespace deletion fails with, if any.
    """

    def __init__(self, nodes: list[V1Node], pod_phase: str = "Running", delete_error: int | None = None) -> None:
        self.nodes = nodes
        self.pod_phase = pod_phase
        self.delete_error = delete_error
        self.lock = threading.Lock()
        self.namespaces: list[str] = []
        self.deleted: list[str] = []
        self.pods: dict[str, V1Pod] = {}
        self.services: dict[str, V1Service] = {}
        self.endpoints: dict[str, V1Endpoints] = {}
        self.service_account_reads = 0
        self._node_ips = {node.metadata.name: f"192.168.0.{i + 1}" for i, node in enumerate(nodes)}

    def create_namespace(self, body: V1Namespace) -> V1Namespace:
        name = f"{body.metadata.generate_name}{len(self.namespaces):05d}"
        self.namespaces.append(name)
        return V1Namespace(metadata=V1ObjectMeta(name=name))

    def delete_namespace(self, name: str) -> bool:
        self.deleted.append(name)
        if self.delete_error is not None:
            raise ApiException(status=self.delete_error, reason="deletion refused")
        return name in self.namespaces

    def read_service_account(self, namespace: str, name: str) -> V1ServiceAccount | None:
        self.service_account_reads += 1
        if self.service_account_reads < 2:
            return None
        return V1ServiceAccount(metadata=V1ObjectMeta(name=name, namespace=namespace))

    def create_pod(self, namespace: str, body: V1Pod) -> V1Pod:
        with self.lock:
            index = len(self.pods)
            body.metadata.name = f"{body.metadata.generate_name}{index}"
            body.metadata.namespace = namespace
            if body.spec.host_network:
                pod_ip = self._node_ips[body.spec.node_name]
            else:
                pod_ip = f"10.1.0.{index + 1}"
            body.status = V1PodStatus(phase=self.pod_phase, pod_ip=pod_ip, reason="ErrImagePull")
            self.pods[body.metadata.name] = body
        return body

    def create_service(self, namespace: str, body: V1Service) -> V1Service:
        with self.lock:
            index = len(self.services)
            name = f"{body.metadata.generate_name}{index}"
            body.metadata.name = name
            body.metadata.namespace = namespace
            body.spec.cluster_ip = f"10.96.0.{index + 1}"
            selected = [
                pod for pod in self.pods.values()
                if all(pod.metadata.labels.get(k) == v for k, v in body.spec.selector.items())
            ]
            self.services[name] = body
            self.endpoints[name] = V1Endpoints(
                metadata=V1ObjectMeta(name=name),
                subsets=[V1EndpointSubset(addresses=[V1EndpointAddress(ip=pod.status.pod_ip) for pod in selected])],
            )
        return body

    def observer(self, namespace: str, stop: threading.Event) -> FakeObserver:
        return FakeObserver(self, namespace)


class FakeExecutor:
    """Records every remote command and fails the ones *fails* selects.

    Args:
        fails: Predicate on (pod name, command) selecting failing dials.
        release: When given, every call blocks until it is set.
    """

    def __init__(
        self,
        fails: Callable[[str, str], bool] | None = None,
        release: threading.Event | None = None,
    ) -> None:
        self.fails = fails or (lambda pod, command: False)
        self.release = release
        self.started = threading.Event()
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    def run(self, namespace: str, pod_name: str, command: str) -> str:
        with self._lock:
            self.calls.append((namespace, pod_name, command))
        self.started.set()
        if self.release is not None:
            self.release.wait(5)
        if self.fails(pod_name, command):
            raise RemoteCommandError(f"command in pod {pod_name} exited with 1: wget: download timed out", "")
        return pod_name


class RecordingSink:
    def __init__(self) -> None:
        self.outcomes = []
        self._lock = threading.Lock()

    def report(self, outcome) -> None:
        with self._lock:
            self.outcomes.append(outcome)


@pytest.fixture(autouse=True)
def _clean_detective_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("DETECTIVE_"):
            monkeypatch.delenv(key)


@pytest.fixture
def three_nodes():
    return [make_node("node-a"), make_node("node-b"), make_node("node-c")]


@pytest.fixture
def sink():
    return RecordingSink()
