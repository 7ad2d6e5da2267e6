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

"""Namespace, probe pod, and probe service object builders."""

from __future__ import annotations

from kubernetes.client import (
    V1Container,
    V1ContainerPort,
    V1Namespace,
    V1ObjectMeta,
    V1Pod,
    V1PodSpec,
    V1Service,
    V1ServicePort,
    V1ServiceSpec,
)

from kube_detective.constants import (
    LABEL_HOST_NETWORK,
    LABEL_NODE_NAME,
    LABEL_POD_IP,
    LABEL_POD_NAME,
    NAMESPACE_PREFIX,
    POD_HTTP_PORT,
    POD_PREFIX,
    PROBE_CONTAINER_NAME,
    PROBE_GRACE_PERIOD_SECONDS,
    SERVICE_HTTP_PORT,
    SERVICE_PREFIX,
)
from kube_detective.predicates import format_bool_label


def probe_selector(node_name: str, host_network: bool) -> dict[str, str]:
    """Labels that identify the single probe pod for a node and network mode.

    Args:
        node_name: Name of the node the pod is pinned to.
        host_network: Whether the pod shares the node's network namespace.

    Returns:
        Dictionary of label key-value pairs.
    """
    return {
        LABEL_NODE_NAME: node_name,
        LABEL_HOST_NETWORK: format_bool_label(host_network),
    }


def namespace_manifest() -> V1Namespace:
    """Build the test namespace with a server-generated name."""
    return V1Namespace(metadata=V1ObjectMeta(generate_name=NAMESPACE_PREFIX))


def probe_pod_manifest(node_name: str, host_network: bool, image: str) -> V1Pod:
    """Build a probe pod pinned to *node_name*.

    Args:
        node_name: Node to bind the pod to, bypassing the scheduler.
        host_network: Whether the pod runs in the node's network namespace.
        image: Container image serving HTTP on the pod port.

    Returns:
        Kubernetes Pod object ready to be created.
    """
    return V1Pod(
        metadata=V1ObjectMeta(
            generate_name=POD_PREFIX,
            labels=probe_selector(node_name, host_network),
        ),
        spec=V1PodSpec(
            containers=[
                V1Container(
                    name=PROBE_CONTAINER_NAME,
                    image=image,
                    ports=[V1ContainerPort(container_port=POD_HTTP_PORT)],
                )
            ],
            node_name=node_name,
            host_network=host_network,
            termination_grace_period_seconds=PROBE_GRACE_PERIOD_SECONDS,
        ),
    )


def probe_service_manifest(pod: V1Pod, external_ip: str | None = None) -> V1Service:
    """Build the ClusterIP service fronting exactly one probe pod.

    The destination identity (node, pod IP, network mode) is carried as
    service labels so matrix passes can report it without looking the pod
    up again.

    Args:
        pod: The probe pod as observed in the cluster, with its IP assigned.
        external_ip: Optional external IP to bind the service to.

    Returns:
        Kubernetes Service object ready to be created.
    """
    node_name = pod.spec.node_name
    host_network = bool(pod.spec.host_network)
    labels = {
        LABEL_POD_NAME: pod.metadata.name,
        LABEL_POD_IP: (pod.status.pod_ip if pod.status else None) or "",
        **probe_selector(node_name, host_network),
    }
    spec = V1ServiceSpec(
        type="ClusterIP",
        ports=[V1ServicePort(port=SERVICE_HTTP_PORT, target_port=POD_HTTP_PORT)],
        selector=probe_selector(node_name, host_network),
    )
    if external_ip is not None:
        spec.external_i_ps = [external_ip]
    return V1Service(
        metadata=V1ObjectMeta(generate_name=SERVICE_PREFIX, labels=labels),
        spec=spec,
    )
