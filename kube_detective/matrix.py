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

"""Connectivity matrix: pair enumeration, bounded parallel dialing, aggregation."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from kubernetes.client import V1Pod, V1Service

from kube_detective import logger
from kube_detective.cluster import ClusterObserver
from kube_detective.constants import (
    DEFAULT_WORKER_COUNT,
    LABEL_HOST_NETWORK,
    LABEL_NODE_NAME,
    LABEL_POD_IP,
    POD_HTTP_PORT,
)
from kube_detective.errors import ConnectivityError, DialError, Interrupted
from kube_detective.predicates import parse_bool_label
from kube_detective.remote import Dialer
from kube_detective.supervisor import Task


class PathKind(str, Enum):
    """Network path exercised by a matrix pass."""

    POD_IP = "pod_ip"
    CLUSTER_IP = "cluster_ip"
    SERVICE_NAME = "service_name"
    EXTERNAL_IP = "external_ip"

    @property
    def display_name(self) -> str:
        return {
            PathKind.POD_IP: "Pod",
            PathKind.CLUSTER_IP: "ClusterIP",
            PathKind.SERVICE_NAME: "Service Name",
            PathKind.EXTERNAL_IP: "ExternalIP",
        }[self]


@dataclass(frozen=True)
class TestOutcome:
    """Result of one dial from a source pod to a destination.

    Attributes:
        kind: Path kind of the pass the dial belonged to.
        source_node: Node of the source pod.
        destination_node: Node of the destination pod.
        source_address: IP of the source pod.
        destination_address: IP of the destination pod.
        via: Cluster IP, external IP, or service name dialed, if any.
        error: Failure detail, or None on success.
    """

    __test__ = False

    kind: PathKind
    source_node: str
    destination_node: str
    source_address: str
    destination_address: str
    via: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        hops = [self.source_address, self.via, self.destination_address]
        route = " --> ".join(hop for hop in hops if hop)
        return f"{self.kind.display_name} {self.source_node} --> {self.destination_node} ({route})"


@dataclass
class PassResult:
    """All outcomes of one matrix pass."""

    kind: PathKind
    source_host_network: bool | None
    target_host_network: bool | None
    outcomes: list[TestOutcome] = field(default_factory=list)

    @property
    def failures(self) -> list[TestOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.success]

    @property
    def error(self) -> ConnectivityError | None:
        """Every failing dial of the pass, or None if all succeeded."""
        failures = self.failures
        if not failures:
            return None
        return ConnectivityError(
            f"{len(failures)} of {len(self.outcomes)} {self.kind.display_name} dials failed",
            [DialError(f"{outcome.describe()}: {outcome.error}") for outcome in failures],
        )


class ResultSink(Protocol):
    """Receives every outcome as soon as it is known."""

    def report(self, outcome: TestOutcome) -> None: ...


Pair = tuple[V1Pod, V1Pod | V1Service]


def _host_network(pod: V1Pod) -> bool:
    return bool(pod.spec.host_network)


def _pod_ip(pod: V1Pod) -> str:
    return (pod.status.pod_ip if pod.status else None) or ""


class MatrixExecutor:
    """Runs matrix passes over the cached probe pods and services.

    Args:
        observer: Cluster cache to read pods and services from.
        dialer: Dial primitive bound to the probe namespace.
        task: Run task; once it is dying no further pair is dialed.
        worker_count: Number of concurrent dials.
        sinks: Receivers notified of every outcome.
    """

    def __init__(
        self,
        observer: ClusterObserver,
        dialer: Dialer,
        task: Task,
        worker_count: int = DEFAULT_WORKER_COUNT,
        sinks: Iterable[ResultSink] = (),
    ) -> None:
        self.observer = observer
        self.dialer = dialer
        self.task = task
        self.worker_count = worker_count
        self.sinks = list(sinks)

    # ------------------------------------------------------------------------
    # Pair enumeration
    # ------------------------------------------------------------------------

    def pod_pairs(self) -> list[Pair]:
        """Every ordered (source, destination) pod pair, self-pairs included."""
        pods = self.observer.list_pods()
        return [(source, target) for source in pods for target in pods]

    def service_pairs(self) -> list[Pair]:
        """Every (source pod, destination service) pair."""
        pods = self.observer.list_pods()
        return [(pod, service) for service in self.observer.list_services() for pod in pods]

    def service_name_pairs(self) -> list[Pair]:
        """Each non-host-network pod paired with the first service."""
        services = self.observer.list_services()
        if not services:
            logger.warning("No services found, skipping service name resolution")
            return []
        return [(pod, services[0]) for pod in self.observer.list_pods() if not _host_network(pod)]

    # ------------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------------

    def run_pass(
        self,
        kind: PathKind,
        source_host_network: bool,
        target_host_network: bool,
        pairs: list[Pair] | None = None,
    ) -> PassResult:
        """Dial every pair whose network modes match the requested combination.

        Args:
            kind: Pod IP, cluster IP, or external IP.
            source_host_network: Required network mode of the source pod.
            target_host_network: Required network mode of the destination.
            pairs: Pre-built pairs to reuse across passes of the same kind.

        Returns:
            The outcomes of the pass; check ``error`` for failures.

        Raises:
            Interrupted: If the run is cancelled during the pass.
        """
        if kind is PathKind.SERVICE_NAME:
            raise ValueError("service name resolution is a single pass, use run_service_name_pass")
        self._check_alive()
        if pairs is None:
            pairs = self.pod_pairs() if kind is PathKind.POD_IP else self.service_pairs()

        def _probe(pair: Pair) -> TestOutcome | None:
            if kind is PathKind.POD_IP:
                return self._probe_pod(pair, source_host_network, target_host_network)
            return self._probe_service(kind, pair, source_host_network, target_host_network)

        result = PassResult(kind, source_host_network, target_host_network)
        result.outcomes = self._dispatch(pairs, _probe)
        return result

    def run_service_name_pass(self) -> PassResult:
        """Resolve and dial the first service by name from every regular pod."""
        self._check_alive()
        pairs = self.service_name_pairs()

        def _probe(pair: Pair) -> TestOutcome:
            pod, service = pair
            return self._dial(
                PathKind.SERVICE_NAME, pod, service.metadata.name, service.spec.ports[0].port,
                destination_node=(service.metadata.labels or {}).get(LABEL_NODE_NAME, ""),
                destination_address=(service.metadata.labels or {}).get(LABEL_POD_IP, ""),
                via=service.metadata.name,
            )

        result = PassResult(PathKind.SERVICE_NAME, False, None)
        result.outcomes = self._dispatch(pairs, _probe)
        return result

    # ------------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------------

    def _check_alive(self) -> None:
        if not self.task.alive():
            raise Interrupted(self.task.reason)

    def _dispatch(self, pairs: list[Pair], probe: Callable[[Pair], TestOutcome | None]) -> list[TestOutcome]:
        """Run *probe* over *pairs* on the worker pool and collect the outcomes.

        Outcomes are gathered on the calling thread, so sinks are never
        called concurrently.
        """
        def _guarded(pair: Pair) -> TestOutcome | None:
            self._check_alive()
            return probe(pair)

        outcomes: list[TestOutcome] = []
        if not pairs:
            return outcomes
        with ThreadPoolExecutor(max_workers=self.worker_count) as executor:
            futures = [executor.submit(_guarded, pair) for pair in pairs]
            for future in as_completed(futures):
                try:
                    outcome = future.result()
                except Interrupted:
                    continue
                if outcome is None:
                    continue
                outcomes.append(outcome)
                for sink in self.sinks:
                    sink.report(outcome)
        self._check_alive()
        return outcomes

    def _probe_pod(self, pair: Pair, source_host_network: bool, target_host_network: bool) -> TestOutcome | None:
        source, target = pair
        if _host_network(source) != source_host_network or _host_network(target) != target_host_network:
            return None
        return self._dial(
            PathKind.POD_IP, source, _pod_ip(target), POD_HTTP_PORT,
            destination_node=target.spec.node_name,
            destination_address=_pod_ip(target),
        )

    def _probe_service(
        self,
        kind: PathKind,
        pair: Pair,
        source_host_network: bool,
        target_host_network: bool,
    ) -> TestOutcome | None:
        pod, service = pair
        if _host_network(pod) != source_host_network:
            return None
        labels = service.metadata.labels or {}
        if parse_bool_label(labels.get(LABEL_HOST_NETWORK)) != target_host_network:
            return None
        destination_node = labels.get(LABEL_NODE_NAME)
        if not destination_node:
            return None

        if kind is PathKind.EXTERNAL_IP:
            external_ips = service.spec.external_i_ps or []
            if not external_ips:
                return None
            host = external_ips[0]
        else:
            host = service.spec.cluster_ip
        return self._dial(
            kind, pod, host, service.spec.ports[0].port,
            destination_node=destination_node,
            destination_address=labels.get(LABEL_POD_IP, ""),
            via=host,
        )

    def _dial(
        self,
        kind: PathKind,
        source: V1Pod,
        host: str,
        port: int,
        destination_node: str,
        destination_address: str,
        via: str | None = None,
    ) -> TestOutcome:
        error = None
        try:
            self.dialer.dial(source, host, port)
        except DialError as err:
            error = str(err)
        return TestOutcome(
            kind=kind,
            source_node=source.spec.node_name,
            destination_node=destination_node,
            source_address=_pod_ip(source),
            destination_address=destination_address,
            via=via,
            error=error,
        )
