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

"""Provisioning and teardown of the probe namespace, pods, and services."""

from __future__ import annotations

import re
import threading
from collections.abc import Callable

from kubernetes.client import V1Node
from kubernetes.client.exceptions import ApiException
from rich.panel import Panel
from tenacity import RetryError, retry, retry_if_result, stop_when_event_set, wait_fixed

from kube_detective import console, logger
from kube_detective.allocator import ExternalIPPool
from kube_detective.cluster import ClusterClient, ClusterObserver
from kube_detective.constants import (
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SERVICE_ACCOUNT,
    POD_PHASE_FAILED,
    POD_PHASE_RUNNING,
)
from kube_detective.errors import Interrupted, SetupError, TeardownError
from kube_detective.manifests import namespace_manifest, probe_pod_manifest, probe_service_manifest
from kube_detective.predicates import node_is_eligible
from kube_detective.supervisor import Task


def poll_until(condition: Callable[[], bool], task: Task, interval: float) -> None:
    """Call *condition* every *interval* seconds until it returns True.

    Exceptions raised by *condition* propagate unchanged. The wait between
    attempts is cut short as soon as *task* starts dying.

    Args:
        condition: Zero-argument callable reporting whether we are done.
        task: Task whose cancellation aborts the poll.
        interval: Seconds between attempts.

    Raises:
        Interrupted: If *task* was cancelled before *condition* held.
    """
    @retry(
        retry=retry_if_result(lambda done: not done),
        wait=wait_fixed(interval),
        stop=stop_when_event_set(task.dying),
        sleep=task.dying.wait,
    )
    def _attempt() -> bool:
        return condition()

    try:
        _attempt()
    except RetryError as err:
        raise Interrupted(task.reason) from err


class ResourceLifecycle:
    """Brings the probe topology into existence and removes it again.

    Everything is created inside one generated namespace, so deleting that
    namespace is the whole teardown.

    Args:
        client: Cluster API client used for every mutation.
        task: Inner run task; its cancellation aborts any step in progress.
        image: Probe container image.
        node_filter: Compiled node name filter.
        host_network: Whether to add a host-network probe pod per node.
        pool: External IP pool, or None when external IPs are not tested.
        poll_interval: Seconds between readiness checks.
    """

    def __init__(
        self,
        client: ClusterClient,
        task: Task,
        image: str,
        node_filter: re.Pattern[str],
        host_network: bool = True,
        pool: ExternalIPPool | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.client = client
        self.task = task
        self.image = image
        self.node_filter = node_filter
        self.host_network = host_network
        self.pool = pool
        self.poll_interval = poll_interval

        self.namespace: str | None = None
        self.observer: ClusterObserver | None = None
        self.expected_pods = 0
        self.service_names: list[str] = []
        self._teardown_lock = threading.Lock()
        self._torn_down = False

    # ------------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------------

    def setup(self, with_services: bool, with_external_ips: bool) -> None:
        """Run every provisioning step in order, stopping at the first failure.

        Args:
            with_services: Whether probe services are needed at all.
            with_external_ips: Whether each service gets an external IP.

        Raises:
            SetupError: If any resource cannot be created or never becomes ready.
            PoolExhaustedError: If the external IP pool runs dry.
            Interrupted: If the run is cancelled meanwhile.
        """
        self.create_namespace()
        self.start_observer()
        self.wait_for_service_account()
        self.create_pods()
        self.wait_for_pods_running()
        if with_services or with_external_ips:
            self.create_services(with_external_ips)
            self.wait_for_service_endpoints()

    def _check_alive(self) -> None:
        if not self.task.alive():
            raise Interrupted(self.task.reason)

    def create_namespace(self) -> str:
        """Create the uniquely named test namespace."""
        console.print(Panel.fit("Creating namespace", style="bold blue"))
        self._check_alive()
        try:
            namespace = self.client.create_namespace(namespace_manifest())
        except ApiException as err:
            raise SetupError(f"Failed to create namespace: {err.reason}") from err
        self.namespace = namespace.metadata.name
        console.print(f"[green]✅ Created namespace {self.namespace}[/green]")
        return self.namespace

    def start_observer(self) -> ClusterObserver:
        """Start the watch cache for the namespace and wait until it is synced."""
        logger.info("Waiting for caches")
        self.observer = self.client.observer(self.namespace, self.task.dying)
        self.observer.start()
        if not self.observer.wait_for_sync():
            raise Interrupted(self.task.reason)
        return self.observer

    def wait_for_service_account(self) -> None:
        """Block until the namespace's default service account exists.

        Pods cannot be admitted before it does, and it is created
        asynchronously after the namespace.
        """
        console.print(f"[yellow]ℹ️  Waiting for service account '{DEFAULT_SERVICE_ACCOUNT}'...[/yellow]")

        def _exists() -> bool:
            try:
                return self.client.read_service_account(self.namespace, DEFAULT_SERVICE_ACCOUNT) is not None
            except ApiException as err:
                raise SetupError(f"Failed to read service account: {err.reason}") from err

        poll_until(_exists, self.task, self.poll_interval)
        logger.info("Service account %s available", DEFAULT_SERVICE_ACCOUNT)

    def eligible_nodes(self) -> list[V1Node]:
        """Cached nodes that probe pods may be placed on."""
        return [node for node in self.observer.list_nodes() if node_is_eligible(node, self.node_filter)]

    def create_pods(self) -> int:
        """Create the probe pods for every eligible node.

        Returns:
            Number of probe pods created.
        """
        console.print(Panel.fit("Creating probe pods", style="bold blue"))
        nodes = self.eligible_nodes()
        modes = [False, True] if self.host_network else [False]
        for node in nodes:
            self._check_alive()
            for host_network in modes:
                manifest = probe_pod_manifest(node.metadata.name, host_network, self.image)
                try:
                    pod = self.client.create_pod(self.namespace, manifest)
                except ApiException as err:
                    raise SetupError(f"Failed to create pod on {node.metadata.name}: {err.reason}") from err
                logger.info("  created %s on %s", pod.metadata.name, pod.spec.node_name)
        self.expected_pods = len(nodes) * len(modes)
        console.print(f"[green]✅ Created {self.expected_pods} pods on {len(nodes)} nodes[/green]")
        return self.expected_pods

    def wait_for_pods_running(self) -> None:
        """Block until every probe pod is running.

        Raises:
            SetupError: As soon as any probe pod reaches the Failed phase.
        """
        console.print("[yellow]ℹ️  Waiting for running pods...[/yellow]")

        def _all_running() -> bool:
            running = 0
            for pod in self.observer.list_pods():
                phase = pod.status.phase if pod.status else None
                if phase == POD_PHASE_RUNNING:
                    running += 1
                elif phase == POD_PHASE_FAILED:
                    raise SetupError(f"Failed to create a Pod: {pod.status.reason}")
            logger.debug("  %d/%d pods running", running, self.expected_pods)
            return running == self.expected_pods

        poll_until(_all_running, self.task, self.poll_interval)
        console.print(f"[green]✅ All {self.expected_pods} pods are running[/green]")

    def create_services(self, with_external_ip: bool) -> list[str]:
        """Create one ClusterIP service per probe pod.

        Args:
            with_external_ip: Whether each service is bound to the next pool address.

        Returns:
            Names of the created services.

        Raises:
            PoolExhaustedError: If the external IP pool has no address left.
        """
        console.print(Panel.fit("Creating services", style="bold blue"))
        for pod in self.observer.list_pods():
            self._check_alive()
            external_ip = self.pool.allocate() if with_external_ip else None
            try:
                service = self.client.create_service(self.namespace, probe_service_manifest(pod, external_ip))
            except ApiException as err:
                raise SetupError(f"Failed to create service for {pod.metadata.name}: {err.reason}") from err
            self.service_names.append(service.metadata.name)
            logger.info("  created %s at %s for %s", service.metadata.name, external_ip or "-", pod.metadata.name)
        console.print(f"[green]✅ Created {len(self.service_names)} services[/green]")
        return list(self.service_names)

    def wait_for_service_endpoints(self) -> None:
        """Block until every created service has at least one ready address."""
        console.print("[yellow]ℹ️  Waiting for service endpoints...[/yellow]")

        def _all_ready() -> bool:
            ready = 0
            for name in self.service_names:
                endpoints = self.observer.get_endpoints(name)
                if endpoints is None:
                    logger.debug("  endpoint %s not found", name)
                    continue
                if any(subset.addresses for subset in endpoints.subsets or []):
                    ready += 1
            logger.debug("  %d/%d services ready", ready, len(self.service_names))
            return ready == len(self.service_names)

        poll_until(_all_ready, self.task, self.poll_interval)
        console.print(f"[green]✅ All {len(self.service_names)} services have endpoints[/green]")

    # ------------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------------

    def teardown(self) -> bool:
        """Delete the test namespace, cascading to everything inside it.

        Only the first call does anything; later calls return False.

        Returns:
            True if a namespace deletion was issued.

        Raises:
            TeardownError: If the API server rejected the deletion.
        """
        with self._teardown_lock:
            if self._torn_down:
                return False
            self._torn_down = True

        if self.namespace is None:
            logger.debug("No namespace was created, nothing to clean up")
            return False

        console.print(f"[yellow]ℹ️  Deleting namespace {self.namespace}...[/yellow]")
        try:
            existed = self.client.delete_namespace(self.namespace)
        except ApiException as err:
            raise TeardownError(f"Failed to delete namespace {self.namespace}: {err.reason}") from err
        if existed:
            console.print(f"[green]✅ Namespace {self.namespace} deleted[/green]")
        else:
            console.print(f"[yellow]⚠️  Namespace {self.namespace} not found or already deleted[/yellow]")
        return True
