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

"""A supervised end-to-end connectivity run: setup, matrix passes, teardown."""

from __future__ import annotations

import threading
from collections.abc import Iterable

from rich.panel import Panel
from rich.table import Table

from kube_detective import __version__, console, logger
from kube_detective.allocator import ExternalIPPool
from kube_detective.cluster import ClusterClient
from kube_detective.config import DetectiveConfig, validate_config
from kube_detective.errors import ConnectivityError
from kube_detective.lifecycle import ResourceLifecycle
from kube_detective.matrix import MatrixExecutor, PassResult, PathKind, ResultSink
from kube_detective.predicates import compile_node_filter
from kube_detective.remote import Dialer, KubectlExecutor, RemoteExecutor, kubectl_timeout
from kube_detective.supervisor import Task

HOST_NETWORK_COMBINATIONS = [(False, False), (True, False), (False, True), (True, True)]


def pass_title(kind: PathKind, source_host_network: bool | None, target_host_network: bool | None) -> str:
    """Human readable description of a pass, e.g. ``Pod (hostNetwork) --> ClusterIP --> Pod``."""
    source = "Pod (hostNetwork)" if source_host_network else "Pod"
    target = "Pod (hostNetwork)" if target_host_network else "Pod"
    if kind is PathKind.POD_IP:
        return f"{source} --> {target}"
    if kind is PathKind.SERVICE_NAME:
        return f"{source} --> Service Name --> Pod"
    return f"{source} --> {kind.display_name} --> {target}"


class Detective:
    """One connectivity run under a two-level supervision tree.

    The inner task provisions the probe topology and runs the matrix. The
    outer task waits for the inner one to end, however it ends, then deletes
    the namespace and reports the combined result. Killing the outer task
    cancels the inner one, which in turn stops every poll loop, watch, and
    pending dial.

    Args:
        cfg: Resolved run configuration.
        client: Cluster API client.
        executor: Remote command executor; ``kubectl exec`` by default.
        sinks: Receivers for every dial outcome.

    Raises:
        ConfigurationError: If the node filter or external CIDR is invalid,
            or external IPs are requested without a CIDR.
    """

    def __init__(
        self,
        cfg: DetectiveConfig,
        client: ClusterClient,
        executor: RemoteExecutor | None = None,
        sinks: Iterable[ResultSink] = (),
    ) -> None:
        validate_config(cfg)
        self.cfg = cfg
        node_filter = compile_node_filter(cfg.node_filter)
        self.pool = ExternalIPPool(cfg.external_cidr) if cfg.test_external_ips else None

        self._outer = Task("detective")
        self._inner = Task("detective-run", parent=self._outer)
        self._started = False
        self._deadline: threading.Timer | None = None

        self.executor = executor or KubectlExecutor(kubectl_timeout(cfg.dial_timeout), cfg.kube_context)
        self.sinks = list(sinks)
        self.lifecycle = ResourceLifecycle(
            client,
            self._inner,
            image=cfg.test_image,
            node_filter=node_filter,
            host_network=cfg.test_host_network,
            pool=self.pool,
            poll_interval=cfg.poll_interval,
        )
        self.results: list[PassResult] = []

    # ------------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------------

    def start(self) -> None:
        """Launch the run in the background.

        Raises:
            RuntimeError: If the run was already started.
        """
        if self._started:
            raise RuntimeError("Detective already started")
        self._started = True
        console.print(Panel.fit(f"Welcome to Detective {__version__}", style="bold blue"))
        if self.cfg.run_timeout:
            self._deadline = threading.Timer(
                self.cfg.run_timeout, self.kill, args=(TimeoutError(f"run exceeded {self.cfg.run_timeout}s"),),
            )
            self._deadline.daemon = True
            self._deadline.start()
        self._inner.go(self._run)
        self._outer.go(self._supervise)

    def kill(self, reason: BaseException | None = None) -> None:
        """Cancel the run. Safe to call repeatedly and before :meth:`start`."""
        self._outer.kill(reason)

    def wait(self) -> None:
        """Block until the run and its cleanup have finished.

        Raises:
            RuntimeError: If the run was never started.
            Exception: The run's error if it failed, else the cleanup error.
        """
        if not self._started:
            raise RuntimeError("Detective was not started")
        err = self._outer.wait()
        if self._deadline is not None:
            self._deadline.cancel()
        if err is not None:
            raise err

    def run(self) -> None:
        """Start the run and wait for it."""
        self.start()
        self.wait()

    def _supervise(self) -> None:
        self._inner.dead.wait()
        err = self._inner.error
        try:
            self.lifecycle.teardown()
        except Exception as cleanup_err:
            if err is None:
                raise
            logger.error("Cleanup failed after an earlier error: %s", cleanup_err)
            err.add_note(f"cleanup also failed: {cleanup_err}")
        if err is not None:
            raise err

    def _run(self) -> None:
        self.lifecycle.setup(
            with_services=self.cfg.needs_services,
            with_external_ips=self.cfg.test_external_ips,
        )
        self.execute()

    # ------------------------------------------------------------------------
    # Matrix
    # ------------------------------------------------------------------------

    def execute(self) -> None:
        """Run every requested pass in the fixed order.

        Passes keep going after failures; all failures are raised together
        once the last pass is done.

        Raises:
            ConnectivityError: If any dial failed.
            Interrupted: If the run was cancelled.
        """
        matrix = MatrixExecutor(
            self.lifecycle.observer,
            Dialer(self.executor, self.lifecycle.namespace, self.cfg.dial_timeout),
            self._inner,
            worker_count=self.cfg.worker_count,
            sinks=self.sinks,
        )
        combinations = HOST_NETWORK_COMBINATIONS if self.cfg.test_host_network else HOST_NETWORK_COMBINATIONS[:1]

        if self.cfg.test_pods:
            pairs = matrix.pod_pairs()
            for source, target in combinations:
                console.print(Panel.fit(pass_title(PathKind.POD_IP, source, target), style="bold blue"))
                self._record(matrix.run_pass(PathKind.POD_IP, source, target, pairs))

        if self.cfg.test_services:
            pairs = matrix.service_pairs()
            for source, target in combinations:
                console.print(Panel.fit(pass_title(PathKind.CLUSTER_IP, source, target), style="bold blue"))
                self._record(matrix.run_pass(PathKind.CLUSTER_IP, source, target, pairs))

        if self.cfg.test_service_names:
            console.print(Panel.fit(pass_title(PathKind.SERVICE_NAME, False, None), style="bold blue"))
            self._record(matrix.run_service_name_pass())

        if self.cfg.test_external_ips:
            pairs = matrix.service_pairs()
            for source, target in combinations:
                console.print(Panel.fit(pass_title(PathKind.EXTERNAL_IP, source, target), style="bold blue"))
                self._record(matrix.run_pass(PathKind.EXTERNAL_IP, source, target, pairs))

        self._print_summary()
        errors = [result.error for result in self.results if result.error is not None]
        if errors:
            failed = sum(len(result.failures) for result in self.results)
            raise ConnectivityError(f"{failed} connectivity checks failed", errors)

    def _record(self, result: PassResult) -> None:
        self.results.append(result)
        logger.info(
            "%s: %d dials, %d failed",
            pass_title(result.kind, result.source_host_network, result.target_host_network),
            len(result.outcomes), len(result.failures),
        )

    def _print_summary(self) -> None:
        table = Table(title="Connectivity summary")
        table.add_column("Path")
        table.add_column("Dials", justify="right")
        table.add_column("Failed", justify="right")
        for result in self.results:
            failed = len(result.failures)
            table.add_row(
                pass_title(result.kind, result.source_host_network, result.target_host_network),
                str(len(result.outcomes)),
                f"[red]{failed}[/red]" if failed else "[green]0[/green]",
            )
        console.print(table)
