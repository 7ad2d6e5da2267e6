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

"""Result sinks: console lines and Prometheus counters."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, pushadd_to_gateway, start_http_server
from rich.console import Console
from rich.markup import escape

from kube_detective import logger
from kube_detective.constants import METRICS_NAMESPACE, PUSHGATEWAY_JOB
from kube_detective.matrix import PathKind, TestOutcome

_BASE_LABELS = ["source_node", "destination_node", "source_pod_ip", "destination_pod_ip"]


# ============================================================================
# Console
# ============================================================================

class ConsoleSink:
    """Prints one line per outcome.

    Args:
        console: Rich console to print to; defaults to stdout.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def format(self, outcome: TestOutcome) -> str:
        status = "[green]success[/green]" if outcome.success else "[red]failure[/red]"
        if outcome.kind is PathKind.POD_IP:
            line = (
                f"{outcome.source_node:>30} --> {outcome.destination_node:<30}   "
                f"{outcome.source_address:<15} --> {outcome.destination_address:<15}"
            )
        elif outcome.kind is PathKind.SERVICE_NAME:
            line = (
                f"{outcome.source_node:>30} --> Service Name    "
                f"{outcome.source_address:<15} --> {outcome.via or '':<15} --> {outcome.destination_address:<15}"
            )
        else:
            line = (
                f"{outcome.source_node:>30} --> {outcome.kind.display_name} --> {outcome.destination_node:<30}   "
                f"{outcome.source_address:<15} --> {outcome.via or '':<15} --> {outcome.destination_address:<15}"
            )
        return f"\\[{status}] {escape(line)}"

    def report(self, outcome: TestOutcome) -> None:
        self.console.print(self.format(outcome), highlight=False)


# ============================================================================
# Prometheus
# ============================================================================

class PrometheusSink:
    """Counts outcomes in a private Prometheus registry.

    Args:
        registry: Registry to register the counters in; a new one by default.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.tests_total = Counter(
            "tests", "Number of total tests made",
            namespace=METRICS_NAMESPACE, registry=self.registry,
        )
        self.errors_total = Counter(
            "error", "Number of total errors",
            namespace=METRICS_NAMESPACE, registry=self.registry,
        )
        self._dials: dict[PathKind, tuple[Counter, Counter]] = {}
        for kind in PathKind:
            labels = _BASE_LABELS if kind is PathKind.POD_IP else [*_BASE_LABELS, kind.value]
            self._dials[kind] = (
                Counter(
                    f"dial_{kind.value}", f"Number of pod to {kind.display_name} tests",
                    labels, namespace=METRICS_NAMESPACE, registry=self.registry,
                ),
                Counter(
                    f"dial_{kind.value}_error", f"Number of pod to {kind.display_name} test errors",
                    labels, namespace=METRICS_NAMESPACE, registry=self.registry,
                ),
            )

    def report(self, outcome: TestOutcome) -> None:
        label_values = [
            outcome.source_node, outcome.destination_node,
            outcome.source_address, outcome.destination_address,
        ]
        if outcome.kind is not PathKind.POD_IP:
            label_values.append(outcome.via or "")
        total, errors = self._dials[outcome.kind]
        self.tests_total.inc()
        total.labels(*label_values).inc()
        if not outcome.success:
            self.errors_total.inc()
            errors.labels(*label_values).inc()

    def push(self, gateway: str) -> None:
        """Push every counter to a Prometheus Pushgateway.

        Metrics of the same job that this registry does not hold are kept.

        Args:
            gateway: Pushgateway address, e.g. ``pushgateway.local:9091``.
        """
        pushadd_to_gateway(gateway, job=PUSHGATEWAY_JOB, registry=self.registry)
        logger.info("Pushed metrics to Pushgateway: %s", gateway)

    def serve(self, port: int) -> None:
        """Expose the counters on ``/metrics`` from a background HTTP server."""
        start_http_server(port, registry=self.registry)
        logger.info("Serving metrics on :%d/metrics", port)
