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

"""Single connectivity run."""

from __future__ import annotations

import typer

from kube_detective import console
from kube_detective.cluster import ClusterClient
from kube_detective.config import DetectiveConfig, display_config, resolve_config, validate_config
from kube_detective.detective import Detective
from kube_detective.matrix import ResultSink
from kube_detective.sinks import ConsoleSink, PrometheusSink
from kube_detective.utils import require_command, shutdown_on_signal

app = typer.Typer(help="Run every connectivity check once and clean up.")


def push_metrics(metrics: PrometheusSink, gateway: str) -> None:
    """Push *metrics*, reporting rather than raising a gateway failure."""
    try:
        metrics.push(gateway)
    except OSError as err:
        console.print(f"[yellow]⚠️  Could not push to Pushgateway {gateway}: {err}[/yellow]")


def run_detective(cfg: DetectiveConfig, client: ClusterClient, sinks: list[ResultSink]) -> None:
    """Run one detective to completion, cancelling it on SIGINT/SIGTERM.

    Raises:
        Exception: Whatever the run ended with.
    """
    detective = Detective(cfg, client, sinks=sinks)
    with shutdown_on_signal(detective.kill):
        detective.run()
    console.print("[green]✅ All connectivity checks passed[/green]")


@app.callback(invoke_without_command=True)
def run(
    external_cidr: str | None = typer.Option(
        None, "--external-cidr", help="Subnet used for external IPs (overrides DETECTIVE_EXTERNAL_CIDR)"),
    node_filter: str | None = typer.Option(
        None, "--node-filter", help="Only use nodes whose name matches this regex"),
    pods: bool | None = typer.Option(
        None, "--pods/--no-pods", help="Test pod to pod IP connectivity"),
    services: bool | None = typer.Option(
        None, "--services/--no-services", help="Test pod to cluster IP connectivity"),
    service_names: bool | None = typer.Option(
        None, "--service-names/--no-service-names", help="Test pod to service name connectivity"),
    external_ips: bool | None = typer.Option(
        None, "--external-ips/--no-external-ips", help="Test pod to external IP connectivity"),
    host_network: bool | None = typer.Option(
        None, "--host-network/--no-host-network", help="Also probe from and to host-network pods"),
    workers: int | None = typer.Option(
        None, "--workers", help="Concurrent dials per pass"),
    test_image: str | None = typer.Option(
        None, "--test-image", help="Probe image serving HTTP on port 9376"),
    dial_timeout: int | None = typer.Option(
        None, "--dial-timeout", help="Seconds a single dial may take"),
    timeout: float | None = typer.Option(
        None, "--timeout", help="Deadline for the whole run in seconds"),
    context: str | None = typer.Option(
        None, "--context", help="kubeconfig context to use"),
    pushgateway: str | None = typer.Option(
        None, "--pushgateway", help="Push metrics to this Prometheus Pushgateway"),
) -> None:
    """Provision probes, dial every path once, and delete the namespace."""
    cfg = resolve_config(
        external_cidr=external_cidr,
        node_filter=node_filter,
        test_pods=pods,
        test_services=services,
        test_service_names=service_names,
        test_external_ips=external_ips,
        test_host_network=host_network,
        worker_count=workers,
        test_image=test_image,
        dial_timeout=dial_timeout,
        run_timeout=timeout,
        kube_context=context,
        pushgateway=pushgateway,
    )
    validate_config(cfg)
    display_config(cfg)
    require_command("kubectl")

    metrics = PrometheusSink() if cfg.pushgateway else None
    sinks: list[ResultSink] = [ConsoleSink()]
    if metrics is not None:
        sinks.append(metrics)

    client = ClusterClient.from_environment(cfg.kube_context)
    try:
        run_detective(cfg, client, sinks)
    finally:
        if metrics is not None:
            push_metrics(metrics, cfg.pushgateway)
