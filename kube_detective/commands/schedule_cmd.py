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

"""Periodic connectivity runs with metrics served over HTTP."""

from __future__ import annotations

import threading

import typer
from rich.panel import Panel

from kube_detective import console, logger
from kube_detective.cluster import ClusterClient
from kube_detective.commands.run_cmd import push_metrics
from kube_detective.config import DetectiveConfig, display_config, resolve_config, validate_config
from kube_detective.detective import Detective
from kube_detective.sinks import ConsoleSink, PrometheusSink
from kube_detective.trigger import PeriodicTrigger
from kube_detective.utils import require_command, shutdown_on_signal

app = typer.Typer(help="Repeat connectivity runs on a fixed interval.")


class ScheduledRuns:
    """Runs one detective per trigger tick and cancels the active one on shutdown.

    Args:
        cfg: Resolved configuration shared by every run.
        client: Cluster API client shared by every run.
        metrics: Sink accumulating counters across runs.
    """

    def __init__(self, cfg: DetectiveConfig, client: ClusterClient, metrics: PrometheusSink) -> None:
        self.cfg = cfg
        self.client = client
        self.metrics = metrics
        self.stopping = threading.Event()
        self._lock = threading.Lock()
        self._active: Detective | None = None

    def run_once(self) -> None:
        detective = Detective(self.cfg, self.client, sinks=[ConsoleSink(), self.metrics])
        with self._lock:
            if self.stopping.is_set():
                return
            self._active = detective
        try:
            detective.run()
            console.print("[green]✅ All connectivity checks passed[/green]")
        finally:
            with self._lock:
                self._active = None
            if self.cfg.pushgateway:
                push_metrics(self.metrics, self.cfg.pushgateway)

    def shutdown(self, reason: BaseException | None = None) -> None:
        with self._lock:
            self.stopping.set()
            active = self._active
        if active is not None:
            active.kill(reason)


@app.callback(invoke_without_command=True)
def schedule(
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
        None, "--timeout", help="Deadline for each run in seconds"),
    context: str | None = typer.Option(
        None, "--context", help="kubeconfig context to use"),
    pushgateway: str | None = typer.Option(
        None, "--pushgateway", help="Also push metrics to this Prometheus Pushgateway after each run"),
    interval: float | None = typer.Option(
        None, "--interval", help="Seconds between runs (overrides DETECTIVE_SCHEDULE_INTERVAL)"),
    metrics_port: int | None = typer.Option(
        None, "--metrics-port", help="Port serving /metrics, 0 to disable"),
) -> None:
    """Run the checks every --interval seconds until SIGINT/SIGTERM.

    A run that is still going when the next one is due causes that tick to
    be skipped.
    """
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
        schedule_interval=interval,
        metrics_port=metrics_port,
    )
    validate_config(cfg)
    display_config(cfg)
    require_command("kubectl")

    metrics = PrometheusSink()
    if cfg.metrics_port:
        metrics.serve(cfg.metrics_port)

    runs = ScheduledRuns(cfg, ClusterClient.from_environment(cfg.kube_context), metrics)
    trigger = PeriodicTrigger(cfg.schedule_interval, runs.run_once)

    console.print(Panel.fit(f"Running checks every {cfg.schedule_interval}s", style="bold blue"))
    with shutdown_on_signal(runs.shutdown):
        trigger.start()
        runs.stopping.wait()
    logger.info("Shutting down ...")
    trigger.stop()
