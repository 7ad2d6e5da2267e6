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

"""Configuration model, CLI override resolution, and config display."""

from __future__ import annotations

from typing import Any

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.markup import escape
from rich.panel import Panel

from kube_detective import console, logger
from kube_detective.allocator import ExternalIPPool
from kube_detective.constants import (
    DEFAULT_DIAL_TIMEOUT_SECONDS,
    DEFAULT_METRICS_PORT,
    DEFAULT_NODE_FILTER,
    DEFAULT_POLL_INTERVAL_SECONDS,
    DEFAULT_SCHEDULE_INTERVAL_SECONDS,
    DEFAULT_TEST_IMAGE,
    DEFAULT_WORKER_COUNT,
)
from kube_detective.errors import ConfigurationError
from kube_detective.predicates import compile_node_filter


# ============================================================================
# Configuration classes
# ============================================================================

class DetectiveConfig(BaseSettings):
    """Settings of a connectivity run, auto-loaded from DETECTIVE_* env vars.

    Attributes:
        external_cidr: CIDR the external IPs are drawn from.
        node_filter: Regex a node name must match to get probe pods.
        test_pods: Whether to dial pod IPs.
        test_services: Whether to dial cluster IPs.
        test_service_names: Whether to dial a service by its DNS name.
        test_external_ips: Whether to dial external IPs.
        test_host_network: Whether to add a host-network probe pod per node.
        worker_count: Number of concurrent dials per pass.
        test_image: Probe image serving HTTP on the pod port.
        dial_timeout: Seconds a single dial may take.
        poll_interval: Seconds between readiness checks during setup.
        run_timeout: Deadline for a whole run in seconds, or None.
        kube_context: kubeconfig context, or None for the current one.
        pushgateway: Prometheus Pushgateway address, or None to skip pushing.
        schedule_interval: Seconds between runs when scheduled.
        metrics_port: Port serving /metrics when scheduled, or 0 to disable.
    """

    model_config = SettingsConfigDict(env_prefix="DETECTIVE_", extra="ignore")

    external_cidr: str | None = None
    node_filter: str = DEFAULT_NODE_FILTER
    test_pods: bool = True
    test_services: bool = True
    test_service_names: bool = False
    test_external_ips: bool = False
    test_host_network: bool = True
    worker_count: int = Field(default=DEFAULT_WORKER_COUNT, ge=1, le=1000)
    test_image: str = DEFAULT_TEST_IMAGE
    dial_timeout: int = Field(default=DEFAULT_DIAL_TIMEOUT_SECONDS, ge=1)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    run_timeout: float | None = Field(default=None, gt=0)
    kube_context: str | None = None
    pushgateway: str | None = None
    schedule_interval: float = Field(default=DEFAULT_SCHEDULE_INTERVAL_SECONDS, gt=0)
    metrics_port: int = Field(default=DEFAULT_METRICS_PORT, ge=0, le=65535)

    @property
    def needs_services(self) -> bool:
        return self.test_services or self.test_service_names or self.test_external_ips


# ============================================================================
# Config resolution
# ============================================================================

def resolve_config(**overrides: Any) -> DetectiveConfig:
    """Merge CLI overrides, environment variables, and defaults.

    Resolution priority: CLI arguments > DETECTIVE_* environment variables > defaults.

    Args:
        **overrides: Setting values from the CLI; None means "not given".

    Returns:
        The resolved configuration.
    """
    cfg = DetectiveConfig()
    given = {key: value for key, value in overrides.items() if value is not None}
    if given:
        cfg = cfg.model_copy(update=given)
    return cfg


# ============================================================================
# Validation
# ============================================================================

def validate_config(cfg: DetectiveConfig) -> None:
    """Check setting combinations before any cluster resource is touched.

    Args:
        cfg: Resolved configuration.

    Raises:
        ConfigurationError: If the node filter or external CIDR is invalid,
            or external IPs are requested without a CIDR.
    """
    compile_node_filter(cfg.node_filter)
    if cfg.test_external_ips:
        if not cfg.external_cidr:
            raise ConfigurationError("You need to provide an external CIDR to test external IPs")
        ExternalIPPool(cfg.external_cidr)
    elif cfg.external_cidr:
        logger.warning("--external-cidr is set but external IPs are not tested; it will be ignored")
    if not (cfg.test_pods or cfg.needs_services):
        logger.warning("Every check is disabled; the run will only provision and tear down")


# ============================================================================
# Display
# ============================================================================

def display_config(cfg: DetectiveConfig) -> None:
    """Print the settings relevant to the requested checks.

    Args:
        cfg: Resolved configuration.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))
    console.print("[yellow]Checks:[/yellow]")
    console.print(f"  pods            : {cfg.test_pods}")
    console.print(f"  services        : {cfg.test_services}")
    console.print(f"  service names   : {cfg.test_service_names}")
    console.print(f"  external IPs    : {cfg.test_external_ips}")
    console.print(f"  host network    : {cfg.test_host_network}")

    console.print("[yellow]Probes:[/yellow]")
    console.print(f"  node_filter     : {escape(cfg.node_filter)}")
    console.print(f"  test_image      : {cfg.test_image}")
    console.print(f"  worker_count    : {cfg.worker_count}")
    console.print(f"  dial_timeout    : {cfg.dial_timeout}s")

    if cfg.test_external_ips:
        console.print(f"  external_cidr   : {cfg.external_cidr or '(unset)'}")
    if cfg.run_timeout:
        console.print(f"  run_timeout     : {cfg.run_timeout}s")
    if cfg.pushgateway:
        console.print(f"  pushgateway     : {cfg.pushgateway}")
