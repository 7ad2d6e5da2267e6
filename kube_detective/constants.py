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

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml


def load_dependencies() -> dict:
    """Load probe image and tool references from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = Path(__file__).resolve().parent / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


# -- Ports --
POD_HTTP_PORT = 9376
SERVICE_HTTP_PORT = 9377

# -- Probe workloads --
PROBE_CONTAINER_NAME = dep_value("probe", "container_name", default="server")
PROBE_FETCH_COMMAND = dep_value("probe", "fetch_command", default="wget")
PROBE_GRACE_PERIOD_SECONDS = 2
DEFAULT_SERVICE_ACCOUNT = "default"

# -- Generated name prefixes --
NAMESPACE_PREFIX = "detective-"
POD_PREFIX = "server-"
SERVICE_PREFIX = "clusterip-"

# -- Labels --
LABEL_NODE_NAME = "nodeName"
LABEL_HOST_NETWORK = "hostNetwork"
LABEL_POD_NAME = "podName"
LABEL_POD_IP = "podIP"

# -- Pod phases and node conditions --
POD_PHASE_RUNNING = "Running"
POD_PHASE_FAILED = "Failed"
NODE_CONDITION_READY = "Ready"
CONDITION_TRUE = "True"

# -- Polling & watches --
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
WATCH_TIMEOUT_SECONDS = 30
WATCH_RESTART_DELAY_SECONDS = 1.0
WATCH_LIST_FAILURE_LIMIT = 5
REMOTE_COMMAND_GRACE_SECONDS = 5

# -- Defaults --
DEFAULT_NODE_FILTER = ".*"
DEFAULT_TEST_IMAGE = dep_value("probe", "image", default="gcr.io/google_containers/serve_hostname:1.2")
DEFAULT_WORKER_COUNT = 10
DEFAULT_DIAL_TIMEOUT_SECONDS = 10
DEFAULT_SCHEDULE_INTERVAL_SECONDS = 60

# -- Metrics --
METRICS_NAMESPACE = "kube_detective"
PUSHGATEWAY_JOB = "kube_detective"
DEFAULT_METRICS_PORT = 8080
