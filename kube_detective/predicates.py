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

"""Node eligibility and label parsing helpers."""

from __future__ import annotations

import re

from kubernetes.client import V1Node

from kube_detective import logger
from kube_detective.constants import CONDITION_TRUE, NODE_CONDITION_READY
from kube_detective.errors import ConfigurationError

_TRUE_VALUES = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_VALUES = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def compile_node_filter(expression: str) -> re.Pattern[str]:
    """Compile the node name filter.

    Args:
        expression: Regular expression matched anywhere in a node name.

    Returns:
        The compiled pattern.

    Raises:
        ConfigurationError: If *expression* is not a valid regex.
    """
    try:
        return re.compile(expression)
    except re.error as err:
        raise ConfigurationError(f"The node filter {expression!r} is not a valid regex: {err}") from err


def node_is_eligible(node: V1Node, node_filter: re.Pattern[str]) -> bool:
    """Whether probe pods should be placed on *node*.

    A node qualifies when it is schedulable, reports at least one condition,
    its name matches *node_filter*, and its Ready condition (if present) is
    ``True``.
    """
    name = node.metadata.name
    if node.spec is not None and node.spec.unschedulable:
        return False

    conditions = (node.status.conditions if node.status else None) or []
    if not conditions:
        return False

    if not node_filter.search(name):
        return False

    for cond in conditions:
        if cond.type == NODE_CONDITION_READY and cond.status != CONDITION_TRUE:
            logger.debug("Ignoring node %s with %s condition status %s", name, cond.type, cond.status)
            return False
    return True


def parse_bool_label(value: str | None) -> bool | None:
    """Parse a boolean label value, accepting the usual spellings.

    Returns:
        The parsed value, or None when the label is missing or unparseable.
    """
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def format_bool_label(value: bool) -> str:
    return "true" if value else "false"
