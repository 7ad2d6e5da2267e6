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

"""kube_detective - in-cluster network connectivity checks."""

from __future__ import annotations

import logging

from rich.console import Console

__version__ = "0.1.0"

console = Console(stderr=True)
logger = logging.getLogger("kube_detective")
