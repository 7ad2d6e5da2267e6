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

"""Error types raised by a detective run."""

from __future__ import annotations


class DetectiveError(RuntimeError):
    """Base class for every error raised by kube_detective."""


class ConfigurationError(DetectiveError):
    """Invalid settings; reported before any cluster resource is touched."""


class PoolExhaustedError(ConfigurationError):
    """The external IP pool has no addresses left."""

    def __init__(self, message: str = "no more external IPs available") -> None:
        super().__init__(message)


class SetupError(DetectiveError):
    """Provisioning of the probe topology failed."""


class TeardownError(DetectiveError):
    """The test namespace could not be deleted."""


class Interrupted(DetectiveError):
    """The run was cancelled before it could finish."""

    def __init__(self, reason: BaseException | str | None = None) -> None:
        self.reason = reason
        message = "interrupted"
        if reason:
            message = f"interrupted: {reason}"
        super().__init__(message)


class RemoteCommandError(DetectiveError):
    """A command executed inside a pod failed, timed out, or could not start."""

    def __init__(self, message: str, output: str = "") -> None:
        super().__init__(message)
        self.output = output


class DialError(DetectiveError):
    """A single connectivity probe failed."""


class ConnectivityError(ExceptionGroup):
    """Every failing probe of one or more matrix passes."""
