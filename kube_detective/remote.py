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

"""Remote command execution inside probe pods and the HTTP dial built on it."""

from __future__ import annotations

import ipaddress
from typing import Protocol

import sh
from kubernetes.client import V1Pod

from kube_detective import logger
from kube_detective.constants import (
    DEFAULT_DIAL_TIMEOUT_SECONDS,
    PROBE_FETCH_COMMAND,
    REMOTE_COMMAND_GRACE_SECONDS,
)
from kube_detective.errors import DialError, RemoteCommandError


class RemoteExecutor(Protocol):
    """Runs a shell command inside a pod and returns its combined output."""

    def run(self, namespace: str, pod_name: str, command: str) -> str: ...


class KubectlExecutor:
    """Run commands in pods through ``kubectl exec``.

    Args:
        timeout: Seconds before the kubectl process is killed.
        context: kubeconfig context to pass to kubectl, or None.
    """

    def __init__(self, timeout: float, context: str | None = None) -> None:
        self.timeout = timeout
        self.context = context

    def run(self, namespace: str, pod_name: str, command: str) -> str:
        """Execute ``/bin/sh -c <command>`` in *pod_name*.

        Returns:
            Combined stdout and stderr of the command.

        Raises:
            RemoteCommandError: On non-zero exit, timeout, or a missing kubectl.
        """
        args = ["exec", f"--namespace={namespace}", pod_name, "--", "/bin/sh", "-c", command]
        if self.context:
            args.insert(0, f"--context={self.context}")
        logger.debug("Running 'kubectl %s'", " ".join(args))
        try:
            return str(sh.kubectl(*args, _err_to_out=True, _timeout=self.timeout))
        except sh.ErrorReturnCode as err:
            output = err.stdout.decode(errors="replace")
            raise RemoteCommandError(
                f"command in pod {pod_name} exited with {err.exit_code}: {output.strip()}", output,
            ) from err
        except sh.TimeoutException as err:
            raise RemoteCommandError(f"command in pod {pod_name} timed out after {self.timeout}s") from err
        except sh.CommandNotFound as err:
            raise RemoteCommandError("kubectl not found on PATH") from err


def url_host(host: str) -> str:
    """Bracket IPv6 literals so they can be used in a URL."""
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]"
    except ValueError:
        pass
    return host


def fetch_command(host: str, port: int, timeout: int) -> str:
    """Shell command fetching ``http://host:port`` with a bounded wait."""
    return f"{PROBE_FETCH_COMMAND} --timeout={timeout} -O - http://{url_host(host)}:{port}"


def kubectl_timeout(dial_timeout: int) -> float:
    """kubectl deadline leaving room for the in-pod fetch to time out first."""
    return dial_timeout + REMOTE_COMMAND_GRACE_SECONDS


class Dialer:
    """Issues HTTP probes from a source pod.

    Args:
        executor: Remote command executor used to reach the source pod.
        namespace: Namespace of the probe pods.
        timeout: Seconds the fetch may take before it counts as failed.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        namespace: str,
        timeout: int = DEFAULT_DIAL_TIMEOUT_SECONDS,
    ) -> None:
        self.executor = executor
        self.namespace = namespace
        self.timeout = timeout

    def dial(self, pod: V1Pod, host: str, port: int) -> str:
        """Fetch ``http://host:port`` from inside *pod*.

        Returns:
            Output of the fetch command.

        Raises:
            DialError: If the destination could not be reached.
        """
        command = fetch_command(host, port, self.timeout)
        try:
            return self.executor.run(self.namespace, pod.metadata.name, command)
        except RemoteCommandError as err:
            logger.debug("Error: '%s'", err)
            raise DialError(str(err)) from err
        except Exception as err:
            logger.debug("Executor error in pod %s: %r", pod.metadata.name, err)
            raise DialError(f"command in pod {pod.metadata.name} could not run: {err}") from err
