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

"""Shared helpers for the CLI commands."""

from __future__ import annotations

import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager

import sh

from kube_detective import console

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


@contextmanager
def shutdown_on_signal(on_signal: Callable[[BaseException], None]) -> Iterator[None]:
    """Call *on_signal* when SIGINT or SIGTERM arrives inside the block.

    The previous handlers are restored on exit. Must be entered from the
    main thread.

    Args:
        on_signal: Receives an ``InterruptedError`` naming the signal.
    """
    def _handler(signum: int, _frame: object) -> None:
        name = signal.Signals(signum).name
        console.print(f"[yellow]⚠️  Received {name}, shutting down...[/yellow]")
        on_signal(InterruptedError(f"received {name}"))

    previous = {sig: signal.signal(sig, _handler) for sig in SHUTDOWN_SIGNALS}
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
