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

"""Cancellable tasks for composing supervised runs.

A :class:`Task` runs one callable on its own thread and tracks two states:
*dying* (cancellation requested, or the callable has returned) and *dead*
(the callable has returned). Tasks can be nested: killing a parent kills
every child, which lets an outer task cancel an inner one while still
running its own cleanup afterwards.
"""

from __future__ import annotations

import threading
from collections.abc import Callable

from kube_detective import logger


class Task:
    """A cancellable unit of work running on a dedicated thread.

    Args:
        name: Thread name, used in logs.
        parent: Optional parent task whose cancellation propagates here.
    """

    def __init__(self, name: str, parent: Task | None = None) -> None:
        self.name = name
        self._dying = threading.Event()
        self._dead = threading.Event()
        self._lock = threading.Lock()
        self._children: list[Task] = []
        self._thread: threading.Thread | None = None
        self._reason: BaseException | None = None
        self._error: BaseException | None = None
        if parent is not None:
            parent._adopt(self)

    def _adopt(self, child: Task) -> None:
        with self._lock:
            self._children.append(child)
            dying = self._dying.is_set()
            reason = self._reason
        if dying:
            child.kill(reason)

    @property
    def dying(self) -> threading.Event:
        """Set once cancellation was requested or the work has finished."""
        return self._dying

    @property
    def dead(self) -> threading.Event:
        """Set once the work has finished."""
        return self._dead

    @property
    def reason(self) -> BaseException | None:
        """The reason passed to the first :meth:`kill` call, if any."""
        return self._reason

    @property
    def error(self) -> BaseException | None:
        """The error the task ended with, if any."""
        return self._error

    def alive(self) -> bool:
        return not self._dying.is_set()

    def go(self, fn: Callable[[], None]) -> None:
        """Run *fn* on a new thread.

        An exception escaping *fn* becomes the task's error. A task killed
        before ``go`` still runs *fn*, which is expected to notice that it
        is dying and return early.

        Raises:
            RuntimeError: If the task was already started.
        """
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f"Task {self.name} already started")
            self._thread = threading.Thread(target=self._run, args=(fn,), name=self.name, daemon=True)
        self._thread.start()

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except BaseException as err:
            logger.debug("Task %s failed: %s", self.name, err)
            self._error = err
        finally:
            self._dying.set()
            self._dead.set()

    def kill(self, reason: BaseException | None = None) -> None:
        """Request cancellation of this task and all of its children.

        Idempotent; only the first non-None *reason* is kept.
        """
        with self._lock:
            if self._reason is None:
                self._reason = reason
            self._dying.set()
            children = list(self._children)
        for child in children:
            child.kill(reason)

    def wait(self, timeout: float | None = None) -> BaseException | None:
        """Block until the task is dead and return its error.

        Args:
            timeout: Maximum seconds to wait, or None to wait forever.

        Returns:
            The exception the task ended with, or None on success.

        Raises:
            TimeoutError: If the task is still running after *timeout*.
        """
        if not self._dead.wait(timeout):
            raise TimeoutError(f"Task {self.name} still running after {timeout}s")
        return self._error
