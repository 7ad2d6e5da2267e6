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

"""Fixed-interval trigger that never overlaps runs."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_MAX_INSTANCES,
    EVENT_JOB_SUBMITTED,
    JobEvent,
    JobExecutionEvent,
)
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from kube_detective import logger

JOB_ID = "connectivity-run"


class PeriodicTrigger:
    """Invoke *job* every *interval* seconds from a background scheduler.

    The job runs with a single allowed instance, so a tick that comes due
    while the previous run is still going is skipped, and missed ticks are
    coalesced into one. Job failures are logged and do not stop the schedule.

    Args:
        interval: Seconds between ticks.
        job: Zero-argument callable run on each tick.
        run_immediately: Whether the first tick fires on :meth:`start`.
    """

    def __init__(self, interval: float, job: Callable[[], None], run_immediately: bool = True) -> None:
        self.interval = interval
        self.job = job
        self.run_immediately = run_immediately
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self._lock = threading.Lock()
        self.scheduler = BackgroundScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": None,
            },
        )
        self.scheduler.add_listener(
            self._on_event, EVENT_JOB_SUBMITTED | EVENT_JOB_MAX_INSTANCES | EVENT_JOB_ERROR,
        )

    def start(self) -> None:
        job_kwargs: dict[str, Any] = {}
        if self.run_immediately:
            job_kwargs["next_run_time"] = datetime.now()
        self.scheduler.add_job(
            self.job,
            IntervalTrigger(seconds=self.interval),
            id=JOB_ID,
            name="connectivity run",
            replace_existing=True,
            **job_kwargs,
        )
        self.scheduler.start()
        logger.info("Scheduler started, interval %ss", self.interval)

    def stop(self) -> None:
        """Stop ticking and wait for a running job to finish."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler shutdown complete")

    def _on_event(self, event: JobEvent) -> None:
        with self._lock:
            if event.code == EVENT_JOB_SUBMITTED:
                self.runs += 1
            elif event.code == EVENT_JOB_MAX_INSTANCES:
                self.skipped += 1
                logger.info("Previous run still in progress, skipping this tick")
            elif isinstance(event, JobExecutionEvent):
                self.failures += 1
                logger.error("Scheduled run failed: %s", event.exception)
