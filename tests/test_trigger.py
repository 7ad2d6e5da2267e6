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

import threading
import time

from kube_detective.trigger import PeriodicTrigger


def _wait_for(condition, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


def test_first_tick_fires_on_start():
    fired = threading.Event()
    trigger = PeriodicTrigger(3600, fired.set)
    trigger.start()
    try:
        assert fired.wait(5)
    finally:
        trigger.stop()
    assert trigger.runs == 1


def test_first_tick_waits_for_interval_when_not_immediate():
    calls = []
    trigger = PeriodicTrigger(3600, lambda: calls.append(1), run_immediately=False)
    trigger.start()
    time.sleep(0.2)
    trigger.stop()
    assert calls == []
    assert trigger.runs == 0


def test_runs_on_interval_until_stopped():
    ticks = threading.Semaphore(0)
    trigger = PeriodicTrigger(0.05, ticks.release)
    trigger.start()
    try:
        for _ in range(3):
            assert ticks.acquire(timeout=5)
    finally:
        trigger.stop()
    assert trigger.runs >= 3
    assert not trigger.scheduler.running


def test_tick_is_skipped_while_job_runs():
    release = threading.Event()
    lock = threading.Lock()
    active = [0]
    peak = [0]

    def job():
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        release.wait(5)
        with lock:
            active[0] -= 1

    trigger = PeriodicTrigger(0.05, job)
    trigger.start()
    try:
        assert _wait_for(lambda: trigger.skipped >= 1)
    finally:
        release.set()
        trigger.stop()
    assert peak[0] == 1


def test_failing_job_does_not_stop_the_schedule():
    calls = threading.Semaphore(0)

    def job():
        calls.release()
        raise RuntimeError("run failed")

    trigger = PeriodicTrigger(0.05, job)
    trigger.start()
    try:
        assert calls.acquire(timeout=5)
        assert calls.acquire(timeout=5)
    finally:
        trigger.stop()
    assert trigger.failures >= 1


def test_stop_before_start_is_a_no_op():
    trigger = PeriodicTrigger(1, lambda: None)
    trigger.stop()
    assert trigger.runs == 0
