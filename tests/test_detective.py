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

import pytest

from kube_detective.config import DetectiveConfig
from kube_detective.detective import Detective, pass_title
from kube_detective.errors import (
    ConfigurationError,
    ConnectivityError,
    Interrupted,
    PoolExhaustedError,
    SetupError,
    TeardownError,
)
from kube_detective.matrix import PathKind

from conftest import FakeCluster, FakeExecutor, make_node


def _config(**overrides) -> DetectiveConfig:
    settings = {"poll_interval": 0.01, "test_services": False}
    settings.update(overrides)
    return DetectiveConfig(**settings)


def _leaves(err: BaseExceptionGroup) -> list[BaseException]:
    leaves = []
    for exc in err.exceptions:
        if isinstance(exc, BaseExceptionGroup):
            leaves.extend(_leaves(exc))
        else:
            leaves.append(exc)
    return leaves


def test_three_nodes_pods_only_without_host_network(three_nodes, sink):
    cluster = FakeCluster(three_nodes)
    executor = FakeExecutor()
    detective = Detective(_config(test_host_network=False), cluster, executor, sinks=[sink])

    detective.run()

    assert len(cluster.pods) == 3
    assert len(detective.results) == 1
    assert len(executor.calls) == 9
    assert len(sink.outcomes) == 9
    assert all(outcome.success for outcome in sink.outcomes)
    assert cluster.deleted == cluster.namespaces


def test_every_pass_runs_in_order(sink):
    cluster = FakeCluster([make_node("node-a"), make_node("node-b")])
    detective = Detective(
        _config(test_services=True, test_service_names=True, test_external_ips=True, external_cidr="10.44.0.0/29"),
        cluster, FakeExecutor(), sinks=[sink],
    )

    detective.run()

    kinds = [result.kind for result in detective.results]
    assert kinds == [PathKind.POD_IP] * 4 + [PathKind.CLUSTER_IP] * 4 + [PathKind.SERVICE_NAME] + [PathKind.EXTERNAL_IP] * 4
    modes = [(r.source_host_network, r.target_host_network) for r in detective.results[:4]]
    assert modes == [(False, False), (True, False), (False, True), (True, True)]
    # 4 probe pods: 16 pod pairs, 16 service pairs, 2 service names, 16 external IPs.
    assert len(sink.outcomes) == 16 + 16 + 2 + 16


def test_dial_failures_do_not_stop_later_passes():
    cluster = FakeCluster([make_node("node-a"), make_node("node-b")])
    executor = FakeExecutor(fails=lambda pod, command: "http://10.1.0.1:" in command)
    detective = Detective(_config(test_host_network=False, test_services=True), cluster, executor)

    with pytest.raises(ConnectivityError) as excinfo:
        detective.run()

    assert len(detective.results) == 2
    assert len(_leaves(excinfo.value)) == 2
    assert cluster.deleted == cluster.namespaces


def test_pool_exhaustion_aborts_and_cleans_up(three_nodes):
    cluster = FakeCluster(three_nodes)
    detective = Detective(
        _config(test_host_network=False, test_external_ips=True, external_cidr="10.44.0.0/31"),
        cluster, FakeExecutor(),
    )

    with pytest.raises(PoolExhaustedError, match="no more external IPs available"):
        detective.run()

    assert len(cluster.services) == 2
    assert cluster.deleted == cluster.namespaces
    assert detective.results == []


def test_setup_failure_cleans_up(three_nodes):
    cluster = FakeCluster(three_nodes, pod_phase="Failed")
    executor = FakeExecutor()
    with pytest.raises(SetupError):
        Detective(_config(), cluster, executor).run()
    assert executor.calls == []
    assert len(cluster.deleted) == 1


def test_cancel_mid_pass_interrupts_and_tears_down_once(three_nodes):
    cluster = FakeCluster(three_nodes)
    release = threading.Event()
    executor = FakeExecutor(release=release)
    detective = Detective(_config(test_host_network=False, worker_count=2), cluster, executor)

    detective.start()
    assert executor.started.wait(5)
    detective.kill(InterruptedError("received SIGINT"))
    detective.kill()
    release.set()

    with pytest.raises(Interrupted, match="received SIGINT"):
        detective.wait()
    assert len(executor.calls) < 9
    assert cluster.deleted == cluster.namespaces
    assert len(cluster.deleted) == 1


def test_kill_before_start_creates_nothing(three_nodes):
    cluster = FakeCluster(three_nodes)
    detective = Detective(_config(), cluster, FakeExecutor())
    detective.kill()
    with pytest.raises(Interrupted):
        detective.run()
    assert cluster.namespaces == []
    assert cluster.deleted == []


def test_run_timeout_interrupts(three_nodes):
    cluster = FakeCluster(three_nodes)
    release = threading.Event()
    detective = Detective(_config(run_timeout=0.2), cluster, FakeExecutor(release=release))

    detective.start()
    threading.Timer(0.5, release.set).start()
    with pytest.raises(Interrupted, match="run exceeded"):
        detective.wait()
    assert len(cluster.deleted) == 1


def test_teardown_error_alone_is_raised(three_nodes):
    cluster = FakeCluster(three_nodes, delete_error=500)
    with pytest.raises(TeardownError):
        Detective(_config(test_host_network=False), cluster, FakeExecutor()).run()


def test_teardown_error_does_not_mask_run_error(three_nodes):
    cluster = FakeCluster(three_nodes, delete_error=500)
    executor = FakeExecutor(fails=lambda pod, command: True)
    with pytest.raises(ConnectivityError) as excinfo:
        Detective(_config(test_host_network=False), cluster, executor).run()
    assert any("cleanup also failed" in note for note in excinfo.value.__notes__)


def test_external_ips_require_a_cidr(three_nodes):
    cluster = FakeCluster(three_nodes)
    with pytest.raises(ConfigurationError, match="external CIDR"):
        Detective(_config(test_external_ips=True), cluster, FakeExecutor())
    assert cluster.namespaces == []


def test_invalid_node_filter_is_rejected_up_front(three_nodes):
    with pytest.raises(ConfigurationError):
        Detective(_config(node_filter="(["), FakeCluster(three_nodes), FakeExecutor())


def test_start_twice_is_rejected(three_nodes):
    detective = Detective(_config(test_host_network=False), FakeCluster(three_nodes), FakeExecutor())
    detective.start()
    with pytest.raises(RuntimeError):
        detective.start()
    detective.wait()


def test_wait_before_start_is_rejected(three_nodes):
    with pytest.raises(RuntimeError):
        Detective(_config(), FakeCluster(three_nodes), FakeExecutor()).wait()


@pytest.mark.parametrize("kind,source,target,title", [
    (PathKind.POD_IP, False, False, "Pod --> Pod"),
    (PathKind.POD_IP, True, False, "Pod (hostNetwork) --> Pod"),
    (PathKind.CLUSTER_IP, False, True, "Pod --> ClusterIP --> Pod (hostNetwork)"),
    (PathKind.EXTERNAL_IP, True, True, "Pod (hostNetwork) --> ExternalIP --> Pod (hostNetwork)"),
    (PathKind.SERVICE_NAME, False, None, "Pod --> Service Name --> Pod"),
])
def test_pass_titles(kind, source, target, title):
    assert pass_title(kind, source, target) == title
