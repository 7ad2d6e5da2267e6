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

from kube_detective.allocator import ExternalIPPool
from kube_detective.errors import Interrupted, PoolExhaustedError, SetupError, TeardownError
from kube_detective.lifecycle import ResourceLifecycle, poll_until
from kube_detective.predicates import compile_node_filter
from kube_detective.supervisor import Task

from conftest import FakeCluster, make_node


def _lifecycle(cluster, host_network=True, pool=None, node_filter=".*", task=None):
    return ResourceLifecycle(
        cluster,
        task or Task("test"),
        image="example/serve:1",
        node_filter=compile_node_filter(node_filter),
        host_network=host_network,
        pool=pool,
        poll_interval=0.01,
    )


# ----------------------------------------------------------------------------
# poll_until
# ----------------------------------------------------------------------------

def test_poll_until_returns_once_condition_holds():
    answers = iter([False, False, True])
    poll_until(lambda: next(answers), Task("test"), 0.01)


def test_poll_until_is_interrupted_by_kill():
    task = Task("test")
    timer = threading.Timer(0.05, task.kill, args=(RuntimeError("stop"),))
    timer.start()
    with pytest.raises(Interrupted, match="stop"):
        poll_until(lambda: False, task, 10)
    timer.cancel()


def test_poll_until_propagates_condition_errors():
    def broken():
        raise SetupError("bad pod")

    with pytest.raises(SetupError, match="bad pod"):
        poll_until(broken, Task("test"), 0.01)


# ----------------------------------------------------------------------------
# Setup
# ----------------------------------------------------------------------------

def test_setup_creates_two_pods_per_eligible_node():
    nodes = [make_node("node-a"), make_node("node-b"), make_node("node-c", ready="False")]
    cluster = FakeCluster(nodes)
    lifecycle = _lifecycle(cluster)

    lifecycle.setup(with_services=False, with_external_ips=False)

    assert lifecycle.namespace == cluster.namespaces[0]
    assert lifecycle.namespace.startswith("detective-")
    assert lifecycle.expected_pods == 4
    placements = sorted((p.spec.node_name, bool(p.spec.host_network)) for p in cluster.pods.values())
    assert placements == [("node-a", False), ("node-a", True), ("node-b", False), ("node-b", True)]
    assert cluster.services == {}
    assert cluster.service_account_reads >= 2


def test_setup_without_host_network_creates_one_pod_per_node(three_nodes):
    cluster = FakeCluster(three_nodes)
    lifecycle = _lifecycle(cluster, host_network=False)
    lifecycle.setup(with_services=False, with_external_ips=False)
    assert lifecycle.expected_pods == 3
    assert not any(p.spec.host_network for p in cluster.pods.values())


def test_node_filter_limits_placement(three_nodes):
    cluster = FakeCluster(three_nodes)
    lifecycle = _lifecycle(cluster, host_network=False, node_filter="-b$")
    lifecycle.setup(with_services=False, with_external_ips=False)
    assert [p.spec.node_name for p in cluster.pods.values()] == ["node-b"]


def test_setup_creates_one_service_per_pod(three_nodes):
    cluster = FakeCluster(three_nodes)
    lifecycle = _lifecycle(cluster, host_network=False)
    lifecycle.setup(with_services=True, with_external_ips=False)
    assert len(lifecycle.service_names) == 3
    pod_ips = {p.status.pod_ip for p in cluster.pods.values()}
    assert {s.metadata.labels["podIP"] for s in cluster.services.values()} == pod_ips


def test_external_ips_are_allocated_in_order(three_nodes):
    cluster = FakeCluster(three_nodes)
    lifecycle = _lifecycle(cluster, host_network=False, pool=ExternalIPPool("10.44.0.0/30"))
    lifecycle.setup(with_services=True, with_external_ips=True)
    allocated = [cluster.services[name].spec.external_i_ps for name in lifecycle.service_names]
    assert allocated == [["10.44.0.0"], ["10.44.0.1"], ["10.44.0.2"]]


def test_exhausted_pool_stops_service_creation(three_nodes):
    cluster = FakeCluster(three_nodes)
    lifecycle = _lifecycle(cluster, host_network=False, pool=ExternalIPPool("10.44.0.0/31"))
    with pytest.raises(PoolExhaustedError):
        lifecycle.setup(with_services=True, with_external_ips=True)
    assert len(cluster.services) == 2


def test_failed_pod_aborts_setup(three_nodes):
    cluster = FakeCluster(three_nodes, pod_phase="Failed")
    lifecycle = _lifecycle(cluster)
    with pytest.raises(SetupError, match="Failed to create a Pod: ErrImagePull"):
        lifecycle.setup(with_services=False, with_external_ips=False)


def test_setup_on_dying_task_is_interrupted(three_nodes):
    cluster = FakeCluster(three_nodes)
    task = Task("test")
    task.kill(RuntimeError("shutdown"))
    with pytest.raises(Interrupted):
        _lifecycle(cluster, task=task).setup(with_services=False, with_external_ips=False)
    assert cluster.namespaces == []


# ----------------------------------------------------------------------------
# Teardown
# ----------------------------------------------------------------------------

def test_teardown_deletes_namespace_once(three_nodes):
    cluster = FakeCluster(three_nodes)
    lifecycle = _lifecycle(cluster)
    lifecycle.create_namespace()
    assert lifecycle.teardown() is True
    assert lifecycle.teardown() is False
    assert cluster.deleted == [lifecycle.namespace]


def test_teardown_without_namespace_is_a_no_op(three_nodes):
    cluster = FakeCluster(three_nodes)
    assert _lifecycle(cluster).teardown() is False
    assert cluster.deleted == []


def test_teardown_failure_is_reported(three_nodes):
    cluster = FakeCluster(three_nodes, delete_error=500)
    lifecycle = _lifecycle(cluster)
    lifecycle.create_namespace()
    with pytest.raises(TeardownError, match="deletion refused"):
        lifecycle.teardown()
