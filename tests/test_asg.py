"""
Tests for the auto scaling group backed node pool manager.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from cluster_provisioner.asg import ASGNodePoolManager
from cluster_provisioner.errors import NodePoolUpdateError
from cluster_provisioner.models import NodePool
from cluster_provisioner.updatestrategy import Node


def _kube_node(name, instance_id, ready=True):
    condition = SimpleNamespace(type="Ready", status="True" if ready else "False")
    return SimpleNamespace(
        metadata=SimpleNamespace(name=name),
        spec=SimpleNamespace(provider_id=f"aws:///eu-central-1a/{instance_id}"),
        status=SimpleNamespace(conditions=[condition]),
    )


@pytest.fixture
def clients():
    return {"autoscaling": MagicMock(), "ec2": MagicMock()}


@pytest.fixture
def core():
    with patch("cluster_provisioner.asg.client.CoreV1Api") as mock:
        yield mock.return_value


@pytest.fixture
def manager(clients, core, cluster, settings):
    session = MagicMock()
    session.client.side_effect = lambda name: clients[name]
    return ASGNodePoolManager(session, MagicMock(), cluster, settings)


@pytest.fixture
def group(cluster, settings):
    return {
        "AutoScalingGroupName": "kube-1-workers",
        "DesiredCapacity": 2,
        "MaxSize": 2,
        "LaunchTemplate": {"LaunchTemplateId": "lt-1", "Version": "$Latest"},
        "Tags": [
            {"Key": settings.cluster_tag(cluster.id), "Value": "owned"},
            {"Key": settings.node_pool_tag, "Value": "workers"},
        ],
        "Instances": [
            {"InstanceId": "i-old", "LifecycleState": "InService", "LaunchTemplate": {"Version": "3"}},
            {"InstanceId": "i-new", "LifecycleState": "InService", "LaunchTemplate": {"Version": "4"}},
            {"InstanceId": "i-gone", "LifecycleState": "Terminating", "LaunchTemplate": {"Version": "3"}},
        ],
    }


def test_get_pool(manager, clients, core, group):
    clients["autoscaling"].get_paginator.return_value.paginate.return_value = [{"AutoScalingGroups": [group]}]
    clients["ec2"].describe_launch_templates.return_value = {"LaunchTemplates": [{"LatestVersionNumber": 4}]}
    core.list_node.return_value.items = [_kube_node("node-old", "i-old"), _kube_node("node-new", "i-new", ready=False)]

    state = manager.get_pool(NodePool(name="workers"))

    assert state.desired == 2
    assert state.generation == "4"
    assert [node.name for node in state.nodes] == ["node-old", "node-new"]
    assert [node.name for node in state.outdated] == ["node-old"]
    assert state.ready_count == 1


def test_unknown_pool(manager, clients):
    clients["autoscaling"].get_paginator.return_value.paginate.return_value = [{"AutoScalingGroups": []}]
    with pytest.raises(NodePoolUpdateError, match="no auto scaling group"):
        manager.get_pool(NodePool(name="workers"))


def test_scale_raises_max_size(manager, clients, group):
    clients["autoscaling"].get_paginator.return_value.paginate.return_value = [{"AutoScalingGroups": [group]}]

    manager.scale_pool(NodePool(name="workers"), 4)

    clients["autoscaling"].update_auto_scaling_group.assert_called_once_with(
        AutoScalingGroupName="kube-1-workers", MaxSize=4)
    clients["autoscaling"].set_desired_capacity.assert_called_once_with(
        AutoScalingGroupName="kube-1-workers", DesiredCapacity=4, HonorCooldown=False)


def test_cordon_and_terminate(manager, clients, core):
    node = Node("node-old", "i-old", "3")

    manager.cordon_node(node)
    manager.terminate_node(NodePool(name="workers"), node)

    core.patch_node.assert_called_once_with("node-old", {"spec": {"unschedulable": True}})
    clients["autoscaling"].terminate_instance_in_auto_scaling_group.assert_called_once_with(
        InstanceId="i-old", ShouldDecrementDesiredCapacity=True)


def test_drain_skips_daemonsets_and_finished_pods(manager, core):
    def _pod(name, phase="Running", owner=None):
        owners = [SimpleNamespace(kind=owner)] if owner else []
        return SimpleNamespace(
            metadata=SimpleNamespace(name=name, namespace="default", owner_references=owners, annotations={}),
            status=SimpleNamespace(phase=phase),
        )

    pods = [_pod("app"), _pod("agent", owner="DaemonSet"), _pod("job", phase="Succeeded")]
    # the second listing is the post-eviction check
    core.list_pod_for_all_namespaces.side_effect = [SimpleNamespace(items=pods), SimpleNamespace(items=[])]
    evicted = []
    core.create_namespaced_pod_eviction.side_effect = lambda name, namespace, body: evicted.append(name)

    manager.drain_node(Node("node-old", "i-old", "3"), timeout=0.05)

    assert evicted == ["app"]
