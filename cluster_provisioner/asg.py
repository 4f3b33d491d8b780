# /*
# Copyright 2026 The Grove Authors.
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

"""Node pool manager backed by auto scaling groups and the Kubernetes API."""

from __future__ import annotations

from typing import Any

import boto3
from kubernetes import client
from kubernetes.client.rest import ApiException
from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_delay,
    wait_fixed,
)

from cluster_provisioner import logger
from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import NodePoolUpdateError
from cluster_provisioner.models import Cluster, NodePool
from cluster_provisioner.updatestrategy import Node, NodePoolState

EVICTION_RETRY_SECONDS = 5
DRAIN_POLL_SECONDS = 5


def _instance_id(provider_id: str) -> str:
    # aws:///eu-central-1a/i-0123456789abcdef0
    return provider_id.rstrip("/").rsplit("/", 1)[-1]


def _is_ready(node: client.V1Node) -> bool:
    for condition in node.status.conditions or []:
        if condition.type == "Ready":
            return condition.status == "True"
    return False


def _is_too_many_requests(err: BaseException) -> bool:
    return isinstance(err, ApiException) and err.status == 429


class ASGNodePoolManager:
    """Node pool operations for pools backed by one auto scaling group each.

    The pool's generation is its launch template version (or launch
    configuration name); a node is outdated when it was launched from another.

    Args:
        session: boto3 session of the cluster account.
        api_client: Kubernetes API client of the cluster.
        cluster: Cluster whose pools are managed.
        settings: Provisioner settings.
    """

    def __init__(
        self,
        session: boto3.session.Session,
        api_client: client.ApiClient,
        cluster: Cluster,
        settings: ProvisionerSettings,
    ) -> None:
        self.autoscaling = session.client("autoscaling")
        self.ec2 = session.client("ec2")
        self.core = client.CoreV1Api(api_client)
        self.cluster = cluster
        self.settings = settings

    # -- Lookups --

    def _find_group(self, node_pool: NodePool) -> dict[str, Any]:
        owner_tag = self.settings.cluster_tag(self.cluster.id)
        paginator = self.autoscaling.get_paginator("describe_auto_scaling_groups")
        for page in paginator.paginate():
            for group in page["AutoScalingGroups"]:
                tags = {tag["Key"]: tag.get("Value", "") for tag in group.get("Tags", [])}
                if tags.get(owner_tag) == self.settings.lifecycle_owned and \
                        tags.get(self.settings.node_pool_tag) == node_pool.name:
                    return group
        raise NodePoolUpdateError(f"no auto scaling group found for node pool {node_pool.name}")

    def _group_generation(self, group: dict[str, Any]) -> str:
        spec = group.get("LaunchTemplate") or \
            group.get("MixedInstancesPolicy", {}).get("LaunchTemplate", {}).get("LaunchTemplateSpecification")
        if not spec:
            return group.get("LaunchConfigurationName", "")
        version = spec.get("Version", "$Default")
        if version in ("$Latest", "$Default"):
            template = self.ec2.describe_launch_templates(
                LaunchTemplateIds=[spec["LaunchTemplateId"]])["LaunchTemplates"][0]
            key = "LatestVersionNumber" if version == "$Latest" else "DefaultVersionNumber"
            return str(template[key])
        return str(version)

    @staticmethod
    def _instance_generation(instance: dict[str, Any]) -> str:
        if "LaunchTemplate" in instance:
            return str(instance["LaunchTemplate"].get("Version", ""))
        return instance.get("LaunchConfigurationName", "")

    def _nodes_by_instance(self) -> dict[str, client.V1Node]:
        nodes = self.core.list_node().items
        return {_instance_id(node.spec.provider_id or ""): node for node in nodes}

    # -- NodePoolManager --

    def get_pool(self, node_pool: NodePool) -> NodePoolState:
        group = self._find_group(node_pool)
        nodes_by_instance = self._nodes_by_instance()
        nodes: list[Node] = []
        for instance in group.get("Instances", []):
            if instance.get("LifecycleState") != "InService":
                continue
            kube_node = nodes_by_instance.get(instance["InstanceId"])
            nodes.append(Node(
                name=kube_node.metadata.name if kube_node else "",
                instance_id=instance["InstanceId"],
                generation=self._instance_generation(instance),
                ready=kube_node is not None and _is_ready(kube_node),
            ))
        return NodePoolState(
            desired=group["DesiredCapacity"],
            generation=self._group_generation(group),
            nodes=nodes,
        )

    def scale_pool(self, node_pool: NodePool, replicas: int) -> None:
        group = self._find_group(node_pool)
        name = group["AutoScalingGroupName"]
        if replicas > group["MaxSize"]:
            self.autoscaling.update_auto_scaling_group(AutoScalingGroupName=name, MaxSize=replicas)
        logger.info("Scaling auto scaling group %s to %d", name, replicas)
        self.autoscaling.set_desired_capacity(
            AutoScalingGroupName=name, DesiredCapacity=replicas, HonorCooldown=False,
        )

    def cordon_node(self, node: Node) -> None:
        if not node.name:
            return
        logger.info("Cordoning node %s", node.name)
        self.core.patch_node(node.name, {"spec": {"unschedulable": True}})

    def _evictable_pods(self, node_name: str) -> list[client.V1Pod]:
        pods = self.core.list_pod_for_all_namespaces(field_selector=f"spec.nodeName={node_name}").items
        result = []
        for pod in pods:
            owners = pod.metadata.owner_references or []
            if any(owner.kind == "DaemonSet" for owner in owners):
                continue
            if "kubernetes.io/config.mirror" in (pod.metadata.annotations or {}):
                continue
            if pod.status.phase in ("Succeeded", "Failed"):
                continue
            result.append(pod)
        return result

    def _evict(self, pod: client.V1Pod, timeout: float) -> None:
        body = client.V1Eviction(metadata=client.V1ObjectMeta(
            name=pod.metadata.name, namespace=pod.metadata.namespace))
        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(EVICTION_RETRY_SECONDS),
            retry=retry_if_exception(_is_too_many_requests),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self.core.create_namespaced_pod_eviction(pod.metadata.name, pod.metadata.namespace, body)
        except ApiException as err:
            if err.status == 404:
                return
            if err.status != 429:
                raise
            logger.warning("Eviction of %s/%s still blocked, deleting it",
                           pod.metadata.namespace, pod.metadata.name)
            self.core.delete_namespaced_pod(pod.metadata.name, pod.metadata.namespace)

    def drain_node(self, node: Node, timeout: float) -> None:
        if not node.name:
            return
        logger.info("Draining node %s", node.name)
        for pod in self._evictable_pods(node.name):
            self._evict(pod, timeout)

        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(DRAIN_POLL_SECONDS),
            retry=retry_if_result(bool),
        )
        try:
            retrying(self._evictable_pods, node.name)
        except RetryError:
            logger.warning("Node %s still has pods after %.0fs, terminating anyway", node.name, timeout)

    def terminate_node(self, node_pool: NodePool, node: Node) -> None:
        logger.info("Terminating instance %s of node pool %s", node.instance_id, node_pool.name)
        self.autoscaling.terminate_instance_in_auto_scaling_group(
            InstanceId=node.instance_id, ShouldDecrementDesiredCapacity=True,
        )
