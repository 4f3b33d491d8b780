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

"""Provisioning and decommissioning workflows for a single cluster."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from rich.panel import Panel
from tenacity import Retrying, retry_if_not_exception_type, stop_after_delay

from cluster_provisioner import console, logger
from cluster_provisioner.aws import AWSAdapter, assumed_role_arn, new_session
from cluster_provisioner.asg import ASGNodePoolManager
from cluster_provisioner.cloud import CloudAdapter
from cluster_provisioner.config import ProvisionerSettings, parse_duration
from cluster_provisioner.constants import (
    CONFIG_KEY_NODE_MAX_EVICT_TIMEOUT,
    CONFIG_KEY_SUBNETS,
    CONFIG_KEY_UPDATE_STRATEGY,
)
from cluster_provisioner.errors import (
    InfrastructureAccountError,
    ProviderNotSupportedError,
    StackDeletionError,
    VolumeStateError,
)
from cluster_provisioner.kube import StepOutcome, downscale_best_effort, new_api_client
from cluster_provisioner.kubectl import Kubectl
from cluster_provisioner.manifests import ManifestReconciler
from cluster_provisioner.models import ChannelConfig, Cluster, NodePool
from cluster_provisioner.nodepools import (
    NodePoolProvisioner,
    StackNodePoolProvisioner,
    node_pool_values,
    update_node_pools,
    wait_for_api_server,
)
from cluster_provisioner.stacks import delete_cluster_stacks, delete_stack_with_retry
from cluster_provisioner.subnets import filter_subnets, subnets_per_zone, tag_subnets, untag_subnets
from cluster_provisioner.templating import TemplateRenderer, apply_defaults
from cluster_provisioner.tokens import TokenSource
from cluster_provisioner.updatestrategy import (
    NodePoolManager,
    UpdateStrategy,
    new_update_strategy,
    validate_update_strategy,
)
from cluster_provisioner.utils import check_cancelled, exponential_backoff

VOLUME_STATE_AVAILABLE = "available"
VOLUME_STATES_GONE = ("deleted", "deleting")


# ============================================================================
# Backends
# ============================================================================

@dataclass
class Backend:
    """External collaborators a run talks to.

    Attributes:
        cloud: Cloud adapter for stacks, subnets and volumes.
        pool_manager: Node pool operations used by the update strategy.
        node_pool_provisioner: Creates and removes node pool infrastructure.
        downscaler: Best-effort downscaling of the system namespace.
    """

    cloud: CloudAdapter
    pool_manager: NodePoolManager
    node_pool_provisioner: NodePoolProvisioner
    downscaler: Callable[[], StepOutcome]


BackendFactory = Callable[[Cluster, ChannelConfig, ProvisionerSettings, TokenSource], Backend]


def aws_backend(
    cluster: Cluster,
    channel: ChannelConfig,
    settings: ProvisionerSettings,
    token_source: TokenSource,
) -> Backend:
    """Build the AWS backed collaborators for a cluster.

    Args:
        cluster: Target cluster.
        channel: Checked-out channel.
        settings: Provisioner settings.
        token_source: Source of bearer tokens for the cluster API.

    Returns:
        The backend of this run.
    """
    session = new_session(cluster.region, assumed_role_arn(cluster.account_id, settings.assumed_role))
    renderer = TemplateRenderer(channel.path)
    cloud = AWSAdapter(session, renderer, dry_run=settings.dry_run, stack_wait_timeout=settings.stack_wait_timeout)
    return Backend(
        cloud=cloud,
        pool_manager=ASGNodePoolManager(
            session, new_api_client(cluster.api_server_url, token_source), cluster, settings,
        ),
        node_pool_provisioner=StackNodePoolProvisioner(
            cloud, cluster, channel.join(settings.node_pools_dir), settings,
        ),
        downscaler=lambda: downscale_best_effort(cluster.api_server_url, token_source, settings),
    )


@dataclass
class PreparedRun:
    """Everything resolved by :meth:`ClusterProvisioner.prepare`."""

    backend: Backend
    strategy: UpdateStrategy
    defaults: dict[str, str] = field(default_factory=dict)


@dataclass
class DecommissionResult:
    """Outcome of a decommission that did not raise.

    Attributes:
        downscale: Outcome of the best-effort downscale step.
        deleted_volumes: IDs of the volumes deleted by this run.
    """

    downscale: StepOutcome
    deleted_volumes: list[str] = field(default_factory=list)


# ============================================================================
# Provisioner
# ============================================================================

class ClusterProvisioner:
    """Converges a cluster's infrastructure and manifests to its description.

    Args:
        settings: Provisioner settings.
        token_source: Source of bearer tokens for the cluster API.
        backend_factory: Builds the external collaborators of a run.
        kubectl: kubectl runner; built from ``settings`` when omitted.
        node_pool_order: Sort key for node pool updates; masters first by default.
    """

    def __init__(
        self,
        settings: ProvisionerSettings,
        token_source: TokenSource,
        backend_factory: BackendFactory = aws_backend,
        kubectl: Kubectl | None = None,
        node_pool_order: Callable[[NodePool], Any] | None = None,
    ) -> None:
        self.settings = settings
        self.token_source = token_source
        self.backend_factory = backend_factory
        self.kubectl = kubectl or Kubectl(
            settings.kubectl, dry_run=settings.dry_run, not_found_marker=settings.kubectl_not_found_marker,
        )
        self.node_pool_order = node_pool_order

    def supports(self, cluster: Cluster) -> bool:
        return cluster.provider == self.settings.provider_id

    # -- Preparation --

    def _check_account(self, cluster: Cluster) -> None:
        parts = cluster.infrastructure_account.split(":")
        if len(parts) != 2:
            raise InfrastructureAccountError(
                f"unknown format for infrastructure account '{cluster.infrastructure_account}'")
        if parts[0] != self.settings.provider_family:
            raise InfrastructureAccountError(f"cannot work with cloud provider '{parts[0]}'")

    def prepare(self, cluster: Cluster, channel: ChannelConfig) -> PreparedRun:
        """Validate the cluster and build the collaborators of a run.

        Every check runs before the backend is built, so a rejected cluster
        never causes an external call.

        Args:
            cluster: Target cluster; unset config items are filled from the
                channel's defaults.
            channel: Checked-out channel.

        Returns:
            The prepared run.

        Raises:
            ProviderNotSupportedError: If the provider is not handled.
            InfrastructureAccountError: If the account is malformed.
            TemplateRenderError: If the config defaults cannot be rendered.
            UnknownUpdateStrategyError: If the update strategy is unknown.
            ConfigItemError: If the eviction timeout cannot be parsed.
        """
        if not self.supports(cluster):
            raise ProviderNotSupportedError(f"provider '{cluster.provider}' is not supported")
        logger.info("Preparing cluster %s (%s)", cluster.id, cluster.lifecycle_status.value)
        self._check_account(cluster)

        defaults = apply_defaults(
            cluster, channel.join(self.settings.defaults_file), TemplateRenderer(channel.path),
        )

        strategy_name = cluster.config_items.get(CONFIG_KEY_UPDATE_STRATEGY, self.settings.update_strategy)
        validate_update_strategy(strategy_name)

        max_evict_timeout = self.settings.max_evict_timeout
        if CONFIG_KEY_NODE_MAX_EVICT_TIMEOUT in cluster.config_items:
            max_evict_timeout = parse_duration(cluster.config_items[CONFIG_KEY_NODE_MAX_EVICT_TIMEOUT])

        backend = self.backend_factory(cluster, channel, self.settings, self.token_source)
        strategy = new_update_strategy(strategy_name, backend.pool_manager, self.settings, max_evict_timeout)
        return PreparedRun(backend=backend, strategy=strategy, defaults=defaults)

    def resolve_subnets(self, cloud: CloudAdapter, cluster: Cluster) -> dict[str, str]:
        """Pick the subnet of every zone, honoring the ``subnets`` config item.

        When the config item is unset it is filled with the all-zones list.

        Raises:
            SubnetError: If the config item names unknown subnets.
        """
        subnets = cloud.get_subnets()
        if CONFIG_KEY_SUBNETS in cluster.config_items:
            subnets = filter_subnets(subnets, cluster.config_items[CONFIG_KEY_SUBNETS].split(","))
        per_zone = subnets_per_zone(subnets, self.settings.subnet_elb_role_tag, self.settings.subnet_all_az_name)
        if CONFIG_KEY_SUBNETS not in cluster.config_items:
            cluster.config_items[CONFIG_KEY_SUBNETS] = per_zone.get(self.settings.subnet_all_az_name, "")
        return per_zone

    # -- Provision --

    def provision(self, cluster: Cluster, channel: ChannelConfig, cancel: threading.Event | None = None) -> None:
        """Create or update everything the cluster needs.

        Cancellation is checked between stages; a stage in progress always
        finishes.

        Args:
            cluster: Target cluster.
            channel: Checked-out channel.
            cancel: Event that cancels the run once set.

        Raises:
            ProvisionerError: If any stage fails or the run is cancelled.
        """
        settings = self.settings
        run = self.prepare(cluster, channel)
        cloud = run.backend.cloud

        console.print(Panel.fit(f"Provisioning cluster {cluster.id}", style="bold blue"))
        cloud.create_or_update_stack(
            settings.etcd_stack_name, channel.join(settings.etcd_stack_template), cluster,
        )
        console.print("[green]✅ etcd stack ready[/green]")
        check_cancelled(cancel, "etcd stack")

        tagged = tag_subnets(cloud, settings.cluster_tag(cluster.id), settings.lifecycle_shared)
        logger.info("Tagged %d subnets", len(tagged))
        check_cancelled(cancel, "subnet tagging")

        cloud.create_or_update_stack(
            cluster.local_id,
            channel.join(settings.cluster_stack_template),
            cluster,
            tags={settings.cluster_id_tag: cluster.id},
        )
        console.print("[green]✅ Cluster stack ready[/green]")
        check_cancelled(cancel, "cluster stack")

        subnets = self.resolve_subnets(cloud, cluster)
        run.backend.node_pool_provisioner.provision(node_pool_values(settings, subnets))

        wait_for_api_server(
            cluster.api_server_url,
            timeout=settings.api_server_timeout,
            interval=settings.api_server_poll_interval,
            request_timeout=settings.api_server_request_timeout,
        )
        check_cancelled(cancel, "API server readiness")

        if settings.apply_only:
            console.print("[yellow]ℹ️  Apply-only mode, skipping node pool update[/yellow]")
        elif cluster.lifecycle_status.is_new:
            console.print(
                f"[yellow]ℹ️  New cluster ({cluster.lifecycle_status.value}), skipping node pool update[/yellow]")
        else:
            update_node_pools(cluster.node_pools, run.strategy, cancel, key=self.node_pool_order)

        run.backend.node_pool_provisioner.reconcile()
        check_cancelled(cancel, "node pool reconciliation")

        reconciler = ManifestReconciler(self.kubectl, self.token_source, settings)
        reconciler.apply(cluster, channel.join(settings.manifests_dir))
        console.print(f"[green]✅ Cluster {cluster.id} provisioned[/green]")

    # -- Decommission --

    def _delete_stacks(self, cloud: CloudAdapter, cluster: Cluster) -> None:
        failures: dict[str, Exception] = {}
        try:
            delete_cluster_stacks(cloud, cluster, self.settings)
        except StackDeletionError as err:
            failures.update(err.failures)

        # the main stack is attempted even when owned stacks failed
        try:
            delete_stack_with_retry(cloud, cluster.local_id, self.settings)
        except Exception as err:
            failures[cluster.local_id] = err

        if failures:
            raise StackDeletionError(failures)

    def _remove_volumes_once(self, cloud: CloudAdapter, cluster: Cluster, deleted: list[str]) -> None:
        for volume in cloud.get_volumes({self.settings.cluster_tag(cluster.id): self.settings.lifecycle_owned}):
            if volume.state in VOLUME_STATES_GONE:
                continue
            if volume.state != VOLUME_STATE_AVAILABLE:
                raise VolumeStateError(volume.id, volume.state)
            logger.info("Deleting volume %s", volume.id)
            cloud.delete_volume(volume.id)
            deleted.append(volume.id)

    def remove_volumes(self, cloud: CloudAdapter, cluster: Cluster) -> list[str]:
        """Delete every available volume owned by the cluster.

        Transient failures are retried with exponential backoff for up to
        ``settings.volume_cleanup_timeout``.

        Returns:
            IDs of the deleted volumes.

        Raises:
            VolumeStateError: If a volume is attached or otherwise busy.
        """
        deleted: list[str] = []
        retrying = Retrying(
            stop=stop_after_delay(self.settings.volume_cleanup_timeout),
            wait=exponential_backoff(self.settings),
            retry=retry_if_not_exception_type(VolumeStateError),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                self._remove_volumes_once(cloud, cluster, deleted)
        return deleted

    def decommission(self, cluster: Cluster, channel: ChannelConfig) -> DecommissionResult:
        """Tear down the cluster's infrastructure.

        Decommission cannot be cancelled. Failing to downscale is reported in
        the result instead of raised.

        Args:
            cluster: Cluster to decommission.
            channel: Checked-out channel.

        Returns:
            The downscale outcome and the deleted volumes.

        Raises:
            StackDeletionError: If any owned stack or the main stack could not
                be deleted. Subnets are left tagged in that case.
            VolumeStateError: If a volume could not be deleted because of its state.
        """
        run = self.prepare(cluster, channel)
        cloud = run.backend.cloud

        console.print(Panel.fit(f"Decommissioning cluster {cluster.id}", style="bold red"))
        outcome = run.backend.downscaler()

        self._delete_stacks(cloud, cluster)
        console.print("[green]✅ Cluster stacks deleted[/green]")

        untagged = untag_subnets(cloud, self.settings.cluster_tag(cluster.id), self.settings.lifecycle_shared)
        logger.info("Untagged %d subnets", len(untagged))

        result = DecommissionResult(downscale=outcome)
        if self.settings.remove_volumes:
            result.deleted_volumes = self.remove_volumes(cloud, cluster)
            console.print(f"[green]✅ Deleted {len(result.deleted_volumes)} volumes[/green]")
        console.print(f"[green]✅ Cluster {cluster.id} decommissioned[/green]")
        return result
