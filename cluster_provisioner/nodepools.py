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

"""Node pool infrastructure, API server readiness and ordered pool updates."""

from __future__ import annotations

import re
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import requests
from rich.panel import Panel
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from cluster_provisioner import console, logger
from cluster_provisioner.cloud import CloudAdapter
from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import APIServerTimeoutError
from cluster_provisioner.models import Cluster, NodePool
from cluster_provisioner.stacks import delete_stacks
from cluster_provisioner.updatestrategy import UpdateStrategy
from cluster_provisioner.utils import check_cancelled


class NodePoolProvisioner(Protocol):
    """Creates and removes the infrastructure behind node pools."""

    def provision(self, values: dict[str, Any]) -> None: ...

    def reconcile(self) -> None: ...


def node_pool_values(settings: ProvisionerSettings, subnets: dict[str, str]) -> dict[str, Any]:
    """Values handed to node pool templates next to the cluster.

    Args:
        settings: Provisioner settings.
        subnets: Subnet per availability zone, including the all-zones entry.
    """
    return {
        "node_labels": settings.node_labels,
        "apiserver_count": settings.apiserver_count,
        "subnets": subnets,
    }


# ============================================================================
# Stack backed node pools
# ============================================================================

class StackNodePoolProvisioner:
    """One stack per node pool, rendered from the pool's profile template.

    Stacks are tagged as owned by the cluster and with the pool name, which
    is how :meth:`reconcile` finds pools that were removed from the cluster description.

    Args:
        cloud: Cloud adapter.
        cluster: Cluster whose pools are provisioned.
        base_dir: Directory holding one sub-directory per pool profile.
        settings: Provisioner settings.
    """

    def __init__(self, cloud: CloudAdapter, cluster: Cluster, base_dir: Path, settings: ProvisionerSettings) -> None:
        self.cloud = cloud
        self.cluster = cluster
        self.base_dir = Path(base_dir)
        self.settings = settings

    def stack_name(self, node_pool: NodePool) -> str:
        raw = f"{self.settings.node_pool_stack_prefix}-{node_pool.name}-{self.cluster.local_id}"
        return re.sub(r"[^A-Za-z0-9-]", "-", raw)

    def _tags(self, node_pool: NodePool) -> dict[str, str]:
        return {
            self.settings.cluster_tag(self.cluster.id): self.settings.lifecycle_owned,
            self.settings.node_pool_tag: node_pool.name,
        }

    def provision(self, values: dict[str, Any]) -> None:
        """Create or update the stack of every node pool of the cluster."""
        console.print(Panel.fit("Provisioning node pools", style="bold blue"))
        for node_pool in self.cluster.node_pools:
            template = self.base_dir / node_pool.profile / self.settings.node_pool_stack_template
            logger.info("Provisioning node pool %s (%s)", node_pool.name, node_pool.profile)
            self.cloud.create_or_update_stack(
                self.stack_name(node_pool),
                template,
                self.cluster,
                values={**values, "node_pool": node_pool},
                tags=self._tags(node_pool),
            )
            console.print(f"[green]  ✓ {node_pool.name}[/green]")

    def reconcile(self) -> None:
        """Delete the stacks of node pools the cluster no longer has."""
        desired = {node_pool.name for node_pool in self.cluster.node_pools}
        owned = self.cloud.list_stacks({self.settings.cluster_tag(self.cluster.id): self.settings.lifecycle_owned})
        orphaned = [
            stack for stack in owned
            if self.settings.node_pool_tag in stack.tags and stack.tags[self.settings.node_pool_tag] not in desired
        ]
        if not orphaned:
            return
        console.print(f"[yellow]ℹ️  Removing {len(orphaned)} node pools no longer in the cluster[/yellow]")
        delete_stacks(self.cloud, orphaned, self.settings)


# ============================================================================
# API server readiness
# ============================================================================

def _api_server_reachable(server: str, request_timeout: float) -> bool:
    try:
        resp = requests.get(server, timeout=request_timeout)
    except requests.RequestException as err:
        logger.debug("API server %s not reachable: %s", server, err)
        return False
    return resp.status_code < 500


def wait_for_api_server(
    server: str,
    timeout: float,
    interval: float,
    request_timeout: float = 10.0,
) -> None:
    """Wait until the API server answers with a status below 500.

    Args:
        server: API server URL.
        timeout: Maximum seconds to wait.
        interval: Seconds between probes.
        request_timeout: Timeout of a single probe.

    Raises:
        APIServerTimeoutError: If the server was not reachable within ``timeout``.
    """
    console.print("[yellow]ℹ️  Waiting for API server to be reachable...[/yellow]")
    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda ok: not ok),
    )
    try:
        retrying(_api_server_reachable, server, request_timeout)
    except RetryError as err:
        raise APIServerTimeoutError(server, timeout) from err
    console.print("[green]✅ API server is reachable[/green]")


# ============================================================================
# Ordered pool updates
# ============================================================================

def update_node_pools(
    node_pools: list[NodePool],
    strategy: UpdateStrategy,
    cancel: threading.Event | None = None,
    key: Callable[[NodePool], Any] | None = None,
) -> None:
    """Update node pools one at a time in priority order.

    Stops at the first failing pool or as soon as cancellation is observed
    between two pools.

    Args:
        node_pools: Pools to update.
        strategy: Update strategy.
        cancel: Cancellation event.
        key: Sort key defining the priority order; defaults to
            :meth:`NodePool.sort_key`.
    """
    for node_pool in sorted(node_pools, key=key or NodePool.sort_key):
        strategy.update(node_pool)
        check_cancelled(cancel, f"updating node pool {node_pool.name}")
