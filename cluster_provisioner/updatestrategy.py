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

"""Node pool update strategies and their registry."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from rich.panel import Panel
from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from cluster_provisioner import console, logger
from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import NodePoolUpdateError, UnknownUpdateStrategyError
from cluster_provisioner.models import NodePool


# ============================================================================
# Node pool manager interface
# ============================================================================

@dataclass(frozen=True)
class Node:
    """A node of a pool.

    Attributes:
        name: Kubernetes node name.
        instance_id: Cloud instance ID.
        generation: Configuration generation the node was launched with.
        ready: Whether the node reports Ready.
    """

    name: str
    instance_id: str
    generation: str
    ready: bool = True


@dataclass(frozen=True)
class NodePoolState:
    """Observed state of a pool: desired size, current generation and nodes."""

    desired: int
    generation: str
    nodes: list[Node] = field(default_factory=list)

    @property
    def outdated(self) -> list[Node]:
        return [node for node in self.nodes if node.generation != self.generation]

    @property
    def ready_count(self) -> int:
        return sum(1 for node in self.nodes if node.ready)


class NodePoolManager(Protocol):
    """Primitive node pool operations used by update strategies."""

    def get_pool(self, node_pool: NodePool) -> NodePoolState: ...

    def scale_pool(self, node_pool: NodePool, replicas: int) -> None: ...

    def cordon_node(self, node: Node) -> None: ...

    def drain_node(self, node: Node, timeout: float) -> None: ...

    def terminate_node(self, node_pool: NodePool, node: Node) -> None: ...


class UpdateStrategy(Protocol):
    """Brings every node of a pool to the pool's current generation."""

    def update(self, node_pool: NodePool) -> None: ...


# ============================================================================
# Registry
# ============================================================================

StrategyFactory = Callable[[NodePoolManager, ProvisionerSettings, float], UpdateStrategy]

_STRATEGIES: dict[str, StrategyFactory] = {}


def register_update_strategy(name: str) -> Callable[[StrategyFactory], StrategyFactory]:
    """Register an update strategy factory under ``name``."""
    def _register(factory: StrategyFactory) -> StrategyFactory:
        _STRATEGIES[name] = factory
        return factory
    return _register


def registered_strategies() -> list[str]:
    return sorted(_STRATEGIES)


def validate_update_strategy(name: str) -> None:
    """Fail early for names without a registered factory.

    Raises:
        UnknownUpdateStrategyError: If ``name`` is not registered.
    """
    if name not in _STRATEGIES:
        raise UnknownUpdateStrategyError(
            f"unknown update strategy: {name} (known: {', '.join(registered_strategies())})")


def new_update_strategy(
    name: str,
    pool_manager: NodePoolManager,
    settings: ProvisionerSettings,
    max_evict_timeout: float,
) -> UpdateStrategy:
    """Build the update strategy registered under ``name``.

    Raises:
        UnknownUpdateStrategyError: If ``name`` is not registered.
    """
    validate_update_strategy(name)
    return _STRATEGIES[name](pool_manager, settings, max_evict_timeout)


# ============================================================================
# Rolling update
# ============================================================================

class RollingUpdateStrategy:
    """Replace outdated nodes in batches of ``surge``.

    Each step scales the pool up by the batch size, waits for the new nodes
    to be ready, then cordons, drains and terminates the outdated nodes of the
    batch. Steps repeat until no outdated node is left.
    """

    def __init__(
        self,
        pool_manager: NodePoolManager,
        surge: int,
        max_evict_timeout: float,
        ready_timeout: float,
        poll_interval: float,
    ) -> None:
        self.pool_manager = pool_manager
        self.surge = surge
        self.max_evict_timeout = max_evict_timeout
        self.ready_timeout = ready_timeout
        self.poll_interval = poll_interval

    def _wait_ready(self, node_pool: NodePool, min_ready: int | None = None) -> NodePoolState:
        def _poll() -> NodePoolState | None:
            state = self.pool_manager.get_pool(node_pool)
            wanted = state.desired if min_ready is None else min_ready
            return state if state.ready_count >= wanted else None

        retrying = Retrying(
            stop=stop_after_delay(self.ready_timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_result(lambda state: state is None),
        )
        try:
            return retrying(_poll)
        except RetryError as err:
            raise NodePoolUpdateError(f"node pool {node_pool.name} did not become ready") from err

    def update(self, node_pool: NodePool) -> None:
        console.print(Panel.fit(f"Updating node pool {node_pool.name}", style="bold blue"))
        replaced = 0
        while True:
            state = self._wait_ready(node_pool)
            outdated = state.outdated
            if not outdated:
                break
            batch = outdated[:self.surge]
            logger.info("Node pool %s: replacing %d of %d outdated nodes",
                        node_pool.name, len(batch), len(outdated))
            self.pool_manager.scale_pool(node_pool, state.desired + len(batch))
            self._wait_ready(node_pool, min_ready=state.ready_count + len(batch))
            for node in batch:
                self.pool_manager.cordon_node(node)
                self.pool_manager.drain_node(node, self.max_evict_timeout)
                self.pool_manager.terminate_node(node_pool, node)
                replaced += 1
        console.print(f"[green]✅ Node pool {node_pool.name} up to date ({replaced} nodes replaced)[/green]")


@register_update_strategy("rolling")
def _new_rolling_strategy(
    pool_manager: NodePoolManager,
    settings: ProvisionerSettings,
    max_evict_timeout: float,
) -> UpdateStrategy:
    return RollingUpdateStrategy(
        pool_manager,
        surge=settings.rolling_update_surge,
        max_evict_timeout=max_evict_timeout,
        ready_timeout=settings.node_pool_ready_timeout,
        poll_interval=settings.node_pool_poll_interval,
    )
