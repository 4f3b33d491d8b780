"""
Tests for the update strategy registry and the rolling update.
"""
import pytest

from cluster_provisioner.errors import NodePoolUpdateError, UnknownUpdateStrategyError
from cluster_provisioner.models import NodePool
from cluster_provisioner.updatestrategy import (
    Node,
    NodePoolState,
    RollingUpdateStrategy,
    new_update_strategy,
    registered_strategies,
    validate_update_strategy,
)


class FakePoolManager:
    """Pool whose new nodes come up ready at the current generation."""

    def __init__(self, nodes, generation="v2", new_nodes_ready=True):
        self.nodes = list(nodes)
        self.desired = len(self.nodes)
        self.generation = generation
        self.new_nodes_ready = new_nodes_ready
        self.ops = []
        self._launched = 0

    def get_pool(self, node_pool):
        return NodePoolState(desired=self.desired, generation=self.generation, nodes=list(self.nodes))

    def scale_pool(self, node_pool, replicas):
        self.ops.append(("scale", replicas))
        while len(self.nodes) < replicas:
            self._launched += 1
            self.nodes.append(Node(f"new-{self._launched}", f"i-new-{self._launched}", self.generation,
                                   ready=self.new_nodes_ready))
        self.desired = replicas

    def cordon_node(self, node):
        self.ops.append(("cordon", node.name))

    def drain_node(self, node, timeout):
        self.ops.append(("drain", node.name, timeout))

    def terminate_node(self, node_pool, node):
        self.ops.append(("terminate", node.name))
        self.nodes = [n for n in self.nodes if n.name != node.name]
        self.desired -= 1


def _strategy(manager, surge=3):
    return RollingUpdateStrategy(manager, surge=surge, max_evict_timeout=60, ready_timeout=0.05, poll_interval=0)


def test_rolling_is_registered():
    assert "rolling" in registered_strategies()
    validate_update_strategy("rolling")


def test_unknown_strategy_is_rejected(settings):
    with pytest.raises(UnknownUpdateStrategyError, match="unknown update strategy: surge"):
        new_update_strategy("surge", FakePoolManager([]), settings, 60)


def test_factory_uses_settings(settings):
    strategy = new_update_strategy("rolling", FakePoolManager([]), settings, 120)
    assert isinstance(strategy, RollingUpdateStrategy)
    assert strategy.surge == settings.rolling_update_surge
    assert strategy.max_evict_timeout == 120


def test_up_to_date_pool_is_left_alone():
    manager = FakePoolManager([Node("a", "i-a", "v2"), Node("b", "i-b", "v2")])
    _strategy(manager).update(NodePool(name="workers"))
    assert manager.ops == []


def test_outdated_nodes_are_replaced_in_batches():
    manager = FakePoolManager([Node("a", "i-a", "v1"), Node("b", "i-b", "v1"), Node("c", "i-c", "v1")])

    _strategy(manager, surge=2).update(NodePool(name="workers"))

    assert manager.ops == [
        ("scale", 5),
        ("cordon", "a"), ("drain", "a", 60), ("terminate", "a"),
        ("cordon", "b"), ("drain", "b", 60), ("terminate", "b"),
        ("scale", 4),
        ("cordon", "c"), ("drain", "c", 60), ("terminate", "c"),
    ]
    assert all(node.generation == "v2" for node in manager.nodes)
    assert manager.desired == 3


def test_new_nodes_never_ready_fails():
    manager = FakePoolManager([Node("a", "i-a", "v1")], new_nodes_ready=False)

    with pytest.raises(NodePoolUpdateError, match="did not become ready"):
        _strategy(manager).update(NodePool(name="workers"))
    assert ("terminate", "a") not in manager.ops
