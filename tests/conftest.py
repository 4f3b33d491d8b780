"""
Pytest configuration and shared fakes for all tests.
"""
from __future__ import annotations

import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import CommandError
from cluster_provisioner.kube import StepOutcome
from cluster_provisioner.kubectl import Kubectl
from cluster_provisioner.models import ChannelConfig, Cluster, LifecycleStatus, NodePool, Stack, Subnet, Volume
from cluster_provisioner.nodepools import StackNodePoolProvisioner
from cluster_provisioner.provisioner import Backend
from cluster_provisioner.tokens import StaticTokenSource


class FakeCloud:
    """In-memory CloudAdapter recording every call."""

    def __init__(self, subnets=None, stacks=None, volumes=None):
        self.subnets = list(subnets or [])
        self.stacks = {stack.name: stack for stack in stacks or []}
        self.volumes = list(volumes or [])
        self.calls = []
        # stack name -> list of exceptions raised by successive delete calls
        self.delete_errors = {}
        self.delete_attempts = {}
        self.volume_errors = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_of(self, op):
        return [call for call in self.calls if call[0] == op]

    def create_or_update_stack(self, name, template_path, cluster, values=None, tags=None):
        self._record("create_or_update_stack", name, Path(template_path), values, tags)
        self.stacks[name] = Stack(name=name, status="CREATE_COMPLETE", tags=dict(tags or {}))

    def delete_stack(self, name):
        self._record("delete_stack", name)
        with self._lock:
            self.delete_attempts[name] = self.delete_attempts.get(name, 0) + 1
            errors = self.delete_errors.get(name)
            err = None
            if errors:
                err = errors[0] if len(errors) == 1 else errors.pop(0)
        if err is not None:
            raise err
        self.stacks.pop(name, None)

    def list_stacks(self, tags):
        self._record("list_stacks", dict(tags))
        return [
            stack for stack in self.stacks.values()
            if all(stack.tags.get(key) == value for key, value in tags.items())
        ]

    def get_subnets(self):
        self._record("get_subnets")
        return list(self.subnets)

    def create_tags(self, resource_id, tags):
        self._record("create_tags", resource_id, dict(tags))
        self.subnets = [
            Subnet(s.id, s.availability_zone, {**s.tags, **tags}) if s.id == resource_id else s
            for s in self.subnets
        ]

    def delete_tags(self, resource_id, tags):
        self._record("delete_tags", resource_id, dict(tags))
        self.subnets = [
            Subnet(s.id, s.availability_zone, {k: v for k, v in s.tags.items() if k not in tags})
            if s.id == resource_id else s
            for s in self.subnets
        ]

    def get_volumes(self, tags):
        self._record("get_volumes", dict(tags))
        return list(self.volumes)

    def delete_volume(self, volume_id):
        self._record("delete_volume", volume_id)
        # entries are consumed per call; None lets the call succeed
        err = self.volume_errors.pop(0) if self.volume_errors else None
        if err is not None:
            raise err
        self.volumes = [
            Volume(v.id, "deleting") if v.id == volume_id else v for v in self.volumes
        ]


class FakeKubectl(Kubectl):
    """Kubectl that records commands instead of running them.

    ``failures`` maps a predicate on the argument list to the output of a
    failed command; matching commands raise CommandError with that output.
    """

    def __init__(self, dry_run=False, failures=None):
        super().__init__("kubectl", dry_run=dry_run)
        self.commands = []
        self.failures = list(failures or [])

    def run(self, args, stdin=None):
        self.commands.append((list(args), stdin))
        for matches, output in self.failures:
            if matches(args, stdin):
                raise CommandError("kubectl failed", output)
        return ""


@pytest.fixture
def settings():
    """Settings with timings shrunk so retry loops finish quickly."""
    return ProvisionerSettings(
        api_server_timeout=0.05,
        api_server_poll_interval=0.0,
        stack_delete_timeout=0.05,
        volume_cleanup_timeout=0.05,
        max_apply_retries=3,
        downscale_max_attempts=2,
        downscale_interval=0.0,
        backoff_initial_interval=0.0,
        backoff_max_interval=0.0,
        node_pool_ready_timeout=0.05,
        node_pool_poll_interval=0.0,
    )


@pytest.fixture
def token_source():
    return StaticTokenSource("s3cr3t")


@pytest.fixture
def cluster():
    return Cluster(
        id="aws:123456789012:eu-central-1:kube-1",
        local_id="kube-1",
        provider="aws",
        region="eu-central-1",
        infrastructure_account="aws:123456789012",
        api_server_url="https://kube-1.example.org",
        lifecycle_status=LifecycleStatus.REQUESTED,
        node_pools=[
            NodePool(name="master-default", profile="master-default"),
            NodePool(name="worker-default", profile="worker-default"),
            NodePool(name="data-pool", profile="worker-default"),
        ],
    )


@pytest.fixture
def subnets():
    return [
        Subnet("subnet-b", "eu-central-1a"),
        Subnet("subnet-a", "eu-central-1a"),
        Subnet("subnet-c", "eu-central-1b", {"kubernetes.io/role/elb": ""}),
        Subnet("subnet-0", "eu-central-1b"),
    ]


@pytest.fixture
def fake_cloud(subnets):
    return FakeCloud(subnets=subnets)


@pytest.fixture
def fake_kubectl():
    return FakeKubectl()


@pytest.fixture
def channel(tmp_path):
    """A minimal checked-out channel."""
    cluster_dir = tmp_path / "cluster"
    manifests = cluster_dir / "manifests"
    (manifests / "01-rbac").mkdir(parents=True)
    (manifests / "02-dns").mkdir()
    (cluster_dir / "node-pools" / "worker-default").mkdir(parents=True)

    (cluster_dir / "config-defaults.yaml").write_text(
        "dns_replicas: \"2\"\n"
        "cluster_name: \"{{ cluster.local_id }}\"\n"
    )
    (cluster_dir / "etcd-cluster.yaml").write_text("etcd: {}\n")
    (cluster_dir / "cluster-stack.yaml").write_text("cluster: {{ cluster.id }}\n")
    (manifests / "README.md").write_text("not a component\n")
    (manifests / "01-rbac" / "role.yaml").write_text(
        "kind: ClusterRole\nmetadata:\n  name: {{ cluster.local_id }}-reader\n"
    )
    (manifests / "02-dns" / "deployment.yaml").write_text(
        "kind: Deployment\nspec:\n  replicas: {{ config.dns_replicas }}\n"
    )
    (manifests / "02-dns" / "empty.yaml").write_text("{% if false %}kind: Service{% endif %}\n")
    return ChannelConfig(tmp_path)


@pytest.fixture
def backend_factory(fake_cloud):
    """Backend factory over the fake cloud, recording what it built."""
    built = {}

    def _factory(cluster, channel, settings, token_source):
        built["backend"] = Backend(
            cloud=fake_cloud,
            pool_manager=MagicMock(),
            node_pool_provisioner=StackNodePoolProvisioner(
                fake_cloud, cluster, channel.join(settings.node_pools_dir), settings,
            ),
            downscaler=lambda: StepOutcome(name="downscale"),
        )
        return built["backend"]

    _factory.built = built
    return _factory
