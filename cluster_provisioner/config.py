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

"""Provisioner settings and their display."""

from __future__ import annotations

import re

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.table import Table

from cluster_provisioner import console
from cluster_provisioner.constants import (
    API_SERVER_POLL_INTERVAL_SECONDS,
    API_SERVER_REQUEST_TIMEOUT_SECONDS,
    API_SERVER_TIMEOUT_SECONDS,
    APISERVER_COUNT_VALUE,
    BACKOFF_INITIAL_INTERVAL_SECONDS,
    BACKOFF_MAX_INTERVAL_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_MAX_EVICT_TIMEOUT_SECONDS,
    DELETIONS_FILE,
    DOWNSCALE_INTERVAL_SECONDS,
    DOWNSCALE_MAX_ATTEMPTS,
    ETCD_STACK_NAME,
    KUBECTL_BINARY,
    KUBECTL_NOT_FOUND,
    MAX_APPLY_RETRIES,
    NODE_LABELS_VALUE,
    NODE_POOL_STACK_TEMPLATE,
    NODE_POOL_POLL_INTERVAL_SECONDS,
    NODE_POOL_READY_TIMEOUT_SECONDS,
    NODE_POOL_STACK_PREFIX,
    NS_KUBE_SYSTEM,
    PROVIDER_FAMILY_AWS,
    PROVIDER_ID,
    REL_CLUSTER_STACK_TEMPLATE,
    REL_DEFAULTS_FILE,
    REL_ETCD_STACK_TEMPLATE,
    REL_MANIFESTS_DIR,
    REL_NODE_POOLS_DIR,
    RESOURCE_LIFECYCLE_OWNED,
    RESOURCE_LIFECYCLE_SHARED,
    ROLLING_UPDATE_SURGE,
    SOFT_FAIL_MANIFESTS,
    STACK_DELETE_TIMEOUT_SECONDS,
    STACK_WAIT_TIMEOUT_SECONDS,
    SUBNET_ALL_AZ_NAME,
    TAG_CLUSTER_ID,
    TAG_CLUSTER_PREFIX,
    TAG_NODE_POOL,
    TAG_SUBNET_ELB_ROLE,
    UPDATE_STRATEGY_ROLLING,
    VOLUME_CLEANUP_TIMEOUT_SECONDS,
)
from cluster_provisioner.errors import ConfigItemError

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


# ============================================================================
# Settings
# ============================================================================

class ProvisionerSettings(BaseSettings):
    """Provisioner configuration, auto-loaded from CLM_* env vars.

    One frozen instance is built per process and passed to every component.
    Tests shrink the timing fields to keep retry loops fast.

    Attributes:
        provider_id: Cluster provider handled by this provisioner.
        provider_family: Required first segment of the infrastructure account.
        dry_run: Build and log mutating commands without running them.
        apply_only: Skip node pool rolling updates.
        update_strategy: Default update strategy name.
        max_evict_timeout: Default pod eviction timeout during drains (seconds).
        rolling_update_surge: Nodes replaced per rolling update step.
        remove_volumes: Delete owned volumes on decommission.
        assumed_role: IAM role name assumed in the infrastructure account.
        system_namespace: Namespace downscaled on decommission.
        deletions_namespace: Namespace for deletions without one.
        soft_fail_manifests: Manifest file names allowed to fail.
    """

    model_config = SettingsConfigDict(env_prefix="CLM_", extra="ignore", frozen=True)

    provider_id: str = PROVIDER_ID
    provider_family: str = PROVIDER_FAMILY_AWS
    dry_run: bool = False
    apply_only: bool = False
    update_strategy: str = UPDATE_STRATEGY_ROLLING
    max_evict_timeout: float = Field(default=DEFAULT_MAX_EVICT_TIMEOUT_SECONDS, gt=0)
    rolling_update_surge: int = Field(default=ROLLING_UPDATE_SURGE, ge=1)
    remove_volumes: bool = False
    assumed_role: str | None = None

    # -- Channel layout --
    manifests_dir: str = REL_MANIFESTS_DIR
    defaults_file: str = REL_DEFAULTS_FILE
    etcd_stack_template: str = REL_ETCD_STACK_TEMPLATE
    cluster_stack_template: str = REL_CLUSTER_STACK_TEMPLATE
    node_pools_dir: str = REL_NODE_POOLS_DIR
    node_pool_stack_template: str = NODE_POOL_STACK_TEMPLATE
    deletions_file: str = DELETIONS_FILE

    # -- Names and tags --
    etcd_stack_name: str = ETCD_STACK_NAME
    node_pool_stack_prefix: str = NODE_POOL_STACK_PREFIX
    cluster_tag_prefix: str = TAG_CLUSTER_PREFIX
    cluster_id_tag: str = TAG_CLUSTER_ID
    node_pool_tag: str = TAG_NODE_POOL
    subnet_elb_role_tag: str = TAG_SUBNET_ELB_ROLE
    lifecycle_shared: str = RESOURCE_LIFECYCLE_SHARED
    lifecycle_owned: str = RESOURCE_LIFECYCLE_OWNED
    subnet_all_az_name: str = SUBNET_ALL_AZ_NAME
    node_labels: str = NODE_LABELS_VALUE
    apiserver_count: str = APISERVER_COUNT_VALUE

    # -- Kubernetes --
    system_namespace: str = NS_KUBE_SYSTEM
    deletions_namespace: str = NS_KUBE_SYSTEM
    kubectl: str = KUBECTL_BINARY
    kubectl_not_found_marker: str = KUBECTL_NOT_FOUND
    soft_fail_manifests: frozenset[str] = SOFT_FAIL_MANIFESTS

    # -- Timing --
    api_server_timeout: float = Field(default=API_SERVER_TIMEOUT_SECONDS, ge=0)
    api_server_poll_interval: float = Field(default=API_SERVER_POLL_INTERVAL_SECONDS, ge=0)
    api_server_request_timeout: float = Field(default=API_SERVER_REQUEST_TIMEOUT_SECONDS, gt=0)
    stack_delete_timeout: float = Field(default=STACK_DELETE_TIMEOUT_SECONDS, ge=0)
    stack_wait_timeout: float = Field(default=STACK_WAIT_TIMEOUT_SECONDS, gt=0)
    volume_cleanup_timeout: float = Field(default=VOLUME_CLEANUP_TIMEOUT_SECONDS, ge=0)
    max_apply_retries: int = Field(default=MAX_APPLY_RETRIES, ge=1)
    downscale_max_attempts: int = Field(default=DOWNSCALE_MAX_ATTEMPTS, ge=1)
    downscale_interval: float = Field(default=DOWNSCALE_INTERVAL_SECONDS, ge=0)
    backoff_initial_interval: float = Field(default=BACKOFF_INITIAL_INTERVAL_SECONDS, ge=0)
    backoff_multiplier: float = Field(default=BACKOFF_MULTIPLIER, ge=1)
    backoff_max_interval: float = Field(default=BACKOFF_MAX_INTERVAL_SECONDS, ge=0)
    node_pool_ready_timeout: float = Field(default=NODE_POOL_READY_TIMEOUT_SECONDS, ge=0)
    node_pool_poll_interval: float = Field(default=NODE_POOL_POLL_INTERVAL_SECONDS, ge=0)

    def cluster_tag(self, cluster_id: str) -> str:
        """Return the ``kubernetes.io/cluster/<id>`` tag key for a cluster."""
        return f"{self.cluster_tag_prefix}{cluster_id}"


# ============================================================================
# Helpers
# ============================================================================

def parse_duration(value: str) -> float:
    """Parse a Go-style duration string into seconds.

    Args:
        value: Duration such as ``90s``, ``5m`` or ``1h30m``.

    Returns:
        The duration in seconds.

    Raises:
        ConfigItemError: If the string is not a valid duration.
    """
    text = value.strip()
    if text == "0":
        return 0.0
    if not text:
        raise ConfigItemError(f"invalid duration '{value}'")
    pos = 0
    total = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ConfigItemError(f"invalid duration '{value}'")
    return total


def display_config(settings: ProvisionerSettings) -> None:
    """Print the resolved settings as a table.

    Args:
        settings: Settings to display.
    """
    table = Table(title="Provisioner settings", show_header=True, header_style="bold blue")
    table.add_column("Setting")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        if isinstance(value, frozenset):
            value = ", ".join(sorted(value))
        table.add_row(name, str(value))
    console.print(table)
