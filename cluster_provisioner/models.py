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

"""Cluster description and cloud-side records."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator


class LifecycleStatus(str, Enum):
    """Coarse life stage of a cluster."""

    REQUESTED = "requested"
    CREATING = "creating"
    UPDATING = "updating"
    READY = "ready"
    DECOMMISSION_REQUESTED = "decommission-requested"
    DECOMMISSIONED = "decommissioned"

    @property
    def is_new(self) -> bool:
        """Whether the cluster is being created for the first time."""
        return self in (LifecycleStatus.REQUESTED, LifecycleStatus.CREATING)


# ============================================================================
# Cluster description
# ============================================================================

class NodePool(BaseModel):
    """A named group of machines backing the cluster.

    Attributes:
        name: Pool name, unique within the cluster.
        profile: Template profile used to build the pool's stack.
        instance_types: Instance types the pool may use.
        min_size: Minimum number of nodes.
        max_size: Maximum number of nodes.
        discount_strategy: Purchasing option, e.g. ``none`` or ``spot``.
        config_items: Pool-level free-form overrides.
    """

    model_config = ConfigDict(extra="ignore")

    name: str
    profile: str = "worker-default"
    instance_types: list[str] = Field(default_factory=list)
    min_size: int = Field(default=0, ge=0)
    max_size: int = Field(default=0, ge=0)
    discount_strategy: str = "none"
    config_items: dict[str, str] = Field(default_factory=dict)

    @property
    def is_master(self) -> bool:
        return "master" in self.profile

    def sort_key(self) -> tuple[int, str]:
        """Default update priority: master pools first, then by name."""
        return (0 if self.is_master else 1, self.name)


class Cluster(BaseModel):
    """Declarative description of a cluster.

    The provisioner only mutates ``config_items``: defaults are filled in and
    derived values such as ``subnets`` are injected during a run.
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    local_id: str
    provider: str
    region: str
    infrastructure_account: str
    api_server_url: str
    lifecycle_status: LifecycleStatus = LifecycleStatus.REQUESTED
    node_pools: list[NodePool] = Field(default_factory=list)
    config_items: dict[str, str] = Field(default_factory=dict)

    @property
    def account_id(self) -> str:
        """Account part of ``infrastructure_account`` (``aws:<id>``)."""
        return self.infrastructure_account.split(":", 1)[-1]


def load_cluster(path: Path) -> Cluster:
    """Load a cluster description from a YAML file.

    Args:
        path: Path to the YAML document.

    Returns:
        The parsed cluster.
    """
    with open(path) as f:
        return Cluster.model_validate(yaml.safe_load(f) or {})


@dataclass(frozen=True)
class ChannelConfig:
    """Checked-out channel: templates, config defaults and manifests."""

    path: Path

    def join(self, relative: str) -> Path:
        return self.path / relative


# ============================================================================
# Cloud-side records
# ============================================================================

@dataclass(frozen=True)
class Subnet:
    """A subnet as reported by the cloud provider."""

    id: str
    availability_zone: str
    tags: dict[str, str] = field(default_factory=dict)

    def has_tag(self, key: str, value: str | None = None) -> bool:
        if key not in self.tags:
            return False
        return value is None or self.tags[key] == value


@dataclass(frozen=True)
class Stack:
    """A cloud stack and its ownership tags."""

    name: str
    status: str = ""
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Volume:
    """A durable block-storage volume."""

    id: str
    state: str


# ============================================================================
# Manifest deletions
# ============================================================================

class Resource(BaseModel):
    """A Kubernetes resource to delete, by name or by label selector."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    namespace: str = ""
    kind: str
    labels: dict[str, str] = Field(default_factory=dict)

    @field_validator("name", "namespace", mode="before")
    @classmethod
    def _scalar_to_str(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float, bool)):
            return str(value)
        return value

    @field_validator("labels", mode="before")
    @classmethod
    def _label_values_to_str(cls, value: Any) -> Any:
        # YAML reads `version: 1` as an int
        if isinstance(value, dict):
            return {str(key): "" if val is None else str(val) for key, val in value.items()}
        return value

    @property
    def selector(self) -> str:
        """Labels as a ``key=value,...`` selector."""
        return ",".join(f"{key}={value}" for key, value in self.labels.items())

    def describe(self) -> str:
        target = self.name or f"-l {self.selector}"
        return f"{self.kind} {target} (namespace {self.namespace})"


class Deletions(BaseModel):
    """Resources deleted before and after the manifests are applied.

    Entries that failed validation are kept as error messages in the
    ``rejected_*`` lists of their phase.
    """

    model_config = ConfigDict(extra="ignore")

    pre_apply: list[Resource] = Field(default_factory=list)
    post_apply: list[Resource] = Field(default_factory=list)
    rejected_pre_apply: list[str] = Field(default_factory=list)
    rejected_post_apply: list[str] = Field(default_factory=list)
