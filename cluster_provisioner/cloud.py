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

"""Interface to the cloud control plane."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Protocol

from cluster_provisioner.models import Cluster, Stack, Subnet, Volume


class CloudAdapter(Protocol):
    """Operations the provisioner needs from the cloud provider.

    ``delete_stack`` must raise
    :class:`~cluster_provisioner.errors.StackStatusConflictError` when the
    stack is in a transitional status, so callers can tell a retryable
    conflict from a permanent failure.
    """

    def create_or_update_stack(
        self,
        name: str,
        template_path: Path,
        cluster: Cluster,
        values: dict[str, Any] | None = None,
        tags: dict[str, str] | None = None,
    ) -> None: ...

    def delete_stack(self, name: str) -> None: ...

    def list_stacks(self, tags: dict[str, str]) -> list[Stack]: ...

    def get_subnets(self) -> list[Subnet]: ...

    def create_tags(self, resource_id: str, tags: dict[str, str]) -> None: ...

    def delete_tags(self, resource_id: str, tags: dict[str, str]) -> None: ...

    def get_volumes(self, tags: dict[str, str]) -> list[Volume]: ...

    def delete_volume(self, volume_id: str) -> None: ...
