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

"""Stack deletion with retries and concurrent teardown of owned stacks."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed

from tenacity import Retrying, retry_if_exception_type, stop_after_delay

from cluster_provisioner import console, logger
from cluster_provisioner.cloud import CloudAdapter
from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import StackDeletionError, StackStatusConflictError
from cluster_provisioner.models import Cluster, Stack
from cluster_provisioner.utils import exponential_backoff


def delete_stack_with_retry(cloud: CloudAdapter, name: str, settings: ProvisionerSettings) -> None:
    """Delete a stack, retrying while it is busy with another operation.

    Status conflicts are retried with exponential backoff until
    ``settings.stack_delete_timeout`` has elapsed; any other error stops the
    retries at once.

    Args:
        cloud: Cloud adapter.
        name: Stack name.
        settings: Provisioner settings.

    Raises:
        StackStatusConflictError: If the stack stayed busy for the whole budget.
        StackOperationError: If the deletion failed permanently.
    """
    retrying = Retrying(
        stop=stop_after_delay(settings.stack_delete_timeout),
        wait=exponential_backoff(settings),
        retry=retry_if_exception_type(StackStatusConflictError),
        before_sleep=lambda state: logger.info(
            "Stack %s not deletable yet (%s), retrying", name, state.outcome.exception(),
        ),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            cloud.delete_stack(name)


def _delete_in_section(cloud: CloudAdapter, stack: Stack, settings: ProvisionerSettings) -> Exception | None:
    with console.section(stack.name):
        console.print(f"[yellow]ℹ️  Deleting stack {stack.name}...[/yellow]")
        try:
            delete_stack_with_retry(cloud, stack.name, settings)
        except Exception as err:
            console.print(f"[red]✗ {stack.name} - {err}[/red]")
            return err
        console.print(f"[green]✓ {stack.name}[/green]")
    return None


def delete_stacks(cloud: CloudAdapter, stacks: list[Stack], settings: ProvisionerSettings) -> None:
    """Delete stacks concurrently, one task per stack.

    Every task runs to completion; a failing stack never stops its siblings.

    Args:
        cloud: Cloud adapter.
        stacks: Stacks to delete.
        settings: Provisioner settings.

    Raises:
        StackDeletionError: Listing every stack that could not be deleted.
    """
    if not stacks:
        return

    failures: dict[str, Exception] = {}
    try:
        with ThreadPoolExecutor(max_workers=len(stacks)) as executor:
            futures = {executor.submit(_delete_in_section, cloud, stack, settings): stack.name for stack in stacks}
            for future in as_completed(futures):
                err = future.result()
                if err is not None:
                    failures[futures[future]] = err
    finally:
        console.flush_sections(stack.name for stack in stacks)

    if failures:
        raise StackDeletionError({stack.name: failures[stack.name] for stack in stacks if stack.name in failures})


def delete_cluster_stacks(cloud: CloudAdapter, cluster: Cluster, settings: ProvisionerSettings) -> None:
    """Delete every stack tagged as owned by the cluster.

    Args:
        cloud: Cloud adapter.
        cluster: Cluster being decommissioned.
        settings: Provisioner settings.

    Raises:
        StackDeletionError: Listing every stack that could not be deleted.
    """
    stacks = cloud.list_stacks({settings.cluster_tag(cluster.id): settings.lifecycle_owned})
    logger.info("Deleting %d stacks owned by cluster %s", len(stacks), cluster.id)
    delete_stacks(cloud, stacks, settings)
