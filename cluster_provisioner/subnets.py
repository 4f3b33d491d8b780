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

"""Subnet selection per availability zone and cluster subnet tagging."""

from __future__ import annotations

from collections.abc import Iterable

from cluster_provisioner import logger
from cluster_provisioner.cloud import CloudAdapter
from cluster_provisioner.constants import SUBNET_ALL_AZ_NAME, TAG_SUBNET_ELB_ROLE
from cluster_provisioner.errors import SubnetError
from cluster_provisioner.models import Subnet


# ============================================================================
# Selection
# ============================================================================

def filter_subnets(subnets: list[Subnet], subnet_ids: Iterable[str]) -> list[Subnet]:
    """Keep only the requested subnets.

    Args:
        subnets: All subnets visible in the account/region.
        subnet_ids: Requested subnet IDs.

    Returns:
        The requested subnets, in the order they were fetched.

    Raises:
        SubnetError: If no ID is requested, or a requested ID is not among
            ``subnets``.
    """
    desired = {sid.strip() for sid in subnet_ids if sid.strip()}
    if not desired:
        raise SubnetError([])
    result = [subnet for subnet in subnets if subnet.id in desired]
    unknown = desired - {subnet.id for subnet in result}
    if unknown:
        raise SubnetError(list(unknown))
    return result


def _preferred(existing: Subnet, candidate: Subnet, elb_role_tag: str) -> Subnet:
    existing_tagged = existing.has_tag(elb_role_tag)
    candidate_tagged = candidate.has_tag(elb_role_tag)
    if existing_tagged != candidate_tagged:
        return candidate if candidate_tagged else existing
    return candidate if candidate.id < existing.id else existing


def select_subnet_ids(
    subnets: Iterable[Subnet],
    elb_role_tag: str = TAG_SUBNET_ELB_ROLE,
) -> dict[str, str]:
    """Pick the best subnet for each availability zone.

    Uses the same rules the Kubernetes cloud provider uses when placing
    load balancers: a subnet carrying the ELB role tag wins, otherwise the
    lexicographically smallest subnet ID.

    Args:
        subnets: Candidate subnets.
        elb_role_tag: Tag key marking load balancer subnets.

    Returns:
        Mapping of availability zone to subnet ID.
    """
    best: dict[str, Subnet] = {}
    for subnet in subnets:
        existing = best.get(subnet.availability_zone)
        if existing is None:
            best[subnet.availability_zone] = subnet
        else:
            best[subnet.availability_zone] = _preferred(existing, subnet, elb_role_tag)
    return {az: subnet.id for az, subnet in best.items()}


def subnets_per_zone(
    subnets: Iterable[Subnet],
    elb_role_tag: str = TAG_SUBNET_ELB_ROLE,
    all_az_name: str = SUBNET_ALL_AZ_NAME,
) -> dict[str, str]:
    """Pick subnets per zone and add the virtual all-zones entry.

    Args:
        subnets: Candidate subnets.
        elb_role_tag: Tag key marking load balancer subnets.
        all_az_name: Key of the virtual zone spanning all zones.

    Returns:
        Mapping of availability zone to subnet ID, plus ``all_az_name``
        mapped to the comma-joined subnet IDs of all zones.
    """
    per_zone = select_subnet_ids(subnets, elb_role_tag)
    per_zone.pop(all_az_name, None)
    result = dict(sorted(per_zone.items()))
    if result:
        result[all_az_name] = ",".join(result.values())
    return result


# ============================================================================
# Tagging
# ============================================================================

def tag_subnets(cloud: CloudAdapter, tag_key: str, tag_value: str) -> list[str]:
    """Tag every subnet of the cluster VPC with ``tag_key=tag_value``.

    Args:
        cloud: Cloud adapter.
        tag_key: Cluster tag key.
        tag_value: Cluster tag value.

    Returns:
        IDs of the subnets that were tagged by this call.
    """
    tagged: list[str] = []
    for subnet in cloud.get_subnets():
        if subnet.has_tag(tag_key, tag_value):
            continue
        logger.info("Tagging subnet %s with %s=%s", subnet.id, tag_key, tag_value)
        cloud.create_tags(subnet.id, {tag_key: tag_value})
        tagged.append(subnet.id)
    return tagged


def untag_subnets(cloud: CloudAdapter, tag_key: str, tag_value: str) -> list[str]:
    """Remove ``tag_key=tag_value`` from every subnet carrying it.

    Args:
        cloud: Cloud adapter.
        tag_key: Cluster tag key.
        tag_value: Cluster tag value.

    Returns:
        IDs of the subnets that were untagged by this call.
    """
    untagged: list[str] = []
    for subnet in cloud.get_subnets():
        if not subnet.has_tag(tag_key, tag_value):
            continue
        logger.info("Removing tag %s from subnet %s", tag_key, subnet.id)
        cloud.delete_tags(subnet.id, {tag_key: tag_value})
        untagged.append(subnet.id)
    return untagged
