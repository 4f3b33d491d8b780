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

"""CloudFormation and EC2 backed cloud adapter."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import boto3
from botocore.exceptions import ClientError, WaiterError

from cluster_provisioner import console, logger
from cluster_provisioner.errors import StackOperationError, StackStatusConflictError
from cluster_provisioner.models import Cluster, Stack, Subnet, Volume
from cluster_provisioner.templating import TemplateRenderer, cluster_context

STACK_DELETED = "DELETE_COMPLETE"
NO_UPDATES_MESSAGE = "No updates are to be performed"
WAITER_DELAY_SECONDS = 15


def assumed_role_arn(account_id: str, role_name: str | None) -> str | None:
    """Return the ARN of ``role_name`` in ``account_id``, or None without a role."""
    if not role_name:
        return None
    return f"arn:aws:iam::{account_id}:role/{role_name}"


def new_session(region: str, role_arn: str | None = None) -> boto3.session.Session:
    """Build a boto3 session, assuming ``role_arn`` when given.

    Args:
        region: AWS region of the cluster.
        role_arn: IAM role to assume, or None to use ambient credentials.

    Returns:
        A session bound to ``region``.
    """
    if not role_arn:
        return boto3.session.Session(region_name=region)
    sts = boto3.client("sts", region_name=region)
    creds = sts.assume_role(RoleArn=role_arn, RoleSessionName="cluster-provisioner")["Credentials"]
    return boto3.session.Session(
        aws_access_key_id=creds["AccessKeyId"],
        aws_secret_access_key=creds["SecretAccessKey"],
        aws_session_token=creds["SessionToken"],
        region_name=region,
    )


def _to_aws_tags(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def _from_aws_tags(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {tag["Key"]: tag.get("Value", "") for tag in tags or []}


def _is_missing_stack(err: ClientError) -> bool:
    return "does not exist" in err.response.get("Error", {}).get("Message", "")


class AWSAdapter:
    """Cloud adapter over CloudFormation and EC2.

    Args:
        session: boto3 session for the cluster's account and region.
        renderer: Renderer used for stack templates.
        dry_run: Log mutating calls instead of issuing them.
        stack_wait_timeout: Maximum seconds to wait for a stack operation.
    """

    def __init__(
        self,
        session: boto3.session.Session,
        renderer: TemplateRenderer,
        dry_run: bool = False,
        stack_wait_timeout: float = 3600.0,
    ) -> None:
        self.cloudformation = session.client("cloudformation")
        self.ec2 = session.client("ec2")
        self.renderer = renderer
        self.dry_run = dry_run
        self._waiter_config = {
            "Delay": WAITER_DELAY_SECONDS,
            "MaxAttempts": max(1, int(stack_wait_timeout // WAITER_DELAY_SECONDS)),
        }

    # -- Stacks --

    def _describe_stack(self, name: str) -> dict[str, Any] | None:
        try:
            stacks = self.cloudformation.describe_stacks(StackName=name)["Stacks"]
        except ClientError as err:
            if _is_missing_stack(err):
                return None
            raise
        return stacks[0] if stacks else None

    def _wait(self, waiter_name: str, name: str) -> None:
        try:
            self.cloudformation.get_waiter(waiter_name).wait(StackName=name, WaiterConfig=self._waiter_config)
        except WaiterError as err:
            raise StackOperationError(f"stack {name} did not reach a successful status: {err}") from err

    def create_or_update_stack(
        self,
        name: str,
        template_path: Path,
        cluster: Cluster,
        values: dict[str, Any] | None = None,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Create the stack if absent, update it otherwise, and wait for it."""
        body = self.renderer.render(template_path, cluster_context(cluster, values=values or {}))
        params = {
            "StackName": name,
            "TemplateBody": body,
            "Capabilities": ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"],
            "Tags": _to_aws_tags(tags or {}),
        }

        existing = self._describe_stack(name)
        if existing is not None and existing["StackStatus"] == "ROLLBACK_COMPLETE":
            # a stack whose creation rolled back cannot be updated
            self.delete_stack(name)
            existing = None

        if self.dry_run:
            action = "update" if existing else "create"
            console.print(f"[yellow]   (dry-run) would {action} stack {name}[/yellow]")
            return

        try:
            if existing is None:
                logger.info("Creating stack %s", name)
                self.cloudformation.create_stack(**params)
                self._wait("stack_create_complete", name)
            else:
                logger.info("Updating stack %s", name)
                self.cloudformation.update_stack(**params)
                self._wait("stack_update_complete", name)
        except ClientError as err:
            message = err.response.get("Error", {}).get("Message", "")
            if NO_UPDATES_MESSAGE in message:
                logger.info("Stack %s is up to date", name)
                return
            if "IN_PROGRESS" in message:
                raise StackStatusConflictError(name, existing["StackStatus"] if existing else "UNKNOWN") from err
            raise StackOperationError(f"failed to create or update stack {name}: {message}") from err

    def delete_stack(self, name: str) -> None:
        """Delete the stack and wait until it is gone.

        Raises:
            StackStatusConflictError: If the stack is busy with another operation.
            StackOperationError: If the deletion fails.
        """
        existing = self._describe_stack(name)
        if existing is None or existing["StackStatus"] == STACK_DELETED:
            logger.info("Stack %s does not exist", name)
            return

        status = existing["StackStatus"]
        if status.endswith("_IN_PROGRESS") and status != "DELETE_IN_PROGRESS":
            raise StackStatusConflictError(name, status)

        if self.dry_run:
            console.print(f"[yellow]   (dry-run) would delete stack {name}[/yellow]")
            return

        logger.info("Deleting stack %s", name)
        try:
            self.cloudformation.delete_stack(StackName=name)
        except ClientError as err:
            if _is_missing_stack(err):
                return
            raise StackOperationError(f"failed to delete stack {name}: {err}") from err

        try:
            self.cloudformation.get_waiter("stack_delete_complete").wait(
                StackName=name, WaiterConfig=self._waiter_config,
            )
        except WaiterError as err:
            final = self._describe_stack(name)
            final_status = final["StackStatus"] if final else STACK_DELETED
            if final_status == STACK_DELETED:
                return
            if final_status.endswith("_IN_PROGRESS"):
                raise StackStatusConflictError(name, final_status) from err
            raise StackOperationError(f"stack {name} ended in status {final_status}") from err

    def list_stacks(self, tags: dict[str, str]) -> list[Stack]:
        """List live stacks carrying all of ``tags``."""
        stacks: list[Stack] = []
        for page in self.cloudformation.get_paginator("describe_stacks").paginate():
            for item in page["Stacks"]:
                stack_tags = _from_aws_tags(item.get("Tags"))
                if item["StackStatus"] == STACK_DELETED:
                    continue
                if all(stack_tags.get(key) == value for key, value in tags.items()):
                    stacks.append(Stack(name=item["StackName"], status=item["StackStatus"], tags=stack_tags))
        return stacks

    # -- Subnets --

    def _default_vpc_id(self) -> str:
        vpcs = self.ec2.describe_vpcs(Filters=[{"Name": "isDefault", "Values": ["true"]}])["Vpcs"]
        if not vpcs:
            raise StackOperationError("no default VPC found")
        return vpcs[0]["VpcId"]

    def get_subnets(self) -> list[Subnet]:
        """List the subnets of the default VPC."""
        vpc_id = self._default_vpc_id()
        subnets: list[Subnet] = []
        paginator = self.ec2.get_paginator("describe_subnets")
        for page in paginator.paginate(Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]):
            for item in page["Subnets"]:
                subnets.append(Subnet(
                    id=item["SubnetId"],
                    availability_zone=item["AvailabilityZone"],
                    tags=_from_aws_tags(item.get("Tags")),
                ))
        return subnets

    def create_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        if self.dry_run:
            console.print(f"[yellow]   (dry-run) would tag {resource_id} with {tags}[/yellow]")
            return
        self.ec2.create_tags(Resources=[resource_id], Tags=_to_aws_tags(tags))

    def delete_tags(self, resource_id: str, tags: dict[str, str]) -> None:
        if self.dry_run:
            console.print(f"[yellow]   (dry-run) would untag {resource_id}: {tags}[/yellow]")
            return
        self.ec2.delete_tags(Resources=[resource_id], Tags=_to_aws_tags(tags))

    # -- Volumes --

    def get_volumes(self, tags: dict[str, str]) -> list[Volume]:
        """List volumes carrying all of ``tags``."""
        filters = [{"Name": f"tag:{key}", "Values": [value]} for key, value in tags.items()]
        volumes: list[Volume] = []
        for page in self.ec2.get_paginator("describe_volumes").paginate(Filters=filters):
            volumes.extend(Volume(id=item["VolumeId"], state=item["State"]) for item in page["Volumes"])
        return volumes

    def delete_volume(self, volume_id: str) -> None:
        if self.dry_run:
            console.print(f"[yellow]   (dry-run) would delete volume {volume_id}[/yellow]")
            return
        self.ec2.delete_volume(VolumeId=volume_id)
