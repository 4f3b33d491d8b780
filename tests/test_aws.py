"""
Tests for the CloudFormation and EC2 adapter.
"""
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from cluster_provisioner.aws import AWSAdapter, assumed_role_arn
from cluster_provisioner.errors import StackOperationError, StackStatusConflictError
from cluster_provisioner.templating import TemplateRenderer


def _client_error(message, operation="DescribeStacks"):
    return ClientError({"Error": {"Code": "ValidationError", "Message": message}}, operation)


@pytest.fixture
def clients():
    return {"cloudformation": MagicMock(), "ec2": MagicMock()}


@pytest.fixture
def session(clients):
    mock = MagicMock()
    mock.client.side_effect = lambda name: clients[name]
    return mock


@pytest.fixture
def adapter(session, tmp_path):
    (tmp_path / "stack.yaml").write_text("Description: {{ cluster.local_id }} {{ values.size }}\n")
    return AWSAdapter(session, TemplateRenderer(tmp_path))


def test_assumed_role_arn():
    assert assumed_role_arn("123456789012", "clm") == "arn:aws:iam::123456789012:role/clm"
    assert assumed_role_arn("123456789012", None) is None


def test_delete_missing_stack_succeeds(adapter, clients):
    cf = clients["cloudformation"]
    cf.describe_stacks.side_effect = _client_error("Stack with id kube-1 does not exist")

    adapter.delete_stack("kube-1")

    cf.delete_stack.assert_not_called()


def test_delete_busy_stack_conflicts(adapter, clients):
    cf = clients["cloudformation"]
    cf.describe_stacks.return_value = {"Stacks": [{"StackName": "kube-1", "StackStatus": "UPDATE_IN_PROGRESS"}]}

    with pytest.raises(StackStatusConflictError) as excinfo:
        adapter.delete_stack("kube-1")
    assert excinfo.value.status == "UPDATE_IN_PROGRESS"


def test_delete_waits_for_completion(adapter, clients):
    cf = clients["cloudformation"]
    cf.describe_stacks.return_value = {"Stacks": [{"StackName": "kube-1", "StackStatus": "CREATE_COMPLETE"}]}

    adapter.delete_stack("kube-1")

    cf.delete_stack.assert_called_once_with(StackName="kube-1")
    cf.get_waiter.assert_called_once_with("stack_delete_complete")


def test_delete_api_failure_is_permanent(adapter, clients):
    cf = clients["cloudformation"]
    cf.describe_stacks.return_value = {"Stacks": [{"StackName": "kube-1", "StackStatus": "CREATE_COMPLETE"}]}
    cf.delete_stack.side_effect = _client_error("Access denied", "DeleteStack")

    with pytest.raises(StackOperationError):
        adapter.delete_stack("kube-1")


def test_create_when_absent(adapter, clients, cluster, tmp_path):
    cf = clients["cloudformation"]
    cf.describe_stacks.side_effect = _client_error("Stack with id kube-1 does not exist")

    adapter.create_or_update_stack("kube-1", tmp_path / "stack.yaml", cluster, values={"size": 3},
                                   tags={"owner": "me"})

    kwargs = cf.create_stack.call_args.kwargs
    assert kwargs["StackName"] == "kube-1"
    assert kwargs["TemplateBody"] == "Description: kube-1 3\n"
    assert kwargs["Tags"] == [{"Key": "owner", "Value": "me"}]
    cf.get_waiter.assert_called_once_with("stack_create_complete")


def test_update_without_changes_succeeds(adapter, clients, cluster, tmp_path):
    cf = clients["cloudformation"]
    cf.describe_stacks.return_value = {"Stacks": [{"StackName": "kube-1", "StackStatus": "UPDATE_COMPLETE"}]}
    cf.update_stack.side_effect = _client_error("No updates are to be performed.", "UpdateStack")

    adapter.create_or_update_stack("kube-1", tmp_path / "stack.yaml", cluster, values={"size": 3})

    cf.get_waiter.assert_not_called()


def test_dry_run_does_not_mutate(session, clients, cluster, tmp_path):
    (tmp_path / "stack.yaml").write_text("Description: x\n")
    adapter = AWSAdapter(session, TemplateRenderer(tmp_path), dry_run=True)
    cf = clients["cloudformation"]
    cf.describe_stacks.return_value = {"Stacks": [{"StackName": "kube-1", "StackStatus": "CREATE_COMPLETE"}]}

    adapter.create_or_update_stack("kube-1", tmp_path / "stack.yaml", cluster)
    adapter.delete_stack("kube-1")
    adapter.create_tags("subnet-a", {"k": "v"})
    adapter.delete_volume("vol-1")

    cf.update_stack.assert_not_called()
    cf.delete_stack.assert_not_called()
    clients["ec2"].create_tags.assert_not_called()
    clients["ec2"].delete_volume.assert_not_called()


def test_list_stacks_filters_by_tags(adapter, clients):
    cf = clients["cloudformation"]
    cf.get_paginator.return_value.paginate.return_value = [{"Stacks": [
        {"StackName": "a", "StackStatus": "CREATE_COMPLETE", "Tags": [{"Key": "owner", "Value": "kube-1"}]},
        {"StackName": "b", "StackStatus": "CREATE_COMPLETE", "Tags": [{"Key": "owner", "Value": "kube-2"}]},
        {"StackName": "c", "StackStatus": "DELETE_COMPLETE", "Tags": [{"Key": "owner", "Value": "kube-1"}]},
    ]}]

    stacks = adapter.list_stacks({"owner": "kube-1"})

    assert [stack.name for stack in stacks] == ["a"]


def test_get_subnets_of_default_vpc(adapter, clients):
    ec2 = clients["ec2"]
    ec2.describe_vpcs.return_value = {"Vpcs": [{"VpcId": "vpc-1"}]}
    ec2.get_paginator.return_value.paginate.return_value = [{"Subnets": [
        {"SubnetId": "subnet-a", "AvailabilityZone": "eu-central-1a",
         "Tags": [{"Key": "kubernetes.io/role/elb", "Value": ""}]},
    ]}]

    subnets = adapter.get_subnets()

    assert subnets[0].id == "subnet-a"
    assert subnets[0].has_tag("kubernetes.io/role/elb")
    ec2.get_paginator.return_value.paginate.assert_called_once_with(
        Filters=[{"Name": "vpc-id", "Values": ["vpc-1"]}])


def test_get_volumes_filters_by_tags(adapter, clients):
    ec2 = clients["ec2"]
    ec2.get_paginator.return_value.paginate.return_value = [{"Volumes": [{"VolumeId": "vol-1", "State": "available"}]}]

    volumes = adapter.get_volumes({"kubernetes.io/cluster/kube-1": "owned"})

    assert [(v.id, v.state) for v in volumes] == [("vol-1", "available")]
    ec2.get_paginator.return_value.paginate.assert_called_once_with(
        Filters=[{"Name": "tag:kubernetes.io/cluster/kube-1", "Values": ["owned"]}])
