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

"""Default values for provisioner settings and well-known config item keys.

Tag names, paths and timings are the defaults of
:class:`cluster_provisioner.config.ProvisionerSettings`; only the config item
keys are read directly.
"""

from __future__ import annotations

PROVIDER_ID = "aws"
PROVIDER_FAMILY_AWS = "aws"

# -- Channel layout --
REL_MANIFESTS_DIR = "cluster/manifests"
REL_DEFAULTS_FILE = "cluster/config-defaults.yaml"
REL_ETCD_STACK_TEMPLATE = "cluster/etcd-cluster.yaml"
REL_CLUSTER_STACK_TEMPLATE = "cluster/cluster-stack.yaml"
REL_NODE_POOLS_DIR = "cluster/node-pools"
NODE_POOL_STACK_TEMPLATE = "stack.yaml"
DELETIONS_FILE = "deletions.yaml"

# -- Stacks --
ETCD_STACK_NAME = "etcd-cluster-etcd"
NODE_POOL_STACK_PREFIX = "nodepool"

# -- Tags --
TAG_CLUSTER_PREFIX = "kubernetes.io/cluster/"
TAG_SUBNET_ELB_ROLE = "kubernetes.io/role/elb"
TAG_NODE_POOL = "cluster-lifecycle-manager/node-pool"
TAG_CLUSTER_ID = "cluster-lifecycle-manager/cluster-id"
RESOURCE_LIFECYCLE_SHARED = "shared"
RESOURCE_LIFECYCLE_OWNED = "owned"

# -- Config items --
CONFIG_KEY_SUBNETS = "subnets"
CONFIG_KEY_UPDATE_STRATEGY = "update_strategy"
CONFIG_KEY_NODE_MAX_EVICT_TIMEOUT = "node_max_evict_timeout"
SUBNET_ALL_AZ_NAME = "*"

# -- Template values handed to node pool stacks --
NODE_LABELS_VALUE = "lifecycle-status=ready"
APISERVER_COUNT_VALUE = "1"

# -- Namespaces --
NS_KUBE_SYSTEM = "kube-system"

# -- kubectl --
KUBECTL_BINARY = "kubectl"
KUBECTL_NOT_FOUND = "(NotFound)"
SOFT_FAIL_MANIFESTS = frozenset({"credentials.yaml"})

# -- Update strategy --
UPDATE_STRATEGY_ROLLING = "rolling"
DEFAULT_MAX_EVICT_TIMEOUT_SECONDS = 3600.0
ROLLING_UPDATE_SURGE = 3

# -- Timeouts, retries and poll intervals --
API_SERVER_TIMEOUT_SECONDS = 15 * 60.0
API_SERVER_POLL_INTERVAL_SECONDS = 15.0
API_SERVER_REQUEST_TIMEOUT_SECONDS = 10.0
STACK_DELETE_TIMEOUT_SECONDS = 5 * 60.0
STACK_WAIT_TIMEOUT_SECONDS = 60 * 60.0
VOLUME_CLEANUP_TIMEOUT_SECONDS = 5 * 60.0
MAX_APPLY_RETRIES = 10
DOWNSCALE_MAX_ATTEMPTS = 5
DOWNSCALE_INTERVAL_SECONDS = 10.0
BACKOFF_INITIAL_INTERVAL_SECONDS = 0.5
BACKOFF_MULTIPLIER = 1.5
BACKOFF_MAX_INTERVAL_SECONDS = 60.0
NODE_POOL_READY_TIMEOUT_SECONDS = 30 * 60.0
NODE_POOL_POLL_INTERVAL_SECONDS = 15.0
