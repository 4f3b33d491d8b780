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

"""Provision and decommission commands."""

from __future__ import annotations

import signal
import threading
from pathlib import Path

import typer

from cluster_provisioner import console
from cluster_provisioner.commands.options import (
    CHANNEL_OPTION,
    CLUSTER_OPTION,
    TOKEN_FILE_OPTION,
    TOKEN_OPTION,
    build_settings,
    build_token_source,
)
from cluster_provisioner.models import ChannelConfig, load_cluster
from cluster_provisioner.provisioner import ClusterProvisioner
from cluster_provisioner.utils import require_command


def _cancel_on_sigterm() -> threading.Event:
    cancel = threading.Event()

    def _handler(signum, frame) -> None:
        console.print("[yellow]⚠️  Cancellation requested, stopping after the current stage[/yellow]")
        cancel.set()

    signal.signal(signal.SIGTERM, _handler)
    return cancel


def provision(
    cluster_file: Path = CLUSTER_OPTION,
    channel: Path = CHANNEL_OPTION,
    dry_run: bool | None = typer.Option(None, "--dry-run/--no-dry-run", help="Log mutating calls only"),
    apply_only: bool | None = typer.Option(None, "--apply-only/--no-apply-only", help="Skip node pool updates"),
    update_strategy: str | None = typer.Option(None, "--update-strategy", help="Default update strategy"),
    token_file: Path | None = TOKEN_FILE_OPTION,
    token: str | None = TOKEN_OPTION,
) -> None:
    """Create or update a cluster's infrastructure and manifests.

    SIGTERM cancels the run between two stages.
    """
    settings = build_settings(dry_run=dry_run, apply_only=apply_only, update_strategy=update_strategy)
    token_source = build_token_source(token_file, token)
    require_command(settings.kubectl)
    cluster = load_cluster(cluster_file)
    provisioner = ClusterProvisioner(settings, token_source)
    provisioner.provision(cluster, ChannelConfig(channel), cancel=_cancel_on_sigterm())


def decommission(
    cluster_file: Path = CLUSTER_OPTION,
    channel: Path = CHANNEL_OPTION,
    dry_run: bool | None = typer.Option(None, "--dry-run/--no-dry-run", help="Log mutating calls only"),
    remove_volumes: bool | None = typer.Option(
        None, "--remove-volumes/--keep-volumes", help="Delete volumes owned by the cluster"),
    token_file: Path | None = TOKEN_FILE_OPTION,
    token: str | None = TOKEN_OPTION,
) -> None:
    """Delete a cluster's infrastructure."""
    settings = build_settings(dry_run=dry_run, remove_volumes=remove_volumes)
    cluster = load_cluster(cluster_file)
    provisioner = ClusterProvisioner(settings, build_token_source(token_file, token))
    result = provisioner.decommission(cluster, ChannelConfig(channel))
    if result.downscale.degraded:
        console.print(f"[yellow]⚠️  Deployments were not downscaled: {result.downscale.error}[/yellow]")
