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

"""Read-only inspection subcommands (subnets, config)."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from cluster_provisioner import console
from cluster_provisioner.aws import AWSAdapter, assumed_role_arn, new_session
from cluster_provisioner.commands.options import CLUSTER_OPTION, build_settings
from cluster_provisioner.config import display_config
from cluster_provisioner.constants import CONFIG_KEY_SUBNETS
from cluster_provisioner.models import load_cluster
from cluster_provisioner.subnets import filter_subnets, subnets_per_zone
from cluster_provisioner.templating import TemplateRenderer

app = typer.Typer(help="Inspect settings and cloud resources.")


@app.command()
def subnets(cluster_file: Path = CLUSTER_OPTION) -> None:
    """Show the subnet selected for every availability zone."""
    settings = build_settings()
    cluster = load_cluster(cluster_file)
    role_arn = assumed_role_arn(cluster.account_id, settings.assumed_role)
    cloud = AWSAdapter(new_session(cluster.region, role_arn), TemplateRenderer(cluster_file.parent), dry_run=True)

    candidates = cloud.get_subnets()
    if CONFIG_KEY_SUBNETS in cluster.config_items:
        candidates = filter_subnets(candidates, cluster.config_items[CONFIG_KEY_SUBNETS].split(","))

    table = Table(title=f"Subnets of {cluster.id}", show_header=True, header_style="bold blue")
    table.add_column("Availability zone")
    table.add_column("Subnet")
    for zone, subnet_id in subnets_per_zone(
            candidates, settings.subnet_elb_role_tag, settings.subnet_all_az_name).items():
        table.add_row(zone, subnet_id)
    console.print(table)


@app.command()
def config() -> None:
    """Show the resolved provisioner settings."""
    display_config(build_settings())
