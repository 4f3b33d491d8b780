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

"""
cli.py - Provision and decommission clusters from a channel.

Subcommands:
    provision     Create or update a cluster's infrastructure and manifests
    decommission  Delete a cluster's infrastructure
    show          Inspect settings and cloud resources (subnets, config)

Environment Variables:
    All settings can be overridden via CLM_* environment variables, e.g.
    CLM_DRY_RUN, CLM_ASSUMED_ROLE, CLM_UPDATE_STRATEGY. The cluster API token
    is read from --token-file or CLM_TOKEN.

Examples:
    # Provision a cluster, logging mutating calls only
    cluster-provisioner provision --cluster cluster.yaml --channel ./channel --dry-run

    # Decommission a cluster and delete its volumes
    cluster-provisioner decommission --cluster cluster.yaml --channel ./channel --remove-volumes

    # Show the subnet picked for every zone
    cluster-provisioner show subnets --cluster cluster.yaml
"""

from __future__ import annotations

import logging
import sys

import typer

from cluster_provisioner import console
from cluster_provisioner.commands import cluster_cmd, inspect_cmd

app = typer.Typer(
    help="Provision and decommission clusters from a channel.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.command("provision")(cluster_cmd.provision)
app.command("decommission")(cluster_cmd.decommission)
app.add_typer(inspect_cmd.app, name="show")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
