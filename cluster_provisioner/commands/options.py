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

"""Options shared by the subcommands."""

from __future__ import annotations

from pathlib import Path

import typer

from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.tokens import FileTokenSource, StaticTokenSource, TokenSource

CLUSTER_OPTION = typer.Option(..., "--cluster", exists=True, dir_okay=False, help="Cluster description (YAML)")
CHANNEL_OPTION = typer.Option(..., "--channel", exists=True, file_okay=False, help="Checked-out channel directory")
TOKEN_FILE_OPTION = typer.Option(None, "--token-file", help="File holding the cluster API bearer token")
TOKEN_OPTION = typer.Option(None, "--token", envvar="CLM_TOKEN", hidden=True, help="Cluster API bearer token")


def build_settings(**overrides: object) -> ProvisionerSettings:
    """Load settings from the environment and apply the CLI overrides that were set."""
    settings = ProvisionerSettings()
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


def build_token_source(token_file: Path | None, token: str | None) -> TokenSource:
    """Prefer the token file so rotated tokens are picked up.

    Raises:
        typer.BadParameter: If neither a token file nor a token is given.
    """
    if token_file is not None:
        return FileTokenSource(token_file)
    if not token:
        raise typer.BadParameter("either --token-file or CLM_TOKEN must be set")
    return StaticTokenSource(token)
