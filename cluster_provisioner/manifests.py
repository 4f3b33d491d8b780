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

"""Rendering and applying cluster manifests, with pre/post deletions."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError
from rich.panel import Panel
from tenacity import RetryError, Retrying, retry_if_exception_type, stop_after_attempt

from cluster_provisioner import console, logger
from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import CommandError, DeletionError, DeletionValidationError, TemplateRenderError
from cluster_provisioner.kubectl import Kubectl
from cluster_provisioner.models import Cluster, Deletions, Resource
from cluster_provisioner.templating import TemplateRenderer, cluster_context
from cluster_provisioner.tokens import TokenSource
from cluster_provisioner.utils import exponential_backoff


def _validation_message(err: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'entry'}: {error['msg']}" for error in err.errors()
    )


def _parse_entries(entries: Any, phase: str) -> tuple[list[Resource], list[str]]:
    if not isinstance(entries, list):
        return [], [f"{phase} must be a list"]
    resources: list[Resource] = []
    rejected: list[str] = []
    for index, entry in enumerate(entries):
        try:
            resources.append(Resource.model_validate(entry))
        except ValidationError as err:
            message = f"invalid {phase} entry {index}: {_validation_message(err)}"
            logger.error("Rejected deletion: %s", message)
            rejected.append(message)
    return resources, rejected


def parse_deletions(manifests_dir: Path, settings: ProvisionerSettings) -> Deletions:
    """Read the deletions document of a manifests directory.

    A missing document is the same as an empty one. Entries without a
    namespace get ``settings.deletions_namespace``. A malformed entry is
    rejected on its own; the other entries are kept.

    Args:
        manifests_dir: Root of the manifests tree.
        settings: Provisioner settings.

    Returns:
        The parsed deletions.

    Raises:
        DeletionValidationError: If the document is not a mapping.
    """
    path = Path(manifests_dir) / settings.deletions_file
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return Deletions()
    if not isinstance(raw, dict):
        raise DeletionValidationError(f"{path} must be a mapping")

    pre_apply, rejected_pre_apply = _parse_entries(raw.get("pre_apply") or [], "pre_apply")
    post_apply, rejected_post_apply = _parse_entries(raw.get("post_apply") or [], "post_apply")
    for resource in [*pre_apply, *post_apply]:
        if not resource.namespace:
            resource.namespace = settings.deletions_namespace
    return Deletions(
        pre_apply=pre_apply,
        post_apply=post_apply,
        rejected_pre_apply=rejected_pre_apply,
        rejected_post_apply=rejected_post_apply,
    )


def strip_whitespace(content: str) -> str:
    return "".join(content.split())


class ManifestReconciler:
    """Applies a channel's manifests to a cluster.

    Args:
        kubectl: kubectl runner (carries the dry-run flag).
        token_source: Source of bearer tokens, queried per command batch.
        settings: Provisioner settings.
    """

    def __init__(self, kubectl: Kubectl, token_source: TokenSource, settings: ProvisionerSettings) -> None:
        self.kubectl = kubectl
        self.token_source = token_source
        self.settings = settings

    def run_deletions(self, cluster: Cluster, resources: list[Resource], rejected: list[str] | None = None) -> None:
        """Delete resources one by one.

        A failing entry does not stop the remaining ones; all failures are
        raised together at the end, along with the entries rejected while
        parsing. Missing resources count as deleted.

        Raises:
            DeletionError: If any deletion failed or was invalid.
        """
        if not resources and not rejected:
            return
        errors: list[Exception] = [DeletionValidationError(message) for message in rejected or []]
        token = self.token_source.token() if resources else ""
        for resource in resources:
            try:
                self.kubectl.delete(cluster.api_server_url, token, resource)
            except Exception as err:
                logger.error("Failed to delete %s: %s", resource.describe(), err)
                errors.append(err)
        if errors:
            raise DeletionError(errors)

    def _apply_manifest(self, cluster: Cluster, token: str, manifest: str) -> None:
        retrying = Retrying(
            stop=stop_after_attempt(self.settings.max_apply_retries),
            wait=exponential_backoff(self.settings),
            retry=retry_if_exception_type(CommandError),
        )
        for attempt in retrying:
            with attempt:
                self.kubectl.apply(cluster.api_server_url, token, manifest)

    def apply_component(self, cluster: Cluster, component_dir: Path, renderer: TemplateRenderer, token: str) -> int:
        """Render and apply every file of one component directory.

        Returns:
            Number of manifests applied.

        Raises:
            TemplateRenderError: If a file cannot be rendered.
            CommandError: If applying a file failed after all retries.
        """
        applied = 0
        for path in sorted(component_dir.iterdir()):
            if not path.is_file():
                continue
            try:
                manifest = renderer.render(path, cluster_context(cluster))
            except FileNotFoundError as err:
                raise TemplateRenderError(f"manifest {path} disappeared") from err

            if not strip_whitespace(manifest):
                logger.debug("Skipping empty file: %s", path)
                continue

            try:
                self._apply_manifest(cluster, token, manifest)
            except RetryError as err:
                cause = err.last_attempt.exception()
                if path.name in self.settings.soft_fail_manifests:
                    console.print(f"[yellow]⚠️  Ignoring failure of {path}: {cause}[/yellow]")
                    continue
                raise CommandError(f"applying {path} failed", getattr(cause, "output", str(cause))) from cause
            applied += 1
        return applied

    def apply(self, cluster: Cluster, manifests_dir: Path) -> None:
        """Run pre-apply deletions, apply all components, run post-apply deletions.

        Args:
            cluster: Target cluster.
            manifests_dir: Root of the manifests tree, one directory per component.
        """
        manifests_dir = Path(manifests_dir)
        console.print(Panel.fit("Applying manifests", style="bold blue"))

        deletions = parse_deletions(manifests_dir, self.settings)
        logger.info("Running pre-apply deletions (%d)", len(deletions.pre_apply))
        self.run_deletions(cluster, deletions.pre_apply, deletions.rejected_pre_apply)

        renderer = TemplateRenderer(manifests_dir)
        token = self.token_source.token()
        total = 0
        for component in sorted(manifests_dir.iterdir()):
            if not component.is_dir():
                continue
            count = self.apply_component(cluster, component, renderer, token)
            console.print(f"[green]  ✓ {component.name} ({count} manifests)[/green]")
            total += count

        logger.info("Running post-apply deletions (%d)", len(deletions.post_apply))
        self.run_deletions(cluster, deletions.post_apply, deletions.rejected_post_apply)
        console.print(f"[green]✅ Applied {total} manifests[/green]")
