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

"""Kubernetes API access: client construction and workload downscaling."""

from __future__ import annotations

from dataclasses import dataclass

from kubernetes import client
from tenacity import Retrying, stop_after_attempt, wait_fixed

from cluster_provisioner import console, logger
from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.tokens import TokenSource


def new_api_client(server: str, token_source: TokenSource) -> client.ApiClient:
    """Build an API client that fetches a fresh bearer token per request.

    No token is read until the first request, so building a client never
    fails on an unavailable token.

    Args:
        server: API server URL.
        token_source: Source of bearer tokens.

    Returns:
        A configured ``ApiClient``.
    """
    configuration = client.Configuration()
    configuration.host = server
    configuration.api_key_prefix["authorization"] = "Bearer"
    # placeholder; auth is only sent for keys present, the hook fills it per request
    configuration.api_key["authorization"] = ""

    def _refresh(config: client.Configuration) -> None:
        config.api_key["authorization"] = token_source.token()

    configuration.refresh_api_key_hook = _refresh
    return client.ApiClient(configuration)


@dataclass(frozen=True)
class StepOutcome:
    """Result of a best-effort step.

    Attributes:
        name: Step name.
        degraded: True if the step failed and was skipped.
        error: Error message of the failure, if any.
    """

    name: str
    degraded: bool = False
    error: str | None = None


def downscale_deployments(apps: client.AppsV1Api, namespace: str) -> list[str]:
    """Scale every deployment of a namespace to zero replicas.

    Args:
        apps: Apps API.
        namespace: Namespace to downscale.

    Returns:
        Names of the deployments that were scaled down.
    """
    scaled: list[str] = []
    for deployment in apps.list_namespaced_deployment(namespace).items:
        if not deployment.spec.replicas:
            continue
        name = deployment.metadata.name
        logger.info("Scaling down deployment %s/%s", namespace, name)
        apps.patch_namespaced_deployment_scale(name, namespace, {"spec": {"replicas": 0}})
        scaled.append(name)
    return scaled


def downscale_best_effort(
    server: str,
    token_source: TokenSource,
    settings: ProvisionerSettings,
) -> StepOutcome:
    """Downscale the system namespace, never failing the caller.

    Controllers left running could recreate resources while their stacks are
    being deleted, so they are stopped first. Retries
    ``settings.downscale_max_attempts`` times with a fixed wait, building a
    fresh client for every attempt.

    Args:
        server: API server URL.
        token_source: Source of bearer tokens.
        settings: Provisioner settings.

    Returns:
        The outcome, marked degraded if downscaling failed.
    """
    retrying = Retrying(
        stop=stop_after_attempt(settings.downscale_max_attempts),
        wait=wait_fixed(settings.downscale_interval),
        reraise=True,
    )
    try:
        for attempt in retrying:
            with attempt:
                apps = client.AppsV1Api(new_api_client(server, token_source))
                scaled = downscale_deployments(apps, settings.system_namespace)
    except Exception as err:
        console.print(f"[yellow]⚠️  Unable to downscale the deployments, proceeding anyway: {err}[/yellow]")
        logger.error("Downscaling %s failed: %s", settings.system_namespace, err)
        return StepOutcome(name="downscale", degraded=True, error=str(err))
    console.print(f"[green]✅ Scaled down {len(scaled)} deployments in {settings.system_namespace}[/green]")
    return StepOutcome(name="downscale")
