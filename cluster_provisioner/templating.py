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

"""Template rendering for stacks, config defaults and manifests."""

from __future__ import annotations

import base64
import hashlib
from pathlib import Path
from typing import Any

import jinja2
import yaml

from cluster_provisioner import logger
from cluster_provisioner.errors import TemplateRenderError
from cluster_provisioner.models import Cluster


def _b64encode(value: str) -> str:
    return base64.b64encode(str(value).encode()).decode()


def _sha256(value: str) -> str:
    return hashlib.sha256(str(value).encode()).hexdigest()


class TemplateRenderer:
    """Render files below ``base_dir`` with Jinja2.

    Templates may include other files of ``base_dir`` and use the ``b64encode``,
    ``sha256`` and ``to_yaml`` filters. Undefined variables are errors.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self._env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.base_dir)),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
        )
        self._env.filters["b64encode"] = _b64encode
        self._env.filters["sha256"] = _sha256
        self._env.filters["to_yaml"] = lambda value: yaml.safe_dump(value, default_flow_style=False)

    def render(self, path: Path, data: dict[str, Any]) -> str:
        """Render a template file.

        Args:
            path: Template file, absolute or relative to ``base_dir``.
            data: Template context.

        Returns:
            The rendered text.

        Raises:
            FileNotFoundError: If the template file does not exist.
            TemplateRenderError: If the template is invalid or fails to render.
        """
        path = Path(path)
        if not path.is_absolute():
            path = self.base_dir / path
        source = path.read_text()
        try:
            return self._env.from_string(source).render(**data)
        except jinja2.TemplateError as err:
            raise TemplateRenderError(f"failed to render {path}: {err}") from err


def cluster_context(cluster: Cluster, **extra: Any) -> dict[str, Any]:
    """Build the template context for a cluster."""
    return {"cluster": cluster, "config": cluster.config_items, **extra}


def apply_defaults(cluster: Cluster, defaults_path: Path, renderer: TemplateRenderer) -> dict[str, str]:
    """Fill unset config items from the channel's config defaults.

    The defaults file is rendered against the cluster without its config
    items, so defaults cannot depend on the values they default.

    Args:
        cluster: Cluster whose ``config_items`` are updated in place.
        defaults_path: Path of ``config-defaults.yaml``.
        renderer: Renderer rooted at the channel.

    Returns:
        The defaults that were applied.

    Raises:
        TemplateRenderError: If the defaults file cannot be rendered or parsed.
    """
    bare = cluster.model_copy(update={"config_items": {}})
    try:
        rendered = renderer.render(defaults_path, cluster_context(bare))
    except FileNotFoundError:
        logger.info("No config defaults at %s", defaults_path)
        return {}

    try:
        defaults = yaml.safe_load(rendered) or {}
    except yaml.YAMLError as err:
        raise TemplateRenderError(f"invalid config defaults {defaults_path}: {err}") from err
    if not isinstance(defaults, dict):
        raise TemplateRenderError(f"config defaults {defaults_path} must be a mapping")

    applied: dict[str, str] = {}
    for key, value in defaults.items():
        if key in cluster.config_items:
            continue
        cluster.config_items[key] = "" if value is None else str(value)
        applied[key] = cluster.config_items[key]
    return applied
