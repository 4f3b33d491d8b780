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

"""kubectl invocation for manifest apply and resource deletion."""

from __future__ import annotations

import sh

from cluster_provisioner import console, logger
from cluster_provisioner.errors import CommandError, DeletionValidationError
from cluster_provisioner.models import Resource


def redact(args: list[str]) -> list[str]:
    """Hide the bearer token in a command line meant for logs."""
    return ["--token=<redacted>" if arg.startswith("--token=") else arg for arg in args]


def apply_args(server: str, token: str) -> list[str]:
    """Build ``kubectl apply`` arguments reading the manifest from stdin."""
    return ["apply", f"--server={server}", f"--token={token}", "-f", "-"]


def delete_args(server: str, token: str, resource: Resource) -> list[str]:
    """Build ``kubectl delete`` arguments for a single resource.

    Args:
        server: API server URL.
        token: Bearer token.
        resource: Resource identified by exactly one of name or labels.

    Returns:
        kubectl arguments.

    Raises:
        DeletionValidationError: If the resource has both or neither of name and labels.
    """
    if resource.name and resource.labels:
        raise DeletionValidationError(
            f"only one of 'name' or 'labels' must be specified ({resource.kind} {resource.name})")
    if not resource.name and not resource.labels:
        raise DeletionValidationError(
            f"either name or labels must be specified to identify a resource ({resource.kind})")

    args = [
        f"--server={server}",
        f"--token={token}",
        f"--namespace={resource.namespace}",
        "delete",
        resource.kind,
    ]
    if resource.name:
        args.append(resource.name)
    else:
        args.append(f"--selector={resource.selector}")
    return args


class Kubectl:
    """Runs kubectl with an empty environment.

    The empty environment keeps kubectl from picking up a local kubeconfig or
    in-cluster credentials, so only ``--server``/``--token`` decide the target.

    Args:
        binary: kubectl executable name or path.
        dry_run: Log commands instead of running them.
        not_found_marker: Output fragment identifying a missing resource.
    """

    def __init__(self, binary: str = "kubectl", dry_run: bool = False, not_found_marker: str = "(NotFound)") -> None:
        self.binary = binary
        self.dry_run = dry_run
        self.not_found_marker = not_found_marker

    def run(self, args: list[str], stdin: str | None = None) -> str:
        """Run kubectl and return its output.

        Raises:
            CommandError: If kubectl exits with a non-zero status.
        """
        logger.debug("Running %s %s", self.binary, " ".join(redact(args)))
        try:
            result = sh.Command(self.binary)(*args, _in=stdin, _env={}, _err_to_out=True)
        except sh.ErrorReturnCode as err:
            output = err.stdout.decode(errors="replace")
            raise CommandError(f"{self.binary} {args[0] if args else ''} failed", output) from err
        return str(result)

    def apply(self, server: str, token: str, manifest: str) -> None:
        """Apply a rendered manifest."""
        args = apply_args(server, token)
        if self.dry_run:
            console.print(f"[yellow]   (dry-run) {self.binary} {' '.join(redact(args))}[/yellow]")
            return
        self.run(args, stdin=manifest)

    def delete(self, server: str, token: str, resource: Resource) -> bool:
        """Delete a resource.

        Returns:
            False if the resource did not exist, True otherwise.

        Raises:
            DeletionValidationError: If the resource is not identified correctly.
            CommandError: If kubectl fails for another reason.
        """
        args = delete_args(server, token, resource)
        if self.dry_run:
            console.print(f"[yellow]   (dry-run) {self.binary} {' '.join(redact(args))}[/yellow]")
            return True
        try:
            self.run(args)
        except CommandError as err:
            if self.not_found_marker in err.output:
                logger.info("%s already deleted", resource.describe())
                return False
            raise
        return True
