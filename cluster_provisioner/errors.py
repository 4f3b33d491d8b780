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

"""Exception hierarchy raised by the provisioner."""

from __future__ import annotations


class ProvisionerError(RuntimeError):
    """Base class for every error raised by the provisioner."""


# -- Preconditions (raised before any external call) --

class PreconditionError(ProvisionerError):
    """The cluster description cannot be handled."""


class ProviderNotSupportedError(PreconditionError):
    """The cluster's provider is not handled by this provisioner."""


class InfrastructureAccountError(PreconditionError):
    """The infrastructure account is malformed or of the wrong family."""


class UnknownUpdateStrategyError(PreconditionError):
    """No update strategy is registered under the requested name."""


class ConfigItemError(PreconditionError):
    """A config item holds a value that cannot be parsed."""


class SubnetError(PreconditionError):
    """Requested subnets do not exist in the account, or none were requested."""

    def __init__(self, unknown: list[str]) -> None:
        self.unknown = sorted(unknown)
        if not self.unknown:
            super().__init__("subnets config item names no subnet")
            return
        super().__init__(f"invalid or unknown subnets: {', '.join(self.unknown)}")


# -- Stacks --

class StackStatusConflictError(ProvisionerError):
    """The stack is in a status that does not allow the operation yet."""

    def __init__(self, stack_name: str, status: str) -> None:
        self.stack_name = stack_name
        self.status = status
        super().__init__(f"stack {stack_name} is in status {status}")


class StackOperationError(ProvisionerError):
    """A stack operation failed permanently."""


class StackDeletionError(ProvisionerError):
    """One or more stacks could not be deleted.

    Attributes:
        failures: Mapping of stack name to the error that stopped its deletion.
    """

    def __init__(self, failures: dict[str, Exception]) -> None:
        self.failures = failures
        super().__init__(", ".join(
            f"failed to delete stack {name}: {err}" for name, err in failures.items()
        ))


# -- Kubernetes --

class APIServerTimeoutError(ProvisionerError):
    """The API server did not become reachable in time."""

    def __init__(self, server: str, timeout: float) -> None:
        self.server = server
        self.timeout = timeout
        super().__init__(f"'{server}' was not ready after {format_seconds(timeout)}")


class CommandError(ProvisionerError):
    """An external command exited with an error.

    Attributes:
        output: Combined stdout and stderr of the command.
    """

    def __init__(self, message: str, output: str = "") -> None:
        self.output = output
        super().__init__(f"{message}: {output.strip()}" if output.strip() else message)


class DeletionValidationError(ProvisionerError):
    """A deletion entry names both or neither of ``name`` and ``labels``."""


class DeletionError(ProvisionerError):
    """One or more resource deletions failed."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = errors
        super().__init__("; ".join(str(err) for err in errors))


class TemplateRenderError(ProvisionerError):
    """A template could not be rendered."""


class NodePoolUpdateError(ProvisionerError):
    """A node pool could not be updated."""


# -- Volumes --

class VolumeStateError(ProvisionerError):
    """A volume is in a state that does not allow deletion."""

    def __init__(self, volume_id: str, state: str) -> None:
        self.volume_id = volume_id
        self.state = state
        super().__init__(f"unable to delete volume {volume_id}: volume in state {state}")


# -- Cancellation --

class ProvisionCancelledError(ProvisionerError):
    """The provisioning run was cancelled between stages."""


def format_seconds(seconds: float) -> str:
    """Format seconds the way Go prints durations, e.g. ``15m0s``."""
    whole = int(seconds)
    if whole != seconds:
        return f"{seconds:g}s"
    hours, rest = divmod(whole, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"
