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

"""Utility functions for backoff policies, cancellation and command checks."""

from __future__ import annotations

import threading

import sh
from tenacity import wait_exponential

from cluster_provisioner.config import ProvisionerSettings
from cluster_provisioner.errors import ProvisionCancelledError


def exponential_backoff(settings: ProvisionerSettings) -> wait_exponential:
    """Build the exponential wait policy shared by all retry loops.

    Args:
        settings: Settings holding initial interval, multiplier and cap.

    Returns:
        A tenacity wait strategy.
    """
    return wait_exponential(
        multiplier=settings.backoff_initial_interval,
        exp_base=settings.backoff_multiplier,
        max=settings.backoff_max_interval,
    )


def check_cancelled(cancel: threading.Event | None, stage: str) -> None:
    """Raise if the run was cancelled.

    Args:
        cancel: Cancellation event, or None for a non-cancellable run.
        stage: Name of the stage that just finished, for the error message.

    Raises:
        ProvisionCancelledError: If ``cancel`` is set.
    """
    if cancel is not None and cancel.is_set():
        raise ProvisionCancelledError(f"provisioning cancelled after {stage}")


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err
