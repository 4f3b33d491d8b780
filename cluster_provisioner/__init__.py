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

"""cluster_provisioner - cluster infrastructure and manifest convergence."""

from __future__ import annotations

import io
import logging
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from rich.console import Console

__version__ = "0.1.0"


class SectionConsole:
    """Console proxy that can collect a thread's output into a named section.

    Stacks are deleted from a thread pool. Each worker prints into the section
    of its stack, and the sections are written out in stack order once the
    pool has joined, so lines of different stacks never interleave.
    """

    def __init__(self, real_console: Console) -> None:
        self._real = real_console
        self._local = threading.local()
        self._sections: dict[str, io.StringIO] = {}
        self._lock = threading.Lock()

    def __getattr__(self, name: str):
        target = getattr(self._local, "console", self._real)
        return getattr(target, name)

    @contextmanager
    def section(self, key: str) -> Iterator[None]:
        """Send the current thread's output to the section ``key``."""
        buf = io.StringIO()
        with self._lock:
            self._sections[key] = buf
        self._local.console = Console(file=buf, force_terminal=False, width=self._real.width)
        try:
            yield
        finally:
            del self._local.console

    def flush_sections(self, keys: Iterable[str]) -> None:
        """Print and drop the given sections, in the given order.

        Unknown keys are skipped.
        """
        keys = list(keys)
        with self._lock:
            sections = [self._sections.pop(key) for key in keys if key in self._sections]
        for buf in sections:
            output = buf.getvalue()
            if output:
                self._real.print(output, end="", markup=False, highlight=False)


console = SectionConsole(Console(stderr=True))
logger = logging.getLogger("cluster_provisioner")
