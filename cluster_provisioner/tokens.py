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

"""Bearer token sources."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class TokenSource(Protocol):
    """Supplies short-lived bearer tokens; called once per authorized call."""

    def token(self) -> str: ...


class StaticTokenSource:
    """Always returns the same token."""

    def __init__(self, token: str) -> None:
        if not token:
            raise ValueError("token must not be empty")
        self._token = token

    def token(self) -> str:
        return self._token


class FileTokenSource:
    """Reads the token from a file on every call, picking up rotations."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def token(self) -> str:
        value = self.path.read_text().strip()
        if not value:
            raise ValueError(f"token file {self.path} is empty")
        return value
