# Copyright 2026 icecake0141
# SPDX-License-Identifier: Apache-2.0
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
#
# This file was created or modified with the assistance of an AI (Large Language Model).
# Review required for correctness, security, and licensing.
"""Per-host transport contract consumed by steps."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.domain.models import Facts, Host

DEFAULT_COMMAND_TIMEOUT = 60.0


@dataclass(frozen=True)
class ExecOptions:
    """Options for one remote command."""

    elevated: bool = False
    timeout: float = DEFAULT_COMMAND_TIMEOUT


@dataclass(frozen=True)
class CommandResult:
    """Captured output of one remote command."""

    stdout: str
    stderr: str = ""
    exit_code: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Connector(Protocol):
    """Remote execution capability for one host.

    Transport failures raise TransportError; a command that ran and exited
    non-zero is returned as a CommandResult. Every call checks ``control``
    before blocking.
    """

    def execute(
        self,
        control: ExecutionControl,
        command: str,
        options: ExecOptions | None = None,
    ) -> CommandResult:
        """Run one shell command."""

    def read_file(self, control: ExecutionControl, path: str) -> bytes:
        """Read a remote file."""

    def write_file(
        self,
        control: ExecutionControl,
        content: bytes,
        path: str,
        permissions: str = "0644",
        elevated: bool = False,
    ) -> None:
        """Write a remote file atomically."""

    def path_exists(self, control: ExecutionControl, path: str) -> bool:
        """Return True if ``path`` exists on the host."""

    def gather_facts(self, control: ExecutionControl) -> Facts:
        """Collect OS and hardware facts."""

    def close(self) -> None:
        """Release the underlying session."""


class ConnectorFactory(Protocol):
    """Hands out one connector per host."""

    def connector_for(self, host: Host) -> Connector:
        """Return the connector bound to ``host``."""

    def close(self) -> None:
        """Close every connector handed out."""
