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
"""Simulated connector for local runs and tests."""

from __future__ import annotations

import os
from threading import Lock

from kubeforge.app.application.connector import (
    CommandResult,
    Connector,
    ConnectorFactory,
    ExecOptions,
)
from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.domain.errors import CancellationError, TransportError
from kubeforge.app.domain.models import Facts, Host

MUTATING_CALLS = {"execute", "write_file"}

DEFAULT_RESPONSES = {
    "kubeadm token create --print-join-command": CommandResult(
        stdout=(
            "kubeadm join 10.0.0.10:6443 --token abcdef.0123456789abcdef "
            "--discovery-token-ca-cert-hash sha256:"
            "0000000000000000000000000000000000000000000000000000000000000000"
        )
    ),
}


def simulated_delay_ms() -> int:
    return int(os.getenv("KUBEFORGE_SIMULATED_DELAY_MS", "0").strip() or "0")


def default_facts(host: Host) -> Facts:
    return Facts(
        hostname=host.name,
        os_id="ubuntu",
        os_version="22.04",
        kernel="5.15.0-105-generic",
        arch="x86_64",
        package_manager="apt",
        init_system="systemd",
        cpu_count=2,
        memory_mib=4096,
    )


class SimulatedConnector(Connector):
    """Keeps files in memory and records every call.

    Commands succeed with empty output unless a response was scripted with
    ``respond``; a scripted response matches commands that start with it.
    """

    def __init__(self, host: Host, facts: Facts | None = None, delay_ms: int | None = None):
        self.host = host
        self.facts = facts or default_facts(host)
        self.delay_ms = simulated_delay_ms() if delay_ms is None else delay_ms
        self.files: dict[str, bytes] = {}
        self.calls: list[tuple[str, str]] = []
        self.responses: dict[str, CommandResult] = dict(DEFAULT_RESPONSES)
        self.unreachable = False
        self.closed = False
        self._lock = Lock()

    def respond(self, command_prefix: str, stdout: str = "", exit_code: int = 0) -> None:
        with self._lock:
            self.responses[command_prefix] = CommandResult(stdout=stdout, exit_code=exit_code)

    @property
    def mutation_calls(self) -> list[tuple[str, str]]:
        with self._lock:
            return [call for call in self.calls if call[0] in MUTATING_CALLS]

    @property
    def commands(self) -> list[str]:
        with self._lock:
            return [detail for name, detail in self.calls if name == "execute"]

    def _enter(self, control: ExecutionControl, name: str, detail: str) -> None:
        control.raise_if_cancelled()
        with self._lock:
            self.calls.append((name, detail))
        if self.unreachable:
            raise TransportError(f"Host {self.host.name} is unreachable")
        if self.delay_ms > 0 and not control.sleep(self.delay_ms / 1000.0):
            raise CancellationError("Execution cancelled")

    def execute(
        self,
        control: ExecutionControl,
        command: str,
        options: ExecOptions | None = None,
    ) -> CommandResult:
        self._enter(control, "execute", command)
        with self._lock:
            matches = [p for p in self.responses if command.startswith(p)]
            if not matches:
                return CommandResult(stdout="")
            return self.responses[max(matches, key=len)]

    def read_file(self, control: ExecutionControl, path: str) -> bytes:
        self._enter(control, "read_file", path)
        with self._lock:
            if path not in self.files:
                raise FileNotFoundError(path)
            return self.files[path]

    def write_file(
        self,
        control: ExecutionControl,
        content: bytes,
        path: str,
        permissions: str = "0644",
        elevated: bool = False,
    ) -> None:
        self._enter(control, "write_file", path)
        with self._lock:
            self.files[path] = bytes(content)

    def path_exists(self, control: ExecutionControl, path: str) -> bool:
        self._enter(control, "path_exists", path)
        with self._lock:
            return path in self.files

    def gather_facts(self, control: ExecutionControl) -> Facts:
        self._enter(control, "gather_facts", "")
        return self.facts

    def close(self) -> None:
        self.closed = True


class SimulatedConnectorFactory(ConnectorFactory):
    """One SimulatedConnector per host name, kept for inspection."""

    def __init__(self, delay_ms: int | None = None) -> None:
        self.delay_ms = delay_ms
        self._lock = Lock()
        self.connectors: dict[str, SimulatedConnector] = {}

    def connector_for(self, host: Host) -> SimulatedConnector:
        with self._lock:
            connector = self.connectors.get(host.name)
            if connector is None:
                connector = SimulatedConnector(host, delay_ms=self.delay_ms)
                self.connectors[host.name] = connector
            return connector

    def close(self) -> None:
        with self._lock:
            connectors = list(self.connectors.values())
        for connector in connectors:
            connector.close()
