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
"""General purpose steps: shell commands, files, packages and services."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Callable, Optional, Union

from kubeforge.app.application.step import (
    Step,
    StepContext,
    exec_command,
    run_command,
    run_commands,
)
from kubeforge.app.domain.errors import CancellationError, ExecutionError, TransportError
from kubeforge.app.domain.models import ErrorKind, Host, StepMeta, StepResult

Content = Union[str, bytes, Callable[[StepContext], Union[str, bytes]]]


def _to_bytes(value: Union[str, bytes]) -> bytes:
    return value.encode("utf-8") if isinstance(value, str) else value


@dataclass
class CommandStep(Step):
    """Runs one shell command.

    ``check_command`` exiting 0 means the host is already done;
    ``rollback_command`` undoes the command when set.
    """

    name: str
    command: str
    elevated: bool = True
    check_command: Optional[str] = None
    rollback_command: Optional[str] = None
    description: str = ""

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description=self.description or self.command)

    def check(self, ctx: StepContext, host: Host) -> bool:
        if not self.check_command:
            return False
        return exec_command(ctx, self.check_command, elevated=self.elevated).ok

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        return run_command(ctx, self.command, elevated=self.elevated)

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        if not self.rollback_command:
            return StepResult.success(message="Nothing to roll back")
        return run_command(ctx, self.rollback_command, elevated=self.elevated)

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would run `{self.command}` on {host.name}"


@dataclass
class WriteFileStep(Step):
    """Writes ``content`` to ``path``; a callable content is rendered per host."""

    name: str
    path: str
    content: Content
    permissions: str = "0644"
    elevated: bool = True
    _previous: dict[str, Optional[bytes]] = field(default_factory=dict, init=False, repr=False)
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description=f"Write {self.path}")

    def render(self, ctx: StepContext) -> bytes:
        value = self.content(ctx) if callable(self.content) else self.content
        return _to_bytes(value)

    def check(self, ctx: StepContext, host: Host) -> bool:
        connector = ctx.connector
        if not connector.path_exists(ctx.control, self.path):
            return False
        return connector.read_file(ctx.control, self.path) == self.render(ctx)

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        connector = ctx.connector
        try:
            desired = self.render(ctx)
            previous = None
            if connector.path_exists(ctx.control, self.path):
                previous = connector.read_file(ctx.control, self.path)
            with self._lock:
                self._previous.setdefault(host.name, previous)
            connector.write_file(
                ctx.control, desired, self.path, self.permissions, self.elevated
            )
        except CancellationError as exc:
            return StepResult.cancelled(str(exc))
        except TransportError as exc:
            return StepResult.failure(str(exc), kind=ErrorKind.TRANSPORT)
        except (ExecutionError, FileNotFoundError) as exc:
            return StepResult.failure(f"Failed to write {self.path}: {exc}")
        return StepResult.success(message=f"Wrote {len(desired)} bytes to {self.path}")

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        with self._lock:
            if host.name not in self._previous:
                return StepResult.success(message="Nothing to roll back")
            previous = self._previous.pop(host.name)
        if previous is None:
            return run_command(ctx, f"rm -f {shlex.quote(self.path)}", elevated=self.elevated)
        try:
            ctx.connector.write_file(
                ctx.control, previous, self.path, self.permissions, self.elevated
            )
        except (TransportError, ExecutionError) as exc:
            return StepResult.failure(f"Failed to restore {self.path}: {exc}")
        return StepResult.success(message=f"Restored {self.path}")

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would write {self.path} ({self.permissions}) on {host.name}"


INSTALL_COMMANDS = {
    "apt": "DEBIAN_FRONTEND=noninteractive apt-get install -y {packages}",
    "dnf": "dnf install -y {packages}",
    "yum": "yum install -y {packages}",
    "zypper": "zypper --non-interactive install {packages}",
}

QUERY_COMMANDS = {
    "apt": "dpkg -s {package}",
    "dnf": "rpm -q {package}",
    "yum": "rpm -q {package}",
    "zypper": "rpm -q {package}",
}


@dataclass
class InstallPackagesStep(Step):
    """Installs OS packages with the package manager reported by host facts."""

    name: str
    packages: tuple[str, ...]

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description=f"Install {' '.join(self.packages)}")

    def _manager(self, ctx: StepContext) -> str:
        manager = ctx.facts.package_manager
        if manager not in INSTALL_COMMANDS:
            raise ExecutionError(f"Unsupported package manager: {manager or 'unknown'}")
        return manager

    def check(self, ctx: StepContext, host: Host) -> bool:
        query = QUERY_COMMANDS[self._manager(ctx)]
        for package in self.packages:
            if not exec_command(ctx, query.format(package=shlex.quote(package))).ok:
                return False
        return True

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        try:
            manager = self._manager(ctx)
        except ExecutionError as exc:
            return StepResult.failure(str(exc))
        packages = " ".join(shlex.quote(p) for p in self.packages)
        return run_command(
            ctx, INSTALL_COMMANDS[manager].format(packages=packages), elevated=True
        )

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would install {', '.join(self.packages)} on {host.name}"


class ServiceAction(str, Enum):
    """systemctl verbs supported by ManageServiceStep."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    ENABLE = "enable"
    DISABLE = "disable"


@dataclass
class ManageServiceStep(Step):
    """Applies a systemctl action to one unit."""

    name: str
    service: str
    action: ServiceAction
    daemon_reload: bool = False

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description=f"{self.action.value} {self.service}")

    def check(self, ctx: StepContext, host: Host) -> bool:
        unit = shlex.quote(self.service)
        if self.action == ServiceAction.START:
            return exec_command(ctx, f"systemctl is-active --quiet {unit}").ok
        if self.action == ServiceAction.STOP:
            return not exec_command(ctx, f"systemctl is-active --quiet {unit}").ok
        if self.action == ServiceAction.ENABLE:
            return exec_command(ctx, f"systemctl is-enabled --quiet {unit}").ok
        if self.action == ServiceAction.DISABLE:
            return not exec_command(ctx, f"systemctl is-enabled --quiet {unit}").ok
        return False

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        init_system = ctx.facts.init_system
        if init_system and init_system != "systemd":
            return StepResult.failure(f"Unsupported init system: {init_system}")
        commands = ["systemctl daemon-reload"] if self.daemon_reload else []
        commands.append(f"systemctl {self.action.value} {shlex.quote(self.service)}")
        return run_commands(ctx, commands, elevated=True)

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        opposite = {
            ServiceAction.START: ServiceAction.STOP,
            ServiceAction.ENABLE: ServiceAction.DISABLE,
        }.get(self.action)
        if opposite is None:
            return StepResult.success(message="Nothing to roll back")
        return run_command(
            ctx, f"systemctl {opposite.value} {shlex.quote(self.service)}", elevated=True
        )

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would {self.action.value} {self.service} on {host.name}"
