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
"""Step contract: the smallest unit of work, run on one host at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from kubeforge.app.application.connector import CommandResult, Connector, ExecOptions
from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.domain.errors import CancellationError, TransportError
from kubeforge.app.domain.models import ErrorKind, Facts, Host, StepMeta, StepResult

if TYPE_CHECKING:
    from kubeforge.app.application.runtime_context import RuntimeContext


@dataclass
class StepContext:
    """Everything a step may touch while running on one host."""

    runtime: "RuntimeContext"
    host: Host
    control: ExecutionControl
    logger: logging.LoggerAdapter
    timeout: float = 600.0

    @property
    def connector(self) -> Connector:
        return self.runtime.connector_for(self.host)

    @property
    def facts(self) -> Facts:
        return self.runtime.facts(self.host, self.control)

    @property
    def cancelled(self) -> bool:
        return self.control.cancelled

    def raise_if_cancelled(self) -> None:
        self.control.raise_if_cancelled()


class Step(Protocol):
    """One idempotent-intent operation against one host.

    ``run`` reports failure through its StepResult and must return promptly
    once ``ctx.control`` is cancelled. ``check``, ``rollback`` and
    ``describe`` have usable defaults for steps that subclass this protocol.
    """

    def meta(self) -> StepMeta:
        """Name and description of the step."""

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        """Perform the operation on ``host``."""

    def check(self, ctx: StepContext, host: Host) -> bool:
        """Return True if ``host`` is already in the desired state."""
        return False

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        """Best-effort compensating action."""
        return StepResult.success(message="Nothing to roll back")

    def describe(self, ctx: StepContext, host: Host) -> str:
        """What ``run`` would do, for dry runs."""
        return f"would run {self.meta().name} on {host.name}"


def exec_command(
    ctx: StepContext,
    command: str,
    elevated: bool = False,
    timeout: float | None = None,
) -> CommandResult:
    """Run ``command`` through the host connector, honoring the step timeout."""
    ctx.raise_if_cancelled()
    limit = ctx.control.remaining(timeout or ctx.timeout)
    return ctx.connector.execute(
        ctx.control, command, ExecOptions(elevated=elevated, timeout=limit or 0.0)
    )


def run_command(
    ctx: StepContext,
    command: str,
    elevated: bool = False,
    timeout: float | None = None,
) -> StepResult:
    """Run ``command`` and fold the outcome into a StepResult."""
    try:
        output = exec_command(ctx, command, elevated=elevated, timeout=timeout)
    except CancellationError as exc:
        return StepResult.cancelled(str(exc))
    except TransportError as exc:
        return StepResult.failure(str(exc), kind=ErrorKind.TRANSPORT)
    if not output.ok:
        return StepResult.failure(
            f"Command exited with {output.exit_code}: {command}",
            stdout=output.stdout,
            stderr=output.stderr,
        )
    return StepResult.success(stdout=output.stdout, stderr=output.stderr)


def run_commands(
    ctx: StepContext,
    commands: list[str],
    elevated: bool = False,
) -> StepResult:
    """Run ``commands`` in order, stopping at the first failure."""
    logs: list[str] = []
    for command in commands:
        logs.append(f"> {command}")
        result = run_command(ctx, command, elevated=elevated)
        if result.stdout:
            logs.append(result.stdout)
        if not result.ok:
            result.logs = logs
            return result
    return StepResult.success(logs=logs)
