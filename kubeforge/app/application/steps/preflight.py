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
"""Host preparation steps required before installing Kubernetes."""

from __future__ import annotations

import shlex
from dataclasses import dataclass, field

from kubeforge.app.application.step import Step, StepContext, exec_command, run_command
from kubeforge.app.domain.errors import CancellationError, ExecutionError, TransportError
from kubeforge.app.domain.models import ErrorKind, Host, StepMeta, StepResult

FSTAB_PATH = "/etc/fstab"
MODULES_CONF = "/etc/modules-load.d/kubeforge.conf"
SYSCTL_CONF = "/etc/sysctl.d/99-kubeforge.conf"

DEFAULT_KERNEL_MODULES = ("overlay", "br_netfilter")
DEFAULT_SYSCTL = {
    "net.bridge.bridge-nf-call-iptables": "1",
    "net.bridge.bridge-nf-call-ip6tables": "1",
    "net.ipv4.ip_forward": "1",
}


def _is_swap_entry(line: str) -> bool:
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return False
    fields = stripped.split()
    return len(fields) >= 3 and fields[2] == "swap"


def comment_out_swap(fstab: str) -> str:
    """Return ``fstab`` with every active swap entry commented out."""
    lines = []
    for line in fstab.splitlines():
        lines.append(f"# {line}" if _is_swap_entry(line) else line)
    result = "\n".join(lines)
    return result + "\n" if fstab.endswith("\n") else result


def has_swap_entry(fstab: str) -> bool:
    return any(_is_swap_entry(line) for line in fstab.splitlines())


def _failure_from(exc: Exception) -> StepResult:
    if isinstance(exc, CancellationError):
        return StepResult.cancelled(str(exc))
    if isinstance(exc, TransportError):
        return StepResult.failure(str(exc), kind=ErrorKind.TRANSPORT)
    return StepResult.failure(str(exc))


@dataclass
class DisableSwapStep(Step):
    """Turns swap off now and keeps it off across reboots."""

    name: str = "disable-swap"

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description="Disable swap and persist in fstab")

    def check(self, ctx: StepContext, host: Host) -> bool:
        active = exec_command(ctx, "swapon --noheadings --show", elevated=True)
        if not active.ok or active.stdout.strip():
            return False
        if not ctx.connector.path_exists(ctx.control, FSTAB_PATH):
            return True
        fstab = ctx.connector.read_file(ctx.control, FSTAB_PATH).decode("utf-8")
        return not has_swap_entry(fstab)

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        result = run_command(ctx, "swapoff -a", elevated=True)
        if not result.ok:
            return result
        connector = ctx.connector
        try:
            if not connector.path_exists(ctx.control, FSTAB_PATH):
                return StepResult.success(message="Swap disabled, no fstab present")
            fstab = connector.read_file(ctx.control, FSTAB_PATH).decode("utf-8")
            if has_swap_entry(fstab):
                connector.write_file(
                    ctx.control,
                    comment_out_swap(fstab).encode("utf-8"),
                    FSTAB_PATH,
                    "0644",
                    elevated=True,
                )
        except (CancellationError, TransportError, ExecutionError, FileNotFoundError) as exc:
            return _failure_from(exc)
        return StepResult.success(message="Swap disabled")

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        ctx.logger.warning("Swap is not re-enabled on rollback; restore %s manually", FSTAB_PATH)
        return StepResult.success(message="Swap left disabled")

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would disable swap and comment swap entries in {FSTAB_PATH} on {host.name}"


@dataclass
class LoadKernelModulesStep(Step):
    """Loads kernel modules and persists them under modules-load.d."""

    name: str = "load-kernel-modules"
    modules: tuple[str, ...] = DEFAULT_KERNEL_MODULES
    conf_path: str = MODULES_CONF

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description=f"Load {', '.join(self.modules)}")

    def conf_content(self) -> bytes:
        return ("\n".join(self.modules) + "\n").encode("utf-8")

    def check(self, ctx: StepContext, host: Host) -> bool:
        loaded = exec_command(ctx, "lsmod")
        if not loaded.ok:
            return False
        names = {line.split()[0] for line in loaded.stdout.splitlines()[1:] if line.strip()}
        if not set(self.modules) <= names:
            return False
        if not ctx.connector.path_exists(ctx.control, self.conf_path):
            return False
        return ctx.connector.read_file(ctx.control, self.conf_path) == self.conf_content()

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        for module in self.modules:
            result = run_command(ctx, f"modprobe {shlex.quote(module)}", elevated=True)
            if not result.ok:
                return result
        try:
            ctx.connector.write_file(
                ctx.control, self.conf_content(), self.conf_path, "0644", elevated=True
            )
        except (CancellationError, TransportError, ExecutionError) as exc:
            return _failure_from(exc)
        return StepResult.success(message=f"Loaded {', '.join(self.modules)}")

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would modprobe {' '.join(self.modules)} on {host.name}"


@dataclass
class ConfigureSysctlStep(Step):
    """Persists kernel parameters and applies them."""

    name: str = "configure-sysctl"
    params: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SYSCTL))
    conf_path: str = SYSCTL_CONF

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description=f"Apply {len(self.params)} sysctl values")

    def conf_content(self) -> bytes:
        lines = [f"{key} = {value}" for key, value in sorted(self.params.items())]
        return ("\n".join(lines) + "\n").encode("utf-8")

    def check(self, ctx: StepContext, host: Host) -> bool:
        if not ctx.connector.path_exists(ctx.control, self.conf_path):
            return False
        if ctx.connector.read_file(ctx.control, self.conf_path) != self.conf_content():
            return False
        for key, value in self.params.items():
            current = exec_command(ctx, f"sysctl -n {shlex.quote(key)}")
            if not current.ok or current.stdout.strip() != value:
                return False
        return True

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        try:
            ctx.connector.write_file(
                ctx.control, self.conf_content(), self.conf_path, "0644", elevated=True
            )
        except (CancellationError, TransportError, ExecutionError) as exc:
            return _failure_from(exc)
        return run_command(ctx, f"sysctl -p {shlex.quote(self.conf_path)}", elevated=True)

    def describe(self, ctx: StepContext, host: Host) -> str:
        keys = ", ".join(sorted(self.params))
        return f"would set {keys} on {host.name}"
