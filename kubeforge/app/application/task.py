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
"""Task contract and the step-chain task used by bundled pipelines."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

from kubeforge.app.application.runtime_context import HostFilter, RuntimeContext
from kubeforge.app.application.step import Step
from kubeforge.app.domain.graph import ExecutionFragment, ExecutionNode, NodeID
from kubeforge.app.domain.models import Host, RetryPolicy

HostsResolver = Callable[[RuntimeContext], Sequence[Host]]

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class Task(Protocol):
    """Anything that can plan one coherent piece of work."""

    name: str

    def plan(self, runtime: RuntimeContext) -> ExecutionFragment:
        """Build the fragment for this task."""


def node_id(*parts: str) -> NodeID:
    """Human-legible node ID such as ``install-containerd:write-config``."""
    cleaned = [_UNSAFE.sub("-", p.strip()).strip("-") for p in parts if p]
    return ":".join(p for p in cleaned if p)


def resolve_hosts(
    runtime: RuntimeContext,
    roles: Iterable[str] = (),
    host_filter: HostFilter | None = None,
) -> list[Host]:
    """Role and filter based host selection shared by all tasks."""
    return runtime.hosts_for_roles(roles, host_filter)


def control_host_only(runtime: RuntimeContext) -> list[Host]:
    return [runtime.control_host]


@dataclass
class StepTask:
    """Runs ``steps`` one after another on every selected host.

    Each step becomes one node targeting all selected hosts, so step N+1
    starts only after step N finished on every host.
    """

    name: str
    steps: list[Step]
    run_on_roles: tuple[str, ...] = ()
    host_filter: HostFilter | None = None
    hosts_resolver: HostsResolver | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def select_hosts(self, runtime: RuntimeContext) -> list[Host]:
        if self.hosts_resolver is not None:
            hosts = list(self.hosts_resolver(runtime))
            if self.host_filter is not None:
                hosts = [h for h in hosts if self.host_filter(h)]
            return hosts
        return resolve_hosts(runtime, self.run_on_roles, self.host_filter)

    def plan(self, runtime: RuntimeContext) -> ExecutionFragment:
        log = runtime.logger_for(task=self.name)
        fragment = ExecutionFragment(self.name)
        hosts = self.select_hosts(runtime)
        if not hosts:
            log.info("No target hosts for task %s, planning nothing", self.name)
            return fragment

        previous: NodeID | None = None
        for step in self.steps:
            current = node_id(self.name, step.meta().name)
            fragment.add_node(
                ExecutionNode(
                    id=current,
                    step=step,
                    hosts=tuple(hosts),
                    dependencies={previous} if previous else set(),
                    retry=self.retry,
                )
            )
            previous = current
        log.debug(
            "Planned %d nodes on %s", len(fragment.nodes), [h.name for h in hosts]
        )
        return fragment
