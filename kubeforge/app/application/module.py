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
"""Module: merges the fragments of its tasks under one composition policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from kubeforge.app.application.runtime_context import RuntimeContext
from kubeforge.app.application.task import Task
from kubeforge.app.domain.graph import CompositionPolicy, ExecutionFragment
from kubeforge.app.domain.models import ClusterConfig


@dataclass
class Module:
    """Ordered set of tasks. A module is itself a Task, so modules nest."""

    name: str
    tasks: list[Task] = field(default_factory=list)
    policy: CompositionPolicy = CompositionPolicy.SEQUENTIAL
    is_enabled: Callable[[ClusterConfig], bool] | None = None

    def plan(self, runtime: RuntimeContext) -> ExecutionFragment:
        log = runtime.logger_for(module=self.name)
        fragment = ExecutionFragment(self.name)
        if self.is_enabled is not None and not self.is_enabled(runtime.config):
            log.info("Module %s disabled by configuration", self.name)
            return fragment

        for task in self.tasks:
            task_fragment = task.plan(runtime)
            if task_fragment.is_empty():
                log.debug("Task %s planned no nodes", task.name)
            fragment = fragment.merge(task_fragment, self.policy)
        fragment.name = self.name
        log.info(
            "Planned module %s: %d nodes (%s)",
            self.name,
            len(fragment.nodes),
            self.policy.value,
        )
        return fragment


def parallel(name: str, *tasks: Task) -> Module:
    """Module whose tasks run independently of each other."""
    return Module(name=name, tasks=list(tasks), policy=CompositionPolicy.PARALLEL)


def sequence(name: str, *tasks: Task) -> Module:
    """Module whose tasks run one after another."""
    return Module(name=name, tasks=list(tasks), policy=CompositionPolicy.SEQUENTIAL)
