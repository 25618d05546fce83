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
"""Pipeline: merges module fragments into the final execution graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.application.module import Module
from kubeforge.app.application.runtime_context import RuntimeContext
from kubeforge.app.domain.graph import (
    CompositionPolicy,
    ExecutionFragment,
    ExecutionGraph,
)
from kubeforge.app.domain.models import FailurePolicy, RunReport

if TYPE_CHECKING:
    from kubeforge.app.application.execution_engine import Engine


@dataclass
class Pipeline:
    """Top-level plan for one kind of run, e.g. "create-cluster"."""

    name: str
    modules: list[Module] = field(default_factory=list)
    policy: CompositionPolicy = CompositionPolicy.SEQUENTIAL

    def plan(self, runtime: RuntimeContext) -> ExecutionGraph:
        """Plan every module and merge them. PlanningError propagates."""
        log = runtime.logger_for(module=self.name)
        fragment = ExecutionFragment(self.name)
        for module in self.modules:
            log.info("Planning module %s", module.name)
            fragment = fragment.merge(module.plan(runtime), self.policy)
        graph = fragment.freeze(self.name)
        if not len(graph):
            log.warning("Pipeline %s planned no executable nodes", self.name)
        else:
            log.info(
                "Pipeline %s planned: %d nodes, %d node-host pairs",
                self.name,
                len(graph),
                graph.pair_count(),
            )
        return graph

    def run(
        self,
        runtime: RuntimeContext,
        engine: "Engine",
        policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        dry_run: bool = False,
        control: ExecutionControl | None = None,
    ) -> RunReport:
        """Plan and execute in one call."""
        graph = self.plan(runtime)
        return engine.execute(
            graph,
            runtime,
            policy=policy,
            dry_run=dry_run,
            control=control,
            run_id=runtime.run_id,
        )
