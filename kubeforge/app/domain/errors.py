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
"""Error taxonomy for planning and execution."""

from __future__ import annotations

from typing import Sequence


class PlanningError(ValueError):
    """Raised while building a graph. Always fatal before execution starts."""


class DuplicateNodeError(PlanningError):
    """Two fragments produced the same node ID."""

    def __init__(self, node_id: str, where: str | None = None):
        self.node_id = node_id
        suffix = f" while merging {where}" if where else ""
        super().__init__(f"Duplicate node ID '{node_id}'{suffix}")


class CycleError(PlanningError):
    """A dependency cycle was detected."""

    def __init__(self, nodes: Sequence[str]):
        self.nodes = list(nodes)
        super().__init__(
            "Dependency cycle detected among nodes: " + ", ".join(self.nodes)
        )


class EmptyHostsError(PlanningError):
    """A node was declared without any target host."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' has no target hosts")


class UnknownNodeError(PlanningError):
    """A dependency refers to a node that is not part of the fragment."""

    def __init__(self, node_id: str, referenced_by: str | None = None):
        self.node_id = node_id
        context = f" (referenced by '{referenced_by}')" if referenced_by else ""
        super().__init__(f"Unknown node '{node_id}'{context}")


class UnresolvedRoleError(PlanningError):
    """A role that a task requires has no hosts."""

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"No hosts resolved for role '{role}'")


class ExecutionError(RuntimeError):
    """A step reported failure."""


class TransportError(ExecutionError):
    """A connector call failed or timed out."""


class DependencyError(ExecutionError):
    """An ancestor node did not succeed.

    Engines record the affected pair as skipped and never retry it. Steps may
    raise it when they find at run time that upstream work is missing.
    """

    def __init__(self, dependency: str, detail: str | None = None):
        self.dependency = dependency
        message = f"Dependency '{dependency}' did not succeed"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class CancellationError(RuntimeError):
    """The run was cancelled."""
