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
"""Execution graph model: nodes, composable fragments and the final graph.

Nodes live in an arena keyed by NodeID. Dependencies are stored on the
dependent node (``node.dependencies`` holds the IDs it waits for), so an edge
``y -> x`` means "y depends on x".
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .errors import CycleError, DuplicateNodeError, EmptyHostsError, UnknownNodeError
from .models import Host, RetryPolicy

NodeID = str


class CompositionPolicy(str, Enum):
    """How two fragments are wired when merged."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class _NodeView:
    id: NodeID
    step: Any
    hosts: tuple[Host, ...]
    dependencies: set[NodeID] | frozenset[NodeID]
    retry: RetryPolicy

    @property
    def step_name(self) -> str:
        meta = getattr(self.step, "meta", None)
        if meta is None:
            return type(self.step).__name__
        return meta().name

    @property
    def host_names(self) -> list[str]:
        return [h.name for h in self.hosts]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "step": self.step_name,
            "hosts": self.host_names,
            "dependencies": sorted(self.dependencies),
            "max_attempts": self.retry.max_attempts,
        }


@dataclass
class ExecutionNode(_NodeView):
    """A step bound to its target hosts and the nodes it depends on."""

    id: NodeID
    step: Any
    hosts: tuple[Host, ...]
    dependencies: set[NodeID] = field(default_factory=set)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        unique: dict[str, Host] = {}
        for host in self.hosts:
            unique.setdefault(host.name, host)
        self.hosts = tuple(unique.values())
        self.dependencies = set(self.dependencies)
        if not self.hosts:
            raise EmptyHostsError(self.id)
        if self.id in self.dependencies:
            raise CycleError([self.id])

    def copy(self) -> "ExecutionNode":
        return replace(self, dependencies=set(self.dependencies))


@dataclass(frozen=True)
class GraphNode(_NodeView):
    """Read-only node held by an ExecutionGraph."""

    id: NodeID
    step: Any
    hosts: tuple[Host, ...]
    dependencies: frozenset[NodeID]
    retry: RetryPolicy

    @classmethod
    def from_node(cls, node: ExecutionNode) -> "GraphNode":
        return cls(
            id=node.id,
            step=node.step,
            hosts=tuple(node.hosts),
            dependencies=frozenset(node.dependencies),
            retry=node.retry,
        )


def topological_order(nodes: Mapping[NodeID, _NodeView]) -> list[NodeID]:
    """Kahn's algorithm with lexical tie-breaking so output is deterministic."""
    in_degree: dict[NodeID, int] = {}
    dependents: dict[NodeID, list[NodeID]] = {node_id: [] for node_id in nodes}
    for node_id, node in nodes.items():
        in_degree[node_id] = len(node.dependencies)
        for dep in node.dependencies:
            if dep not in nodes:
                raise UnknownNodeError(dep, referenced_by=node_id)
            dependents[dep].append(node_id)

    heap = [node_id for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(heap)
    order: list[NodeID] = []
    while heap:
        current = heapq.heappop(heap)
        order.append(current)
        for dependent in dependents[current]:
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(heap, dependent)

    if len(order) != len(nodes):
        stuck = sorted(node_id for node_id, degree in in_degree.items() if degree > 0)
        raise CycleError(stuck)
    return order


def _dependents_of(nodes: Mapping[NodeID, _NodeView]) -> dict[NodeID, list[NodeID]]:
    dependents: dict[NodeID, list[NodeID]] = {node_id: [] for node_id in nodes}
    for node_id, node in nodes.items():
        for dep in sorted(node.dependencies):
            if dep in dependents:
                dependents[dep].append(node_id)
    return dependents


class ExecutionFragment:
    """Partial graph produced by one planning unit."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.nodes: dict[NodeID, ExecutionNode] = {}
        self.entry_nodes: set[NodeID] = set()
        self.exit_nodes: set[NodeID] = set()

    def __repr__(self) -> str:
        return (
            f"ExecutionFragment(name={self.name!r}, nodes={len(self.nodes)}, "
            f"entry={sorted(self.entry_nodes)}, exit={sorted(self.exit_nodes)})"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExecutionFragment):
            return NotImplemented
        return (
            self.nodes.keys() == other.nodes.keys()
            and all(
                self.nodes[k].dependencies == other.nodes[k].dependencies
                and self.nodes[k].hosts == other.nodes[k].hosts
                and self.nodes[k].step is other.nodes[k].step
                for k in self.nodes
            )
            and self.entry_nodes == other.entry_nodes
            and self.exit_nodes == other.exit_nodes
        )

    __hash__ = None  # type: ignore[assignment]

    def is_empty(self) -> bool:
        return not self.nodes

    def add_node(self, node: ExecutionNode) -> NodeID:
        """Add a node whose dependencies are already part of this fragment."""
        if node.id in self.nodes:
            raise DuplicateNodeError(node.id, where=self.name or None)
        for dep in node.dependencies:
            if dep not in self.nodes:
                raise UnknownNodeError(dep, referenced_by=node.id)
        self.nodes[node.id] = node
        self._recompute_boundaries()
        return node.id

    def add_dependency(self, node_id: NodeID, depends_on: NodeID) -> None:
        """Make ``node_id`` wait for ``depends_on``."""
        if node_id not in self.nodes:
            raise UnknownNodeError(node_id)
        if depends_on not in self.nodes:
            raise UnknownNodeError(depends_on, referenced_by=node_id)
        if node_id == depends_on or self._reaches(depends_on, node_id):
            raise CycleError([node_id, depends_on])
        self.nodes[node_id].dependencies.add(depends_on)
        self._recompute_boundaries()

    def merge(
        self,
        other: "ExecutionFragment",
        policy: CompositionPolicy = CompositionPolicy.SEQUENTIAL,
    ) -> "ExecutionFragment":
        """Return a new fragment combining ``self`` then ``other``.

        Neither input is modified. With the sequential policy every entry node
        of ``other`` gains a dependency on every exit node of ``self``. Empty
        fragments are identity elements on either side.
        """
        merged = ExecutionFragment(self.name or other.name)
        for node_id, node in self.nodes.items():
            merged.nodes[node_id] = node.copy()
        for node_id, node in other.nodes.items():
            if node_id in merged.nodes:
                raise DuplicateNodeError(node_id, where=other.name or None)
            merged.nodes[node_id] = node.copy()

        if (
            policy == CompositionPolicy.SEQUENTIAL
            and not self.is_empty()
            and not other.is_empty()
        ):
            for entry_id in other.entry_nodes:
                merged.nodes[entry_id].dependencies.update(self.exit_nodes)

        # raises CycleError / UnknownNodeError at merge time
        topological_order(merged.nodes)
        merged._recompute_boundaries()
        return merged

    def topological_order(self) -> list[NodeID]:
        return topological_order(self.nodes)

    def dependents(self) -> dict[NodeID, list[NodeID]]:
        return _dependents_of(self.nodes)

    def freeze(self, name: str | None = None) -> "ExecutionGraph":
        return ExecutionGraph(name or self.name, self.nodes.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [self.nodes[k].to_dict() for k in self.topological_order()],
            "entry_nodes": sorted(self.entry_nodes),
            "exit_nodes": sorted(self.exit_nodes),
        }

    def _reaches(self, start: NodeID, target: NodeID) -> bool:
        stack = [start]
        seen: set[NodeID] = set()
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.nodes[current].dependencies)
        return False

    def _recompute_boundaries(self) -> None:
        depended_on: set[NodeID] = set()
        entries: set[NodeID] = set()
        for node_id, node in self.nodes.items():
            internal = node.dependencies & self.nodes.keys()
            if not internal:
                entries.add(node_id)
            depended_on.update(internal)
        self.entry_nodes = entries
        self.exit_nodes = set(self.nodes) - depended_on


class ExecutionGraph:
    """Final, immutable DAG handed to the engine."""

    def __init__(self, name: str, nodes: Iterable[ExecutionNode]) -> None:
        arena: dict[NodeID, GraphNode] = {}
        for node in nodes:
            if node.id in arena:
                raise DuplicateNodeError(node.id, where=name)
            arena[node.id] = GraphNode.from_node(node)
        self.name = name
        self._order = tuple(topological_order(arena))
        self._nodes = MappingProxyType(arena)
        self._dependents = MappingProxyType(
            {k: tuple(v) for k, v in _dependents_of(arena).items()}
        )
        self.entry_nodes = frozenset(k for k, n in arena.items() if not n.dependencies)
        self.exit_nodes = frozenset(k for k, v in self._dependents.items() if not v)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def nodes(self) -> Mapping[NodeID, GraphNode]:
        return self._nodes

    @property
    def order(self) -> tuple[NodeID, ...]:
        return self._order

    def node(self, node_id: NodeID) -> GraphNode:
        return self._nodes[node_id]

    def dependents(self, node_id: NodeID) -> tuple[NodeID, ...]:
        return self._dependents[node_id]

    def ancestors(self, node_id: NodeID) -> set[NodeID]:
        """All nodes ``node_id`` transitively depends on."""
        seen: set[NodeID] = set()
        stack = list(self._nodes[node_id].dependencies)
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._nodes[current].dependencies)
        return seen

    def pair_count(self) -> int:
        return sum(len(n.hosts) for n in self._nodes.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [self._nodes[k].to_dict() for k in self._order],
            "entry_nodes": sorted(self.entry_nodes),
            "exit_nodes": sorted(self.exit_nodes),
        }
