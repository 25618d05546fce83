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
"""Unit tests for fragments, merging and the frozen execution graph."""

from dataclasses import FrozenInstanceError

import pytest

from kubeforge.app.domain.errors import (
    CycleError,
    DuplicateNodeError,
    EmptyHostsError,
    UnknownNodeError,
)
from kubeforge.app.domain.graph import (
    CompositionPolicy,
    ExecutionFragment,
    ExecutionGraph,
    ExecutionNode,
    topological_order,
)
from kubeforge.app.domain.models import StepMeta


class NamedStep:
    def __init__(self, name):
        self.name = name

    def meta(self):
        return StepMeta(name=self.name)


def chain(name, ids, hosts):
    fragment = ExecutionFragment(name)
    previous = None
    for node_id in ids:
        fragment.add_node(
            ExecutionNode(
                id=node_id,
                step=NamedStep(node_id),
                hosts=tuple(hosts),
                dependencies={previous} if previous else set(),
            )
        )
        previous = node_id
    return fragment


def test_node_rejects_empty_hosts_and_self_dependency(make_host):
    with pytest.raises(EmptyHostsError):
        ExecutionNode(id="a", step=NamedStep("a"), hosts=())
    with pytest.raises(CycleError):
        ExecutionNode(id="a", step=NamedStep("a"), hosts=(make_host("h1"),), dependencies={"a"})


def test_node_deduplicates_hosts_keeping_order(make_host):
    h1, h2 = make_host("h1"), make_host("h2")
    n = ExecutionNode(id="a", step=NamedStep("a"), hosts=(h2, h1, h2))

    assert n.host_names == ["h2", "h1"]
    assert n.step_name == "a"


def test_add_node_tracks_boundaries(make_host):
    fragment = chain("f", ["a", "b", "c"], [make_host("h1")])

    assert fragment.entry_nodes == {"a"}
    assert fragment.exit_nodes == {"c"}
    assert fragment.topological_order() == ["a", "b", "c"]
    assert fragment.dependents() == {"a": ["b"], "b": ["c"], "c": []}


def test_add_node_rejects_duplicates_and_unknown_dependencies(make_host):
    h1 = make_host("h1")
    fragment = chain("f", ["a"], [h1])

    with pytest.raises(DuplicateNodeError):
        fragment.add_node(ExecutionNode(id="a", step=NamedStep("a"), hosts=(h1,)))
    with pytest.raises(UnknownNodeError):
        fragment.add_node(
            ExecutionNode(id="b", step=NamedStep("b"), hosts=(h1,), dependencies={"zzz"})
        )


def test_add_dependency_rejects_cycle(make_host):
    fragment = chain("f", ["a", "b"], [make_host("h1")])

    with pytest.raises(CycleError):
        fragment.add_dependency("a", "b")
    with pytest.raises(UnknownNodeError):
        fragment.add_dependency("a", "missing")


@pytest.mark.parametrize("policy", list(CompositionPolicy))
def test_empty_fragment_is_identity_on_both_sides(make_host, policy):
    fragment = chain("f", ["a", "b"], [make_host("h1")])
    empty = ExecutionFragment("empty")

    assert fragment.merge(empty, policy) == fragment
    assert empty.merge(fragment, policy) == fragment


def test_sequential_merge_points_other_entries_at_self_exits(make_host):
    h1 = make_host("h1")
    left = ExecutionFragment("left")
    for node_id in ("y", "z"):
        left.add_node(ExecutionNode(id=node_id, step=NamedStep(node_id), hosts=(h1,)))
    right = chain("right", ["x"], [h1])

    merged = left.merge(right, CompositionPolicy.SEQUENTIAL)

    assert merged.nodes["x"].dependencies == {"y", "z"}
    assert merged.nodes["y"].dependencies == set()
    assert merged.entry_nodes == {"y", "z"}
    assert merged.exit_nodes == {"x"}
    assert right.nodes["x"].dependencies == set()


def test_parallel_merge_unions_boundaries_without_edges(make_host):
    h1 = make_host("h1")
    merged = chain("l", ["a", "b"], [h1]).merge(
        chain("r", ["c", "d"], [h1]), CompositionPolicy.PARALLEL
    )

    assert merged.entry_nodes == {"a", "c"}
    assert merged.exit_nodes == {"b", "d"}
    assert merged.nodes["c"].dependencies == set()


def test_merge_rejects_colliding_ids(make_host):
    h1 = make_host("h1")

    with pytest.raises(DuplicateNodeError):
        chain("l", ["a"], [h1]).merge(chain("r", ["a"], [h1]))


def test_merge_detects_cross_fragment_cycle(make_host):
    h1 = make_host("h1")
    left = ExecutionFragment("left")
    left.nodes["y"] = ExecutionNode(id="y", step=NamedStep("y"), hosts=(h1,), dependencies={"x"})
    right = ExecutionFragment("right")
    right.nodes["x"] = ExecutionNode(id="x", step=NamedStep("x"), hosts=(h1,), dependencies={"y"})

    with pytest.raises(CycleError) as excinfo:
        left.merge(right, CompositionPolicy.PARALLEL)
    assert excinfo.value.nodes == ["x", "y"]


def test_topological_order_is_deterministic(make_host):
    h1 = make_host("h1")
    nodes = {
        node_id: ExecutionNode(id=node_id, step=NamedStep(node_id), hosts=(h1,), dependencies=deps)
        for node_id, deps in (("c", set()), ("a", set()), ("b", {"a", "c"}))
    }

    assert topological_order(nodes) == ["a", "c", "b"]


def test_frozen_graph_is_read_only_and_caches_structure(make_host):
    h1, h2 = make_host("h1"), make_host("h2")
    fragment = chain("f", ["a", "b"], [h1, h2])
    graph = fragment.freeze("pipeline")

    assert graph.name == "pipeline"
    assert len(graph) == 2 and "a" in graph
    assert graph.order == ("a", "b")
    assert graph.dependents("a") == ("b",)
    assert graph.ancestors("b") == {"a"}
    assert graph.entry_nodes == frozenset({"a"})
    assert graph.exit_nodes == frozenset({"b"})
    assert graph.pair_count() == 4
    with pytest.raises(TypeError):
        graph.nodes["c"] = graph.nodes["a"]

    fragment.add_dependency("b", "a")
    fragment.nodes["b"].dependencies.add("x")
    assert graph.node("b").dependencies == {"a"}


def test_frozen_graph_nodes_cannot_gain_dependencies(make_host):
    h1 = make_host("h1")
    graph = chain("f", ["a", "b"], [h1]).freeze()
    frozen = graph.node("a")

    assert isinstance(frozen.dependencies, frozenset)
    with pytest.raises(AttributeError):
        frozen.dependencies.add("b")
    with pytest.raises(FrozenInstanceError):
        frozen.dependencies = {"b"}
    assert graph.order == ("a", "b")
    assert graph.node("b").to_dict()["dependencies"] == ["a"]


def test_graph_validates_unknown_dependencies(make_host):
    h1 = make_host("h1")
    with pytest.raises(UnknownNodeError):
        ExecutionGraph(
            "g", [ExecutionNode(id="a", step=NamedStep("a"), hosts=(h1,), dependencies={"ghost"})]
        )


def test_graph_to_dict_lists_nodes_in_order(make_host):
    graph = chain("f", ["a", "b"], [make_host("h1")]).freeze()

    data = graph.to_dict()

    assert data["name"] == "f"
    assert [n["id"] for n in data["nodes"]] == ["a", "b"]
    assert data["nodes"][1]["dependencies"] == ["a"]
    assert data["nodes"][0]["hosts"] == ["h1"]
