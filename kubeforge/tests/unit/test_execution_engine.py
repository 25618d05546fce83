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
"""Unit tests for the dependency-aware execution engine."""

import threading
import time

from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.application.execution_engine import (
    Engine,
    EngineConfig,
    HostSlots,
    _GraphRun,
)
from kubeforge.app.application.step import Step, StepContext
from kubeforge.app.application.steps.common import CommandStep, WriteFileStep
from kubeforge.app.domain.errors import DependencyError, TransportError
from kubeforge.app.domain.graph import ExecutionGraph, ExecutionNode
from kubeforge.app.domain.models import (
    ErrorKind,
    FailurePolicy,
    Host,
    NodeStatus,
    RetryPolicy,
    RunStatus,
    StepMeta,
    StepResult,
)
from kubeforge.app.infrastructure.in_memory_event_store import InMemoryEventStore
from kubeforge.app.infrastructure.simulated_connector import SimulatedConnectorFactory


class ScriptedStep(Step):
    """Step with predefined outcomes per host name."""

    def __init__(
        self,
        name: str,
        outcomes: dict[str, list[str]] | None = None,
        done: set[str] | None = None,
        delay: float = 0.0,
        hook=None,
        rollback_outcome: str = "ok",
        journal: list[str] | None = None,
    ):
        self.name = name
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.done = done or set()
        self.delay = delay
        self.hook = hook
        self.rollback_outcome = rollback_outcome
        self.journal = journal if journal is not None else []
        self.runs: list[str] = []
        self.spans: list[tuple[str, float, float]] = []
        self._lock = threading.Lock()

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name)

    def check(self, ctx: StepContext, host: Host) -> bool:
        if host.name == "broken-check":
            raise RuntimeError("check exploded")
        return host.name in self.done

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        start = time.monotonic()
        with self._lock:
            self.runs.append(host.name)
            queue = self.outcomes.get(host.name, [])
            outcome = queue.pop(0) if queue else "ok"
        if self.hook is not None:
            self.hook(ctx, host)
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.spans.append((host.name, start, time.monotonic()))
            self.journal.append(f"run:{self.name}@{host.name}")
        if outcome == "fail":
            return StepResult.failure(f"{self.name} failed on {host.name}")
        if outcome == "raise":
            raise RuntimeError("boom")
        if outcome == "transport":
            raise TransportError("connection reset")
        if outcome == "upstream":
            raise DependencyError("init", "admin.conf missing")
        if outcome == "cancel":
            return StepResult.cancelled()
        return StepResult.success(message=f"{self.name} ok")

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        with self._lock:
            self.journal.append(f"rollback:{self.name}@{host.name}")
        if self.rollback_outcome == "fail":
            return StepResult.failure("cannot undo")
        return StepResult.success()


def node(node_id, step, hosts, deps=(), retry=None):
    return ExecutionNode(
        id=node_id,
        step=step,
        hosts=tuple(hosts),
        dependencies=set(deps),
        retry=retry or RetryPolicy(),
    )


def abc_graph(a, b, c, h1, h2):
    return ExecutionGraph(
        "abc",
        [
            node("a", a, [h1]),
            node("b", b, [h1, h2], deps=["a"]),
            node("c", c, [h2], deps=["a"]),
        ],
    )


def test_abc_dependency_failure_skips_every_dependent(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    a = ScriptedStep("a", outcomes={"h1": ["fail"]})
    b, c = ScriptedStep("b"), ScriptedStep("c")
    runtime = make_runtime([h1, h2])

    for policy in (FailurePolicy.FAIL_FAST, FailurePolicy.CONTINUE_ON_ERROR):
        a.outcomes = {"h1": ["fail"]}
        report = Engine().execute(abc_graph(a, b, c, h1, h2), runtime, policy=policy)

        assert report.result("a", "h1").status == NodeStatus.FAILED
        for node_id, host_name in (("b", "h1"), ("b", "h2"), ("c", "h2")):
            result = report.result(node_id, host_name)
            assert result.status == NodeStatus.SKIPPED
            assert result.error_kind == ErrorKind.DEPENDENCY
        assert b.runs == [] and c.runs == []
        assert report.failed_nodes() == [("a", "h1", "a failed on h1")]
        assert len(report.skipped_nodes()) == 3

    assert report.status == RunStatus.PARTIAL_FAILURE


def test_abc_fail_fast_stops_dispatch(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    a, c = ScriptedStep("a"), ScriptedStep("c")
    b = ScriptedStep("b", outcomes={"h2": ["fail"]})
    runtime = make_runtime([h1, h2])

    report = Engine(EngineConfig(max_workers=1)).execute(
        abc_graph(a, b, c, h1, h2), runtime, policy=FailurePolicy.FAIL_FAST
    )

    assert report.status == RunStatus.FAILED
    assert report.result("b", "h1").status == NodeStatus.SUCCEEDED
    assert report.result("b", "h2").status == NodeStatus.FAILED
    skipped = report.result("c", "h2")
    assert skipped.status == NodeStatus.SKIPPED
    assert skipped.error_kind == ErrorKind.DEPENDENCY
    assert c.runs == []
    assert not report.succeeded()


def test_abc_continue_on_error_runs_independent_branch(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    a, c = ScriptedStep("a"), ScriptedStep("c")
    b = ScriptedStep("b", outcomes={"h2": ["fail"]})
    runtime = make_runtime([h1, h2])

    report = Engine(EngineConfig(max_workers=1)).execute(
        abc_graph(a, b, c, h1, h2), runtime, policy=FailurePolicy.CONTINUE_ON_ERROR
    )

    assert report.status == RunStatus.PARTIAL_FAILURE
    assert report.result("b", "h1").status == NodeStatus.SUCCEEDED
    assert report.result("b", "h2").status == NodeStatus.FAILED
    assert report.result("c", "h2").status == NodeStatus.SUCCEEDED
    assert report.counts() == {"succeeded": 3, "failed": 1, "skipped": 0}


def test_every_pair_gets_exactly_one_result(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    a, b, c = ScriptedStep("a"), ScriptedStep("b"), ScriptedStep("c")

    report = Engine().execute(abc_graph(a, b, c, h1, h2), make_runtime([h1, h2]))

    assert report.status == RunStatus.SUCCESS
    assert report.succeeded()
    assert set(report.results) == {("a", "h1"), ("b", "h1"), ("b", "h2"), ("c", "h2")}


def test_empty_graph_is_success(make_runtime, make_host):
    report = Engine().execute(ExecutionGraph("empty", []), make_runtime([make_host("h1")]))

    assert report.status == RunStatus.SUCCESS
    assert report.results == {}


def test_skipped_pairs_without_failures_are_not_success(make_host, make_runtime):
    h1 = make_host("h1")
    graph = abc_graph(ScriptedStep("a"), ScriptedStep("b"), ScriptedStep("c"), h1, h1)

    for policy, expected in (
        (FailurePolicy.FAIL_FAST, RunStatus.FAILED),
        (FailurePolicy.CONTINUE_ON_ERROR, RunStatus.PARTIAL_FAILURE),
    ):
        run = _GraphRun(
            engine=Engine(),
            graph=graph,
            runtime=make_runtime([h1]),
            policy=policy,
            dry_run=False,
            control=ExecutionControl(),
            run_id="run-skip",
        )
        run.states = {pair: NodeStatus.SKIPPED for pair in run.states}

        assert run.report.failed_nodes() == []
        assert run._overall_status() == expected


def test_dependency_error_skips_pair_without_retry(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    a = ScriptedStep("a", outcomes={"h1": ["upstream", "ok"]})
    b, c = ScriptedStep("b"), ScriptedStep("c")
    graph = ExecutionGraph(
        "abc",
        [
            node("a", a, [h1], retry=RetryPolicy(max_attempts=3)),
            node("b", b, [h1, h2], deps=["a"]),
            node("c", c, [h2], deps=["a"]),
        ],
    )

    report = Engine().execute(
        graph, make_runtime([h1, h2]), policy=FailurePolicy.CONTINUE_ON_ERROR
    )

    skipped = report.result("a", "h1")
    assert skipped.status == NodeStatus.SKIPPED
    assert skipped.error_kind == ErrorKind.DEPENDENCY
    assert skipped.error == "Dependency 'init' did not succeed: admin.conf missing"
    assert skipped.attempts == 1
    assert a.runs == ["h1"]
    assert report.result("c", "h2").error == "Dependency 'a' did not succeed"
    assert b.runs == [] and c.runs == []
    assert report.failed_nodes() == []
    assert report.status == RunStatus.PARTIAL_FAILURE


def test_retry_then_success_counts_attempts(make_host, make_runtime):
    h1 = make_host("h1")
    step = ScriptedStep("flaky", outcomes={"h1": ["fail", "fail", "ok"]})
    graph = ExecutionGraph("g", [node("flaky", step, [h1], retry=RetryPolicy(max_attempts=3))])

    report = Engine().execute(graph, make_runtime([h1]))

    result = report.result("flaky", "h1")
    assert result.status == NodeStatus.SUCCEEDED
    assert result.attempts == 3


def test_retry_exhausted_records_last_error(make_host, make_runtime):
    h1 = make_host("h1")
    step = ScriptedStep("flaky", outcomes={"h1": ["fail", "fail"]})
    graph = ExecutionGraph("g", [node("flaky", step, [h1], retry=RetryPolicy(max_attempts=2))])

    report = Engine().execute(graph, make_runtime([h1]))

    result = report.result("flaky", "h1")
    assert result.status == NodeStatus.FAILED
    assert result.attempts == 2
    assert result.error == "flaky failed on h1"
    assert result.error_kind == ErrorKind.EXECUTION


def test_cancelled_result_is_not_retried(make_host, make_runtime):
    h1 = make_host("h1")
    step = ScriptedStep("stop", outcomes={"h1": ["cancel", "ok"]})
    graph = ExecutionGraph("g", [node("stop", step, [h1], retry=RetryPolicy(max_attempts=3))])

    report = Engine().execute(graph, make_runtime([h1]))

    assert step.runs == ["h1"]
    assert report.result("stop", "h1").error_kind == ErrorKind.CANCELLATION
    assert report.status == RunStatus.CANCELLED


def test_stray_exception_becomes_execution_failure(make_host, make_runtime):
    h1 = make_host("h1")
    step = ScriptedStep("explode", outcomes={"h1": ["raise"]})
    graph = ExecutionGraph("g", [node("explode", step, [h1])])

    report = Engine().execute(graph, make_runtime([h1]))

    result = report.result("explode", "h1")
    assert result.status == NodeStatus.FAILED
    assert result.error_kind == ErrorKind.EXECUTION
    assert "boom" in result.error


def test_transport_error_is_retried_and_classified(make_host, make_runtime):
    h1 = make_host("h1")
    step = ScriptedStep("net", outcomes={"h1": ["transport", "transport"]})
    graph = ExecutionGraph("g", [node("net", step, [h1], retry=RetryPolicy(max_attempts=2))])

    report = Engine().execute(graph, make_runtime([h1]))

    result = report.result("net", "h1")
    assert step.runs == ["h1", "h1"]
    assert result.error_kind == ErrorKind.TRANSPORT


def test_check_true_skips_run(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    step = ScriptedStep("converge", done={"h1"})
    graph = ExecutionGraph("g", [node("converge", step, [h1, h2])])

    report = Engine().execute(graph, make_runtime([h1, h2]))

    assert step.runs == ["h2"]
    done = report.result("converge", "h1")
    assert done.status == NodeStatus.SUCCEEDED
    assert done.attempts == 0
    assert report.result("converge", "h2").attempts == 1


def test_raising_check_counts_as_failure(make_host, make_runtime):
    broken = make_host("broken-check")
    step = ScriptedStep("probe")
    graph = ExecutionGraph("g", [node("probe", step, [broken])])

    report = Engine().execute(graph, make_runtime([broken]))

    result = report.result("probe", "broken-check")
    assert result.status == NodeStatus.FAILED
    assert result.error.startswith("Check failed")
    assert step.runs == []


def test_idempotent_rerun_makes_no_mutation_calls(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    factory = SimulatedConnectorFactory(delay_ms=0)
    step = WriteFileStep("write-motd", "/etc/motd", "managed by kubeforge\n")
    graph = ExecutionGraph("g", [node("motd", step, [h1, h2])])
    runtime = make_runtime([h1, h2], factory=factory)

    first = Engine().execute(graph, runtime)
    mutations = {name: len(c.mutation_calls) for name, c in factory.connectors.items()}
    second = Engine().execute(graph, runtime)

    assert first.status == RunStatus.SUCCESS
    assert second.status == RunStatus.SUCCESS
    assert mutations == {"h1": 1, "h2": 1}
    assert {name: len(c.mutation_calls) for name, c in factory.connectors.items()} == mutations
    assert all(r.attempts == 0 for r in second.results.values())


def test_dry_run_touches_no_connector_and_covers_same_pairs(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    factory = SimulatedConnectorFactory(delay_ms=0)
    graph = ExecutionGraph(
        "g",
        [
            node("write", WriteFileStep("write", "/etc/x.conf", "x=1\n"), [h1, h2]),
            node("apply", CommandStep("apply", "sysctl --system"), [h1], deps=["write"]),
        ],
    )
    runtime = make_runtime([h1, h2], factory=factory)

    dry = Engine().execute(graph, runtime, dry_run=True)

    assert dry.dry_run is True
    assert dry.status == RunStatus.SUCCESS
    assert factory.connectors == {}
    assert dry.result("apply", "h1").message.startswith("Dry run: would run")

    real = Engine().execute(graph, runtime)
    assert set(real.results) == set(dry.results)
    assert factory.connectors["h1"].commands == ["sysctl --system"]


def test_dry_run_applies_skip_semantics_to_failed_describe(make_host, make_runtime):
    class BadDescribe(ScriptedStep):
        def describe(self, ctx, host):
            raise ValueError("no template")

    h1 = make_host("h1")
    graph = ExecutionGraph(
        "g",
        [
            node("render", BadDescribe("render"), [h1]),
            node("use", ScriptedStep("use"), [h1], deps=["render"]),
        ],
    )

    report = Engine().execute(
        graph, make_runtime([h1]), policy=FailurePolicy.CONTINUE_ON_ERROR, dry_run=True
    )

    assert report.result("render", "h1").status == NodeStatus.FAILED
    assert report.result("use", "h1").status == NodeStatus.SKIPPED


def test_dependents_wait_for_every_host(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    slow_on_h2 = ScriptedStep("prepare")
    slow_on_h2.delay = 0.0

    def slow(ctx, host):
        if host.name == "h2":
            time.sleep(0.1)

    slow_on_h2.hook = slow
    after = ScriptedStep("after")
    graph = ExecutionGraph(
        "g",
        [
            node("prepare", slow_on_h2, [h1, h2]),
            node("after", after, [h1], deps=["prepare"]),
        ],
    )

    report = Engine().execute(graph, make_runtime([h1, h2]))

    assert report.status == RunStatus.SUCCESS
    prepare_end = max(end for _, _, end in slow_on_h2.spans)
    after_start = min(start for _, start, _ in after.spans)
    assert after_start >= prepare_end


def test_independent_nodes_run_concurrently(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    barrier = threading.Barrier(2, timeout=5)

    def rendezvous(ctx, host):
        barrier.wait()

    graph = ExecutionGraph(
        "g",
        [
            node("left", ScriptedStep("left", hook=rendezvous), [h1]),
            node("right", ScriptedStep("right", hook=rendezvous), [h2]),
        ],
    )

    report = Engine(EngineConfig(max_workers=2)).execute(graph, make_runtime([h1, h2]))

    assert report.status == RunStatus.SUCCESS


def test_per_host_cap_serializes_a_host(make_host, make_runtime):
    h1 = make_host("h1")
    steps = [ScriptedStep(f"s{i}", delay=0.05) for i in range(3)]
    graph = ExecutionGraph("g", [node(s.name, s, [h1]) for s in steps])

    report = Engine(EngineConfig(max_workers=4, max_per_host=1)).execute(
        graph, make_runtime([h1])
    )

    assert report.status == RunStatus.SUCCESS
    spans = sorted((start, end) for s in steps for _, start, end in s.spans)
    for (_, previous_end), (next_start, _) in zip(spans, spans[1:]):
        assert next_start >= previous_end


def test_host_slots_limit():
    slots = HostSlots(limit=1)

    assert slots.try_acquire("h1") is True
    assert slots.try_acquire("h1") is False
    assert slots.try_acquire("h2") is True
    slots.release("h1")
    assert slots.in_use("h1") == 0
    assert slots.try_acquire("h1") is True
    assert HostSlots(limit=None).try_acquire("h1") is True


def test_cancel_before_start_skips_everything(make_host, make_runtime):
    h1, h2 = make_host("h1"), make_host("h2")
    a, b, c = ScriptedStep("a"), ScriptedStep("b"), ScriptedStep("c")
    control = ExecutionControl()
    control.cancel()

    report = Engine().execute(
        abc_graph(a, b, c, h1, h2), make_runtime([h1, h2]), control=control
    )

    assert report.status == RunStatus.CANCELLED
    assert a.runs == []
    assert all(r.status == NodeStatus.SKIPPED for r in report.results.values())
    assert all(r.error_kind == ErrorKind.CANCELLATION for r in report.results.values())


def test_cancel_during_run_keeps_completed_results(make_host, make_runtime):
    h1 = make_host("h1")
    control = ExecutionControl()

    def cancel(ctx, host):
        control.cancel()

    first = ScriptedStep("first", hook=cancel)
    second = ScriptedStep("second")
    graph = ExecutionGraph(
        "g", [node("first", first, [h1]), node("second", second, [h1], deps=["first"])]
    )

    report = Engine().execute(graph, make_runtime([h1]), control=control)

    assert report.status == RunStatus.CANCELLED
    assert report.result("first", "h1").status == NodeStatus.SUCCEEDED
    assert report.result("second", "h1").status == NodeStatus.SKIPPED
    assert report.result("second", "h1").error_kind == ErrorKind.CANCELLATION
    assert second.runs == []


def test_rollback_unwinds_failed_and_succeeded_ancestors(make_host, make_runtime):
    h1 = make_host("h1")
    journal: list[str] = []
    base = ScriptedStep("base", journal=journal)
    mid = ScriptedStep("mid", journal=journal)
    top = ScriptedStep("top", outcomes={"h1": ["fail"]}, journal=journal)
    graph = ExecutionGraph(
        "g",
        [
            node("base", base, [h1]),
            node("mid", mid, [h1], deps=["base"]),
            node("top", top, [h1], deps=["mid"]),
        ],
    )

    report = Engine(EngineConfig(rollback_on_failure=True)).execute(
        graph, make_runtime([h1])
    )

    assert report.status == RunStatus.FAILED
    assert [entry for entry in journal if entry.startswith("rollback")] == [
        "rollback:top@h1",
        "rollback:mid@h1",
        "rollback:base@h1",
    ]
    assert report.result("base", "h1").rolled_back is True
    assert report.result("top", "h1").rolled_back is True


def test_rollback_failure_is_recorded_not_raised(make_host, make_runtime):
    h1 = make_host("h1")
    base = ScriptedStep("base", rollback_outcome="fail")
    top = ScriptedStep("top", outcomes={"h1": ["fail"]})
    graph = ExecutionGraph(
        "g", [node("base", base, [h1]), node("top", top, [h1], deps=["base"])]
    )

    report = Engine(EngineConfig(rollback_on_failure=True)).execute(
        graph, make_runtime([h1])
    )

    base_result = report.result("base", "h1")
    assert base_result.rolled_back is False
    assert base_result.rollback_error == "cannot undo"


def test_rollback_disabled_by_default(make_host, make_runtime):
    h1 = make_host("h1")
    journal: list[str] = []
    top = ScriptedStep("top", outcomes={"h1": ["fail"]}, journal=journal)
    graph = ExecutionGraph("g", [node("top", top, [h1])])

    Engine().execute(graph, make_runtime([h1]))

    assert journal == ["run:top@h1"]


def test_engine_emits_node_and_completion_events(make_host, make_runtime):
    h1 = make_host("h1")
    event_store = InMemoryEventStore()
    graph = ExecutionGraph("g", [node("only", ScriptedStep("only"), [h1])])

    report = Engine(publisher=event_store).execute(graph, make_runtime([h1], run_id="run-ev"))

    events = event_store.list_events("run-ev")
    assert report.run_id == "run-ev"
    assert [e.status for e in events if e.type == "node_status"] == ["running", "succeeded"]
    assert events[-1].type == "run_complete"
    assert events[-1].status == "success"
