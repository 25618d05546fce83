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
"""Dependency-aware execution engine with bounded parallel fan-out.

Scheduling state lives in the dispatcher thread (the caller of ``execute``);
worker threads only run steps and hand back NodeResults. Readiness is
tracked with per-node in-degree counters: a node becomes ready once every
dependency node is terminal on all of its hosts without failure.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from threading import Lock
from typing import Callable

from kubeforge.app.application.events import (
    NODE_ROLLBACK,
    NODE_STATUS,
    RUN_COMPLETE,
    RUN_STATUS,
    EventPublisher,
    ExecutionEvent,
    utc_now,
)
from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.application.runtime_context import RuntimeContext
from kubeforge.app.application.step import StepContext
from kubeforge.app.domain.errors import (
    CancellationError,
    DependencyError,
    TransportError,
)
from kubeforge.app.domain.graph import ExecutionGraph, GraphNode, NodeID
from kubeforge.app.domain.models import (
    ErrorKind,
    FailurePolicy,
    Host,
    NodeResult,
    NodeStatus,
    RunReport,
    RunStatus,
    StepResult,
    StepStatus,
)
from kubeforge.app.domain.state_machine import NodeStateMachine

logger = logging.getLogger(__name__)

Pair = tuple[NodeID, str]


def _pair_status(outcome: StepResult) -> NodeStatus:
    if outcome.ok:
        return NodeStatus.SUCCEEDED
    if outcome.error_kind == ErrorKind.DEPENDENCY:
        return NodeStatus.SKIPPED
    return NodeStatus.FAILED


@dataclass(frozen=True)
class EngineConfig:
    """Runtime behavior for the execution engine."""

    max_workers: int = 10
    max_per_host: int | None = None
    step_timeout: float = 600.0
    rollback_on_failure: bool = False
    poll_interval: float = 0.1


class HostSlots:
    """Atomic per-host in-flight counters. ``limit`` None means unbounded."""

    def __init__(self, limit: int | None) -> None:
        self.limit = limit if limit and limit > 0 else None
        self._lock = Lock()
        self._in_use: dict[str, int] = {}

    def try_acquire(self, host: str) -> bool:
        with self._lock:
            used = self._in_use.get(host, 0)
            if self.limit is not None and used >= self.limit:
                return False
            self._in_use[host] = used + 1
            return True

    def release(self, host: str) -> None:
        with self._lock:
            used = self._in_use.get(host, 0)
            if used <= 1:
                self._in_use.pop(host, None)
            else:
                self._in_use[host] = used - 1

    def in_use(self, host: str) -> int:
        with self._lock:
            return self._in_use.get(host, 0)


class Engine:
    """Walks an ExecutionGraph and produces a RunReport."""

    def __init__(
        self,
        config: EngineConfig | None = None,
        publisher: EventPublisher | None = None,
    ):
        self.config = config or EngineConfig()
        self.publisher = publisher

    def _emit(
        self,
        event_type: str,
        run_id: str,
        node_id: str | None = None,
        host: str | None = None,
        status: str | None = None,
        message: str | None = None,
    ) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(
            ExecutionEvent.now(event_type, run_id, node_id, host, status, message)
        )

    def execute(
        self,
        graph: ExecutionGraph,
        runtime: RuntimeContext,
        policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        dry_run: bool = False,
        control: ExecutionControl | None = None,
        run_id: str | None = None,
    ) -> RunReport:
        """Execute ``graph`` and return the per-node, per-host report.

        Step failures never raise from here; they are recorded in the report.
        """
        run = _GraphRun(
            engine=self,
            graph=graph,
            runtime=runtime,
            policy=policy,
            dry_run=dry_run,
            control=control or ExecutionControl(),
            run_id=run_id or runtime.run_id,
        )
        return run.execute()


class _GraphRun:
    """Bookkeeping for one ``Engine.execute`` call."""

    def __init__(
        self,
        engine: Engine,
        graph: ExecutionGraph,
        runtime: RuntimeContext,
        policy: FailurePolicy,
        dry_run: bool,
        control: ExecutionControl,
        run_id: str,
    ) -> None:
        self.engine = engine
        self.config = engine.config
        self.graph = graph
        self.runtime = runtime
        self.policy = policy
        self.dry_run = dry_run
        self.control = control
        self.run_id = run_id
        self.machine = NodeStateMachine()
        self.slots = HostSlots(self.config.max_per_host)
        self.report = RunReport(
            run_id=run_id,
            graph_name=graph.name,
            status=RunStatus.RUNNING,
            dry_run=dry_run,
            started_at=utc_now(),
        )
        self.states: dict[Pair, NodeStatus] = {}
        self.hosts: dict[Pair, Host] = {}
        for node_id, node in graph.nodes.items():
            for host in node.hosts:
                self.states[(node_id, host.name)] = NodeStatus.PENDING
                self.hosts[(node_id, host.name)] = host
        self.waiting = {k: len(n.dependencies) for k, n in graph.nodes.items()}
        self.open_hosts = {k: len(n.hosts) for k, n in graph.nodes.items()}
        self.unsuccessful: set[NodeID] = set()
        self.ready: deque[Pair] = deque()
        self.halted = False
        self.cancelled = False
        self.log = runtime.logger_for(module=graph.name)

    def execute(self) -> RunReport:
        self.log.info(
            "Starting run %s of %s: %d nodes, %d node-host pairs (policy=%s, dry_run=%s)",
            self.run_id,
            self.graph.name,
            len(self.graph),
            len(self.states),
            self.policy.value,
            self.dry_run,
        )
        self.engine._emit(RUN_STATUS, self.run_id, status="running")

        for node_id in self.graph.order:
            if self.waiting[node_id] == 0:
                self._make_ready(node_id)

        max_workers = max(1, self.config.max_workers)
        in_flight: dict[Future[NodeResult], Pair] = {}
        with ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="kubeforge-worker"
        ) as executor:
            while self.ready or in_flight:
                if self.control.cancelled and not self.cancelled:
                    self.log.warning("Run %s cancelled, dispatch stopped", self.run_id)
                    self.cancelled = True
                    self.halted = True
                if not self.halted:
                    self._dispatch(executor, in_flight, max_workers)
                if not in_flight:
                    break

                done, _ = wait(
                    in_flight.keys(),
                    timeout=self.config.poll_interval,
                    return_when=FIRST_COMPLETED,
                )
                for future in done:
                    pair = in_flight.pop(future)
                    self.slots.release(pair[1])
                    self._complete(pair, future.result())

        self._finalize_unreached()
        self._rollback()
        self.report.status = self._overall_status()
        self.report.finished_at = utc_now()
        self.log.info(
            "Run %s finished with status %s: %s",
            self.run_id,
            self.report.status.value,
            self.report.counts(),
        )
        self.engine._emit(
            RUN_COMPLETE, self.run_id, status=self.report.status.value
        )
        return self.report

    def _set(self, pair: Pair, target: NodeStatus) -> None:
        self.states[pair] = self.machine.transition(self.states[pair], target)

    def _make_ready(self, node_id: NodeID) -> None:
        for host in self.graph.node(node_id).hosts:
            pair = (node_id, host.name)
            self._set(pair, NodeStatus.READY)
            self.ready.append(pair)

    def _dispatch(
        self,
        executor: ThreadPoolExecutor,
        in_flight: dict[Future[NodeResult], Pair],
        max_workers: int,
    ) -> None:
        for _ in range(len(self.ready)):
            if len(in_flight) >= max_workers:
                return
            pair = self.ready.popleft()
            if not self.slots.try_acquire(pair[1]):
                self.ready.append(pair)
                continue
            self._set(pair, NodeStatus.RUNNING)
            self.engine._emit(
                NODE_STATUS, self.run_id, pair[0], pair[1], status="running"
            )
            node = self.graph.node(pair[0])
            future = executor.submit(self._execute_pair, node, self.hosts[pair])
            in_flight[future] = pair

    def _complete(self, pair: Pair, result: NodeResult) -> None:
        node_id, host = pair
        self._set(pair, result.status)
        self.report.add(result)
        self.engine._emit(
            NODE_STATUS,
            self.run_id,
            node_id,
            host,
            status=result.status.value,
            message=result.error or result.message,
        )
        if result.status != NodeStatus.SUCCEEDED:
            self.unsuccessful.add(node_id)
        if result.status == NodeStatus.FAILED:
            if result.error_kind == ErrorKind.CANCELLATION:
                self.cancelled = True
                self.halted = True
            elif self.policy == FailurePolicy.FAIL_FAST and not self.halted:
                self.log.error(
                    "Node %s failed on %s, halting dispatch (fail-fast): %s",
                    node_id,
                    host,
                    result.error,
                )
                self.halted = True
        self.open_hosts[node_id] -= 1
        if self.open_hosts[node_id] == 0:
            self._node_terminal(node_id)

    def _node_terminal(self, node_id: NodeID) -> None:
        if node_id in self.unsuccessful:
            self._skip_dependents(node_id)
            return
        for dependent in self.graph.dependents(node_id):
            if dependent in self.unsuccessful:
                continue
            self.waiting[dependent] -= 1
            if self.waiting[dependent] == 0:
                self._make_ready(dependent)

    def _skip_dependents(self, source: NodeID) -> None:
        stack = [source]
        while stack:
            current = stack.pop()
            for dependent in self.graph.dependents(current):
                if dependent in self.unsuccessful:
                    continue
                self.unsuccessful.add(dependent)
                reason = str(DependencyError(current))
                for host in self.graph.node(dependent).hosts:
                    self._skip((dependent, host.name), reason, ErrorKind.DEPENDENCY)
                self.open_hosts[dependent] = 0
                stack.append(dependent)

    def _skip(self, pair: Pair, reason: str, kind: ErrorKind) -> None:
        self._set(pair, NodeStatus.SKIPPED)
        now = utc_now()
        self.report.add(
            NodeResult(
                node_id=pair[0],
                host=pair[1],
                status=NodeStatus.SKIPPED,
                error=reason,
                error_kind=kind,
                started_at=now,
                finished_at=now,
            )
        )
        self.log.info("Skipping %s on %s: %s", pair[0], pair[1], reason)
        self.engine._emit(
            NODE_STATUS, self.run_id, pair[0], pair[1], status="skipped", message=reason
        )

    def _finalize_unreached(self) -> None:
        if self.cancelled:
            reason, kind = "Run cancelled before dispatch", ErrorKind.CANCELLATION
        else:
            reason, kind = "Not dispatched: run halted after a failure", ErrorKind.DEPENDENCY
        for node_id in self.graph.order:
            for host in self.graph.node(node_id).hosts:
                pair = (node_id, host.name)
                if not self.states[pair].terminal:
                    self._skip(pair, reason, kind)

    def _overall_status(self) -> RunStatus:
        if self.cancelled:
            return RunStatus.CANCELLED
        if all(s == NodeStatus.SUCCEEDED for s in self.states.values()):
            return RunStatus.SUCCESS
        if self.policy == FailurePolicy.FAIL_FAST:
            return RunStatus.FAILED
        return RunStatus.PARTIAL_FAILURE

    # Worker-thread side.

    def _context(
        self, node: GraphNode, host: Host, control: ExecutionControl
    ) -> StepContext:
        return StepContext(
            runtime=self.runtime,
            host=host,
            control=control,
            logger=self.runtime.logger_for(
                task=node.id, step=node.step_name, host=host.name
            ),
            timeout=self.config.step_timeout,
        )

    def _execute_pair(self, node: GraphNode, host: Host) -> NodeResult:
        started = time.monotonic()
        started_at = utc_now()
        ctx = self._context(node, host, self.control)
        if self.dry_run:
            outcome = self._describe(node, ctx, host)
        else:
            outcome = self._run_with_retry(node, ctx, host)
        return NodeResult(
            node_id=node.id,
            host=host.name,
            status=_pair_status(outcome),
            error=outcome.error,
            error_kind=outcome.error_kind,
            message=outcome.message,
            duration=time.monotonic() - started,
            attempts=outcome.attempts,
            started_at=started_at,
            finished_at=utc_now(),
        )

    def _describe(self, node: GraphNode, ctx: StepContext, host: Host) -> StepResult:
        describe = getattr(node.step, "describe", None)
        if describe is None:
            message = f"would run {node.step_name} on {host.name}"
        else:
            try:
                message = describe(ctx, host)
            except Exception as exc:
                ctx.logger.exception("describe() raised for %s", node.id)
                return StepResult.failure(f"Dry run describe failed: {exc}", attempts=0)
        ctx.logger.info("Dry run: %s", message)
        return StepResult.success(message=f"Dry run: {message}", attempts=0)

    def _run_with_retry(
        self, node: GraphNode, ctx: StepContext, host: Host
    ) -> StepResult:
        check = getattr(node.step, "check", None)
        if check is not None:
            checked = self._invoke(check, ctx, host)
            if isinstance(checked, StepResult):
                checked.attempts = 0
                if checked.error:
                    checked.error = f"Check failed: {checked.error}"
                return checked
            if checked:
                ctx.logger.info("Already in desired state, skipping run")
                return StepResult.success(message="Already in desired state", attempts=0)

        max_attempts = max(1, node.retry.max_attempts)
        last_result: StepResult | None = None
        for attempt in range(1, max_attempts + 1):
            if ctx.cancelled:
                cancelled = StepResult.cancelled()
                cancelled.attempts = attempt - 1
                return cancelled
            ctx.logger.info("Running step (attempt %d/%d)", attempt, max_attempts)
            result = self._invoke(node.step.run, ctx, host)
            if not isinstance(result, StepResult):
                result = StepResult.failure("Step returned no result")
            result.attempts = attempt
            last_result = result
            if result.ok or result.status == StepStatus.CANCELLED:
                return result
            if result.error_kind == ErrorKind.DEPENDENCY:
                return result
            ctx.logger.warning(
                "Attempt %d/%d failed: %s", attempt, max_attempts, result.error
            )
            delay = node.retry.delay_for(attempt)
            if attempt < max_attempts and delay > 0 and not ctx.control.sleep(delay):
                cancelled = StepResult.cancelled()
                cancelled.attempts = attempt
                return cancelled
        if last_result is None:
            return StepResult.failure("No execution result", attempts=0)
        return last_result

    def _invoke(
        self,
        fn: Callable[[StepContext, Host], object],
        ctx: StepContext,
        host: Host,
    ) -> object:
        """Call a step method; stray exceptions become failed results."""
        try:
            return fn(ctx, host)
        except CancellationError as exc:
            return StepResult.cancelled(str(exc))
        except DependencyError as exc:
            return StepResult.failure(str(exc), kind=ErrorKind.DEPENDENCY)
        except TransportError as exc:
            return StepResult.failure(str(exc), kind=ErrorKind.TRANSPORT)
        except Exception as exc:
            ctx.logger.exception("Step raised instead of returning a result")
            return StepResult.failure(f"Unexpected error: {exc}")

    # Compensation.

    def _rollback(self) -> None:
        if self.dry_run or not self.config.rollback_on_failure:
            return
        failed = [(r.node_id, r.host) for r in self.report.results.values()
                  if r.status == NodeStatus.FAILED]
        if not failed:
            return

        targets: set[Pair] = set(failed)
        for node_id, _ in failed:
            for ancestor in self.graph.ancestors(node_id):
                for host in self.graph.node(ancestor).hosts:
                    result = self.report.result(ancestor, host.name)
                    if (
                        result is not None
                        and result.status == NodeStatus.SUCCEEDED
                        and result.attempts > 0
                    ):
                        targets.add((ancestor, host.name))

        position = {node_id: i for i, node_id in enumerate(self.graph.order)}
        control = ExecutionControl()
        for node_id, host_name in sorted(
            targets, key=lambda p: (position[p[0]], p[1]), reverse=True
        ):
            node = self.graph.node(node_id)
            rollback = getattr(node.step, "rollback", None)
            if rollback is None:
                continue
            ctx = self._context(node, self.hosts[(node_id, host_name)], control)
            ctx.logger.info("Rolling back")
            outcome = self._invoke(rollback, ctx, ctx.host)
            result = self.report.result(node_id, host_name)
            if isinstance(outcome, StepResult) and outcome.ok:
                if result is not None:
                    result.rolled_back = True
                status = "rolled_back"
                message = None
            else:
                error = outcome.error if isinstance(outcome, StepResult) else None
                error = error or "Rollback returned no result"
                ctx.logger.error("Rollback failed: %s", error)
                if result is not None:
                    result.rollback_error = error
                status = "rollback_failed"
                message = error
            self.engine._emit(
                NODE_ROLLBACK, self.run_id, node_id, host_name, status=status, message=message
            )
