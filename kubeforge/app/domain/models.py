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
"""Domain models for the cluster bring-up engine."""

from dataclasses import dataclass, field
from typing import Any, Optional
from enum import Enum

ROLE_MASTER = "master"
ROLE_WORKER = "worker"
ROLE_ETCD = "etcd"
ROLE_LOADBALANCER = "loadbalancer"


class NodeStatus(str, Enum):
    """States of one (node, host) pair during a run."""

    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in {NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED}


class RunStatus(str, Enum):
    """Lifecycle states for a run."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"
    CANCELLED = "cancelled"


class RunEvent(str, Enum):
    """Events that trigger run state transitions."""

    START = "start"
    SUCCEED = "succeed"
    PARTIAL = "partial"
    FAIL = "fail"
    CANCEL = "cancel"


class FailurePolicy(str, Enum):
    """How the engine reacts to the first failed node."""

    FAIL_FAST = "fail_fast"
    CONTINUE_ON_ERROR = "continue_on_error"


class StepStatus(str, Enum):
    """Outcome of a single step invocation on one host."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ErrorKind(str, Enum):
    """Error taxonomy carried on results."""

    EXECUTION = "execution"
    TRANSPORT = "transport"
    DEPENDENCY = "dependency"
    CANCELLATION = "cancellation"
    PLANNING = "planning"


@dataclass(frozen=True)
class RunTransition:
    """Single transition entry."""

    current: RunStatus
    event: RunEvent
    next_status: RunStatus


@dataclass(frozen=True)
class Host:
    """Inventory host. Resolved once per run and shared by reference."""

    name: str
    address: str
    port: int = 22
    roles: frozenset[str] = frozenset()
    username: str = "root"
    password: Optional[str] = field(default=None, repr=False, compare=False)
    key_file: Optional[str] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        """Stable key for maps and logs."""
        return self.name

    def has_role(self, role: str) -> bool:
        return role in self.roles


@dataclass(frozen=True)
class Facts:
    """Per-host OS and hardware attributes gathered once per run."""

    hostname: str
    os_id: str
    os_version: str = ""
    kernel: str = ""
    arch: str = ""
    package_manager: str = ""
    init_system: str = ""
    cpu_count: int = 0
    memory_mib: int = 0


@dataclass(frozen=True)
class StepMeta:
    """Stable identity of a step, used for logging and node naming."""

    name: str
    description: str = ""


@dataclass
class StepResult:
    """Result for one step invocation on one host."""

    status: StepStatus
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    stdout: str = ""
    stderr: str = ""
    logs: list[str] = field(default_factory=list)
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.status == StepStatus.SUCCESS

    @classmethod
    def success(cls, message: Optional[str] = None, **kwargs: Any) -> "StepResult":
        return cls(status=StepStatus.SUCCESS, message=message, **kwargs)

    @classmethod
    def failure(
        cls,
        error: str,
        kind: ErrorKind = ErrorKind.EXECUTION,
        **kwargs: Any,
    ) -> "StepResult":
        return cls(status=StepStatus.FAILED, error=error, error_kind=kind, **kwargs)

    @classmethod
    def cancelled(cls, error: str = "Execution cancelled") -> "StepResult":
        return cls(
            status=StepStatus.CANCELLED,
            error=error,
            error_kind=ErrorKind.CANCELLATION,
        )


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget applied by the engine around one node-host run."""

    max_attempts: int = 1
    backoff_seconds: float = 0.0
    backoff_multiplier: float = 1.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.backoff_seconds <= 0:
            return 0.0
        return self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))


@dataclass
class NodeResult:
    """Outcome of one (node, host) pair."""

    node_id: str
    host: str
    status: NodeStatus
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    message: Optional[str] = None
    duration: float = 0.0
    attempts: int = 0
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    rolled_back: bool = False
    rollback_error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "node_id": self.node_id,
            "host": self.host,
            "status": self.status.value,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "message": self.message,
            "duration": self.duration,
            "attempts": self.attempts,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "rolled_back": self.rolled_back,
            "rollback_error": self.rollback_error,
        }


@dataclass
class RunReport:
    """Per-node, per-host outcome of one engine execution."""

    run_id: str
    graph_name: str
    status: RunStatus
    dry_run: bool = False
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    results: dict[tuple[str, str], NodeResult] = field(default_factory=dict)

    def add(self, result: NodeResult) -> None:
        key = (result.node_id, result.host)
        if key in self.results:
            raise ValueError(
                f"Result already recorded for node {result.node_id} on {result.host}"
            )
        self.results[key] = result

    def result(self, node_id: str, host: str) -> NodeResult | None:
        return self.results.get((node_id, host))

    def succeeded(self) -> bool:
        return self.status == RunStatus.SUCCESS

    def failed_nodes(self) -> list[tuple[str, str, Optional[str]]]:
        return [
            (r.node_id, r.host, r.error)
            for r in self.results.values()
            if r.status == NodeStatus.FAILED
        ]

    def skipped_nodes(self) -> list[tuple[str, str, Optional[str]]]:
        return [
            (r.node_id, r.host, r.error)
            for r in self.results.values()
            if r.status == NodeStatus.SKIPPED
        ]

    def counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in NodeStatus if status.terminal}
        for r in self.results.values():
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_name": self.graph_name,
            "status": self.status.value,
            "dry_run": self.dry_run,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results.values()],
        }


@dataclass
class RunRecord:
    """Run aggregate stored in repository."""

    run_id: str
    pipeline: str
    creator: str
    status: RunStatus
    created_at: str
    dry_run: bool = False
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass(frozen=True)
class ClusterConfig:
    """Cluster-wide values read by tasks and steps."""

    name: str = "kubeforge"
    kubernetes_version: str = "v1.30.2"
    container_runtime: str = "containerd"
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    control_plane_endpoint: Optional[str] = None
    work_dir: str = "/opt/kubeforge"
    image_repository: str = "registry.k8s.io"
    extra: dict[str, Any] = field(default_factory=dict, compare=False)
