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
"""Finite state machines for run lifecycle and node-host scheduling."""

from .models import NodeStatus, RunEvent, RunStatus, RunTransition


class RunStateMachine:
    """Validates and executes run status transitions."""

    _transitions = {
        (RunStatus.QUEUED, RunEvent.START): RunStatus.RUNNING,
        (RunStatus.QUEUED, RunEvent.CANCEL): RunStatus.CANCELLED,
        (RunStatus.RUNNING, RunEvent.SUCCEED): RunStatus.SUCCESS,
        (RunStatus.RUNNING, RunEvent.PARTIAL): RunStatus.PARTIAL_FAILURE,
        (RunStatus.RUNNING, RunEvent.FAIL): RunStatus.FAILED,
        (RunStatus.RUNNING, RunEvent.CANCEL): RunStatus.CANCELLED,
    }

    def can_transition(self, status: RunStatus, event: RunEvent) -> bool:
        """Return True if transition is valid for the current status."""
        return (status, event) in self._transitions

    def transition(self, status: RunStatus, event: RunEvent) -> RunTransition:
        """Apply a transition or raise ValueError for invalid transitions."""
        key = (status, event)
        if key not in self._transitions:
            raise ValueError(
                f"Invalid transition: status={status.value}, event={event.value}"
            )
        return RunTransition(
            current=status, event=event, next_status=self._transitions[key]
        )


class NodeStateMachine:
    """Legal moves for one (node, host) pair inside the engine."""

    _allowed = {
        NodeStatus.PENDING: {NodeStatus.READY, NodeStatus.SKIPPED},
        NodeStatus.READY: {NodeStatus.RUNNING, NodeStatus.SKIPPED},
        NodeStatus.RUNNING: {NodeStatus.SUCCEEDED, NodeStatus.FAILED, NodeStatus.SKIPPED},
        NodeStatus.SUCCEEDED: set(),
        NodeStatus.FAILED: set(),
        NodeStatus.SKIPPED: set(),
    }

    def can_transition(self, current: NodeStatus, target: NodeStatus) -> bool:
        return target in self._allowed[current]

    def transition(self, current: NodeStatus, target: NodeStatus) -> NodeStatus:
        if not self.can_transition(current, target):
            raise ValueError(
                f"Invalid node transition: {current.value} -> {target.value}"
            )
        return target
