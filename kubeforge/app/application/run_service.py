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
"""Application layer use-cases for run lifecycle."""

from __future__ import annotations

from typing import Protocol
from uuid import uuid4

from kubeforge.app.application.events import utc_now
from kubeforge.app.domain.models import RunEvent, RunRecord, RunReport, RunStatus
from kubeforge.app.domain.state_machine import RunStateMachine


class RunRepository(Protocol):
    """Repository contract for run persistence."""

    def save(self, run: RunRecord) -> None:
        """Store or update a run."""

    def get(self, run_id: str) -> RunRecord | None:
        """Fetch a run by ID."""


class RunService:
    """Use-case orchestration for run create and status transitions."""

    _event_map = {
        "start": RunEvent.START,
        "succeed": RunEvent.SUCCEED,
        "partial": RunEvent.PARTIAL,
        "fail": RunEvent.FAIL,
        "cancel": RunEvent.CANCEL,
    }

    _report_events = {
        RunStatus.SUCCESS: RunEvent.SUCCEED,
        RunStatus.PARTIAL_FAILURE: RunEvent.PARTIAL,
        RunStatus.FAILED: RunEvent.FAIL,
        RunStatus.CANCELLED: RunEvent.CANCEL,
    }

    _terminal = {
        RunStatus.SUCCESS,
        RunStatus.PARTIAL_FAILURE,
        RunStatus.FAILED,
        RunStatus.CANCELLED,
    }

    def __init__(self, repository: RunRepository, state_machine: RunStateMachine):
        self.repository = repository
        self.state_machine = state_machine

    def create_run(self, pipeline: str, creator: str, dry_run: bool = False) -> RunRecord:
        """Create a queued run."""
        run = RunRecord(
            run_id=str(uuid4()),
            pipeline=pipeline,
            creator=creator,
            status=RunStatus.QUEUED,
            created_at=utc_now(),
            dry_run=dry_run,
        )
        self.repository.save(run)
        return run

    def apply_event(self, run_id: str, event_name: str) -> RunRecord:
        """Apply transition event to an existing run."""
        if event_name not in self._event_map:
            raise ValueError(f"Unknown event: {event_name}")
        return self._apply(run_id, self._event_map[event_name])

    def complete_from_report(self, run_id: str, report: RunReport) -> RunRecord:
        """Move a running run to the terminal status the engine reported."""
        event = self._report_events.get(report.status)
        if event is None:
            raise ValueError(f"Report is not terminal: {report.status.value}")
        return self._apply(run_id, event)

    def is_terminal(self, run: RunRecord) -> bool:
        return run.status in self._terminal

    def _apply(self, run_id: str, event: RunEvent) -> RunRecord:
        run = self.repository.get(run_id)
        if run is None:
            raise LookupError(f"Run not found: {run_id}")

        transition = self.state_machine.transition(run.status, event)
        run.status = transition.next_status

        now = utc_now()
        if event == RunEvent.START and run.started_at is None:
            run.started_at = now
        if run.status in self._terminal:
            run.completed_at = now

        self.repository.save(run)
        return run
