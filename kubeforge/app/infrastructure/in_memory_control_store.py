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
"""Execution controls of the runs that are currently executing."""

from __future__ import annotations

from threading import Lock

from kubeforge.app.application.execution_control import ExecutionControl


class InMemoryControlStore:
    """Holds one ExecutionControl per executing run.

    A control exists from ``open`` until ``discard``. Runs that are queued or
    finished have none, so cancelling them through the store is a no-op.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._controls: dict[str, ExecutionControl] = {}

    def open(self, run_id: str) -> ExecutionControl:
        with self._lock:
            if run_id in self._controls:
                raise ValueError(f"Run {run_id} is already executing")
            control = ExecutionControl()
            self._controls[run_id] = control
            return control

    def get(self, run_id: str) -> ExecutionControl | None:
        with self._lock:
            return self._controls.get(run_id)

    def cancel(self, run_id: str) -> bool:
        """Signal cancellation; False when the run has no open control."""
        with self._lock:
            control = self._controls.get(run_id)
        if control is None:
            return False
        control.cancel()
        return True

    def discard(self, run_id: str) -> None:
        with self._lock:
            self._controls.pop(run_id, None)

    def active_runs(self) -> list[str]:
        with self._lock:
            return sorted(self._controls)
