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
"""Cancellation signal shared by the engine, steps and connectors."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from threading import Event

from kubeforge.app.domain.errors import CancellationError


@dataclass
class ExecutionControl:
    """Run-scoped control flags with an optional absolute deadline."""

    cancel_event: Event = field(default_factory=Event)
    deadline: float | None = None

    @classmethod
    def with_timeout(cls, seconds: float) -> "ExecutionControl":
        return cls(deadline=time.monotonic() + seconds)

    @property
    def cancelled(self) -> bool:
        if self.cancel_event.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.cancel_event.set()
            return True
        return False

    def cancel(self) -> None:
        self.cancel_event.set()

    def remaining(self, timeout: float | None = None) -> float | None:
        """Clamp ``timeout`` to the time left before the deadline."""
        if self.deadline is None:
            return timeout
        left = max(0.0, self.deadline - time.monotonic())
        return left if timeout is None else min(timeout, left)

    def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return False if cancelled meanwhile."""
        if seconds <= 0:
            return not self.cancelled
        interrupted = self.cancel_event.wait(self.remaining(seconds))
        return not (interrupted or self.cancelled)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CancellationError("Execution cancelled")
