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
"""Bounded in-memory event buffer for polling and websocket streaming."""

from __future__ import annotations

from collections import OrderedDict, deque
from dataclasses import dataclass, field
from itertools import islice
from threading import Lock

from kubeforge.app.application.events import EventPublisher, ExecutionEvent

DEFAULT_MAX_EVENTS_PER_RUN = 5000
DEFAULT_MAX_RUNS = 200


@dataclass
class _RunEvents:
    events: deque[ExecutionEvent]
    dropped: int = 0

    @property
    def total(self) -> int:
        return self.dropped + len(self.events)


@dataclass
class EventPage:
    """Events read from a cursor, plus the cursor to resume from."""

    events: list[ExecutionEvent] = field(default_factory=list)
    next_cursor: int = 0
    missed: int = 0


class InMemoryEventStore(EventPublisher):
    """Keeps the latest events of the most recently active runs.

    Cursors are absolute positions in a run's event stream. When a run
    produces more than ``max_events_per_run`` events the oldest are dropped,
    and the run that has gone longest without publishing is evicted once more
    than ``max_runs`` runs are buffered.
    """

    def __init__(
        self,
        max_events_per_run: int = DEFAULT_MAX_EVENTS_PER_RUN,
        max_runs: int = DEFAULT_MAX_RUNS,
    ) -> None:
        if max_events_per_run < 1 or max_runs < 1:
            raise ValueError("Event store limits must be positive")
        self._lock = Lock()
        self._max_events = max_events_per_run
        self._max_runs = max_runs
        self._runs: OrderedDict[str, _RunEvents] = OrderedDict()

    def publish(self, event: ExecutionEvent) -> None:
        with self._lock:
            buffer = self._runs.get(event.run_id)
            if buffer is None:
                buffer = _RunEvents(events=deque(maxlen=self._max_events))
                self._runs[event.run_id] = buffer
            else:
                self._runs.move_to_end(event.run_id)
            if len(buffer.events) == self._max_events:
                buffer.dropped += 1
            buffer.events.append(event)
            while len(self._runs) > self._max_runs:
                self._runs.popitem(last=False)

    def read(self, run_id: str, cursor: int = 0) -> EventPage:
        """Return events at or after ``cursor``.

        ``missed`` counts events between ``cursor`` and the oldest retained
        one that were already dropped.
        """
        with self._lock:
            buffer = self._runs.get(run_id)
            if buffer is None:
                return EventPage(next_cursor=cursor)
            start = max(cursor, buffer.dropped)
            events = list(islice(buffer.events, start - buffer.dropped, None))
            return EventPage(
                events=events,
                next_cursor=max(cursor, buffer.total),
                missed=start - cursor,
            )

    def list_events(self, run_id: str, start_index: int = 0) -> list[ExecutionEvent]:
        return self.read(run_id, start_index).events

    def event_count(self, run_id: str) -> int:
        with self._lock:
            buffer = self._runs.get(run_id)
            return buffer.total if buffer is not None else 0

    def discard(self, run_id: str) -> None:
        with self._lock:
            self._runs.pop(run_id, None)
