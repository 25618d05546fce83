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
"""Events published while a run executes.

Every event belongs to one run. ``node_status`` and ``node_rollback`` carry the
node and host they describe; ``run_status`` and ``run_complete`` describe the
run as a whole. A ``run_complete`` event is always the last one of a run.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

RUN_STATUS = "run_status"
NODE_STATUS = "node_status"
NODE_ROLLBACK = "node_rollback"
RUN_COMPLETE = "run_complete"


def utc_now() -> str:
    """UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class ExecutionEvent:
    """Single event about a run, or about one node on one host."""

    type: str
    run_id: str
    timestamp: str
    node_id: Optional[str] = None
    host: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def now(
        cls,
        event_type: str,
        run_id: str,
        node_id: Optional[str] = None,
        host: Optional[str] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
    ) -> "ExecutionEvent":
        return cls(
            type=event_type,
            run_id=run_id,
            timestamp=utc_now(),
            node_id=node_id,
            host=host,
            status=status,
            message=message,
        )

    @property
    def is_final(self) -> bool:
        return self.type == RUN_COMPLETE

    def to_dict(self) -> dict[str, Optional[str]]:
        return asdict(self)


class EventPublisher(Protocol):
    """Anything the engine can hand events to."""

    def publish(self, event: ExecutionEvent) -> None:
        ...
