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
"""Background run coordinator."""

import logging
from threading import Lock, Thread
from typing import Any, Callable

logger = logging.getLogger(__name__)


class RunCoordinator:
    """Runs one background thread per run."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._threads: dict[str, Thread] = {}

    def _cleanup_dead_locked(self) -> None:
        dead = [
            run_id for run_id, thread in self._threads.items() if not thread.is_alive()
        ]
        for run_id in dead:
            self._threads.pop(run_id, None)

    def is_running(self, run_id: str) -> bool:
        with self._lock:
            self._cleanup_dead_locked()
            thread = self._threads.get(run_id)
            return bool(thread and thread.is_alive())

    def start(self, run_id: str, target: Callable[[], Any]) -> bool:
        """Start a background run unless one is already active for run_id."""
        with self._lock:
            self._cleanup_dead_locked()
            thread = self._threads.get(run_id)
            if thread and thread.is_alive():
                return False
            new_thread = Thread(
                target=target, name=f"kubeforge-run-{run_id[:8]}", daemon=True
            )
            self._threads[run_id] = new_thread
            new_thread.start()
            logger.info("Started background run %s", run_id)
            return True

    def join(self, run_id: str, timeout: float | None = None) -> None:
        with self._lock:
            thread = self._threads.get(run_id)
        if thread is not None:
            thread.join(timeout)
