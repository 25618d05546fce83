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
"""In-memory store of finished run reports."""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock

from kubeforge.app.domain.models import RunReport

DEFAULT_MAX_REPORTS = 500


class InMemoryRunReportStore:
    """Keeps the latest report of the ``max_reports`` most recently saved runs."""

    def __init__(self, max_reports: int = DEFAULT_MAX_REPORTS) -> None:
        if max_reports < 1:
            raise ValueError("max_reports must be positive")
        self._lock = Lock()
        self._max_reports = max_reports
        self._reports: OrderedDict[str, RunReport] = OrderedDict()

    def save(self, report: RunReport) -> None:
        with self._lock:
            self._reports[report.run_id] = report
            self._reports.move_to_end(report.run_id)
            while len(self._reports) > self._max_reports:
                self._reports.popitem(last=False)

    def get(self, run_id: str) -> RunReport | None:
        with self._lock:
            return self._reports.get(run_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports)
