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
"""Thread-safe in-memory inventory store."""

from __future__ import annotations

from threading import Lock

from kubeforge.app.domain.models import Host


class InMemoryInventoryStore:
    """Stores validated hosts in memory."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._hosts: list[Host] = []

    def replace(self, hosts: list[Host]) -> None:
        with self._lock:
            self._hosts = list(hosts)

    def list(self) -> list[Host]:
        with self._lock:
            return list(self._hosts)

    def get(self, name: str) -> Host | None:
        with self._lock:
            for host in self._hosts:
                if host.name == name:
                    return host
        return None
