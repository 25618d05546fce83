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
"""Shared fixtures for unit tests."""

from typing import Callable, Optional, Sequence

import pytest

from kubeforge.app.application.runtime_context import Inventory, RuntimeContext
from kubeforge.app.domain.models import (
    ROLE_MASTER,
    ROLE_WORKER,
    ClusterConfig,
    Host,
)
from kubeforge.app.infrastructure.simulated_connector import SimulatedConnectorFactory


def host(name: str, *roles: str, address: Optional[str] = None) -> Host:
    return Host(
        name=name,
        address=address or f"192.0.2.{sum(map(ord, name)) % 200 + 1}",
        roles=frozenset(roles),
        password="secret",
    )


@pytest.fixture
def cluster_hosts() -> list[Host]:
    return [
        host("m1", ROLE_MASTER),
        host("m2", ROLE_MASTER),
        host("w1", ROLE_WORKER),
        host("w2", ROLE_WORKER),
    ]


@pytest.fixture
def make_runtime() -> Callable[..., RuntimeContext]:
    def _make(
        hosts: Sequence[Host],
        factory: Optional[SimulatedConnectorFactory] = None,
        config: Optional[ClusterConfig] = None,
        control_host: Optional[str] = None,
        run_id: str = "run-test",
    ) -> RuntimeContext:
        return RuntimeContext(
            inventory=Inventory(hosts=tuple(hosts), control_host_name=control_host),
            config=config or ClusterConfig(),
            connectors=factory or SimulatedConnectorFactory(delay_ms=0),
            run_id=run_id,
        )

    return _make


@pytest.fixture
def make_host() -> Callable[..., Host]:
    return host
