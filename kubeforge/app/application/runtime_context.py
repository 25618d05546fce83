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
"""Read-only run state shared by tasks during planning and steps at run time."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Iterable, Optional
from uuid import uuid4

from kubeforge.app.application.connector import Connector, ConnectorFactory
from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.domain.errors import UnresolvedRoleError
from kubeforge.app.domain.models import ROLE_MASTER, ClusterConfig, Facts, Host

logger = logging.getLogger(__name__)

HostFilter = Callable[[Host], bool]


@dataclass(frozen=True)
class Inventory:
    """Resolved hosts for one run."""

    hosts: tuple[Host, ...]
    control_host_name: Optional[str] = None

    def __post_init__(self) -> None:
        names = [h.name for h in self.hosts]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate host names in inventory: {duplicates}")
        if self.control_host_name and self.control_host_name not in names:
            raise ValueError(f"Control host not in inventory: {self.control_host_name}")

    def host(self, name: str) -> Host | None:
        for host in self.hosts:
            if host.name == name:
                return host
        return None

    def roles(self) -> set[str]:
        return {role for host in self.hosts for role in host.roles}


class RuntimeContext:
    """Single read path for inventory, config, facts and loggers.

    Built once per run and never mutated by tasks or steps. The only
    internal write is the facts cache, filled on first access per host.
    """

    def __init__(
        self,
        inventory: Inventory,
        config: ClusterConfig,
        connectors: ConnectorFactory,
        run_id: str | None = None,
        base_logger: logging.Logger | None = None,
    ) -> None:
        self.inventory = inventory
        self._config = config
        self._connectors = connectors
        self.run_id = run_id or str(uuid4())
        self._logger = base_logger or logger
        self._facts: dict[str, Facts] = {}
        self._facts_locks: dict[str, Lock] = {}
        self._facts_registry_lock = Lock()

    @property
    def config(self) -> ClusterConfig:
        return self._config

    @property
    def hosts(self) -> tuple[Host, ...]:
        return self.inventory.hosts

    def host(self, name: str) -> Host | None:
        return self.inventory.host(name)

    def hosts_for_role(self, role: str) -> list[Host]:
        return [h for h in self.inventory.hosts if h.has_role(role)]

    def hosts_for_roles(
        self,
        roles: Iterable[str] = (),
        host_filter: HostFilter | None = None,
    ) -> list[Host]:
        """Hosts having any of ``roles`` (all hosts when ``roles`` is empty)."""
        wanted = set(roles)
        selected = [
            h for h in self.inventory.hosts if not wanted or wanted & h.roles
        ]
        if host_filter is not None:
            selected = [h for h in selected if host_filter(h)]
        return selected

    def require_role(self, role: str) -> list[Host]:
        hosts = self.hosts_for_role(role)
        if not hosts:
            raise UnresolvedRoleError(role)
        return hosts

    @property
    def control_host(self) -> Host:
        """Designated control host, or the first master."""
        if self.inventory.control_host_name:
            host = self.inventory.host(self.inventory.control_host_name)
            if host is not None:
                return host
        return self.require_role(ROLE_MASTER)[0]

    def connector_for(self, host: Host) -> Connector:
        return self._connectors.connector_for(host)

    def facts(self, host: Host, control: ExecutionControl | None = None) -> Facts:
        """Facts for ``host``, gathered once; concurrent callers wait."""
        cached = self._facts.get(host.name)
        if cached is not None:
            return cached
        with self._facts_registry_lock:
            host_lock = self._facts_locks.setdefault(host.name, Lock())
        with host_lock:
            cached = self._facts.get(host.name)
            if cached is not None:
                return cached
            self._logger.debug("Gathering facts for %s", host.name)
            facts = self.connector_for(host).gather_facts(control or ExecutionControl())
            self._facts[host.name] = facts
            return facts

    def logger_for(
        self,
        module: str | None = None,
        task: str | None = None,
        step: str | None = None,
        host: str | None = None,
    ) -> logging.LoggerAdapter:
        """Logger bound with the identity of the caller."""
        extra = {"run_id": self.run_id}
        for key, value in (
            ("module_name", module),
            ("task", task),
            ("step", step),
            ("host", host),
        ):
            if value:
                extra[key] = value
        return logging.LoggerAdapter(self._logger, extra)

    def close(self) -> None:
        self._connectors.close()
