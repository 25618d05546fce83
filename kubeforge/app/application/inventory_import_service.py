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
"""CSV inventory import use-case."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Protocol

from kubeforge.app.domain.models import Host
from kubeforge.app.infrastructure.in_memory_inventory_store import (
    InMemoryInventoryStore,
)

logger = logging.getLogger(__name__)


class HostConnectionValidator(Protocol):
    """Connection validator contract."""

    def validate(self, host: Host) -> tuple[bool, str | None]:
        """Return connection status and optional error."""


@dataclass
class FailedRow:
    """Failed CSV row details."""

    row_number: int
    row: dict[str, str]
    error: str


@dataclass
class HostCheck:
    """Connectivity outcome for one parsed host."""

    host: Host
    connection_ok: bool
    error_message: str | None = None


@dataclass
class InventoryImportResult:
    """Import result details."""

    hosts: list[Host] = field(default_factory=list)
    rejected: list[HostCheck] = field(default_factory=list)
    failed_rows: list[FailedRow] = field(default_factory=list)


class InventoryImportService:
    """Parses and validates host CSV data.

    Columns: ``name,address,port,username,password,roles,key_file``; roles
    are ``;``-separated. Only hosts that pass the connection check are kept.
    """

    required = ("name", "address", "username")

    def __init__(self, store: InMemoryInventoryStore, validator: HostConnectionValidator):
        self.store = store
        self.validator = validator

    def import_csv(self, csv_content: str) -> InventoryImportResult:
        reader = csv.DictReader(io.StringIO(csv_content))
        failures: list[FailedRow] = []
        parsed: list[Host] = []
        seen: set[str] = set()

        for row_number, row in enumerate(reader, start=2):
            normalized = {
                (key or "").strip(): ((value or "").strip() if isinstance(value, str) else "")
                for key, value in row.items()
            }
            missing = [name for name in self.required if not normalized.get(name)]
            if missing:
                failures.append(
                    FailedRow(
                        row_number=row_number,
                        row=normalized,
                        error=f"Missing required fields: {', '.join(missing)}",
                    )
                )
                continue

            if not normalized.get("password") and not normalized.get("key_file"):
                failures.append(
                    FailedRow(
                        row_number=row_number,
                        row=normalized,
                        error="Either password or key_file is required",
                    )
                )
                continue

            port_raw = normalized.get("port", "")
            try:
                port = int(port_raw or "22")
            except ValueError:
                failures.append(
                    FailedRow(
                        row_number=row_number,
                        row=normalized,
                        error=f"Invalid port value: {port_raw}",
                    )
                )
                continue

            if normalized["name"] in seen:
                failures.append(
                    FailedRow(
                        row_number=row_number,
                        row=normalized,
                        error=f"Duplicate host name: {normalized['name']}",
                    )
                )
                continue
            seen.add(normalized["name"])

            roles = frozenset(
                role.strip().lower()
                for role in (normalized.get("roles") or "").split(";")
                if role.strip()
            )
            parsed.append(
                Host(
                    name=normalized["name"],
                    address=normalized["address"],
                    port=port,
                    roles=roles,
                    username=normalized["username"],
                    password=normalized.get("password") or None,
                    key_file=normalized.get("key_file") or None,
                )
            )

        valid: list[Host] = []
        rejected: list[HostCheck] = []
        for host in parsed:
            ok, error = self.validator.validate(host)
            if ok:
                valid.append(host)
            else:
                logger.warning("Host %s failed connection check: %s", host.name, error)
                rejected.append(HostCheck(host=host, connection_ok=False, error_message=error))

        self.store.replace(valid)
        logger.info(
            "Imported %d hosts (%d rejected, %d invalid rows)",
            len(valid),
            len(rejected),
            len(failures),
        )
        return InventoryImportResult(hosts=valid, rejected=rejected, failed_rows=failures)
