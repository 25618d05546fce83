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
"""Host connection validator implementations."""

from __future__ import annotations

from kubeforge.app.application.inventory_import_service import HostConnectionValidator
from kubeforge.app.domain.models import Host


class SimulatedConnectionValidator(HostConnectionValidator):
    """Always succeeds. Useful for local runs without real hosts."""

    def validate(self, host: Host) -> tuple[bool, str | None]:
        del host
        return True, None


class NetmikoConnectionValidator(HostConnectionValidator):
    """Opens an SSH session and reads the prompt."""

    def validate(self, host: Host) -> tuple[bool, str | None]:
        from kubeforge.app.infrastructure.netmiko_connector import (
            validate_host_connection,
        )

        return validate_host_connection(host)
