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
"""Netmiko-backed connector for Linux hosts."""

from __future__ import annotations

import base64
import logging
import posixpath
import shlex
from threading import Lock
from typing import Any, Optional, Tuple

from netmiko import ConnectHandler  # type: ignore[import-untyped]
from netmiko.exceptions import (  # type: ignore[import-untyped]
    NetmikoAuthenticationException,
    NetmikoTimeoutException,
)

from kubeforge.app.application.connector import (
    DEFAULT_COMMAND_TIMEOUT,
    CommandResult,
    Connector,
    ConnectorFactory,
    ExecOptions,
)
from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.domain.errors import ExecutionError, TransportError
from kubeforge.app.domain.models import Facts, Host

logger = logging.getLogger(__name__)

CONNECTION_TIMEOUT = 10
DEVICE_TYPE = "linux"
RC_MARKER = "__kubeforge_rc="

FACTS_SCRIPT = (
    ". /etc/os-release 2>/dev/null; "
    'echo "os_id=$ID"; '
    'echo "os_version=$VERSION_ID"; '
    'echo "hostname=$(hostname)"; '
    'echo "kernel=$(uname -r)"; '
    'echo "arch=$(uname -m)"; '
    'echo "cpu_count=$(nproc)"; '
    "echo \"memory_kib=$(awk '/MemTotal/ {print $2}' /proc/meminfo)\"; "
    "for pm in apt-get dnf yum zypper; do "
    'if command -v $pm >/dev/null 2>&1; then echo "package_manager=$pm"; break; fi; '
    "done; "
    "if [ -d /run/systemd/system ]; then echo init_system=systemd; "
    "else echo init_system=sysvinit; fi"
)

_PACKAGE_MANAGERS = {"apt-get": "apt", "dnf": "dnf", "yum": "yum", "zypper": "zypper"}


def connection_params(host: Host) -> dict[str, Any]:
    """ConnectHandler keyword arguments for ``host``."""
    params: dict[str, Any] = {
        "device_type": DEVICE_TYPE,
        "host": host.address,
        "port": host.port,
        "username": host.username,
        "timeout": CONNECTION_TIMEOUT,
    }
    if host.password:
        params["password"] = host.password
    if host.key_file:
        params["use_keys"] = True
        params["key_file"] = host.key_file
    return params


def validate_host_connection(host: Host) -> Tuple[bool, Optional[str]]:
    """
    Validate host connection with lightweight test.

    Args:
        host: Inventory host to check

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    try:
        connection = ConnectHandler(**connection_params(host))
        connection.find_prompt()
        connection.disconnect()
        return True, None
    except NetmikoAuthenticationException as e:
        return False, f"Authentication failed: {str(e)}"
    except NetmikoTimeoutException as e:
        return False, f"Connection timeout: {str(e)}"
    except Exception as e:
        return False, f"Connection error: {str(e)}"


def wrap_command(command: str, elevated: bool = False) -> str:
    """Shell line that runs ``command`` and prints its exit status marker."""
    shell = "sudo -n sh -c" if elevated else "sh -c"
    return f'{shell} {shlex.quote(command)} 2>&1; echo "{RC_MARKER}$?"'


def split_exit_code(output: str) -> Tuple[str, int]:
    """Strip the exit status marker from ``output``.

    Raises:
        TransportError: when the marker is missing (output was cut short)
    """
    lines = output.splitlines()
    for index in range(len(lines) - 1, -1, -1):
        line = lines[index].strip()
        if line.startswith(RC_MARKER):
            try:
                code = int(line[len(RC_MARKER):])
            except ValueError as exc:
                raise TransportError(f"Malformed exit status line: {line}") from exc
            return "\n".join(lines[:index]).rstrip("\n"), code
    raise TransportError("Exit status marker missing from command output")


def parse_facts(output: str, fallback_hostname: str) -> Facts:
    """Build Facts from ``key=value`` lines printed by FACTS_SCRIPT."""
    values: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()

    def as_int(raw: str) -> int:
        try:
            return int(raw)
        except ValueError:
            return 0

    return Facts(
        hostname=values.get("hostname") or fallback_hostname,
        os_id=values.get("os_id") or "unknown",
        os_version=values.get("os_version", ""),
        kernel=values.get("kernel", ""),
        arch=values.get("arch", ""),
        package_manager=_PACKAGE_MANAGERS.get(values.get("package_manager", ""), ""),
        init_system=values.get("init_system", ""),
        cpu_count=as_int(values.get("cpu_count", "")),
        memory_mib=as_int(values.get("memory_kib", "")) // 1024,
    )


class NetmikoConnector(Connector):
    """One SSH session per host, opened lazily and reused across steps.

    The session is not safe for concurrent commands, so calls are
    serialized per host.
    """

    def __init__(self, host: Host):
        self.host = host
        self._lock = Lock()
        self._connection: Any = None

    def _connect_locked(self) -> Any:
        if self._connection is not None:
            return self._connection
        logger.debug("Connecting to %s:%s", self.host.address, self.host.port)
        try:
            self._connection = ConnectHandler(**connection_params(self.host))
        except NetmikoAuthenticationException as e:
            raise TransportError(f"Authentication failed for {self.host.name}: {e}") from e
        except NetmikoTimeoutException as e:
            raise TransportError(f"Connection timeout for {self.host.name}: {e}") from e
        except Exception as e:
            raise TransportError(f"Connection failed for {self.host.name}: {e}") from e
        return self._connection

    def _drop_locked(self) -> None:
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.disconnect()
        except Exception:
            logger.debug("Ignoring disconnect error for %s", self.host.name, exc_info=True)

    def execute(
        self,
        control: ExecutionControl,
        command: str,
        options: ExecOptions | None = None,
    ) -> CommandResult:
        control.raise_if_cancelled()
        options = options or ExecOptions()
        timeout = options.timeout if options.timeout > 0 else DEFAULT_COMMAND_TIMEOUT
        with self._lock:
            control.raise_if_cancelled()
            connection = self._connect_locked()
            try:
                output = connection.send_command(
                    wrap_command(command, options.elevated),
                    read_timeout=timeout,
                    strip_prompt=True,
                    strip_command=True,
                )
            except Exception as e:
                self._drop_locked()
                raise TransportError(
                    f"Command failed on {self.host.name}: {str(e)}"
                ) from e
        stdout, exit_code = split_exit_code(output)
        logger.debug("%s: %r exited with %d", self.host.name, command, exit_code)
        return CommandResult(stdout=stdout, exit_code=exit_code)

    def read_file(self, control: ExecutionControl, path: str) -> bytes:
        result = self.execute(
            control, f"base64 -w0 {shlex.quote(path)}", ExecOptions(elevated=True)
        )
        if not result.ok:
            raise FileNotFoundError(path)
        return base64.b64decode(result.stdout.strip())

    def write_file(
        self,
        control: ExecutionControl,
        content: bytes,
        path: str,
        permissions: str = "0644",
        elevated: bool = False,
    ) -> None:
        encoded = base64.b64encode(content).decode("ascii")
        target = shlex.quote(path)
        tmp = shlex.quote(f"{path}.kubeforge.tmp")
        directory = shlex.quote(posixpath.dirname(path) or "/")
        command = (
            f"mkdir -p {directory} && printf %s {encoded} | base64 -d > {tmp} "
            f"&& chmod {permissions} {tmp} && mv -f {tmp} {target}"
        )
        result = self.execute(control, command, ExecOptions(elevated=elevated))
        if not result.ok:
            raise ExecutionError(
                f"Failed to write {path} on {self.host.name}: {result.stdout.strip()}"
            )

    def path_exists(self, control: ExecutionControl, path: str) -> bool:
        result = self.execute(control, f"test -e {shlex.quote(path)}", ExecOptions(elevated=True))
        return result.ok

    def gather_facts(self, control: ExecutionControl) -> Facts:
        result = self.execute(control, FACTS_SCRIPT)
        return parse_facts(result.stdout, self.host.name)

    def close(self) -> None:
        with self._lock:
            self._drop_locked()


class NetmikoConnectorFactory(ConnectorFactory):
    """Hands out one NetmikoConnector per host name."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._connectors: dict[str, NetmikoConnector] = {}

    def connector_for(self, host: Host) -> NetmikoConnector:
        with self._lock:
            connector = self._connectors.get(host.name)
            if connector is None:
                connector = NetmikoConnector(host)
                self._connectors[host.name] = connector
            return connector

    def close(self) -> None:
        with self._lock:
            connectors = list(self._connectors.values())
            self._connectors.clear()
        for connector in connectors:
            connector.close()
