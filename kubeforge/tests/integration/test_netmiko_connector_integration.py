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
"""Integration tests for the netmiko connector against the mock SSH server."""

import subprocess
import sys
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

import kubeforge.app.api.main as api_main

from kubeforge.app.application.execution_control import ExecutionControl
from kubeforge.app.domain.models import Host
from kubeforge.app.infrastructure.host_connection_validators import (
    NetmikoConnectionValidator,
)
from kubeforge.app.infrastructure.netmiko_connector import (
    NetmikoConnector,
    validate_host_connection,
)

MOCK_HOST = Host(
    name="mock",
    address="localhost",
    port=2222,
    roles=frozenset({"master"}),
    username="admin",
    password="admin123",
)


def _ensure_mock_server():
    success, _ = validate_host_connection(MOCK_HOST)
    if success:
        return None

    server_script = (
        Path(__file__).resolve().parents[3] / "tests" / "mock_ssh_server" / "server.py"
    )
    process = subprocess.Popen(
        [sys.executable, str(server_script)],
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
    )
    for _ in range(20):
        success, _ = validate_host_connection(MOCK_HOST)
        if success:
            return process
        time.sleep(0.5)

    process.terminate()
    process.wait(timeout=5)
    return None


@pytest.fixture(scope="module")
def mock_server():
    process = _ensure_mock_server()
    if process is None:
        # Could be already running, re-check once.
        ready, _ = validate_host_connection(MOCK_HOST)
        if not ready:
            pytest.skip("Mock SSH server not available")
    yield
    if process:
        process.terminate()
        process.wait(timeout=5)


@pytest.mark.integration
def test_connector_round_trips_files_and_commands(mock_server):
    """Execute, file transfer and facts over a real SSH session."""
    connector = NetmikoConnector(MOCK_HOST)
    control = ExecutionControl()
    try:
        assert connector.execute(control, "echo ready").stdout.strip() == "ready"
        assert connector.execute(control, "false").exit_code == 1

        connector.write_file(control, b"overlay\nbr_netfilter\n", "/etc/modules-load.d/k8s.conf")
        assert connector.path_exists(control, "/etc/modules-load.d/k8s.conf")
        assert connector.read_file(control, "/etc/modules-load.d/k8s.conf") == (
            b"overlay\nbr_netfilter\n"
        )

        facts = connector.gather_facts(control)
        assert facts.os_id == "ubuntu"
        assert facts.package_manager == "apt"
    finally:
        connector.close()


@pytest.mark.integration
def test_delete_cluster_run_in_netmiko_mode(monkeypatch, mock_server):
    """Import the mock host and run a pipeline over SSH."""
    monkeypatch.setenv("KUBEFORGE_CONNECTOR_MODE", "netmiko")
    monkeypatch.setattr(
        api_main.inventory_import_service, "validator", NetmikoConnectionValidator()
    )
    client = TestClient(api_main.app)

    import_response = client.post(
        "/api/v2/inventory/import",
        content=(
            "name,address,port,username,password,roles\n"
            "mock,localhost,2222,admin,admin123,master\n"
        ),
        headers={"Content-Type": "text/plain"},
    )
    assert import_response.status_code == 200
    assert len(import_response.json()["hosts"]) == 1

    create_response = client.post(
        "/api/v2/runs",
        json={"pipeline": "delete-cluster", "creator": "integration"},
    )
    assert create_response.status_code == 200
    run_id = create_response.json()["run_id"]

    run_response = client.post(f"/api/v2/runs/{run_id}/execute", json={})
    assert run_response.status_code == 200
    payload = run_response.json()
    assert payload["status"] in {"success", "failed"}
    hosts = {result["host"] for result in payload["results"]}
    assert hosts == {"mock"}
