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
"""API schemas."""

from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ClusterConfigPayload(BaseModel):
    """Cluster-wide settings for a run."""

    name: str = Field(default="kubeforge", min_length=1, max_length=63)
    kubernetes_version: str = Field(default="v1.30.2", min_length=1)
    container_runtime: str = Field(default="containerd", min_length=1)
    pod_cidr: str = "10.244.0.0/16"
    service_cidr: str = "10.96.0.0/12"
    control_plane_endpoint: Optional[str] = None
    work_dir: str = Field(default="/opt/kubeforge", min_length=1)
    image_repository: str = Field(default="registry.k8s.io", min_length=1)


class CreateRunRequest(BaseModel):
    """Payload to create a run."""

    pipeline: str = Field(min_length=1, max_length=100)
    creator: str = Field(min_length=1, max_length=100)
    dry_run: bool = False
    control_host: Optional[str] = None
    cluster: ClusterConfigPayload = Field(default_factory=ClusterConfigPayload)


class RunResponse(BaseModel):
    """Run response payload."""

    run_id: str
    pipeline: str
    creator: str
    status: str
    dry_run: bool
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class ExecuteRunRequest(BaseModel):
    """Engine options for one execution."""

    policy: Literal["fail_fast", "continue_on_error"] = "fail_fast"
    max_workers: int = Field(default=10, ge=1, le=256)
    max_per_host: Optional[int] = Field(default=None, ge=1, le=64)
    step_timeout: float = Field(default=600.0, gt=0.0, le=7200.0)
    rollback_on_failure: bool = False


class NodeResultResponse(BaseModel):
    """Outcome of one node on one host."""

    node_id: str
    host: str
    status: str
    error: Optional[str] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None
    duration: float
    attempts: int
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    rolled_back: bool = False
    rollback_error: Optional[str] = None


class RunReportResponse(BaseModel):
    """Aggregated run report."""

    run_id: str
    graph_name: str
    status: str
    dry_run: bool
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    counts: Dict[str, int]
    results: List[NodeResultResponse]


class PlanNodeResponse(BaseModel):
    """One planned node."""

    id: str
    step: str
    hosts: List[str]
    dependencies: List[str]
    max_attempts: int


class PlanResponse(BaseModel):
    """Execution graph diagnostics."""

    name: str
    nodes: List[PlanNodeResponse]
    entry_nodes: List[str]
    exit_nodes: List[str]


class PipelineResponse(BaseModel):
    """Registered pipeline."""

    name: str


class HostResponse(BaseModel):
    """Imported host representation."""

    name: str
    address: str
    port: int
    username: str
    roles: List[str]
    key_file: Optional[str] = None


class RejectedHostResponse(BaseModel):
    """Host that failed the connection check."""

    name: str
    address: str
    port: int
    error_message: Optional[str] = None


class FailedRowResponse(BaseModel):
    """Failed CSV row details."""

    row_number: int
    row: Dict[str, str]
    error: str


class InventoryImportResponse(BaseModel):
    """Import response payload."""

    hosts: List[HostResponse]
    rejected: List[RejectedHostResponse]
    failed_rows: List[FailedRowResponse]


class ExecutionEventResponse(BaseModel):
    """Execution event payload."""

    type: str
    run_id: str
    timestamp: str
    node_id: Optional[str] = None
    host: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None
