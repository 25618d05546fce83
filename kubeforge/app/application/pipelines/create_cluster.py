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
"""create-cluster: prepares every node, then brings up the control plane and workers."""

from __future__ import annotations

from kubeforge.app.application.module import Module, parallel, sequence
from kubeforge.app.application.pipeline import Pipeline
from kubeforge.app.application.runtime_context import RuntimeContext
from kubeforge.app.application.step import StepContext
from kubeforge.app.application.steps.common import (
    InstallPackagesStep,
    ManageServiceStep,
    ServiceAction,
    WriteFileStep,
)
from kubeforge.app.application.steps.kubeadm import KubeadmInitStep, KubeadmJoinStep
from kubeforge.app.application.steps.preflight import (
    ConfigureSysctlStep,
    DisableSwapStep,
    LoadKernelModulesStep,
)
from kubeforge.app.application.task import StepTask, control_host_only
from kubeforge.app.domain.models import (
    ROLE_MASTER,
    ROLE_WORKER,
    ClusterConfig,
    Host,
    RetryPolicy,
)

NAME = "create-cluster"
NODE_ROLES = (ROLE_MASTER, ROLE_WORKER)
CONTAINERD_CONFIG = "/etc/containerd/config.toml"

CONTAINERD_TEMPLATE = """\
version = 2

[plugins."io.containerd.grpc.v1.cri"]
  sandbox_image = "{image_repository}/pause:3.9"

[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc]
  runtime_type = "io.containerd.runc.v2"

[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
  SystemdCgroup = true
"""

PACKAGE_RETRY = RetryPolicy(max_attempts=3, backoff_seconds=5.0, backoff_multiplier=2.0)
JOIN_RETRY = RetryPolicy(max_attempts=2, backoff_seconds=10.0)


def render_containerd_config(ctx: StepContext) -> str:
    return CONTAINERD_TEMPLATE.format(image_repository=ctx.runtime.config.image_repository)


def uses_containerd(config: ClusterConfig) -> bool:
    return config.container_runtime == "containerd"


def additional_masters(runtime: RuntimeContext) -> list[Host]:
    control = runtime.control_host
    return [h for h in runtime.hosts_for_role(ROLE_MASTER) if h.name != control.name]


def dedicated_workers(host: Host) -> bool:
    return not host.has_role(ROLE_MASTER)


def preflight_module() -> Module:
    # Sysctl bridge keys exist only once br_netfilter is loaded.
    host_prep = parallel(
        "host-prep",
        StepTask("swap", [DisableSwapStep()], run_on_roles=NODE_ROLES),
        StepTask("kernel-modules", [LoadKernelModulesStep()], run_on_roles=NODE_ROLES),
    )
    return sequence(
        "preflight",
        host_prep,
        StepTask("sysctl", [ConfigureSysctlStep()], run_on_roles=NODE_ROLES),
    )


def container_runtime_module() -> Module:
    return Module(
        name="container-runtime",
        tasks=[
            StepTask(
                "containerd",
                [
                    InstallPackagesStep("install", ("containerd",)),
                    WriteFileStep(
                        "write-config", CONTAINERD_CONFIG, render_containerd_config
                    ),
                    ManageServiceStep(
                        "enable", "containerd", ServiceAction.ENABLE, daemon_reload=True
                    ),
                    ManageServiceStep("start", "containerd", ServiceAction.START),
                ],
                run_on_roles=NODE_ROLES,
                retry=PACKAGE_RETRY,
            )
        ],
        is_enabled=uses_containerd,
    )


def kubernetes_packages_module() -> Module:
    return sequence(
        "kubernetes-packages",
        StepTask(
            "kube-packages",
            [
                InstallPackagesStep("install", ("kubelet", "kubeadm", "kubectl")),
                ManageServiceStep("enable-kubelet", "kubelet", ServiceAction.ENABLE),
            ],
            run_on_roles=NODE_ROLES,
            retry=PACKAGE_RETRY,
        ),
    )


def control_plane_module() -> Module:
    return sequence(
        "control-plane",
        StepTask("init-control-plane", [KubeadmInitStep()], hosts_resolver=control_host_only),
        StepTask(
            "join-masters",
            [KubeadmJoinStep(control_plane=True)],
            hosts_resolver=additional_masters,
            retry=JOIN_RETRY,
        ),
    )


def workers_module() -> Module:
    return sequence(
        "workers",
        StepTask(
            "join-workers",
            [KubeadmJoinStep()],
            run_on_roles=(ROLE_WORKER,),
            host_filter=dedicated_workers,
            retry=JOIN_RETRY,
        ),
    )


def build_create_cluster_pipeline() -> Pipeline:
    return Pipeline(
        name=NAME,
        modules=[
            preflight_module(),
            container_runtime_module(),
            kubernetes_packages_module(),
            control_plane_module(),
            workers_module(),
        ],
    )
