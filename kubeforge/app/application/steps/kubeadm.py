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
"""kubeadm driven control plane and node lifecycle steps."""

from __future__ import annotations

import posixpath
import shlex
from dataclasses import dataclass

from kubeforge.app.application.connector import ExecOptions
from kubeforge.app.application.step import Step, StepContext, run_command, run_commands
from kubeforge.app.domain.errors import CancellationError, ExecutionError, TransportError
from kubeforge.app.domain.models import ClusterConfig, ErrorKind, Host, StepMeta, StepResult

ADMIN_CONF = "/etc/kubernetes/admin.conf"
KUBELET_CONF = "/etc/kubernetes/kubelet.conf"
API_SERVER_PORT = 6443

KUBEADM_CONFIG_TEMPLATE = """\
apiVersion: kubeadm.k8s.io/v1beta3
kind: InitConfiguration
localAPIEndpoint:
  advertiseAddress: {advertise_address}
  bindPort: {port}
nodeRegistration:
  name: {node_name}
  criSocket: {cri_socket}
---
apiVersion: kubeadm.k8s.io/v1beta3
kind: ClusterConfiguration
clusterName: {cluster_name}
kubernetesVersion: {kubernetes_version}
controlPlaneEndpoint: {endpoint}
imageRepository: {image_repository}
networking:
  podSubnet: {pod_cidr}
  serviceSubnet: {service_cidr}
---
apiVersion: kubelet.config.k8s.io/v1beta1
kind: KubeletConfiguration
cgroupDriver: systemd
"""

CRI_SOCKETS = {
    "containerd": "unix:///run/containerd/containerd.sock",
    "cri-o": "unix:///var/run/crio/crio.sock",
}


def render_kubeadm_config(config: ClusterConfig, host: Host) -> str:
    """kubeadm init configuration for the first control plane host."""
    endpoint = config.control_plane_endpoint or f"{host.address}:{API_SERVER_PORT}"
    return KUBEADM_CONFIG_TEMPLATE.format(
        advertise_address=host.address,
        port=API_SERVER_PORT,
        node_name=host.name,
        cri_socket=CRI_SOCKETS.get(config.container_runtime, CRI_SOCKETS["containerd"]),
        cluster_name=config.name,
        kubernetes_version=config.kubernetes_version,
        endpoint=endpoint,
        image_repository=config.image_repository,
        pod_cidr=config.pod_cidr,
        service_cidr=config.service_cidr,
    )


@dataclass
class KubeadmInitStep(Step):
    """Bootstraps the first control plane node."""

    name: str = "kubeadm-init"

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description="Initialize the control plane")

    def config_path(self, ctx: StepContext) -> str:
        return posixpath.join(ctx.runtime.config.work_dir, "kubeadm-config.yaml")

    def check(self, ctx: StepContext, host: Host) -> bool:
        return ctx.connector.path_exists(ctx.control, ADMIN_CONF)

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        path = self.config_path(ctx)
        content = render_kubeadm_config(ctx.runtime.config, host)
        try:
            ctx.connector.write_file(
                ctx.control, content.encode("utf-8"), path, "0640", elevated=True
            )
        except CancellationError as exc:
            return StepResult.cancelled(str(exc))
        except TransportError as exc:
            return StepResult.failure(str(exc), kind=ErrorKind.TRANSPORT)
        except ExecutionError as exc:
            return StepResult.failure(str(exc))
        return run_commands(
            ctx,
            [
                f"kubeadm init --config {shlex.quote(path)} --upload-certs",
                "mkdir -p $HOME/.kube",
                f"cp -f {ADMIN_CONF} $HOME/.kube/config",
            ],
            elevated=True,
        )

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        return run_command(ctx, "kubeadm reset -f", elevated=True)

    def describe(self, ctx: StepContext, host: Host) -> str:
        return (
            f"would run kubeadm init for {ctx.runtime.config.kubernetes_version} "
            f"on {host.name}"
        )


@dataclass
class KubeadmJoinStep(Step):
    """Joins a host to the cluster with a join command minted on the control host."""

    name: str = "kubeadm-join"
    control_plane: bool = False

    def meta(self) -> StepMeta:
        role = "control plane" if self.control_plane else "worker"
        return StepMeta(name=self.name, description=f"Join the cluster as {role}")

    def check(self, ctx: StepContext, host: Host) -> bool:
        return ctx.connector.path_exists(ctx.control, KUBELET_CONF) or (
            self.control_plane and ctx.connector.path_exists(ctx.control, ADMIN_CONF)
        )

    def join_command(self, ctx: StepContext) -> str:
        """Ask the control host for a fresh join command.

        Raises:
            ExecutionError: when kubeadm on the control host fails
        """
        control_host = ctx.runtime.control_host
        connector = ctx.runtime.connector_for(control_host)
        options = ExecOptions(elevated=True, timeout=ctx.control.remaining(ctx.timeout) or ctx.timeout)
        token = connector.execute(
            ctx.control, "kubeadm token create --print-join-command", options
        )
        if not token.ok or not token.stdout.strip():
            raise ExecutionError(
                f"Could not create join command on {control_host.name}: "
                f"exit {token.exit_code}"
            )
        command = token.stdout.strip().splitlines()[-1]
        if not self.control_plane:
            return command
        certs = connector.execute(
            ctx.control, "kubeadm init phase upload-certs --upload-certs", options
        )
        if not certs.ok or not certs.stdout.strip():
            raise ExecutionError(
                f"Could not upload certificates on {control_host.name}: "
                f"exit {certs.exit_code}"
            )
        certificate_key = certs.stdout.strip().splitlines()[-1].strip()
        return f"{command} --control-plane --certificate-key {certificate_key}"

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        try:
            command = self.join_command(ctx)
        except CancellationError as exc:
            return StepResult.cancelled(str(exc))
        except TransportError as exc:
            return StepResult.failure(str(exc), kind=ErrorKind.TRANSPORT)
        except ExecutionError as exc:
            return StepResult.failure(str(exc))
        result = run_command(ctx, command, elevated=True)
        if result.ok:
            result.message = f"{host.name} joined the cluster"
        return result

    def rollback(self, ctx: StepContext, host: Host) -> StepResult:
        return run_command(ctx, "kubeadm reset -f", elevated=True)

    def describe(self, ctx: StepContext, host: Host) -> str:
        role = "control plane" if self.control_plane else "worker"
        return f"would join {host.name} as {role} via {ctx.runtime.control_host.name}"


@dataclass
class KubeadmResetStep(Step):
    """Removes kubeadm state from a host."""

    name: str = "kubeadm-reset"

    def meta(self) -> StepMeta:
        return StepMeta(name=self.name, description="Reset kubeadm state")

    def check(self, ctx: StepContext, host: Host) -> bool:
        connector = ctx.connector
        return not (
            connector.path_exists(ctx.control, KUBELET_CONF)
            or connector.path_exists(ctx.control, ADMIN_CONF)
        )

    def run(self, ctx: StepContext, host: Host) -> StepResult:
        return run_commands(
            ctx,
            [
                "kubeadm reset -f",
                "rm -rf /etc/cni/net.d $HOME/.kube/config",
            ],
            elevated=True,
        )

    def describe(self, ctx: StepContext, host: Host) -> str:
        return f"would run kubeadm reset on {host.name}"
