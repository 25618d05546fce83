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
"""delete-cluster: resets workers before masters, then stops the runtime."""

from __future__ import annotations

from kubeforge.app.application.module import sequence
from kubeforge.app.application.pipeline import Pipeline
from kubeforge.app.application.steps.common import ManageServiceStep, ServiceAction
from kubeforge.app.application.steps.kubeadm import KubeadmResetStep
from kubeforge.app.application.task import StepTask
from kubeforge.app.domain.models import ROLE_MASTER, ROLE_WORKER, Host

NAME = "delete-cluster"


def _not_master(host: Host) -> bool:
    return not host.has_role(ROLE_MASTER)


def build_delete_cluster_pipeline() -> Pipeline:
    return Pipeline(
        name=NAME,
        modules=[
            sequence(
                "reset-workers",
                StepTask(
                    "reset-workers",
                    [KubeadmResetStep()],
                    run_on_roles=(ROLE_WORKER,),
                    host_filter=_not_master,
                ),
            ),
            sequence(
                "reset-masters",
                StepTask("reset-masters", [KubeadmResetStep()], run_on_roles=(ROLE_MASTER,)),
            ),
            sequence(
                "stop-runtime",
                StepTask(
                    "containerd",
                    [
                        ManageServiceStep("stop", "containerd", ServiceAction.STOP),
                        ManageServiceStep("disable", "containerd", ServiceAction.DISABLE),
                    ],
                    run_on_roles=(ROLE_MASTER, ROLE_WORKER),
                ),
            ),
        ],
    )
