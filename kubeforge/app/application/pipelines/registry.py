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
"""Bundled pipelines by name."""

from __future__ import annotations

from typing import Callable

from kubeforge.app.application.pipeline import Pipeline
from kubeforge.app.application.pipelines.create_cluster import (
    build_create_cluster_pipeline,
)
from kubeforge.app.application.pipelines.delete_cluster import (
    build_delete_cluster_pipeline,
)

PipelineBuilder = Callable[[], Pipeline]

PIPELINES: dict[str, PipelineBuilder] = {
    "create-cluster": build_create_cluster_pipeline,
    "delete-cluster": build_delete_cluster_pipeline,
}


def build_pipeline(name: str) -> Pipeline:
    """Fresh pipeline instance; steps keep per-run state."""
    try:
        builder = PIPELINES[name]
    except KeyError:
        raise LookupError(f"Unknown pipeline: {name}") from None
    return builder()
