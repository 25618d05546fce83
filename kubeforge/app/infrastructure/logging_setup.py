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
"""Process-wide logging configuration.

Records carry the identity bound by ``RuntimeContext.logger_for``
(run_id, module_name, task, step, host); both formatters render it.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone

CONTEXT_FIELDS = ("run_id", "module_name", "task", "step", "host")


def _context(record: logging.LogRecord) -> dict[str, str]:
    context = {}
    for name in CONTEXT_FIELDS:
        value = getattr(record, name, None)
        if value is not None:
            context[name] = str(value)
    return context


class StructuredFormatter(logging.Formatter):
    """JSON formatter, one object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(_context(record))
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class HumanReadableFormatter(logging.Formatter):
    """Single-line formatter with a short identity prefix."""

    def format(self, record: logging.LogRecord) -> str:
        context = _context(record)
        parts = []
        if "run_id" in context:
            parts.append(f"run:{context['run_id'][:8]}")
        for name in ("module_name", "task", "step", "host"):
            if name in context:
                parts.append(context[name])
        prefix = f"[{' | '.join(parts)}] " if parts else ""
        line = f"[{record.levelname:<8}] {record.name}: {prefix}{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def resolve_log_level() -> str:
    return os.getenv("KUBEFORGE_LOG_LEVEL", "INFO").strip().upper() or "INFO"


def resolve_log_format() -> str:
    value = os.getenv("KUBEFORGE_LOG_FORMAT", "human").strip().lower()
    return "json" if value == "json" else "human"


def configure_logging(level: str | None = None, format: str | None = None) -> None:
    """Install one stream handler on the root logger.

    Args:
        level: Log level name; defaults to KUBEFORGE_LOG_LEVEL
        format: "json" or "human"; defaults to KUBEFORGE_LOG_FORMAT
    """
    requested = (level or resolve_log_level()).strip().upper()
    known = isinstance(logging.getLevelName(requested), int)
    level = requested if known else "INFO"
    format = format or resolve_log_format()
    formatter: logging.Formatter
    if format == "json":
        formatter = StructuredFormatter()
    else:
        formatter = HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Netmiko/paramiko are chatty at INFO.
    for name in ("paramiko", "netmiko"):
        logging.getLogger(name).setLevel(max(logging.WARNING, root_logger.level))

    if not known:
        logging.getLogger(__name__).warning(
            "Unknown log level %r, using INFO", requested
        )
