# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""
sandbox-engine
"""

__version__ = "0.1.0"

from .archive import build_archive
from .commands import resolve_command
from .config import SandboxConfig, SecurityPolicy
from .demux import demux
from .engine import SandboxEngine
from .errors import ErrorCode, SandboxError
from .factory import SandboxFactory
from .models import (
    ContainerInfo,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    FileOutput,
    Language,
    ResourceStats,
    SandboxEvent,
    SandboxEventType,
)
from .registry import ExecutionRegistry
from .runtime import SandboxRuntime
from .runtimes.docker import DockerRuntime
from .runtimes.local import LocalRuntime
from .sandbox import (
    Sandbox,
    execute_bash,
    execute_code,
    execute_javascript,
    execute_python,
    execute_typescript,
)
from .utils.logger import configure_logging

__all__ = [
    "SandboxEngine",
    "Sandbox",
    "SandboxConfig",
    "SecurityPolicy",
    "SandboxFactory",
    "SandboxRuntime",
    "DockerRuntime",
    "LocalRuntime",
    "ExecutionRegistry",
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "FileOutput",
    "Language",
    "ContainerInfo",
    "ResourceStats",
    "SandboxEvent",
    "SandboxEventType",
    "SandboxError",
    "ErrorCode",
    "build_archive",
    "resolve_command",
    "demux",
    "configure_logging",
    "execute_code",
    "execute_bash",
    "execute_python",
    "execute_javascript",
    "execute_typescript",
]
