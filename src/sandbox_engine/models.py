# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

"""Data models for execution requests, results and lifecycle events."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Language(str, Enum):
    """Languages the engine knows how to run."""

    BASH = "bash"
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"

    @classmethod
    def _missing_(cls, value: object) -> "Language | None":
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("shell", "sh"):
                return cls.BASH
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class ExecutionRequest(BaseModel):
    """A single code execution request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid4().hex)
    code: str
    language: Language
    stdin: str | None = None
    env: dict[str, str] = Field(default_factory=dict)
    timeout: float = Field(..., gt=0.0, description="Deadline in seconds.")
    created_at: datetime = Field(default_factory=utcnow)


class FileOutput(BaseModel):
    """A file produced by the executed program.

    Attributes:
        path: Path of the file inside the execution unit.
        content: Raw file content.
        size: Size in bytes.
        mime_type: Guessed MIME type, if any.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: bytes
    size: int
    mime_type: str | None = None


class ExecutionError(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    line: int | None = None
    column: int | None = None
    stack: str | None = None


class ExecutionResult(BaseModel):
    """Represents the outcome of one `execute()` call.

    Attributes:
        request_id: Id of the originating request.
        status: Terminal status of the run.
        exit_code: Process exit code, or -1 when the run failed or timed out.
        stdout: Decoded standard output.
        stderr: Decoded standard error (the fault message for failed runs).
        duration_ms: Wall time from request to result, in milliseconds.
        files: Files the program left in its working directory.
        memory_used: Not measured by the bundled runtimes; always None.
        cpu_time: Not measured by the bundled runtimes; always None.
        error: Classified fault, for failed and timed-out runs.
        completed_at: When the result was assembled.
    """

    model_config = ConfigDict(frozen=True)

    request_id: str
    status: ExecutionStatus
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    files: list[FileOutput] = Field(default_factory=list)
    memory_used: int | None = None
    cpu_time: int | None = None
    error: ExecutionError | None = None
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED and self.exit_code == 0


class RunOutput(BaseModel):
    """What a runtime hands back to the engine for a run that was not faulted."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    files: list[FileOutput] = Field(default_factory=list)
    cancelled: bool = False


class ContainerInfo(BaseModel):
    id: str
    name: str
    image: str
    status: str
    created_at: str
    started_at: str | None = None
    finished_at: str | None = None


class ResourceStats(BaseModel):
    memory_usage: int = 0
    memory_limit: int = 0
    cpu_percent: float = 0.0
    network_tx: int = 0
    network_rx: int = 0
    disk_read: int = 0
    disk_write: int = 0


class SandboxEventType(str, Enum):
    EXECUTION_START = "execution:start"
    EXECUTION_OUTPUT = "execution:output"
    EXECUTION_COMPLETE = "execution:complete"
    EXECUTION_ERROR = "execution:error"
    EXECUTION_TIMEOUT = "execution:timeout"
    CONTAINER_CREATE = "container:create"
    CONTAINER_START = "container:start"
    CONTAINER_STOP = "container:stop"
    SECURITY_VIOLATION = "security:violation"


class SandboxEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: SandboxEventType
    timestamp: datetime = Field(default_factory=utcnow)
    request_id: str | None = None
    container_id: str | None = None
    data: Any = None
