# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import time
from uuid import uuid4

from loguru import logger

from sandbox_engine.audit import AuditLogger
from sandbox_engine.commands import normalize_language
from sandbox_engine.config import SandboxConfig
from sandbox_engine.errors import ErrorCode, classify_error
from sandbox_engine.events import EventEmitter, SandboxEventListener
from sandbox_engine.factory import SandboxFactory
from sandbox_engine.models import (
    ContainerInfo,
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    Language,
    ResourceStats,
    SandboxEventType,
)
from sandbox_engine.registry import ExecutionRegistry
from sandbox_engine.runtime import SandboxRuntime


class SandboxEngine:
    """Async entry point of the execution engine.

    Validates requests, delegates each one to the configured runtime and turns every
    outcome into an ExecutionResult. Runtime faults never escape `execute()`.
    """

    def __init__(self, config: SandboxConfig | None = None, runtime: SandboxRuntime | None = None):
        """Initializes the SandboxEngine.

        Args:
            config: Configuration for the engine. Its security policy applies to every
                unit this engine provisions.
            runtime: Runtime to use. Defaults to the one named by `config.runtime`.
        """
        self.config = config or SandboxConfig()
        self.runtime: SandboxRuntime = runtime or SandboxFactory.get_runtime(self.config)
        self.registry = ExecutionRegistry()
        self.events = EventEmitter()
        self.audit = AuditLogger(enabled=self.config.enable_audit_logging)

    async def __aenter__(self) -> "SandboxEngine":
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Tears down every live unit and releases the runtime."""
        await self.cleanup()
        await self.runtime.close()

    def on(self, event_type: SandboxEventType | str, listener: SandboxEventListener) -> None:
        self.events.on(event_type, listener)

    def off(self, event_type: SandboxEventType | str, listener: SandboxEventListener) -> None:
        self.events.off(event_type, listener)

    async def execute(
        self,
        code: str,
        language: Language | str,
        *,
        stdin: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Executes code in a fresh execution unit.

        Args:
            code: The source code to execute.
            language: 'bash' (or 'shell'), 'python', 'javascript' or 'typescript'.
            stdin: Content written to the program's standard input, which is then closed.
            env: Extra environment variables for the program.
            timeout: Deadline in seconds. Defaults to the configured timeout.

        Returns:
            ExecutionResult: Always returned; faults are reported through `status`
                and `error` rather than raised.
        """
        request_id = uuid4().hex
        started = time.monotonic()
        self.events.emit(SandboxEventType.EXECUTION_START, request_id=request_id)

        try:
            request = ExecutionRequest(
                id=request_id,
                code=code,
                language=normalize_language(language),
                stdin=stdin,
                env=env or {},
                timeout=timeout if timeout is not None else self.config.timeout,
            )
            await self.audit.log_pre_execution(code, request.language.value, request_id)
            output = await self.runtime.run(request, self.registry, self.events)
        except Exception as e:
            return self._fault_result(request_id, e, started)

        status = ExecutionStatus.CANCELLED if output.cancelled else ExecutionStatus.COMPLETED
        result = ExecutionResult(
            request_id=request_id,
            status=status,
            exit_code=output.exit_code,
            stdout=output.stdout,
            stderr=output.stderr,
            duration_ms=_elapsed_ms(started),
            files=output.files,
        )
        logger.info(
            f"Execution {request_id} {status.value} with exit code {result.exit_code} in {result.duration_ms}ms"
        )
        if result.stdout or result.stderr:
            self.events.emit(
                SandboxEventType.EXECUTION_OUTPUT,
                request_id=request_id,
                data={"stdout": result.stdout, "stderr": result.stderr},
            )
        self.events.emit(SandboxEventType.EXECUTION_COMPLETE, request_id=request_id, data=result)
        return result

    def _fault_result(self, request_id: str, error: Exception, started: float) -> ExecutionResult:
        execution_error = classify_error(error)
        timed_out = execution_error.code == ErrorCode.TIMEOUT.value

        result = ExecutionResult(
            request_id=request_id,
            status=ExecutionStatus.TIMEOUT if timed_out else ExecutionStatus.FAILED,
            exit_code=-1,
            stdout="",
            stderr=execution_error.message,
            duration_ms=_elapsed_ms(started),
            error=execution_error,
        )

        if timed_out:
            logger.warning(f"Execution {request_id} timed out: {execution_error.message}")
            self.events.emit(SandboxEventType.EXECUTION_TIMEOUT, request_id=request_id, data=result)
        else:
            logger.error(f"Execution {request_id} failed [{execution_error.code}]: {execution_error.message}")
            self.events.emit(SandboxEventType.EXECUTION_ERROR, request_id=request_id, data=result)
        return result

    def count(self) -> int:
        """Number of live execution units."""
        return self.registry.count()

    async def cancel(self, request_id: str) -> bool:
        """Stops and removes the unit of an in-flight execution.

        Returns:
            bool: True if a live unit was found for `request_id`.
        """
        return await self.registry.cancel(request_id)

    async def cleanup(self) -> None:
        """Tears down every live unit."""
        await self.registry.cleanup()

    async def get_container_info(self, request_id: str) -> ContainerInfo | None:
        entry = self.registry.get(request_id)
        if entry is None:
            return None
        return await entry.handle.info()

    async def get_resource_stats(self, request_id: str) -> ResourceStats | None:
        entry = self.registry.get(request_id)
        if entry is None:
            return None
        return await entry.handle.stats()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
