# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

from functools import partial
from typing import Literal

import anyio

from sandbox_engine.config import SandboxConfig
from sandbox_engine.engine import SandboxEngine
from sandbox_engine.events import SandboxEventListener
from sandbox_engine.factory import SandboxFactory
from sandbox_engine.models import ExecutionResult, Language, SandboxEventType
from sandbox_engine.runtime import SandboxRuntime


class Sandbox:
    """Sync Facade for SandboxEngine (The Facade).

    Wraps SandboxEngine and executes methods via anyio.run.
    """

    def __init__(self, config: SandboxConfig | None = None, runtime: SandboxRuntime | None = None):
        """Initializes the Sandbox facade.

        Args:
            config: Configuration for the engine.
            runtime: Optional runtime overriding `config.runtime`.
        """
        self._engine = SandboxEngine(config, runtime)

    @property
    def engine(self) -> SandboxEngine:
        return self._engine

    def __enter__(self) -> "Sandbox":
        """Context entry point."""
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Context exit point."""
        anyio.run(self._engine.__aexit__, exc_type, exc_val, exc_tb)

    def on(self, event_type: SandboxEventType | str, listener: SandboxEventListener) -> None:
        self._engine.on(event_type, listener)

    def execute(
        self,
        code: str,
        language: Language | str = Language.PYTHON,
        *,
        stdin: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> ExecutionResult:
        """Executes code synchronously.

        Args:
            code: The source code to execute.
            language: The programming language.
            stdin: Optional standard input content.
            env: Optional extra environment variables.
            timeout: Optional deadline in seconds.

        Returns:
            ExecutionResult: The result of the execution.
        """
        return anyio.run(partial(self._engine.execute, code, language, stdin=stdin, env=env, timeout=timeout))

    def cancel(self, request_id: str) -> bool:
        return anyio.run(self._engine.cancel, request_id)

    def cleanup(self) -> None:
        anyio.run(self._engine.cleanup)

    def count(self) -> int:
        return self._engine.count()


async def execute_code(
    code: str,
    language: Language | str,
    *,
    runtime: Literal["docker", "local"] = "local",
    timeout: float | None = None,
    stdin: str | None = None,
    env: dict[str, str] | None = None,
    config: SandboxConfig | None = None,
) -> ExecutionResult:
    """Run one snippet in a throw-away engine.

    Example:
        >>> result = await execute_code('print("Hello")', "python")
        >>> result.stdout
        'Hello\\n'
    """
    config = config or SandboxConfig()
    engine = SandboxEngine(config, SandboxFactory.get_runtime(config, runtime))
    async with engine:
        return await engine.execute(code, language, stdin=stdin, env=env, timeout=timeout)


async def execute_bash(script: str, **options: object) -> ExecutionResult:
    return await execute_code(script, Language.BASH, **options)  # type: ignore[arg-type]


async def execute_python(code: str, **options: object) -> ExecutionResult:
    return await execute_code(code, Language.PYTHON, **options)  # type: ignore[arg-type]


async def execute_javascript(code: str, **options: object) -> ExecutionResult:
    return await execute_code(code, Language.JAVASCRIPT, **options)  # type: ignore[arg-type]


async def execute_typescript(code: str, **options: object) -> ExecutionResult:
    return await execute_code(code, Language.TYPESCRIPT, **options)  # type: ignore[arg-type]
