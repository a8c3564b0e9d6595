# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_sandbox

import asyncio
from typing import Any
from unittest.mock import patch

import pytest
from docker.errors import DockerException

from sandbox_engine.config import SandboxConfig
from sandbox_engine.engine import SandboxEngine
from sandbox_engine.errors import ErrorCode, SandboxError
from sandbox_engine.models import ExecutionStatus, FileOutput, RunOutput, SandboxEvent, SandboxEventType
from sandbox_engine.runtimes.docker import DockerRuntime


async def wait_for_live_unit(engine: SandboxEngine) -> str:
    for _ in range(200):
        ids = engine.registry.ids()
        if ids:
            return ids[0]
        await asyncio.sleep(0.01)
    raise AssertionError("no unit was registered")  # pragma: no cover


def record_events(engine: SandboxEngine) -> list[SandboxEvent]:
    seen: list[SandboxEvent] = []
    for event_type in SandboxEventType:
        engine.on(event_type, seen.append)
    return seen


def test_engine_uses_configured_runtime() -> None:
    with patch("sandbox_engine.runtimes.docker.docker.from_env") as mock_from_env:
        engine = SandboxEngine(SandboxConfig(_env_file=None))  # type: ignore[call-arg]
        assert isinstance(engine.runtime, DockerRuntime)
        # Constructing the engine never talks to the daemon.
        mock_from_env.assert_not_called()


@pytest.mark.asyncio
async def test_execute_completed(config: SandboxConfig, runtime_factory: Any) -> None:
    files = [FileOutput(path="/workspace/out.txt", content=b"x", size=1, mime_type="text/plain")]
    runtime = runtime_factory(output=RunOutput(exit_code=0, stdout="2\n", files=files))
    engine = SandboxEngine(config, runtime)

    result = await engine.execute("print(1+1)", "python")

    assert result.status == ExecutionStatus.COMPLETED
    assert result.exit_code == 0
    assert result.stdout == "2\n"
    assert result.files == files
    assert result.error is None
    assert result.duration_ms >= 0
    assert result.request_id == runtime.requests[0].id
    assert runtime.requests[0].timeout == config.timeout
    assert engine.count() == 0


@pytest.mark.asyncio
async def test_execute_nonzero_exit_is_completed(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory(output=RunOutput(exit_code=1, stderr="Traceback\n")))

    result = await engine.execute("raise ValueError()", "python")

    assert result.status == ExecutionStatus.COMPLETED
    assert result.exit_code == 1
    assert result.stderr == "Traceback\n"
    assert not result.ok


@pytest.mark.asyncio
async def test_execute_passes_request_fields(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory()
    engine = SandboxEngine(config, runtime)

    await engine.execute("cat", "shell", stdin="input", env={"A": "1"}, timeout=2.5)

    (request,) = runtime.requests
    assert request.language.value == "bash"
    assert request.stdin == "input"
    assert request.env == {"A": "1"}
    assert request.timeout == 2.5


@pytest.mark.asyncio
async def test_execute_unsupported_language(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory()
    engine = SandboxEngine(config, runtime)
    seen = record_events(engine)

    result = await engine.execute('puts "hi"', "ruby")

    assert result.status == ExecutionStatus.FAILED
    assert result.exit_code == -1
    assert result.error is not None
    assert result.error.code == ErrorCode.UNSUPPORTED_LANGUAGE.value
    assert result.stderr == "Unsupported language: ruby"
    assert runtime.requests == []
    assert engine.count() == 0
    assert [e.type for e in seen] == [SandboxEventType.EXECUTION_START, SandboxEventType.EXECUTION_ERROR]


@pytest.mark.asyncio
async def test_execute_timeout(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory(block=True)
    engine = SandboxEngine(config, runtime)
    seen = record_events(engine)

    result = await engine.execute("while True: pass", "python", timeout=0.1)

    assert result.status == ExecutionStatus.TIMEOUT
    assert result.exit_code == -1
    assert result.error is not None
    assert result.error.code == "TIMEOUT"
    assert result.error.message == "Execution exceeded 0.1 seconds limit."
    assert runtime.units[0].teardown_calls == 1
    assert engine.count() == 0
    assert seen[-1].type is SandboxEventType.EXECUTION_TIMEOUT
    assert seen[-1].data == result


@pytest.mark.asyncio
async def test_execute_runtime_fault(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory(error=DockerException("Cannot connect to the Docker daemon"))
    engine = SandboxEngine(config, runtime)

    result = await engine.execute("print(1)", "python")

    assert result.status == ExecutionStatus.FAILED
    assert result.error is not None
    assert result.error.code == "EXECUTION_ERROR"
    assert "Cannot connect" in result.stderr
    assert result.error.stack is not None
    assert runtime.units[0].teardown_calls == 1
    assert engine.count() == 0


@pytest.mark.asyncio
async def test_execute_sandbox_error_keeps_code(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory(error=SandboxError("Unsupported language: cobol", ErrorCode.UNSUPPORTED_LANGUAGE))

    result = await SandboxEngine(config, runtime).execute("x", "python")

    assert result.error is not None
    assert result.error.code == "UNSUPPORTED_LANGUAGE"


@pytest.mark.asyncio
async def test_execute_invalid_timeout(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory()

    result = await SandboxEngine(config, runtime).execute("x", "python", timeout=0)

    assert result.status == ExecutionStatus.FAILED
    assert runtime.requests == []


@pytest.mark.asyncio
async def test_execute_events(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory())
    seen = record_events(engine)

    result = await engine.execute("echo hi", "bash")

    assert [e.type for e in seen] == [
        SandboxEventType.EXECUTION_START,
        SandboxEventType.CONTAINER_CREATE,
        SandboxEventType.EXECUTION_OUTPUT,
        SandboxEventType.EXECUTION_COMPLETE,
    ]
    assert {e.request_id for e in seen} == {result.request_id}
    assert seen[-1].data == result
    assert seen[-2].data == {"stdout": "ok\n", "stderr": ""}


@pytest.mark.asyncio
async def test_silent_run_emits_no_output_event(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory(output=RunOutput(exit_code=0)))
    seen = record_events(engine)

    await engine.execute("true", "bash")

    assert SandboxEventType.EXECUTION_OUTPUT not in [e.type for e in seen]


@pytest.mark.asyncio
async def test_failing_listener_does_not_affect_result(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory())

    def broken(event: SandboxEvent) -> None:
        raise RuntimeError("listener bug")

    engine.on(SandboxEventType.EXECUTION_COMPLETE, broken)
    result = await engine.execute("echo hi", "bash")

    assert result.status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_off(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory())
    seen: list[SandboxEvent] = []
    engine.on("execution:complete", seen.append)
    engine.off("execution:complete", seen.append)

    await engine.execute("echo hi", "bash")

    assert seen == []


@pytest.mark.asyncio
async def test_cancel_unknown_request(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory())
    assert await engine.cancel("does-not-exist") is False


@pytest.mark.asyncio
async def test_cancel_in_flight(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory(block=True)
    engine = SandboxEngine(config, runtime)
    task = asyncio.create_task(engine.execute("while True: pass", "python", timeout=5))

    request_id = await wait_for_live_unit(engine)
    assert engine.count() == 1
    assert await engine.cancel(request_id) is True
    result = await asyncio.wait_for(task, 2)

    assert result.status == ExecutionStatus.CANCELLED
    assert result.exit_code == 137
    assert runtime.units[0].teardown_calls == 1
    assert engine.count() == 0
    assert await engine.cancel(request_id) is False


@pytest.mark.asyncio
async def test_concurrent_executions_are_isolated(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory()
    engine = SandboxEngine(config, runtime)

    results = await asyncio.gather(*(engine.execute(f"echo {i}", "bash") for i in range(10)))

    assert len({r.request_id for r in results}) == 10
    assert len({u.unit_id for u in runtime.units}) == 10
    assert all(u.teardown_calls == 1 for u in runtime.units)
    assert engine.count() == 0


@pytest.mark.asyncio
async def test_cleanup_and_context_manager(config: SandboxConfig, runtime_factory: Any) -> None:
    runtime = runtime_factory(block=True)

    async with SandboxEngine(config, runtime) as engine:
        tasks = [asyncio.create_task(engine.execute("sleep", "bash", timeout=5)) for _ in range(3)]
        while engine.count() < 3:
            await asyncio.sleep(0.01)

    results = await asyncio.gather(*tasks)

    assert engine.count() == 0
    assert runtime.closed is True
    assert all(u.teardown_calls == 1 for u in runtime.units)
    # cleanup() claims the units without marking them cancelled.
    assert {r.status for r in results} == {ExecutionStatus.COMPLETED}


@pytest.mark.asyncio
async def test_container_info_and_stats(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory(block=True))
    task = asyncio.create_task(engine.execute("sleep", "bash", timeout=5))
    request_id = await wait_for_live_unit(engine)

    info = await engine.get_container_info(request_id)
    stats = await engine.get_resource_stats(request_id)
    await engine.cancel(request_id)
    await task

    assert info is not None
    assert info.image == "fake:latest"
    assert stats is None
    assert await engine.get_container_info(request_id) is None
    assert await engine.get_resource_stats("unknown") is None


@pytest.mark.asyncio
async def test_audit_hash_logged(config: SandboxConfig, runtime_factory: Any) -> None:
    engine = SandboxEngine(config, runtime_factory())

    with patch.object(engine.audit, "log_pre_execution", wraps=engine.audit.log_pre_execution) as audit:
        result = await engine.execute("print(1)", "python")

    audit.assert_called_once_with("print(1)", "python", result.request_id)
