import asyncio
from typing import Any, Generator
from unittest.mock import MagicMock

import pytest

from sandbox_engine.config import SandboxConfig
from sandbox_engine.events import EventEmitter
from sandbox_engine.models import ContainerInfo, ExecutionRequest, RunOutput, SandboxEventType
from sandbox_engine.registry import ExecutionRegistry
from sandbox_engine.runtime import SandboxRuntime, UnitHandle, await_with_deadline


class FakeUnit(UnitHandle):
    """In-memory unit; `stopped` is set on teardown."""

    def __init__(self, unit_id: str):
        self._unit_id = unit_id
        self.teardown_calls = 0
        self.stopped = asyncio.Event()

    @property
    def unit_id(self) -> str:
        return self._unit_id

    async def teardown(self) -> None:
        self.teardown_calls += 1
        self.stopped.set()

    async def info(self) -> ContainerInfo | None:
        return ContainerInfo(
            id=self._unit_id, name=self._unit_id, image="fake:latest", status="running", created_at=""
        )


class FakeRuntime(SandboxRuntime):
    """Runtime double that follows the register / release / teardown contract.

    With `block=True` a run only finishes once its unit is torn down (cancel) or
    the deadline fires.
    """

    def __init__(self, output: RunOutput | None = None, error: Exception | None = None, block: bool = False):
        self.output = output or RunOutput(exit_code=0, stdout="ok\n")
        self.error = error
        self.block = block
        self.requests: list[ExecutionRequest] = []
        self.units: list[FakeUnit] = []
        self.closed = False

    async def run(self, request: ExecutionRequest, registry: ExecutionRegistry, events: EventEmitter) -> RunOutput:
        self.requests.append(request)
        unit = FakeUnit(f"fake-{request.id[:8]}")
        self.units.append(unit)
        entry = registry.register(request.id, unit)
        events.emit(SandboxEventType.CONTAINER_CREATE, request_id=request.id, container_id=unit.unit_id)
        try:
            if self.error is not None:
                raise self.error
            if self.block:
                await await_with_deadline(unit.stopped.wait(), request.timeout)
                return RunOutput(exit_code=137, cancelled=entry.cancelled)
            return self.output.model_copy(update={"cancelled": entry.cancelled})
        finally:
            if registry.release(request.id) is not None:
                await unit.teardown()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config() -> SandboxConfig:
    return SandboxConfig(_env_file=None, timeout=5.0)  # type: ignore[call-arg]


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def mock_client() -> Generator[Any, None, None]:
    client = MagicMock()
    container = MagicMock()
    container.id = "c0ffee1234567890"
    container.short_id = "c0ffee1234"
    container.attrs = {"State": {"Running": False}}
    container.put_archive.return_value = True
    container.wait.return_value = {"StatusCode": 0}
    container.get_archive.return_value = ([], {})
    client.containers.create.return_value = container
    client.api._result.return_value = b""
    yield client


@pytest.fixture
def runtime_factory() -> type[FakeRuntime]:
    return FakeRuntime
