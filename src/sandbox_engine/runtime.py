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
from abc import ABC, abstractmethod
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

from sandbox_engine.errors import ErrorCode, SandboxError
from sandbox_engine.models import ContainerInfo, ExecutionRequest, ResourceStats, RunOutput

if TYPE_CHECKING:
    from sandbox_engine.events import EventEmitter
    from sandbox_engine.registry import ExecutionRegistry

T = TypeVar("T")


class UnitHandle(ABC):
    """A live execution unit owned by exactly one request."""

    @property
    @abstractmethod
    def unit_id(self) -> str:
        pass  # pragma: no cover

    @abstractmethod
    async def teardown(self) -> None:
        """Stop and remove the unit.

        Implementations never raise; failures are logged.
        """
        pass  # pragma: no cover

    async def info(self) -> ContainerInfo | None:
        return None

    async def stats(self) -> ResourceStats | None:
        return None


class SandboxRuntime(ABC):
    """
    Abstract base class for sandbox runtimes (e.g., Docker, local processes).
    Follows the Strategy Pattern.
    """

    @abstractmethod
    async def run(
        self,
        request: ExecutionRequest,
        registry: "ExecutionRegistry",
        events: "EventEmitter",
    ) -> RunOutput:
        """Provision a unit, run the request in it and tear it down.

        The unit is registered under `request.id` for as long as it is live and is
        torn down before this method returns, whatever the outcome.

        Args:
            request: The execution request.
            registry: Registry the live unit is tracked in.
            events: Emitter for container lifecycle events.

        Returns:
            RunOutput: Exit code, decoded output and harvested files.

        Raises:
            SandboxError: UNSUPPORTED_LANGUAGE before provisioning, TIMEOUT when the
                deadline wins the completion race.
            Exception: Any provisioning, injection or start failure.
        """
        pass  # pragma: no cover

    async def close(self) -> None:
        """Release runtime-wide resources (clients, connections)."""
        return None


async def await_with_deadline(awaitable: Awaitable[T], timeout: float) -> T:
    """Race `awaitable` against a deadline timer; the first to finish wins.

    The deadline only ends the wait. It does not stop the work behind `awaitable`;
    callers tear the unit down afterwards.

    Raises:
        SandboxError: TIMEOUT if the deadline fires first.
    """
    completion: asyncio.Future[T] = asyncio.ensure_future(awaitable)
    deadline = asyncio.ensure_future(asyncio.sleep(timeout))
    try:
        done, _ = await asyncio.wait({completion, deadline}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (completion, deadline):
            if not task.done():
                task.cancel()

    if completion in done:
        return completion.result()

    raise SandboxError(f"Execution exceeded {timeout} seconds limit.", ErrorCode.TIMEOUT, {"timeout": timeout})
